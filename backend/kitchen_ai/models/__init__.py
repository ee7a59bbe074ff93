"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from kitchen_ai.models.base import Base
from kitchen_ai.models.subscription import UserSubscription
from kitchen_ai.models.subscription_event import SubscriptionEvent
from kitchen_ai.models.notification import UserNotification
from kitchen_ai.models.profile import UserProfile
from kitchen_ai.models.recipe import Recipe
from kitchen_ai.models.meal_plan import MealPlan, MealPlanItem
from kitchen_ai.models.usage import UsageTracking

# Export all for convenience
__all__ = [
    "Base", "UserSubscription", "SubscriptionEvent", "UserNotification",
    "UserProfile", "Recipe", "MealPlan", "MealPlanItem", "UsageTracking"
]
