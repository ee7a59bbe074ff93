"""UserProfile model"""
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, JSON
from datetime import datetime, timezone
from kitchen_ai.models.base import Base


class UserProfile(Base):
    """Dietary profile filled in during onboarding"""
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    age = Column(Integer, nullable=True)
    height = Column(Float, nullable=True)  # cm
    weight = Column(Float, nullable=True)  # kg
    bmi = Column(Float, nullable=True)
    gender = Column(String(20), nullable=True)
    country = Column(String(2), nullable=True)  # ISO 3166-1 alpha-2
    fitness_goal = Column(String(50), nullable=True)
    dietary_restrictions = Column(JSON, default=list, nullable=False)
    allergies = Column(JSON, default=list, nullable=False)
    cuisine_preferences = Column(JSON, default=list, nullable=False)
    diet_type = Column(String(50), default="casera_normal", nullable=False)
    snack_preference = Column(String(20), default="3meals", nullable=False)  # '3meals', '4meals', '5meals'
    flexible_mode = Column(Boolean, default=True, nullable=False)
    daily_calorie_goal = Column(Integer, nullable=True)
    protein_goal = Column(Integer, nullable=True)
    carbs_goal = Column(Integer, nullable=True)
    fat_goal = Column(Integer, nullable=True)
    household_size = Column(Integer, default=1, nullable=False)
    cooking_skill_level = Column(String(20), default="intermedio", nullable=False)
    max_prep_time = Column(Integer, default=45, nullable=False)  # minutes
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
