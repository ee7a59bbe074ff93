"""Pydantic schemas for meal plan generation"""
from datetime import date
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class GenerateMealPlanRequest(BaseModel):
    """Accepts both snake_case and the web client's camelCase keys"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = None
    user_id_camel: Optional[str] = Field(None, alias="userId")
    week_start_date: Optional[date] = None
    week_start: Optional[date] = Field(None, alias="weekStart")
    days_to_generate: int = Field(7, alias="daysToGenerate", ge=1, le=31)
    start_day_offset: int = Field(0, alias="startDayOffset", ge=0, le=30)
    single_meal: bool = Field(False, alias="singleMeal")
    meal_type: Optional[str] = Field(None, alias="mealType")
    item_id_to_replace: Optional[int] = Field(None, alias="itemIdToReplace")
    date_to_replace: Optional[date] = Field(None, alias="dateToReplace")
    meal_plan_id: Optional[int] = Field(None, alias="mealPlanId")
    user_preferences: Optional[str] = Field(None, alias="userPreferences", max_length=1000)

    @property
    def resolved_user_id(self) -> Optional[str]:
        return self.user_id_camel or self.user_id

    @property
    def resolved_week_start(self) -> Optional[date]:
        return self.week_start or self.week_start_date

