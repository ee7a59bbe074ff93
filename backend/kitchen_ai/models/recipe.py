"""Recipe model"""
from sqlalchemy import Column, Integer, String, Text, Boolean, Float, DateTime, JSON
from datetime import datetime, timezone
from kitchen_ai.models.base import Base


class Recipe(Base):
    """Recipe stored from an LLM response or added by the user"""
    __tablename__ = "recipes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    cuisine_type = Column(String(100), nullable=True)
    difficulty = Column(String(20), nullable=True)  # 'fácil', 'media', 'difícil'
    prep_time = Column(Integer, nullable=True)
    cook_time = Column(Integer, nullable=True)
    total_time = Column(Integer, nullable=True)
    servings = Column(Integer, nullable=True)
    ingredients = Column(JSON, default=list, nullable=False)  # [{name, amount, unit}]
    instructions = Column(JSON, default=list, nullable=False)  # [{step, description}]
    calories = Column(Float, nullable=True)
    protein = Column(Float, nullable=True)
    carbs = Column(Float, nullable=True)
    fat = Column(Float, nullable=True)
    fiber = Column(Float, nullable=True)
    tags = Column(JSON, default=list, nullable=False)
    source = Column(String(50), default="ai_generated", nullable=False)
    is_public = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
