"""Meal plan generation route"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kitchen_ai.core.errors import BadRequestError, ForbiddenError
from kitchen_ai.core.security import AuthUser, require_auth
from kitchen_ai.db.session import get_db
from kitchen_ai.schemas.meal_plans import GenerateMealPlanRequest
from kitchen_ai.services.meal_plan_service import GenerationRequest, generate_meal_plan

router = APIRouter(tags=["meal-plans"])
logger = logging.getLogger(__name__)


@router.post("/generate-meal-plan")
def generate_meal_plan_route(
    body: GenerateMealPlanRequest,
    user: AuthUser = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Generate a week (or part of one) or replace a single meal"""
    user_id = body.resolved_user_id
    week_start = body.resolved_week_start
    if not user_id or not week_start:
        raise BadRequestError("user_id and week_start_date are required", code="missing_parameters")
    if user_id != user.id:
        raise ForbiddenError("No puedes generar planes para otro usuario")

    request = GenerationRequest(
        user_id=user_id,
        week_start=week_start,
        days_to_generate=body.days_to_generate,
        start_day_offset=body.start_day_offset,
        single_meal=body.single_meal,
        meal_type=body.meal_type,
        item_id_to_replace=body.item_id_to_replace,
        date_to_replace=body.date_to_replace,
        meal_plan_id=body.meal_plan_id,
        user_preferences=body.user_preferences,
    )
    logger.info(
        f"Meal plan request from {user_id}: week={week_start} offset={request.start_day_offset} "
        f"days={request.days_to_generate} replace={request.is_replacement}"
    )
    return generate_meal_plan(db, request)
