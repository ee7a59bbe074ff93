"""Weekly meal plan generation and single-meal replacement"""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from kitchen_ai.core.errors import ApiError, NotFoundError, UpstreamError
from kitchen_ai.core.metrics import meals_generated_counter
from kitchen_ai.models.meal_plan import MealPlan, MealPlanItem
from kitchen_ai.models.profile import UserProfile
from kitchen_ai.models.recipe import Recipe
from kitchen_ai.services.entitlement import check_generation_window, generation_range
from kitchen_ai.services.llm_client import generate_recipe_json
from kitchen_ai.services.nutrition import (
    DEFAULT_DAILY_CALORIES, MealTarget, meal_targets, meal_type_label, target_for_slot
)
from kitchen_ai.services.subscription_record import get_subscription
from kitchen_ai.utils.dates import utcnow

logger = logging.getLogger(__name__)


@dataclass
class GenerationRequest:
    user_id: str
    week_start: date
    days_to_generate: int = 7
    start_day_offset: int = 0
    single_meal: bool = False
    meal_type: Optional[str] = None
    item_id_to_replace: Optional[int] = None
    date_to_replace: Optional[date] = None
    meal_plan_id: Optional[int] = None
    user_preferences: Optional[str] = None

    @property
    def is_replacement(self) -> bool:
        return bool(self.single_meal and self.meal_type and self.item_id_to_replace)


# ============================================================================
# PROMPT
# ============================================================================

def _join_or(values: Optional[List[str]], empty: str) -> str:
    return ", ".join(values) if values else empty


def build_meal_prompt(
    profile: UserProfile,
    target: MealTarget,
    user_preferences: Optional[str] = None,
    previous_meals: Optional[List[str]] = None
) -> str:
    label = meal_type_label(target.meal_type)
    diet_type = profile.diet_type or "casera_normal"
    if diet_type == "casera_normal":
        diet_description = "comida casera normal, sin restricciones especiales, equilibrada y familiar"
    else:
        diet_description = f"dieta {diet_type}"

    household = profile.household_size or 1
    mode = (
        "- Modo flexible: Puedes ser creativo con ingredientes similares"
        if profile.flexible_mode else
        "- Modo estricto: Sigue exactamente las restricciones"
    )

    preferences_section = ""
    if user_preferences:
        preferences_section = f"\n⭐ PREFERENCIAS ESPECIALES DEL USUARIO: {user_preferences}\n"

    variety_section = ""
    if previous_meals:
        listed = "\n".join(f"- Día {i + 1}: {meal}" for i, meal in enumerate(previous_meals))
        variety_section = (
            "\n🔄 VARIEDAD IMPORTANTE: Ya se han generado las siguientes comidas para este tipo de comida "
            f"en otros días de la semana:\n{listed}\n\n"
            "⚠️ DEBES generar una receta COMPLETAMENTE DIFERENTE a las anteriores. Varía:\n"
            "- El tipo de plato principal (si antes fue huevos, ahora puede ser avena o tostadas)\n"
            "- Los ingredientes principales\n"
            "- El estilo de cocina\n"
            "- La preparación\n\n"
            "NO repitas recetas similares. Cada día debe tener una experiencia gastronómica distinta.\n"
        )

    reminder = ""
    if user_preferences:
        reminder = "\n\n¡IMPORTANTE! Ten en cuenta las preferencias especiales del usuario mencionadas arriba."

    return f"""Genera una receta para {label} que cumpla con los siguientes requisitos:
- Tipo de dieta: {diet_description}
- Calorías: aproximadamente {target.calories} kcal
- Proteína: {target.protein}g
- Carbohidratos: {target.carbs}g
- Grasas: {target.fat}g
- Restricciones dietéticas: {_join_or(profile.dietary_restrictions, 'ninguna')}
- Alergias: {_join_or(profile.allergies, 'ninguna')}
- Preferencias de cocina: {_join_or(profile.cuisine_preferences, 'variada')}
- Porciones: {household} persona(s)
- Tiempo máximo de preparación: {profile.max_prep_time} minutos
{mode}{preferences_section}{variety_section}
La receta debe ser práctica, con ingredientes accesibles y tiempo de preparación razonable.{reminder}

Responde ÚNICAMENTE con un JSON válido en este formato exacto:
{{
  "name": "Nombre de la receta",
  "description": "Descripción breve de 1-2 líneas",
  "cuisine_type": "Tipo de cocina",
  "difficulty": "fácil",
  "prep_time": 15,
  "cook_time": 20,
  "servings": {household},
  "ingredients": [
    {{"name": "Ingrediente 1", "amount": 100, "unit": "g"}},
    {{"name": "Ingrediente 2", "amount": 2, "unit": "unidades"}}
  ],
  "instructions": [
    {{"step": 1, "description": "Paso detallado 1"}},
    {{"step": 2, "description": "Paso detallado 2"}}
  ],
  "nutrition": {{
    "calories": {target.calories},
    "protein": {target.protein},
    "carbs": {target.carbs},
    "fat": {target.fat},
    "fiber": 5
  }},
  "tags": ["{label}", "saludable"]
}}"""


# ============================================================================
# PERSISTENCE
# ============================================================================

def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def recipe_from_llm(user_id: str, data: Dict[str, Any]) -> Recipe:
    """Map the model's JSON onto a Recipe row; a name is the only hard requirement"""
    name = (data.get("name") or "").strip()
    if not name:
        raise ValueError("Recipe JSON has no name")

    nutrition = data.get("nutrition") or {}
    prep_time = _as_int(data.get("prep_time"))
    cook_time = _as_int(data.get("cook_time"))
    total_time = (prep_time or 0) + (cook_time or 0) if prep_time is not None or cook_time is not None else None

    return Recipe(
        user_id=user_id,
        name=name[:255],
        description=data.get("description"),
        cuisine_type=data.get("cuisine_type"),
        difficulty=data.get("difficulty"),
        prep_time=prep_time,
        cook_time=cook_time,
        total_time=total_time,
        servings=_as_int(data.get("servings")),
        ingredients=data.get("ingredients") or [],
        instructions=data.get("instructions") or [],
        calories=_as_float(nutrition.get("calories")),
        protein=_as_float(nutrition.get("protein")),
        carbs=_as_float(nutrition.get("carbs")),
        fat=_as_float(nutrition.get("fat")),
        fiber=_as_float(nutrition.get("fiber")),
        tags=data.get("tags") or [],
        source="ai_generated",
        is_public=False,
    )


def get_or_create_plan(db: Session, user_id: str, week_start: date, meal_plan_id: Optional[int] = None) -> MealPlan:
    """Reuse the user's plan for the week, creating it when missing"""
    if meal_plan_id:
        plan = db.query(MealPlan).filter(MealPlan.id == meal_plan_id, MealPlan.user_id == user_id).first()
        if plan:
            return plan
        raise NotFoundError("Plan de comidas no encontrado", code="meal_plan_not_found")

    plan = db.query(MealPlan).filter(
        MealPlan.user_id == user_id,
        MealPlan.week_start_date == week_start
    ).first()
    if plan:
        logger.info(f"Found existing meal plan {plan.id} for user {user_id}, week {week_start}")
        return plan

    plan = MealPlan(
        user_id=user_id,
        name=f"Plan Semanal {week_start.isoformat()}",
        week_start_date=week_start,
        week_end_date=week_start + timedelta(days=6),
        is_active=True,
    )
    try:
        with db.begin_nested():
            db.add(plan)
    except IntegrityError:
        # Concurrent request created the same week
        plan = db.query(MealPlan).filter(
            MealPlan.user_id == user_id,
            MealPlan.week_start_date == week_start
        ).first()
        if plan is None:
            raise
    return plan


# ============================================================================
# FLOWS
# ============================================================================

def _load_profile(db: Session, user_id: str) -> UserProfile:
    profile = db.query(UserProfile).filter(UserProfile.user_id == user_id).first()
    if not profile:
        raise NotFoundError("User profile not found", code="profile_not_found")
    return profile


def _enforce_entitlement(db: Session, request: GenerationRequest, now=None) -> None:
    try:
        record = get_subscription(db, request.user_id)
    except SQLAlchemyError as e:
        logger.error(f"Subscription lookup failed for user {request.user_id}: {e}")
        raise ApiError("No se pudo verificar tu suscripción", code="subscription_check_failed", status_code=500)

    if request.is_replacement and request.date_to_replace:
        first = last = request.date_to_replace
    else:
        first, last = generation_range(request.week_start, request.start_day_offset, request.days_to_generate)

    snapshot = record.snapshot() if record is not None else None
    decision = check_generation_window(snapshot, first, last, now=now)
    if not decision.allowed:
        logger.info(f"Generation denied for user {request.user_id}: {decision.code.value} ({first} - {last})")
    decision.raise_for_denial()


def generate_meal_plan(db: Session, request: GenerationRequest, now=None) -> Dict[str, Any]:
    """Validate, then generate one recipe per (day, slot) in order

    Slots whose model call or JSON parse fails are logged and skipped.
    """
    profile = _load_profile(db, request.user_id)
    _enforce_entitlement(db, request, now=now)

    if request.is_replacement:
        return replace_meal(db, request, profile)

    daily_calories = profile.daily_calorie_goal or DEFAULT_DAILY_CALORIES
    targets = meal_targets(daily_calories, profile.snack_preference or "3meals", profile.diet_type or "casera_normal")

    plan = get_or_create_plan(db, request.user_id, request.week_start, request.meal_plan_id)
    db.commit()

    previous_by_type: Dict[str, List[str]] = {target.meal_type: [] for target in targets}
    meals_generated = 0
    first_day = request.start_day_offset
    last_day = request.start_day_offset + max(request.days_to_generate, 1)

    for day in range(first_day, last_day):
        current_date = request.week_start + timedelta(days=day)
        for target in targets:
            previous = previous_by_type[target.meal_type]
            prompt = build_meal_prompt(profile, target, previous_meals=previous)
            try:
                data = generate_recipe_json(prompt)
                recipe = recipe_from_llm(request.user_id, data)
            except (UpstreamError, ValueError) as e:
                logger.error(f"Generation failed for {target.meal_type} on day {day}: {e}")
                meals_generated_counter.labels(status="skipped").inc()
                continue

            previous.append(recipe.name)
            try:
                with db.begin_nested():
                    db.add(recipe)
                    db.flush()
                    db.add(MealPlanItem(
                        meal_plan_id=plan.id,
                        recipe_id=recipe.id,
                        day_of_week=day,
                        meal_type=target.meal_type,
                        date=current_date,
                        is_completed=False,
                    ))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Error saving {target.meal_type} for day {day}: {e}")
                meals_generated_counter.labels(status="skipped").inc()
                continue

            meals_generated += 1
            meals_generated_counter.labels(status="generated").inc()

    logger.info(f"Generated {meals_generated} meals for user {request.user_id}, plan {plan.id}")
    return {"success": True, "meal_plan_id": plan.id, "meals_generated": meals_generated}


def replace_meal(db: Session, request: GenerationRequest, profile: UserProfile) -> Dict[str, Any]:
    """Generate a new recipe and point an existing plan item at it"""
    item = db.query(MealPlanItem).join(MealPlan).filter(
        MealPlanItem.id == request.item_id_to_replace,
        MealPlan.user_id == request.user_id
    ).first()
    if not item:
        raise NotFoundError("Comida no encontrada en el plan", code="meal_plan_item_not_found")

    target = target_for_slot(
        request.meal_type,
        profile.daily_calorie_goal or DEFAULT_DAILY_CALORIES,
        profile.snack_preference or "3meals",
        profile.diet_type or "casera_normal",
    )
    prompt = build_meal_prompt(profile, target, user_preferences=request.user_preferences)
    try:
        recipe = recipe_from_llm(request.user_id, generate_recipe_json(prompt))
    except (UpstreamError, ValueError) as e:
        logger.error(f"Replacement generation failed for item {item.id}: {e}")
        meals_generated_counter.labels(status="failed").inc()
        raise ApiError("No se pudo generar la comida", code="generation_failed", status_code=500)

    db.add(recipe)
    db.flush()
    item.recipe_id = recipe.id
    item.updated_at = utcnow()
    db.commit()

    meals_generated_counter.labels(status="replaced").inc()
    logger.info(f"Replaced meal plan item {item.id} with recipe {recipe.id}")
    return {"success": True, "message": "Comida reemplazada con éxito"}
