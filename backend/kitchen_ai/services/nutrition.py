"""Calorie and macro targets per meal slot"""
from dataclasses import dataclass
from typing import Dict, List

DEFAULT_DAILY_CALORIES = 2000
DEFAULT_SLOT_CALORIES = 600

# Percent of daily calories per slot, in serving order
MEAL_DISTRIBUTIONS: Dict[str, Dict[str, int]] = {
    "3meals": {"breakfast": 25, "lunch": 40, "dinner": 35},
    "4meals": {"breakfast": 25, "mid_morning_snack": 10, "lunch": 35, "dinner": 30},
    "5meals": {"breakfast": 20, "mid_morning_snack": 10, "lunch": 35, "afternoon_snack": 10, "dinner": 25},
}

# Percent of calories from (protein, carbs, fat)
MACRO_DISTRIBUTIONS: Dict[str, Dict[str, int]] = {
    "keto": {"protein": 20, "carbs": 10, "fat": 70},
    "paleo": {"protein": 30, "carbs": 35, "fat": 35},
    "vegetariano": {"protein": 20, "carbs": 50, "fat": 30},
    "vegano": {"protein": 20, "carbs": 50, "fat": 30},
    "deportista": {"protein": 30, "carbs": 45, "fat": 25},
    "ayuno_intermitente": {"protein": 25, "carbs": 40, "fat": 35},
    "casera_normal": {"protein": 25, "carbs": 45, "fat": 30},
}

MEAL_TYPE_LABELS = {
    "breakfast": "desayuno",
    "mid_morning_snack": "snack de media mañana",
    "lunch": "almuerzo",
    "afternoon_snack": "merienda",
    "dinner": "cena",
}

KCAL_PER_GRAM = {"protein": 4, "carbs": 4, "fat": 9}


@dataclass(frozen=True)
class MealTarget:
    meal_type: str
    calories: int
    protein: int
    carbs: int
    fat: int


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def meal_distribution(daily_calories: int, snack_preference: str) -> Dict[str, int]:
    """Calories per slot; unknown preferences fall back to three meals"""
    shares = MEAL_DISTRIBUTIONS.get(snack_preference, MEAL_DISTRIBUTIONS["3meals"])
    return {meal_type: _round_half_up(daily_calories * pct / 100) for meal_type, pct in shares.items()}


def macro_distribution(diet_type: str) -> Dict[str, int]:
    return MACRO_DISTRIBUTIONS.get(diet_type, MACRO_DISTRIBUTIONS["casera_normal"])


def macro_grams(calories: int, diet_type: str) -> Dict[str, int]:
    macros = macro_distribution(diet_type)
    return {
        name: _round_half_up(calories * pct / 100 / KCAL_PER_GRAM[name])
        for name, pct in macros.items()
    }


def meal_type_label(meal_type: str) -> str:
    return MEAL_TYPE_LABELS.get(meal_type, meal_type)


def meal_targets(daily_calories: int, snack_preference: str, diet_type: str) -> List[MealTarget]:
    """Ordered per-slot targets for one day"""
    targets = []
    for meal_type, calories in meal_distribution(daily_calories, snack_preference).items():
        grams = macro_grams(calories, diet_type)
        targets.append(MealTarget(meal_type=meal_type, calories=calories, **grams))
    return targets


def target_for_slot(meal_type: str, daily_calories: int, snack_preference: str, diet_type: str) -> MealTarget:
    """Target for a single slot; slots outside the preference get a flat default"""
    calories = meal_distribution(daily_calories, snack_preference).get(meal_type, DEFAULT_SLOT_CALORIES)
    return MealTarget(meal_type=meal_type, calories=calories, **macro_grams(calories, diet_type))
