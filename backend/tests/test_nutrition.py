"""Calorie distribution and macro target tests"""
import pytest

from kitchen_ai.services.nutrition import (
    DEFAULT_SLOT_CALORIES, macro_grams, meal_distribution, meal_targets, meal_type_label, target_for_slot
)


@pytest.mark.high
class TestMealDistribution:
    def test_three_meals(self):
        assert meal_distribution(2000, "3meals") == {"breakfast": 500, "lunch": 800, "dinner": 700}

    def test_five_meals_in_serving_order(self):
        distribution = meal_distribution(1800, "5meals")
        assert list(distribution) == ["breakfast", "mid_morning_snack", "lunch", "afternoon_snack", "dinner"]
        assert distribution["lunch"] == 630
        assert distribution["afternoon_snack"] == 180

    def test_half_calorie_rounds_up(self):
        assert meal_distribution(2050, "3meals")["breakfast"] == 513

    def test_unknown_preference_uses_three_meals(self):
        assert list(meal_distribution(2000, "7meals")) == ["breakfast", "lunch", "dinner"]


@pytest.mark.high
class TestMacros:
    def test_home_cooking_split(self):
        assert macro_grams(500, "casera_normal") == {"protein": 31, "carbs": 56, "fat": 17}

    def test_keto_split(self):
        assert macro_grams(700, "keto") == {"protein": 35, "carbs": 18, "fat": 54}

    def test_unknown_diet_falls_back(self):
        assert macro_grams(500, "carnivora") == macro_grams(500, "casera_normal")


@pytest.mark.medium
class TestTargets:
    def test_meal_targets_for_a_day(self):
        targets = meal_targets(2000, "4meals", "deportista")
        assert [t.meal_type for t in targets] == ["breakfast", "mid_morning_snack", "lunch", "dinner"]
        assert sum(t.calories for t in targets) == 2000
        assert targets[0].protein == 38  # 500 kcal * 30% / 4

    def test_slot_outside_preference_gets_default(self):
        target = target_for_slot("afternoon_snack", 2000, "3meals", "casera_normal")
        assert target.calories == DEFAULT_SLOT_CALORIES

    def test_labels(self):
        assert meal_type_label("afternoon_snack") == "merienda"
        assert meal_type_label("brunch") == "brunch"
