"""Tests for the BudgetAllocator pipeline component."""

import logging

import pytest

from budget_allocate.adapter import STRATEGIES, BudgetAllocator, round_to_unit
from budget_allocate.errors import InfeasibleMinimumsError
from budget_allocate.models import (
    CategoryConstraint,
    ConstraintModel,
    DebtConstraint,
    GoalConstraint,
    ScenarioParameters,
)


def grand_total(result):
    categories = sum(result.category_allocations.values())
    goals = sum(result.goal_allocations.values())
    debts = sum(p.total_payment for p in result.debt_allocations.values())
    return categories + goals + debts


class TestBudgetAllocator:
    @pytest.mark.parametrize("strategy", STRATEGIES)
    @pytest.mark.parametrize("rounding_unit", [None, 100_000.0])
    def test_allocation_equals_income(self, allocator, sample_model, balanced, strategy, rounding_unit):
        result = allocator(strategy, rounding_unit=rounding_unit).solve(sample_model, balanced)
        assert grand_total(result) == pytest.approx(sample_model.total_income, abs=0.01)
        assert result.total_allocated == pytest.approx(sample_model.total_income, abs=0.01)
        assert result.surplus == pytest.approx(0.0, abs=0.01)
        assert result.solver_type == strategy
        assert 0.0 <= result.feasibility_score <= 100.0

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_mandatory_and_debt_are_heuristic(self, allocator, sample_model, balanced, strategy):
        result = allocator(strategy).solve(sample_model, balanced)
        assert result.category_allocations["rent"] == 3000.0
        assert result.category_allocations["utilities"] == 400.0
        assert result.debt_allocations["car"].total_payment == 500.0
        assert result.debt_allocations["card"].minimum_payment == 300.0

    def test_hybrid_reports_extra_debt(self, allocator, sample_model, balanced):
        result = allocator("hybrid", rounding_unit=None).solve(sample_model, balanced)
        card = result.debt_allocations["card"]
        assert card.extra_payment == pytest.approx(900.0)
        assert card.total_payment == pytest.approx(1200.0)
        assert result.debt_allocations["car"].extra_payment == pytest.approx(50.0)

    def test_fixed_debt_payment_records_extra(self, allocator, balanced):
        model = ConstraintModel(
            total_income=1000.0,
            debt_payments={"car": DebtConstraint("car", "Car", minimum_payment=300.0, fixed_payment=450.0)},
            goal_targets={"save": GoalConstraint("save", "Save", 200.0, 5000.0)},
        )
        result = allocator("preemptive", rounding_unit=None).solve(model, balanced)
        assert result.debt_allocations["car"].extra_payment == pytest.approx(150.0)
        assert result.goal_allocations["save"] == pytest.approx(550.0)

    def test_surplus_goes_to_goals_first(self, allocator, sample_model, balanced):
        result = allocator("preemptive", rounding_unit=None).solve(sample_model, balanced)
        # preemptive leaves 2900 which is shared in proportion to 1000 : 500
        assert result.goal_allocations["emergency"] == pytest.approx(1000.0 + 2900.0 * 2 / 3)
        assert result.goal_allocations["vacation"] == pytest.approx(500.0 + 2900.0 / 3)
        assert result.category_allocations["dining"] == pytest.approx(500.0)
        assert result.category_allocations["groceries"] == pytest.approx(900.0)

    def test_surplus_overflows_to_flexible(self, allocator, balanced):
        model = ConstraintModel(
            total_income=2000.0,
            flexible_expenses={"fun": CategoryConstraint("fun", 100.0, 0.0, is_flexible=True)},
            goal_targets={"save": GoalConstraint("save", "Save", 300.0, 300.0)},
        )
        result = allocator("preemptive", rounding_unit=None).solve(model, balanced)
        assert result.goal_allocations["save"] == pytest.approx(300.0)
        assert result.category_allocations["fun"] == pytest.approx(1700.0)

    def test_rounding_deficit_is_trimmed(self, allocator, balanced):
        model = ConstraintModel(
            total_income=2000.0,
            flexible_expenses={"fun": CategoryConstraint("fun", 0.0, 1000.0, is_flexible=True)},
            goal_targets={"save": GoalConstraint("save", "Save", 1500.0, 5000.0)},
        )
        result = allocator("preemptive", rounding_unit=1000.0).solve(model, balanced)
        assert result.goal_allocations["save"] == pytest.approx(1500.0)
        assert result.category_allocations["fun"] == pytest.approx(500.0)
        assert result.total_allocated == pytest.approx(2000.0)

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_rounding_keeps_flexible_within_bounds(self, allocator, sample_model, balanced, strategy):
        result = allocator(strategy).solve(sample_model, balanced)
        for key, constraint in sample_model.flexible_expenses.items():
            assert constraint.minimum <= result.category_allocations[key] <= constraint.maximum
        for key, goal in sample_model.goal_targets.items():
            assert 0.0 <= result.goal_allocations[key] <= goal.remaining_amount
        assert result.total_allocated == pytest.approx(sample_model.total_income, abs=0.01)

    def test_rounding_skips_mandatory_and_debt(self, allocator, sample_model, balanced):
        result = allocator("preemptive").solve(sample_model, balanced)
        assert result.category_allocations["rent"] == pytest.approx(3000.0)
        assert result.category_allocations["utilities"] == pytest.approx(400.0)
        assert result.debt_allocations["card"].total_payment == pytest.approx(300.0)
        assert result.debt_allocations["car"].total_payment == pytest.approx(500.0)

    def test_rounding_below_fixed_flexible_amount_is_restored(self, allocator, balanced):
        model = ConstraintModel(
            total_income=20_000_000.0,
            mandatory_expenses={"rent": CategoryConstraint("rent", 5_000_000.0, 5_000_000.0)},
            flexible_expenses={"food": CategoryConstraint("food", 1_240_000.0, 1_240_000.0, is_flexible=True)},
            goal_targets={"save": GoalConstraint("save", "Save", 3_000_000.0, 50_000_000.0)},
        )
        result = allocator("preemptive").solve(model, balanced)
        assert result.category_allocations["food"] == pytest.approx(1_240_000.0)
        assert result.goal_allocations["save"] == pytest.approx(13_760_000.0)
        assert result.total_allocated == pytest.approx(20_000_000.0)

    def test_residual_warning_when_nothing_can_absorb(self, allocator, caplog, balanced):
        model = ConstraintModel(
            total_income=1000.0,
            mandatory_expenses={"rent": CategoryConstraint("rent", 600.0, 600.0)},
        )
        with caplog.at_level(logging.WARNING, logger="budget_allocate.adapter"):
            result = allocator().solve(model, balanced)
        assert result.surplus == pytest.approx(400.0)
        assert "residual" in caplog.text

    def test_infeasible_minimums_raise(self, allocator, caplog, balanced):
        model = ConstraintModel(
            total_income=1000.0,
            mandatory_expenses={"rent": CategoryConstraint("rent", 900.0, 900.0)},
            debt_payments={"card": DebtConstraint("card", "Card", 250.0)},
        )
        with caplog.at_level(logging.WARNING, logger="budget_allocate.adapter"):
            with pytest.raises(InfeasibleMinimumsError, match="deficit: 150.00") as excinfo:
                allocator().solve(model, balanced)
        assert excinfo.value.deficit == pytest.approx(150.0)
        assert "Committed minimums exceed income" in caplog.text

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_zero_budget(self, allocator, strategy):
        result = allocator(strategy).solve(ConstraintModel(total_income=0.0))
        assert result.total_allocated == 0.0
        assert result.surplus == 0.0

    def test_goal_status_lists(self, allocator, sample_model, balanced):
        result = allocator("preemptive").solve(sample_model, balanced)
        assert sorted(result.achieved_goals + result.unachieved_goals) == ["emergency", "vacation"]

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_repeat_solve_is_identical(self, allocator, sample_model, balanced, strategy):
        assert allocator(strategy).solve(sample_model, balanced) == allocator(strategy).solve(sample_model, balanced)

    def test_default_params(self, allocator, sample_model):
        result = allocator("preemptive").solve(sample_model)
        assert result.total_allocated == pytest.approx(sample_model.total_income, abs=0.01)

    def test_unknown_strategy_raises(self):
        with pytest.raises(ValueError, match="Unknown strategy"):
            BudgetAllocator("weighted")


class TestExecute:
    def test_result_keys(self, allocator, sample_event):
        result = allocator().execute(sample_event)
        expected_keys = {
            "category_allocations",
            "goal_allocations",
            "debt_allocations",
            "total_allocated",
            "surplus",
            "feasibility_score",
            "solver_iterations",
            "achieved_goals",
            "unachieved_goals",
            "solver_type",
            "solver_detail",
        }
        assert set(result.keys()) == expected_keys

    def test_ids_mapped(self, allocator, sample_event):
        result = allocator().execute(sample_event)
        assert result["category_allocations"]["rent"] == 2000.0
        assert result["debt_allocations"]["loan"] == {
            "total_payment": 250.0,
            "minimum_payment": 250.0,
            "extra_payment": 0.0,
        }
        assert set(result["goal_allocations"]) == {"savings"}
        assert result["total_allocated"] == pytest.approx(5000.0, abs=0.01)

    def test_solver_detail(self, allocator, sample_event):
        result = allocator("meta").execute(sample_event)
        assert result["solver_detail"]["strategy"] == "meta"
        assert result["solver_detail"]["scenario"] == "balanced"

    def test_custom_scenario_dict(self, allocator, sample_event):
        sample_event["scenario"] = {
            "scenario_type": "custom",
            "flexible_spending_level": 0.2,
            "surplus_allocation": {
                "emergency_fund_percent": 0.5,
                "debt_extra_percent": 0.5,
                "goals_percent": 0.0,
                "flexible_percent": 0.0,
            },
        }
        result = allocator("hybrid").execute(sample_event)
        assert result["solver_detail"]["scenario"] == "custom"

    def test_invalid_scenario_raises(self, allocator, sample_event):
        sample_event["scenario"] = {"flexible_spending_level": 2.0}
        with pytest.raises(ValueError, match="between 0 and 1"):
            allocator().execute(sample_event)

    def test_all_scenarios_on_request(self, allocator, sample_event):
        sample_event["use_all_scenarios"] = True
        result = allocator("preemptive", rounding_unit=None).execute(sample_event)
        assert [s["scenario_type"] for s in result["scenarios"]] == ["conservative", "balanced", "aggressive"]
        assert "sensitivity" not in result

    def test_sensitivity_on_request(self, allocator, sample_event):
        sample_event["run_sensitivity"] = True
        result = allocator("preemptive", rounding_unit=None).execute(sample_event)
        assert len(result["sensitivity"]["income_impact"]) == 4
        assert result["sensitivity"]["summary"]["income_break_even"] == pytest.approx(2250.0)


@pytest.mark.parametrize(
    "amount, unit, expected",
    [(149_999.0, 100_000.0, 100_000.0), (150_000.0, 100_000.0, 200_000.0), (1234.5, None, 1234.5), (40.0, 0, 40.0)],
)
def test_round_to_unit(amount, unit, expected):
    assert round_to_unit(amount, unit) == expected


def test_params_preset_scenarios_are_supported(allocator, sample_model):
    for name in ("conservative", "balanced", "aggressive"):
        result = allocator("hybrid", rounding_unit=None).solve(sample_model, ScenarioParameters.for_scenario(name))
        assert result.total_allocated == pytest.approx(sample_model.total_income, abs=0.01)
