"""Unit tests for the LP-based goal-programming reduction."""

import logging

import pytest

from budget_allocate.errors import InfeasibleMinimumsError, SolverError
from budget_allocate.solver import lp_goal
from budget_allocate.solver._common import Variable
from budget_allocate.solver.lp_goal import LPGoalSolver, build_lp_solver
from budget_allocate.solver.preemptive import GPGoal
from budget_allocate.solver.simplex import SimplexSolver


def weighted_solver(income, backend="simplex"):
    solver = LPGoalSolver(income, backend)
    for key, weight in (("A", 3.0), ("B", 2.0), ("C", 1.0)):
        idx = solver.add_variable(Variable(key))
        solver.add_goal(GPGoal(key, idx, 1000.0, weight=weight))
    return solver


class TestLPGoalSolver:
    @pytest.mark.parametrize("backend", ["simplex", pytest.param("pulp", marks=pytest.mark.cbc)])
    def test_weights_decide_shortfall(self, backend):
        result = weighted_solver(2500.0, backend).solve()
        values = result["variable_values"]
        assert values["A"] == pytest.approx(1000.0, abs=1e-6)
        assert values["B"] == pytest.approx(1000.0, abs=1e-6)
        assert values["C"] == pytest.approx(500.0, abs=1e-6)
        assert result["unachieved_goals"] == ["C"]
        assert result["total_deviation"] == pytest.approx(500.0, abs=1e-6)
        assert result["status"] == "Optimal"

    def test_at_most_goal_penalizes_excess(self):
        solver = LPGoalSolver(1000.0)
        idx = solver.add_variable(Variable("x", min_value=100.0))
        solver.add_goal(GPGoal("cap", idx, 50.0, goal_type="at_most"))
        result = solver.solve()
        assert result["variable_values"]["x"] == pytest.approx(100.0)
        assert result["goal_deviations"]["cap"] == pytest.approx(50.0)

    def test_exact_goal(self):
        solver = LPGoalSolver(1000.0)
        idx = solver.add_variable(Variable("x"))
        solver.add_goal(GPGoal("exact", idx, 420.0, goal_type="exactly"))
        assert solver.solve()["variable_values"]["x"] == pytest.approx(420.0)

    def test_minimums_over_budget_raise(self, caplog):
        solver = LPGoalSolver(1000.0)
        rent = solver.add_variable(Variable("rent", kind="category", min_value=800.0, max_value=800.0))
        fun = solver.add_variable(Variable("fun", kind="category", min_value=300.0))
        solver.add_goal(GPGoal("rent", rent, 800.0))
        solver.add_goal(GPGoal("fun", fun, 300.0))
        with caplog.at_level(logging.WARNING, logger="budget_allocate.solver._common"):
            with pytest.raises(InfeasibleMinimumsError, match="deficit: 100.00") as excinfo:
                solver.solve()
        assert excinfo.value.deficit == pytest.approx(100.0)
        assert "Minimum allocations exceed income" in caplog.text

    def test_non_optimal_status_raises(self, monkeypatch, caplog):
        monkeypatch.setattr(lp_goal, "create_lp_backend", lambda kind, n: SimplexSolver(n, max_iterations=0))
        with caplog.at_level(logging.WARNING, logger="budget_allocate.solver.lp_goal"):
            with pytest.raises(SolverError, match="Iteration Limit") as excinfo:
                weighted_solver(2500.0).solve()
        assert excinfo.value.status == "Iteration Limit"
        assert "LP goal program returned status" in caplog.text

    def test_zero_variables(self):
        result = LPGoalSolver(100.0).solve()
        assert result["variable_values"] == {}
        assert result["is_feasible"]

    def test_unknown_backend_raises(self):
        with pytest.raises(ValueError, match="Unknown LP backend"):
            weighted_solver(100.0, backend="glpk").solve()


class TestBuildLPSolver:
    def test_weights(self, sample_model, balanced):
        solver = build_lp_solver(sample_model, balanced)
        weights = {g.id: g.weight for g in solver.goals}
        assert weights == {
            "rent": 100.0,
            "utilities": 100.0,
            "car": 80.0,
            "card": 80.0,
            "emergency": 50.0,
            "vacation": 10.0,
            "dining": 5.0,
            "groceries": 5.0,
        }

    def test_solves_full_model(self, sample_model, balanced):
        result = build_lp_solver(sample_model, balanced).solve()
        values = result["variable_values"]
        assert values["rent"] == pytest.approx(3000.0)
        assert values["emergency"] >= 1000.0 - 1e-6
        assert values["groceries"] >= 900.0 - 1e-6
        assert sum(values.values()) <= sample_model.total_income + 1e-6
        assert result["achieved_goals"] == list(result["goal_deviations"])
