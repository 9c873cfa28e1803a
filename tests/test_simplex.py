"""Unit tests for the two-phase Simplex solver."""

import pytest

from budget_allocate.solver.simplex import SimplexSolver


def toy_problem(**kwargs):
    solver = SimplexSolver(2, **kwargs)
    solver.set_objective([1.0, 1.0], maximize=True)
    solver.add_constraint([1.0, 1.0], "<=", 10.0)
    solver.add_constraint([1.0, 0.0], "<=", 6.0)
    solver.add_constraint([0.0, 1.0], "<=", 6.0)
    return solver


class TestSimplexSolver:
    def test_toy_lp(self):
        result = toy_problem().solve()
        assert result["status"] == "Optimal"
        assert sum(result["solution"]) == pytest.approx(10.0)
        assert result["objective_value"] == pytest.approx(10.0)
        assert all(x <= 6.0 + 1e-9 for x in result["solution"])

    def test_minimize_with_ge_and_eq(self):
        solver = SimplexSolver(3)
        solver.set_objective([2.0, 3.0, 1.0], maximize=False)
        solver.add_constraint([1.0, 1.0, 0.0], ">=", 4.0)
        solver.add_constraint([0.0, 1.0, 1.0], "=", 3.0)
        result = solver.solve()
        assert result["status"] == "Optimal"
        x1, x2, x3 = result["solution"]
        assert x1 + x2 >= 4.0 - 1e-9
        assert x2 + x3 == pytest.approx(3.0)
        # x1 = 4, x3 = 3 costs 11; x2 = 3, x1 = 1 costs 11 as well
        assert result["objective_value"] == pytest.approx(11.0)

    def test_bounds_are_respected(self):
        solver = SimplexSolver(2)
        solver.set_objective([1.0, 1.0], maximize=False)
        solver.set_bounds(0, 2.0, 5.0)
        solver.set_bounds(1, 1.0, 4.0)
        solver.add_constraint([1.0, 1.0], ">=", 6.0)
        result = solver.solve()
        assert result["status"] == "Optimal"
        x1, x2 = result["solution"]
        assert 2.0 <= x1 <= 5.0
        assert 1.0 <= x2 <= 4.0
        assert x1 + x2 == pytest.approx(6.0)

    def test_negative_rhs_is_normalized(self):
        solver = SimplexSolver(1)
        solver.set_objective([1.0], maximize=False)
        solver.add_constraint([-1.0], "<=", -3.0)
        result = solver.solve()
        assert result["status"] == "Optimal"
        assert result["solution"][0] == pytest.approx(3.0)

    def test_infeasible(self):
        solver = SimplexSolver(1)
        solver.set_objective([1.0], maximize=True)
        solver.add_constraint([1.0], "<=", 5.0)
        solver.add_constraint([1.0], ">=", 8.0)
        result = solver.solve()
        assert result["status"] == "Infeasible"
        assert result["solution"] == []
        assert result["objective_value"] is None

    def test_unbounded(self):
        solver = SimplexSolver(2)
        solver.set_objective([1.0, 0.0], maximize=True)
        solver.add_constraint([0.0, 1.0], "<=", 1.0)
        assert solver.solve()["status"] == "Unbounded"

    def test_iteration_limit(self):
        result = toy_problem(max_iterations=1).solve()
        assert result["status"] == "Iteration Limit"
        assert result["iterations"] == 1

    def test_zero_variables(self):
        result = SimplexSolver(0).solve()
        assert result["status"] == "Optimal"
        assert result["solution"] == []

    def test_no_constraints_uses_bounds(self):
        solver = SimplexSolver(2)
        solver.set_objective([1.0, -1.0], maximize=True)
        solver.set_bounds(0, 0.0, 7.0)
        solver.set_bounds(1, 2.0, 9.0)
        result = solver.solve()
        assert result["status"] == "Optimal"
        assert result["solution"] == [7.0, 2.0]
        assert result["iterations"] == 0

    def test_wrong_coefficient_count_raises(self):
        with pytest.raises(ValueError, match="Expected 2 coefficients"):
            SimplexSolver(2).add_constraint([1.0], "<=", 1.0)

    def test_unknown_operator_raises(self):
        with pytest.raises(ValueError, match="operator"):
            SimplexSolver(1).add_constraint([1.0], "<", 1.0)

    def test_binary_rejected(self):
        with pytest.raises(ValueError, match="binary"):
            SimplexSolver(1).set_binary(0)

    def test_repeat_solve_is_identical(self):
        assert toy_problem().solve() == toy_problem().solve()
