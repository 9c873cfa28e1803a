"""Unit tests for the piecewise linearization layer."""

import pytest

from budget_allocate.solver.backend import PulpBackend
from budget_allocate.solver.linearize import PiecewiseLinearization, decompose
from budget_allocate.solver.membership import MembershipFunction


class RecordingBackend:
    """Backend stand-in that records the calls it receives."""

    name = "recording"

    def __init__(self):
        self.binaries = []
        self.bounds = {}
        self.constraints = []

    def set_binary(self, var):
        self.binaries.append(var)

    def set_bounds(self, var, lo, hi):
        self.bounds[var] = (lo, hi)

    def add_constraint(self, coeffs, op, rhs):
        self.constraints.append((coeffs, op, rhs))


class TestDecompose:
    def test_triangular_covers_zero_to_ceiling(self):
        segments = decompose(MembershipFunction.triangular(500.0, 1000.0, 1500.0), 5000.0)
        assert [(s.lower, s.upper) for s in segments] == [
            (0.0, 500.0),
            (500.0, 1000.0),
            (1000.0, 1500.0),
            (1500.0, 5000.0),
        ]
        assert segments[0].cap == 0.0
        assert segments[-1].cap == 0.0

    def test_monotone_tail_keeps_cap(self):
        segments = decompose(MembershipFunction.linear(0.0, 100.0), 1000.0)
        assert len(segments) == 2
        assert segments[-1].value_at(800.0) == 1.0

    def test_no_tail_when_curve_reaches_ceiling(self):
        segments = decompose(MembershipFunction.s_curve(0.0, 300.0, 700.0, 1000.0), 1000.0)
        assert segments[-1].upper == pytest.approx(1200.0)


class TestPiecewiseLinearization:
    def test_column_layout(self):
        lin = PiecewiseLinearization(2, 5000.0)
        first = lin.add_goal("a", 0, MembershipFunction.triangular(500.0, 1000.0, 1500.0), 2.0)
        second = lin.add_goal("b", 1, MembershipFunction.linear(0.0, 100.0), 1.0)
        assert first.membership_column == 2
        assert first.indicators == [3, 4, 5, 6]
        assert second.membership_column == 7
        assert second.indicators == [8, 9]
        assert lin.num_vars == 10
        assert lin.objective_terms() == {2: 2.0, 7: 1.0}

    def test_apply_emits_linking_rows(self):
        lin = PiecewiseLinearization(1, 1000.0)
        block = lin.add_goal("a", 0, MembershipFunction.linear(0.0, 100.0), 1.0)
        backend = RecordingBackend()
        lin.apply(backend)
        assert backend.binaries == block.indicators
        assert backend.bounds[block.membership_column] == (0.0, 1.0)
        # one selector row plus floor, ceiling and line rows per segment
        assert len(backend.constraints) == 1 + 3 * len(block.segments)
        selector, op, rhs = backend.constraints[0]
        assert op == "="
        assert rhs == 1.0
        assert [selector[c] for c in block.indicators] == [1.0, 1.0]

    def test_active_segments(self):
        lin = PiecewiseLinearization(1, 1000.0)
        block = lin.add_goal("a", 0, MembershipFunction.linear(0.0, 100.0), 1.0)
        solution = [0.0] * lin.num_vars
        solution[block.indicators[1]] = 1.0
        assert lin.active_segments(solution)["a"] is block.segments[1]

    @pytest.mark.cbc
    def test_milp_prefers_peak_over_falling_side(self):
        lin = PiecewiseLinearization(1, 5000.0)
        lin.add_goal("a", 0, MembershipFunction.triangular(500.0, 1000.0, 1500.0), 1.0)
        n = lin.num_vars
        objective = [0.0] * n
        for col, coef in lin.objective_terms().items():
            objective[col] = coef
        objective[0] = 1e-6
        with PulpBackend(n) as backend:
            backend.set_objective(objective, maximize=True)
            backend.set_bounds(0, 0.0, 5000.0)
            lin.apply(backend)
            result = backend.solve()
        assert result["status"] == "Optimal"
        assert result["solution"][0] == pytest.approx(1000.0, abs=0.01)
        assert result["solution"][1] == pytest.approx(1.0, abs=1e-4)
