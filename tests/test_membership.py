"""Unit tests for membership functions."""

import pytest

from budget_allocate.solver.membership import (
    MembershipFunction,
    Segment,
    build_s_curve_segments,
    evaluate,
    segments_through,
)

SHAPES = [
    MembershipFunction.linear(100.0, 500.0),
    MembershipFunction.s_curve(0.0, 300.0, 700.0, 1000.0),
    MembershipFunction.piecewise(segments_through([(0.0, 0.0), (50.0, 0.4), (100.0, 1.0), (150.0, 1.5)])),
]


class TestLinear:
    def test_boundaries(self):
        fn = MembershipFunction.linear(100.0, 500.0)
        assert evaluate(fn, 50.0) == 0.0
        assert evaluate(fn, 100.0) == 0.0
        assert evaluate(fn, 300.0) == pytest.approx(0.5)
        assert evaluate(fn, 500.0) == 1.0
        assert evaluate(fn, 900.0) == 1.0

    def test_degenerate_range_is_a_step(self):
        fn = MembershipFunction.linear(200.0, 200.0)
        assert fn(199.0) == 0.0
        assert fn(200.0) == 1.0


class TestPeaked:
    def test_triangular(self):
        fn = MembershipFunction.triangular(0.0, 1000.0, 2000.0)
        assert fn(500.0) == pytest.approx(0.5)
        assert fn(1000.0) == 1.0
        assert fn(1500.0) == pytest.approx(0.5)
        assert fn(2500.0) == 0.0

    def test_trapezoidal_plateau(self):
        fn = MembershipFunction.trapezoidal(80.0, 90.0, 110.0, 120.0)
        assert fn(85.0) == pytest.approx(0.5)
        assert fn(100.0) == 1.0
        assert fn(115.0) == pytest.approx(0.5)
        assert fn(70.0) == 0.0

    def test_peak_on_boundary_does_not_divide_by_zero(self):
        fn = MembershipFunction.triangular(0.0, 0.0, 100.0)
        assert fn(0.0) == 1.0
        assert fn(50.0) == pytest.approx(0.5)

    def test_unordered_points_raise(self):
        with pytest.raises(ValueError, match="lower <= peak_left"):
            MembershipFunction.triangular(100.0, 50.0, 200.0)

    def test_not_monotone(self):
        assert not MembershipFunction.triangular(0.0, 1.0, 2.0).is_monotone


class TestSCurve:
    def test_anchor_memberships(self):
        fn = MembershipFunction.s_curve(0.0, 300.0, 700.0, 1000.0)
        assert fn(0.0) == 0.0
        assert fn(300.0) == pytest.approx(0.15)
        assert fn(700.0) == pytest.approx(0.85)
        assert fn(1000.0) == pytest.approx(1.0)

    def test_surplus_tier(self):
        fn = MembershipFunction.s_curve(0.0, 300.0, 700.0, 1000.0)
        assert fn(1200.0) == pytest.approx(1.05)
        assert fn(5000.0) == pytest.approx(1.05)
        assert fn.cap == pytest.approx(1.05)

    def test_invalid_peaks_fall_back_to_defaults(self):
        segments = build_s_curve_segments(0.0, -5.0, 5000.0, 1000.0)
        assert segments[2].lower == pytest.approx(300.0)
        assert segments[5].lower == pytest.approx(700.0)

    def test_empty_range_is_satisfied(self):
        fn = MembershipFunction.s_curve(0.0, 0.0, 0.0, 0.0)
        assert fn(0.0) == 1.0


class TestPiecewise:
    def test_interpolates(self):
        fn = SHAPES[2]
        assert fn(25.0) == pytest.approx(0.2)
        assert fn(75.0) == pytest.approx(0.7)
        assert fn(500.0) == pytest.approx(1.5)

    def test_gap_raises(self):
        with pytest.raises(ValueError, match="contiguous"):
            MembershipFunction.piecewise([Segment(0.0, 10.0, 0.1, 0.0, 1.0), Segment(20.0, 30.0, 0.0, 1.0, 1.0)])

    def test_empty_raises(self):
        with pytest.raises(ValueError, match="at least one segment"):
            MembershipFunction.piecewise([])

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError, match="Unknown membership kind"):
            MembershipFunction("gaussian")

    def test_collapsed_anchors_form_a_step(self):
        segments = segments_through([(100.0, 0.0), (100.0, 1.0), (100.0, 2.0)])
        assert len(segments) == 1
        assert segments[0].cap == 2.0


@pytest.mark.parametrize("fn", SHAPES, ids=["linear", "s-curve", "piecewise"])
def test_monotone_non_decreasing(fn):
    values = [fn(x) for x in range(0, 2001, 25)]
    assert all(b >= a - 1e-12 for a, b in zip(values, values[1:]))
    assert fn(2000.0) == pytest.approx(fn.cap)
