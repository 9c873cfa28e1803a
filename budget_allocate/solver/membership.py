"""Membership (satisfaction) functions.

A membership function maps an allocated amount to a satisfaction degree in
``[0, cap]``. The cap is ``1`` for the classic shapes and may exceed ``1``
for piecewise curves with a surplus tier.
"""

import math
from dataclasses import dataclass, field

MEMBERSHIP_KINDS = ("linear", "triangular", "trapezoidal", "piecewise", "s-curve")

# (fraction of the way through the curve, membership) anchors of the S-curve
S_CURVE_MEMBERSHIPS = (0.0, 0.05, 0.15, 0.35, 0.65, 0.85, 0.95, 1.0)
S_CURVE_SURPLUS_FACTOR = 1.2
S_CURVE_SURPLUS_MEMBERSHIP = 1.05


@dataclass(frozen=True)
class Segment:
    """One linear piece of a piecewise membership curve.

    Parameters
    ----------
    lower, upper : float
        Domain of the segment.
    slope, intercept : float
        Membership is ``slope * x + intercept`` inside the segment.
    cap : float
        Membership never exceeds this value inside the segment.
    """

    lower: float
    upper: float
    slope: float
    intercept: float
    cap: float

    def value_at(self, x: float) -> float:
        return min(max(self.slope * x + self.intercept, 0.0), self.cap)

    @property
    def midpoint(self) -> float:
        return (self.lower + self.upper) / 2

    @property
    def width(self) -> float:
        return self.upper - self.lower


def make_segment(x_a: float, m_a: float, x_b: float, m_b: float) -> Segment:
    """Segment through ``(x_a, m_a)`` and ``(x_b, m_b)`` capped at ``m_b``."""
    slope = 0.0 if x_b == x_a else (m_b - m_a) / (x_b - x_a)
    return Segment(x_a, x_b, slope, m_a - slope * x_a, m_b)


def segments_through(points: list[tuple[float, float]]) -> list[Segment]:
    """Connect ``(x, membership)`` anchor points into contiguous segments.

    Anchors that do not advance ``x`` are skipped. If no anchor advances, a
    single zero-width segment at the first anchor carries the final
    membership, i.e. the curve is a step.
    """
    segments = []
    x_a, m_a = points[0]
    for x_b, m_b in points[1:]:
        if x_b <= x_a:
            m_a = max(m_a, m_b)
            continue
        segments.append(make_segment(x_a, m_a, x_b, m_b))
        x_a, m_a = x_b, m_b
    if not segments:
        return [Segment(x_a, x_a, 0.0, m_a, m_a)]
    return segments


def build_s_curve_segments(lower: float, peak_left: float, peak_right: float, upper: float) -> list[Segment]:
    """Approximate a sigmoid rising from ``lower`` to ``upper`` with linear pieces.

    Seven segments pass through memberships 0, 0.05, 0.15, 0.35, 0.65, 0.85,
    0.95 and 1.0, with an eighth surplus segment reaching 1.05 at 120 % of
    ``upper``. Peaks outside the range are replaced by 30 % and 70 % of it.

    Parameters
    ----------
    lower, peak_left, peak_right, upper : float
        Shape points of the curve.

    Returns
    -------
    list[Segment]
    """
    if upper <= lower:
        return [Segment(lower, upper, 0.0, 1.0, 1.0)]

    span = upper - lower
    if peak_left <= lower or peak_left >= upper:
        peak_left = lower + 0.3 * span
    if peak_right <= peak_left or peak_right >= upper:
        peak_right = lower + 0.7 * span

    inner = peak_right - peak_left
    xs = (
        lower,
        lower + 0.5 * (peak_left - lower),
        peak_left,
        peak_left + inner / 3,
        peak_left + 2 * inner / 3,
        peak_right,
        peak_right + 0.5 * (upper - peak_right),
        upper,
    )
    points = list(zip(xs, S_CURVE_MEMBERSHIPS))
    surplus_max = upper * S_CURVE_SURPLUS_FACTOR
    if surplus_max > upper:
        points.append((surplus_max, S_CURVE_SURPLUS_MEMBERSHIP))
    return segments_through(points)


def _validate_segments(segments: list[Segment]) -> None:
    if not segments:
        raise ValueError("Piecewise membership requires at least one segment")
    for seg in segments:
        if seg.upper < seg.lower:
            raise ValueError(f"Segment upper {seg.upper} is below lower {seg.lower}")
    for prev, nxt in zip(segments, segments[1:]):
        if not math.isclose(prev.upper, nxt.lower, rel_tol=1e-9, abs_tol=1e-9):
            raise ValueError(f"Segments must be contiguous: {prev.upper} != {nxt.lower}")
        if nxt.cap < prev.cap:
            raise ValueError("Segment caps must be non-decreasing")


@dataclass
class MembershipFunction:
    """A satisfaction curve over an allocated amount.

    Use the ``linear``, ``triangular``, ``trapezoidal``, ``piecewise`` and
    ``s_curve`` constructors rather than building instances directly.
    """

    kind: str
    lower: float = 0.0
    peak_left: float = 0.0
    peak_right: float = 0.0
    upper: float = 0.0
    segments: list[Segment] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.kind not in MEMBERSHIP_KINDS:
            raise ValueError(f"Unknown membership kind {self.kind!r}; expected one of {MEMBERSHIP_KINDS}")
        if self.kind == "piecewise":
            _validate_segments(self.segments)
            self.lower = self.segments[0].lower
            self.upper = self.segments[-1].upper
        elif self.kind == "s-curve":
            self.segments = build_s_curve_segments(self.lower, self.peak_left, self.peak_right, self.upper)
        elif not (self.lower <= self.peak_left <= self.peak_right <= self.upper):
            raise ValueError(
                f"{self.kind} membership requires lower <= peak_left <= peak_right <= upper, "
                f"got {self.lower}, {self.peak_left}, {self.peak_right}, {self.upper}"
            )

    @classmethod
    def linear(cls, lower: float, upper: float) -> "MembershipFunction":
        return cls("linear", lower, lower, upper, upper)

    @classmethod
    def triangular(cls, lower: float, peak: float, upper: float) -> "MembershipFunction":
        return cls("triangular", lower, peak, peak, upper)

    @classmethod
    def trapezoidal(cls, lower: float, peak_left: float, peak_right: float, upper: float) -> "MembershipFunction":
        return cls("trapezoidal", lower, peak_left, peak_right, upper)

    @classmethod
    def piecewise(cls, segments: list[Segment]) -> "MembershipFunction":
        return cls("piecewise", segments=list(segments))

    @classmethod
    def s_curve(cls, lower: float, peak_left: float, peak_right: float, upper: float) -> "MembershipFunction":
        return cls("s-curve", lower, peak_left, peak_right, upper)

    @property
    def cap(self) -> float:
        """Highest membership the curve can return."""
        if self.segments:
            return max(seg.cap for seg in self.segments)
        return 1.0

    @property
    def is_monotone(self) -> bool:
        """Whether satisfaction never falls as the amount grows."""
        return self.kind in ("linear", "piecewise", "s-curve")

    def __call__(self, value: float) -> float:
        return evaluate(self, value)


def _evaluate_peaked(function: MembershipFunction, value: float) -> float:
    lower, left, right, upper = function.lower, function.peak_left, function.peak_right, function.upper
    if value < lower or value > upper:
        return 0.0
    if value < left:
        return 1.0 if left == lower else (value - lower) / (left - lower)
    if value <= right:
        return 1.0
    return 1.0 if right == upper else (upper - value) / (upper - right)


def _evaluate_segments(segments: list[Segment], value: float) -> float:
    reached = 0.0
    for seg in segments:
        if value < seg.lower:
            break
        if value <= seg.upper:
            return seg.value_at(value)
        reached = seg.cap
    return reached


def evaluate(function: MembershipFunction, value: float) -> float:
    """Satisfaction degree of ``value`` under ``function``.

    Parameters
    ----------
    function : MembershipFunction
        Curve to evaluate.
    value : float
        Allocated amount.

    Returns
    -------
    float
        Degree in ``[0, function.cap]``. Degenerate shapes never divide by
        zero: a peak that coincides with a boundary yields ``1`` there.
    """
    if function.kind == "linear":
        if value < function.lower:
            return 0.0
        if value >= function.upper:
            return 1.0
        return (value - function.lower) / (function.upper - function.lower)
    if function.kind in ("triangular", "trapezoidal"):
        return _evaluate_peaked(function, value)
    return _evaluate_segments(function.segments, value)
