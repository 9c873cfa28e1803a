"""Piecewise linearization of membership curves for MILP backends.

Each goal's curve is cut into linear segments covering ``[0, M]``. One
binary indicator per segment selects the active piece; big-M constraints
tie the goal's variable to the active piece's domain:

    sum(b_k) = 1
    x - lower_k * b_k >= 0
    x + (M - upper_k) * b_k <= M

A membership column ``u`` per goal is bounded by the active piece's line,
``u <= slope_k * x + intercept_k + C_k * (1 - b_k)``, so maximizing ``u``
values the curve exactly, including its falling side.
"""

from dataclasses import dataclass

from budget_allocate.solver._types import MILPBackend
from budget_allocate.solver.membership import MembershipFunction, Segment


def _core_segments(function: MembershipFunction) -> list[Segment]:
    lower, left, right, upper = function.lower, function.peak_left, function.peak_right, function.upper
    if function.kind == "linear":
        if upper <= lower:
            return [Segment(lower, lower, 0.0, 1.0, 1.0)]
        slope = 1 / (upper - lower)
        return [Segment(lower, upper, slope, -lower * slope, 1.0)]
    if function.kind in ("triangular", "trapezoidal"):
        core = []
        if left > lower:
            slope = 1 / (left - lower)
            core.append(Segment(lower, left, slope, -lower * slope, 1.0))
        if right > left:
            core.append(Segment(left, right, 0.0, 1.0, 1.0))
        if upper > right:
            slope = -1 / (upper - right)
            core.append(Segment(right, upper, slope, 1 - right * slope, 1.0))
        return core or [Segment(lower, upper, 0.0, 1.0, 1.0)]
    return list(function.segments)


def decompose(function: MembershipFunction, ceiling: float) -> list[Segment]:
    """Cut a membership curve into segments covering ``[0, ceiling]``.

    Parameters
    ----------
    function : MembershipFunction
        Curve to decompose.
    ceiling : float
        Largest value the goal's variable can take.

    Returns
    -------
    list[Segment]
        Contiguous segments. A flat zero segment is prepended when the curve
        starts above zero; a flat tail is appended up to ``ceiling`` that
        holds the last cap for monotone curves and zero otherwise.
    """
    core = _core_segments(function)
    segments = []
    if core[0].lower > 0:
        segments.append(Segment(0.0, core[0].lower, 0.0, 0.0, 0.0))
    segments.extend(core)
    last = core[-1]
    if ceiling > last.upper:
        tail = last.cap if function.is_monotone else 0.0
        segments.append(Segment(last.upper, ceiling, 0.0, tail, tail))
    return segments


@dataclass
class SegmentBlock:
    """Columns for one goal.

    Parameters
    ----------
    goal_id : str
        Goal the block belongs to.
    variable_index : int
        Column of the goal's continuous variable.
    segments : list[Segment]
        Linear pieces of the goal's curve.
    indicators : list[int]
        Binary column per segment.
    membership_column : int
        Continuous column holding the goal's satisfaction degree.
    cap : float
        Highest satisfaction degree of the curve.
    weight : float
        Objective multiplier (goal weight times priority scale).
    """

    goal_id: str
    variable_index: int
    segments: list[Segment]
    indicators: list[int]
    membership_column: int
    cap: float
    weight: float


class PiecewiseLinearization:
    """Allocates indicator and membership columns and emits the big-M encoding.

    Parameters
    ----------
    num_continuous : int
        Number of decision columns preceding the generated ones.
    big_m : float
        Upper bound on any decision variable, normally total income.
    """

    def __init__(self, num_continuous: int, big_m: float) -> None:
        self.num_continuous = num_continuous
        self.big_m = big_m
        self.blocks: list[SegmentBlock] = []
        self._next_column = num_continuous

    @property
    def num_vars(self) -> int:
        """Total number of columns, decision, membership and binary."""
        return self._next_column

    def add_goal(self, goal_id: str, variable_index: int, function: MembershipFunction, weight: float) -> SegmentBlock:
        segments = decompose(function, self.big_m)
        membership_column = self._next_column
        indicators = list(range(membership_column + 1, membership_column + 1 + len(segments)))
        self._next_column = membership_column + 1 + len(segments)
        cap = max(seg.cap for seg in segments)
        block = SegmentBlock(goal_id, variable_index, segments, indicators, membership_column, cap, weight)
        self.blocks.append(block)
        return block

    def objective_terms(self) -> dict[int, float]:
        """Objective coefficient per membership column."""
        return {block.membership_column: block.weight for block in self.blocks}

    def apply(self, backend: MILPBackend) -> None:
        """Declare the indicators binary and add the linking constraints."""
        n, big_m = self.num_vars, self.big_m
        for block in self.blocks:
            x, u = block.variable_index, block.membership_column
            backend.set_bounds(u, 0.0, block.cap)
            selector = [0.0] * n
            for col in block.indicators:
                backend.set_binary(col)
                selector[col] = 1.0
            backend.add_constraint(selector, "=", 1.0)

            for seg, col in zip(block.segments, block.indicators):
                floor = [0.0] * n
                floor[x] = 1.0
                floor[col] = -seg.lower
                backend.add_constraint(floor, ">=", 0.0)

                ceiling = [0.0] * n
                ceiling[x] = 1.0
                ceiling[col] = big_m - seg.upper
                backend.add_constraint(ceiling, "<=", big_m)

                # Inactive pieces must not bind u anywhere on [0, M].
                relax = block.cap + abs(seg.slope) * big_m + abs(seg.intercept)
                line = [0.0] * n
                line[u] = 1.0
                line[x] = -seg.slope
                line[col] = relax
                backend.add_constraint(line, "<=", seg.intercept + relax)

    def active_segments(self, solution: list[float]) -> dict[str, Segment | None]:
        """Segment selected for each goal in a solved model."""
        active: dict[str, Segment | None] = {}
        for block in self.blocks:
            active[block.goal_id] = next(
                (seg for seg, col in zip(block.segments, block.indicators) if solution[col] > 0.5),
                None,
            )
        return active
