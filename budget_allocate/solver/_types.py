"""Type definitions for the backend protocol and strategy result contracts."""

from typing import Any, Protocol, TypedDict

STATUS_OPTIMAL = "Optimal"
STATUS_INFEASIBLE = "Infeasible"
STATUS_UNBOUNDED = "Unbounded"
STATUS_ITERATION_LIMIT = "Iteration Limit"
STATUS_ERROR = "Error"

CONSTRAINT_OPERATORS = ("<=", ">=", "=")


class LPResult(TypedDict):
    """Output of a single LP or MILP solve.

    Parameters
    ----------
    status : str
        One of the ``STATUS_*`` constants.
    solution : list[float]
        Variable values, in declaration order. Empty unless optimal.
    objective_value : float | None
        Objective at the solution, or ``None`` if non-optimal.
    iterations : int
        Pivots (Simplex) or ``0`` when the backend does not report them.
    """

    status: str
    solution: list[float]
    objective_value: float | None
    iterations: int


class MILPBackend(Protocol):
    """Protocol for LP/MILP backends.

    Variables are addressed by position. All variables are continuous and
    non-negative until ``set_bounds`` or ``set_binary`` says otherwise.
    """

    name: str

    def __enter__(self) -> "MILPBackend": ...

    def __exit__(self, *exc_info) -> None: ...

    def set_objective(self, coeffs: list[float], maximize: bool) -> None: ...

    def add_constraint(self, coeffs: list[float], op: str, rhs: float) -> None: ...

    def set_bounds(self, var: int, lo: float, hi: float) -> None: ...

    def set_binary(self, var: int) -> None: ...

    def solve(self) -> LPResult: ...

    def release(self) -> None: ...


class FuzzyResult(TypedDict):
    """Result of a fuzzy goal-programming solve.

    Parameters
    ----------
    variable_values : dict[str, float]
        Allocation per variable ID.
    goal_memberships : dict[str, float]
        Satisfaction degree per goal ID.
    goal_values : dict[str, float]
        Allocation of the variable each goal refers to.
    total_membership : float
        Sum of goal memberships.
    average_membership : float
        Mean goal membership.
    weighted_membership : float
        Weight-averaged goal membership.
    achieved_goals, partial_goals, unachieved_goals : list[str]
        Goal IDs split by the 0.8 and 0.3 thresholds.
    iterations : int
        Greedy iterations, or ``1`` for a MILP solve.
    method : str
        ``"milp"``, ``"greedy"`` or ``"none"`` for degenerate input.
    is_feasible : bool
        Whether all bounds and the budget were respected.
    """

    variable_values: dict[str, float]
    goal_memberships: dict[str, float]
    goal_values: dict[str, float]
    total_membership: float
    average_membership: float
    weighted_membership: float
    achieved_goals: list[str]
    partial_goals: list[str]
    unachieved_goals: list[str]
    iterations: int
    method: str
    is_feasible: bool


class MetaResult(TypedDict):
    """Result of a multi-level (meta) goal-programming solve."""

    variable_values: dict[str, float]
    goal_levels: dict[str, str]
    goal_values: dict[str, float]
    total_reward: float
    max_possible_reward: float
    reward_ratio: float
    achieved_goals: list[str]
    ideal_goals: list[str]
    iterations: int
    method: str
    is_feasible: bool


class GPResult(TypedDict):
    """Result of a deviation-based (preemptive or LP) goal-programming solve.

    Parameters
    ----------
    status : str
        Backend status for the LP reduction, ``"Optimal"`` for preemptive.
    variable_values : dict[str, float]
        Allocation per variable ID.
    goal_deviations : dict[str, float]
        Unwanted deviation per goal: the shortfall for at-least goals, the
        excess for at-most goals and the absolute gap for exact goals.
    achieved_goals, unachieved_goals : list[str]
        Goal IDs split by a deviation tolerance of 0.01.
    total_deviation : float
        Sum of goal deviations.
    iterations : int
        Number of goals processed or solver iterations.
    is_feasible : bool
        Whether all bounds and the budget were respected.
    """

    status: str
    variable_values: dict[str, float]
    goal_deviations: dict[str, float]
    achieved_goals: list[str]
    unachieved_goals: list[str]
    total_deviation: float
    iterations: int
    is_feasible: bool


class HybridResult(TypedDict):
    """Result of the three-phase hybrid strategy.

    Parameters
    ----------
    mandatory_allocations : dict[str, float]
        Phase-1 amount per mandatory category.
    debt_min_allocations : dict[str, float]
        Phase-1 amount per debt.
    flexible_min_allocations : dict[str, float]
        Phase-1 minimum per flexible category.
    phase1_total : float
        Sum of Phase-1 allocations.
    surplus : float
        Income remaining after Phase 1.
    buckets : dict[str, Any]
        ``BudgetBucket`` per bucket name after Phase 3.
    final_allocations : dict[str, Any]
        ``AllocationDetail`` per item ID, Phase 1 and Phase 3 combined.
    total_allocated : float
        Sum of all final allocations.
    total_reward : float
        Reward collected across all items.
    max_possible_reward : float
        Reward if every item reached its top level.
    is_feasible : bool
        Always ``True``; infeasible inputs raise instead.
    """

    mandatory_allocations: dict[str, float]
    debt_min_allocations: dict[str, float]
    flexible_min_allocations: dict[str, float]
    phase1_total: float
    surplus: float
    buckets: dict[str, Any]
    final_allocations: dict[str, Any]
    total_allocated: float
    total_reward: float
    max_possible_reward: float
    is_feasible: bool
