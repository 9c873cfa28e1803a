"""Shared utilities for the goal-programming strategies.

Contains the decision variable record, priority grouping, priority-scaling
factors for single-objective MILPs, goal categorization thresholds and the
greedy minimum-allocation phase.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar

from budget_allocate.errors import InfeasibleMinimumsError

logger = logging.getLogger(__name__)

ACHIEVED_THRESHOLD = 0.8
PARTIAL_THRESHOLD = 0.3
DEVIATION_TOLERANCE = 0.01
LEVEL_TOLERANCE = 0.01

VARIABLE_KINDS = ("category", "debt", "goal")

T = TypeVar("T")


@dataclass
class Variable:
    """A decision variable: the amount allocated to one item.

    Parameters
    ----------
    id : str
        Item identifier.
    name : str
        Human-readable name.
    kind : str
        One of ``"category"``, ``"debt"``, ``"goal"``.
    min_value : float
        Lower bound.
    max_value : float
        Upper bound; ``0`` means unbounded above.
    """

    id: str
    name: str = ""
    kind: str = "goal"
    min_value: float = 0.0
    max_value: float = 0.0

    def __post_init__(self) -> None:
        if self.kind not in VARIABLE_KINDS:
            raise ValueError(f"Variable kind must be one of {VARIABLE_KINDS}, got {self.kind!r}")
        if self.min_value < 0 or self.max_value < 0:
            raise ValueError(f"Variable {self.id} bounds must be non-negative")
        if self.max_value > 0 and self.max_value < self.min_value:
            raise ValueError(f"Variable {self.id} has max_value below min_value")

    @property
    def is_bounded(self) -> bool:
        return self.max_value > 0

    def upper_bound(self, fallback: float) -> float:
        """Finite upper bound, using ``fallback`` when the variable is unbounded."""
        if self.is_bounded:
            return self.max_value
        return max(fallback, self.min_value)

    def headroom(self, current: float) -> float:
        """Amount that can still be added before hitting the upper bound."""
        if not self.is_bounded:
            return float("inf")
        return max(0.0, self.max_value - current)


def group_by_priority(items: Iterable[T], key: Callable[[T], int]) -> list[tuple[int, list[T]]]:
    """Group items by priority in ascending priority order.

    Parameters
    ----------
    items : Iterable[T]
        Items to group. Insertion order is kept inside each group.
    key : Callable[[T], int]
        Extracts the priority of an item.

    Returns
    -------
    list[tuple[int, list[T]]]
        ``(priority, items)`` pairs, most important (lowest) priority first.
    """
    groups: dict[int, list[T]] = {}
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return sorted(groups.items())


def priority_scale(priority: int, base: float, top: int, lowest: int | None = None) -> float:
    """Objective multiplier approximating lexicographic priority.

    Returns ``base ** max(0, top - priority)``. Priorities at or beyond
    ``top`` share a multiplier of ``1``, so ordering between them is not
    enforced. This is a heuristic, not a guaranteed lexicographic solve.

    When ``lowest`` (the least important priority in the model) is given and
    below ``top``, the exponent is measured from it instead. Every multiplier
    shrinks by the same factor, so ratios between tiers are unchanged.
    """
    if lowest is not None:
        top = min(top, lowest)
    return base ** max(0, top - priority)


def categorize_membership(membership: float) -> str:
    """Classify a satisfaction degree as achieved, partial or unachieved."""
    if membership >= ACHIEVED_THRESHOLD:
        return "achieved"
    if membership >= PARTIAL_THRESHOLD:
        return "partial"
    return "unachieved"


def allocate_minimums(variables: list[Variable], total_income: float) -> tuple[list[float], float]:
    """Start every variable at its lower bound.

    Parameters
    ----------
    variables : list[Variable]
        Decision variables in declaration order.
    total_income : float
        Budget available.

    Returns
    -------
    tuple[list[float], float]
        ``(solution, remaining)``.

    Raises
    ------
    InfeasibleMinimumsError
        If the lower bounds exceed the budget.
    """
    solution = [v.min_value for v in variables]
    committed = sum(solution)
    if committed > total_income + DEVIATION_TOLERANCE:
        deficit = committed - total_income
        logger.warning("Minimum allocations exceed income by %.2f", deficit)
        raise InfeasibleMinimumsError(deficit)
    return solution, max(0.0, total_income - committed)
