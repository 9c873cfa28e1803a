"""Preemptive (lexicographic) goal programming.

Goals are satisfied strictly in priority order. A tier only spends budget
that higher tiers left over, and once a tier is done its allocations become
floors that lower tiers cannot reduce.
"""

import logging
from dataclasses import dataclass

from budget_allocate.models import ConstraintModel, ScenarioParameters
from budget_allocate.solver._common import (
    DEVIATION_TOLERANCE,
    Variable,
    allocate_minimums,
    group_by_priority,
)
from budget_allocate.solver._types import STATUS_OPTIMAL, GPResult

logger = logging.getLogger(__name__)

GOAL_TYPES = ("at_least", "at_most", "exactly")


@dataclass
class GPGoal:
    """A deviation target on one variable.

    Parameters
    ----------
    id : str
        Goal identifier.
    variable_index : int
        Index of the variable the goal constrains.
    target : float
        Target value.
    goal_type : str
        ``"at_least"``, ``"at_most"`` or ``"exactly"``.
    priority : int
        Lower value means more important.
    weight : float
        Order (preemptive) or penalty multiplier (LP) within the tier.
    description : str
        Human-readable label.
    """

    id: str
    variable_index: int
    target: float
    goal_type: str = "at_least"
    priority: int = 1
    weight: float = 1.0
    description: str = ""

    def __post_init__(self) -> None:
        if self.goal_type not in GOAL_TYPES:
            raise ValueError(f"Goal type must be one of {GOAL_TYPES}, got {self.goal_type!r}")


def goal_deviation(goal: GPGoal, value: float) -> float:
    """Unwanted deviation of ``value`` from the goal's target."""
    if goal.goal_type == "at_least":
        return max(0.0, goal.target - value)
    if goal.goal_type == "at_most":
        return max(0.0, value - goal.target)
    return abs(value - goal.target)


def summarize_deviations(
    goals: list[GPGoal],
    variables: list[Variable],
    solution: list[float],
    status: str,
    iterations: int,
    total_income: float,
) -> GPResult:
    """Build a :class:`GPResult` from a solution vector.

    Parameters
    ----------
    goals : list[GPGoal]
        Goals to score.
    variables : list[Variable]
        Variables, aligned with ``solution``.
    solution : list[float]
        Allocated amount per variable.
    status : str
        Solver status to report.
    iterations : int
        Work counter to report.
    total_income : float
        Budget, for the feasibility flag.

    Returns
    -------
    GPResult
    """
    deviations = {}
    achieved, unachieved = [], []
    for goal in goals:
        deviation = goal_deviation(goal, solution[goal.variable_index])
        deviations[goal.id] = deviation
        (achieved if deviation < DEVIATION_TOLERANCE else unachieved).append(goal.id)
    within_bounds = all(
        value >= var.min_value - DEVIATION_TOLERANCE
        and (not var.is_bounded or value <= var.max_value + DEVIATION_TOLERANCE)
        for var, value in zip(variables, solution)
    )
    return {
        "status": status,
        "variable_values": {var.id: value for var, value in zip(variables, solution)},
        "goal_deviations": deviations,
        "achieved_goals": achieved,
        "unachieved_goals": unachieved,
        "total_deviation": sum(deviations.values()),
        "iterations": iterations,
        "is_feasible": within_bounds and sum(solution) <= total_income + DEVIATION_TOLERANCE,
    }


class PreemptiveGPSolver:
    """Satisfy goals tier by tier, most important first.

    Parameters
    ----------
    total_income : float
        Budget to allocate.
    """

    def __init__(self, total_income: float) -> None:
        self.total_income = total_income
        self.variables: list[Variable] = []
        self.goals: list[GPGoal] = []

    def add_variable(self, variable: Variable) -> int:
        self.variables.append(variable)
        return len(self.variables) - 1

    def add_goal(self, goal: GPGoal) -> None:
        if not (0 <= goal.variable_index < len(self.variables)):
            raise ValueError(f"Goal {goal.id} refers to unknown variable index {goal.variable_index}")
        self.goals.append(goal)

    def solve(self) -> GPResult:
        """Allocate the budget lexicographically.

        Returns
        -------
        GPResult

        Raises
        ------
        InfeasibleMinimumsError
            If variable lower bounds exceed the budget.
        """
        solution, remaining = allocate_minimums(self.variables, self.total_income)
        floors = list(solution)
        iterations = 0

        for priority, tier in group_by_priority(self.goals, key=lambda g: g.priority):
            for goal in sorted(tier, key=lambda g: g.weight, reverse=True):
                idx = goal.variable_index
                current = solution[idx]
                if goal.goal_type != "at_most" and current < goal.target:
                    amount = min(goal.target - current, remaining, self.variables[idx].headroom(current))
                    if amount > 0:
                        solution[idx] += amount
                        remaining -= amount
                elif goal.goal_type != "at_least" and current > goal.target:
                    reduction = current - max(goal.target, floors[idx])
                    if reduction > 0:
                        solution[idx] -= reduction
                        remaining += reduction
                iterations += 1
            floors = list(solution)
            logger.info("Priority %d satisfied, remaining budget %.2f", priority, remaining)

        return summarize_deviations(
            self.goals, self.variables, solution, STATUS_OPTIMAL, iterations, self.total_income
        )


def flexible_target(minimum: float, maximum: float, level: float) -> float:
    """Spending-level target between a category's minimum and maximum."""
    if maximum > 0:
        return minimum + (maximum - minimum) * level
    return minimum


def build_preemptive_solver(model: ConstraintModel, params: ScenarioParameters) -> PreemptiveGPSolver:
    """Populate a preemptive solver from a constraint model.

    Tiers: mandatory minimums (1), debt minimums (2), emergency goals (3),
    goals with priority weight up to 10 (4), extra debt payments (5), other
    goals (6) and flexible spending targets (7). All goals are at-least.

    Parameters
    ----------
    model : ConstraintModel
        Input constraints. Collections are visited in sorted key order.
    params : ScenarioParameters
        Goal factor, flexible level and extra-debt share.

    Returns
    -------
    PreemptiveGPSolver
    """
    solver = PreemptiveGPSolver(model.total_income)

    for key, constraint in sorted(model.mandatory_expenses.items()):
        idx = solver.add_variable(Variable(key, key, "category", constraint.minimum, constraint.maximum))
        solver.add_goal(GPGoal(key, idx, constraint.minimum, priority=1, description="Mandatory expense"))

    debt_index = {}
    for key, debt in sorted(model.debt_payments.items()):
        minimum = debt.scheduled_payment
        balance = max(debt.current_balance, minimum)
        idx = solver.add_variable(Variable(key, debt.debt_name, "debt", minimum, balance))
        debt_index[key] = idx
        solver.add_goal(GPGoal(key, idx, minimum, priority=2, description=f"Minimum payment for {debt.debt_name}"))

    goal_tiers = []
    for key, goal in sorted(model.goal_targets.items()):
        if goal.remaining_amount <= 0:
            continue
        idx = solver.add_variable(Variable(key, goal.goal_name, "goal", 0.0, goal.remaining_amount))
        target = goal.suggested_contribution * params.goal_contribution_factor
        if goal.is_emergency:
            tier, weight = 3, 1.0
        elif goal.priority_weight <= 10:
            tier, weight = 4, float(11 - goal.priority_weight)
        else:
            tier, weight = 6, float(100 - goal.priority_weight)
        goal_tiers.append(GPGoal(key, idx, target, priority=tier, weight=weight, description=goal.goal_name))

    for key, debt in sorted(model.debt_payments.items()):
        if debt.fixed_payment > 0:
            continue
        extra_target = debt.minimum_payment * (1 + params.surplus_allocation.debt_extra_percent)
        goal_tiers.append(
            GPGoal(
                f"{key}:extra",
                debt_index[key],
                extra_target,
                priority=5,
                weight=float(100 - debt.priority),
                description=f"Extra payment for {debt.debt_name}",
            )
        )
    for goal in goal_tiers:
        solver.add_goal(goal)

    for key, constraint in sorted(model.flexible_expenses.items()):
        idx = solver.add_variable(Variable(key, key, "category", constraint.minimum, constraint.maximum))
        target = flexible_target(constraint.minimum, constraint.maximum, params.flexible_spending_level)
        solver.add_goal(GPGoal(key, idx, target, priority=7, description="Flexible spending"))

    return solver
