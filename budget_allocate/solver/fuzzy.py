"""Fuzzy goal programming.

Each goal carries a membership function; the solver maximizes weighted
satisfaction across goals, approximating strict priority order by scaling
each goal's weight by ``100 ** (3 - priority)``.

The MILP formulation linearizes every curve with
:class:`~budget_allocate.solver.linearize.PiecewiseLinearization`. When no
MILP backend is available, or the MILP does not reach optimality, a greedy
heuristic climbs each priority tier in small increments instead.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from budget_allocate.errors import InfeasibleMinimumsError, SolverError
from budget_allocate.models import ConstraintModel, ScenarioParameters
from budget_allocate.solver._common import (
    DEVIATION_TOLERANCE,
    Variable,
    allocate_minimums,
    categorize_membership,
    group_by_priority,
    priority_scale,
)
from budget_allocate.solver._types import STATUS_OPTIMAL, FuzzyResult, MILPBackend
from budget_allocate.solver.backend import create_milp_backend
from budget_allocate.solver.linearize import PiecewiseLinearization
from budget_allocate.solver.membership import MembershipFunction, segments_through

logger = logging.getLogger(__name__)

PRIORITY_BASE = 100.0
PRIORITY_TOP = 3
# Per-unit reward on continuous variables, relative to one unit of membership.
MILP_EPSILON = 1e-5

GREEDY_MAX_ITERATIONS = 500
REFINE_MAX_ITERATIONS = 100
MIN_GAIN = 0.001
MIN_STEP = 0.01

FLEXIBLE_TIERS = ((1 / 3, 1.0), (2 / 3, 1.7), (1.0, 2.0))
FLEXIBLE_SURPLUS_MEMBERSHIP = 2.1


@dataclass
class FuzzyGoal:
    """A satisfaction goal on one variable.

    Parameters
    ----------
    id : str
        Goal identifier.
    variable_index : int
        Index of the variable the goal scores.
    membership : MembershipFunction
        Satisfaction curve over the variable's value.
    priority : int
        Lower value means more important.
    weight : float
        Multiplier within the priority tier.
    description : str
        Human-readable label.
    """

    id: str
    variable_index: int
    membership: MembershipFunction
    priority: int = 1
    weight: float = 1.0
    description: str = ""


def _useful_limit(goal: FuzzyGoal) -> float:
    """Largest value that can still raise the goal's satisfaction."""
    function = goal.membership
    if function.kind in ("triangular", "trapezoidal"):
        return function.peak_right
    if function.kind == "linear":
        return function.upper
    return function.segments[-1].upper


class FuzzyGPSolver:
    """Maximize weighted membership across goals within a budget.

    Parameters
    ----------
    total_income : float
        Budget to allocate. Allocations never exceed it.
    backend_factory : Callable[[int], MILPBackend | None], optional
        Creates a MILP backend for a given number of columns, or returns
        ``None`` when none is available. Defaults to
        :func:`~budget_allocate.solver.backend.create_milp_backend`.
    """

    def __init__(
        self,
        total_income: float,
        backend_factory: Callable[[int], MILPBackend | None] = create_milp_backend,
    ) -> None:
        self.total_income = total_income
        self.variables: list[Variable] = []
        self.goals: list[FuzzyGoal] = []
        self._backend_factory = backend_factory

    def add_variable(self, variable: Variable) -> int:
        self.variables.append(variable)
        return len(self.variables) - 1

    def add_goal(self, goal: FuzzyGoal) -> None:
        if not (0 <= goal.variable_index < len(self.variables)):
            raise ValueError(f"Goal {goal.id} refers to unknown variable index {goal.variable_index}")
        self.goals.append(goal)

    def _scaled_weight(self, goal: FuzzyGoal) -> float:
        lowest = max(g.priority for g in self.goals)
        return goal.weight * priority_scale(goal.priority, PRIORITY_BASE, PRIORITY_TOP, lowest)

    def solve(self) -> FuzzyResult:
        """Allocate the budget, preferring the MILP formulation.

        Returns
        -------
        FuzzyResult

        Raises
        ------
        InfeasibleMinimumsError
            If variable lower bounds exceed the budget.
        """
        if not self.variables:
            return self._extract([], "none", 0)
        committed = sum(v.min_value for v in self.variables)
        if committed > self.total_income + DEVIATION_TOLERANCE:
            raise InfeasibleMinimumsError(committed - self.total_income)
        if self.total_income <= 0:
            return self._extract([0.0] * len(self.variables), "none", 0)

        linearization = PiecewiseLinearization(len(self.variables), self.total_income)
        for goal in self.goals:
            linearization.add_goal(goal.id, goal.variable_index, goal.membership, self._scaled_weight(goal))

        backend = self._backend_factory(linearization.num_vars)
        if backend is None:
            logger.warning("No MILP backend available, using greedy fuzzy allocation")
        else:
            try:
                solution = self._solve_milp(backend, linearization)
            except SolverError as err:
                logger.warning("Fuzzy MILP failed (%s), falling back to greedy allocation", err)
            else:
                return self._extract(solution, "milp", 1)

        solution, iterations = self._solve_greedy()
        return self._extract(solution, "greedy", iterations)

    def _solve_milp(self, backend: MILPBackend, linearization: PiecewiseLinearization) -> list[float]:
        n_cont = len(self.variables)
        n = linearization.num_vars
        big_m = linearization.big_m

        objective = [0.0] * n
        for col, coef in linearization.objective_terms().items():
            objective[col] = coef
        for goal in self.goals:
            objective[goal.variable_index] += MILP_EPSILON * self._scaled_weight(goal) / big_m

        logger.info("Formulating fuzzy MILP: %d variables, %d goals, %d columns", n_cont, len(self.goals), n)
        with backend:
            backend.set_objective(objective, maximize=True)
            for i, var in enumerate(self.variables):
                backend.set_bounds(i, var.min_value, min(var.upper_bound(big_m), big_m))
            budget = [1.0] * n_cont + [0.0] * (n - n_cont)
            backend.add_constraint(budget, "<=", self.total_income)
            linearization.apply(backend)
            result = backend.solve()

        if result["status"] != STATUS_OPTIMAL:
            raise SolverError(result["status"])
        return [
            min(max(value, var.min_value), var.upper_bound(big_m))
            for value, var in zip(result["solution"][:n_cont], self.variables)
        ]

    def _solve_greedy(self) -> tuple[list[float], int]:
        solution, remaining = allocate_minimums(self.variables, self.total_income)
        iterations = 0
        for priority, goals in group_by_priority(self.goals, key=lambda g: g.priority):
            used, remaining = self._climb(goals, solution, remaining, max(remaining / 200, 0.5), GREEDY_MAX_ITERATIONS)
            iterations += used
            used, remaining = self._climb(goals, solution, remaining, max(remaining / 50, 1.0), REFINE_MAX_ITERATIONS)
            iterations += used
            logger.info("Priority %d allocated, remaining budget %.2f", priority, remaining)

        remaining = self._spend_on_goals(solution, remaining)
        remaining = self._spend_on_flexible(solution, remaining)
        self._spend_on_headroom(solution, remaining)
        return solution, iterations

    def _climb(
        self,
        goals: list[FuzzyGoal],
        solution: list[float],
        remaining: float,
        increment: float,
        limit: int,
    ) -> tuple[int, float]:
        """Share ``increment``-sized steps among goals by marginal satisfaction gain."""
        for iteration in range(limit):
            options = []
            for goal in goals:
                idx = goal.variable_index
                current = solution[idx]
                step = min(increment, remaining, self.variables[idx].headroom(current))
                if step <= MIN_STEP:
                    continue
                gain = (goal.membership(current + step) - goal.membership(current)) * goal.weight
                if gain > MIN_GAIN:
                    options.append((goal, step, gain))
            if not options:
                return iteration, remaining

            total_gain = sum(gain for _, _, gain in options)
            progressed = False
            for goal, step, gain in sorted(options, key=lambda o: o[2] / o[1], reverse=True):
                idx = goal.variable_index
                share = min(increment * gain / total_gain, step, remaining, self.variables[idx].headroom(solution[idx]))
                if share > MIN_STEP:
                    solution[idx] += share
                    remaining -= share
                    progressed = True
            if not progressed:
                return iteration + 1, remaining
        return limit, remaining

    def _room(self, goal: FuzzyGoal, solution: list[float]) -> float:
        idx = goal.variable_index
        current = solution[idx]
        return max(0.0, min(self.variables[idx].headroom(current), _useful_limit(goal) - current))

    def _spend_on_goals(self, solution: list[float], remaining: float) -> float:
        """Give leftover budget to the goal with the best satisfaction gain per unit, repeatedly."""
        ordered = [g for _, tier in group_by_priority(self.goals, key=lambda g: g.priority) for g in tier]
        for _ in range(len(ordered)):
            best, best_ratio, best_step = None, 0.0, 0.0
            for goal in ordered:
                current = solution[goal.variable_index]
                step = min(remaining, self._room(goal, solution))
                if step <= MIN_STEP:
                    continue
                gain = (goal.membership(current + step) - goal.membership(current)) * goal.weight
                if gain > 0 and gain / step > best_ratio:
                    best, best_ratio, best_step = goal, gain / step, step
            if best is None:
                break
            solution[best.variable_index] += best_step
            remaining -= best_step
        return remaining

    def _spend_on_flexible(self, solution: list[float], remaining: float) -> float:
        """Spread leftover budget over category goals in proportion to their targets."""
        category_goals = [g for g in self.goals if self.variables[g.variable_index].kind == "category"]
        if not category_goals:
            return remaining
        increment = remaining / 50
        for _ in range(REFINE_MAX_ITERATIONS):
            open_goals = [g for g in category_goals if self._room(g, solution) > MIN_STEP]
            total_target = sum(_useful_limit(g) for g in open_goals)
            if remaining <= MIN_STEP or total_target <= 0:
                break
            for goal in open_goals:
                share = min(increment * _useful_limit(goal) / total_target, self._room(goal, solution), remaining)
                solution[goal.variable_index] += share
                remaining -= share
        return remaining

    def _spend_on_headroom(self, solution: list[float], remaining: float) -> float:
        """Place what is left on any variable that can take it without losing satisfaction."""
        for idx, var in enumerate(self.variables):
            if remaining <= MIN_STEP:
                break
            room = var.headroom(solution[idx])
            for goal in self.goals:
                if goal.variable_index == idx and not goal.membership.is_monotone:
                    room = min(room, max(0.0, goal.membership.peak_right - solution[idx]))
            amount = min(room, remaining)
            if amount > 0:
                solution[idx] += amount
                remaining -= amount
        return remaining

    def _extract(self, solution: list[float], method: str, iterations: int) -> FuzzyResult:
        variable_values = {var.id: value for var, value in zip(self.variables, solution)}
        memberships: dict[str, float] = {}
        goal_values: dict[str, float] = {}
        buckets: dict[str, list[str]] = {"achieved": [], "partial": [], "unachieved": []}
        weighted_sum = total_weight = 0.0
        for goal in self.goals:
            value = solution[goal.variable_index] if solution else 0.0
            membership = goal.membership(value)
            memberships[goal.id] = membership
            goal_values[goal.id] = value
            buckets[categorize_membership(membership)].append(goal.id)
            weighted_sum += membership * goal.weight
            total_weight += goal.weight

        total = sum(memberships.values())
        within_budget = sum(solution) <= self.total_income + DEVIATION_TOLERANCE
        within_bounds = all(
            value >= var.min_value - DEVIATION_TOLERANCE
            and (not var.is_bounded or value <= var.max_value + DEVIATION_TOLERANCE)
            for var, value in zip(self.variables, solution)
        )
        logger.info(
            "Fuzzy GP (%s): %d achieved, %d partial, %d unachieved",
            method,
            len(buckets["achieved"]),
            len(buckets["partial"]),
            len(buckets["unachieved"]),
        )
        return {
            "variable_values": variable_values,
            "goal_memberships": memberships,
            "goal_values": goal_values,
            "total_membership": total,
            "average_membership": total / len(self.goals) if self.goals else 0.0,
            "weighted_membership": weighted_sum / total_weight if total_weight > 0 else 0.0,
            "achieved_goals": buckets["achieved"],
            "partial_goals": buckets["partial"],
            "unachieved_goals": buckets["unachieved"],
            "iterations": iterations,
            "method": method,
            "is_feasible": within_budget and within_bounds,
        }


def goal_weight(priority_weight: int, is_emergency: bool = False) -> float:
    """Goal weight derived from the goal's priority weight."""
    if is_emergency:
        return 6.0
    if priority_weight <= 1:
        return 5.0
    if priority_weight <= 10:
        return 3.0
    if priority_weight <= 20:
        return 2.0
    return 1.0


def _flexible_weight(priority: int) -> float:
    if priority <= 2:
        return 3.0
    if priority <= 4:
        return 2.0
    if priority <= 6:
        return 1.5
    return 1.0


def flexible_membership(minimum: float, maximum: float, level: float) -> tuple[MembershipFunction, float]:
    """Four-tier satisfaction curve for a flexible category.

    Parameters
    ----------
    minimum, maximum : float
        Category bounds; a zero maximum defaults to three times the minimum.
    level : float
        Flexible spending level in ``[0, 1]``.

    Returns
    -------
    tuple[MembershipFunction, float]
        The curve and the surplus ceiling at which it saturates.
    """
    if maximum <= 0:
        maximum = minimum * 3
    target = minimum + (maximum - minimum) * level
    surplus_max = min(target * 1.2, maximum * 1.2)
    points = [(minimum, 0.0)]
    points += [(minimum + (target - minimum) * fraction, membership) for fraction, membership in FLEXIBLE_TIERS]
    points.append((surplus_max, FLEXIBLE_SURPLUS_MEMBERSHIP))
    return MembershipFunction.piecewise(segments_through(points)), surplus_max


def build_fuzzy_solver(
    model: ConstraintModel,
    params: ScenarioParameters,
    backend_factory: Callable[[int], MILPBackend | None] = create_milp_backend,
) -> FuzzyGPSolver:
    """Populate a fuzzy solver from a constraint model.

    Mandatory expenses get a narrow trapezoid around their amount (priority
    1), debts a linear curve from minimum payment to balance (priority 2),
    goals an S-curve peaking at the factor-adjusted suggested contribution
    (priority 3), and flexible expenses a tiered curve toward the
    spending-level target (their own priority, default 4).

    Parameters
    ----------
    model : ConstraintModel
        Input constraints. Collections are visited in sorted key order.
    params : ScenarioParameters
        Goal factor and flexible spending level.
    backend_factory : Callable[[int], MILPBackend | None], optional
        Passed through to :class:`FuzzyGPSolver`.

    Returns
    -------
    FuzzyGPSolver
    """
    solver = FuzzyGPSolver(model.total_income, backend_factory)

    for key, constraint in sorted(model.mandatory_expenses.items()):
        target = constraint.minimum
        if max(target, constraint.maximum) <= 0:
            continue
        idx = solver.add_variable(Variable(key, key, "category", target, constraint.maximum or target))
        tolerance = target * 0.05
        membership = MembershipFunction.trapezoidal(
            target - 2 * tolerance, target - tolerance, target + tolerance, target + 2 * tolerance
        )
        solver.add_goal(FuzzyGoal(key, idx, membership, priority=1, weight=10.0, description="Mandatory expense"))

    for key, debt in sorted(model.debt_payments.items()):
        low = debt.minimum_payment
        high = max(debt.current_balance, low)
        if debt.fixed_payment > 0:
            low = high = debt.fixed_payment
        if high <= 0:
            continue
        idx = solver.add_variable(Variable(key, debt.debt_name, "debt", low, high))
        solver.add_goal(
            FuzzyGoal(
                key,
                idx,
                MembershipFunction.linear(low, high),
                priority=2,
                weight=debt.interest_rate * 10,
                description=f"Debt: {debt.debt_name}",
            )
        )

    for key, goal in sorted(model.goal_targets.items()):
        target = goal.suggested_contribution * params.goal_contribution_factor
        ceiling = max(goal.remaining_amount * 1.5, target * 1.2)
        if ceiling <= 0:
            continue
        idx = solver.add_variable(Variable(key, goal.goal_name, "goal", 0.0, ceiling))
        solver.add_goal(
            FuzzyGoal(
                key,
                idx,
                MembershipFunction.s_curve(0.0, target * 0.3, target * 0.7, target),
                priority=3,
                weight=goal_weight(goal.priority_weight, goal.is_emergency),
                description=goal.goal_name,
            )
        )

    for key, constraint in sorted(model.flexible_expenses.items()):
        membership, surplus_max = flexible_membership(
            constraint.minimum, constraint.maximum, params.flexible_spending_level
        )
        if surplus_max <= 0:
            continue
        idx = solver.add_variable(Variable(key, key, "category", constraint.minimum, surplus_max))
        priority = constraint.priority or 4
        solver.add_goal(
            FuzzyGoal(key, idx, membership, priority, _flexible_weight(priority), "Flexible expense")
        )

    return solver
