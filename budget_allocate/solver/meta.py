"""Multi-level ("meta") goal programming.

Each goal offers an ordered ladder of discrete target levels, each with a
reward for reaching it. The MILP picks at most one level per goal to
maximize priority-scaled reward; the greedy fallback climbs the ladders
tier by tier and then buys the cheapest reward upgrades inside each tier.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from budget_allocate.errors import InfeasibleMinimumsError, SolverError
from budget_allocate.models import ConstraintModel, ScenarioParameters
from budget_allocate.solver._common import (
    DEVIATION_TOLERANCE,
    LEVEL_TOLERANCE,
    Variable,
    allocate_minimums,
    group_by_priority,
    priority_scale,
)
from budget_allocate.solver._types import STATUS_OPTIMAL, MetaResult, MILPBackend
from budget_allocate.solver.backend import create_milp_backend
from budget_allocate.solver.fuzzy import goal_weight

logger = logging.getLogger(__name__)

PRIORITY_BASE = 1000.0
PRIORITY_TOP = 10
# Per-unit cost on continuous variables so the MILP does not overspend.
MILP_EPSILON = 1e-6
UPGRADE_MAX_ITERATIONS = 500
LEVEL_NONE = "none"


@dataclass
class TargetLevel:
    """One rung of a goal's ladder."""

    value: float
    reward: float
    label: str


@dataclass
class MetaGoal:
    """A goal with discrete target levels.

    Parameters
    ----------
    id : str
        Goal identifier.
    variable_index : int
        Index of the variable the goal scores.
    levels : list[TargetLevel]
        Target levels; stored sorted by ascending value.
    priority : int
        Lower value means more important.
    weight : float
        Order within the priority tier.
    description : str
        Human-readable label.
    """

    id: str
    variable_index: int
    levels: list[TargetLevel]
    priority: int = 1
    weight: float = 1.0
    description: str = ""

    def __post_init__(self) -> None:
        if not self.levels:
            raise ValueError(f"Meta goal {self.id} needs at least one level")
        self.levels = sorted(self.levels, key=lambda level: level.value)

    def reached(self, value: float) -> TargetLevel | None:
        """Highest level at or below ``value``."""
        best = None
        for level in self.levels:
            if value >= level.value - LEVEL_TOLERANCE:
                best = level
        return best


class MetaGPSolver:
    """Maximize reward over discrete goal levels within a budget.

    Parameters
    ----------
    total_income : float
        Budget to allocate.
    backend_factory : Callable[[int], MILPBackend | None], optional
        Creates a MILP backend or returns ``None`` when unavailable.
    """

    def __init__(
        self,
        total_income: float,
        backend_factory: Callable[[int], MILPBackend | None] = create_milp_backend,
    ) -> None:
        self.total_income = total_income
        self.variables: list[Variable] = []
        self.goals: list[MetaGoal] = []
        self._backend_factory = backend_factory

    def add_variable(self, variable: Variable) -> int:
        self.variables.append(variable)
        return len(self.variables) - 1

    def add_goal(self, goal: MetaGoal) -> None:
        if not (0 <= goal.variable_index < len(self.variables)):
            raise ValueError(f"Goal {goal.id} refers to unknown variable index {goal.variable_index}")
        self.goals.append(goal)

    def solve(self) -> MetaResult:
        """Allocate the budget, preferring the MILP formulation.

        Returns
        -------
        MetaResult

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

        num_columns = len(self.variables) + sum(len(g.levels) for g in self.goals)
        backend = self._backend_factory(num_columns)
        if backend is None:
            logger.warning("No MILP backend available, using greedy meta allocation")
        else:
            try:
                solution = self._solve_milp(backend, num_columns)
            except SolverError as err:
                logger.warning("Meta MILP failed (%s), falling back to greedy allocation", err)
            else:
                return self._extract(solution, "milp", 1)

        solution, iterations = self._solve_greedy()
        return self._extract(solution, "greedy", iterations)

    def _solve_milp(self, backend: MILPBackend, n: int) -> list[float]:
        n_cont = len(self.variables)
        income = self.total_income

        objective = [-MILP_EPSILON / income] * n_cont + [0.0] * (n - n_cont)
        lowest = max((g.priority for g in self.goals), default=PRIORITY_TOP)
        level_columns: list[list[int]] = []
        col = n_cont
        for goal in self.goals:
            scale = priority_scale(goal.priority, PRIORITY_BASE, PRIORITY_TOP, lowest)
            columns = []
            for level in goal.levels:
                objective[col] = level.reward * scale
                columns.append(col)
                col += 1
            level_columns.append(columns)

        logger.info("Formulating meta MILP: %d variables, %d goals, %d columns", n_cont, len(self.goals), n)
        with backend:
            backend.set_objective(objective, maximize=True)
            for i, var in enumerate(self.variables):
                backend.set_bounds(i, var.min_value, min(var.upper_bound(income), income))
            backend.add_constraint([1.0] * n_cont + [0.0] * (n - n_cont), "<=", income)
            for goal, columns in zip(self.goals, level_columns):
                choice = [0.0] * n
                for level, col in zip(goal.levels, columns):
                    backend.set_binary(col)
                    choice[col] = 1.0
                    if level.value > 0:
                        reach = [0.0] * n
                        reach[goal.variable_index] = 1.0
                        reach[col] = -level.value
                        backend.add_constraint(reach, ">=", 0.0)
                backend.add_constraint(choice, "<=", 1.0)
            result = backend.solve()

        if result["status"] != STATUS_OPTIMAL:
            raise SolverError(result["status"])
        return [
            min(max(value, var.min_value), var.upper_bound(income))
            for value, var in zip(result["solution"][:n_cont], self.variables)
        ]

    def _solve_greedy(self) -> tuple[list[float], int]:
        solution, remaining = allocate_minimums(self.variables, self.total_income)
        iterations = 0
        for priority, tier in group_by_priority(self.goals, key=lambda g: g.priority):
            tier = sorted(tier, key=lambda g: g.weight, reverse=True)
            for goal in tier:
                idx = goal.variable_index
                var = self.variables[idx]
                for level in reversed(goal.levels):
                    if var.is_bounded and level.value > var.max_value + LEVEL_TOLERANCE:
                        continue
                    needed = level.value - solution[idx]
                    if needed <= 0:
                        break
                    if needed <= remaining:
                        solution[idx] = level.value
                        remaining -= needed
                        break
                iterations += 1
            used, remaining = self._upgrade_tier(tier, solution, remaining)
            iterations += used
            logger.info("Priority %d allocated, remaining budget %.2f", priority, remaining)
        return solution, iterations

    def _upgrade_tier(self, tier: list[MetaGoal], solution: list[float], remaining: float) -> tuple[int, float]:
        """Buy the best reward-per-cost next-level upgrade until none is affordable."""
        for iteration in range(UPGRADE_MAX_ITERATIONS):
            best, best_ratio = None, 0.0
            for goal in tier:
                idx = goal.variable_index
                var = self.variables[idx]
                current = solution[idx]
                reached = goal.reached(current)
                next_level = next((lv for lv in goal.levels if lv.value > current + LEVEL_TOLERANCE), None)
                if next_level is None or (var.is_bounded and next_level.value > var.max_value + LEVEL_TOLERANCE):
                    continue
                cost = next_level.value - current
                gain = next_level.reward - (reached.reward if reached else 0.0)
                if cost <= remaining and gain > 0 and gain / cost > best_ratio:
                    best, best_ratio = (idx, next_level.value, cost), gain / cost
            if best is None:
                return iteration, remaining
            idx, value, cost = best
            solution[idx] = value
            remaining -= cost
        return UPGRADE_MAX_ITERATIONS, remaining

    def _extract(self, solution: list[float], method: str, iterations: int) -> MetaResult:
        goal_levels: dict[str, str] = {}
        goal_values: dict[str, float] = {}
        achieved, ideal = [], []
        total_reward = max_reward = 0.0
        for goal in self.goals:
            value = solution[goal.variable_index] if solution else 0.0
            reached = goal.reached(value)
            goal_values[goal.id] = value
            goal_levels[goal.id] = reached.label if reached else LEVEL_NONE
            max_reward += goal.levels[-1].reward
            if reached is not None:
                total_reward += reached.reward
                achieved.append(goal.id)
                if reached is goal.levels[-1]:
                    ideal.append(goal.id)

        logger.info("Meta GP (%s): reward %.2f of %.2f", method, total_reward, max_reward)
        return {
            "variable_values": {var.id: value for var, value in zip(self.variables, solution)},
            "goal_levels": goal_levels,
            "goal_values": goal_values,
            "total_reward": total_reward,
            "max_possible_reward": max_reward,
            "reward_ratio": total_reward / max_reward if max_reward > 0 else 0.0,
            "achieved_goals": achieved,
            "ideal_goals": ideal,
            "iterations": iterations,
            "method": method,
            "is_feasible": sum(solution) <= self.total_income + DEVIATION_TOLERANCE,
        }


def build_meta_solver(
    model: ConstraintModel,
    params: ScenarioParameters,
    backend_factory: Callable[[int], MILPBackend | None] = create_milp_backend,
) -> MetaGPSolver:
    """Populate a meta solver from a constraint model.

    Mandatory expenses get a single required level (priority 1). Debts get
    minimum, satisfactory and ideal payments (priority 2). Goals get levels at
    0, 40, 80, 100 and 120 % of their factor-adjusted contribution (priority
    3). Flexible expenses get levels between their minimum and 120 % of their
    maximum (their own priority, default 4).

    Parameters
    ----------
    model : ConstraintModel
        Input constraints. Collections are visited in sorted key order.
    params : ScenarioParameters
        Goal factor and extra-debt share.
    backend_factory : Callable[[int], MILPBackend | None], optional
        Passed through to :class:`MetaGPSolver`.

    Returns
    -------
    MetaGPSolver
    """
    solver = MetaGPSolver(model.total_income, backend_factory)

    for key, constraint in sorted(model.mandatory_expenses.items()):
        idx = solver.add_variable(Variable(key, key, "category", constraint.minimum, constraint.maximum))
        solver.add_goal(MetaGoal(key, idx, [TargetLevel(constraint.minimum, 100.0, "required")], priority=1))

    extra = params.surplus_allocation.debt_extra_percent
    for key, debt in sorted(model.debt_payments.items()):
        minimum = debt.scheduled_payment
        if debt.fixed_payment > 0:
            idx = solver.add_variable(Variable(key, debt.debt_name, "debt", minimum, minimum))
            levels = [TargetLevel(minimum, 100.0, "fixed")]
        else:
            balance = max(debt.current_balance, minimum)
            idx = solver.add_variable(Variable(key, debt.debt_name, "debt", minimum, balance))
            levels = [
                TargetLevel(minimum, 50.0, "minimum"),
                TargetLevel(min(minimum * (1 + extra * 0.5), balance), 75.0, "satisfactory"),
                TargetLevel(min(minimum * (1 + extra), balance), 100.0, "ideal"),
            ]
        solver.add_goal(MetaGoal(key, idx, levels, priority=2, weight=debt.interest_rate / 10))

    for key, goal in sorted(model.goal_targets.items()):
        target = goal.suggested_contribution * params.goal_contribution_factor
        ceiling = max(goal.remaining_amount * 1.5, target * 1.2)
        if ceiling <= 0:
            continue
        weight = goal_weight(goal.priority_weight, goal.is_emergency)
        idx = solver.add_variable(Variable(key, goal.goal_name, "goal", 0.0, ceiling))
        levels = [
            TargetLevel(target * pct / 100, weight * step, f"{pct}%")
            for step, pct in enumerate((0, 40, 80, 100, 120))
        ]
        solver.add_goal(MetaGoal(key, idx, levels, priority=3, weight=weight, description=goal.goal_name))

    for key, constraint in sorted(model.flexible_expenses.items()):
        minimum = constraint.minimum
        maximum = constraint.maximum if constraint.maximum > 0 else minimum * 1.5
        if maximum <= 0:
            continue
        span = maximum - minimum
        priority = constraint.priority or 4
        flex_weight = 4.0 if priority == 1 else 2.0
        idx = solver.add_variable(Variable(key, key, "category", minimum, maximum * 1.2))
        levels = [
            TargetLevel(minimum + span * 0.4, flex_weight, "basic"),
            TargetLevel(minimum + span * 0.8, flex_weight * 2, "comfortable"),
            TargetLevel(maximum, flex_weight * 3, "full"),
            TargetLevel(maximum * 1.2, flex_weight * 4, "generous"),
        ]
        solver.add_goal(MetaGoal(key, idx, levels, priority=priority, weight=flex_weight))

    return solver
