"""Goal programming reduced to a single weighted LP.

Every goal gets deviation variables ``d-`` and ``d+`` with
``x + d- - d+ = target``. The objective minimizes the weighted unwanted
deviations (``d-`` for at-least, ``d+`` for at-most, both for exact goals)
subject to ``sum(x) <= income`` and the variable bounds. Column layout is
all ``x`` first, then all ``d-``, then all ``d+``.
"""

import logging

from budget_allocate.errors import SolverError
from budget_allocate.models import ConstraintModel, ScenarioParameters
from budget_allocate.solver._common import Variable, allocate_minimums
from budget_allocate.solver._types import STATUS_OPTIMAL, GPResult
from budget_allocate.solver.backend import create_lp_backend
from budget_allocate.solver.preemptive import GPGoal, flexible_target, summarize_deviations

logger = logging.getLogger(__name__)


class LPGoalSolver:
    """Weighted deviation minimization solved once by an LP backend.

    Parameters
    ----------
    total_income : float
        Budget to allocate.
    backend : str
        ``"simplex"`` (default) or ``"pulp"``.
    """

    def __init__(self, total_income: float, backend: str = "simplex") -> None:
        self.total_income = total_income
        self.backend = backend
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
        """Build and solve the deviation LP.

        Returns
        -------
        GPResult

        Raises
        ------
        InfeasibleMinimumsError
            If variable lower bounds exceed the budget.
        SolverError
            If the backend does not reach an optimal solution.
        """
        income = self.total_income
        n_vars, n_goals = len(self.variables), len(self.goals)
        if n_vars == 0:
            return summarize_deviations([], [], [], STATUS_OPTIMAL, 0, income)
        allocate_minimums(self.variables, income)
        n = n_vars + 2 * n_goals

        objective = [0.0] * n
        for k, goal in enumerate(self.goals):
            if goal.goal_type != "at_most":
                objective[n_vars + k] += goal.weight
            if goal.goal_type != "at_least":
                objective[n_vars + n_goals + k] += goal.weight

        logger.info("Formulating LP goal program: %d variables, %d goals, backend=%s", n_vars, n_goals, self.backend)
        with create_lp_backend(self.backend, n) as backend:
            backend.set_objective(objective, maximize=False)
            for i, var in enumerate(self.variables):
                backend.set_bounds(i, var.min_value, var.upper_bound(income))
            for k, goal in enumerate(self.goals):
                backend.set_bounds(n_vars + k, 0.0, max(goal.target, income))
                backend.set_bounds(n_vars + n_goals + k, 0.0, income)
                row = [0.0] * n
                row[goal.variable_index] = 1.0
                row[n_vars + k] = 1.0
                row[n_vars + n_goals + k] = -1.0
                backend.add_constraint(row, "=", goal.target)
            backend.add_constraint([1.0] * n_vars + [0.0] * (2 * n_goals), "<=", income)
            result = backend.solve()

        status = result["status"]
        if status != STATUS_OPTIMAL:
            logger.warning("LP goal program returned status %s", status)
            raise SolverError(status)
        logger.info("LP goal program solved: objective=%.4f", result["objective_value"])
        return summarize_deviations(
            self.goals, self.variables, result["solution"][:n_vars], status, result["iterations"], income
        )


def build_lp_solver(model: ConstraintModel, params: ScenarioParameters, backend: str = "simplex") -> LPGoalSolver:
    """Populate an LP goal solver from a constraint model.

    Penalty weights: mandatory 100, debt 80, emergency goals 50, goals with
    priority weight up to 10 get 30, other goals 10, flexible targets 5.

    Parameters
    ----------
    model : ConstraintModel
        Input constraints. Collections are visited in sorted key order.
    params : ScenarioParameters
        Goal factor and flexible spending level.
    backend : str
        ``"simplex"`` or ``"pulp"``.

    Returns
    -------
    LPGoalSolver
    """
    solver = LPGoalSolver(model.total_income, backend)

    for key, constraint in sorted(model.mandatory_expenses.items()):
        idx = solver.add_variable(Variable(key, key, "category", constraint.minimum, constraint.maximum))
        solver.add_goal(GPGoal(key, idx, constraint.minimum, priority=1, weight=100.0))

    for key, debt in sorted(model.debt_payments.items()):
        minimum = debt.scheduled_payment
        idx = solver.add_variable(Variable(key, debt.debt_name, "debt", minimum, max(debt.current_balance, minimum)))
        solver.add_goal(GPGoal(key, idx, minimum, priority=2, weight=80.0))

    for key, goal in sorted(model.goal_targets.items()):
        if goal.remaining_amount <= 0:
            continue
        if goal.is_emergency:
            priority, weight = 3, 50.0
        elif goal.priority_weight <= 10:
            priority, weight = 4, 30.0
        else:
            priority, weight = 6, 10.0
        idx = solver.add_variable(Variable(key, goal.goal_name, "goal", 0.0, goal.remaining_amount))
        target = goal.suggested_contribution * params.goal_contribution_factor
        solver.add_goal(GPGoal(key, idx, target, priority=priority, weight=weight, description=goal.goal_name))

    for key, constraint in sorted(model.flexible_expenses.items()):
        idx = solver.add_variable(Variable(key, key, "category", constraint.minimum, constraint.maximum))
        target = flexible_target(constraint.minimum, constraint.maximum, params.flexible_spending_level)
        solver.add_goal(GPGoal(key, idx, target, priority=7, weight=5.0))

    return solver
