"""Pluggable MILP backend bound to PuLP and the bundled CBC solver.

The strategies talk to a backend only through the :class:`MILPBackend`
protocol. :func:`create_milp_backend` returns ``None`` when CBC cannot be
found, which the strategies treat as a signal to use their greedy fallback.
"""

import logging
import math

import pulp as lp

from budget_allocate.errors import BackendUnavailableError
from budget_allocate.solver._types import (
    CONSTRAINT_OPERATORS,
    STATUS_ERROR,
    STATUS_INFEASIBLE,
    STATUS_OPTIMAL,
    STATUS_UNBOUNDED,
    LPResult,
    MILPBackend,
)
from budget_allocate.solver.simplex import SimplexSolver

logger = logging.getLogger(__name__)

DEFAULT_TIME_LIMIT = 30

_PULP_STATUS = {
    lp.LpStatusOptimal: STATUS_OPTIMAL,
    lp.LpStatusInfeasible: STATUS_INFEASIBLE,
    lp.LpStatusUnbounded: STATUS_UNBOUNDED,
}


class PulpBackend:
    """MILP backend solving with CBC through PuLP.

    Parameters
    ----------
    num_vars : int
        Number of decision variables.
    time_limit : float | None
        CBC wall-clock limit in seconds.
    solver : pulp.LpSolver, optional
        Solver command to use instead of ``PULP_CBC_CMD``.

    Raises
    ------
    BackendUnavailableError
        If the solver command is not available on this machine.
    """

    name = "pulp-cbc"

    def __init__(
        self,
        num_vars: int,
        time_limit: float | None = DEFAULT_TIME_LIMIT,
        solver: lp.LpSolver | None = None,
    ) -> None:
        self._solver = solver or lp.PULP_CBC_CMD(msg=False, timeLimit=time_limit)
        if not self._solver.available():
            raise BackendUnavailableError(f"Solver {self._solver.name} is not available")
        self.num_vars = num_vars
        self._prob: lp.LpProblem | None = lp.LpProblem("budget_allocation", lp.LpMinimize)
        self._vars = [lp.LpVariable(f"x_{i}", lowBound=0) for i in range(num_vars)]
        self._row = 0

    def __enter__(self) -> "PulpBackend":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def _problem(self) -> lp.LpProblem:
        if self._prob is None:
            raise BackendUnavailableError("Backend has already been released")
        return self._prob

    def _expression(self, coeffs: list[float]) -> lp.LpAffineExpression:
        if len(coeffs) != self.num_vars:
            raise ValueError(f"Expected {self.num_vars} coefficients, got {len(coeffs)}")
        return lp.lpSum(c * v for c, v in zip(coeffs, self._vars) if c != 0)

    def set_objective(self, coeffs: list[float], maximize: bool = False) -> None:
        prob = self._problem()
        prob.sense = lp.LpMaximize if maximize else lp.LpMinimize
        prob.setObjective(self._expression(coeffs))

    def add_constraint(self, coeffs: list[float], op: str, rhs: float) -> None:
        if op not in CONSTRAINT_OPERATORS:
            raise ValueError(f"Constraint operator must be one of {CONSTRAINT_OPERATORS}, got {op!r}")
        prob = self._problem()
        expr = self._expression(coeffs)
        if op == "<=":
            constraint = expr <= rhs
        elif op == ">=":
            constraint = expr >= rhs
        else:
            constraint = expr == rhs
        prob.addConstraint(constraint, name=f"c_{self._row}")
        self._row += 1

    def set_bounds(self, var: int, lo: float, hi: float) -> None:
        variable = self._vars[var]
        variable.lowBound = lo
        variable.upBound = None if math.isinf(hi) else hi

    def set_binary(self, var: int) -> None:
        variable = self._vars[var]
        variable.cat = lp.LpInteger
        variable.lowBound = 0
        variable.upBound = 1

    def solve(self) -> LPResult:
        """Run CBC and map its status.

        Returns
        -------
        LPResult
            ``"Error"`` status if the solver raised; the exception is logged.
        """
        prob = self._problem()
        try:
            prob.solve(self._solver)
        except Exception:
            logger.exception("Error solving MILP with %s", self.name)
            return {"status": STATUS_ERROR, "solution": [], "objective_value": None, "iterations": 0}

        status = _PULP_STATUS.get(prob.status, STATUS_ERROR)
        if status != STATUS_OPTIMAL:
            logger.warning("MILP status = %s", lp.LpStatus[prob.status])
            return {"status": status, "solution": [], "objective_value": None, "iterations": 0}
        return {
            "status": status,
            "solution": [v.varValue or 0.0 for v in self._vars],
            "objective_value": lp.value(prob.objective),
            "iterations": 0,
        }

    def release(self) -> None:
        self._prob = None
        self._vars = []


def create_milp_backend(num_vars: int, time_limit: float | None = DEFAULT_TIME_LIMIT) -> MILPBackend | None:
    """Create a CBC-backed MILP backend, or ``None`` if CBC is unavailable.

    Parameters
    ----------
    num_vars : int
        Number of decision variables.
    time_limit : float | None
        CBC wall-clock limit in seconds.

    Returns
    -------
    MILPBackend | None
    """
    try:
        return PulpBackend(num_vars, time_limit=time_limit)
    except BackendUnavailableError as err:
        logger.warning("MILP backend unavailable: %s", err)
        return None


def create_lp_backend(kind: str, num_vars: int) -> MILPBackend:
    """Create a continuous LP backend by name.

    Parameters
    ----------
    kind : str
        ``"simplex"`` for the built-in solver or ``"pulp"`` for CBC.
    num_vars : int
        Number of decision variables.

    Returns
    -------
    MILPBackend

    Raises
    ------
    ValueError
        If ``kind`` is unknown.
    BackendUnavailableError
        If ``"pulp"`` is requested but CBC is missing.
    """
    if kind == "simplex":
        return SimplexSolver(num_vars)
    if kind == "pulp":
        return PulpBackend(num_vars)
    raise ValueError(f"Unknown LP backend {kind!r}; expected 'simplex' or 'pulp'")
