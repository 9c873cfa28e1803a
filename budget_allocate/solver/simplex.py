"""Dense two-phase Simplex solver.

Solves small linear programs ``min/max c'x`` subject to ``<=``, ``>=`` and
``=`` constraints and per-variable bounds. Lower bounds are shifted out of
the problem and finite upper bounds become extra ``<=`` rows, so the tableau
works over non-negative variables only.

Implements the same backend interface as :class:`~budget_allocate.solver.backend.PulpBackend`
except for binary variables, which are rejected.
"""

import logging
import math

from budget_allocate.solver._types import (
    CONSTRAINT_OPERATORS,
    STATUS_INFEASIBLE,
    STATUS_ITERATION_LIMIT,
    STATUS_OPTIMAL,
    STATUS_UNBOUNDED,
    LPResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 1000
DEFAULT_TOLERANCE = 1e-9

_FLIPPED = {"<=": ">=", ">=": "<=", "=": "="}


def _pivot(tableau: list[list[float]], cost: list[float], basis: list[int], row: int, col: int) -> None:
    pivot_row = tableau[row]
    pivot = pivot_row[col]
    pivot_row[:] = [value / pivot for value in pivot_row]
    for i, other in enumerate(tableau):
        factor = other[col]
        if i != row and factor != 0.0:
            other[:] = [a - factor * b for a, b in zip(other, pivot_row)]
    factor = cost[col]
    if factor != 0.0:
        cost[:] = [a - factor * b for a, b in zip(cost, pivot_row)]
    basis[row] = col


class SimplexSolver:
    """Two-phase Simplex over a dense tableau.

    Parameters
    ----------
    num_vars : int
        Number of decision variables.
    max_iterations : int
        Pivot budget shared by both phases. Exhausting it yields an
        ``"Iteration Limit"`` status.
    tolerance : float
        Numerical tolerance for reduced costs, pivot elements and the
        Phase-1 feasibility test (scaled by the largest right-hand side).
    """

    name = "simplex"

    def __init__(
        self,
        num_vars: int,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        tolerance: float = DEFAULT_TOLERANCE,
    ) -> None:
        if num_vars < 0:
            raise ValueError("num_vars must be non-negative")
        self.num_vars = num_vars
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self._objective = [0.0] * num_vars
        self._maximize = False
        self._constraints: list[tuple[list[float], str, float]] = []
        self._lower = [0.0] * num_vars
        self._upper = [math.inf] * num_vars

    def __enter__(self) -> "SimplexSolver":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def _check_coeffs(self, coeffs: list[float]) -> list[float]:
        if len(coeffs) != self.num_vars:
            raise ValueError(f"Expected {self.num_vars} coefficients, got {len(coeffs)}")
        return [float(c) for c in coeffs]

    def _check_var(self, var: int) -> None:
        if not (0 <= var < self.num_vars):
            raise ValueError(f"Variable index {var} out of range for {self.num_vars} variables")

    def set_objective(self, coeffs: list[float], maximize: bool = False) -> None:
        self._objective = self._check_coeffs(coeffs)
        self._maximize = maximize

    def add_constraint(self, coeffs: list[float], op: str, rhs: float) -> None:
        if op not in CONSTRAINT_OPERATORS:
            raise ValueError(f"Constraint operator must be one of {CONSTRAINT_OPERATORS}, got {op!r}")
        self._constraints.append((self._check_coeffs(coeffs), op, float(rhs)))

    def set_bounds(self, var: int, lo: float, hi: float) -> None:
        self._check_var(var)
        if not math.isfinite(lo):
            raise ValueError("SimplexSolver requires finite lower bounds")
        self._lower[var] = lo
        self._upper[var] = hi

    def set_binary(self, var: int) -> None:
        raise ValueError("SimplexSolver does not support binary variables; use a MILP backend")

    def release(self) -> None:
        self._constraints = []

    def _result(self, status: str, solution: list[float] | None = None, iterations: int = 0) -> LPResult:
        if status != STATUS_OPTIMAL or solution is None:
            return {"status": status, "solution": [], "objective_value": None, "iterations": iterations}
        objective = sum(c * x for c, x in zip(self._objective, solution))
        return {"status": status, "solution": solution, "objective_value": objective, "iterations": iterations}

    def _solve_from_bounds(self) -> LPResult:
        """Optimize each variable independently when there are no constraints."""
        solution = []
        for c, lo, hi in zip(self._objective, self._lower, self._upper):
            gain = c if self._maximize else -c
            if gain > 0:
                if math.isinf(hi):
                    return self._result(STATUS_UNBOUNDED)
                solution.append(hi)
            else:
                solution.append(lo)
        return self._result(STATUS_OPTIMAL, solution)

    def _standard_rows(self) -> list[tuple[list[float], str, float]]:
        """Constraints over shifted variables ``y = x - lo`` with non-negative right-hand sides."""
        rows = []
        for coeffs, op, rhs in self._constraints:
            rhs -= sum(a * lo for a, lo in zip(coeffs, self._lower))
            rows.append((list(coeffs), op, rhs))
        for j, (lo, hi) in enumerate(zip(self._lower, self._upper)):
            if math.isfinite(hi):
                unit = [0.0] * self.num_vars
                unit[j] = 1.0
                rows.append((unit, "<=", hi - lo))
        normalized = []
        for coeffs, op, rhs in rows:
            if rhs < 0:
                coeffs, op, rhs = [-a for a in coeffs], _FLIPPED[op], -rhs
            normalized.append((coeffs, op, rhs))
        return normalized

    def _iterate(
        self,
        tableau: list[list[float]],
        cost: list[float],
        basis: list[int],
        allowed: range,
        budget: int,
    ) -> tuple[str, int]:
        tol = self.tolerance
        iterations = 0
        while True:
            entering, best = None, -tol
            for j in allowed:
                if cost[j] < best:
                    entering, best = j, cost[j]
            if entering is None:
                return STATUS_OPTIMAL, iterations
            if iterations >= budget:
                return STATUS_ITERATION_LIMIT, iterations

            leaving, best_ratio = None, math.inf
            for i, row in enumerate(tableau):
                if row[entering] > tol:
                    ratio = row[-1] / row[entering]
                    if ratio < best_ratio - tol or (
                        leaving is not None and abs(ratio - best_ratio) <= tol and basis[i] < basis[leaving]
                    ):
                        leaving, best_ratio = i, ratio
            if leaving is None:
                return STATUS_UNBOUNDED, iterations

            _pivot(tableau, cost, basis, leaving, entering)
            iterations += 1

    def solve(self) -> LPResult:
        """Solve the program.

        Returns
        -------
        LPResult
            Status is ``"Optimal"``, ``"Infeasible"``, ``"Unbounded"`` or
            ``"Iteration Limit"``. The solution is clamped to the declared
            bounds.
        """
        n = self.num_vars
        if n == 0:
            return {"status": STATUS_OPTIMAL, "solution": [], "objective_value": 0.0, "iterations": 0}
        if any(hi < lo - self.tolerance for lo, hi in zip(self._lower, self._upper)):
            logger.warning("Simplex: a variable has upper bound below its lower bound")
            return self._result(STATUS_INFEASIBLE)
        if not self._constraints:
            return self._solve_from_bounds()

        rows = self._standard_rows()
        num_slack = sum(1 for _, op, _ in rows if op != "=")
        num_art = sum(1 for _, op, _ in rows if op != "<=")
        art_start = n + num_slack
        width = art_start + num_art

        tableau: list[list[float]] = []
        basis: list[int] = []
        slack_col, art_col = n, art_start
        for coeffs, op, rhs in rows:
            row = coeffs + [0.0] * (width - n) + [rhs]
            if op == "<=":
                row[slack_col] = 1.0
                basis.append(slack_col)
                slack_col += 1
            else:
                if op == ">=":
                    row[slack_col] = -1.0
                    slack_col += 1
                row[art_col] = 1.0
                basis.append(art_col)
                art_col += 1
            tableau.append(row)

        # Phase 1: minimize the sum of artificial variables.
        cost = [0.0] * art_start + [1.0] * num_art + [0.0]
        for row, col in zip(tableau, basis):
            if col >= art_start:
                cost = [a - b for a, b in zip(cost, row)]
        status, iterations = self._iterate(tableau, cost, basis, range(width), self.max_iterations)
        if status != STATUS_OPTIMAL:
            logger.warning("Simplex phase 1 stopped with status %s", status)
            return self._result(status, iterations=iterations)
        scale = max([1.0] + [abs(rhs) for _, _, rhs in rows])
        if -cost[-1] > self.tolerance * scale:
            return self._result(STATUS_INFEASIBLE, iterations=iterations)

        for i, col in enumerate(basis):
            if col >= art_start:
                for j in range(art_start):
                    if abs(tableau[i][j]) > self.tolerance:
                        _pivot(tableau, cost, basis, i, j)
                        break

        # Phase 2: optimize the true objective from the Phase-1 basis.
        sign = -1.0 if self._maximize else 1.0
        cost = [sign * c for c in self._objective] + [0.0] * (width - n + 1)
        for row, col in zip(tableau, basis):
            factor = cost[col]
            if factor != 0.0:
                cost = [a - factor * b for a, b in zip(cost, row)]
        status, phase2 = self._iterate(
            tableau, cost, basis, range(art_start), self.max_iterations - iterations
        )
        iterations += phase2
        if status != STATUS_OPTIMAL:
            logger.warning("Simplex phase 2 stopped with status %s", status)
            return self._result(status, iterations=iterations)

        shifted = [0.0] * n
        for row, col in zip(tableau, basis):
            if col < n:
                shifted[col] = row[-1]
        solution = [
            min(max(lo + y, lo), hi) for y, lo, hi in zip(shifted, self._lower, self._upper)
        ]
        return self._result(STATUS_OPTIMAL, solution, iterations)
