"""ALLOCATE component: turns a constraint model into a normalized budget.

Mandatory expenses and scheduled debt payments are resolved heuristically
and never handed to a solver. Flexible expenses and goals are solved by the
selected strategy against the income left over; the merged result is
rounded and then normalized so that the total equals income.
"""

import logging
import math
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from budget_allocate.errors import InfeasibleMinimumsError
from budget_allocate.models import (
    AllocationResult,
    CategoryConstraint,
    ConstraintModel,
    DebtConstraint,
    DebtPayment,
    GoalConstraint,
    ScenarioParameters,
    SurplusAllocation,
)
from budget_allocate.scenarios import ScenarioOutcome, SensitivityReport, analyze_sensitivity, generate_scenarios
from budget_allocate.solver._types import MILPBackend
from budget_allocate.solver.backend import create_milp_backend
from budget_allocate.solver.fuzzy import build_fuzzy_solver
from budget_allocate.solver.hybrid import LEVEL_PARTIAL, HybridGPSolver
from budget_allocate.solver.lp_goal import build_lp_solver
from budget_allocate.solver.meta import LEVEL_NONE, build_meta_solver
from budget_allocate.solver.preemptive import build_preemptive_solver, flexible_target

logger = logging.getLogger(__name__)

STRATEGIES = ("fuzzy", "meta", "preemptive", "lp", "hybrid")
DEFAULT_ROUNDING_UNIT = 100_000.0
NORMALIZATION_TOLERANCE = 0.01
NORMALIZATION_MAX_PASSES = 100


class PipelineComponent(Protocol):
    """Structural interface for pipeline stage components."""

    def execute(self, event: dict) -> dict:
        """Process event and return result."""
        ...


@dataclass
class StrategyOutcome:
    """Flexible and goal amounts produced by a strategy, with its summary."""

    values: dict[str, float]
    achieved: list[str]
    unachieved: list[str]
    score: float
    iterations: int
    method: str
    debt_extra: dict[str, float] = field(default_factory=dict)


def round_to_unit(amount: float, unit: float | None) -> float:
    """Round half away from zero to a multiple of ``unit``; ``None`` or ``0`` disables rounding."""
    if not unit:
        return amount
    return math.floor(amount / unit + 0.5) * unit


def _clamp_flexible(amount: float, constraint: CategoryConstraint) -> float:
    """Pull a rounded flexible amount back inside the category's bounds."""
    amount = max(amount, constraint.minimum)
    if constraint.maximum > 0:
        amount = min(amount, constraint.maximum)
    return amount


def _split_goals(goal_ids: list[str], achieved: list[str]) -> tuple[list[str], list[str]]:
    achieved_set = set(achieved)
    hit = [key for key in goal_ids if key in achieved_set]
    missed = [key for key in goal_ids if key not in achieved_set]
    return hit, missed


class BudgetAllocator(PipelineComponent):
    """Allocate income across expenses, debts and goals.

    Parameters
    ----------
    strategy : str
        One of ``"fuzzy"`` (default), ``"meta"``, ``"preemptive"``, ``"lp"``
        or ``"hybrid"``.
    rounding_unit : float | None
        Granularity applied to flexible and goal allocations before
        normalization. ``None`` disables rounding. Mandatory expenses and
        debt payments are never rounded, and rounded flexible amounts are
        kept inside their category bounds.
    backend_factory : Callable[[int], MILPBackend | None], optional
        MILP backend factory for the fuzzy and meta strategies.
    lp_backend : str
        Backend for the ``"lp"`` strategy: ``"simplex"`` or ``"pulp"``.
    """

    def __init__(
        self,
        strategy: str = "fuzzy",
        rounding_unit: float | None = DEFAULT_ROUNDING_UNIT,
        backend_factory: Callable[[int], MILPBackend | None] = create_milp_backend,
        lp_backend: str = "simplex",
    ) -> None:
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy {strategy!r}; expected one of {STRATEGIES}")
        self.strategy = strategy
        self.rounding_unit = rounding_unit
        self._backend_factory = backend_factory
        self.lp_backend = lp_backend

    def solve(self, model: ConstraintModel, params: ScenarioParameters | None = None) -> AllocationResult:
        """Compute a normalized allocation.

        Parameters
        ----------
        model : ConstraintModel
            Income and constraints.
        params : ScenarioParameters, optional
            Scenario knobs. Defaults to the balanced preset values.

        Returns
        -------
        AllocationResult

        Raises
        ------
        InfeasibleMinimumsError
            If mandatory expenses and debt payments exceed income.
        """
        params = params or ScenarioParameters()
        feasible, deficit = model.check_feasibility()
        if not feasible:
            logger.warning("Committed minimums exceed income by %.2f", deficit)
            raise InfeasibleMinimumsError(deficit)

        categories = {key: c.minimum for key, c in sorted(model.mandatory_expenses.items())}
        debts = {
            key: DebtPayment(d.scheduled_payment, d.minimum_payment, max(0.0, d.scheduled_payment - d.minimum_payment))
            for key, d in sorted(model.debt_payments.items())
        }

        if self.strategy == "hybrid":
            outcome = self._solve_hybrid(model, params)
        else:
            reduced = ConstraintModel(
                total_income=model.surplus(),
                flexible_expenses=model.flexible_expenses,
                goal_targets=model.goal_targets,
            )
            outcome = self._solve_reduced(reduced, params)

        for key, extra in outcome.debt_extra.items():
            payment = debts[key]
            payment.extra_payment += extra
            payment.total_payment += extra

        flexible = {
            key: _clamp_flexible(round_to_unit(outcome.values.get(key, 0.0), self.rounding_unit), constraint)
            for key, constraint in sorted(model.flexible_expenses.items())
        }
        goals = {
            key: min(round_to_unit(outcome.values.get(key, 0.0), self.rounding_unit), goal.remaining_amount)
            for key, goal in sorted(model.goal_targets.items())
        }
        committed = sum(categories.values()) + sum(p.total_payment for p in debts.values())
        residual = self._normalize(flexible, goals, committed, model, params)
        if abs(residual) > NORMALIZATION_TOLERANCE:
            logger.warning("Normalization left a residual of %.2f", residual)

        total = committed + sum(flexible.values()) + sum(goals.values())
        achieved, unachieved = _split_goals(sorted(model.goal_targets), outcome.achieved)
        logger.info(
            "Allocation complete: strategy=%s, method=%s, allocated=%.2f of %.2f",
            self.strategy,
            outcome.method,
            total,
            model.total_income,
        )
        return AllocationResult(
            category_allocations={**categories, **flexible},
            goal_allocations=goals,
            debt_allocations=debts,
            total_allocated=total,
            surplus=model.total_income - total,
            feasibility_score=outcome.score,
            solver_iterations=outcome.iterations,
            achieved_goals=achieved,
            unachieved_goals=unachieved,
            solver_type=self.strategy,
        )

    def generate_scenarios(self, model: ConstraintModel) -> list[ScenarioOutcome]:
        """Allocate under the conservative, balanced and aggressive presets with advisories."""
        return generate_scenarios(self.solve, model)

    def analyze_sensitivity(
        self, model: ConstraintModel, params: ScenarioParameters | None = None
    ) -> SensitivityReport:
        """Re-run the allocation under income, interest rate and goal priority changes."""
        return analyze_sensitivity(self.solve, model, params)

    def _solve_reduced(self, reduced: ConstraintModel, params: ScenarioParameters) -> StrategyOutcome:
        """Run a solver-based strategy on flexible expenses and goals only."""
        if self.strategy == "fuzzy":
            fuzzy = build_fuzzy_solver(reduced, params, self._backend_factory).solve()
            return StrategyOutcome(
                fuzzy["variable_values"],
                fuzzy["achieved_goals"],
                fuzzy["partial_goals"] + fuzzy["unachieved_goals"],
                min(fuzzy["weighted_membership"], 1.0) * 100,
                fuzzy["iterations"],
                fuzzy["method"],
            )
        if self.strategy == "meta":
            meta = build_meta_solver(reduced, params, self._backend_factory).solve()
            ideal = set(meta["ideal_goals"])
            return StrategyOutcome(
                meta["variable_values"],
                meta["ideal_goals"],
                [key for key in meta["goal_levels"] if key not in ideal],
                meta["reward_ratio"] * 100,
                meta["iterations"],
                meta["method"],
            )
        if self.strategy == "preemptive":
            gp = build_preemptive_solver(reduced, params).solve()
        else:
            gp = build_lp_solver(reduced, params, self.lp_backend).solve()
        goals_total = len(gp["achieved_goals"]) + len(gp["unachieved_goals"])
        return StrategyOutcome(
            gp["variable_values"],
            gp["achieved_goals"],
            gp["unachieved_goals"],
            100.0 * len(gp["achieved_goals"]) / goals_total if goals_total else 100.0,
            gp["iterations"],
            self.strategy,
        )

    def _solve_hybrid(self, model: ConstraintModel, params: ScenarioParameters) -> StrategyOutcome:
        """Run the hybrid strategy on the full model and keep its extra debt payments."""
        hybrid = HybridGPSolver(model, params).solve()
        values: dict[str, float] = {}
        debt_extra: dict[str, float] = {}
        achieved, unachieved = [], []
        for bucket in hybrid["buckets"].values():
            for item in bucket.items:
                if item.kind == "debt":
                    debt_extra[item.id] = item.allocated
                    continue
                values[item.id] = values.get(item.id, 0.0) + item.allocated
                if item.kind == "goal":
                    reached = item.achieved_level not in (LEVEL_NONE, LEVEL_PARTIAL)
                    (achieved if reached else unachieved).append(item.id)
        for key, amount in hybrid["flexible_min_allocations"].items():
            values[key] = values.get(key, 0.0) + amount
        max_reward = hybrid["max_possible_reward"]
        return StrategyOutcome(
            values,
            achieved,
            unachieved,
            100.0 * hybrid["total_reward"] / max_reward if max_reward > 0 else 100.0,
            0,
            "hybrid",
            debt_extra,
        )

    def _normalize(
        self,
        flexible: dict[str, float],
        goals: dict[str, float],
        committed: float,
        model: ConstraintModel,
        params: ScenarioParameters,
    ) -> float:
        """Push the total toward income; return the residual left (income minus total)."""
        residual = model.total_income - committed - sum(flexible.values()) - sum(goals.values())
        for _ in range(NORMALIZATION_MAX_PASSES):
            if abs(residual) <= NORMALIZATION_TOLERANCE:
                break
            if residual > 0:
                moved = _absorb_surplus(residual, flexible, goals, model, params)
            else:
                moved = _recover_deficit(-residual, flexible, goals, model, params)
            if moved <= 0:
                break
            residual = model.total_income - committed - sum(flexible.values()) - sum(goals.values())
        return residual

    def execute(self, event: dict) -> dict:
        """Run allocation on a dict-shaped event and return a serialized result.

        Parameters
        ----------
        event : dict
            Must contain ``total_income``. May contain ``mandatory_expenses``,
            ``flexible_expenses``, ``debt_payments`` and ``goal_targets`` as
            lists of dicts (``id`` is accepted in place of the constraint's ID
            field) and ``scenario`` as a preset name or a dict of
            :class:`ScenarioParameters` fields. A true ``use_all_scenarios``
            adds every preset under ``scenarios``; a true ``run_sensitivity``
            adds the sensitivity report under ``sensitivity``.

        Returns
        -------
        dict
            Serialized ``AllocationResult`` with an added ``solver_detail``.
        """
        model = ConstraintModel(
            total_income=event["total_income"],
            mandatory_expenses=_to_constraints(event.get("mandatory_expenses", []), CategoryConstraint, "category_id"),
            flexible_expenses=_to_constraints(event.get("flexible_expenses", []), CategoryConstraint, "category_id"),
            debt_payments=_to_constraints(event.get("debt_payments", []), DebtConstraint, "debt_id"),
            goal_targets=_to_constraints(event.get("goal_targets", []), GoalConstraint, "goal_id"),
        )
        params = _to_params(event.get("scenario", "balanced"))
        allocation = self.solve(model, params)

        result = asdict(allocation)
        result["solver_detail"] = {
            "strategy": self.strategy,
            "scenario": params.scenario_type,
            "feasibility_score": allocation.feasibility_score,
            "residual": allocation.surplus,
        }
        if event.get("use_all_scenarios"):
            result["scenarios"] = [asdict(outcome) for outcome in self.generate_scenarios(model)]
        if event.get("run_sensitivity"):
            result["sensitivity"] = asdict(self.analyze_sensitivity(model, params))
        return result


def _absorb_surplus(
    amount: float,
    flexible: dict[str, float],
    goals: dict[str, float],
    model: ConstraintModel,
    params: ScenarioParameters,
) -> float:
    """Add surplus to goals in proportion to their allocation, then to flexible categories."""
    room = {
        key: model.goal_targets[key].remaining_amount - value
        for key, value in goals.items()
        if model.goal_targets[key].remaining_amount - value > NORMALIZATION_TOLERANCE
    }
    moved = _spread(amount, goals, room)
    if moved > 0:
        return moved

    level = params.flexible_spending_level
    caps = {}
    for key, value in flexible.items():
        constraint = model.flexible_expenses[key]
        cap = flexible_target(constraint.minimum, constraint.maximum, level)
        if value >= cap - NORMALIZATION_TOLERANCE:
            cap = constraint.maximum if constraint.maximum > 0 else math.inf
        if cap - value > NORMALIZATION_TOLERANCE:
            caps[key] = cap - value
    return _spread(amount, flexible, caps)


def _spread(amount: float, allocations: dict[str, float], room: dict[str, float]) -> float:
    """Share ``amount`` over keys with room, weighted by their current allocation."""
    if not room:
        return 0.0
    weights = {key: allocations[key] for key in room}
    if sum(weights.values()) <= 0:
        weights = {key: 1.0 for key in room}
    total_weight = sum(weights.values())
    moved = 0.0
    for key in sorted(room):
        share = min(amount * weights[key] / total_weight, room[key])
        allocations[key] += share
        moved += share
    return moved


def _recover_deficit(
    amount: float,
    flexible: dict[str, float],
    goals: dict[str, float],
    model: ConstraintModel,
    params: ScenarioParameters,
) -> float:
    """Trim goal and flexible amounts above their floors, largest excess first."""
    factor = params.goal_contribution_factor
    goal_floor = {key: model.goal_targets[key].suggested_contribution * factor for key in goals}
    flexible_floor = {key: model.flexible_expenses[key].minimum for key in flexible}
    trimmed = 0.0
    for allocations, floors in (
        (goals, goal_floor),
        (flexible, flexible_floor),
        (goals, {key: 0.0 for key in goals}),
    ):
        excess = sorted(
            ((allocations[key] - floors[key], key) for key in allocations if allocations[key] - floors[key] > 0),
            key=lambda pair: (-pair[0], pair[1]),
        )
        for extra, key in excess:
            if trimmed >= amount:
                return trimmed
            cut = min(extra, amount - trimmed)
            allocations[key] -= cut
            trimmed += cut
    return trimmed


def _to_constraints(items: list[dict[str, Any]], cls: type, id_field: str) -> dict[str, Any]:
    """Map event dicts to constraint dataclasses keyed by ID."""
    constraints = {}
    for item in items:
        fields = {(id_field if key == "id" else key): value for key, value in item.items()}
        constraints[str(fields[id_field])] = cls(**fields)
    return constraints


def _to_params(scenario: str | dict[str, Any]) -> ScenarioParameters:
    if isinstance(scenario, str):
        return ScenarioParameters.for_scenario(scenario)
    fields = dict(scenario)
    shares = fields.pop("surplus_allocation", None)
    if isinstance(shares, dict):
        fields["surplus_allocation"] = SurplusAllocation(**shares)
    elif shares is not None:
        fields["surplus_allocation"] = shares
    return ScenarioParameters(**fields)
