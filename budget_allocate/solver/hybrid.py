"""Three-phase hybrid allocation.

Phase 1 pays every mandatory expense, scheduled debt payment and flexible
minimum. Phase 2 splits the remaining surplus into emergency, extra-debt,
goals and flexible buckets by scenario percentages. Phase 3 solves each
bucket as a small multi-level problem: a greedy first pass takes the highest
affordable level per item, then the single best reward-per-cost upgrade is
applied until nothing else fits.
"""

import logging
from dataclasses import dataclass, field

from budget_allocate.errors import InfeasibleMinimumsError
from budget_allocate.models import ConstraintModel, ScenarioParameters
from budget_allocate.solver._common import DEVIATION_TOLERANCE
from budget_allocate.solver._types import HybridResult
from budget_allocate.solver.meta import LEVEL_NONE, UPGRADE_MAX_ITERATIONS, TargetLevel
from budget_allocate.solver.preemptive import flexible_target

logger = logging.getLogger(__name__)

BUCKETS = ("emergency", "debt_extra", "goals", "flexible")
PHASE1_REWARD = 100.0
LEVEL_PARTIAL = "partial"

# (fraction of target, reward, label) ladders per goal priority
GOAL_LADDERS: dict[str, tuple[tuple[float, float, str], ...]] = {
    "emergency": ((0.5, 40.0, "minimum"), (0.8, 75.0, "satisfactory"), (1.0, 100.0, "ideal")),
    "high": ((0.3, 30.0, "minimum"), (0.7, 65.0, "satisfactory"), (1.0, 100.0, "ideal")),
    "medium": ((0.3, 25.0, "minimum"), (0.6, 55.0, "satisfactory"), (1.0, 100.0, "ideal")),
    "low": ((0.2, 20.0, "minimum"), (0.5, 50.0, "satisfactory"), (1.0, 100.0, "ideal")),
}
GOAL_LADDERS["critical"] = GOAL_LADDERS["high"]


@dataclass
class BucketItem:
    """An item competing for one bucket's budget."""

    id: str
    name: str
    kind: str
    priority: int
    weight: float
    levels: list[TargetLevel]
    allocated: float = 0.0
    achieved_level: str = LEVEL_NONE
    reward: float = 0.0

    def level_index(self) -> int:
        for i, level in enumerate(self.levels):
            if level.label == self.achieved_level:
                return i
        return -1


@dataclass
class BudgetBucket:
    """A share of the surplus and the items it funds."""

    name: str
    percent: float
    budget: float
    allocated: float = 0.0
    remaining: float = 0.0
    items: list[BucketItem] = field(default_factory=list)


@dataclass
class AllocationDetail:
    """Final amount for one item with the phase and level that produced it."""

    id: str
    name: str
    kind: str
    phase: int
    bucket: str
    amount: float
    level: str
    reward: float


def _ladder(target: float, steps: tuple[tuple[float, float, str], ...], scale: float = 1.0) -> list[TargetLevel]:
    return [TargetLevel(target * fraction, reward * scale, label) for fraction, reward, label in steps]


def _debt_base_reward(interest_rate: float) -> float:
    if interest_rate >= 20:
        return 80.0
    if interest_rate >= 10:
        return 65.0
    return 50.0


class HybridGPSolver:
    """Heuristic minimums, proportional buckets, per-bucket level optimization.

    Parameters
    ----------
    model : ConstraintModel
        Full input, including mandatory expenses and debts.
    params : ScenarioParameters
        Bucket percentages, goal factor and flexible level.
    """

    def __init__(self, model: ConstraintModel, params: ScenarioParameters) -> None:
        self.model = model
        self.params = params

    def solve(self) -> HybridResult:
        """Run all three phases.

        Returns
        -------
        HybridResult

        Raises
        ------
        InfeasibleMinimumsError
            If mandatory expenses, debt payments and flexible minimums exceed
            income.
        """
        mandatory = {key: c.minimum for key, c in sorted(self.model.mandatory_expenses.items())}
        debt_min = {key: d.scheduled_payment for key, d in sorted(self.model.debt_payments.items())}
        flexible_min = {key: c.minimum for key, c in sorted(self.model.flexible_expenses.items()) if c.minimum > 0}
        phase1_total = sum(mandatory.values()) + sum(debt_min.values()) + sum(flexible_min.values())
        if phase1_total > self.model.total_income + DEVIATION_TOLERANCE:
            deficit = phase1_total - self.model.total_income
            logger.warning("Hybrid phase 1: minimums exceed income by %.2f", deficit)
            raise InfeasibleMinimumsError(deficit)
        surplus = max(0.0, self.model.total_income - phase1_total)
        logger.info("Hybrid phase 1: committed %.2f, surplus %.2f", phase1_total, surplus)

        buckets = self._build_buckets(surplus)
        for bucket in buckets.values():
            self._optimize_bucket(bucket)
            logger.info("Bucket %s: allocated %.2f of %.2f", bucket.name, bucket.allocated, bucket.budget)

        final: dict[str, AllocationDetail] = {}
        for key, amount in mandatory.items():
            final[key] = AllocationDetail(key, key, "category", 1, "", amount, "required", PHASE1_REWARD)
        for key, amount in debt_min.items():
            name = self.model.debt_payments[key].debt_name
            final[key] = AllocationDetail(key, name, "debt", 1, "", amount, "minimum", PHASE1_REWARD)
        total_reward = max_reward = PHASE1_REWARD * len(final)
        for key, amount in flexible_min.items():
            final[key] = AllocationDetail(key, key, "category", 1, "", amount, "minimum", 0.0)

        for bucket in buckets.values():
            for item in bucket.items:
                max_reward += item.levels[-1].reward
                total_reward += item.reward
                if item.id in final:
                    detail = final[item.id]
                    detail.amount += item.allocated
                    detail.bucket = bucket.name
                    detail.reward += item.reward
                    if item.allocated > 0:
                        detail.level = item.achieved_level
                elif item.allocated > 0:
                    final[item.id] = AllocationDetail(
                        item.id, item.name, item.kind, 3, bucket.name, item.allocated, item.achieved_level, item.reward
                    )

        return {
            "mandatory_allocations": mandatory,
            "debt_min_allocations": debt_min,
            "flexible_min_allocations": flexible_min,
            "phase1_total": phase1_total,
            "surplus": surplus,
            "buckets": buckets,
            "final_allocations": final,
            "total_allocated": sum(detail.amount for detail in final.values()),
            "total_reward": total_reward,
            "max_possible_reward": max_reward,
            "is_feasible": True,
        }

    def _build_buckets(self, surplus: float) -> dict[str, BudgetBucket]:
        shares = self.params.surplus_allocation
        percents = {
            "emergency": shares.emergency_fund_percent,
            "debt_extra": shares.debt_extra_percent,
            "goals": shares.goals_percent,
            "flexible": shares.flexible_percent,
        }
        buckets = {name: BudgetBucket(name, percents[name], surplus * percents[name]) for name in BUCKETS}
        factor = self.params.goal_contribution_factor

        for key, goal in sorted(self.model.goal_targets.items()):
            target = goal.suggested_contribution * factor
            if target <= 0:
                continue
            ladder = GOAL_LADDERS["emergency" if goal.is_emergency else goal.priority]
            bucket = buckets["emergency" if goal.is_emergency else "goals"]
            bucket.items.append(
                BucketItem(
                    key, goal.goal_name, "goal", goal.priority_weight, float(100 - goal.priority_weight),
                    _ladder(target, ladder),
                )
            )

        for key, debt in sorted(self.model.debt_payments.items()):
            if debt.fixed_payment > 0:
                continue
            target = min(
                debt.minimum_payment * shares.debt_extra_percent * 10,
                debt.current_balance - debt.minimum_payment,
            )
            if target <= 0:
                continue
            steps = ((0.3, 0.4, "minimum"), (0.7, 0.75, "satisfactory"), (1.0, 1.0, "ideal"))
            buckets["debt_extra"].items.append(
                BucketItem(
                    key, debt.debt_name, "debt", debt.priority, debt.interest_rate / 10,
                    _ladder(target, steps, _debt_base_reward(debt.interest_rate)),
                )
            )

        for key, constraint in sorted(self.model.flexible_expenses.items()):
            extra = flexible_target(constraint.minimum, constraint.maximum, self.params.flexible_spending_level)
            extra -= constraint.minimum
            if extra <= 0:
                continue
            levels = [
                TargetLevel(0.0, 0.0, "minimum"),
                TargetLevel(extra * 0.5, 40.0, "moderate"),
                TargetLevel(extra, 70.0, "target"),
            ]
            buckets["flexible"].items.append(
                BucketItem(key, key, "category", constraint.priority or 4, 1.0, levels)
            )
        return buckets

    def _optimize_bucket(self, bucket: BudgetBucket) -> None:
        bucket.items.sort(key=lambda item: (item.priority, item.id))
        remaining = bucket.budget

        for item in bucket.items:
            for level in reversed(item.levels):
                if level.value <= remaining:
                    item.allocated, item.achieved_level, item.reward = level.value, level.label, level.reward
                    remaining -= level.value
                    break
            else:
                floor = item.levels[0].value
                if remaining > 0 and remaining >= 0.5 * floor:
                    item.allocated, item.achieved_level = remaining, LEVEL_PARTIAL
                    remaining = 0.0

        for _ in range(UPGRADE_MAX_ITERATIONS):
            best, best_ratio = None, 0.0
            for item in bucket.items:
                index = item.level_index()
                if index + 1 >= len(item.levels):
                    continue
                nxt = item.levels[index + 1]
                cost = nxt.value - item.allocated
                gain = nxt.reward - item.reward
                if 0 < cost <= remaining and gain > 0 and gain / cost > best_ratio:
                    best, best_ratio = (item, nxt, cost), gain / cost
            if best is None:
                break
            item, nxt, cost = best
            item.allocated, item.achieved_level, item.reward = nxt.value, nxt.label, nxt.reward
            remaining -= cost

        bucket.remaining = remaining
        bucket.allocated = bucket.budget - remaining
