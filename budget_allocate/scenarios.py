"""Multi-scenario allocation and sensitivity analysis.

Runs an allocation function over the conservative, balanced and aggressive
presets and attaches advisory warnings to each outcome. The sensitivity
analysis re-runs the balanced allocation under perturbed income, interest
rates and goal priorities and summarizes how exposed the budget is.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace

from budget_allocate.errors import InfeasibleMinimumsError
from budget_allocate.models import AllocationResult, ConstraintModel, ScenarioParameters

logger = logging.getLogger(__name__)

SolveFn = Callable[[ConstraintModel, ScenarioParameters], AllocationResult]

SCENARIO_ORDER = ("conservative", "balanced", "aggressive")

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"

HIGH_INTEREST_RATE = 15.0
LOW_SAVINGS_RATE = 10.0
LOW_SURPLUS = 100.0

INCOME_CHANGES = (-0.20, -0.10, 0.10, 0.20)
RATE_CHANGES = (2.0, 5.0)
PRIORITY_SHIFT = 10
AFFECTED_GOAL_RATIO = 0.8
HIGH_RISK_MONTHLY_INTEREST = 50.0
NOTABLE_MONTHLY_INTEREST = 100.0


@dataclass
class AllocationWarning:
    """Advisory attached to a scenario.

    Parameters
    ----------
    severity : str
        ``"critical"``, ``"warning"`` or ``"info"``.
    category : str
        Area concerned: ``"income"``, ``"expense"``, ``"debt"`` or ``"goal"``.
    message : str
        Short description.
    suggestions : list[str]
        Follow-up actions, possibly empty.
    """

    severity: str
    category: str
    message: str
    suggestions: list[str] = field(default_factory=list)


@dataclass
class AllocationSummary:
    """Totals of an allocation grouped by item kind."""

    total_income: float
    total_allocated: float
    surplus: float
    mandatory_expenses: float
    flexible_expenses: float
    total_debt_payments: float
    total_goal_contributions: float
    savings_rate: float

    @classmethod
    def from_result(cls, result: AllocationResult, model: ConstraintModel) -> "AllocationSummary":
        """Summarize ``result``; the savings rate counts goals and extra debt payments as a percent of income."""
        categories = result.category_allocations
        mandatory = sum(amount for key, amount in categories.items() if key in model.mandatory_expenses)
        flexible = sum(amount for key, amount in categories.items() if key in model.flexible_expenses)
        debts = sum(p.total_payment for p in result.debt_allocations.values())
        extra_debt = sum(p.extra_payment for p in result.debt_allocations.values())
        goals = sum(result.goal_allocations.values())
        income = model.total_income
        savings_rate = 100.0 * (goals + extra_debt) / income if income > 0 else 0.0
        total = mandatory + flexible + debts + goals
        return cls(income, total, income - total, mandatory, flexible, debts, goals, savings_rate)


@dataclass
class ScenarioOutcome:
    """Allocation of one preset with its advisories.

    ``allocation`` and ``summary`` are ``None`` when the committed minimums
    exceed income.
    """

    scenario_type: str
    is_feasible: bool
    feasibility_score: float
    allocation: AllocationResult | None = None
    summary: AllocationSummary | None = None
    warnings: list[AllocationWarning] = field(default_factory=list)


def deficit_suggestions(model: ConstraintModel, deficit: float) -> list[str]:
    """Actions that could close a deficit between income and committed minimums."""
    suggestions = [f"Your income is {deficit:.2f} short of covering mandatory expenses and minimum debt payments"]
    reducible = [(key, c.maximum - c.minimum) for key, c in sorted(model.flexible_expenses.items())]
    reducible = [(key, room) for key, room in reducible if room > 0]
    if reducible:
        suggestions.append("Consider adjusting these flexible expense categories:")
        suggestions.extend(f"- Reduce {key} by up to {room:.2f}" for key, room in reducible)
    if any(d.interest_rate >= HIGH_INTEREST_RATE for d in model.debt_payments.values()):
        suggestions.append("Consider debt consolidation or refinancing for high-interest debts")
    suggestions.extend(
        [
            "Explore opportunities to increase income through:",
            "- Side gigs or freelance work",
            "- Selling unused items",
            "- Negotiating a raise",
        ]
    )
    return suggestions


def scenario_warnings(
    scenario_type: str, model: ConstraintModel, summary: AllocationSummary | None
) -> list[AllocationWarning]:
    """Preset-specific advisories. Checks that need a summary are skipped without one."""
    warnings = []
    if scenario_type == "conservative":
        if not any(goal.is_emergency for goal in model.goal_targets.values()):
            warnings.append(
                AllocationWarning(
                    SEVERITY_WARNING,
                    "goal",
                    "No emergency fund goal detected",
                    ["Consider creating an emergency fund goal for 3-6 months of expenses"],
                )
            )
        if summary is not None and summary.savings_rate < LOW_SAVINGS_RATE:
            warnings.append(
                AllocationWarning(
                    SEVERITY_INFO,
                    "goal",
                    "Low savings rate in conservative scenario",
                    ["Your current income may be tight. Consider increasing income or reducing expenses."],
                )
            )
    elif scenario_type == "balanced":
        if any(d.interest_rate >= HIGH_INTEREST_RATE for d in model.debt_payments.values()):
            warnings.append(
                AllocationWarning(
                    SEVERITY_WARNING,
                    "debt",
                    "High-interest debt detected",
                    ["Consider paying off high-interest debts faster to save on interest"],
                )
            )
    elif scenario_type == "aggressive" and summary is not None:
        if summary.flexible_expenses > 0:
            warnings.append(
                AllocationWarning(
                    SEVERITY_INFO,
                    "expense",
                    "Flexible spending at maximum levels",
                    ["This scenario assumes higher lifestyle spending. Ensure you can sustain this level."],
                )
            )
        if summary.surplus < LOW_SURPLUS:
            warnings.append(
                AllocationWarning(
                    SEVERITY_WARNING,
                    "income",
                    "Very low surplus remaining",
                    ["This aggressive allocation leaves little buffer for unexpected expenses"],
                )
            )
    return warnings


def generate_scenarios(
    solve: SolveFn, model: ConstraintModel, scenario_types: Sequence[str] = SCENARIO_ORDER
) -> list[ScenarioOutcome]:
    """Allocate the model under each preset.

    Parameters
    ----------
    solve : Callable[[ConstraintModel, ScenarioParameters], AllocationResult]
        Allocation function, normally ``BudgetAllocator.solve``.
    model : ConstraintModel
        Income and constraints.
    scenario_types : Sequence[str]
        Preset names, in output order.

    Returns
    -------
    list[ScenarioOutcome]
        One outcome per preset. When the committed minimums exceed income
        every outcome is infeasible, scores ``0`` and leads with a critical
        warning carrying the deficit suggestions.
    """
    feasible, deficit = model.check_feasibility()
    if not feasible:
        logger.warning("Generating scenarios for an infeasible model, deficit %.2f", deficit)

    outcomes = []
    for scenario_type in scenario_types:
        params = ScenarioParameters.for_scenario(scenario_type)
        if not feasible:
            warning = AllocationWarning(
                SEVERITY_CRITICAL,
                "income",
                "Insufficient income to cover mandatory expenses and minimum debt payments",
                deficit_suggestions(model, deficit),
            )
            outcome = ScenarioOutcome(scenario_type, False, 0.0, warnings=[warning])
        else:
            allocation = solve(model, params)
            summary = AllocationSummary.from_result(allocation, model)
            outcome = ScenarioOutcome(scenario_type, True, allocation.feasibility_score, allocation, summary)
        outcome.warnings.extend(scenario_warnings(scenario_type, model, outcome.summary))
        outcomes.append(outcome)

    logger.info("Generated %d scenarios", len(outcomes))
    return outcomes


@dataclass
class IncomeImpact:
    """Effect of an income change on the balanced allocation.

    Deltas are ``None`` when the changed income no longer covers the
    committed minimums.
    """

    income_change: float
    new_income: float
    is_feasible: bool
    deficit: float = 0.0
    goal_delta: float | None = None
    debt_extra_delta: float | None = None
    flexible_delta: float | None = None
    surplus_delta: float | None = None
    affected_goals: list[str] = field(default_factory=list)
    recommendation: str = ""


@dataclass
class DebtRateImpact:
    """Effect of a rate change on one debt."""

    debt_id: str
    debt_name: str
    old_rate: float
    new_rate: float
    extra_monthly_interest: float
    new_priority: int


@dataclass
class RateImpact:
    """Effect of an interest rate increase across all debts."""

    rate_change: float
    affected_debts: list[DebtRateImpact]
    total_extra_interest: float
    strategy_change_needed: bool
    recommended_action: str


@dataclass
class GoalPriorityImpact:
    """Allocation of a goal when its priority weight moves up or down."""

    goal_id: str
    goal_name: str
    current_priority: str
    current_allocation: float
    if_higher_priority: float
    if_lower_priority: float
    sensitivity: str


@dataclass
class SensitivitySummary:
    """Overall exposure of the budget."""

    most_sensitive_to_income: bool
    income_break_even: float
    high_risk_debts: list[str]
    most_flexible_goals: list[str]
    overall_risk_level: str
    key_recommendations: list[str]


@dataclass
class SensitivityReport:
    income_impact: list[IncomeImpact]
    rate_impact: list[RateImpact]
    goal_priority_impact: list[GoalPriorityImpact]
    summary: SensitivitySummary


def debt_priority(interest_rate: float) -> int:
    """Priority tier implied by an annual interest rate in percent."""
    if interest_rate >= 20:
        return 1
    if interest_rate >= 10:
        return 10
    if interest_rate >= 5:
        return 20
    return 30


def _debt_extra(result: AllocationResult) -> float:
    return sum(p.extra_payment for p in result.debt_allocations.values())


def _income_impact(
    solve: SolveFn,
    model: ConstraintModel,
    params: ScenarioParameters,
    baseline: AllocationResult,
    change: float,
) -> IncomeImpact:
    changed = replace(model, total_income=model.total_income * (1 + change))
    feasible, deficit = changed.check_feasibility()
    impact = IncomeImpact(change, changed.total_income, feasible, deficit)
    if not feasible:
        impact.recommendation = (
            f"Income decrease of {-change * 100:.0f}% makes allocation infeasible. "
            f"Need to reduce expenses by {deficit:.2f} or increase income."
        )
        return impact

    allocation = solve(changed, params)
    before = AllocationSummary.from_result(baseline, model)
    after = AllocationSummary.from_result(allocation, changed)
    impact.goal_delta = after.total_goal_contributions - before.total_goal_contributions
    impact.debt_extra_delta = _debt_extra(allocation) - _debt_extra(baseline)
    impact.flexible_delta = after.flexible_expenses - before.flexible_expenses
    impact.surplus_delta = after.surplus - before.surplus

    if change < 0:
        impact.affected_goals = [
            model.goal_targets[key].goal_name
            for key, amount in sorted(allocation.goal_allocations.items())
            if amount < baseline.goal_allocations.get(key, 0.0) * AFFECTED_GOAL_RATIO
        ]
        if impact.affected_goals:
            impact.recommendation = (
                f"Income decrease would reduce funding for {len(impact.affected_goals)} goals. "
                "Consider adjusting priorities."
            )
        else:
            impact.recommendation = "Income decrease can be absorbed by reducing flexible spending and surplus."
    else:
        impact.recommendation = (
            f"Income increase of {change * 100:.0f}% allows an additional "
            f"{impact.goal_delta + impact.debt_extra_delta:.2f} for goals and debt payoff."
        )
    return impact


def _rate_impact(model: ConstraintModel, change: float) -> RateImpact:
    debts = []
    strategy_change = False
    for key, debt in sorted(model.debt_payments.items()):
        new_rate = min(debt.interest_rate + change, 100.0)
        extra = debt.current_balance * (new_rate - debt.interest_rate) / 100 / 12
        new_priority = debt_priority(new_rate)
        if new_priority < debt_priority(debt.interest_rate):
            strategy_change = True
        debts.append(DebtRateImpact(key, debt.debt_name, debt.interest_rate, new_rate, extra, new_priority))

    total = sum(d.extra_monthly_interest for d in debts)
    if strategy_change:
        action = (
            f"Rate increase of {change:.0f} points changes debt priorities. "
            "Consider reallocating extra payments to higher-rate debts."
        )
    elif total > NOTABLE_MONTHLY_INTEREST:
        action = f"Rate increase adds {total:.2f}/month in interest. Consider increasing debt payments or refinancing."
    else:
        action = "Rate increase has minimal impact on current strategy."
    return RateImpact(change, debts, total, strategy_change, action)


def _goal_priority_impact(
    solve: SolveFn, model: ConstraintModel, params: ScenarioParameters, baseline: AllocationResult
) -> list[GoalPriorityImpact]:
    impacts = []
    for key, goal in sorted(model.goal_targets.items()):
        if goal.is_emergency:
            continue
        shifted = {}
        for label, weight in (
            ("higher", max(1, goal.priority_weight - PRIORITY_SHIFT)),
            ("lower", min(99, goal.priority_weight + PRIORITY_SHIFT)),
        ):
            goals = {**model.goal_targets, key: replace(goal, priority_weight=weight)}
            shifted[label] = solve(replace(model, goal_targets=goals), params).goal_allocations.get(key, 0.0)

        current = baseline.goal_allocations.get(key, 0.0)
        sensitivity = "low"
        if current > 0:
            ratio = (shifted["higher"] - shifted["lower"]) / current
            if ratio > 0.5:
                sensitivity = "high"
            elif ratio > 0.2:
                sensitivity = "medium"
        impacts.append(
            GoalPriorityImpact(
                key, goal.goal_name, goal.priority, current, shifted["higher"], shifted["lower"], sensitivity
            )
        )
    return impacts


def _summarize(
    model: ConstraintModel,
    income_impact: list[IncomeImpact],
    rate_impact: list[RateImpact],
    goal_impact: list[GoalPriorityImpact],
) -> SensitivitySummary:
    break_even = model.committed_minimums()
    # A cut of ten percent or less already breaking the budget marks it as income sensitive.
    sensitive = any(-0.1 - 1e-9 <= i.income_change < 0 and not i.is_feasible for i in income_impact)
    high_risk = []
    if rate_impact:
        high_risk = [
            d.debt_name for d in rate_impact[0].affected_debts if d.extra_monthly_interest > HIGH_RISK_MONTHLY_INTEREST
        ]
    flexible_goals = [g.goal_name for g in goal_impact if g.sensitivity == "high"]

    risk = 0
    if sensitive:
        risk += 3
    if high_risk:
        risk += 2
    if model.total_income - break_even < model.total_income * 0.1:
        risk += 2
    level = "high" if risk >= 5 else "medium" if risk >= 3 else "low"

    recommendations = []
    if sensitive:
        recommendations.append("Build emergency fund to at least 3 months of expenses to buffer income volatility")
    if high_risk:
        recommendations.append(f"Consider refinancing or paying down high-risk debts: {', '.join(high_risk)}")
    if level == "high":
        recommendations.append(
            "Current allocation has low margin for error. Consider reducing flexible expenses or increasing income"
        )
    if flexible_goals:
        recommendations.append(
            f"Goals {', '.join(flexible_goals)} are most sensitive to priority changes - review their importance"
        )
    return SensitivitySummary(sensitive, break_even, high_risk, flexible_goals, level, recommendations)


def analyze_sensitivity(
    solve: SolveFn,
    model: ConstraintModel,
    params: ScenarioParameters | None = None,
    income_changes: Sequence[float] = INCOME_CHANGES,
    rate_changes: Sequence[float] = RATE_CHANGES,
) -> SensitivityReport:
    """Measure how the allocation reacts to income, rate and priority changes.

    Parameters
    ----------
    solve : Callable[[ConstraintModel, ScenarioParameters], AllocationResult]
        Allocation function, normally ``BudgetAllocator.solve``.
    model : ConstraintModel
        Baseline income and constraints.
    params : ScenarioParameters, optional
        Scenario knobs. Defaults to the balanced preset.
    income_changes : Sequence[float]
        Relative income changes, e.g. ``-0.1`` for a ten percent cut.
    rate_changes : Sequence[float]
        Interest rate increases in percentage points.

    Returns
    -------
    SensitivityReport

    Raises
    ------
    InfeasibleMinimumsError
        If the baseline model is infeasible.
    """
    params = params or ScenarioParameters.for_scenario("balanced")
    feasible, deficit = model.check_feasibility()
    if not feasible:
        raise InfeasibleMinimumsError(deficit)
    baseline = solve(model, params)

    logger.info(
        "Running sensitivity analysis: %d income changes, %d rate changes, %d goals",
        len(income_changes),
        len(rate_changes),
        len(model.goal_targets),
    )
    income_impact = [_income_impact(solve, model, params, baseline, change) for change in income_changes]
    rate_impact = [_rate_impact(model, change) for change in rate_changes]
    goal_impact = _goal_priority_impact(solve, model, params, baseline)
    summary = _summarize(model, income_impact, rate_impact, goal_impact)
    return SensitivityReport(income_impact, rate_impact, goal_impact, summary)
