"""Data models for the budget allocation engine.

The constraint model is the engine's input: total income plus four
ID-keyed collections of constraints. Scenario parameters tune how goals,
flexible spending and surplus are treated. ``AllocationResult`` is the
normalized output handed back to the caller.
"""

from dataclasses import dataclass, field

GOAL_PRIORITIES = ("critical", "high", "medium", "low")


def _require_non_negative(owner: str, **values: float) -> None:
    for name, value in values.items():
        if value < 0:
            raise ValueError(f"{owner}.{name} must be non-negative, got {value}")


@dataclass
class CategoryConstraint:
    """Bounds on a spending category.

    Parameters
    ----------
    category_id : str
        Category identifier.
    minimum : float
        Lower bound on the allocation.
    maximum : float
        Upper bound on the allocation; ``0`` means no upper bound. A mandatory
        category with ``minimum == maximum`` is a fixed amount.
    is_flexible : bool
        Whether the category is discretionary spending.
    priority : int
        Lower value means more important. ``0`` means unset.
    """

    category_id: str
    minimum: float
    maximum: float = 0.0
    is_flexible: bool = False
    priority: int = 0

    def __post_init__(self) -> None:
        _require_non_negative("CategoryConstraint", minimum=self.minimum, maximum=self.maximum)
        if self.maximum > 0 and self.maximum < self.minimum:
            raise ValueError(
                f"CategoryConstraint.maximum ({self.maximum}) is below minimum ({self.minimum}) "
                f"for category {self.category_id}"
            )

    @property
    def is_fixed(self) -> bool:
        return self.maximum > 0 and self.minimum == self.maximum


@dataclass
class DebtConstraint:
    """Payment constraints for a debt.

    Parameters
    ----------
    debt_id : str
        Debt identifier.
    debt_name : str
        Human-readable name.
    minimum_payment : float
        Required monthly payment.
    current_balance : float
        Outstanding balance, the natural upper bound on a payment.
    interest_rate : float
        Annual interest rate in percent.
    fixed_payment : float
        Caller-forced payment; ``0`` means not forced.
    priority : int
        Lower value means more important.
    """

    debt_id: str
    debt_name: str
    minimum_payment: float
    current_balance: float = 0.0
    interest_rate: float = 0.0
    fixed_payment: float = 0.0
    priority: int = 0

    def __post_init__(self) -> None:
        _require_non_negative(
            "DebtConstraint",
            minimum_payment=self.minimum_payment,
            current_balance=self.current_balance,
            interest_rate=self.interest_rate,
            fixed_payment=self.fixed_payment,
        )

    @property
    def scheduled_payment(self) -> float:
        """Payment resolved heuristically: the forced amount if set, else the minimum."""
        return self.fixed_payment if self.fixed_payment > 0 else self.minimum_payment


@dataclass
class GoalConstraint:
    """Contribution target for a savings goal.

    Parameters
    ----------
    goal_id : str
        Goal identifier.
    goal_name : str
        Human-readable name.
    suggested_contribution : float
        Contribution suggested for this period.
    remaining_amount : float
        Amount still needed to complete the goal.
    goal_type : str
        Goal category, e.g. ``"emergency"`` or ``"savings"``.
    priority : str
        One of ``"critical"``, ``"high"``, ``"medium"``, ``"low"``.
    priority_weight : int
        Lower value means more important.
    """

    goal_id: str
    goal_name: str
    suggested_contribution: float
    remaining_amount: float
    goal_type: str = "savings"
    priority: str = "medium"
    priority_weight: int = 20

    def __post_init__(self) -> None:
        _require_non_negative(
            "GoalConstraint",
            suggested_contribution=self.suggested_contribution,
            remaining_amount=self.remaining_amount,
            priority_weight=self.priority_weight,
        )
        if self.priority not in GOAL_PRIORITIES:
            raise ValueError(f"GoalConstraint.priority must be one of {GOAL_PRIORITIES}, got {self.priority!r}")

    @property
    def is_emergency(self) -> bool:
        return self.goal_type == "emergency"


@dataclass
class ConstraintModel:
    """Complete input of one allocation run.

    Parameters
    ----------
    total_income : float
        Income to be allocated.
    mandatory_expenses : dict[str, CategoryConstraint]
        Fixed or bounded essential spending.
    flexible_expenses : dict[str, CategoryConstraint]
        Discretionary spending.
    debt_payments : dict[str, DebtConstraint]
        Debts requiring a payment this period.
    goal_targets : dict[str, GoalConstraint]
        Savings goals.
    """

    total_income: float
    mandatory_expenses: dict[str, CategoryConstraint] = field(default_factory=dict)
    flexible_expenses: dict[str, CategoryConstraint] = field(default_factory=dict)
    debt_payments: dict[str, DebtConstraint] = field(default_factory=dict)
    goal_targets: dict[str, GoalConstraint] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _require_non_negative("ConstraintModel", total_income=self.total_income)
        seen: set[str] = set()
        for collection in (self.mandatory_expenses, self.flexible_expenses, self.debt_payments, self.goal_targets):
            duplicates = seen.intersection(collection)
            if duplicates:
                raise ValueError(f"IDs must be unique across the constraint model: {sorted(duplicates)}")
            seen.update(collection)

    def committed_minimums(self) -> float:
        """Sum of mandatory minimums and scheduled debt payments."""
        mandatory = sum(c.minimum for c in self.mandatory_expenses.values())
        debt = sum(d.scheduled_payment for d in self.debt_payments.values())
        return mandatory + debt

    def check_feasibility(self) -> tuple[bool, float]:
        """Check whether income covers the committed minimums.

        Returns
        -------
        tuple[bool, float]
            ``(feasible, deficit)`` where ``deficit`` is ``0`` when feasible.
        """
        required = self.committed_minimums()
        if required > self.total_income:
            return False, required - self.total_income
        return True, 0.0

    def surplus(self) -> float:
        """Income left after the committed minimums, floored at zero."""
        return max(0.0, self.total_income - self.committed_minimums())


@dataclass
class SurplusAllocation:
    """Shares of the post-minimum surplus assigned to each bucket."""

    emergency_fund_percent: float = 0.4
    debt_extra_percent: float = 0.3
    goals_percent: float = 0.2
    flexible_percent: float = 0.1

    def __post_init__(self) -> None:
        _require_non_negative(
            "SurplusAllocation",
            emergency_fund_percent=self.emergency_fund_percent,
            debt_extra_percent=self.debt_extra_percent,
            goals_percent=self.goals_percent,
            flexible_percent=self.flexible_percent,
        )
        total = self.emergency_fund_percent + self.debt_extra_percent + self.goals_percent + self.flexible_percent
        if total > 1 + 1e-9:
            raise ValueError(f"Surplus allocation percentages must sum to at most 1, got {total:.4f}")


@dataclass
class ScenarioParameters:
    """Tunable knobs for one allocation scenario.

    Parameters
    ----------
    scenario_type : str
        Free-form label, e.g. ``"balanced"``.
    goal_contribution_factor : float
        Multiplier applied to suggested goal contributions.
    flexible_spending_level : float
        Position between minimum (0) and maximum (1) flexible spending.
    surplus_allocation : SurplusAllocation
        Bucket shares used by the hybrid strategy.
    """

    scenario_type: str = "balanced"
    goal_contribution_factor: float = 1.0
    flexible_spending_level: float = 0.5
    surplus_allocation: SurplusAllocation = field(default_factory=SurplusAllocation)

    def __post_init__(self) -> None:
        _require_non_negative("ScenarioParameters", goal_contribution_factor=self.goal_contribution_factor)
        if not (0 <= self.flexible_spending_level <= 1):
            raise ValueError("Flexible spending level must be between 0 and 1.")

    @classmethod
    def for_scenario(cls, scenario_type: str) -> "ScenarioParameters":
        """Build the preset parameters for a named scenario.

        Parameters
        ----------
        scenario_type : str
            One of ``"conservative"``, ``"balanced"``, ``"aggressive"``.

        Returns
        -------
        ScenarioParameters

        Raises
        ------
        ValueError
            If the scenario name is unknown.
        """
        if scenario_type not in SCENARIO_PRESETS:
            raise ValueError(f"Unknown scenario {scenario_type!r}; expected one of {sorted(SCENARIO_PRESETS)}")
        factor, level, shares = SCENARIO_PRESETS[scenario_type]
        return cls(
            scenario_type=scenario_type,
            goal_contribution_factor=factor,
            flexible_spending_level=level,
            surplus_allocation=SurplusAllocation(*shares),
        )


# (goal factor, flexible level, (emergency, extra debt, goals, flexible))
SCENARIO_PRESETS: dict[str, tuple[float, float, tuple[float, float, float, float]]] = {
    "conservative": (0.7, 0.0, (0.60, 0.30, 0.05, 0.05)),
    "balanced": (1.0, 0.5, (0.40, 0.30, 0.20, 0.10)),
    "aggressive": (1.3, 1.0, (0.25, 0.25, 0.40, 0.10)),
}


@dataclass
class DebtPayment:
    """Payment assigned to one debt."""

    total_payment: float
    minimum_payment: float
    extra_payment: float = 0.0


@dataclass
class AllocationResult:
    """Normalized allocation of income across all items.

    Parameters
    ----------
    category_allocations : dict[str, float]
        Amount per mandatory or flexible category.
    goal_allocations : dict[str, float]
        Contribution per goal.
    debt_allocations : dict[str, DebtPayment]
        Payment per debt.
    total_allocated : float
        Sum of all allocations.
    surplus : float
        Income left unallocated after normalization.
    feasibility_score : float
        Satisfaction summary on a 0-100 scale.
    solver_iterations : int
        Iterations reported by the strategy.
    achieved_goals : list[str]
        Goal IDs meeting their target.
    unachieved_goals : list[str]
        Goal IDs falling short.
    solver_type : str
        Strategy that produced the result.
    """

    category_allocations: dict[str, float] = field(default_factory=dict)
    goal_allocations: dict[str, float] = field(default_factory=dict)
    debt_allocations: dict[str, DebtPayment] = field(default_factory=dict)
    total_allocated: float = 0.0
    surplus: float = 0.0
    feasibility_score: float = 0.0
    solver_iterations: int = 0
    achieved_goals: list[str] = field(default_factory=list)
    unachieved_goals: list[str] = field(default_factory=list)
    solver_type: str = "fuzzy"

    def __post_init__(self) -> None:
        """Validate that no allocation is negative."""
        for key, value in {**self.category_allocations, **self.goal_allocations}.items():
            if value < -1e-9:
                raise ValueError(f"Allocation for {key} must be non-negative, got {value}")
        for key, payment in self.debt_allocations.items():
            if payment.total_payment < -1e-9:
                raise ValueError(f"Debt payment for {key} must be non-negative, got {payment.total_payment}")
