"""Goal-programming budget allocation engine."""

from budget_allocate.adapter import BudgetAllocator
from budget_allocate.errors import AllocationError, BackendUnavailableError, InfeasibleMinimumsError, SolverError
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
from budget_allocate.scenarios import AllocationWarning, ScenarioOutcome, SensitivityReport

__all__ = [
    "AllocationError",
    "AllocationResult",
    "AllocationWarning",
    "BackendUnavailableError",
    "BudgetAllocator",
    "CategoryConstraint",
    "ConstraintModel",
    "DebtConstraint",
    "DebtPayment",
    "GoalConstraint",
    "InfeasibleMinimumsError",
    "ScenarioOutcome",
    "ScenarioParameters",
    "SensitivityReport",
    "SolverError",
    "SurplusAllocation",
]
