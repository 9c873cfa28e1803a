"""Shared fixtures for budget allocation tests."""

import pulp
import pytest

from budget_allocate.adapter import BudgetAllocator
from budget_allocate.models import (
    CategoryConstraint,
    ConstraintModel,
    DebtConstraint,
    GoalConstraint,
    ScenarioParameters,
)
from budget_allocate.solver.backend import create_milp_backend

CBC_AVAILABLE = bool(pulp.PULP_CBC_CMD(msg=False).available())


def pytest_collection_modifyitems(config, items):
    """Skip tests marked ``cbc`` when the CBC binary is missing."""
    if CBC_AVAILABLE:
        return
    skip_cbc = pytest.mark.skip(reason="CBC solver not available")
    for item in items:
        if item.get_closest_marker("cbc"):
            item.add_marker(skip_cbc)


def _greedy_only(num_vars):
    return None


@pytest.fixture()
def no_backend():
    """Backend factory that forces the greedy fallback."""
    return _greedy_only


@pytest.fixture(params=["greedy", pytest.param("milp", marks=pytest.mark.cbc)])
def backend_factory(request):
    """Run once with the greedy fallback and once with CBC."""
    return _greedy_only if request.param == "greedy" else create_milp_backend


@pytest.fixture()
def allocator(no_backend):
    """Factory for greedy-backed allocators."""

    def make(strategy="fuzzy", **kwargs):
        kwargs.setdefault("backend_factory", no_backend)
        return BudgetAllocator(strategy, **kwargs)

    return make


@pytest.fixture()
def sample_model():
    """Household budget with every kind of item."""
    return ConstraintModel(
        total_income=10_000.0,
        mandatory_expenses={
            "rent": CategoryConstraint("rent", minimum=3000.0, maximum=3000.0),
            "utilities": CategoryConstraint("utilities", minimum=400.0, maximum=600.0),
        },
        flexible_expenses={
            "dining": CategoryConstraint("dining", minimum=200.0, maximum=800.0, is_flexible=True, priority=5),
            "groceries": CategoryConstraint("groceries", minimum=600.0, maximum=1200.0, is_flexible=True, priority=2),
        },
        debt_payments={
            "card": DebtConstraint(
                "card", "Credit card", minimum_payment=300.0, current_balance=5000.0, interest_rate=22.0
            ),
            "car": DebtConstraint(
                "car", "Car loan", minimum_payment=450.0, current_balance=9000.0, fixed_payment=500.0
            ),
        },
        goal_targets={
            "emergency": GoalConstraint(
                "emergency", "Emergency fund", 1000.0, 6000.0, goal_type="emergency", priority="critical",
                priority_weight=1,
            ),
            "vacation": GoalConstraint("vacation", "Vacation", 500.0, 2000.0, priority="low", priority_weight=30),
        },
    )


@pytest.fixture()
def balanced():
    return ScenarioParameters.for_scenario("balanced")


@pytest.fixture()
def sample_event():
    """Pipeline-shaped event with ``id`` fields and a preset scenario."""
    return {
        "total_income": 5000.0,
        "mandatory_expenses": [{"id": "rent", "minimum": 2000.0, "maximum": 2000.0}],
        "flexible_expenses": [{"id": "fun", "minimum": 100.0, "maximum": 500.0, "is_flexible": True}],
        "debt_payments": [{"id": "loan", "debt_name": "Loan", "minimum_payment": 250.0, "current_balance": 4000.0}],
        "goal_targets": [
            {"id": "savings", "goal_name": "Savings", "suggested_contribution": 800.0, "remaining_amount": 5000.0}
        ],
        "scenario": "balanced",
    }
