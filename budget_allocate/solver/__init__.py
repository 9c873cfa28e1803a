"""Budget allocation solvers.

Provides the membership evaluator, the Simplex LP engine, the pluggable
MILP backend with its piecewise linearization, and the goal-programming
strategies that allocate flexible spending and goals.

Every strategy follows the same shape: a ``build_*`` function populates
the solver from a ``ConstraintModel`` and ``solve()`` returns a typed
result dict.
"""

from budget_allocate.solver._common import Variable, allocate_minimums
from budget_allocate.solver._types import (
    FuzzyResult,
    GPResult,
    HybridResult,
    LPResult,
    MetaResult,
    MILPBackend,
)
from budget_allocate.solver.backend import PulpBackend, create_lp_backend, create_milp_backend
from budget_allocate.solver.fuzzy import FuzzyGoal, FuzzyGPSolver, build_fuzzy_solver
from budget_allocate.solver.hybrid import HybridGPSolver
from budget_allocate.solver.linearize import PiecewiseLinearization, decompose
from budget_allocate.solver.lp_goal import LPGoalSolver, build_lp_solver
from budget_allocate.solver.membership import MembershipFunction, evaluate
from budget_allocate.solver.meta import MetaGoal, MetaGPSolver, TargetLevel, build_meta_solver
from budget_allocate.solver.preemptive import GPGoal, PreemptiveGPSolver, build_preemptive_solver
from budget_allocate.solver.simplex import SimplexSolver

__all__ = [
    "FuzzyGPSolver",
    "FuzzyGoal",
    "FuzzyResult",
    "GPGoal",
    "GPResult",
    "HybridGPSolver",
    "HybridResult",
    "LPGoalSolver",
    "LPResult",
    "MILPBackend",
    "MembershipFunction",
    "MetaGPSolver",
    "MetaGoal",
    "MetaResult",
    "PiecewiseLinearization",
    "PreemptiveGPSolver",
    "PulpBackend",
    "SimplexSolver",
    "TargetLevel",
    "Variable",
    "allocate_minimums",
    "build_fuzzy_solver",
    "build_lp_solver",
    "build_meta_solver",
    "build_preemptive_solver",
    "create_lp_backend",
    "create_milp_backend",
    "decompose",
    "evaluate",
]
