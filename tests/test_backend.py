"""Unit tests for the PuLP-backed MILP backend and backend factories."""

import logging

import pytest

from budget_allocate.errors import BackendUnavailableError
from budget_allocate.solver.backend import PulpBackend, create_lp_backend, create_milp_backend
from budget_allocate.solver.simplex import SimplexSolver


class MissingSolver:
    """Solver command stand-in that reports itself unavailable."""

    name = "MISSING_CMD"

    def available(self):
        return False


class RaisingSolver:
    """Solver command stand-in whose run fails."""

    name = "RAISING_CMD"

    def available(self):
        return True

    def actualSolve(self, prob, **kwargs):
        raise RuntimeError("solver binary crashed")


class TestPulpBackend:
    def test_unavailable_solver_raises(self):
        with pytest.raises(BackendUnavailableError, match="not available"):
            PulpBackend(2, solver=MissingSolver())

    def test_solver_exception_becomes_error_status(self, caplog):
        backend = PulpBackend(1, solver=RaisingSolver())
        backend.set_objective([1.0], maximize=True)
        backend.add_constraint([1.0], "<=", 5.0)
        with caplog.at_level(logging.ERROR, logger="budget_allocate.solver.backend"):
            result = backend.solve()
        assert result["status"] == "Error"
        assert result["solution"] == []
        assert "Error solving MILP" in caplog.text

    def test_released_backend_raises(self):
        backend = PulpBackend(1, solver=RaisingSolver())
        with backend:
            pass
        with pytest.raises(BackendUnavailableError, match="released"):
            backend.solve()

    @pytest.mark.cbc
    def test_binary_knapsack(self):
        with PulpBackend(3) as backend:
            backend.set_objective([10.0, 7.0, 4.0], maximize=True)
            for i in range(3):
                backend.set_binary(i)
            backend.add_constraint([5.0, 4.0, 3.0], "<=", 8.0)
            result = backend.solve()
        assert result["status"] == "Optimal"
        assert result["solution"] == pytest.approx([1.0, 0.0, 1.0])
        assert result["objective_value"] == pytest.approx(14.0)

    @pytest.mark.cbc
    def test_toy_lp_matches_simplex(self):
        results = []
        for backend in (PulpBackend(2), SimplexSolver(2)):
            with backend:
                backend.set_objective([1.0, 1.0], maximize=True)
                backend.add_constraint([1.0, 1.0], "<=", 10.0)
                backend.set_bounds(0, 0.0, 6.0)
                backend.set_bounds(1, 0.0, 6.0)
                results.append(backend.solve())
        assert [r["status"] for r in results] == ["Optimal", "Optimal"]
        assert results[0]["objective_value"] == pytest.approx(results[1]["objective_value"])

    @pytest.mark.cbc
    def test_infeasible_status(self):
        with PulpBackend(1) as backend:
            backend.set_objective([1.0], maximize=True)
            backend.add_constraint([1.0], "<=", 5.0)
            backend.add_constraint([1.0], ">=", 8.0)
            result = backend.solve()
        assert result["status"] == "Infeasible"


class TestFactories:
    def test_milp_factory_returns_none_when_unavailable(self, monkeypatch, caplog):
        monkeypatch.setattr("budget_allocate.solver.backend.lp.PULP_CBC_CMD", lambda **kwargs: MissingSolver())
        with caplog.at_level(logging.WARNING):
            assert create_milp_backend(3) is None
        assert "MILP backend unavailable" in caplog.text

    def test_lp_factory_simplex(self):
        assert isinstance(create_lp_backend("simplex", 2), SimplexSolver)

    def test_lp_factory_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown LP backend"):
            create_lp_backend("glpk", 2)
