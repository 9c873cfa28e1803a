"""Exceptions raised by the allocation engine."""


class AllocationError(Exception):
    """Base class for allocation failures surfaced to the caller."""


class InfeasibleMinimumsError(AllocationError):
    """Mandatory expenses and debt minimums exceed the available income.

    Parameters
    ----------
    deficit : float
        Amount by which the committed minimums exceed income.
    """

    def __init__(self, deficit: float, message: str | None = None) -> None:
        self.deficit = deficit
        super().__init__(message or f"budget deficit: {deficit:.2f}")


class SolverError(AllocationError):
    """A solver terminated without an optimal solution.

    Parameters
    ----------
    status : str
        Termination status reported by the backend.
    """

    def __init__(self, status: str, message: str | None = None) -> None:
        self.status = status
        super().__init__(message or f"solver returned non-optimal status: {status}")


class BackendUnavailableError(AllocationError):
    """The MILP backend is missing or failed to initialize."""
