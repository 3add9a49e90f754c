"""Error taxonomy for the marketclear framework."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from marketclear.solver.state import PeriodSolution


class MarketClearError(Exception):
    """Base class for all marketclear errors."""

    pass


class ConfigurationError(MarketClearError, ValueError):
    """Raised when calendar or scenario configuration is invalid."""

    pass


class OutOfRangeError(MarketClearError, LookupError):
    """Raised when a year or period is not registered in the calendar."""

    pass


class MissingMarketInfo(MarketClearError, LookupError):
    """Raised when no market (and so no market info) exists for a good."""

    pass


class DivergenceError(MarketClearError):
    """Raised when a price update produces a non-finite or unbounded value.

    Attributes:
        period: Model period that failed
        solution: Last solver state for the period, when available
    """

    def __init__(
        self,
        message: str,
        period: int,
        solution: PeriodSolution | None = None,
    ) -> None:
        super().__init__(message)
        self.period = period
        self.solution = solution


class SolverCancelled(MarketClearError):
    """Raised when a solve is cancelled at an iteration boundary."""

    def __init__(self, period: int, iteration: int) -> None:
        super().__init__(
            f"Solve of period {period} cancelled before iteration {iteration}"
        )
        self.period = period
        self.iteration = iteration


class NonConvergenceWarning(UserWarning):
    """Issued when a period exhausts its iteration budget.

    The period's results are retained but should be reviewed.
    """

    pass
