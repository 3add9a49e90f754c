"""Solver state: per-iteration snapshots and per-period results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class SolverStatus(str, Enum):
    """States of the per-period solver."""

    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    DIVERGED = "diverged"

    @property
    def is_terminal(self) -> bool:
        return self in (SolverStatus.CONVERGED, SolverStatus.EXHAUSTED, SolverStatus.DIVERGED)


@dataclass(frozen=True)
class IterationSnapshot:
    """Full market state at one iterate.

    All arrays are indexed by market id and cover every market, solvable or
    not. ``active`` marks the free markets that are not trivially solved;
    only those enter the convergence norm and the price step.

    Attributes:
        iteration: Iteration number, 0 for the starting prices
        prices: Price vector ``x_k``
        supply: Aggregate supply at ``x_k``
        demand: Aggregate demand at ``x_k``
        fx: Excess demand ``demand - supply`` (forced to 0 for trivially
            solved markets)
        deltax: ``x_k - x_{k-1}``, zeros at iteration 0
        deltafx: ``fx_k - fx_{k-1}``, zeros at iteration 0
        solvable: Solvability flags
        active: Free markets that take part in the step
        jacobian: Jacobian estimate over the active markets, when the
            step strategy keeps one
    """

    iteration: int
    prices: np.ndarray
    supply: np.ndarray
    demand: np.ndarray
    fx: np.ndarray
    deltax: np.ndarray
    deltafx: np.ndarray
    solvable: np.ndarray
    active: np.ndarray
    jacobian: np.ndarray | None = None

    def scaled_fx(self, relative: bool) -> np.ndarray:
        """Return excess demand of the active markets, optionally relative."""
        fx = self.fx[self.active]
        if not relative:
            return fx
        scale = np.maximum.reduce(
            [np.abs(self.demand[self.active]), np.abs(self.supply[self.active]), np.ones(fx.shape)]
        )
        return fx / scale

    def fx_norm(self, relative: bool = False) -> float:
        """Max-norm of the active excess demand."""
        fx = self.scaled_fx(relative)
        return float(np.max(np.abs(fx))) if fx.size else 0.0

    def dx_norm(self) -> float:
        """Max-norm of the last step over the active markets."""
        dx = self.deltax[self.active]
        return float(np.max(np.abs(dx))) if dx.size else 0.0

    def is_finite(self) -> bool:
        return bool(
            np.all(np.isfinite(self.prices))
            and np.all(np.isfinite(self.supply))
            and np.all(np.isfinite(self.demand))
        )


@dataclass
class PeriodSolution:
    """Result of solving one period.

    ``iterations`` counts the steps taken by this solve. Trace rows of the
    solve are numbered from ``first_iteration``, which is past every
    iteration an earlier solve of the same period left in the trace log.
    """

    period: int
    status: SolverStatus = SolverStatus.INITIALIZING
    iterations: int = 0
    first_iteration: int = 0
    fx_norm: float = float("inf")
    prices: dict[str, float] = field(default_factory=dict)
    excess_demand: dict[str, float] = field(default_factory=dict)
    method: str = ""
    message: str = ""
    final: IterationSnapshot | None = None

    @property
    def converged(self) -> bool:
        return self.status == SolverStatus.CONVERGED

    @property
    def usable(self) -> bool:
        """True when the period's results may be used, possibly flagged."""
        return self.status in (SolverStatus.CONVERGED, SolverStatus.EXHAUSTED)

    def summary(self) -> str:
        """Return a text summary of the solution."""
        lines = [
            "=" * 70,
            f"PERIOD {self.period} SOLUTION",
            "=" * 70,
            f"Status:        {self.status.value.upper()}",
            f"Method:        {self.method}",
            f"Iterations:    {self.iterations}",
            f"Max |fx|:      {self.fx_norm:.2e}",
            f"Message:       {self.message}",
            "",
            "Prices:",
        ]
        lines.extend(f"  {name:<30} {price:15,.6f}" for name, price in self.prices.items())
        lines.append("=" * 70)
        return "\n".join(lines)
