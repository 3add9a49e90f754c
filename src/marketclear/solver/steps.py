"""Price-step strategies for the equilibrium solver.

Each strategy maps the current :class:`IterationSnapshot` (and the one
before it) to a proposed price step. Strategies do not mutate snapshots;
the only side effect is calling ``evaluate`` for finite differences, which
recomputes markets at trial prices.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from marketclear.solver.settings import SolverMethod, SolverSettings
from marketclear.solver.state import IterationSnapshot

logger = logging.getLogger(__name__)

Evaluator = Callable[[np.ndarray], np.ndarray]

_TINY = 1e-14
_MAX_CONDITION = 1e12


@dataclass(frozen=True)
class StepProposal:
    """A proposed price step over all markets.

    Attributes:
        dx: Step for every market; zero outside the active set
        jacobian: Jacobian estimate over the active markets, if kept
        fallback: True when a bounded fallback replaced a derivative step
    """

    dx: np.ndarray
    jacobian: np.ndarray | None = None
    fallback: bool = False


def fallback_step(fx: np.ndarray, prices: np.ndarray, fraction: float) -> np.ndarray:
    """Bounded step used when no usable derivative is available.

    Raises the price of markets in excess demand and lowers it otherwise,
    by ``fraction`` of the price (at least ``fraction`` in absolute terms).
    """
    return np.sign(fx) * fraction * np.maximum(np.abs(prices), 1.0)


def finite_difference_jacobian(
    snapshot: IterationSnapshot,
    evaluate: Evaluator,
    rel_step: float,
) -> np.ndarray:
    """Forward-difference Jacobian of active excess demand w.r.t. active prices."""
    active = np.flatnonzero(snapshot.active)
    base_fx = snapshot.fx[active]
    jacobian = np.zeros((active.size, active.size), dtype=float)
    for column, market_id in enumerate(active):
        h = rel_step * max(abs(snapshot.prices[market_id]), 1.0)
        trial = snapshot.prices.copy()
        trial[market_id] += h
        jacobian[:, column] = (evaluate(trial)[active] - base_fx) / h
    return jacobian


def _solve_newton(jacobian: np.ndarray, fx: np.ndarray) -> np.ndarray | None:
    """Solve ``J dx = -fx``; return None when J is singular or ill-conditioned."""
    if not np.all(np.isfinite(jacobian)):
        return None
    with np.errstate(all="ignore"):
        condition = np.linalg.cond(jacobian)
    if not condition < _MAX_CONDITION:
        return None
    try:
        dx = np.linalg.solve(jacobian, -fx)
    except np.linalg.LinAlgError:
        return None
    return dx if np.all(np.isfinite(dx)) else None


class StepStrategy(ABC):
    """Base class for price-step strategies."""

    method: SolverMethod

    def __init__(self, settings: SolverSettings) -> None:
        self.settings = settings

    @abstractmethod
    def propose(
        self,
        snapshot: IterationSnapshot,
        previous: IterationSnapshot | None,
        evaluate: Evaluator,
    ) -> StepProposal:
        """Return a price step from ``snapshot``."""

    def _expand(self, snapshot: IterationSnapshot, dx_active: np.ndarray) -> np.ndarray:
        dx = np.zeros_like(snapshot.prices)
        dx[snapshot.active] = dx_active
        return dx

    def _fallback(self, snapshot: IterationSnapshot, jacobian: np.ndarray | None) -> StepProposal:
        logger.warning(
            "Iteration %d: derivative unusable, taking bounded fallback step",
            snapshot.iteration,
        )
        active = snapshot.active
        dx_active = fallback_step(
            snapshot.fx[active], snapshot.prices[active], self.settings.fallback_step
        )
        return StepProposal(dx=self._expand(snapshot, dx_active), jacobian=jacobian, fallback=True)


class NewtonStep(StepStrategy):
    """Newton-Raphson with a fresh finite-difference Jacobian every iteration."""

    method = SolverMethod.NEWTON

    def propose(self, snapshot, previous, evaluate):
        jacobian = finite_difference_jacobian(snapshot, evaluate, self.settings.fd_step)
        dx_active = _solve_newton(jacobian, snapshot.fx[snapshot.active])
        if dx_active is None:
            return self._fallback(snapshot, jacobian)
        return StepProposal(dx=self._expand(snapshot, dx_active), jacobian=jacobian)


class BroydenStep(StepStrategy):
    """Broyden's method.

    Starts from a finite-difference Jacobian and applies rank-one updates;
    the Jacobian is recomputed when the active set changes or the residual
    norm grows.
    """

    method = SolverMethod.BROYDEN

    def _needs_refresh(self, snapshot: IterationSnapshot, previous: IterationSnapshot | None) -> bool:
        if previous is None or previous.jacobian is None:
            return True
        if not np.array_equal(previous.active, snapshot.active):
            return True
        return snapshot.fx_norm() > previous.fx_norm()

    def propose(self, snapshot, previous, evaluate):
        if self._needs_refresh(snapshot, previous):
            jacobian = finite_difference_jacobian(snapshot, evaluate, self.settings.fd_step)
        else:
            active = snapshot.active
            dx = snapshot.deltax[active]
            dfx = snapshot.deltafx[active]
            jacobian = previous.jacobian.copy()
            denom = float(dx @ dx)
            if denom > _TINY:
                jacobian += np.outer(dfx - jacobian @ dx, dx) / denom

        dx_active = _solve_newton(jacobian, snapshot.fx[snapshot.active])
        if dx_active is None:
            return self._fallback(snapshot, None)
        return StepProposal(dx=self._expand(snapshot, dx_active), jacobian=jacobian)


class SecantStep(StepStrategy):
    """Diagonal secant step.

    Each market uses its own ``deltafx / deltax`` from the previous
    iterate; markets without a usable secant get a one-shot joint
    finite-difference estimate. Cross-market effects are ignored, so this
    suits weakly coupled systems.
    """

    method = SolverMethod.SECANT

    def propose(self, snapshot, previous, evaluate):
        active = snapshot.active
        prices = snapshot.prices[active]
        fx = snapshot.fx[active]
        dx_prev = snapshot.deltax[active]
        dfx_prev = snapshot.deltafx[active]

        derivative = np.zeros_like(fx)
        usable = np.abs(dx_prev) > _TINY
        derivative[usable] = dfx_prev[usable] / dx_prev[usable]
        missing = ~usable | (np.abs(derivative) < _TINY)

        if np.any(missing):
            h = self.settings.fd_step * np.maximum(np.abs(prices), 1.0)
            trial = snapshot.prices.copy()
            trial[np.flatnonzero(active)[missing]] += h[missing]
            trial_fx = evaluate(trial)[active]
            derivative[missing] = (trial_fx[missing] - fx[missing]) / h[missing]

        dx_active = np.empty_like(fx)
        zero = ~np.isfinite(derivative) | (np.abs(derivative) < _TINY)
        dx_active[~zero] = -fx[~zero] / derivative[~zero]
        if np.any(zero):
            logger.warning(
                "Iteration %d: zero derivative for %d market(s), using bounded fallback",
                snapshot.iteration,
                int(zero.sum()),
            )
            dx_active[zero] = fallback_step(fx[zero], prices[zero], self.settings.fallback_step)
        return StepProposal(
            dx=self._expand(snapshot, dx_active),
            jacobian=np.diag(derivative),
            fallback=bool(np.any(zero)),
        )


_STRATEGIES: dict[SolverMethod, type[StepStrategy]] = {
    SolverMethod.NEWTON: NewtonStep,
    SolverMethod.BROYDEN: BroydenStep,
    SolverMethod.SECANT: SecantStep,
}


def make_step_strategy(settings: SolverSettings, method: SolverMethod | str | None = None) -> StepStrategy:
    """Instantiate the step strategy for ``method`` (default: ``settings.method``)."""
    chosen = SolverMethod.from_alias(method) if method is not None else settings.method
    return _STRATEGIES[chosen](settings)


def limit_step(dx: np.ndarray, prices: np.ndarray, max_relative_step: float | None) -> np.ndarray:
    """Cap each step at ``max_relative_step * max(|p|, 1)``."""
    if max_relative_step is None:
        return dx
    bound = max_relative_step * np.maximum(np.abs(prices), 1.0)
    return np.clip(dx, -bound, bound)


def apply_step(prices: np.ndarray, dx: np.ndarray) -> np.ndarray:
    """Return ``prices + dx`` clipped to be non-negative."""
    return np.maximum(prices + dx, 0.0)
