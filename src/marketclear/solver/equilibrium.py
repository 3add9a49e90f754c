"""Per-period multi-market equilibrium solver.

The solver owns the prices of every solvable market in a period. Each
iteration it recomputes all contributors at the current price vector,
measures excess demand ``fx = demand - supply``, records the iterate in
the trace log, tests for convergence and otherwise asks the configured
step strategy for a price step.

Example:
    >>> context = ScenarioContext.from_calendar(calendar)
    >>> context.marketplace.create_market("wheat", "USA", initial_price=1.0)
    >>> contributors = [
    ...     LinearCurve.supply(context, "wheat", "USA", slope=2.0),
    ...     LinearCurve.demand(context, "wheat", "USA", intercept=9.0, slope=1.0),
    ... ]
    >>> solution = EquilibriumSolver(context, contributors).solve(period=1)
    >>> round(solution.prices["USAwheat"], 6)
    3.0
"""

from __future__ import annotations

import logging
import threading
import warnings
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import replace

import numpy as np

from marketclear.core.context import ScenarioContext
from marketclear.core.errors import DivergenceError, NonConvergenceWarning, SolverCancelled
from marketclear.inputs.contributors import MarketContributor
from marketclear.solver.settings import SolverMethod, SolverSettings
from marketclear.solver.state import IterationSnapshot, PeriodSolution, SolverStatus
from marketclear.solver.steps import StepStrategy, apply_step, limit_step, make_step_strategy
from marketclear.solver.trace import TraceLog

logger = logging.getLogger(__name__)


class EquilibriumSolver:
    """Iterative price solver for one scenario.

    Attributes:
        context: Scenario handles (calendar and marketplace)
        contributors: Everything that writes demand or supply
        settings: Tolerances, budget and step controls
        trace: Trace log receiving one row per market, variable and iterate
    """

    def __init__(
        self,
        context: ScenarioContext,
        contributors: list[MarketContributor],
        settings: SolverSettings | None = None,
        trace: TraceLog | None = None,
    ) -> None:
        self.context = context
        self.contributors = list(contributors)
        self.settings = settings or SolverSettings()
        self.trace = trace if trace is not None else TraceLog()

    def add_contributor(self, contributor: MarketContributor) -> None:
        self.contributors.append(contributor)

    def _run_contributors(self, period: int, executor: Executor | None) -> None:
        if executor is None:
            for contributor in self.contributors:
                contributor.calc(period)
            return
        futures = [executor.submit(contributor.calc, period) for contributor in self.contributors]
        # Every contributor must finish before excess demand is read.
        for future in futures:
            future.result()

    def _evaluate(
        self,
        prices: np.ndarray,
        period: int,
        free_ids: list[int],
        executor: Executor | None,
    ) -> np.ndarray:
        """Recompute all markets at ``prices`` and return raw excess demand."""
        marketplace = self.context.marketplace
        marketplace.set_price_vector(prices, period, free_ids)
        marketplace.null_demands_and_supplies(period)
        self._run_contributors(period, executor)
        return marketplace.demand_vector(period) - marketplace.supply_vector(period)

    def _snapshot(
        self,
        iteration: int,
        prices: np.ndarray,
        period: int,
        previous: IterationSnapshot | None,
    ) -> IterationSnapshot:
        """Build the snapshot for the state currently held by the marketplace."""
        marketplace = self.context.marketplace
        supply = marketplace.supply_vector(period)
        demand = marketplace.demand_vector(period)
        solvable = marketplace.solvable_vector(period)

        fx = demand - supply
        trivial = (np.abs(supply) + np.abs(demand)) < self.settings.trivial_threshold
        fx[trivial] = 0.0
        active = solvable & ~trivial

        if previous is None:
            deltax = np.zeros_like(prices)
            deltafx = np.zeros_like(fx)
        else:
            deltax = prices - previous.prices
            deltafx = fx - previous.fx

        return IterationSnapshot(
            iteration=iteration,
            prices=prices.copy(),
            supply=supply,
            demand=demand,
            fx=fx,
            deltax=deltax,
            deltafx=deltafx,
            solvable=solvable,
            active=active,
        )

    def _is_converged(self, snapshot: IterationSnapshot, first_step: bool) -> bool:
        settings = self.settings
        if snapshot.fx_norm(settings.relative_tolerance) > settings.ftol:
            return False
        if settings.xtol is None or first_step:
            return True
        return snapshot.dx_norm() <= settings.xtol

    def _finish(
        self,
        solution: PeriodSolution,
        snapshot: IterationSnapshot,
        status: SolverStatus,
        message: str,
    ) -> PeriodSolution:
        markets = list(self.context.marketplace)
        solution.status = status
        solution.iterations = snapshot.iteration - solution.first_iteration
        solution.fx_norm = snapshot.fx_norm(self.settings.relative_tolerance)
        solution.prices = {m.name: float(snapshot.prices[m.market_id]) for m in markets}
        solution.excess_demand = {m.name: float(snapshot.fx[m.market_id]) for m in markets}
        solution.message = message
        solution.final = snapshot
        return solution

    def _diverged(
        self,
        solution: PeriodSolution,
        snapshot: IterationSnapshot,
        period: int,
        free_ids: list[int],
        message: str,
    ) -> DivergenceError:
        # Leave the marketplace at the last finite iterate.
        self.context.marketplace.set_price_vector(snapshot.prices, period, free_ids)
        self._finish(solution, snapshot, SolverStatus.DIVERGED, message)
        logger.error("Period %d diverged: %s", period, message)
        return DivergenceError(message, period, solution)

    def solve(
        self,
        period: int,
        cancel_event: threading.Event | None = None,
        method: SolverMethod | str | None = None,
        first_iteration: int | None = None,
    ) -> PeriodSolution:
        """Solve one period for market-clearing prices.

        Starting prices are the marketplace's current prices for the period.
        On return the marketplace holds the final prices together with the
        demand and supply they produce.

        Args:
            period: Model period to solve
            cancel_event: Checked before every iteration; when set the
                solve stops with :class:`SolverCancelled`
            method: Step strategy overriding ``settings.method``
            first_iteration: Number of the first traced iterate; defaults to
                the trace log's next free iteration for the period, so a
                retry never repeats an iteration number

        Returns:
            PeriodSolution with status CONVERGED or EXHAUSTED

        Raises:
            DivergenceError: A price or excess demand became non-finite, or
                a price exceeded ``settings.max_price``
            SolverCancelled: ``cancel_event`` was set
        """
        settings = self.settings
        strategy = make_step_strategy(settings, method)
        marketplace = self.context.marketplace
        free_ids = marketplace.free_market_ids(period)
        self.trace.register_markets(period, marketplace)

        if first_iteration is None:
            first_iteration = self.trace.next_iteration(period)
        solution = PeriodSolution(period=period, first_iteration=first_iteration)
        solution.method = strategy.method.value

        logger.info("=" * 70)
        logger.info(
            "Solving period %d: %d markets (%d free), method=%s",
            period,
            len(marketplace),
            len(free_ids),
            strategy.method.value,
        )

        if settings.workers > 1:
            with ThreadPoolExecutor(max_workers=settings.workers) as executor:
                return self._iterate(
                    period, strategy, solution, free_ids, cancel_event, executor
                )
        return self._iterate(period, strategy, solution, free_ids, cancel_event, None)

    def _iterate(
        self,
        period: int,
        strategy: StepStrategy,
        solution: PeriodSolution,
        free_ids: list[int],
        cancel_event: threading.Event | None,
        executor: Executor | None,
    ) -> PeriodSolution:
        settings = self.settings
        relative = settings.relative_tolerance

        def evaluate(trial: np.ndarray) -> np.ndarray:
            return self._evaluate(trial, period, free_ids, executor)

        prices = self.context.marketplace.price_vector(period)
        previous: IterationSnapshot | None = None
        first = solution.first_iteration
        iteration = first
        solution.status = SolverStatus.ITERATING

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Period %d cancelled before iteration %d", period, iteration)
                raise SolverCancelled(period, iteration)

            evaluate(prices)
            snapshot = self._snapshot(iteration, prices, period, previous)
            self.trace.record_iteration(period, snapshot)

            if not (snapshot.is_finite() and np.all(np.isfinite(snapshot.fx))):
                last = previous if previous is not None else snapshot
                raise self._diverged(
                    solution, last, period, free_ids,
                    f"non-finite excess demand at iteration {iteration}",
                )

            steps = iteration - first
            if steps % settings.log_every == 0:
                logger.info(
                    "Iteration %d: max |fx| = %.2e", iteration, snapshot.fx_norm(relative)
                )

            if self._is_converged(snapshot, first_step=previous is None):
                logger.info("Period %d converged after %d iterations", period, steps)
                return self._finish(
                    solution, snapshot, SolverStatus.CONVERGED,
                    f"Converged after {steps} iterations",
                )

            if steps >= settings.max_iterations:
                message = (
                    f"Period {period} did not converge after {steps} iterations "
                    f"(max |fx| = {snapshot.fx_norm(relative):.2e})"
                )
                logger.warning(message)
                warnings.warn(message, NonConvergenceWarning, stacklevel=3)
                return self._finish(solution, snapshot, SolverStatus.EXHAUSTED, message)

            proposal = strategy.propose(snapshot, previous, evaluate)
            previous = replace(snapshot, jacobian=proposal.jacobian)

            dx = limit_step(proposal.dx, prices, settings.max_relative_step)
            next_prices = apply_step(prices, dx)
            free_prices = next_prices[free_ids]
            if not np.all(np.isfinite(free_prices)) or np.any(free_prices > settings.max_price):
                raise self._diverged(
                    solution, snapshot, period, free_ids,
                    f"price update at iteration {iteration} is non-finite or above "
                    f"{settings.max_price:.3g}",
                )

            prices = next_prices
            iteration += 1
