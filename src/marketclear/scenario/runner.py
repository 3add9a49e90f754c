"""Build a scenario from its configuration and solve it period by period.

Periods are solved strictly in order: each period's technology vintages
inherit coefficients from the previous period's vintages, and solved
prices seed the next period's starting prices.
"""

from __future__ import annotations

import logging
import threading

from marketclear.core.calendar import PeriodCalendar
from marketclear.core.context import ScenarioContext
from marketclear.core.errors import DivergenceError
from marketclear.inputs.contributors import LeontiefTechnology, LinearCurve, MarketContributor
from marketclear.inputs.energy_input import EnergyInput
from marketclear.scenario.models import LinearCurveConfig, ScenarioConfig, TechnologyConfig
from marketclear.solver.equilibrium import EquilibriumSolver
from marketclear.solver.settings import SolverMethod
from marketclear.solver.state import PeriodSolution, SolverStatus
from marketclear.solver.trace import TraceLog

logger = logging.getLogger(__name__)


class ScenarioRunner:
    """Solve every period of a configured scenario.

    Attributes:
        config: Validated scenario configuration
        context: Calendar, marketplace and dependency finder
        trace: Trace log shared by all period solves
        curves: Linear supply and demand schedules
        vintages: Current vintage of each technology, by name
        solutions: Solved periods
    """

    def __init__(self, config: ScenarioConfig, trace: TraceLog | None = None) -> None:
        self.config = config
        self.context = ScenarioContext.from_calendar(config.calendar.to_calendar())
        self.trace = trace if trace is not None else TraceLog()
        self.curves: list[LinearCurve] = []
        self.vintages: dict[str, LeontiefTechnology] = {}
        self.solutions: dict[int, PeriodSolution] = {}
        self._build_markets()
        self.curves = [self._build_curve(curve) for curve in config.curves]

    @property
    def calendar(self) -> PeriodCalendar:
        return self.context.calendar

    def _build_markets(self) -> None:
        marketplace = self.context.marketplace
        for market in self.config.markets:
            marketplace.create_market(
                market.good,
                market.region,
                initial_price=market.initial_price,
                solvable=market.solvable,
            )
            if market.co2_coefficient is not None:
                marketplace.set_co2_coefficient(market.good, market.region, market.co2_coefficient)
        logger.info("Created %d markets", len(marketplace))

    def _build_curve(self, curve: LinearCurveConfig) -> LinearCurve:
        cross = {(c.good, c.region): c.slope for c in curve.cross_prices}
        if curve.side == "supply":
            return LinearCurve.supply(
                self.context, curve.good, curve.region, curve.slope,
                intercept=curve.intercept, cross_slopes=cross, name=curve.name,
            )
        return LinearCurve.demand(
            self.context, curve.good, curve.region, curve.intercept, curve.slope,
            cross_slopes=cross, name=curve.name,
        )

    def periods(self) -> list[int]:
        """Return the periods to solve, in order."""
        last = self.calendar.period_count() - 1
        if self.config.final_year is not None:
            last = self.calendar.year_to_period(self.config.final_year)
        return list(range(last + 1))

    def _first_vintage(self, tech: TechnologyConfig, period: int) -> LeontiefTechnology:
        inputs = [
            EnergyInput(
                self.context,
                cfg.name,
                coefficient=cfg.coefficients.get(period, cfg.coefficient),
                income_elasticity=cfg.income_elasticity,
                calibration_input=cfg.calibration.get(period),
                tech_change=cfg.tech_change,
                price_unit_conversion=cfg.price_unit_conversion,
                keywords=cfg.keywords,
            )
            for cfg in tech.inputs
        ]
        vintage = LeontiefTechnology(
            self.context,
            tech.name,
            tech.sector,
            tech.region,
            tech.output_good,
            inputs,
            period=period,
            base_output=tech.base_output,
            price_elasticity=tech.price_elasticity,
            fixed_output=tech.fixed_output.get(period),
            subsector=tech.subsector,
        )
        vintage.complete_init()
        return vintage

    def _advance_technologies(self, period: int) -> list[LeontiefTechnology]:
        """Create this period's vintage of every technology."""
        for tech in self.config.technologies:
            previous = self.vintages.get(tech.name)
            if previous is None:
                vintage = self._first_vintage(tech, period)
            else:
                vintage = previous.next_vintage(
                    period,
                    fixed_output=tech.fixed_output.get(period),
                    coefficients={
                        cfg.name: cfg.coefficients[period]
                        for cfg in tech.inputs
                        if period in cfg.coefficients
                    },
                    calibrations={
                        cfg.name: cfg.calibration[period]
                        for cfg in tech.inputs
                        if period in cfg.calibration
                    },
                )
            self.vintages[tech.name] = vintage
        return list(self.vintages.values())

    def _carry_prices_forward(self, period: int) -> None:
        if not self.config.carry_forward_prices or period - 1 not in self.solutions:
            return
        marketplace = self.context.marketplace
        free_ids = marketplace.free_market_ids(period)
        marketplace.set_price_vector(marketplace.price_vector(period - 1), period, free_ids)

    def solve_period(self, period: int, cancel_event: threading.Event | None = None) -> PeriodSolution:
        """Advance technologies into ``period`` and solve it.

        Divergence is retried with each of ``solver.fallback_methods`` from
        the period's starting prices; the last error propagates when every
        method diverges. Each retry continues the period's iteration
        numbering in the trace log after the failed attempt's last iterate.
        """
        marketplace = self.context.marketplace
        self._carry_prices_forward(period)
        technologies = self._advance_technologies(period)
        for technology in technologies:
            technology.init_calc(period)

        contributors: list[MarketContributor] = [*self.curves, *technologies]
        solver = EquilibriumSolver(self.context, contributors, self.config.solver, self.trace)

        free_ids = marketplace.free_market_ids(period)
        start_prices = marketplace.price_vector(period)
        methods: list[SolverMethod] = [self.config.solver.method, *self.config.solver.fallback_methods]

        for attempt, method in enumerate(methods):
            if attempt:
                logger.warning("Retrying period %d with method '%s'", period, method.value)
                marketplace.set_price_vector(start_prices, period, free_ids)
            try:
                solution = solver.solve(period, cancel_event=cancel_event, method=method)
            except DivergenceError:
                if attempt == len(methods) - 1:
                    raise
                continue
            break

        if solution.status == SolverStatus.EXHAUSTED:
            logger.warning("Keeping unconverged results for period %d", period)
        marketplace.check_calibration(period)
        self.solutions[period] = solution
        return solution

    def run(self, cancel_event: threading.Event | None = None) -> dict[int, PeriodSolution]:
        """Solve all periods in order and write the trace log if configured.

        The trace log is written even when a period diverges or the run is
        cancelled.
        """
        logger.info("=" * 70)
        logger.info("RUNNING SCENARIO %s", self.config.name)
        logger.info("=" * 70)

        output = self.config.output
        try:
            for period in self.periods():
                self.solve_period(period, cancel_event=cancel_event)
        finally:
            # A failed run keeps every row recorded up to the failure.
            if output.trace_path is not None:
                self.trace.write(output.trace_path, output.key_path)

        flagged = [p for p, s in self.solutions.items() if not s.converged]
        if flagged:
            logger.warning("Periods without convergence: %s", flagged)
        else:
            logger.info("All %d periods converged", len(self.solutions))
        return self.solutions
