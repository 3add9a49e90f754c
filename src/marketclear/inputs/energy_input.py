"""Energy input of a technology.

An :class:`EnergyInput` turns a technology's output into a physical demand
for one traded good. It owns the per-period adjusted input-output
coefficient (which carries technical change forward from period to
period), an optional one-period calibration quantity and the cached
emissions coefficient of the good, and it is the single point where a
technology pushes demand into the :class:`~marketclear.core.markets.Marketplace`.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from marketclear.core.context import ScenarioContext
from marketclear.core.errors import MissingMarketInfo
from marketclear.inputs.coefficients import Efficiency, Intensity

logger = logging.getLogger(__name__)


class EnergyInput:
    """Demand for one good by one technology vintage.

    Attributes:
        name: Good the input draws from (also its market name)
        coefficient: Explicit read-in coefficient, if any
        income_elasticity: Income elasticity of the input
        calibration_input: Calibrated quantity read in for this vintage
        tech_change: Annual technical change rate, if any
        price_unit_conversion: Factor converting market price units
        keywords: Free-form reporting keywords

    Example:
        >>> inp = EnergyInput(context, "natural gas", coefficient=Efficiency(value=0.5))
        >>> inp.complete_init("USA", "electricity", "gas", "CC", context.dependency_finder)
        >>> inp.get_coefficient(period=2)
        2.0
    """

    def __init__(
        self,
        context: ScenarioContext,
        name: str,
        coefficient: Efficiency | Intensity | None = None,
        income_elasticity: float = 0.0,
        calibration_input: float | None = None,
        tech_change: float | None = None,
        price_unit_conversion: float = 1.0,
        keywords: dict[str, str] | None = None,
    ) -> None:
        self.context = context
        self.name = name
        self.coefficient = coefficient
        self.income_elasticity = income_elasticity
        self.calibration_input = calibration_input
        self.tech_change = tech_change
        self.price_unit_conversion = price_unit_conversion
        self.keywords = dict(keywords or {})

        period_count = context.calendar.period_count()
        self._current_calibration: float | None = None
        self._co2_coefficient: float | None = None
        self._adjusted_coefficients: list[float | None] = [None] * period_count
        self._physical_demand: list[float | None] = [None] * period_count
        self._carbon_content: list[float | None] = [None] * period_count

    def __repr__(self) -> str:
        return f"EnergyInput({self.name!r})"

    def clone(self) -> EnergyInput:
        """Return a copy for the next technology vintage.

        The explicit coefficient is not copied; the clone's coefficient is
        filled in later from this instance. Calibration values are valid for
        one period only and are not copied either.
        """
        return EnergyInput(
            self.context,
            self.name,
            income_elasticity=self.income_elasticity,
            tech_change=self.tech_change,
            price_unit_conversion=self.price_unit_conversion,
            keywords=self.keywords,
        )

    @property
    def current_calibration(self) -> float | None:
        """Calibration quantity in effect, after any rescaling."""
        return self._current_calibration

    @property
    def co2_coefficient(self) -> float | None:
        """Emissions coefficient cached by the last :meth:`init_calc`."""
        return self._co2_coefficient

    def complete_init(
        self,
        region: str,
        sector: str,
        subsector: str,
        technology: str,
        dependency_finder: Any,
    ) -> None:
        """Finish initialization once the whole scenario has been read.

        Registers the sector's dependency on this input's market, activates
        the calibration value and seeds every period's adjusted coefficient
        with the read-in coefficient (1 when none was given).
        """
        dependency_finder.add_dependency(sector, self.name)

        if self.calibration_input is not None:
            self._current_calibration = self.calibration_input

        current = self.coefficient.coefficient() if self.coefficient is not None else 1.0
        self._adjusted_coefficients = [current] * len(self._adjusted_coefficients)
        logger.debug(
            "Initialized input %s of %s/%s/%s in %s with coefficient %.6g",
            self.name,
            sector,
            subsector,
            technology,
            region,
            current,
        )

    def init_calc(
        self,
        region: str,
        sector: str,
        is_new_investment_period: bool,
        is_trade: bool,
        period: int,
    ) -> None:
        """Prepare the input for calculations in ``period``."""
        assert region, "init_calc requires a region name"

        self._co2_coefficient = self.context.marketplace.get_co2_coefficient(
            self.name, region, period
        )

        if self.coefficient is not None:
            self._adjusted_coefficients[period] = self.coefficient.coefficient()
        elif self._adjusted_coefficients[period] is None:
            self._adjusted_coefficients[period] = 1.0

    def copy_param(self, other: EnergyInput, period: int) -> None:
        """Fill this input's parameters from the previous vintage ``other``."""
        other.copy_params_into(self, period)

    def copy_params_into(self, other: EnergyInput, period: int) -> None:
        """Copy this input's previous-period coefficient into ``other``.

        Only applies when ``other`` has no explicit coefficient of its own,
        so technical change compounds along a chain of cloned vintages.
        """
        assert period > 0, "coefficients can only be copied into periods after the base"
        if other.coefficient is None:
            other._adjusted_coefficients[period] = self._adjusted_coefficients[period - 1]

    def apply_technical_change(self, period: int, timestep: int) -> None:
        """Improve the period's coefficient by the technical change rate.

        Applied over ``timestep`` years; a no-op when no rate is set or
        the coefficient for this period was read in explicitly.
        """
        if not self.tech_change or self.coefficient is not None:
            return
        current = self.get_coefficient(period)
        self.set_coefficient(current / (1.0 + self.tech_change) ** timestep, period)

    def get_co2_emissions_coefficient(self, ghg_name: str, period: int) -> float:
        assert self._co2_coefficient is not None, "init_calc must run before emissions are read"
        return self._co2_coefficient

    def get_physical_demand(self, period: int) -> float:
        value = self._physical_demand[period]
        assert value is not None, f"physical demand for {self.name} not set in period {period}"
        return value

    def get_carbon_content(self, period: int) -> float:
        value = self._carbon_content[period]
        return 0.0 if value is None else value

    def set_physical_demand(self, quantity: float, region: str, period: int) -> None:
        """Record demand and push it into this input's market."""
        self._physical_demand[period] = quantity
        self.context.marketplace.add_to_demand(self.name, region, quantity, period, True)
        self._carbon_content[period] = quantity * self.get_co2_emissions_coefficient("CO2", period)

    def get_coefficient(self, period: int) -> float:
        value = self._adjusted_coefficients[period]
        assert value is not None, f"coefficient for {self.name} not set in period {period}"
        return value

    def set_coefficient(self, coefficient: float, period: int) -> None:
        assert coefficient >= 0, "coefficients must be non-negative"
        self._adjusted_coefficients[period] = coefficient

    def get_price(self, region: str, period: int) -> float:
        """Return the market price converted to this input's units."""
        return self.price_unit_conversion * self.context.marketplace.get_price(
            self.name, region, period
        )

    def tabulate_fixed_quantity(
        self,
        region: str,
        fixed_output: float | None,
        is_investment_period: bool,
        period: int,
    ) -> None:
        """Add this input's fixed demand to its market's calibrated-demand counter.

        A calibrated output of the owning technology takes precedence and is
        converted to input with the period's coefficient. Otherwise the
        input's own calibration quantity counts in an investment period.
        Without either, the market's demand is marked as price-responsive.
        A missing market is skipped, since the configuration error behind it
        has already been reported.
        """
        try:
            info = self.context.marketplace.get_market_info(self.name, region, period)
        except MissingMarketInfo:
            logger.debug("No market info for %s in %s, skipping fixed quantity", self.name, region)
            return

        existing = info.existing_fixed_demand()

        if fixed_output is not None:
            fixed_input = fixed_output * self.get_coefficient(period)
            info.set_fixed_demand(fixed_input + existing)
            assert (
                not is_investment_period
                or self._current_calibration is None
                or math.isclose(fixed_input, self._current_calibration, rel_tol=1e-6)
            ), "calibrated input disagrees with calibrated output times coefficient"
        elif is_investment_period and self._current_calibration is not None:
            info.set_fixed_demand(self._current_calibration + existing)
        else:
            info.mark_demand_variable()

    def scale_calibration_quantity(self, factor: float) -> None:
        """Rescale the calibration quantity, if one was read in."""
        assert factor >= 0, "calibration scale factor must be non-negative"
        assert self.calibration_input is None or self._current_calibration is not None

        if self._current_calibration is not None:
            self._current_calibration *= factor

    def get_calibration_quantity(self, period: int) -> float | None:
        assert self.calibration_input is None or self._current_calibration is not None
        return self._current_calibration

    @property
    def price_elasticity(self) -> float:
        return 0.0

    def to_dict(self, period: int) -> dict[str, Any]:
        """Return the input's state for one period."""
        return {
            "name": self.name,
            "coefficient": self.coefficient.model_dump() if self.coefficient else None,
            "income_elasticity": self.income_elasticity,
            "calibrated_value": self.calibration_input,
            "tech_change": self.tech_change,
            "current_calibration": self._current_calibration,
            "current_coefficient": self._adjusted_coefficients[period],
            "cached_co2_coefficient": self._co2_coefficient,
            "physical_demand": self._physical_demand[period],
            "carbon_content": self._carbon_content[period],
            "price_unit_conversion": self.price_unit_conversion,
            "keywords": dict(self.keywords),
        }
