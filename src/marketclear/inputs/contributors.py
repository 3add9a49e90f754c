"""Demand and supply contributors.

A contributor reads prices from the marketplace and writes demand or
supply for one period. The equilibrium solver recomputes every contributor
from scratch at each trial price vector, so ``calc`` must depend only on
the current prices and the contributor's own parameters.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol, runtime_checkable

from marketclear.core.context import ScenarioContext
from marketclear.inputs.coefficients import Efficiency, Intensity
from marketclear.inputs.energy_input import EnergyInput

logger = logging.getLogger(__name__)


@runtime_checkable
class MarketContributor(Protocol):
    """Anything that adds demand or supply to markets for a period."""

    name: str

    def calc(self, period: int) -> None:
        """Add this contributor's demand/supply at current prices."""
        ...


class LinearCurve:
    """Affine supply or demand schedule.

    ``quantity = intercept + slope * p_own + sum(cross * p_other)``

    Attributes:
        name: Identifier used in logs
        good: Good whose market receives the quantity
        region: Region of the market
        side: ``"supply"`` or ``"demand"``
        intercept: Quantity at zero prices
        slope: Response to the market's own price
        cross_slopes: Response to other markets' prices, keyed by
            ``(good, region)``
    """

    def __init__(
        self,
        context: ScenarioContext,
        good: str,
        region: str,
        side: Literal["supply", "demand"],
        intercept: float = 0.0,
        slope: float = 0.0,
        cross_slopes: dict[tuple[str, str], float] | None = None,
        name: str | None = None,
    ) -> None:
        if side not in ("supply", "demand"):
            msg = f"side must be 'supply' or 'demand', got {side!r}"
            raise ValueError(msg)
        self.context = context
        self.good = good
        self.region = region
        self.side = side
        self.intercept = intercept
        self.slope = slope
        self.cross_slopes = dict(cross_slopes or {})
        self.name = name or f"{region}{good}-{side}"

    @classmethod
    def supply(cls, context: ScenarioContext, good: str, region: str, slope: float, **kwargs) -> LinearCurve:
        """Supply ``S(p) = intercept + slope * p``."""
        return cls(context, good, region, "supply", slope=slope, **kwargs)

    @classmethod
    def demand(
        cls, context: ScenarioContext, good: str, region: str, intercept: float, slope: float, **kwargs
    ) -> LinearCurve:
        """Demand ``D(p) = intercept - slope * p``."""
        return cls(context, good, region, "demand", intercept=intercept, slope=-slope, **kwargs)

    def quantity(self, period: int) -> float:
        marketplace = self.context.marketplace
        value = self.intercept + self.slope * marketplace.get_price(self.good, self.region, period)
        for (good, region), cross in self.cross_slopes.items():
            value += cross * marketplace.get_price(good, region, period)
        return value

    def calc(self, period: int) -> None:
        value = self.quantity(period)
        if self.side == "supply":
            self.context.marketplace.add_to_supply(self.good, self.region, value, period)
        else:
            self.context.marketplace.add_to_demand(self.good, self.region, value, period, False)


class LeontiefTechnology:
    """Single-output technology with fixed input proportions.

    One instance is one vintage: the technology as built in ``period``.
    Its output is supplied to ``output_good`` either at a calibrated
    level or, when uncalibrated, as
    ``base_output * (p_out / unit_cost) ** price_elasticity``; each input
    is then demanded as ``output * coefficient``.

    Attributes:
        name: Technology name
        sector: Sector the technology belongs to
        subsector: Subsector the technology belongs to
        region: Region the technology operates in
        output_good: Good the technology supplies
        inputs: Energy inputs of this vintage
        period: Period this vintage is built in
        base_output: Output when price equals unit cost
        price_elasticity: Output response to the price/cost ratio
        fixed_output: Calibrated output for this vintage's period, if any
    """

    def __init__(
        self,
        context: ScenarioContext,
        name: str,
        sector: str,
        region: str,
        output_good: str,
        inputs: list[EnergyInput],
        period: int = 0,
        base_output: float = 1.0,
        price_elasticity: float = 1.0,
        fixed_output: float | None = None,
        subsector: str = "",
    ) -> None:
        self.context = context
        self.name = name
        self.sector = sector
        self.subsector = subsector or sector
        self.region = region
        self.output_good = output_good
        self.inputs = inputs
        self.period = period
        self.base_output = base_output
        self.price_elasticity = price_elasticity
        self.fixed_output = fixed_output

    def __repr__(self) -> str:
        return f"LeontiefTechnology({self.name!r}, period={self.period})"

    def complete_init(self) -> None:
        for energy_input in self.inputs:
            energy_input.complete_init(
                self.region,
                self.sector,
                self.subsector,
                self.name,
                self.context.dependency_finder,
            )

    def next_vintage(
        self,
        period: int,
        fixed_output: float | None = None,
        coefficients: dict[str, Efficiency | Intensity] | None = None,
        calibrations: dict[str, float] | None = None,
    ) -> LeontiefTechnology:
        """Clone this vintage forward into ``period``.

        Inputs without an explicit coefficient in ``coefficients`` inherit
        this vintage's coefficient and then receive technical change over
        the new period's timestep. Calibration quantities are never carried
        forward; pass them in ``calibrations`` to re-supply them.
        """
        assert period > self.period, "vintages only move forward in time"
        coefficients = coefficients or {}
        calibrations = calibrations or {}

        inputs = []
        for previous in self.inputs:
            clone = previous.clone()
            clone.coefficient = coefficients.get(previous.name)
            clone.calibration_input = calibrations.get(previous.name)
            inputs.append(clone)

        vintage = LeontiefTechnology(
            self.context,
            self.name,
            self.sector,
            self.region,
            self.output_good,
            inputs,
            period=period,
            base_output=self.base_output,
            price_elasticity=self.price_elasticity,
            fixed_output=fixed_output,
            subsector=self.subsector,
        )
        vintage.complete_init()

        timestep = self.context.calendar.timestep_of(period)
        for previous, current in zip(self.inputs, vintage.inputs):
            current.copy_param(previous, period)
            current.apply_technical_change(period, timestep)
        return vintage

    def init_calc(self, period: int) -> None:
        """Refresh cached input state and tabulate calibrated demand."""
        is_investment = period == self.period
        for energy_input in self.inputs:
            energy_input.init_calc(self.region, self.sector, is_investment, False, period)
        for energy_input in self.inputs:
            energy_input.tabulate_fixed_quantity(
                self.region, self.fixed_output, is_investment, period
            )

    def unit_cost(self, period: int) -> float:
        """Return the input cost of one unit of output."""
        return sum(
            energy_input.get_coefficient(period) * energy_input.get_price(self.region, period)
            for energy_input in self.inputs
        )

    def output(self, period: int) -> float:
        """Return the output level at current prices."""
        if self.fixed_output is not None:
            return self.fixed_output
        price = self.context.marketplace.get_price(self.output_good, self.region, period)
        if price <= 0.0:
            return 0.0
        cost = self.unit_cost(period)
        if cost <= 0.0:
            return self.base_output
        return self.base_output * (price / cost) ** self.price_elasticity

    def calc(self, period: int) -> None:
        output = self.output(period)
        self.context.marketplace.add_to_supply(self.output_good, self.region, output, period)
        for energy_input in self.inputs:
            energy_input.set_physical_demand(
                output * energy_input.get_coefficient(period), self.region, period
            )
