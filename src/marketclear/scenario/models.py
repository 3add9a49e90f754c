"""Pydantic models describing a scenario configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from marketclear.core.calendar import PeriodCalendar
from marketclear.inputs.coefficients import Coefficient
from marketclear.solver.settings import SolverSettings


class CalendarConfig(BaseModel):
    """Sparse year configuration of the model calendar."""

    start_year: int
    inter_year1: int
    inter_year2: int
    end_year: int
    time_step1: int
    time_step2: int
    time_step3: int
    data_end_year: int
    data_time_step: int

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_calendar(self) -> CalendarConfig:
        # PeriodCalendar raises ConfigurationError, a ValueError.
        self.to_calendar(build=False)
        return self

    def to_calendar(self, build: bool = True) -> PeriodCalendar:
        calendar = PeriodCalendar.configure(
            self.start_year,
            self.inter_year1,
            self.inter_year2,
            self.end_year,
            self.time_step1,
            self.time_step2,
            self.time_step3,
            self.data_end_year,
            self.data_time_step,
        )
        return calendar.build() if build else calendar


class MarketConfig(BaseModel):
    """One market to create in the marketplace."""

    good: str = Field(..., min_length=1)
    region: str = Field(..., min_length=1)
    initial_price: float = Field(default=1.0, ge=0)
    solvable: bool = True
    co2_coefficient: float | None = None

    model_config = {"frozen": True}

    @property
    def key(self) -> tuple[str, str]:
        return (self.good, self.region)


class CrossPriceConfig(BaseModel):
    """Response of a curve to another market's price."""

    good: str
    region: str
    slope: float

    model_config = {"frozen": True}


class LinearCurveConfig(BaseModel):
    """Affine supply or demand schedule.

    For ``side: demand`` the slope is entered as a positive number and
    the curve is ``intercept - slope * p``.
    """

    good: str
    region: str
    side: Literal["supply", "demand"]
    intercept: float = 0.0
    slope: float = 0.0
    cross_prices: list[CrossPriceConfig] = Field(default_factory=list)
    name: str | None = None

    model_config = {"frozen": True}


class EnergyInputConfig(BaseModel):
    """One energy input of a technology.

    Attributes:
        name: Good the input is drawn from
        coefficient: Coefficient of the first vintage
        coefficients: Explicit coefficients of later vintages, by period
        calibration: Calibrated input quantities, by period
    """

    name: str
    coefficient: Coefficient | None = None
    coefficients: dict[int, Coefficient] = Field(default_factory=dict)
    calibration: dict[int, float] = Field(default_factory=dict)
    income_elasticity: float = 0.0
    tech_change: float | None = None
    price_unit_conversion: float = Field(default=1.0, gt=0)
    keywords: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator("calibration")
    @classmethod
    def _non_negative_calibration(cls, v: dict[int, float]) -> dict[int, float]:  # noqa: N805
        negative = {period: value for period, value in v.items() if value < 0}
        if negative:
            raise ValueError(f"Calibration quantities must be non-negative: {negative}")
        return v


class TechnologyConfig(BaseModel):
    """A Leontief technology and its energy inputs."""

    name: str
    sector: str
    subsector: str = ""
    region: str
    output_good: str
    base_output: float = Field(default=1.0, ge=0)
    price_elasticity: float = 1.0
    fixed_output: dict[int, float] = Field(default_factory=dict)
    inputs: list[EnergyInputConfig] = Field(default_factory=list)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _unique_inputs(self) -> TechnologyConfig:
        names = [energy_input.name for energy_input in self.inputs]
        if len(names) != len(set(names)):
            raise ValueError(f"Technology '{self.name}' lists an input more than once: {names}")
        return self


class OutputConfig(BaseModel):
    """Where the trace log and its market key are written."""

    trace_path: Path | None = None
    key_path: Path | None = None


class ScenarioConfig(BaseModel):
    """Complete scenario definition."""

    name: str = "scenario"
    calendar: CalendarConfig
    solver: SolverSettings = Field(default_factory=SolverSettings)
    final_year: int | None = None
    carry_forward_prices: bool = True
    markets: list[MarketConfig] = Field(default_factory=list)
    curves: list[LinearCurveConfig] = Field(default_factory=list)
    technologies: list[TechnologyConfig] = Field(default_factory=list)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @model_validator(mode="after")
    def _check_references(self) -> ScenarioConfig:
        keys = [market.key for market in self.markets]
        duplicates = sorted({key for key in keys if keys.count(key) > 1})
        if duplicates:
            raise ValueError(f"Markets defined more than once: {duplicates}")

        known = set(keys)
        missing: list[str] = []
        for curve in self.curves:
            referenced = [(curve.good, curve.region)]
            referenced.extend((cross.good, cross.region) for cross in curve.cross_prices)
            missing.extend(f"{region}/{good}" for good, region in referenced if (good, region) not in known)
        for tech in self.technologies:
            referenced = [(tech.output_good, tech.region)]
            referenced.extend((energy_input.name, tech.region) for energy_input in tech.inputs)
            missing.extend(f"{region}/{good}" for good, region in referenced if (good, region) not in known)
        if missing:
            raise ValueError(f"No market configured for: {sorted(set(missing))}")

        if self.final_year is not None and not (
            self.calendar.start_year <= self.final_year <= self.calendar.end_year
        ):
            raise ValueError(
                f"final_year {self.final_year} lies outside "
                f"[{self.calendar.start_year}, {self.calendar.end_year}]"
            )
        return self
