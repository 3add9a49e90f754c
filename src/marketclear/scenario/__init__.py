"""Scenario configuration, loading and period-by-period runs."""

from marketclear.scenario.config_loader import load_scenario_config
from marketclear.scenario.models import (
    CalendarConfig,
    CrossPriceConfig,
    EnergyInputConfig,
    LinearCurveConfig,
    MarketConfig,
    OutputConfig,
    ScenarioConfig,
    TechnologyConfig,
)
from marketclear.scenario.runner import ScenarioRunner

__all__ = [
    "CalendarConfig",
    "MarketConfig",
    "CrossPriceConfig",
    "LinearCurveConfig",
    "EnergyInputConfig",
    "TechnologyConfig",
    "OutputConfig",
    "ScenarioConfig",
    "load_scenario_config",
    "ScenarioRunner",
]
