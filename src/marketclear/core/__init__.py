"""Core data structures for the marketclear framework.

This module provides the building blocks shared by every subsystem:
- Errors: the framework's error and warning taxonomy
- PeriodCalendar: dense model period index built from sparse years
- Marketplace: registry of per-period markets
- DependencyFinder: sector-to-market dependency edges
- ScenarioContext: explicit handle bundling the above
"""

from marketclear.core.calendar import INVALID_PERIOD, PeriodCalendar, RegimeLayout
from marketclear.core.context import ScenarioContext
from marketclear.core.dependencies import DependencyFinder
from marketclear.core.errors import (
    ConfigurationError,
    DivergenceError,
    MarketClearError,
    MissingMarketInfo,
    NonConvergenceWarning,
    OutOfRangeError,
    SolverCancelled,
)
from marketclear.core.markets import CalibrationMismatch, Market, MarketInfo, Marketplace

__all__ = [
    # Calendar
    "INVALID_PERIOD",
    "PeriodCalendar",
    "RegimeLayout",
    # Markets
    "Market",
    "MarketInfo",
    "Marketplace",
    "CalibrationMismatch",
    "DependencyFinder",
    "ScenarioContext",
    # Errors
    "MarketClearError",
    "ConfigurationError",
    "OutOfRangeError",
    "MissingMarketInfo",
    "DivergenceError",
    "SolverCancelled",
    "NonConvergenceWarning",
]
