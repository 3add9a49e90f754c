"""marketclear - Period calendars and multi-market equilibrium solving for energy-economy models."""

from marketclear.core import (
    ConfigurationError,
    DivergenceError,
    Marketplace,
    NonConvergenceWarning,
    OutOfRangeError,
    PeriodCalendar,
    ScenarioContext,
)
from marketclear.inputs import EnergyInput, LeontiefTechnology, LinearCurve
from marketclear.solver import EquilibriumSolver, SolverSettings, TraceLog
from marketclear.version import __version__

__all__ = [
    "__version__",
    "PeriodCalendar",
    "Marketplace",
    "ScenarioContext",
    "EnergyInput",
    "LinearCurve",
    "LeontiefTechnology",
    "EquilibriumSolver",
    "SolverSettings",
    "TraceLog",
    "ConfigurationError",
    "OutOfRangeError",
    "DivergenceError",
    "NonConvergenceWarning",
]
