"""Scenario context passed explicitly to solver and technology objects."""

from __future__ import annotations

from dataclasses import dataclass, field

from marketclear.core.calendar import PeriodCalendar
from marketclear.core.dependencies import DependencyFinder
from marketclear.core.markets import Marketplace


@dataclass
class ScenarioContext:
    """Shared, scenario-lifetime handles.

    Attributes:
        calendar: Built period calendar
        marketplace: Registry of all markets
        dependency_finder: Sector-to-market dependency edges
    """

    calendar: PeriodCalendar
    marketplace: Marketplace
    dependency_finder: DependencyFinder = field(default_factory=DependencyFinder)

    @classmethod
    def from_calendar(cls, calendar: PeriodCalendar) -> ScenarioContext:
        """Create a context with an empty marketplace sized to the calendar."""
        if not calendar.is_built:
            calendar.build()
        return cls(calendar=calendar, marketplace=Marketplace(calendar.period_count()))
