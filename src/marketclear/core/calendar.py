"""Model period calendar.

Converts the sparse year configuration of a scenario (a start year, two
kink years, an end year, three regime timesteps and a reporting grid) into
the dense period index used everywhere else in the framework.

Period 0 is the start year on its own. Every later period spans
``timestep_of(period)`` calendar years and is labelled by its final year,
so all years strictly between two period labels belong to the later
period.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from marketclear.core.errors import ConfigurationError, OutOfRangeError

logger = logging.getLogger(__name__)

INVALID_PERIOD = -1

_REGIME_LABELS = ("first", "second", "third")


class RegimeLayout(BaseModel):
    """Period layout of one timestep regime.

    Attributes:
        timestep: Regular step length in years
        whole_steps: Number of full-length periods (regime 1 includes
            the base-year period)
        remainder: Length in years of the trailing short period, 0 if the
            interval divides evenly
    """

    timestep: int = Field(..., gt=0, description="Regular step length in years")
    whole_steps: int = Field(..., ge=0, description="Full-length periods")
    remainder: int = Field(default=0, ge=0, description="Remainder period length")

    model_config = {"frozen": True}

    @property
    def remainder_steps(self) -> int:
        """Return 1 when the regime ends with a short period, else 0."""
        return 1 if self.remainder else 0

    @property
    def period_count(self) -> int:
        """Return the number of periods contributed by this regime."""
        return self.whole_steps + self.remainder_steps

    def step_lengths(self) -> list[int]:
        """Return the period lengths of this regime in order."""
        return [self.timestep] * self.whole_steps + [self.remainder] * self.remainder_steps


class PeriodCalendar:
    """Dense period index for one scenario.

    Constructed once from the sparse configuration; :meth:`build`
    populates the derived tables, after which the calendar is only read.

    Example:
        >>> cal = PeriodCalendar.configure(1975, 2005, 2050, 2095, 15, 5, 15, 2005, 15)
        >>> cal.build().period_count()
        15
        >>> cal.year_to_period(2020)
        5
    """

    def __init__(
        self,
        start_year: int,
        inter_year1: int,
        inter_year2: int,
        end_year: int,
        time_step1: int,
        time_step2: int,
        time_step3: int,
        data_end_year: int,
        data_time_step: int,
    ) -> None:
        """Validate and store the calendar parameters.

        Raises:
            ConfigurationError: If a timestep is not positive, the years are
                not strictly increasing or the data grid lies outside the
                model years
        """
        for label, step in (
            ("time_step1", time_step1),
            ("time_step2", time_step2),
            ("time_step3", time_step3),
            ("data_time_step", data_time_step),
        ):
            if step <= 0:
                msg = f"{label} must be positive, got {step}"
                raise ConfigurationError(msg)

        if not start_year < inter_year1 < inter_year2 < end_year:
            msg = (
                "Calendar years must satisfy start < inter1 < inter2 < end, got "
                f"{start_year}, {inter_year1}, {inter_year2}, {end_year}"
            )
            raise ConfigurationError(msg)

        if not start_year <= data_end_year <= end_year:
            msg = (
                f"data_end_year {data_end_year} must lie within "
                f"[{start_year}, {end_year}]"
            )
            raise ConfigurationError(msg)

        self.start_year = start_year
        self.inter_year1 = inter_year1
        self.inter_year2 = inter_year2
        self.end_year = end_year
        self.time_step1 = time_step1
        self.time_step2 = time_step2
        self.time_step3 = time_step3
        self.data_end_year = data_end_year
        self.data_time_step = data_time_step

        self._regimes: tuple[RegimeLayout, ...] = ()
        self._period_to_timestep: list[int] = []
        self._year_to_period: dict[int, int] = {}
        self._period_to_year: list[int] = []
        self._data_offset: list[int] = []
        self._data_period_to_model_period: list[int] = []
        self._built = False

    @classmethod
    def configure(
        cls,
        start_year: int,
        inter_year1: int,
        inter_year2: int,
        end_year: int,
        time_step1: int,
        time_step2: int,
        time_step3: int,
        data_end_year: int,
        data_time_step: int,
    ) -> PeriodCalendar:
        """Create a validated, not yet built, calendar."""
        return cls(
            start_year,
            inter_year1,
            inter_year2,
            end_year,
            time_step1,
            time_step2,
            time_step3,
            data_end_year,
            data_time_step,
        )

    def __repr__(self) -> str:
        status = f"{len(self._period_to_year)} periods" if self._built else "not built"
        return f"PeriodCalendar({self.start_year}-{self.end_year}, {status})"

    def build(self) -> PeriodCalendar:
        """Populate all derived tables.

        Rebuilding with the same parameters yields identical tables.

        Returns:
            The calendar itself, for chaining
        """
        intervals = (
            (self.inter_year1 - self.start_year, self.time_step1, 1),
            (self.inter_year2 - self.inter_year1, self.time_step2, 0),
            (self.end_year - self.inter_year2, self.time_step3, 0),
        )
        regimes = []
        for label, (span, step, base) in zip(_REGIME_LABELS, intervals):
            remainder = span % step
            if remainder:
                logger.warning(
                    "The %s time interval (%d years) is not divisible by its "
                    "timestep %d; adding a %d-year remainder period",
                    label,
                    span,
                    step,
                    remainder,
                )
            regimes.append(
                RegimeLayout(timestep=step, whole_steps=span // step + base, remainder=remainder)
            )
        self._regimes = tuple(regimes)

        period_to_timestep: list[int] = []
        for regime in self._regimes:
            period_to_timestep.extend(regime.step_lengths())
        max_period = len(period_to_timestep)

        year = self.start_year
        year_to_period = {year: 0}
        period_to_year = [year]
        for period in range(1, max_period):
            step = period_to_timestep[period]
            for offset in range(1, step + 1):
                year_to_period[year + offset] = period
            year += step
            period_to_year.append(year)

        self._period_to_timestep = period_to_timestep
        self._year_to_period = year_to_period
        self._period_to_year = period_to_year
        self._built = True

        data_periods = (self.data_end_year - self.start_year) // self.data_time_step + 1
        data_offset = []
        data_to_model = []
        for data_period in range(data_periods):
            model_period = self.year_to_period(
                self.start_year + data_period * self.data_time_step
            )
            if data_periods == max_period:
                data_offset.append(0)
            else:
                data_offset.append(self.data_time_step // period_to_timestep[model_period])
            data_to_model.append(model_period)
        self._data_offset = data_offset
        self._data_period_to_model_period = data_to_model

        logger.info(
            "Built calendar %d-%d with %d periods (%s)",
            self.start_year,
            self.end_year,
            max_period,
            ", ".join(str(r.period_count) for r in self._regimes),
        )
        return self

    @property
    def is_built(self) -> bool:
        """Return True once :meth:`build` has run."""
        return self._built

    def _require_built(self) -> None:
        if not self._built:
            msg = "PeriodCalendar.build() must be called before querying periods"
            raise RuntimeError(msg)

    @property
    def regimes(self) -> tuple[RegimeLayout, ...]:
        """Return the layouts of the three timestep regimes."""
        self._require_built()
        return self._regimes

    @property
    def period_to_timestep(self) -> tuple[int, ...]:
        """Return the span in years of every period."""
        self._require_built()
        return tuple(self._period_to_timestep)

    def period_count(self) -> int:
        """Return the number of model periods."""
        self._require_built()
        return len(self._period_to_timestep)

    def base_period(self) -> int:
        """Return the base period, always period 0."""
        return 0

    def year_to_period(self, year: int, *, strict: bool = True) -> int:
        """Convert a calendar year to the period that contains it.

        Args:
            year: Calendar year in ``[start_year, end_year]``
            strict: Raise on an unknown year when True; otherwise log an
                error and return ``INVALID_PERIOD``

        Raises:
            OutOfRangeError: If ``year`` is not registered and ``strict``
        """
        self._require_built()
        period = self._year_to_period.get(year)
        if period is None:
            msg = f"Invalid year {year} passed to year_to_period"
            if strict:
                raise OutOfRangeError(msg)
            logger.error(msg)
            return INVALID_PERIOD
        return period

    def period_to_year(self, period: int) -> int:
        """Return the final (labelling) year of a period."""
        self._require_built()
        return self._period_to_year[period]

    def timestep_of(self, period: int) -> int:
        """Return the number of years represented by a period."""
        self._require_built()
        return self._period_to_timestep[period]

    def years_in_period(self, period: int) -> list[int]:
        """Return every calendar year that maps to ``period``."""
        self._require_built()
        last = self._period_to_year[period]
        if period == 0:
            return [last]
        return list(range(last - self._period_to_timestep[period] + 1, last + 1))

    def data_period_count(self) -> int:
        """Return the number of periods on the reporting grid."""
        self._require_built()
        return len(self._data_offset)

    def data_offset(self, data_period: int) -> int:
        """Return the number of model periods per reporting step at a data period."""
        self._require_built()
        return self._data_offset[data_period]

    def data_period_to_model_period(self, data_period: int) -> int:
        """Return the model period aligned with a reporting-grid period."""
        self._require_built()
        return self._data_period_to_model_period[data_period]

    def summary(self) -> dict[str, object]:
        """Return the derived tables as plain Python structures."""
        self._require_built()
        return {
            "period_count": len(self._period_to_timestep),
            "period_to_timestep": list(self._period_to_timestep),
            "period_to_year": list(self._period_to_year),
            "regimes": [r.model_dump() for r in self._regimes],
            "data_offset": list(self._data_offset),
            "data_period_to_model_period": list(self._data_period_to_model_period),
        }
