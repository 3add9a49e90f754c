"""Tests for the model period calendar."""

import logging

import pytest

from marketclear.core import INVALID_PERIOD, ConfigurationError, OutOfRangeError, PeriodCalendar


def make_calendar(
    start=1975,
    inter1=2005,
    inter2=2050,
    end=2095,
    ts1=15,
    ts2=5,
    ts3=15,
    data_end=2005,
    data_ts=15,
):
    return PeriodCalendar.configure(start, inter1, inter2, end, ts1, ts2, ts3, data_end, data_ts).build()


class TestPeriodLayout:
    """Tests for period counts and labels."""

    def test_period_count_divisible(self):
        """Test the count when every interval divides evenly."""
        cal = make_calendar()
        assert cal.period_count() == 15
        assert [r.period_count for r in cal.regimes] == [3, 9, 3]

    def test_period_years(self):
        """Test the labelling year of every period."""
        cal = make_calendar()
        years = [cal.period_to_year(p) for p in range(cal.period_count())]
        assert years[:3] == [1975, 1990, 2005]
        assert years[3:12] == list(range(2010, 2051, 5))
        assert years[12:] == [2065, 2080, 2095]

    def test_timesteps(self):
        """Test per-period timesteps, including the base period."""
        cal = make_calendar()
        assert cal.timestep_of(0) == 15
        assert cal.timestep_of(3) == 5
        assert cal.timestep_of(14) == 15
        assert sum(cal.period_to_timestep[1:]) == cal.end_year - cal.start_year

    def test_year_to_period_example(self):
        """Test the documented lookup."""
        cal = make_calendar()
        assert cal.year_to_period(2020) == 5
        assert cal.year_to_period(1975) == 0
        assert cal.year_to_period(2095) == 14

    def test_base_period(self):
        cal = make_calendar()
        assert cal.base_period() == 0

    def test_summary(self):
        cal = make_calendar()
        summary = cal.summary()
        assert summary["period_count"] == 15
        assert summary["period_to_year"][0] == 1975
        assert len(summary["regimes"]) == 3


class TestRemainderPeriods:
    """Tests for intervals not divisible by their timestep."""

    def test_remainder_adds_period(self, caplog):
        """Test a 15-year interval with a 7-year step."""
        with caplog.at_level(logging.WARNING, logger="marketclear.core.calendar"):
            cal = make_calendar(2005, 2020, 2050, 2100, 7, 5, 10, 2020, 5)

        first = cal.regimes[0]
        assert first.whole_steps == 3
        assert first.remainder == 1
        assert first.period_count == 4
        assert cal.period_count() == 4 + 6 + 5
        assert cal.period_to_timestep[:4] == (7, 7, 7, 1)
        assert [cal.period_to_year(p) for p in range(4)] == [2005, 2012, 2019, 2020]
        assert "not divisible" in caplog.text

    def test_no_warning_when_divisible(self, caplog):
        with caplog.at_level(logging.WARNING, logger="marketclear.core.calendar"):
            make_calendar()
        assert "not divisible" not in caplog.text

    def test_remainder_years_map_to_last_period(self):
        cal = make_calendar(2005, 2020, 2050, 2100, 7, 5, 10, 2020, 5)
        assert cal.year_to_period(2020) == 3
        assert cal.years_in_period(3) == [2020]


class TestYearLookup:
    """Tests for year/period conversion."""

    def test_round_trip_covers_year(self):
        """Test that every year maps to a period ending on or after it."""
        cal = make_calendar()
        for year in range(cal.start_year, cal.end_year + 1):
            period = cal.year_to_period(year)
            assert cal.period_to_year(period) >= year
            assert year in cal.years_in_period(period)

    def test_period_labels_round_trip(self):
        cal = make_calendar()
        for period in range(cal.period_count()):
            assert cal.year_to_period(cal.period_to_year(period)) == period

    def test_monotonic(self):
        cal = make_calendar(2005, 2020, 2050, 2100, 7, 5, 10, 2020, 5)
        periods = [cal.year_to_period(y) for y in range(cal.start_year, cal.end_year + 1)]
        assert periods == sorted(periods)

    def test_years_between_labels_belong_to_later_period(self):
        cal = make_calendar()
        assert cal.years_in_period(1) == list(range(1976, 1991))
        assert cal.year_to_period(1976) == 1
        assert cal.year_to_period(2007) == 3

    def test_out_of_range_raises(self):
        cal = make_calendar()
        with pytest.raises(OutOfRangeError):
            cal.year_to_period(1900)
        with pytest.raises(LookupError):
            cal.year_to_period(2200)

    def test_out_of_range_sentinel(self, caplog):
        """Test the non-strict lookup returns the sentinel and logs."""
        cal = make_calendar()
        with caplog.at_level(logging.ERROR, logger="marketclear.core.calendar"):
            period = cal.year_to_period(1900, strict=False)
        assert period == INVALID_PERIOD
        assert period < 0
        assert "Invalid year 1900" in caplog.text


class TestBuildLifecycle:
    """Tests for configure/build behavior."""

    def test_query_before_build_raises(self):
        cal = PeriodCalendar.configure(1975, 2005, 2050, 2095, 15, 5, 15, 2005, 15)
        assert not cal.is_built
        with pytest.raises(RuntimeError):
            cal.period_count()

    def test_build_idempotent(self):
        cal = make_calendar()
        first = cal.summary()
        cal.build()
        assert cal.summary() == first
        assert cal.is_built

    @pytest.mark.parametrize(
        "args",
        [
            (1975, 2005, 2050, 2095, 0, 5, 15, 2005, 15),
            (1975, 2005, 2050, 2095, 15, -5, 15, 2005, 15),
            (1975, 2005, 2050, 2095, 15, 5, 15, 2005, 0),
            (2005, 2005, 2050, 2095, 15, 5, 15, 2005, 15),
            (1975, 2060, 2050, 2095, 15, 5, 15, 2005, 15),
            (1975, 2005, 2050, 2095, 15, 5, 15, 2100, 15),
            (1975, 2005, 2050, 2095, 15, 5, 15, 1970, 15),
        ],
    )
    def test_invalid_configuration(self, args):
        with pytest.raises(ConfigurationError):
            PeriodCalendar.configure(*args)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            PeriodCalendar(1975, 2005, 2050, 2095, 15, 5, 0, 2005, 15)


class TestDataGrid:
    """Tests for the reporting-grid mapping."""

    def test_coarser_data_grid(self):
        cal = make_calendar()
        assert cal.data_period_count() == 3
        assert [cal.data_period_to_model_period(i) for i in range(3)] == [0, 1, 2]
        assert [cal.data_offset(i) for i in range(3)] == [1, 1, 1]

    def test_matching_data_grid_has_zero_offset(self):
        cal = make_calendar(2000, 2010, 2020, 2030, 5, 5, 5, 2030, 5)
        assert cal.period_count() == 7
        assert cal.data_period_count() == 7
        assert all(cal.data_offset(i) == 0 for i in range(7))
        assert [cal.data_period_to_model_period(i) for i in range(7)] == list(range(7))

    def test_data_offset_uses_model_timestep(self):
        cal = make_calendar(2005, 2020, 2050, 2100, 7, 5, 10, 2020, 5)
        assert cal.data_period_count() == 4
        assert [cal.data_period_to_model_period(i) for i in range(4)] == [0, 1, 2, 3]
        assert [cal.data_offset(i) for i in range(4)] == [0, 0, 0, 5]
