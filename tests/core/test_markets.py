"""Tests for markets, market info and the marketplace."""

import logging

import numpy as np
import pytest

from marketclear.core import (
    DependencyFinder,
    MarketInfo,
    Marketplace,
    MissingMarketInfo,
    PeriodCalendar,
    ScenarioContext,
)


class TestMarketInfo:
    """Tests for fixed/variable demand bookkeeping."""

    def test_defaults(self):
        info = MarketInfo()
        assert info.calibrated_demand is None
        assert not info.is_demand_variable
        assert info.existing_fixed_demand() == 0.0

    def test_fixed_demand(self):
        info = MarketInfo()
        info.set_fixed_demand(4.0)
        assert info.existing_fixed_demand() == 4.0

    def test_negative_fixed_demand_counts_as_zero(self):
        info = MarketInfo()
        info.set_fixed_demand(-2.0)
        assert info.existing_fixed_demand() == 0.0

    def test_variable_demand_clears_fixed(self):
        info = MarketInfo()
        info.set_fixed_demand(4.0)
        info.mark_demand_variable()
        assert info.is_demand_variable
        assert info.existing_fixed_demand() == 0.0


class TestMarketplace:
    """Tests for the market registry."""

    def test_create_and_lookup(self):
        mp = Marketplace(period_count=3)
        gas = mp.create_market("natural gas", "USA", initial_price=2.0)
        elec = mp.create_market("electricity", "USA")
        assert gas.market_id == 0
        assert elec.market_id == 1
        assert gas.name == "USAnatural gas"
        assert len(mp) == 2
        assert ("electricity", "USA") in mp
        assert mp.get_price("natural gas", "USA", 2) == 2.0
        assert mp.market_by_id(1) is elec

    def test_duplicate_market_rejected(self):
        mp = Marketplace(period_count=2)
        mp.create_market("coal", "USA")
        with pytest.raises(ValueError):
            mp.create_market("coal", "USA")

    def test_unknown_market(self):
        mp = Marketplace(period_count=2)
        with pytest.raises(KeyError):
            mp.get_market("coal", "USA")

    def test_invalid_period_count(self):
        with pytest.raises(ValueError):
            Marketplace(period_count=0)

    def test_accumulate_and_null(self):
        mp = Marketplace(period_count=2)
        mp.create_market("coal", "USA")
        mp.add_to_demand("coal", "USA", 3.0, period=1)
        mp.add_to_demand("coal", "USA", 1.5, period=1, update_calibration=False)
        mp.add_to_supply("coal", "USA", 2.0, period=1)

        market = mp.get_market("coal", "USA")
        assert mp.get_demand("coal", "USA", 1) == 4.5
        assert mp.get_supply("coal", "USA", 1) == 2.0
        assert market.calibration_demands[1] == 3.0
        assert market.excess_demand(1) == 2.5
        assert mp.get_demand("coal", "USA", 0) == 0.0

        mp.null_demands_and_supplies(1)
        assert mp.get_demand("coal", "USA", 1) == 0.0
        assert mp.get_supply("coal", "USA", 1) == 0.0
        assert market.calibration_demands[1] == 0.0

    def test_solvability(self):
        mp = Marketplace(period_count=3)
        mp.create_market("coal", "USA")
        mp.create_market("oil", "USA", solvable=False)
        assert mp.free_market_ids(0) == [0]

        mp.set_solvable("oil", "USA", True, period=2)
        assert mp.free_market_ids(2) == [0, 1]
        assert mp.free_market_ids(1) == [0]

        mp.set_solvable("coal", "USA", False)
        assert mp.free_market_ids(0) == []
        np.testing.assert_array_equal(mp.solvable_vector(2), [False, True])

    def test_price_vector(self):
        mp = Marketplace(period_count=2)
        mp.create_market("coal", "USA", initial_price=1.0)
        mp.create_market("oil", "USA", initial_price=5.0)
        mp.set_price_vector(np.array([3.0, 9.0]), period=0, market_ids=[0])
        np.testing.assert_allclose(mp.price_vector(0), [3.0, 5.0])
        np.testing.assert_allclose(mp.price_vector(1), [1.0, 5.0])

    def test_market_info(self):
        mp = Marketplace(period_count=2)
        mp.create_market("coal", "USA")
        info = mp.get_market_info("coal", "USA", 1)
        assert isinstance(info, MarketInfo)
        with pytest.raises(MissingMarketInfo):
            mp.get_market_info("coal", "CHN", 1)

    def test_co2_coefficient(self):
        mp = Marketplace(period_count=2)
        mp.create_market("coal", "USA")
        assert mp.get_co2_coefficient("coal", "USA", 0) == 0.0
        assert mp.get_co2_coefficient("uranium", "USA", 0) == 0.0
        mp.set_co2_coefficient("coal", "USA", 27.3)
        assert mp.get_co2_coefficient("coal", "USA", 1) == 27.3

    def test_check_calibration(self, caplog):
        mp = Marketplace(period_count=2)
        mp.create_market("coal", "USA")
        mp.create_market("oil", "USA")
        mp.get_market_info("coal", "USA", 1).set_fixed_demand(5.0)
        mp.get_market_info("oil", "USA", 1).set_fixed_demand(2.0)
        mp.add_to_demand("coal", "USA", 5.0, period=1)
        mp.add_to_demand("oil", "USA", 3.0, period=1)

        with caplog.at_level(logging.WARNING, logger="marketclear.core.markets"):
            mismatches = mp.check_calibration(1)

        assert [m.market_name for m in mismatches] == ["USAoil"]
        assert mismatches[0].relative_error == pytest.approx(0.5)
        assert "USAoil" in caplog.text

    def test_summary(self):
        mp = Marketplace(period_count=1)
        mp.create_market("coal", "USA", initial_price=2.0)
        summary = mp.summary(0)
        assert summary["USAcoal"]["price"] == 2.0
        assert summary["USAcoal"]["solvable"] is True


class TestDependencyFinder:
    """Tests for dependency registration."""

    def test_add_dependency(self):
        finder = DependencyFinder()
        assert finder.add_dependency("electricity", "natural gas")
        assert not finder.add_dependency("electricity", "natural gas")
        finder.add_dependency("electricity", "coal")
        assert finder.dependencies("electricity") == ("natural gas", "coal")
        assert finder.dependencies("refining") == ()
        assert list(finder.edges()) == [("electricity", "natural gas"), ("electricity", "coal")]
        assert len(finder) == 2


class TestScenarioContext:
    def test_from_calendar_builds(self):
        cal = PeriodCalendar.configure(2000, 2010, 2020, 2030, 5, 5, 5, 2030, 5)
        context = ScenarioContext.from_calendar(cal)
        assert cal.is_built
        assert context.marketplace.period_count == 7
        assert len(context.dependency_finder) == 0
