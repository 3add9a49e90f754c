"""Markets and the marketplace registry.

A market clears one traded good in one region. For every model period it
holds a price (owned by the solver), demand and supply accumulators
(written by contributors) and a solvability flag. The :class:`Marketplace`
owns all markets of a scenario and is the only way contributors reach
them.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import numpy as np

from marketclear.core.errors import MissingMarketInfo

logger = logging.getLogger(__name__)


class MarketInfo:
    """Per-period auxiliary information attached to a market.

    Attributes:
        calibrated_demand: Fixed, non price-responsive demand tallied by
            calibrated technologies; ``None`` until something is recorded
        co2_coefficient: Emissions per unit of the good, if known
    """

    def __init__(self) -> None:
        self.calibrated_demand: float | None = None
        self.co2_coefficient: float | None = None
        self._demand_variable = False

    @property
    def is_demand_variable(self) -> bool:
        """Return True when some demand for the good responds to price."""
        return self._demand_variable

    def existing_fixed_demand(self) -> float:
        """Return the fixed demand tallied so far, 0 when none or variable."""
        if self._demand_variable or self.calibrated_demand is None:
            return 0.0
        return max(self.calibrated_demand, 0.0)

    def set_fixed_demand(self, quantity: float) -> None:
        """Record a fixed calibrated demand, clearing the variable flag."""
        self.calibrated_demand = quantity
        self._demand_variable = False

    def mark_demand_variable(self) -> None:
        """Flag the good's demand as price-responsive."""
        self.calibrated_demand = None
        self._demand_variable = True


class Market:
    """A clearable market for one good in one region.

    Attributes:
        market_id: Stable integer id, assigned in creation order
        good: Name of the traded good
        region: Region the market clears
        prices, demands, supplies: Per-period values
        solvable: Per-period flag, True when the solver owns the price
    """

    def __init__(
        self,
        market_id: int,
        good: str,
        region: str,
        period_count: int,
        initial_price: float = 1.0,
        solvable: bool = True,
    ) -> None:
        self.market_id = market_id
        self.good = good
        self.region = region
        self.prices = [float(initial_price)] * period_count
        self.demands = [0.0] * period_count
        self.supplies = [0.0] * period_count
        self.calibration_demands = [0.0] * period_count
        self.solvable = [solvable] * period_count
        self.info = [MarketInfo() for _ in range(period_count)]
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        """Human-readable market name, region followed by good."""
        return f"{self.region}{self.good}"

    def __repr__(self) -> str:
        return f"Market({self.market_id}, {self.name!r})"

    def add_to_demand(self, quantity: float, period: int, update_calibration: bool = True) -> None:
        with self._lock:
            self.demands[period] += quantity
            if update_calibration:
                self.calibration_demands[period] += quantity

    def add_to_supply(self, quantity: float, period: int) -> None:
        with self._lock:
            self.supplies[period] += quantity

    def null_demand_and_supply(self, period: int) -> None:
        with self._lock:
            self.demands[period] = 0.0
            self.supplies[period] = 0.0
            self.calibration_demands[period] = 0.0

    def excess_demand(self, period: int) -> float:
        return self.demands[period] - self.supplies[period]


@dataclass(frozen=True)
class CalibrationMismatch:
    """A market whose tracked demand misses its fixed calibrated demand."""

    market_id: int
    market_name: str
    period: int
    calibrated: float
    observed: float

    @property
    def relative_error(self) -> float:
        return abs(self.observed - self.calibrated) / max(abs(self.calibrated), 1e-12)


class Marketplace:
    """Registry of all markets in a scenario.

    Markets are looked up by ``(good, region)`` and also addressed by their
    integer id, which is the order of creation and is used as the market
    index in price vectors and solver trace rows.

    Example:
        >>> mp = Marketplace(period_count=3)
        >>> mp.create_market("crude oil", "USA", initial_price=5.0)
        Market(0, 'USAcrude oil')
        >>> mp.add_to_demand("crude oil", "USA", 2.5, period=1)
        >>> mp.get_demand("crude oil", "USA", 1)
        2.5
    """

    def __init__(self, period_count: int) -> None:
        if period_count <= 0:
            msg = f"period_count must be positive, got {period_count}"
            raise ValueError(msg)
        self.period_count = period_count
        self._markets: list[Market] = []
        self._index: dict[tuple[str, str], int] = {}

    def __len__(self) -> int:
        return len(self._markets)

    def __iter__(self) -> Iterator[Market]:
        return iter(self._markets)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._index

    def create_market(
        self,
        good: str,
        region: str,
        initial_price: float = 1.0,
        solvable: bool = True,
    ) -> Market:
        """Create and register a market.

        Raises:
            ValueError: If a market for ``(good, region)`` already exists
        """
        key = (good, region)
        if key in self._index:
            msg = f"Market for good '{good}' in region '{region}' already exists"
            raise ValueError(msg)
        market = Market(
            market_id=len(self._markets),
            good=good,
            region=region,
            period_count=self.period_count,
            initial_price=initial_price,
            solvable=solvable,
        )
        self._markets.append(market)
        self._index[key] = market.market_id
        return market

    def get_market(self, good: str, region: str) -> Market:
        """Get a market by good and region.

        Raises:
            KeyError: If the market does not exist
        """
        try:
            return self._markets[self._index[(good, region)]]
        except KeyError:
            msg = f"No market for good '{good}' in region '{region}'"
            raise KeyError(msg) from None

    def market_by_id(self, market_id: int) -> Market:
        return self._markets[market_id]

    def add_to_demand(
        self,
        good: str,
        region: str,
        quantity: float,
        period: int,
        update_calibration: bool = True,
    ) -> None:
        """Add a demand contribution for a good.

        Args:
            good: Traded good
            region: Region of the market
            quantity: Physical demand to add
            period: Model period
            update_calibration: Also count the quantity as calibration-tracked
                demand, compared by :meth:`check_calibration`
        """
        self.get_market(good, region).add_to_demand(quantity, period, update_calibration)

    def add_to_supply(self, good: str, region: str, quantity: float, period: int) -> None:
        """Add a supply contribution for a good."""
        self.get_market(good, region).add_to_supply(quantity, period)

    def get_price(self, good: str, region: str, period: int) -> float:
        return self.get_market(good, region).prices[period]

    def set_price(self, good: str, region: str, price: float, period: int) -> None:
        self.get_market(good, region).prices[period] = float(price)

    def get_demand(self, good: str, region: str, period: int) -> float:
        return self.get_market(good, region).demands[period]

    def get_supply(self, good: str, region: str, period: int) -> float:
        return self.get_market(good, region).supplies[period]

    def set_solvable(self, good: str, region: str, solvable: bool, period: int | None = None) -> None:
        """Set the solvability flag for one period, or all periods when ``period`` is None."""
        market = self.get_market(good, region)
        periods = range(self.period_count) if period is None else [period]
        for p in periods:
            market.solvable[p] = solvable

    def get_market_info(self, good: str, region: str, period: int) -> MarketInfo:
        """Return the market info record for a good.

        Raises:
            MissingMarketInfo: If no market exists for the good
        """
        index = self._index.get((good, region))
        if index is None:
            msg = f"No market info for good '{good}' in region '{region}'"
            raise MissingMarketInfo(msg)
        return self._markets[index].info[period]

    def get_co2_coefficient(self, good: str, region: str, period: int) -> float:
        """Return the CO2 emissions per unit of a good, 0 when unknown."""
        index = self._index.get((good, region))
        if index is None:
            return 0.0
        coefficient = self._markets[index].info[period].co2_coefficient
        return 0.0 if coefficient is None else coefficient

    def set_co2_coefficient(self, good: str, region: str, coefficient: float) -> None:
        """Set the CO2 emissions coefficient of a good for all periods."""
        for info in self.get_market(good, region).info:
            info.co2_coefficient = coefficient

    def null_demands_and_supplies(self, period: int) -> None:
        """Reset every market's accumulators for a period."""
        for market in self._markets:
            market.null_demand_and_supply(period)

    def free_market_ids(self, period: int) -> list[int]:
        """Return ids of markets whose price the solver owns in ``period``."""
        return [m.market_id for m in self._markets if m.solvable[period]]

    def price_vector(self, period: int) -> np.ndarray:
        return np.array([m.prices[period] for m in self._markets], dtype=float)

    def set_price_vector(self, prices: np.ndarray, period: int, market_ids: list[int]) -> None:
        """Write prices for the given market ids; other markets keep theirs."""
        for market_id in market_ids:
            self._markets[market_id].prices[period] = float(prices[market_id])

    def supply_vector(self, period: int) -> np.ndarray:
        return np.array([m.supplies[period] for m in self._markets], dtype=float)

    def demand_vector(self, period: int) -> np.ndarray:
        return np.array([m.demands[period] for m in self._markets], dtype=float)

    def solvable_vector(self, period: int) -> np.ndarray:
        return np.array([m.solvable[period] for m in self._markets], dtype=bool)

    def check_calibration(self, period: int, rtol: float = 1e-3) -> list[CalibrationMismatch]:
        """Compare calibration-tracked demand with fixed calibrated demand.

        Only markets whose demand is entirely fixed are checked.
        """
        mismatches = []
        for market in self._markets:
            info = market.info[period]
            if info.is_demand_variable or info.calibrated_demand is None:
                continue
            observed = market.calibration_demands[period]
            calibrated = info.calibrated_demand
            if not math.isclose(observed, calibrated, rel_tol=rtol, abs_tol=1e-12):
                mismatches.append(
                    CalibrationMismatch(
                        market_id=market.market_id,
                        market_name=market.name,
                        period=period,
                        calibrated=calibrated,
                        observed=observed,
                    )
                )
        for mismatch in mismatches:
            logger.warning(
                "Calibrated demand for %s in period %d is %.6g but tracked demand is %.6g",
                mismatch.market_name,
                period,
                mismatch.calibrated,
                mismatch.observed,
            )
        return mismatches

    def summary(self, period: int) -> dict[str, Any]:
        """Return per-market state for a period."""
        return {
            m.name: {
                "id": m.market_id,
                "price": m.prices[period],
                "demand": m.demands[period],
                "supply": m.supplies[period],
                "solvable": m.solvable[period],
            }
            for m in self._markets
        }
