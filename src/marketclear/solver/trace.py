"""Append-only solver trace log.

One row is recorded per (period, iteration, variable, market). Rows are
emitted iteration by iteration and, inside an iteration, variable by
variable in market-id order, so that within each ``(period, variable)``
group the rows are already sorted by ``(iteration, market id)``. The
diagnostics readers rely on that order.

File layout (both files start with a three-line preamble that readers
skip)::

    # trace file: period,iter,variable,mktid,solvable,value
    # key file:   period,mktid,mktname
"""

from __future__ import annotations

import csv
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import pandas as pd

from marketclear.core.markets import Marketplace
from marketclear.solver.state import IterationSnapshot
from marketclear.version import __version__

logger = logging.getLogger(__name__)

PREAMBLE_LINES = 3
TRACE_COLUMNS = ("period", "iter", "variable", "mktid", "solvable", "value")
KEY_COLUMNS = ("period", "mktid", "mktname")


class TraceVariable(str, Enum):
    """Variables recorded for every market at every iteration, in emission order."""

    PRICE = "price"
    SUPPLY = "supply"
    DEMAND = "demand"
    FX = "fx"
    DELTAX = "deltax"
    DELTAFX = "deltafx"


@dataclass(frozen=True)
class TraceRow:
    """One trace record."""

    period: int
    iteration: int
    variable: TraceVariable
    market_id: int
    solvable: bool
    value: float

    def to_record(self) -> tuple[int, int, str, int, str, str]:
        return (
            self.period,
            self.iteration,
            self.variable.value,
            self.market_id,
            "TRUE" if self.solvable else "FALSE",
            repr(float(self.value)),
        )


@dataclass(frozen=True)
class MarketKey:
    """Maps a market id to its name for one period."""

    period: int
    market_id: int
    market_name: str


class TraceLog:
    """Append-only store of solver trace rows.

    Rows are never modified or removed once recorded. Recording takes a
    lock only for the append itself; nothing in the solver reads rows back.
    """

    def __init__(self) -> None:
        self._rows: list[TraceRow] = []
        self._keys: list[MarketKey] = []
        self._keyed_periods: set[int] = set()
        self._next_iteration: dict[int, int] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def rows(self) -> tuple[TraceRow, ...]:
        return tuple(self._rows)

    @property
    def keys(self) -> tuple[MarketKey, ...]:
        return tuple(self._keys)

    def register_markets(self, period: int, marketplace: Marketplace) -> None:
        """Record the id-to-name key for a period, once."""
        with self._lock:
            if period in self._keyed_periods:
                return
            self._keyed_periods.add(period)
            self._keys.extend(MarketKey(period, m.market_id, m.name) for m in marketplace)

    def next_iteration(self, period: int) -> int:
        """Return the first iteration number not yet recorded for a period."""
        with self._lock:
            return self._next_iteration.get(period, 0)

    def record_iteration(self, period: int, snapshot: IterationSnapshot) -> None:
        """Append all variables of all markets for one iterate.

        Raises:
            ValueError: If the iteration number does not follow the last one
                recorded for the period
        """
        columns = {
            TraceVariable.PRICE: snapshot.prices,
            TraceVariable.SUPPLY: snapshot.supply,
            TraceVariable.DEMAND: snapshot.demand,
            TraceVariable.FX: snapshot.fx,
            TraceVariable.DELTAX: snapshot.deltax,
            TraceVariable.DELTAFX: snapshot.deltafx,
        }
        rows = [
            TraceRow(
                period=period,
                iteration=snapshot.iteration,
                variable=variable,
                market_id=market_id,
                solvable=bool(snapshot.solvable[market_id]),
                value=float(values[market_id]),
            )
            for variable, values in columns.items()
            for market_id in range(len(snapshot.prices))
        ]
        with self._lock:
            expected = self._next_iteration.get(period, 0)
            if snapshot.iteration < expected:
                msg = (
                    f"Iteration {snapshot.iteration} of period {period} is already traced; "
                    f"the next iteration must be at least {expected}"
                )
                raise ValueError(msg)
            self._next_iteration[period] = snapshot.iteration + 1
            self._rows.extend(rows)

    def to_dataframe(self) -> pd.DataFrame:
        """Return all rows as a DataFrame with the trace file's column names."""
        frame = pd.DataFrame(
            [
                (r.period, r.iteration, r.variable.value, r.market_id, r.solvable, r.value)
                for r in self._rows
            ],
            columns=list(TRACE_COLUMNS),
        )
        return frame

    def key_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(k) for k in self._keys], columns=["period", "market_id", "market_name"]).rename(
            columns={"market_id": "mktid", "market_name": "mktname"}
        )

    @staticmethod
    def _preamble(kind: str, columns: tuple[str, ...]) -> list[str]:
        created = datetime.now(timezone.utc).isoformat(timespec="seconds")
        return [
            f"# marketclear {__version__} solver {kind}",
            f"# created {created}",
            f"# columns: {','.join(columns)}",
        ]

    def write(self, path: Path | str, key_path: Path | str | None = None) -> None:
        """Write the trace (and optionally the market key) to CSV files."""
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", newline="", encoding="utf-8") as handle:
            for line in self._preamble("trace", TRACE_COLUMNS):
                handle.write(line + "\n")
            writer = csv.writer(handle, lineterminator="\n")
            writer.writerows(row.to_record() for row in self._rows)
        logger.info("Wrote %d trace rows to %s", len(self._rows), output_path)

        if key_path is None:
            return
        key_output = Path(key_path)
        key_output.parent.mkdir(parents=True, exist_ok=True)
        with key_output.open("w", newline="", encoding="utf-8") as handle:
            for line in self._preamble("market key", KEY_COLUMNS):
                handle.write(line + "\n")
            writer = csv.writer(handle, lineterminator="\n")
            writer.writerows((k.period, k.market_id, k.market_name) for k in self._keys)
        logger.info("Wrote %d market keys to %s", len(self._keys), key_output)
