"""Read and analyze solver trace logs.

:func:`read_trace_log` returns a nested mapping::

    {period: {variable: DataFrame}}

Each frame holds the long-form rows of one variable in one period with
columns ``period, iter, variable, mktid, solvable, value, mktname`` and
is sorted by ``(iter, mktid)``. The helpers below take either one
period's mapping (``period_data``) or one variable's frame (``vardata``).
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import numpy as np
import pandas as pd

from marketclear.solver.trace import KEY_COLUMNS, PREAMBLE_LINES, TRACE_COLUMNS

logger = logging.getLogger(__name__)

UNKNOWN_MARKET = "UNKNOWN"
_SUPPLY_FLOOR = 1.0e-8
_SORT_KEYS = ["iter", "mktid"]


def _read_records(path: Path | str, columns: tuple[str, ...], **kwargs) -> pd.DataFrame:
    return pd.read_csv(
        path,
        skiprows=PREAMBLE_LINES,
        header=None,
        names=list(columns),
        **kwargs,
    )


def read_trace_log(
    path: Path | str,
    key_path: Path | str | None = None,
    drop_base_period: bool = True,
) -> dict[int, dict[str, pd.DataFrame]]:
    """Load a trace file (and optional market key) into per-period frames.

    Args:
        path: Trace file written by :meth:`TraceLog.write`
        key_path: Companion key file; without it every market is named
            ``"UNKNOWN"``
        drop_base_period: Drop period 0, which the base-year calibration
            solve fills with rows of little diagnostic value

    Returns:
        ``{period: {variable: frame sorted by (iter, mktid)}}``
    """
    data = _read_records(
        path,
        TRACE_COLUMNS,
        dtype={"period": int, "iter": int, "variable": str, "mktid": int, "value": float},
        true_values=["TRUE"],
        false_values=["FALSE"],
    )
    data["solvable"] = data["solvable"].astype(bool)

    if key_path is None:
        data["mktname"] = UNKNOWN_MARKET
    else:
        key = _read_records(key_path, KEY_COLUMNS, dtype={"period": int, "mktid": int, "mktname": str})
        data = data.merge(key, on=["period", "mktid"], how="left")
        data["mktname"] = data["mktname"].fillna(UNKNOWN_MARKET)

    if drop_base_period:
        data = data[data["period"] > 0]

    logger.info("Read %d trace rows from %s", len(data), path)

    result: dict[int, dict[str, pd.DataFrame]] = {}
    for period, period_frame in data.groupby("period", sort=True):
        result[int(period)] = {
            str(variable): frame.sort_values(_SORT_KEYS, kind="stable").reset_index(drop=True)
            for variable, frame in period_frame.groupby("variable", sort=False)
        }
    return result


def _paired(left: pd.DataFrame, right: pd.DataFrame) -> pd.DataFrame:
    """Align two variables of one period on (iter, mktid)."""
    return left.merge(
        right[_SORT_KEYS + ["value"]],
        on=_SORT_KEYS,
        how="inner",
        suffixes=("", "_other"),
    ).sort_values(_SORT_KEYS, kind="stable")


def log_excess_demand(period_data: dict[str, pd.DataFrame]) -> pd.DataFrame:
    """Return ``log10(demand / (supply + 1e-8))`` per market and iteration."""
    paired = _paired(period_data["demand"], period_data["supply"])
    with np.errstate(divide="ignore", invalid="ignore"):
        paired["value"] = np.log10(paired["value"] / (paired["value_other"] + _SUPPLY_FLOOR))
    paired["variable"] = "log_excess_demand"
    return paired.drop(columns="value_other").reset_index(drop=True)


def total_derivative(period_data: dict[str, pd.DataFrame]) -> pd.DataFrame:
    """Return the secant derivative ``deltafx / deltax`` per market and iteration."""
    paired = _paired(period_data["deltax"], period_data["deltafx"])
    with np.errstate(divide="ignore", invalid="ignore"):
        paired["value"] = paired["value_other"] / paired["value"]
    paired["variable"] = "dfdx"
    return paired.drop(columns="value_other").reset_index(drop=True)


def _first_iteration_prices(period_data: dict[str, pd.DataFrame]) -> pd.DataFrame:
    # Price rows cover solvable and unsolvable markets alike.
    prices = period_data["price"]
    return prices[prices["iter"] == prices["iter"].min()]


def market_names(period_data: dict[str, pd.DataFrame], mktids: list[int]) -> list[str]:
    """Look up market names by market id."""
    names = _first_iteration_prices(period_data).set_index("mktid")["mktname"]
    return [str(names[mktid]) for mktid in mktids]


def market_grep(
    period_data: dict[str, pd.DataFrame],
    pattern: str,
    ignore_case: bool = False,
) -> pd.Series:
    """Find markets whose name matches a regular expression.

    Returns:
        Series of market ids indexed by market name
    """
    flags = re.IGNORECASE if ignore_case else 0
    regex = re.compile(pattern, flags)
    prices = _first_iteration_prices(period_data)
    matched = prices[prices["mktname"].map(lambda name: regex.search(str(name)) is not None)]
    return pd.Series(matched["mktid"].to_numpy(), index=matched["mktname"].to_numpy(), name="mktid")


def final_market_extremes(
    vardata: pd.DataFrame,
    nmkt: int = 5,
    final_iter: bool = True,
    find_max: bool = True,
) -> pd.Series:
    """Markets with the largest (or smallest) ``|value|`` at the end of a solve.

    The penultimate iteration (``final_iter=False``) is often more telling
    when asking which markets failed to solve.

    Returns:
        Series of market ids indexed by market name, most extreme first
    """
    last = int(vardata["iter"].max())
    key_iter = last if final_iter else last - 1
    rows = vardata[vardata["iter"] == key_iter]
    order = rows["value"].abs().sort_values(ascending=not find_max, kind="stable").index
    ranked = rows.loc[order].head(nmkt)
    return pd.Series(ranked["mktid"].to_numpy(), index=ranked["mktname"].to_numpy(), name="mktid")


def overall_market_extremes(
    vardata: pd.DataFrame,
    nmkt: int = 5,
    skip: int = 0,
    find_max: bool = True,
) -> pd.Series:
    """Markets with the largest (or smallest) sum of squared values over iterations.

    Args:
        vardata: One variable for one period
        nmkt: Number of markets to return
        skip: Ignore iterations up to and including this one
        find_max: Largest first when True, smallest first otherwise

    Returns:
        Series of market ids indexed by market name
    """
    rows = vardata[vardata["iter"] > skip]
    grouped = rows.groupby("mktid", sort=True)
    l2 = grouped["value"].apply(lambda values: float(np.nansum(np.square(values))))
    names = grouped["mktname"].first()
    ranked = l2.sort_values(ascending=not find_max, kind="stable").head(nmkt)
    return pd.Series(ranked.index.to_numpy(), index=names[ranked.index].to_numpy(), name="mktid")
