"""Solver trace-log diagnostics."""

from marketclear.diagnostics.trace_reader import (
    UNKNOWN_MARKET,
    final_market_extremes,
    log_excess_demand,
    market_grep,
    market_names,
    overall_market_extremes,
    read_trace_log,
    total_derivative,
)

__all__ = [
    "UNKNOWN_MARKET",
    "read_trace_log",
    "log_excess_demand",
    "total_derivative",
    "market_names",
    "market_grep",
    "final_market_extremes",
    "overall_market_extremes",
]
