"""Sector-to-market dependency registration.

Technologies register the goods their sectors consume so that an external
ordering step can solve sectors after the markets they read prices from.
Only registration and simple queries live here; graph ordering is left to
the caller.
"""

from __future__ import annotations

from collections.abc import Iterator


class DependencyFinder:
    """Collects directed ``sector -> market`` dependency edges.

    Example:
        >>> finder = DependencyFinder()
        >>> finder.add_dependency("electricity", "natural gas")
        True
        >>> finder.dependencies("electricity")
        ('natural gas',)
    """

    def __init__(self) -> None:
        self._edges: dict[str, list[str]] = {}

    def add_dependency(self, sector: str, market_name: str) -> bool:
        """Register that ``sector`` consumes ``market_name``.

        Returns:
            True if the edge was new
        """
        targets = self._edges.setdefault(sector, [])
        if market_name in targets:
            return False
        targets.append(market_name)
        return True

    def dependencies(self, sector: str) -> tuple[str, ...]:
        """Return the markets a sector depends on, in registration order."""
        return tuple(self._edges.get(sector, ()))

    def edges(self) -> Iterator[tuple[str, str]]:
        for sector, targets in self._edges.items():
            for target in targets:
                yield sector, target

    def __len__(self) -> int:
        return sum(len(targets) for targets in self._edges.values())
