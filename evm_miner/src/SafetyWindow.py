"""SafetyWindow: Time-windowed aggregate over recently quoted values.

A value quoted to a client must stay acceptable for a grace period even if
the ledger-side requirement moves. The window keeps every value computed in
the last ``window_ms`` milliseconds and reports their minimum (or maximum).

Pruning runs on every insertion. If pruning would leave the window empty, the
most recently evicted entry is kept as a guard, so after the first push the
window always holds at least one value.

.. code-block:: python

    >>> window = SafetyWindow(window_ms=60_000, aggregate="min")
    >>> window.push(10, now_ms=0)
    10
    >>> window.push(7, now_ms=1_000)
    7
    >>> window.push(12, now_ms=60_500)
    7
    >>> window.push(12, now_ms=61_500)
    12
"""

from __future__ import annotations

import time
from collections import deque
from typing import Callable


class SafetyWindow:
    """Bounded time window of (timestamp_ms, value) entries.

    :ivar window_ms: Retention window in milliseconds.
    :ivar aggregate_name: ``"min"`` or ``"max"``.
    """

    AGGREGATES: dict[str, Callable[..., int]] = {"min": min, "max": max}
    DEFAULT_WINDOW_MS = 60_000

    def __init__(
        self,
        window_ms: int = DEFAULT_WINDOW_MS,
        aggregate: str = "min",
    ) -> None:
        """Initialize the window.

        :param window_ms: Retention window in milliseconds.
        :param aggregate: Aggregation function name, ``min`` or ``max``.
        :raises ValueError: If aggregate is unknown or window is negative.
        """
        if aggregate not in self.AGGREGATES:
            raise ValueError(f"Unknown aggregate '{aggregate}', expected min or max")
        if window_ms < 0:
            raise ValueError("window_ms must not be negative")
        self.window_ms = window_ms
        self.aggregate_name = aggregate
        self._aggregate = self.AGGREGATES[aggregate]
        self._entries: deque[tuple[int, int]] = deque()

    @staticmethod
    def _now_ms() -> int:
        return int(time.monotonic() * 1000)

    def push(self, value: int, now_ms: int | None = None) -> int:
        """Insert a value, prune old entries and return the aggregate.

        :param value: Newly computed value.
        :param now_ms: Insertion time; defaults to the monotonic clock.
        :returns: Aggregate over retained entries.
        """
        now = self._now_ms() if now_ms is None else now_ms
        # Explicit timestamps may arrive out of order; keep entries sorted.
        if self._entries and now < self._entries[-1][0]:
            now = self._entries[-1][0]
        self._entries.append((now, value))
        self.prune(now)
        return self._aggregate(v for _, v in self._entries)

    def prune(self, now_ms: int | None = None) -> None:
        """Drop entries older than the window, keeping a guard entry.

        :param now_ms: Reference time; defaults to the monotonic clock.
        """
        now = self._now_ms() if now_ms is None else now_ms
        cutoff = now - self.window_ms
        evicted: tuple[int, int] | None = None
        while self._entries and self._entries[0][0] < cutoff:
            evicted = self._entries.popleft()
        if not self._entries and evicted is not None:
            self._entries.append(evicted)

    @property
    def value(self) -> int | None:
        """Current aggregate, or None before the first push."""
        if not self._entries:
            return None
        return self._aggregate(v for _, v in self._entries)

    def entries(self) -> list[tuple[int, int]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
