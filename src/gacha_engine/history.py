"""Time-bounded reading history and per-classifier cooldowns.

The history window is the anti-false-positive backbone of the swing
classifiers: a genuine one-way swing accelerates then decelerates without
strongly reversing the sign of its rotation, while pocket or ambient
shaking oscillates. `HistoryWindow.has_reversal` tells the two apart.
"""

from __future__ import annotations

from collections import deque
from typing import Iterator, Optional

from gacha_engine.ingest import SensorReading

DEFAULT_WINDOW = 0.2  # seconds
DEFAULT_REJECTION_THRESHOLD = 2.0  # rad/s


class HistoryWindow:
    """Readings within a trailing duration, oldest first.

    Every retained entry satisfies `now - entry.timestamp < window` after
    each append, where `now` is the newest timestamp seen. Bounded by time,
    not by count.
    """

    def __init__(self, window: float = DEFAULT_WINDOW):
        if window <= 0:
            raise ValueError("window must be positive")
        self.window = window
        self._entries: deque[SensorReading] = deque()

    def append(self, reading: SensorReading):
        """Add a reading at the tail and evict everything it makes stale."""
        self._entries.append(reading)
        self.evict(reading.timestamp)

    def evict(self, now: float):
        """Drop entries from the head that fall outside the window."""
        entries = self._entries
        while entries and now - entries[0].timestamp >= self.window:
            entries.popleft()

    def has_reversal(
        self,
        current_sign: float,
        rejection_threshold: float = DEFAULT_REJECTION_THRESHOLD,
    ) -> bool:
        """True if any retained gamma rate strongly opposes `current_sign`."""
        if current_sign > 0:
            return any(r.gamma < -rejection_threshold for r in self._entries)
        if current_sign < 0:
            return any(r.gamma > rejection_threshold for r in self._entries)
        return False

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[SensorReading]:
        return iter(self._entries)


class CooldownGate:
    """Per-classifier debounce registry.

    Each key fires at most once per its cooldown interval. Timestamps are
    whatever clock the caller uses; the gate only compares differences.
    """

    def __init__(self):
        self._last_fired: dict[str, float] = {}

    def ready(self, key: str, now: float, cooldown: float) -> bool:
        last = self._last_fired.get(key)
        return last is None or (now - last) >= cooldown

    def try_fire(self, key: str, now: float, cooldown: float) -> bool:
        """Record a fire for `key` if its cooldown has elapsed."""
        if not self.ready(key, now, cooldown):
            return False
        self._last_fired[key] = now
        return True

    def last_fired(self, key: str) -> Optional[float]:
        return self._last_fired.get(key)

    def reset(self, key: Optional[str] = None):
        """Forget one or all keys."""
        if key is not None:
            self._last_fired.pop(key, None)
        else:
            self._last_fired.clear()
