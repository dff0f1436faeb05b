"""Bounded progress meter with idle decay and a one-shot completion latch."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from gacha_engine.config import ProgressConfig

logger = logging.getLogger("gacha_engine.progress")


class OneShotLatch:
    """A flag that may go from False to True exactly once until reset."""

    def __init__(self):
        self._lock = threading.Lock()
        self._set = False

    def trip(self) -> bool:
        """Set the latch. Returns True only for the caller that set it."""
        with self._lock:
            if self._set:
                return False
            self._set = True
            return True

    def reset(self):
        with self._lock:
            self._set = False

    @property
    def is_set(self) -> bool:
        return self._set


@dataclass(frozen=True)
class ProgressState:
    value: float
    last_interaction_at: float
    has_completed: bool


class ProgressAccumulator:
    """Integrates gesture increments into a [0, completion] meter.

    Increments and decay may arrive from different threads; value updates
    and the completion check-and-set happen under one lock so exactly one
    caller observes the threshold crossing.
    """

    def __init__(self, config: Optional[ProgressConfig] = None, now: float = 0.0):
        self.config = config or ProgressConfig()
        self._lock = threading.Lock()
        self._latch = OneShotLatch()
        self._value = 0.0
        self._last_interaction_at = now
        self._callbacks: list[Callable[[ProgressState], None]] = []

    def on_complete(self, callback: Callable[[ProgressState], None]):
        """Register a callback for the (single) completion signal."""
        self._callbacks.append(callback)

    def increment(self, amount: float, now: float) -> bool:
        """Add `amount`, clamped. Returns True if this call completed the meter."""
        with self._lock:
            self._value = min(self.config.completion, max(0.0, self._value + amount))
            self._last_interaction_at = now
            completed = self._value >= self.config.completion and self._latch.trip()
            state = self._state()

        if completed:
            logger.info("Progress complete at t=%.3f", now)
            for cb in self._callbacks:
                cb(state)
        return completed

    def decay_tick(self, now: float) -> float:
        """Apply one decay step if idle long enough. Returns the amount removed."""
        with self._lock:
            if self._latch.is_set or self._value <= 0.0:
                return 0.0
            if now - self._last_interaction_at <= self.config.decay_delay:
                return 0.0
            before = self._value
            self._value = max(0.0, self._value - self.config.decay_rate)
            return before - self._value

    def reset(self, now: float):
        """Fresh state for a new session."""
        with self._lock:
            self._value = 0.0
            self._last_interaction_at = now
            self._latch.reset()

    def _state(self) -> ProgressState:
        return ProgressState(
            value=self._value,
            last_interaction_at=self._last_interaction_at,
            has_completed=self._latch.is_set,
        )

    @property
    def state(self) -> ProgressState:
        with self._lock:
            return self._state()

    @property
    def value(self) -> float:
        return self._value

    @property
    def has_completed(self) -> bool:
        return self._latch.is_set

    @property
    def last_interaction_at(self) -> float:
        return self._last_interaction_at
