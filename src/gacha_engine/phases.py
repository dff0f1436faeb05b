"""Session phase state machine.

    IDLE → INTERACTING → READY → OPENING → REVEALED → COMPLETE

Transitions are forward-only. The only way back is `reset()`, used on
session re-entry. Progress decay never moves the phase.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable

logger = logging.getLogger("gacha_engine.phases")


class Phase(str, Enum):
    IDLE = "IDLE"
    INTERACTING = "INTERACTING"
    READY = "READY"
    OPENING = "OPENING"
    REVEALED = "REVEALED"
    COMPLETE = "COMPLETE"

    @property
    def accepts_input(self) -> bool:
        """Gestures count, and listeners stay attached, only before completion."""
        return self in (Phase.IDLE, Phase.INTERACTING)


TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.IDLE: frozenset({Phase.INTERACTING}),
    Phase.INTERACTING: frozenset({Phase.READY}),
    Phase.READY: frozenset({Phase.OPENING}),
    Phase.OPENING: frozenset({Phase.REVEALED}),
    Phase.REVEALED: frozenset({Phase.COMPLETE}),
    Phase.COMPLETE: frozenset(),
}


class InvalidTransition(ValueError):
    def __init__(self, current: Phase, target: Phase):
        super().__init__(f"Cannot go from {current.value} to {target.value}")
        self.current = current
        self.target = target


PhaseCallback = Callable[[Phase, Phase], None]


class PhaseMachine:
    """Holds the single active phase of a session."""

    def __init__(self):
        self._phase = Phase.IDLE
        self._lock = threading.Lock()
        self._callbacks: list[PhaseCallback] = []

    def on_change(self, callback: PhaseCallback):
        """Register `callback(previous, current)` for every transition."""
        self._callbacks.append(callback)

    def can_advance(self, target: Phase) -> bool:
        """Whether `target` is the legal next phase."""
        return target in TRANSITIONS[self._phase]

    def advance(self, target: Phase):
        """Move to `target`. Raises InvalidTransition for illegal jumps."""
        with self._lock:
            previous = self._phase
            if target not in TRANSITIONS[previous]:
                raise InvalidTransition(previous, target)
            self._phase = target

        logger.info("Phase %s → %s", previous.value, target.value)
        for cb in self._callbacks:
            cb(previous, target)

    def reset(self):
        with self._lock:
            self._phase = Phase.IDLE

    @property
    def phase(self) -> Phase:
        return self._phase
