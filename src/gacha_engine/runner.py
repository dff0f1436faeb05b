"""Clocked loops around a session.

Two loops run beside the driver callbacks:

- control (10Hz): `session.tick()` for decay, delayed phase transitions
  and the inactivity timeout
- physics (frame rate): `session.step_physics()` from the atomic feed

Neither loop touches progress or phase state directly; everything goes
through the session's own guarded methods.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from gacha_engine.physics import PhysicsBody
from gacha_engine.session import GestureSession

logger = logging.getLogger("gacha_engine.runner")

CONTROL_RATE_HZ = 10.0


class FixedRateLoop:
    """Daemon thread that calls `fn(now)` at a fixed rate until stopped.

    Ticks are scheduled against the monotonic clock, so a slow iteration
    shortens the next sleep instead of drifting the whole loop.
    """

    def __init__(self, name: str, hz: float, fn: Callable[[float], None]):
        if hz <= 0:
            raise ValueError("hz must be positive")
        self.name = name
        self.interval = 1.0 / hz
        self._fn = fn
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.iterations = 0
        self.errors = 0

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def _run(self):
        next_at = time.monotonic()
        while not self._stop.is_set():
            now = time.monotonic()
            try:
                self._fn(now)
            except Exception:
                self.errors += 1
                logger.exception("Loop %s iteration failed", self.name)
            self.iterations += 1

            next_at += self.interval
            delay = next_at - time.monotonic()
            if delay < 0:
                # Fell behind; resync
                next_at = time.monotonic()
                delay = 0
            self._stop.wait(delay)

    def stop(self, timeout: float = 1.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class SessionRunner:
    """Owns one session and its control and physics loops.

    Usage:
        with SessionRunner(session) as runner:
            ...  # drivers feed the session
    """

    def __init__(
        self,
        session: GestureSession,
        control_hz: float = CONTROL_RATE_HZ,
        on_frame: Optional[Callable[[PhysicsBody], None]] = None,
    ):
        self.session = session
        self._on_frame = on_frame
        self.control = FixedRateLoop("gacha-control", control_hz, self._control)
        self.physics = FixedRateLoop(
            "gacha-physics", session.profile.physics.frame_rate, self._physics
        )

    def _control(self, now: float):
        self.session.tick()

    def _physics(self, now: float):
        body = self.session.step_physics()
        if self._on_frame:
            self._on_frame(body)

    def start(self) -> SessionRunner:
        if not self.session.active:
            self.session.enter()
        self.control.start()
        self.physics.start()
        logger.debug("Runner started for mode %s", self.session.profile.name)
        return self

    def stop(self):
        """Stop both loops, then exit the session."""
        self.control.stop()
        self.physics.stop()
        self.session.exit()

    @property
    def running(self) -> bool:
        return self.control.running or self.physics.running

    def __enter__(self):
        return self.start()

    def __exit__(self, *args):
        self.stop()
