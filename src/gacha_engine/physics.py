"""Bounded physics for the on-screen token (capsule, pack, ...).

The integrator ticks at its own frame rate, independent of the sensor
sample rate. The only thing that crosses from the sensor side is the
latest acceleration, handed over as two scalars through `AccelerationFeed`.
Position, velocity and rotation are owned by the integrator alone; readers
get immutable `PhysicsBody` snapshots.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

import numpy as np

from gacha_engine.config import PhysicsConfig


class AtomicFloat:
    """A float shared between threads."""

    def __init__(self, value: float = 0.0):
        self._value = float(value)
        self._lock = threading.Lock()

    def get(self) -> float:
        with self._lock:
            return self._value

    def set(self, value: float):
        with self._lock:
            self._value = float(value)


class AccelerationFeed:
    """Latest raw (x, y) acceleration, written by sensors, read per frame."""

    def __init__(self):
        self.x = AtomicFloat()
        self.y = AtomicFloat()
        self._open = threading.Event()
        self._open.set()

    def push(self, x: float, y: float):
        if not self._open.is_set():
            return
        self.x.set(x)
        self.y.set(y)

    def read(self) -> tuple[float, float]:
        return self.x.get(), self.y.get()

    def cut(self):
        """Stop accepting samples and zero the feed; the body coasts to rest."""
        self._open.clear()
        self.x.set(0.0)
        self.y.set(0.0)

    def reopen(self):
        self.x.set(0.0)
        self.y.set(0.0)
        self._open.set()

    @property
    def is_open(self) -> bool:
        return self._open.is_set()


@dataclass(frozen=True)
class PhysicsBody:
    position: tuple[float, float]
    velocity: tuple[float, float]
    rotation: float

    def to_dict(self) -> dict:
        return {
            "x": round(self.position[0], 3),
            "y": round(self.position[1], 3),
            "vx": round(self.velocity[0], 3),
            "vy": round(self.velocity[1], 3),
            "rotation": round(self.rotation, 3),
        }


class PhysicsIntegrator:
    """Damped, bouncing point mass with velocity-coupled spin.

    Per step:
        velocity += accel * accel_scale
        velocity *= friction
        position += velocity
        clamp to bounds, reflecting and damping the offending component
        rotation += (vx + vy) * rotation_coupling
    """

    def __init__(self, config: PhysicsConfig | None = None):
        self.config = config or PhysicsConfig()
        min_x, max_x, min_y, max_y = self.config.bounds
        if min_x > max_x or min_y > max_y:
            raise ValueError(f"Invalid bounds: {self.config.bounds}")
        self._lo = np.array([min_x, min_y], dtype=np.float64)
        self._hi = np.array([max_x, max_y], dtype=np.float64)
        self._position = np.zeros(2, dtype=np.float64)
        self._velocity = np.zeros(2, dtype=np.float64)
        self._rotation = 0.0
        self._lock = threading.Lock()
        self.frames = 0

    def step(self, accel_x: float, accel_y: float) -> PhysicsBody:
        """Advance one frame with the given raw acceleration."""
        cfg = self.config
        accel = np.array([accel_x, accel_y], dtype=np.float64)
        if not np.all(np.isfinite(accel)):
            accel = np.zeros(2, dtype=np.float64)

        with self._lock:
            self._velocity += accel * cfg.accel_scale
            self._velocity *= cfg.friction
            self._position += self._velocity

            out = (self._position < self._lo) | (self._position > self._hi)
            if out.any():
                self._position = np.clip(self._position, self._lo, self._hi)
                self._velocity[out] *= -cfg.bounce_factor

            self._rotation += float(self._velocity.sum()) * cfg.rotation_coupling
            self.frames += 1
            return self._body()

    def step_from(self, feed: AccelerationFeed) -> PhysicsBody:
        return self.step(*feed.read())

    def reset(self):
        with self._lock:
            self._position[:] = 0.0
            self._velocity[:] = 0.0
            self._rotation = 0.0
            self.frames = 0

    def _body(self) -> PhysicsBody:
        return PhysicsBody(
            position=(float(self._position[0]), float(self._position[1])),
            velocity=(float(self._velocity[0]), float(self._velocity[1])),
            rotation=self._rotation,
        )

    @property
    def body(self) -> PhysicsBody:
        with self._lock:
            return self._body()

    def within_bounds(self) -> bool:
        with self._lock:
            return bool(np.all(self._position >= self._lo) and np.all(self._position <= self._hi))
