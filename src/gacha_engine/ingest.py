"""Sample ingest: raw driver payloads → canonical SensorReading.

Motion drivers deliver loosely-typed payloads shaped like

    {"acceleration": {"x": .., "y": .., "z": ..},
     "rotationRate": {"alpha": .., "beta": .., "gamma": ..}}

where any block or axis may be missing or None. Audio drivers deliver a
single metering level in dBFS. Both are normalized here; no classification
logic lives in this module.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

# Metering value reported when the driver gives nothing usable
SILENCE_DB = -160.0

ROTATION_AXES = ("alpha", "beta", "gamma")


@dataclass(frozen=True)
class SensorReading:
    """One immutable sample from a driver callback."""
    timestamp: float
    accel: tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: tuple[float, float, float] = (0.0, 0.0, 0.0)  # alpha, beta, gamma (rad/s)
    audio_level: Optional[float] = None  # dBFS, audio readings only

    @property
    def magnitude(self) -> float:
        """Total linear acceleration force."""
        x, y, z = self.accel
        return math.sqrt(x * x + y * y + z * z)

    @property
    def gamma(self) -> float:
        return self.rotation[2]

    @property
    def dominant_axis(self) -> Optional[str]:
        """Rotation axis with the largest absolute rate, or None when still."""
        best = max(range(3), key=lambda i: abs(self.rotation[i]))
        if self.rotation[best] == 0.0:
            return None
        return ROTATION_AXES[best]

    @property
    def is_audio(self) -> bool:
        return self.audio_level is not None

    def to_dict(self) -> dict:
        return {
            "t": self.timestamp,
            "accel": list(self.accel),
            "rotation": list(self.rotation),
            "audio_level": self.audio_level,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SensorReading:
        return cls(
            timestamp=float(data["t"]),
            accel=_triple(data.get("accel")),
            rotation=_triple(data.get("rotation")),
            audio_level=data.get("audio_level"),
        )


def _axis(block: Any, key: str) -> float:
    if not isinstance(block, Mapping):
        return 0.0
    value = block.get(key)
    if value is None:
        return 0.0
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    # Non-finite values count as missing
    return value if math.isfinite(value) else 0.0


def _triple(values: Any) -> tuple[float, float, float]:
    if not values:
        return (0.0, 0.0, 0.0)
    padded = list(values)[:3] + [0.0] * (3 - len(values))
    return tuple(float(v) for v in padded)  # type: ignore[return-value]


def reading_from_motion(payload: Mapping[str, Any], timestamp: float) -> SensorReading:
    """Normalize a motion payload, defaulting missing axes to 0."""
    accel = payload.get("acceleration")
    rot = payload.get("rotationRate")
    return SensorReading(
        timestamp=timestamp,
        accel=(_axis(accel, "x"), _axis(accel, "y"), _axis(accel, "z")),
        rotation=tuple(_axis(rot, a) for a in ROTATION_AXES),  # type: ignore[arg-type]
    )


def reading_from_metering(metering: Optional[float], timestamp: float) -> SensorReading:
    """Build an audio-only reading. Missing metering counts as silence."""
    try:
        level = float(metering)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return SensorReading(timestamp=timestamp, audio_level=SILENCE_DB)
    if not math.isfinite(level):
        level = SILENCE_DB
    return SensorReading(timestamp=timestamp, audio_level=level)
