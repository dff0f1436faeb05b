"""Sensor recording and replay: capture motion and metering streams to disk.

Record real sessions for:
- Reproducible tests of thresholds without a phone
- Tuning new mode profiles offline
- Demo streams that replay deterministically
"""

from __future__ import annotations

import json
import logging
import math
import time
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from gacha_engine.config import ModeProfile
from gacha_engine.ingest import SensorReading

logger = logging.getLogger("gacha_engine.recorder")

FORMAT_VERSION = 1


class SensorRecorder:
    """Collects readings with timestamps relative to the recording start.

    Usage:
        recorder = SensorRecorder(mode="grab")
        recorder.start()
        recorder.add(reading)  # from the driver callback
        recorder.save("session.json")
    """

    def __init__(self, mode: Optional[str] = None):
        self.mode = mode
        self._readings: list[SensorReading] = []
        self._origin: Optional[float] = None
        self._recording = False

    def start(self):
        """Begin a new recording."""
        self._readings = []
        self._origin = None
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns number of readings captured."""
        self._recording = False
        return len(self._readings)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def reading_count(self) -> int:
        return len(self._readings)

    @property
    def duration(self) -> float:
        if not self._readings:
            return 0.0
        return self._readings[-1].timestamp

    def add(self, reading: SensorReading):
        """Append a reading; its timestamp is rebased on the first one seen."""
        if not self._recording:
            return
        if self._origin is None:
            self._origin = reading.timestamp
        self._readings.append(SensorReading(
            timestamp=reading.timestamp - self._origin,
            accel=reading.accel,
            rotation=reading.rotation,
            audio_level=reading.audio_level,
        ))

    def save(self, path: str | Path):
        """Save recording to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": FORMAT_VERSION,
            "mode": self.mode,
            "reading_count": len(self._readings),
            "duration": self.duration,
            "readings": [r.to_dict() for r in self._readings],
        }
        with open(path, "w") as f:
            json.dump(data, f)
        logger.info("Saved %d readings to %s", len(self._readings), path)

    def save_compact(self, path: str | Path) -> Path:
        """Save in compact numpy npz format. Motion readings store NaN audio."""
        path = Path(path).with_suffix(".npz")
        path.parent.mkdir(parents=True, exist_ok=True)

        n = len(self._readings)
        timestamps = np.array([r.timestamp for r in self._readings], dtype=np.float64)
        accel = np.array([r.accel for r in self._readings], dtype=np.float32).reshape(n, 3)
        rotation = np.array([r.rotation for r in self._readings], dtype=np.float32).reshape(n, 3)
        audio = np.array(
            [np.nan if r.audio_level is None else r.audio_level for r in self._readings],
            dtype=np.float32,
        )

        np.savez_compressed(
            path,
            timestamps=timestamps,
            accel=accel,
            rotation=rotation,
            audio=audio,
            mode=np.array([self.mode or ""]),
        )
        return path


class SensorPlayer:
    """Replays a recorded sensor stream.

    Usage:
        player = SensorPlayer.load("session.json")
        for reading in player.play():
            bank.process(reading)

        # Or drive a whole session on a virtual clock:
        player.replay_into(session)
    """

    def __init__(self, readings: list[SensorReading], mode: Optional[str] = None):
        self._readings = readings
        self.mode = mode

    @classmethod
    def load(cls, path: str | Path) -> SensorPlayer:
        """Load a recording from JSON or npz."""
        path = Path(path)
        if path.suffix == ".npz":
            return cls._load_compact(path)

        with open(path) as f:
            data = json.load(f)

        version = data.get("version", FORMAT_VERSION)
        if version > FORMAT_VERSION:
            raise ValueError(f"Unsupported recording version {version}")

        readings = [SensorReading.from_dict(r) for r in data["readings"]]
        return cls(readings, mode=data.get("mode"))

    @classmethod
    def _load_compact(cls, path: Path) -> SensorPlayer:
        data = np.load(path, allow_pickle=False)
        timestamps = data["timestamps"]
        accel = data["accel"]
        rotation = data["rotation"]
        audio = data["audio"]
        mode = str(data["mode"][0]) if "mode" in data.files else ""

        readings = []
        for i in range(len(timestamps)):
            level = float(audio[i])
            readings.append(SensorReading(
                timestamp=float(timestamps[i]),
                accel=tuple(float(v) for v in accel[i]),  # type: ignore[arg-type]
                rotation=tuple(float(v) for v in rotation[i]),  # type: ignore[arg-type]
                audio_level=None if math.isnan(level) else level,
            ))
        return cls(readings, mode=mode or None)

    @property
    def reading_count(self) -> int:
        return len(self._readings)

    @property
    def duration(self) -> float:
        if not self._readings:
            return 0.0
        return self._readings[-1].timestamp

    def play(self) -> Iterator[SensorReading]:
        """Iterate through all readings instantly (no timing)."""
        yield from self._readings

    def play_realtime(self, speed: float = 1.0) -> Iterator[SensorReading]:
        """Replay at recorded timing (or scaled by speed factor)."""
        if not self._readings:
            return

        start = time.monotonic()
        for reading in self._readings:
            target_time = reading.timestamp / speed
            elapsed = time.monotonic() - start
            if target_time > elapsed:
                time.sleep(target_time - elapsed)
            yield reading

    def replay_into(self, session, tick_interval: float = 0.1, settle: float = 0.0):
        """Feed every reading through `session` on a virtual clock.

        The session's clock is replaced for the duration of the replay, so
        cooldowns, decay and the READY → OPENING delay all run on recorded
        time. The session is (re)entered at recorded time zero. `tick()` runs
        every `tick_interval` of recorded time, and for `settle` seconds after
        the last reading. Returns the final snapshot.
        """
        clock = _VirtualClock()
        saved_clock = session.clock
        session.clock = clock
        try:
            session.enter()
            next_tick = tick_interval
            for reading in self._readings:
                while next_tick <= reading.timestamp:
                    clock.now = next_tick
                    session.tick(next_tick)
                    next_tick += tick_interval

                clock.now = reading.timestamp
                if reading.is_audio:
                    session.handle_metering(reading.audio_level)
                else:
                    session.handle_motion(_motion_payload(reading))

            end = self.duration + settle
            while next_tick <= end:
                clock.now = next_tick
                session.tick(next_tick)
                next_tick += tick_interval
            return session.snapshot()
        finally:
            session.clock = saved_clock


def synthesize(profile: ModeProfile, seconds: float, seed: int = 0, burst_rate: float = 1.5) -> SensorPlayer:
    """Generate a plausible sensor stream for `profile`.

    Background is low-level hand tremor and room noise. Gesture bursts
    arrive as a Poisson process at `burst_rate` per second and are shaped
    to exceed the profile's own thresholds: a violent shake, a one-way
    swing ramp or a breath on the microphone.
    """
    rng = np.random.default_rng(seed)
    readings: list[SensorReading] = []
    motion_dt = profile.timing.motion_interval
    audio_dt = profile.timing.metering_interval

    n_bursts = rng.poisson(burst_rate * seconds)
    bursts = np.sort(rng.uniform(0.0, seconds, size=n_bursts))

    def near_burst(t: float, width: float) -> bool:
        return bool(np.any(np.abs(bursts - t) < width))

    for t in np.arange(0.0, seconds, motion_dt):
        t = float(t)
        accel = rng.normal(0.0, 1.5, size=3)
        rotation = rng.normal(0.0, 0.5, size=3)
        if near_burst(t, 0.06):
            if profile.uses("shake"):
                accel += rng.choice([-1.0, 1.0], size=3) * profile.shake.force * rng.uniform(0.8, 1.4)
            if profile.uses("swing"):
                accel[0] += profile.swing.movement_min * rng.uniform(1.1, 1.6)
                rotation[2] = profile.swing.rotation_min * rng.uniform(1.2, 2.0)
        readings.append(SensorReading(
            timestamp=t,
            accel=tuple(float(v) for v in accel),  # type: ignore[arg-type]
            rotation=tuple(float(v) for v in rotation),  # type: ignore[arg-type]
        ))

    if profile.uses("blow"):
        for t in np.arange(0.0, seconds, audio_dt):
            t = float(t)
            level = rng.normal(-55.0, 4.0)
            if near_burst(t, 0.25):
                level = profile.blow.metering_min + rng.uniform(2.0, 15.0)
            readings.append(SensorReading(timestamp=t + audio_dt / 2, audio_level=float(level)))

    readings.sort(key=lambda r: r.timestamp)
    return SensorPlayer(readings, mode=profile.name)


class _VirtualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _motion_payload(reading: SensorReading) -> dict:
    x, y, z = reading.accel
    alpha, beta, gamma = reading.rotation
    return {
        "acceleration": {"x": x, "y": y, "z": z},
        "rotationRate": {"alpha": alpha, "beta": beta, "gamma": gamma},
    }
