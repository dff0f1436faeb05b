"""Driver interfaces at the engine boundary, plus in-process implementations.

The engine never owns hardware. It talks to four collaborators:

- SensorDriver: motion subscription (accelerometer + gyroscope)
- AudioDriver: microphone permission and metering recordings
- HapticEmitter: fire-and-forget feedback pulses
- InventoryStore: receives the reward when a session is opened

The `Manual*` drivers are push-based stand-ins used by the WebSocket server
(samples arrive from a remote phone), by replay, and by tests.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger("gacha_engine.drivers")

MotionCallback = Callable[[dict], None]
MeteringCallback = Callable[[Optional[float]], None]


class DriverError(Exception):
    """Base class for failures at the driver boundary."""


class PermissionDenied(DriverError):
    """The user refused access to a sensor (usually the microphone)."""


class SensorUnavailable(DriverError):
    """The device has no such sensor, or it could not be started."""


class RecordingLifecycleError(DriverError):
    """A recording handle could not be started or stopped cleanly."""


class SensorDriver(ABC):
    @abstractmethod
    def subscribe(self, callback: MotionCallback, interval: float) -> Any:
        """Start delivering motion payloads to `callback` every `interval` seconds."""

    @abstractmethod
    def unsubscribe_all(self):
        """Remove every listener registered through this driver."""


@dataclass
class RecordingConfig:
    metering_enabled: bool = True
    update_interval: float = 0.1
    preset: str = "low_quality"


class AudioDriver(ABC):
    @abstractmethod
    def request_permission(self) -> bool:
        """Ask for microphone access. True when granted."""

    @abstractmethod
    def start_metering_recording(
        self, config: RecordingConfig, callback: MeteringCallback
    ) -> Any:
        """Begin recording and return an opaque handle."""

    @abstractmethod
    def stop(self, handle: Any):
        """Stop and unload a recording started by this driver."""


class HapticEmitter:
    """Haptic feedback sink. The base class does nothing."""

    def pulse(self, intensity: float):
        pass


class InventoryStore:
    """Reward sink. The base class only logs."""

    def add_pack(self, count: int = 1) -> int:
        logger.info("Awarded %d pack(s)", count)
        return count


# --- In-process implementations ---


class ManualSensorDriver(SensorDriver):
    """Push-based motion driver: callers feed payloads with `emit()`."""

    def __init__(self, available: bool = True):
        self.available = available
        self.interval: Optional[float] = None
        self._listeners: list[MotionCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: MotionCallback, interval: float) -> MotionCallback:
        if not self.available:
            raise SensorUnavailable("motion sensor not available")
        with self._lock:
            self._listeners.append(callback)
            self.interval = interval
        return callback

    def unsubscribe_all(self):
        with self._lock:
            self._listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, payload: dict):
        """Deliver one motion payload to every listener."""
        with self._lock:
            listeners = list(self._listeners)
        for cb in listeners:
            cb(payload)


@dataclass
class ManualRecording:
    callback: MeteringCallback
    config: RecordingConfig
    stopped: bool = False


class ManualAudioDriver(AudioDriver):
    """Push-based microphone driver: callers feed levels with `emit()`."""

    def __init__(self, grant: bool = True, fail_start: bool = False, fail_stop: bool = False):
        self.grant = grant
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.permission_requests = 0
        self.started = 0
        self.stopped = 0
        self._active: list[ManualRecording] = []

    def request_permission(self) -> bool:
        self.permission_requests += 1
        return self.grant

    def start_metering_recording(
        self, config: RecordingConfig, callback: MeteringCallback
    ) -> ManualRecording:
        if self.fail_start:
            raise RecordingLifecycleError("could not start recording")
        handle = ManualRecording(callback=callback, config=config)
        self._active.append(handle)
        self.started += 1
        return handle

    def stop(self, handle: ManualRecording):
        if handle.stopped or handle not in self._active:
            raise RecordingLifecycleError("recording already unloaded")
        handle.stopped = True
        self._active.remove(handle)
        self.stopped += 1
        if self.fail_stop:
            raise RecordingLifecycleError("stop failed")

    @property
    def active_recordings(self) -> int:
        return len(self._active)

    def emit(self, metering: Optional[float]):
        """Deliver one metering level to every live recording."""
        for handle in list(self._active):
            handle.callback(metering)


@dataclass
class RecordingHaptics(HapticEmitter):
    """Keeps every pulse, for tests and debugging output."""
    pulses: list[float] = field(default_factory=list)

    def pulse(self, intensity: float):
        self.pulses.append(intensity)


class MemoryInventory(InventoryStore):
    """Counts packs in memory."""

    def __init__(self):
        self.packs = 0

    def add_pack(self, count: int = 1) -> int:
        self.packs += count
        logger.info("Inventory now holds %d pack(s)", self.packs)
        return self.packs
