"""Session lifecycle: sensors → classifiers → progress → phases.

A `GestureSession` is the one owned object per interaction screen. It holds
the history buffers, cooldowns, progress meter, phase machine and physics
feed for that session, and its `active` guard makes every driver callback a
no-op after teardown. Entering resets everything; exiting releases every
listener and the microphone in one call.

Usage:
    session = GestureSession(get_profile("shake"), sensor_driver, audio_driver)
    with session:
        ...  # drivers call session.handle_motion / handle_metering
        session.tick()  # ~10Hz: decay and delayed transitions
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any, Callable, Optional

from gacha_engine.classifiers import ClassifierBank, GestureEvent
from gacha_engine.config import ModeProfile
from gacha_engine.drivers import (
    AudioDriver,
    HapticEmitter,
    InventoryStore,
    PermissionDenied,
    RecordingConfig,
    RecordingLifecycleError,
    SensorDriver,
)
from gacha_engine.ingest import reading_from_metering, reading_from_motion
from gacha_engine.metrics import MetricsCollector
from gacha_engine.phases import Phase, PhaseMachine
from gacha_engine.physics import AccelerationFeed, PhysicsBody, PhysicsIntegrator
from gacha_engine.progress import ProgressAccumulator, ProgressState

logger = logging.getLogger("gacha_engine.session")

INTERACTING_PULSE = 0.5
READY_PULSE = 1.0


@dataclass(frozen=True)
class SessionSnapshot:
    """What the render layer is allowed to see."""
    phase: Phase
    progress: int
    body: PhysicsBody
    blow_intensity: float = 0.0

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "progress": self.progress,
            "body": self.body.to_dict(),
            "blow_intensity": round(self.blow_intensity, 3),
        }


class MicrophoneLease:
    """Scoped ownership of the single metering recording of a session.

    `__enter__` asks for permission and starts the recording; `__exit__`
    stops it. The handle reference is cleared on every release, even when
    the driver fails to stop it.
    """

    def __init__(self, driver: AudioDriver, config: RecordingConfig, callback: Callable):
        self._driver = driver
        self._config = config
        self._callback = callback
        self.handle: Any = None

    def acquire(self):
        if self.handle is not None:
            raise RecordingLifecycleError("microphone already held by this session")
        if not self._driver.request_permission():
            raise PermissionDenied("microphone permission denied")
        self.handle = self._driver.start_metering_recording(self._config, self._callback)

    def release(self):
        handle, self.handle = self.handle, None
        if handle is None:
            return
        try:
            self._driver.stop(handle)
        except RecordingLifecycleError as e:
            logger.debug("Ignoring recording stop error: %s", e)
        except Exception as e:
            logger.warning("Audio driver failed to stop recording: %s", e)

    @property
    def held(self) -> bool:
        return self.handle is not None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *args):
        self.release()


class GestureSession:
    """One interaction session bound to a mode profile."""

    def __init__(
        self,
        profile: ModeProfile,
        sensor_driver: Optional[SensorDriver] = None,
        audio_driver: Optional[AudioDriver] = None,
        haptics: Optional[HapticEmitter] = None,
        inventory: Optional[InventoryStore] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.profile = profile
        self.sensors = sensor_driver
        self.audio = audio_driver
        self.haptics = haptics or HapticEmitter()
        self.inventory = inventory or InventoryStore()
        self.clock = clock
        self.metrics = metrics

        self.bank = ClassifierBank(profile, on_reject=self._on_reject)
        self.progress = ProgressAccumulator(profile.progress, now=clock())
        self.phases = PhaseMachine()
        self.feed = AccelerationFeed()
        self.integrator = PhysicsIntegrator(profile.physics)

        self._lock = threading.RLock()
        self._active = False
        self._listening = False
        self._resources = ExitStack()
        self._microphone: Optional[MicrophoneLease] = None
        self._opening_due: Optional[float] = None
        self._last_decay = clock()
        self._last_published: Optional[tuple[Phase, int]] = None

        self._gesture_callbacks: list[Callable[[GestureEvent], None]] = []
        self._phase_callbacks: list[Callable[[Phase, Phase], None]] = []
        self._snapshot_callbacks: list[Callable[[SessionSnapshot], None]] = []

        self.progress.on_complete(self._on_complete)
        self.phases.on_change(self._on_phase_change)

    # --- Observers ---

    def on_gesture(self, callback: Callable[[GestureEvent], None]):
        """Register a callback for every accepted gesture event."""
        self._gesture_callbacks.append(callback)

    def on_phase(self, callback: Callable[[Phase, Phase], None]):
        self._phase_callbacks.append(callback)

    def on_snapshot(self, callback: Callable[[SessionSnapshot], None]):
        """Register a callback fired when phase or integer progress changes."""
        self._snapshot_callbacks.append(callback)

    # --- Lifecycle ---

    def enter(self) -> GestureSession:
        """Start (or restart) the session with fresh state."""
        with self._lock:
            if self._active:
                self.exit()

            now = self.clock()
            self.bank.reset()
            self.progress.reset(now)
            self.phases.reset()
            self.integrator.reset()
            self.feed.reopen()
            self._opening_due = None
            self._last_decay = now
            self._last_published = None
            self._active = True

            self._start_listeners()
            if not self.bank.any_enabled:
                logger.warning("Mode %s has no working classifier; exit to leave", self.profile.name)

            if self.metrics:
                self.metrics.record_session(self.profile.name)
            logger.info("Session entered (mode=%s, classifiers=%s)", self.profile.name, self.bank.enabled_names)
            self._publish()
        return self

    def exit(self):
        """Stop every listener and release the microphone. Safe to repeat."""
        with self._lock:
            if not self._active:
                return
            self._active = False
            self._opening_due = None
            self._teardown_listeners()
            logger.info("Session exited in phase %s", self.phases.phase.value)

    def __enter__(self):
        return self.enter()

    def __exit__(self, *args):
        self.exit()

    def _start_listeners(self):
        stack = ExitStack()

        if self.sensors is None:
            self.bank.disable_source("motion", "no sensor driver")
        else:
            try:
                self.sensors.subscribe(self.handle_motion, self.profile.timing.motion_interval)
                stack.callback(self._unsubscribe_motion)
            except Exception as e:
                logger.warning("Motion listener unavailable: %s", e)
                self.bank.disable_source("motion", str(e))

        if self.bank.uses_source("audio"):
            if self.audio is None:
                self.bank.disable_source("audio", "no audio driver")
            else:
                lease = MicrophoneLease(
                    self.audio,
                    RecordingConfig(update_interval=self.profile.timing.metering_interval),
                    self.handle_metering,
                )
                try:
                    stack.enter_context(lease)
                    self._microphone = lease
                except PermissionDenied as e:
                    logger.warning("Blow disabled: %s", e)
                    self.bank.disable_source("audio", "permission denied")
                except Exception as e:
                    lease.release()
                    logger.warning("Microphone failed to start: %s", e)
                    self.bank.disable_source("audio", str(e))

        self._resources = stack
        self._listening = True

    def _unsubscribe_motion(self):
        try:
            self.sensors.unsubscribe_all()
        except Exception as e:
            logger.warning("Failed to remove motion listeners: %s", e)

    def _teardown_listeners(self):
        """Detach sensors, release the microphone and cut the physics feed."""
        self._listening = False
        self.feed.cut()
        stack, self._resources = self._resources, ExitStack()
        stack.close()
        self._microphone = None

    # --- Driver callbacks ---

    def handle_motion(self, payload: dict):
        if not self._listening:
            return
        t0 = time.perf_counter()
        reading = reading_from_motion(payload, self.clock())
        self.feed.push(reading.accel[0], reading.accel[1])

        with self._lock:
            if not (self._active and self._listening):
                return
            for event in self.bank.process(reading):
                self._accept(event)

        if self.metrics:
            self.metrics.record_sample("motion", time.perf_counter() - t0)

    def handle_metering(self, metering: Optional[float]):
        if not self._listening:
            return
        t0 = time.perf_counter()
        reading = reading_from_metering(metering, self.clock())

        with self._lock:
            if not (self._active and self._listening):
                return
            for event in self.bank.process(reading):
                self._accept(event)

        if self.metrics:
            self.metrics.record_sample("audio", time.perf_counter() - t0)

    def _accept(self, event: GestureEvent):
        phase = self.phases.phase
        if not phase.accepts_input:
            return
        if phase is Phase.IDLE:
            self.phases.advance(Phase.INTERACTING)

        logger.debug("Gesture %s (intensity=%.2f)", event.kind.value, event.intensity)
        if self.metrics:
            self.metrics.record_gesture(event.kind.value)
        self._pulse(event.intensity)
        for cb in self._gesture_callbacks:
            cb(event)

        self.progress.increment(self.profile.increment_for(event.kind.value), event.fired_at)
        self._publish()

    def _on_reject(self, classifier: str, reason: str):
        if self.metrics:
            self.metrics.record_rejection(classifier, reason)

    def _on_complete(self, state: ProgressState):
        with self._lock:
            # Listeners are detached before any win feedback plays
            self._teardown_listeners()
            if self.phases.phase is Phase.IDLE:
                self.phases.advance(Phase.INTERACTING)
            self.phases.advance(Phase.READY)
            self._opening_due = state.last_interaction_at + self.profile.timing.ready_delay
            if self.metrics:
                self.metrics.record_completion(self.profile.name)

    def _on_phase_change(self, previous: Phase, current: Phase):
        if current is Phase.INTERACTING:
            self._pulse(INTERACTING_PULSE)
        elif current is Phase.READY:
            self._pulse(READY_PULSE)
        if not current.accepts_input and self._listening:
            self._teardown_listeners()

        for cb in self._phase_callbacks:
            cb(previous, current)
        self._publish()

    def _pulse(self, intensity: float):
        try:
            self.haptics.pulse(intensity)
        except Exception as e:
            logger.debug("Haptic pulse failed: %s", e)

    # --- Clocked work ---

    def tick(self, now: Optional[float] = None):
        """Run decay, delayed transitions and the inactivity timeout."""
        now = self.clock() if now is None else now
        with self._lock:
            if not self._active:
                return
            phase = self.phases.phase

            if phase.accepts_input:
                self._decay_until(now)
                timeout = self.profile.timing.inactivity_timeout
                if timeout is not None and now - self.progress.last_interaction_at > timeout:
                    logger.info("Session idle for %.1fs, exiting", timeout)
                    self.exit()
                    return
            elif phase is Phase.READY and self._opening_due is not None and now >= self._opening_due:
                self._opening_due = None
                self.phases.advance(Phase.OPENING)

            self._publish()

    def _decay_until(self, now: float):
        interval = self.profile.progress.decay_interval
        if self.progress.value <= 0.0:
            self._last_decay = now
            return
        while now - self._last_decay >= interval:
            self._last_decay += interval
            self.progress.decay_tick(self._last_decay)

    def step_physics(self) -> PhysicsBody:
        """Advance the token one frame from the latest acceleration."""
        return self.integrator.step_from(self.feed)

    # --- Render-side callbacks ---

    def animation_finished(self) -> bool:
        """The reveal animation ended: award the pack and move to REVEALED."""
        with self._lock:
            if not self._active or not self.phases.can_advance(Phase.REVEALED):
                logger.debug("Ignoring animation_finished in phase %s", self.phases.phase.value)
                return False
            try:
                self.inventory.add_pack(1)
            except Exception as e:
                logger.warning("Inventory store failed: %s", e)
            self.phases.advance(Phase.REVEALED)
            return True

    def collect(self) -> bool:
        """Player dismissed the reveal."""
        with self._lock:
            if not self._active or not self.phases.can_advance(Phase.COMPLETE):
                return False
            self.phases.advance(Phase.COMPLETE)
            return True

    # --- Observable state ---

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            phase=self.phases.phase,
            progress=int(round(self.progress.value)),
            body=self.integrator.body,
            blow_intensity=self.bank.blow_intensity,
        )

    def _publish(self):
        snap = self.snapshot()
        key = (snap.phase, snap.progress)
        if key == self._last_published:
            return
        self._last_published = key
        if self.metrics:
            self.metrics.set_progress(snap.progress)
        for cb in self._snapshot_callbacks:
            cb(snap)

    @property
    def active(self) -> bool:
        return self._active

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def phase(self) -> Phase:
        return self.phases.phase

    @property
    def microphone_held(self) -> bool:
        return self._microphone is not None and self._microphone.held

    @property
    def blow_intensity(self) -> float:
        return self.bank.blow_intensity
