"""Configuration-driven gesture classifiers.

One module serves every interaction mode: a `ModeProfile` selects which
classifiers run and with which thresholds, and `ClassifierBank` evaluates
them against each incoming reading.

Classifiers:
1. Shake: pure acceleration-magnitude threshold, no directionality
2. Swing (slap / flick / grab): spin AND translation force AND no recent
   rotation reversal, so oscillating pocket motion is rejected
3. Blow: smoothed microphone metering above a dBFS threshold, with a
   separate continuous intensity for visual feedback
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from gacha_engine.config import BlowThresholds, ModeProfile, ShakeThresholds, SwingThresholds
from gacha_engine.history import CooldownGate, HistoryWindow
from gacha_engine.ingest import SensorReading

logger = logging.getLogger("gacha_engine.classifiers")


class GestureKind(str, Enum):
    SHAKE = "shake"
    SLAP = "slap"
    FLICK = "flick"
    GRAB = "grab"
    BLOW = "blow"


@dataclass
class GestureEvent:
    """A classifier fire that passed its cooldown."""
    kind: GestureKind
    intensity: float  # 0–1
    fired_at: float

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "intensity": round(self.intensity, 3),
            "fired_at": self.fired_at,
        }


def interpolate(value: float, low: float, high: float) -> float:
    """Linear map of [low, high] onto [0, 1], clamped."""
    if high <= low:
        return 1.0 if value >= high else 0.0
    return min(1.0, max(0.0, (value - low) / (high - low)))


class Classifier(ABC):
    """Base for a single stateful detector.

    `evaluate()` only answers "would this reading fire?"; cooldowns are
    enforced by the bank so that a blocked fire leaves no trace.
    """

    name: str = "classifier"
    source: str = "motion"  # "motion" or "audio"

    def __init__(self, kind: GestureKind, cooldown: float):
        self.kind = kind
        self.cooldown = cooldown
        self.enabled = True
        self.last_rejection: Optional[str] = None

    @abstractmethod
    def evaluate(self, reading: SensorReading) -> tuple[bool, float]:
        """Return `(fired, intensity)` for one reading."""

    def on_fired(self):
        """Called after a fire was accepted by the cooldown gate."""

    def reset(self):
        self.last_rejection = None


class ShakeClassifier(Classifier):
    name = "shake"

    def __init__(self, thresholds: ShakeThresholds):
        super().__init__(GestureKind.SHAKE, thresholds.cooldown)
        self.force = thresholds.force

    def evaluate(self, reading: SensorReading) -> tuple[bool, float]:
        magnitude = reading.magnitude
        if magnitude <= self.force:
            return False, 0.0
        return True, min(1.0, magnitude / (2.0 * self.force))


class SwingClassifier(Classifier):
    """One-way swing detector shared by slap, flick and grab modes."""

    name = "swing"

    def __init__(self, thresholds: SwingThresholds):
        super().__init__(GestureKind(thresholds.kind), thresholds.cooldown)
        self.rotation_min = thresholds.rotation_min
        self.movement_min = thresholds.movement_min
        self.rejection_threshold = thresholds.rejection_threshold
        self.clear_on_fire = thresholds.clear_on_fire
        self.history = HistoryWindow(thresholds.window)

    def evaluate(self, reading: SensorReading) -> tuple[bool, float]:
        self.history.append(reading)
        self.last_rejection = None

        rot = reading.gamma
        if abs(rot) <= self.rotation_min or reading.magnitude <= self.movement_min:
            return False, 0.0

        sign = 1.0 if rot > 0 else -1.0
        if self.history.has_reversal(sign, self.rejection_threshold):
            self.last_rejection = "reversal"
            logger.debug("Swing rejected: reversal within %.3fs", self.history.window)
            return False, 0.0

        return True, min(1.0, abs(rot) / (2.0 * self.rotation_min))

    def on_fired(self):
        if self.clear_on_fire:
            self.history.clear()

    def reset(self):
        super().reset()
        self.history.clear()


class BlowClassifier(Classifier):
    name = "blow"
    source = "audio"

    def __init__(self, thresholds: BlowThresholds):
        super().__init__(GestureKind.BLOW, thresholds.cooldown)
        self.metering_min = thresholds.metering_min
        self.floor_db = thresholds.floor_db
        self.smoothing = thresholds.smoothing
        self.sustain_frames = max(1, thresholds.sustain_frames)
        self.level: Optional[float] = None
        self.intensity = 0.0
        self._frames_above = 0

    def evaluate(self, reading: SensorReading) -> tuple[bool, float]:
        raw = reading.audio_level
        if raw is None:
            return False, self.intensity

        if self.level is None or self.smoothing <= 0:
            self.level = raw
        else:
            self.level = self.smoothing * self.level + (1.0 - self.smoothing) * raw

        self.intensity = interpolate(self.level, self.floor_db, self.metering_min)

        if self.level > self.metering_min:
            self._frames_above += 1
        else:
            self._frames_above = 0

        fired = self._frames_above >= self.sustain_frames
        return fired, self.intensity

    def on_fired(self):
        self._frames_above = 0

    def reset(self):
        super().reset()
        self.level = None
        self.intensity = 0.0
        self._frames_above = 0


def build_classifiers(profile: ModeProfile) -> list[Classifier]:
    """Instantiate the classifiers a mode enables, in a stable order."""
    classifiers: list[Classifier] = []
    if profile.uses("shake"):
        classifiers.append(ShakeClassifier(profile.shake))
    if profile.uses("swing"):
        classifiers.append(SwingClassifier(profile.swing))
    if profile.uses("blow"):
        classifiers.append(BlowClassifier(profile.blow))
    return classifiers


class ClassifierBank:
    """Runs a mode's classifiers and debounces their fires.

    Usage:
        bank = ClassifierBank(get_profile("grab"))
        for event in bank.process(reading):
            ...
    """

    def __init__(
        self,
        profile: ModeProfile,
        cooldowns: Optional[CooldownGate] = None,
        on_reject: Optional[Callable[[str, str], None]] = None,
    ):
        self.profile = profile
        self.cooldowns = cooldowns or CooldownGate()
        self._classifiers = build_classifiers(profile)
        self._on_reject = on_reject
        self.rejections: Counter = Counter()

    def process(self, reading: SensorReading) -> list[GestureEvent]:
        """Evaluate every enabled classifier fed by this reading's source."""
        source = "audio" if reading.is_audio else "motion"
        events = []

        for clf in self._classifiers:
            if not clf.enabled or clf.source != source:
                continue

            fired, intensity = clf.evaluate(reading)
            if clf.last_rejection:
                self._reject(clf, clf.last_rejection)
            if not fired:
                continue

            if not self.cooldowns.try_fire(clf.name, reading.timestamp, clf.cooldown):
                self._reject(clf, "cooldown")
                continue

            clf.on_fired()
            events.append(GestureEvent(kind=clf.kind, intensity=intensity, fired_at=reading.timestamp))

        return events

    def _reject(self, clf: Classifier, reason: str):
        self.rejections[reason] += 1
        if self._on_reject:
            self._on_reject(clf.name, reason)

    def disable_source(self, source: str, reason: str = ""):
        """Turn off every classifier fed by `source` ("motion" or "audio")."""
        for clf in self._classifiers:
            if clf.source == source and clf.enabled:
                clf.enabled = False
                logger.warning("Classifier %s disabled: %s", clf.name, reason or source)

    def uses_source(self, source: str) -> bool:
        return any(clf.source == source for clf in self._classifiers)

    def get(self, name: str) -> Optional[Classifier]:
        for clf in self._classifiers:
            if clf.name == name:
                return clf
        return None

    def reset(self):
        """Re-enable everything and forget history, cooldowns and counters."""
        for clf in self._classifiers:
            clf.reset()
            clf.enabled = True
        self.cooldowns.reset()
        self.rejections.clear()

    @property
    def classifiers(self) -> list[Classifier]:
        return list(self._classifiers)

    @property
    def enabled_names(self) -> list[str]:
        return [clf.name for clf in self._classifiers if clf.enabled]

    @property
    def any_enabled(self) -> bool:
        return any(clf.enabled for clf in self._classifiers)

    @property
    def blow_intensity(self) -> float:
        blow = self.get("blow")
        return blow.intensity if isinstance(blow, BlowClassifier) else 0.0
