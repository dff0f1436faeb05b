"""Mode-scoped thresholds and engine settings.

Every tunable lives here as a named dataclass field. A `ModeProfile`
bundles one threshold set per classifier plus progress, physics and timing
constants; the session picks a profile by mode name instead of carrying
per-screen copies of the detection logic.

Profiles can be overridden or extended from YAML:

    modes:
      party_shake:
        extends: shake
        description: Harder shake for parties
        shake: {force: 22}
        progress:
          increments: {shake: 10}
"""

from __future__ import annotations

import copy
import logging
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger("gacha_engine.config")

CLASSIFIER_NAMES = ("shake", "swing", "blow")


@dataclass
class ShakeThresholds:
    force: float = 15.0  # acceleration magnitude
    cooldown: float = 0.5


@dataclass
class SwingThresholds:
    rotation_min: float = 4.0  # rad/s on gamma
    movement_min: float = 12.0
    rejection_threshold: float = 2.0
    window: float = 0.2
    cooldown: float = 0.5
    kind: str = "grab"  # reported gesture: grab, slap or flick
    clear_on_fire: bool = True


@dataclass
class BlowThresholds:
    metering_min: float = -25.0  # dBFS
    floor_db: float = -40.0  # intensity is 0 at or below this level
    smoothing: float = 0.0  # EMA weight of the previous value, 0 = raw metering
    sustain_frames: int = 1  # consecutive frames above metering_min before firing
    cooldown: float = 0.1


def _default_increments() -> dict[str, float]:
    return {"shake": 15.0, "blow": 8.0, "grab": 25.0, "slap": 25.0, "flick": 20.0}


@dataclass
class ProgressConfig:
    completion: float = 100.0
    increments: dict[str, float] = field(default_factory=_default_increments)
    decay_rate: float = 1.0  # per decay tick
    decay_delay: float = 2.0
    decay_interval: float = 0.1


@dataclass
class PhysicsConfig:
    friction: float = 0.92
    accel_scale: float = 2.5
    bounce_factor: float = 0.6
    rotation_coupling: float = 0.3
    # min_x, max_x, min_y, max_y; 30% / 12% of a 390x844 viewport
    bounds: tuple[float, float, float, float] = (-117.0, 117.0, -101.28, 101.28)
    frame_rate: float = 60.0


@dataclass
class TimingConfig:
    motion_interval: float = 0.05
    metering_interval: float = 0.1
    ready_delay: float = 0.5
    inactivity_timeout: Optional[float] = None
    snapshot_interval: float = 1.0 / 30.0


@dataclass
class ModeProfile:
    """Complete parameter set for one interaction mode."""
    name: str
    description: str = ""
    classifiers: list[str] = field(default_factory=lambda: ["shake"])
    shake: ShakeThresholds = field(default_factory=ShakeThresholds)
    swing: SwingThresholds = field(default_factory=SwingThresholds)
    blow: BlowThresholds = field(default_factory=BlowThresholds)
    progress: ProgressConfig = field(default_factory=ProgressConfig)
    physics: PhysicsConfig = field(default_factory=PhysicsConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)

    def __post_init__(self):
        unknown = [c for c in self.classifiers if c not in CLASSIFIER_NAMES]
        if unknown:
            raise ValueError(f"Unknown classifiers in mode '{self.name}': {unknown}")

    def uses(self, classifier: str) -> bool:
        return classifier in self.classifiers

    def increment_for(self, kind: str) -> float:
        return self.progress.increments.get(kind, 0.0)

    def to_dict(self) -> dict:
        return asdict(self)


def _dict_to_dataclass(cls, data: Optional[dict]):
    """Build a dataclass from a dict, recursing into nested dataclass fields.

    Unknown keys are ignored with a warning.
    """
    if data is None:
        return cls()
    kwargs = {}
    known = {f.name: f for f in fields(cls)}
    for key, value in data.items():
        f = known.get(key)
        if f is None:
            logger.warning("Ignoring unknown config key %s.%s", cls.__name__, key)
            continue
        default = f.default_factory() if callable(f.default_factory) else f.default  # type: ignore[misc]
        if is_dataclass(default) and isinstance(value, dict):
            value = _dict_to_dataclass(type(default), value)
        elif isinstance(default, tuple) and isinstance(value, list):
            value = tuple(value)
        kwargs[key] = value
    return cls(**kwargs)


def _deep_update(base: dict, overrides: dict) -> dict:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _builtin_profiles() -> dict[str, ModeProfile]:
    profiles = [
        ModeProfile(
            name="shake",
            description="Shake the capsule open",
            classifiers=["shake"],
        ),
        ModeProfile(
            name="blow",
            description="Blow into the microphone to open",
            classifiers=["blow"],
        ),
        ModeProfile(
            name="grab",
            description="Swing the phone like a racket to grab",
            classifiers=["swing"],
            timing=TimingConfig(motion_interval=0.016),
        ),
        ModeProfile(
            name="both",
            description="Shake and blow together",
            classifiers=["shake", "blow"],
        ),
        ModeProfile(
            name="flick",
            description="Quick one-way flicks of the wrist",
            classifiers=["swing"],
            swing=SwingThresholds(kind="flick", cooldown=1.0),
            timing=TimingConfig(motion_interval=0.016),
        ),
        ModeProfile(
            name="shake_challenge",
            description="One hard shake wins",
            classifiers=["shake"],
            shake=ShakeThresholds(force=30.0, cooldown=1.0),
            progress=ProgressConfig(increments={"shake": 100.0}),
        ),
        ModeProfile(
            name="slap_challenge",
            description="One clean slap wins",
            classifiers=["swing"],
            swing=SwingThresholds(kind="slap", cooldown=1.0, clear_on_fire=False),
            progress=ProgressConfig(increments={"slap": 100.0}),
            timing=TimingConfig(motion_interval=0.016),
        ),
        ModeProfile(
            name="blow_challenge",
            description="Blow out the candle",
            classifiers=["blow"],
            blow=BlowThresholds(metering_min=-20.0, sustain_frames=4, cooldown=1.5),
            progress=ProgressConfig(increments={"blow": 100.0}),
        ),
    ]
    return {p.name: p for p in profiles}


BUILTIN_PROFILES: dict[str, ModeProfile] = _builtin_profiles()


def load_profiles(path: Optional[str | Path] = None) -> dict[str, ModeProfile]:
    """Return built-in profiles, merged with YAML overrides if a path is given."""
    profiles = copy.deepcopy(BUILTIN_PROFILES)
    if path is None:
        return profiles

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    for name, entry in (config.get("modes") or {}).items():
        entry = dict(entry or {})
        parent = entry.pop("extends", name if name in profiles else None)
        if parent is not None and parent not in profiles:
            raise KeyError(f"Mode '{name}' extends unknown mode '{parent}'")

        base = profiles[parent].to_dict() if parent else {}
        merged = _deep_update(base, entry)
        merged["name"] = name
        profiles[name] = _dict_to_dataclass(ModeProfile, merged)
        logger.debug("Loaded mode %s (extends %s)", name, parent)

    return profiles


def get_profile(name: str, overrides_path: Optional[str | Path] = None) -> ModeProfile:
    """Look up a mode by name. Raises KeyError for unknown modes."""
    profiles = load_profiles(overrides_path)
    if name not in profiles:
        raise KeyError(f"Unknown mode '{name}'. Available: {sorted(profiles)}")
    return profiles[name]


@dataclass
class EngineSettings:
    host: str = "0.0.0.0"
    port: int = 8765
    default_mode: str = "grab"
    log_level: str = "info"
    modes_file: Optional[str] = None
    snapshot_interval: float = 1.0 / 30.0


def load_settings(path: Optional[str | Path] = None) -> EngineSettings:
    """Load engine settings from YAML, falling back to defaults."""
    if path is None or not Path(path).exists():
        return EngineSettings()
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return _dict_to_dataclass(EngineSettings, data)
