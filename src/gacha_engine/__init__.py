"""GachaEngine - Streaming gesture recognition for progressive reveal screens."""

__version__ = "0.2.0"

from gacha_engine.ingest import SensorReading, reading_from_metering, reading_from_motion
from gacha_engine.history import CooldownGate, HistoryWindow
from gacha_engine.config import EngineSettings, ModeProfile, get_profile, load_profiles
from gacha_engine.classifiers import ClassifierBank, GestureEvent, GestureKind
from gacha_engine.progress import OneShotLatch, ProgressAccumulator, ProgressState
from gacha_engine.phases import InvalidTransition, Phase, PhaseMachine
from gacha_engine.physics import AccelerationFeed, PhysicsBody, PhysicsIntegrator
from gacha_engine.drivers import (
    AudioDriver,
    DriverError,
    PermissionDenied,
    RecordingLifecycleError,
    SensorDriver,
    SensorUnavailable,
)
from gacha_engine.session import GestureSession, SessionSnapshot
from gacha_engine.runner import FixedRateLoop, SessionRunner
from gacha_engine.recorder import SensorPlayer, SensorRecorder
from gacha_engine.metrics import MetricsCollector
