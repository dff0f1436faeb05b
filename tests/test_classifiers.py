"""Tests for the shake, swing and blow classifiers and the classifier bank."""

from dataclasses import replace

import pytest

from gacha_engine.classifiers import (
    BlowClassifier,
    Classifier,
    ClassifierBank,
    GestureKind,
    ShakeClassifier,
    SwingClassifier,
    build_classifiers,
    interpolate,
)
from gacha_engine.config import BlowThresholds, ShakeThresholds, SwingThresholds, get_profile
from gacha_engine.ingest import SensorReading, reading_from_metering


def motion(t, accel=(0.0, 0.0, 0.0), gamma=0.0):
    return SensorReading(timestamp=t, accel=accel, rotation=(0.0, 0.0, gamma))


def swing(t, gamma, force=20.0):
    return motion(t, accel=(force, 0.0, 0.0), gamma=gamma)


class TestInterpolate:
    def test_clamped(self):
        assert interpolate(-60, -50, -25) == 0.0
        assert interpolate(-10, -50, -25) == 1.0
        assert interpolate(-37.5, -50, -25) == pytest.approx(0.5)

    def test_degenerate_range(self):
        assert interpolate(5, 5, 5) == 1.0
        assert interpolate(4, 5, 5) == 0.0


class TestClassifierBase:
    def test_base_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            Classifier(GestureKind.SHAKE, 0.5)

    def test_subclass_must_implement_evaluate(self):
        class Incomplete(Classifier):
            name = "incomplete"

        with pytest.raises(TypeError):
            Incomplete(GestureKind.SHAKE, 0.5)


class TestShakeClassifier:
    def test_fires_above_force(self):
        clf = ShakeClassifier(ShakeThresholds(force=15))
        fired, intensity = clf.evaluate(motion(0.0, accel=(35.0, 0.0, 0.0)))
        assert fired
        assert intensity == 1.0

    def test_threshold_is_strict(self):
        clf = ShakeClassifier(ShakeThresholds(force=15))
        fired, _ = clf.evaluate(motion(0.0, accel=(15.0, 0.0, 0.0)))
        assert not fired

    def test_intensity_scales_with_force(self):
        clf = ShakeClassifier(ShakeThresholds(force=15))
        _, intensity = clf.evaluate(motion(0.0, accel=(0.0, 18.0, 0.0)))
        assert intensity == pytest.approx(0.6)

    def test_single_spike_then_cooldown(self):
        bank = ClassifierBank(get_profile("shake"))
        first = bank.process(motion(0.0, accel=(35.0, 0.0, 0.0)))
        second = bank.process(motion(0.05, accel=(35.0, 0.0, 0.0)))
        assert [e.kind for e in first] == [GestureKind.SHAKE]
        assert second == []
        assert bank.rejections["cooldown"] == 1

    def test_fires_again_after_cooldown(self):
        bank = ClassifierBank(get_profile("shake"))
        bank.process(motion(0.0, accel=(35.0, 0.0, 0.0)))
        events = bank.process(motion(0.5, accel=(35.0, 0.0, 0.0)))
        assert len(events) == 1


class TestSwingClassifier:
    def test_one_way_swing_fires(self):
        clf = SwingClassifier(SwingThresholds(kind="slap"))
        fired, intensity = clf.evaluate(swing(0.0, 5.0))
        assert fired
        assert clf.kind is GestureKind.SLAP
        assert intensity == pytest.approx(5.0 / 8.0)

    def test_requires_rotation_and_movement(self):
        clf = SwingClassifier(SwingThresholds())
        assert not clf.evaluate(swing(0.0, 3.0))[0]
        assert not clf.evaluate(swing(0.1, 6.0, force=10.0))[0]

    def test_reversal_rejects_second_spike(self):
        thresholds = SwingThresholds(kind="slap", cooldown=0.0, clear_on_fire=False)
        bank = ClassifierBank(replace(get_profile("slap_challenge"), swing=thresholds))

        first = bank.process(swing(0.0, 5.0))
        bank.process(motion(0.05, gamma=-3.0))
        second = bank.process(swing(0.1, 5.0))

        assert [e.kind for e in first] == [GestureKind.SLAP]
        assert second == []
        assert bank.get("swing").last_rejection == "reversal"
        assert bank.rejections["reversal"] == 1

    def test_reversal_survives_history_clear_on_fire(self):
        clf = SwingClassifier(SwingThresholds(clear_on_fire=True))
        assert clf.evaluate(swing(0.0, 5.0))[0]
        clf.on_fired()
        assert len(clf.history) == 0
        clf.evaluate(motion(0.05, gamma=-3.0))
        assert not clf.evaluate(swing(0.1, 5.0))[0]

    def test_negative_swing_rejected_by_positive_history(self):
        clf = SwingClassifier(SwingThresholds())
        clf.evaluate(motion(0.0, gamma=4.0))
        assert not clf.evaluate(swing(0.05, -6.0))[0]

    def test_reversal_outside_window_ignored(self):
        clf = SwingClassifier(SwingThresholds(window=0.2))
        clf.evaluate(motion(0.0, gamma=-5.0))
        assert clf.evaluate(swing(0.25, 5.0))[0]


class TestBlowClassifier:
    def test_silent_input_has_zero_intensity(self):
        clf = BlowClassifier(BlowThresholds())
        fired, intensity = clf.evaluate(reading_from_metering(None, 0.0))
        assert not fired
        assert intensity == 0.0

    def test_intensity_below_threshold(self):
        clf = BlowClassifier(BlowThresholds(metering_min=-25, floor_db=-50))
        fired, intensity = clf.evaluate(reading_from_metering(-37.5, 0.0))
        assert not fired
        assert intensity == pytest.approx(0.5)

    def test_fires_above_threshold(self):
        clf = BlowClassifier(BlowThresholds(metering_min=-25))
        fired, intensity = clf.evaluate(reading_from_metering(-10.0, 0.0))
        assert fired
        assert intensity == 1.0

    def test_sustain_frames(self):
        clf = BlowClassifier(BlowThresholds(metering_min=-20, sustain_frames=4))
        results = [clf.evaluate(reading_from_metering(-15.0, i * 0.1))[0] for i in range(4)]
        assert results == [False, False, False, True]

    def test_sustain_resets_on_dip(self):
        clf = BlowClassifier(BlowThresholds(metering_min=-20, sustain_frames=3))
        clf.evaluate(reading_from_metering(-15.0, 0.0))
        clf.evaluate(reading_from_metering(-15.0, 0.1))
        clf.evaluate(reading_from_metering(-40.0, 0.2))
        assert not clf.evaluate(reading_from_metering(-15.0, 0.3))[0]

    def test_smoothing_lags_raw_level(self):
        clf = BlowClassifier(BlowThresholds(smoothing=0.5))
        clf.evaluate(reading_from_metering(-60.0, 0.0))
        fired, _ = clf.evaluate(reading_from_metering(-10.0, 0.1))
        assert clf.level == pytest.approx(-35.0)
        assert not fired

    def test_motion_readings_do_not_reach_blow(self):
        bank = ClassifierBank(get_profile("blow"))
        assert bank.process(motion(0.0, accel=(40.0, 0.0, 0.0))) == []
        events = bank.process(reading_from_metering(-10.0, 0.0))
        assert [e.kind for e in events] == [GestureKind.BLOW]


class TestClassifierBank:
    def test_build_follows_profile(self):
        names = [c.name for c in build_classifiers(get_profile("both"))]
        assert names == ["shake", "blow"]

    def test_disable_source(self):
        bank = ClassifierBank(get_profile("both"))
        bank.disable_source("audio", "permission denied")
        assert bank.enabled_names == ["shake"]
        assert bank.process(reading_from_metering(-5.0, 0.0)) == []
        assert len(bank.process(motion(0.0, accel=(35.0, 0.0, 0.0)))) == 1

    def test_reset_re_enables_and_clears_cooldowns(self):
        bank = ClassifierBank(get_profile("shake"))
        bank.process(motion(0.0, accel=(35.0, 0.0, 0.0)))
        bank.disable_source("motion")
        assert not bank.any_enabled
        bank.reset()
        assert bank.any_enabled
        assert len(bank.process(motion(0.01, accel=(35.0, 0.0, 0.0)))) == 1

    def test_on_reject_callback(self):
        seen = []
        bank = ClassifierBank(get_profile("shake"), on_reject=lambda name, reason: seen.append((name, reason)))
        bank.process(motion(0.0, accel=(35.0, 0.0, 0.0)))
        bank.process(motion(0.1, accel=(35.0, 0.0, 0.0)))
        assert seen == [("shake", "cooldown")]

    def test_blow_intensity_without_blow(self):
        assert ClassifierBank(get_profile("shake")).blow_intensity == 0.0
