"""Tests for the history window and cooldown gate."""

import numpy as np
import pytest

from gacha_engine.history import CooldownGate, HistoryWindow
from gacha_engine.ingest import SensorReading


def gamma_reading(t, gamma, accel=(0.0, 0.0, 0.0)):
    return SensorReading(timestamp=t, accel=accel, rotation=(0.0, 0.0, gamma))


class TestHistoryWindow:
    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError):
            HistoryWindow(0.0)

    def test_evicts_entries_older_than_window(self):
        w = HistoryWindow(0.2)
        w.append(gamma_reading(0.0, 1.0))
        w.append(gamma_reading(0.1, 1.0))
        w.append(gamma_reading(0.2, 1.0))
        # 0.2 - 0.0 is not strictly inside the window
        assert [r.timestamp for r in w] == [0.1, 0.2]

    def test_every_entry_inside_window_after_append(self):
        rng = np.random.default_rng(7)
        w = HistoryWindow(0.2)
        t = 0.0
        for _ in range(500):
            t += float(rng.uniform(0.0, 0.08))
            w.append(gamma_reading(t, float(rng.normal())))
            assert all(t - r.timestamp < 0.2 for r in w)
            assert len(w) >= 1

    def test_reversal_positive_swing(self):
        w = HistoryWindow(0.2)
        w.append(gamma_reading(0.0, -3.0))
        w.append(gamma_reading(0.05, 5.0))
        assert w.has_reversal(1.0, 2.0)

    def test_mild_opposite_rotation_is_not_reversal(self):
        w = HistoryWindow(0.2)
        w.append(gamma_reading(0.0, -1.5))
        w.append(gamma_reading(0.05, 5.0))
        assert not w.has_reversal(1.0, 2.0)

    def test_reversal_negative_swing(self):
        w = HistoryWindow(0.2)
        w.append(gamma_reading(0.0, 2.5))
        assert w.has_reversal(-1.0, 2.0)
        assert not w.has_reversal(1.0, 2.0)

    def test_stale_reversal_is_forgotten(self):
        w = HistoryWindow(0.2)
        w.append(gamma_reading(0.0, -6.0))
        w.append(gamma_reading(0.3, 5.0))
        assert not w.has_reversal(1.0, 2.0)

    def test_clear(self):
        w = HistoryWindow(0.2)
        w.append(gamma_reading(0.0, -6.0))
        w.append(gamma_reading(0.01, 0.0))
        assert len(w) == 2
        w.clear()
        assert len(w) == 0
        assert not w.has_reversal(1.0, 2.0)


class TestCooldownGate:
    def test_first_fire_always_allowed(self):
        gate = CooldownGate()
        assert gate.try_fire("shake", 0.0, 0.5)
        assert gate.last_fired("shake") == 0.0

    def test_blocks_inside_cooldown(self):
        gate = CooldownGate()
        gate.try_fire("shake", 0.0, 0.5)
        assert not gate.try_fire("shake", 0.3, 0.5)
        # A blocked fire does not move the reference point
        assert gate.last_fired("shake") == 0.0
        assert gate.try_fire("shake", 0.5, 0.5)

    def test_keys_are_independent(self):
        gate = CooldownGate()
        gate.try_fire("shake", 0.0, 0.5)
        assert gate.try_fire("blow", 0.1, 0.5)

    def test_reset(self):
        gate = CooldownGate()
        gate.try_fire("shake", 0.0, 0.5)
        gate.try_fire("blow", 0.0, 0.5)
        gate.reset("shake")
        assert gate.ready("shake", 0.1, 0.5)
        assert not gate.ready("blow", 0.1, 0.5)
        gate.reset()
        assert gate.ready("blow", 0.1, 0.5)
