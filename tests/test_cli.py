"""Tests for the command-line interface."""

from typer.testing import CliRunner

from gacha_engine.cli import app
from gacha_engine.recorder import SensorPlayer

runner = CliRunner()


class TestModesCommand:
    def test_lists_builtin_modes(self):
        result = runner.invoke(app, ["modes"])
        assert result.exit_code == 0
        assert "shake_challenge" in result.output
        assert "swing" in result.output

    def test_verbose_shows_thresholds(self):
        result = runner.invoke(app, ["modes", "-v"])
        assert result.exit_code == 0
        assert "rotation_min" in result.output


class TestSimulateAndReplay:
    def test_simulate_saves_recording(self, tmp_path):
        out = tmp_path / "sim.json"
        result = runner.invoke(app, ["simulate", "--mode", "shake", "--seconds", "4", "-o", str(out)])
        assert result.exit_code == 0, result.output
        assert out.exists()
        assert SensorPlayer.load(out).mode == "shake"
        assert "Final phase" in result.output

    def test_simulate_compact(self, tmp_path):
        out = tmp_path / "sim"
        result = runner.invoke(app, ["simulate", "--mode", "both", "--seconds", "2", "-o", str(out), "--compact"])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "sim.npz").exists()

    def test_replay_recording(self, tmp_path):
        out = tmp_path / "sim.json"
        runner.invoke(app, ["simulate", "--mode", "grab", "--seconds", "3", "-o", str(out)])
        result = runner.invoke(app, ["replay", str(out)])
        assert result.exit_code == 0, result.output
        assert "as 'grab'" in result.output
        assert "Replay complete" in result.output

    def test_replay_missing_file(self, tmp_path):
        result = runner.invoke(app, ["replay", str(tmp_path / "nope.json")])
        assert result.exit_code == 1

    def test_unknown_mode(self):
        result = runner.invoke(app, ["simulate", "--mode", "juggle"])
        assert result.exit_code == 1
