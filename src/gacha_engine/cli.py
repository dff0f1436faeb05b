"""GachaEngine CLI — the main entry point for all operations.

Usage:
    gacha-engine serve       — Start the WebSocket session server
    gacha-engine modes       — List interaction modes and their thresholds
    gacha-engine replay      — Replay a recorded sensor stream through a session
    gacha-engine simulate    — Run a session on a synthetic sensor stream
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="gacha-engine",
    help="🎁 Gesture-driven progressive reveal engine.",
    add_completion=False,
)


def _setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def _load_profile(mode: str, modes_file: Optional[str]):
    from gacha_engine.config import get_profile

    try:
        return get_profile(mode, modes_file)
    except KeyError as e:
        typer.echo(f"❌ {e.args[0]}", err=True)
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8765, help="Port"),
    config: Optional[str] = typer.Option(None, "--config", help="Path to engine settings YAML"),
    modes_file: Optional[str] = typer.Option(None, "--modes", help="Path to modes YAML"),
    default_mode: Optional[str] = typer.Option(None, "--mode", help="Mode used when a client names none"),
    log_level: str = typer.Option("info", help="Log level"),
):
    """Start the WebSocket session server."""
    import uvicorn
    from gacha_engine.config import load_settings
    from gacha_engine.server import app as fastapi_app, configure

    _setup_logging(log_level)
    settings = load_settings(config)
    settings.host, settings.port, settings.log_level = host, port, log_level
    if modes_file:
        settings.modes_file = modes_file
    if default_mode:
        settings.default_mode = default_mode
    configure(settings)

    typer.echo(f"🚀 Starting GachaEngine server on {host}:{port}")
    typer.echo(f"   Connect phones to ws://{host}:{port}/ws/session?mode={settings.default_mode}")
    uvicorn.run(fastapi_app, host=host, port=port, log_level=log_level)


@app.command()
def modes(
    modes_file: Optional[str] = typer.Option(None, "--modes", help="Path to modes YAML"),
    verbose: bool = typer.Option(False, "-v", help="Show every threshold"),
):
    """List interaction modes."""
    import json
    from gacha_engine.config import load_profiles

    profiles = load_profiles(modes_file)
    for profile in profiles.values():
        typer.echo(f"{profile.name:16s} {'+'.join(profile.classifiers):12s} {profile.description}")
        if verbose:
            typer.echo(json.dumps(profile.to_dict(), indent=2))


def _run_session(player, profile, realtime: bool, speed: float):
    from gacha_engine.drivers import ManualAudioDriver, ManualSensorDriver, MemoryInventory, RecordingHaptics
    from gacha_engine.phases import Phase
    from gacha_engine.session import GestureSession

    inventory = MemoryInventory()
    session = GestureSession(
        profile,
        sensor_driver=ManualSensorDriver(),
        audio_driver=ManualAudioDriver(),
        haptics=RecordingHaptics(),
        inventory=inventory,
    )

    def on_gesture(event):
        typer.echo(f"   🎯 {event.kind.value:6s} t={event.fired_at:6.2f}s intensity={event.intensity:.2f}")

    def on_snapshot(snap):
        typer.echo(f"   ▸ {snap.phase.value:12s} {snap.progress:3d}%")

    session.on_gesture(on_gesture)
    session.on_snapshot(on_snapshot)

    if realtime:
        # Wall-clock replay; the session keeps its own monotonic clock
        session.enter()
        for reading in player.play_realtime(speed=speed):
            if reading.is_audio:
                session.handle_metering(reading.audio_level)
            else:
                session.handle_motion({
                    "acceleration": dict(zip("xyz", reading.accel)),
                    "rotationRate": dict(zip(("alpha", "beta", "gamma"), reading.rotation)),
                })
            session.tick()
        if session.phase is Phase.READY:
            time.sleep(profile.timing.ready_delay)
            session.tick()
    else:
        player.replay_into(session, settle=profile.timing.ready_delay + 0.1)

    if session.phase is Phase.OPENING:
        session.animation_finished()
        session.collect()
    snapshot = session.snapshot()
    session.exit()
    return snapshot, inventory


@app.command()
def replay(
    recording: str = typer.Argument(..., help="Path to recording file"),
    mode: Optional[str] = typer.Option(None, help="Mode profile (defaults to the recorded one)"),
    modes_file: Optional[str] = typer.Option(None, "--modes", help="Path to modes YAML"),
    speed: float = typer.Option(1.0, help="Playback speed multiplier"),
    realtime: bool = typer.Option(False, help="Play at recorded timing"),
    log_level: str = typer.Option("warning", help="Log level"),
):
    """Replay a recorded sensor stream through a session."""
    from gacha_engine.recorder import SensorPlayer

    _setup_logging(log_level)
    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    player = SensorPlayer.load(path)
    profile = _load_profile(mode or player.mode or "grab", modes_file)
    typer.echo(f"▶️  Replaying {path.name} ({player.reading_count} readings, {player.duration:.1f}s) as '{profile.name}'")

    snapshot, inventory = _run_session(player, profile, realtime, speed)
    typer.echo(f"\n✅ Replay complete. Final phase {snapshot.phase.value}, progress {snapshot.progress}, packs {inventory.packs}.")


@app.command()
def simulate(
    mode: str = typer.Option("shake", help="Mode profile"),
    seconds: float = typer.Option(10.0, help="Length of the synthetic stream"),
    seed: int = typer.Option(42, help="RNG seed"),
    burst_rate: float = typer.Option(1.5, help="Gesture bursts per second"),
    output: Optional[str] = typer.Option(None, "-o", help="Also save the stream as a recording"),
    compact: bool = typer.Option(False, help="Save in compact .npz format"),
    modes_file: Optional[str] = typer.Option(None, "--modes", help="Path to modes YAML"),
    log_level: str = typer.Option("warning", help="Log level"),
):
    """Run a session against a synthetic sensor stream."""
    from gacha_engine.recorder import SensorRecorder, synthesize

    _setup_logging(log_level)
    profile = _load_profile(mode, modes_file)
    player = synthesize(profile, seconds, seed=seed, burst_rate=burst_rate)
    typer.echo(f"🎲 Simulating '{profile.name}' for {seconds:.1f}s ({player.reading_count} readings)")

    if output:
        recorder = SensorRecorder(mode=profile.name)
        recorder.start()
        for reading in player.play():
            recorder.add(reading)
        recorder.stop()
        if compact:
            saved = recorder.save_compact(output)
        else:
            recorder.save(output)
            saved = Path(output)
        typer.echo(f"💾 Saved to: {saved}")

    snapshot, inventory = _run_session(player, profile, realtime=False, speed=1.0)
    typer.echo(f"\n✅ Done. Final phase {snapshot.phase.value}, progress {snapshot.progress}, packs {inventory.packs}.")


def main():
    app()


if __name__ == "__main__":
    main()
