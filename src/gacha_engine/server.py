"""WebSocket server that runs gesture sessions for remote phones.

A phone-side client opens `/ws/session?mode=<name>&audio=<0|1>` and
streams its raw sensor callbacks as JSON. The server runs one
`GestureSession` per connection and pushes gesture events, change-only
state snapshots and physics frames back.

Client → server:
    {"type": "motion", "acceleration": {...}, "rotationRate": {...}}
    {"type": "metering", "metering": -18.5}
    {"type": "animation_done"} | {"type": "collect"} | {"type": "restart"}
    {"type": "ping"}

Server → client:
    {"type": "connected", "mode": ..., "classifiers": [...], "snapshot": {...}}
    {"type": "gesture", "kind": ..., "intensity": ..., "fired_at": ...}
    {"type": "snapshot", "phase": ..., "progress": ..., ...}
    {"type": "body", "x": ..., "y": ..., "rotation": ...}

Usage:
    python -m gacha_engine.server
    # or
    uvicorn gacha_engine.server:app --host 0.0.0.0 --port 8765
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from gacha_engine import __version__
from gacha_engine.classifiers import GestureEvent
from gacha_engine.config import EngineSettings, ModeProfile, load_profiles
from gacha_engine.drivers import ManualAudioDriver, ManualSensorDriver, MemoryInventory
from gacha_engine.metrics import MetricsCollector
from gacha_engine.runner import SessionRunner
from gacha_engine.session import GestureSession, SessionSnapshot

logger = logging.getLogger("gacha_engine.server")

app = FastAPI(title="GachaEngine", version=__version__)


# --- State ---

class ServerState:
    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or EngineSettings()
        self.profiles: dict[str, ModeProfile] = load_profiles(self.settings.modes_file)
        self.sessions: set[GestureSession] = set()
        self.metrics: MetricsCollector = MetricsCollector()
        self.inventory = MemoryInventory()
        self.total_gestures = 0
        self.last_gesture: Optional[dict] = None
        self.started_at = time.time()

state = ServerState()


def configure(settings: EngineSettings):
    """Apply settings and reload mode profiles. Call before serving."""
    state.settings = settings
    state.profiles = load_profiles(settings.modes_file)
    logger.info("Loaded %d modes (default: %s)", len(state.profiles), settings.default_mode)


# --- API endpoints ---

@app.get("/api/status")
async def api_status():
    return {
        "version": __version__,
        "sessions": len(state.sessions),
        "default_mode": state.settings.default_mode,
        "total_gestures": state.total_gestures,
        "last_gesture": state.last_gesture,
        "packs_awarded": state.inventory.packs,
        "uptime": round(time.time() - state.started_at, 1),
    }


@app.get("/api/modes")
async def list_modes():
    return {
        "default": state.settings.default_mode,
        "modes": [
            {"name": p.name, "description": p.description, "classifiers": list(p.classifiers)}
            for p in state.profiles.values()
        ],
    }


# --- Prometheus metrics ---

@app.get("/metrics")
async def metrics():
    state.metrics.set_connections(len(state.sessions))
    return PlainTextResponse(
        state.metrics.render(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


# --- WebSocket: sessions ---

@app.websocket("/ws/session")
async def session_websocket(ws: WebSocket, mode: Optional[str] = None, audio: int = 1):
    await ws.accept()
    mode = mode or state.settings.default_mode
    profile = state.profiles.get(mode)
    if profile is None:
        await ws.send_json({"type": "error", "message": f"Unknown mode '{mode}'"})
        await ws.close(code=4404)
        return

    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue = asyncio.Queue()

    def post(message: dict):
        # Session callbacks may fire on runner threads
        loop.call_soon_threadsafe(outbox.put_nowait, message)

    sensors = ManualSensorDriver()
    microphone = ManualAudioDriver(grant=bool(audio))
    session = GestureSession(
        profile,
        sensor_driver=sensors,
        audio_driver=microphone,
        inventory=state.inventory,
        metrics=state.metrics,
    )
    runner = SessionRunner(session).start()
    state.sessions.add(session)
    logger.info("Session connected (mode=%s, %d total)", mode, len(state.sessions))

    def on_gesture(event: GestureEvent):
        state.total_gestures += 1
        state.last_gesture = event.to_dict()
        post({"type": "gesture", **event.to_dict()})

    def on_snapshot(snap: SessionSnapshot):
        post({"type": "snapshot", **snap.to_dict()})

    sender = asyncio.create_task(_drain(ws, outbox))
    frames = asyncio.create_task(_push_frames(ws, session, state.settings.snapshot_interval))

    try:
        await ws.send_json({
            "type": "connected",
            "mode": profile.name,
            "classifiers": session.bank.enabled_names,
            "snapshot": session.snapshot().to_dict(),
        })
        session.on_gesture(on_gesture)
        session.on_snapshot(on_snapshot)

        while True:
            try:
                msg = await asyncio.wait_for(ws.receive_text(), timeout=30)
            except asyncio.TimeoutError:
                await ws.send_json({"type": "ping"})
                continue

            try:
                data = json.loads(msg)
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "message": "invalid JSON"})
                continue
            if not isinstance(data, dict):
                await ws.send_json({"type": "error", "message": "expected a JSON object"})
                continue

            kind = data.get("type")
            try:
                if kind == "motion":
                    sensors.emit(data)
                elif kind == "metering":
                    microphone.emit(data.get("metering"))
                elif kind == "animation_done":
                    session.animation_finished()
                elif kind == "collect":
                    session.collect()
                elif kind == "restart":
                    session.enter()
                elif kind == "ping":
                    await ws.send_json({"type": "pong", "server_time": time.time()})
                else:
                    await ws.send_json({"type": "error", "message": f"unknown message type {kind!r}"})
            except WebSocketDisconnect:
                raise
            except Exception as e:
                # One bad message must not end the session
                logger.warning("Dropped %r message: %s", kind, e)
                await ws.send_json({"type": "error", "message": f"could not handle {kind!r} message"})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.debug(f"WebSocket error: {e}")
    finally:
        frames.cancel()
        sender.cancel()
        await asyncio.gather(frames, sender, return_exceptions=True)
        # Joining the loop threads blocks, keep it off the event loop
        await asyncio.to_thread(runner.stop)
        state.sessions.discard(session)
        logger.info("Session disconnected (%d total)", len(state.sessions))


async def _drain(ws: WebSocket, outbox: asyncio.Queue):
    while True:
        message = await outbox.get()
        await ws.send_text(json.dumps(message))


async def _push_frames(ws: WebSocket, session: GestureSession, interval: float):
    """Send the physics body whenever it moved since the last frame sent."""
    last: Optional[dict] = None
    while True:
        await asyncio.sleep(interval)
        body = session.integrator.body.to_dict()
        if body != last:
            last = body
            await ws.send_json({"type": "body", **body})


# --- CLI entry point ---

def main():
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="GachaEngine WebSocket Server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8765, help="Port")
    parser.add_argument("--modes", default=None, help="Path to modes YAML")
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args()

    configure(EngineSettings(host=args.host, port=args.port, modes_file=args.modes, log_level=args.log_level))
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
