"""
Route registration for the voice loop control surface.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Translate commands into VoiceAssistant calls
- Stream loop and wake word events to WebSocket subscribers
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json
import time

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from observability.logger import log_event
from orchestrator.events import LoopEvent, event_to_dict
from session.assistant import VoiceAssistant


_EVENT_QUEUE_MAX = 256


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    def _assistant() -> VoiceAssistant:
        return app.state.assistant

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/loop")
    async def loop_state() -> dict[str, object]: # pyright: ignore[reportUnusedFunction]
        return _assistant().snapshot()

    @app.post("/loop/start")
    async def loop_start() -> dict[str, object]: # pyright: ignore[reportUnusedFunction]
        assistant = _assistant()
        assistant.activate_loop()
        return {"command": "start", **assistant.snapshot()}

    @app.post("/loop/stop")
    async def loop_stop() -> dict[str, object]: # pyright: ignore[reportUnusedFunction]
        assistant = _assistant()
        assistant.stop_loop()
        return {"command": "stop", **assistant.snapshot()}

    @app.websocket("/events")
    async def events(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        queue: asyncio.Queue[LoopEvent] = asyncio.Queue(maxsize=_EVENT_QUEUE_MAX)

        def _enqueue(event: LoopEvent) -> None:
            if queue.full():
                # Slow consumer: drop oldest
                queue.get_nowait()
            queue.put_nowait(event)

        async def _pump() -> None:
            while True:
                event = await queue.get()
                await ws.send_text(json.dumps(event_to_dict(event)))

        unsubscribe = _assistant().subscribe(_enqueue)
        pump = asyncio.create_task(_pump())
        try:
            # Clients never send; receiving only detects the disconnect
            while True:
                await ws.receive_text()

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": int(time.time() * 1000),
                "event_type": "events_ws_fatal_error",
                "level": "ERROR",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            pump.cancel()
            unsubscribe()
