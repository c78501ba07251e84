"""
Route registration for the voice API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Map SessionError / adapter errors to HTTP status codes
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from adapters.charts.astrologer import AstrologerClient, BirthData, ChartAPIError
from adapters.tts.base import SpeechSynthesisError
from adapters.tts.elevenlabs import ElevenLabsSpeaker
from capture.controller import CaptureSessionController
from capture.errors import SessionError
from capture.snapshot import SessionSnapshot
from observability.logger import log_event


SESSION_ERROR_STATUS: dict[str, int] = {
    "authorization_denied": 403,
    "already_active": 409,
    "acquisition_cancelled": 409,
    "route_unavailable": 503,
    "source_unavailable": 503,
    "recognition_failed": 502,
}

SPEECH_ERROR_STATUS: dict[str, int] = {
    "empty_text": 400,
    "missing_api_key": 503,
    "api_error": 502,
    "network_error": 502,
}

CHART_ERROR_STATUS: dict[str, int] = {
    "invalid_birth_data": 422,
    "missing_api_key": 503,
    "http_error": 502,
    "network_error": 502,
    "decoding_error": 502,
}


class SpeechRequest(BaseModel):
    text: str
    long: bool = False
    voice_id: str | None = None


class BirthChartRequest(BaseModel):
    date: datetime
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    timezone: str
    theme: str = "classic"
    city: str = "User Location"
    nation: str = "US"


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Dictation
    # ------------------------------------------------------------------

    @app.post("/dictation/start", response_model=None)
    async def dictation_start() -> dict[str, Any] | JSONResponse: # pyright: ignore[reportUnusedFunction]
        controller: CaptureSessionController = app.state.controller
        try:
            fmt = await controller.start()
        except SessionError as exc:
            return _session_error_response(exc)
        return {
            "session": controller.snapshot.to_dict(),
            "format": fmt.describe(),
        }

    @app.post("/dictation/stop")
    async def dictation_stop() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        controller: CaptureSessionController = app.state.controller
        await controller.stop_and_wait()
        return {
            "session": controller.snapshot.to_dict(),
            "teardown_errors": list(controller.teardown_errors),
        }

    @app.get("/dictation")
    async def dictation_status() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        controller: CaptureSessionController = app.state.controller
        return {"session": controller.snapshot.to_dict()}

    @app.websocket("/dictation/stream")
    async def dictation_stream(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()
        controller: CaptureSessionController = app.state.controller

        outbound: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

        def _on_snapshot(snap: SessionSnapshot) -> None:
            outbound.put_nowait(snap.to_dict())

        async def _forward() -> None:
            while True:
                await ws.send_json(await outbound.get())

        unsubscribe = controller.subscribe(_on_snapshot)
        sender = asyncio.create_task(_forward())
        try:
            # Inbound messages are ignored; receiving surfaces the disconnect
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            pass
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "exception": type(exc).__name__,
                "message": str(exc),
            }, level="ERROR")
        finally:
            unsubscribe()
            sender.cancel()
            (outcome,) = await asyncio.gather(sender, return_exceptions=True)
            if isinstance(outcome, Exception):
                log_event({
                    "event_type": "WS_SEND_FAILED",
                    "exception": type(outcome).__name__,
                    "message": str(outcome),
                }, level="ERROR")

    # ------------------------------------------------------------------
    # Speech output
    # ------------------------------------------------------------------

    @app.post("/speech", response_model=None)
    async def speech(req: SpeechRequest) -> dict[str, Any] | JSONResponse: # pyright: ignore[reportUnusedFunction]
        if not app.state.config.enable_elevenlabs:
            return JSONResponse(
                status_code=404,
                content={"error": "feature_disabled", "message": "speech output is disabled"},
            )

        speaker: ElevenLabsSpeaker = app.state.speaker
        if req.voice_id:
            speaker.set_voice(req.voice_id)
        try:
            if req.long:
                await speaker.speak_long_text(req.text)
            else:
                await speaker.speak(req.text)
        except SpeechSynthesisError as exc:
            return JSONResponse(
                status_code=SPEECH_ERROR_STATUS.get(exc.kind, 502),
                content={"error": exc.kind, "message": exc.detail, "status": exc.status},
            )
        return {"status": "ok", "voice_id": speaker.voice_id}

    # ------------------------------------------------------------------
    # Charts
    # ------------------------------------------------------------------

    @app.post("/charts/birth", response_model=None)
    async def birth_chart(req: BirthChartRequest) -> dict[str, Any] | JSONResponse: # pyright: ignore[reportUnusedFunction]
        charts: AstrologerClient = app.state.charts
        birth = BirthData(
            date=req.date,
            latitude=req.latitude,
            longitude=req.longitude,
            timezone=req.timezone,
        )
        try:
            result = await charts.birth_chart(
                birth,
                theme=req.theme,
                city=req.city,
                nation=req.nation,
            )
        except ChartAPIError as exc:
            return JSONResponse(
                status_code=CHART_ERROR_STATUS.get(exc.kind, 502),
                content={"error": exc.kind, "message": exc.detail, "status": exc.status},
            )
        return result.to_dict()


def _session_error_response(exc: SessionError) -> JSONResponse:
    return JSONResponse(
        status_code=SESSION_ERROR_STATUS.get(exc.code, 500),
        content=exc.to_dict(),
    )
