"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Build the process capture controller and the outbound API clients ONCE
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.asr.deepgram import DeepgramTranscriptionSink
from adapters.charts.astrologer import AstrologerClient
from adapters.tts.elevenlabs import ElevenLabsSpeaker
from audio.route import AudioRouteNegotiator, SettleDelays
from audio.source import AudioStreamSource
from capture.context import EmitSinkEvent
from capture.controller import CaptureSessionController
from capture.permissions import PermissionBroker
from capture.registry import dispose_controller, install_controller
from config import AppConfig
from observability import logger

from server.routes import register_routes


def create_app(
    config: AppConfig | None = None,
    *,
    controller: CaptureSessionController | None = None,
    speaker: ElevenLabsSpeaker | None = None,
    charts: AstrologerClient | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with injected collaborators
    - Environment-specific setup
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()
    logger.configure(config.log_level)

    controller = controller or build_capture_controller(config)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        install_controller(controller)
        try:
            yield
        finally:
            await dispose_controller()

    app = FastAPI(title="Kairo Voice API", lifespan=lifespan)

    app.state.config = config
    app.state.controller = controller
    app.state.speaker = speaker or ElevenLabsSpeaker(
        api_key=config.elevenlabs_api_key,
        voice_id=config.elevenlabs_voice_id,
        model_id=config.elevenlabs_model_id,
    )
    app.state.charts = charts or AstrologerClient(
        api_key=config.astrologer_api_key,
        api_host=config.astrologer_api_host,
        base_url=config.astrologer_base_url,
    )

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app


def build_capture_controller(config: AppConfig) -> CaptureSessionController:
    """Wire the capture controller to the real device, route and Deepgram."""
    api_key = config.deepgram_api_key or ""

    def sink_factory(emit_event: EmitSinkEvent) -> DeepgramTranscriptionSink:
        return DeepgramTranscriptionSink(
            emit_event=emit_event,
            api_key=api_key,
            model=config.deepgram_model,
            language=config.asr_language,
        )

    return CaptureSessionController(
        negotiator=AudioRouteNegotiator(
            device=config.audio_input_device,
            settle=SettleDelays(post_activate_ms=config.route_settle_ms),
        ),
        source=AudioStreamSource(),
        sink_factory=sink_factory,
        permissions=PermissionBroker(
            recognition_credential=config.deepgram_api_key,
            device=config.audio_input_device,
        ),
    )
