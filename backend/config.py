"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No behavioral constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    ASTROLOGER_DEFAULT_BASE_URL,
    ASTROLOGER_DEFAULT_HOST,
    DEEPGRAM_DEFAULT_MODEL,
    ELEVENLABS_DEFAULT_MODEL_ID,
    ELEVENLABS_DEFAULT_VOICE_ID,
    ROUTE_POST_ACTIVATE_SETTLE_MS,
)


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default) == "1"


def _env_device(name: str) -> int | str | None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    # PortAudio accepts either a device index or a name substring
    return int(raw) if raw.isdigit() else raw


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the controller factory and the HTTP surface.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Capture / route
    # ------------------------------------------------------------------

    audio_input_device: int | str | None
    route_settle_ms: int

    # ------------------------------------------------------------------
    # ASR
    # ------------------------------------------------------------------

    deepgram_api_key: str | None
    deepgram_model: str
    asr_language: str

    # ------------------------------------------------------------------
    # TTS
    # ------------------------------------------------------------------

    enable_elevenlabs: bool
    elevenlabs_api_key: str | None
    elevenlabs_voice_id: str
    elevenlabs_model_id: str

    # ------------------------------------------------------------------
    # Charts
    # ------------------------------------------------------------------

    astrologer_api_key: str | None
    astrologer_api_host: str
    astrologer_base_url: str

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Missing credentials are left as None; the component that needs them
        reports the absence when it is used.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            audio_input_device=_env_device("AUDIO_INPUT_DEVICE"),
            route_settle_ms=int(
                os.environ.get("ROUTE_SETTLE_MS", str(ROUTE_POST_ACTIVATE_SETTLE_MS))
            ),

            deepgram_api_key=os.environ.get("DEEPGRAM_API_KEY"),
            deepgram_model=os.environ.get("DEEPGRAM_MODEL", DEEPGRAM_DEFAULT_MODEL),
            asr_language=os.environ.get("ASR_LANGUAGE", "en-US"),

            enable_elevenlabs=_env_flag("ENABLE_ELEVENLABS", "0"),
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY"),
            elevenlabs_voice_id=os.environ.get(
                "ELEVENLABS_VOICE_ID", ELEVENLABS_DEFAULT_VOICE_ID
            ),
            elevenlabs_model_id=os.environ.get(
                "ELEVENLABS_MODEL_ID", ELEVENLABS_DEFAULT_MODEL_ID
            ),

            astrologer_api_key=os.environ.get("ASTROLOGER_API_KEY"),
            astrologer_api_host=os.environ.get(
                "ASTROLOGER_API_HOST", ASTROLOGER_DEFAULT_HOST
            ),
            astrologer_base_url=os.environ.get(
                "ASTROLOGER_BASE_URL", ASTROLOGER_DEFAULT_BASE_URL
            ),
        )
