"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for behavioral constants of the capture session.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Capture format
# =============================================================================

# Primary route asks for recognition-native audio; fallback takes whatever
# the device reports as its default rate.
PRIMARY_SAMPLE_RATE_HZ: Final[int] = 16_000
PRIMARY_CHANNELS: Final[int] = 1
FALLBACK_CHANNELS: Final[int] = 1

CAPTURE_DTYPE: Final[str] = "float32"
PCM_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)

# Fixed hardware block size (frames per callback)
CAPTURE_BLOCKSIZE_FRAMES: Final[int] = 1024

PRIMARY_LATENCY: Final[str] = "low"
FALLBACK_LATENCY: Final[str] = "high"

# =============================================================================
# Route activation timing
# =============================================================================

# Brief waits that let the host audio stack settle between route steps.
ROUTE_DEACTIVATE_SETTLE_MS: Final[int] = 100
ROUTE_PRE_ACTIVATE_SETTLE_MS: Final[int] = 100
ROUTE_POST_ACTIVATE_SETTLE_MS: Final[int] = 200
ROUTE_FALLBACK_SETTLE_MS: Final[int] = 100

# =============================================================================
# Microphone permission check
# =============================================================================

MIC_CHECK_SAMPLE_RATE_HZ: Final[int] = 16_000
MIC_CHECK_BLOCKSIZE_FRAMES: Final[int] = 512

# =============================================================================
# Buffer hand-off (PortAudio thread -> event loop -> sink)
# =============================================================================

# Bound in buffers; exceeding it is host back-pressure, never silently absorbed
CAPTURE_BUFFER_QUEUE_MAX: Final[int] = 256

# =============================================================================
# Transcription sink
# =============================================================================

DEEPGRAM_LISTEN_URL: Final[str] = "wss://api.deepgram.com/v1/listen"
DEEPGRAM_DEFAULT_MODEL: Final[str] = "nova-2"
DEEPGRAM_ENDPOINTING_MS: Final[int] = 500
DEEPGRAM_MAX_MESSAGE_BYTES: Final[int] = 2**22

# =============================================================================
# Text-to-speech
# =============================================================================

TTS_OUTPUT_FORMAT: Final[str] = "pcm_16000"
TTS_SAMPLE_RATE_HZ: Final[int] = 16_000
TTS_MAX_CHUNK_CHARS: Final[int] = 500
TTS_SENTENCE_SEPARATOR: Final[str] = ". "

ELEVENLABS_DEFAULT_VOICE_ID: Final[str] = "21m00Tcm4TlvDq8ikWAM"
ELEVENLABS_DEFAULT_MODEL_ID: Final[str] = "eleven_monolingual_v1"

# (stability, similarity_boost, style, use_speaker_boost)
ELEVENLABS_VOICE_SETTINGS: Final[Tuple[float, float, float, bool]] = (
    0.5, 0.5, 0.3, True,
)

# =============================================================================
# Chart API
# =============================================================================

ASTROLOGER_DEFAULT_BASE_URL: Final[str] = "https://astrologer.p.rapidapi.com/api/v4"
ASTROLOGER_DEFAULT_HOST: Final[str] = "astrologer.p.rapidapi.com"
CHART_REQUEST_TIMEOUT_S: Final[float] = 30.0

# Accepted birth date window relative to "now"
BIRTH_DATE_MAX_YEARS_PAST: Final[int] = 100
BIRTH_DATE_MAX_YEARS_FUTURE: Final[int] = 10
