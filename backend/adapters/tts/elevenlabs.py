"""
ElevenLabs speech output.

Role in the system:
- Synthesizes text via the ElevenLabs streaming TTS API as PCM16 16kHz mono.
- Plays it on the default output device.
- Claims the shared audio route for the duration of playback. Playback
  preempts an active capture session; a capture Fallback activation
  preempts playback in turn.

Architectural constraints:
- One utterance plays at a time; speak() waits for the previous one.
- No retries.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import httpx
import sounddevice as sd
from elevenlabs import VoiceSettings
from elevenlabs.client import AsyncElevenLabs
from elevenlabs.core.api_error import ApiError

from adapters.tts.base import SpeechSynthesisError, SpeechSynthesizer
from audio.arbiter import RouteArbiter, get_arbiter
from audio.pcm import pcm16le_to_float32
from constants import (
    ELEVENLABS_DEFAULT_MODEL_ID,
    ELEVENLABS_DEFAULT_VOICE_ID,
    ELEVENLABS_VOICE_SETTINGS,
    TTS_MAX_CHUNK_CHARS,
    TTS_OUTPUT_FORMAT,
    TTS_SAMPLE_RATE_HZ,
    TTS_SENTENCE_SEPARATOR,
)
from observability.logger import log_event
from observability.metrics import timed


PLAYBACK_ROUTE_OWNER = "playback"


@dataclass(frozen=True)
class Voice:
    id: str
    name: str
    description: str


AVAILABLE_VOICES: tuple[Voice, ...] = (
    Voice("21m00Tcm4TlvDq8ikWAM", "Rachel", "Calm, warm female voice"),
    Voice("AZnzlk1XvdvUeBnXmlld", "Domi", "Confident, clear female voice"),
    Voice("EXAVITQu4vr4xnSDxMaL", "Bella", "Gentle, soothing female voice"),
    Voice("ErXwobaYiN019PkySvjV", "Antoni", "Deep, wise male voice"),
    Voice("VR6AewLTigWG4xSOukaG", "Arnold", "Authoritative male voice"),
)


def split_text_into_chunks(
    text: str,
    max_length: int = TTS_MAX_CHUNK_CHARS,
    separator: str = TTS_SENTENCE_SEPARATOR,
) -> list[str]:
    """
    Split text on sentence boundaries into chunks of about max_length.

    Sentences are never cut; a single sentence longer than max_length
    becomes its own chunk. Every chunk but the last regains the period
    the split removed.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    current = ""

    for sentence in text.split(separator):
        if current and len(current) + len(sentence) > max_length:
            chunks.append(current + ".")
            current = sentence
        else:
            if current:
                current += separator
            current += sentence

    if current:
        chunks.append(current)

    return chunks or [text]


class ElevenLabsSpeaker(SpeechSynthesizer):
    """
    ElevenLabs synthesis + local playback.

    is_synthesizing / is_playing mirror the current utterance for the
    HTTP surface.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        voice_id: str = ELEVENLABS_DEFAULT_VOICE_ID,
        model_id: str = ELEVENLABS_DEFAULT_MODEL_ID,
        arbiter: RouteArbiter | None = None,
        client: AsyncElevenLabs | None = None,
    ) -> None:
        self._api_key = api_key or ""
        self._voice_id = voice_id
        self._model_id = model_id
        self._arbiter = arbiter or get_arbiter()
        self._client = client or (AsyncElevenLabs(api_key=api_key) if api_key else None)

        self._speak_lock = asyncio.Lock()
        self.is_synthesizing = False
        self.is_playing = False

    # ------------------------------------------------------------------
    # Voices
    # ------------------------------------------------------------------

    @property
    def voice_id(self) -> str:
        return self._voice_id

    def set_voice(self, voice_id: str) -> None:
        self._voice_id = voice_id

    @staticmethod
    def available_voices() -> tuple[Voice, ...]:
        return AVAILABLE_VOICES

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    async def synthesize(self, text: str) -> bytes:
        self._validate(text)
        assert self._client is not None

        stability, similarity_boost, style, use_speaker_boost = ELEVENLABS_VOICE_SETTINGS
        pcm = bytearray()

        with timed("tts_synthesis_ms") as scope:
            scope.details["chars"] = len(text)
            try:
                async for chunk in self._client.text_to_speech.stream(
                    voice_id=self._voice_id,
                    model_id=self._model_id,
                    text=text,
                    output_format=TTS_OUTPUT_FORMAT,
                    voice_settings=VoiceSettings(
                        stability=stability,
                        similarity_boost=similarity_boost,
                        style=style,
                        use_speaker_boost=use_speaker_boost,
                    ),
                ):
                    if chunk:
                        pcm.extend(chunk)
            except ApiError as exc:
                raise SpeechSynthesisError(
                    "api_error",
                    _api_error_detail(exc.body),
                    status=exc.status_code,
                ) from exc
            except httpx.HTTPError as exc:
                raise SpeechSynthesisError("network_error", repr(exc)) from exc
            scope.details["bytes"] = len(pcm)

        return bytes(pcm)

    def _validate(self, text: str) -> None:
        if not self._api_key or self._client is None:
            raise SpeechSynthesisError("missing_api_key", "ELEVENLABS_API_KEY is not set")
        if not text.strip():
            raise SpeechSynthesisError("empty_text", "nothing to synthesize")

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    async def speak(self, text: str) -> None:
        """Synthesize text and play it to completion."""
        self._validate(text)
        async with self._speak_lock:
            self.is_synthesizing = True
            try:
                pcm = await self.synthesize(text)
            finally:
                self.is_synthesizing = False
            await self._play(pcm)

    async def speak_long_text(self, text: str) -> None:
        """Speak text chunk by chunk, each chunk finishing before the next."""
        self._validate(text)
        for chunk in split_text_into_chunks(text):
            await self.speak(chunk)

    def stop_playback(self) -> None:
        """Stop the current utterance. Safe when nothing is playing."""
        if self.is_playing:
            sd.stop()
        self.is_playing = False

    async def _play(self, pcm: bytes) -> None:
        samples = pcm16le_to_float32(pcm)
        if samples.size == 0:
            return

        # Interrupts an active capture session
        self._arbiter.claim(
            PLAYBACK_ROUTE_OWNER,
            on_preempt=self._on_preempted,
            preempt=True,
        )
        started = time.monotonic_ns()
        try:
            self.is_playing = True
            sd.play(samples, samplerate=TTS_SAMPLE_RATE_HZ)
            await asyncio.to_thread(sd.wait)
        finally:
            self.is_playing = False
            self._arbiter.release(PLAYBACK_ROUTE_OWNER)
            log_event({
                "event_type": "TTS_PLAYBACK_DONE",
                "samples": int(samples.size),
                "elapsed_ms": (time.monotonic_ns() - started) // 1_000_000,
            })

    def _on_preempted(self, new_owner: str) -> None:
        log_event({
            "event_type": "TTS_PLAYBACK_PREEMPTED",
            "new_owner": new_owner,
        }, level="WARNING")
        self.stop_playback()


def _api_error_detail(body: object) -> str:
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, str):
            return detail
        if isinstance(detail, dict) and isinstance(detail.get("message"), str):
            return detail["message"]
    return "Unknown error"
