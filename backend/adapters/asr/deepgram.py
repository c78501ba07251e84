"""
Deepgram live transcription sink.

Core model:
- The Deepgram WebSocket connection is SESSION-scoped: opened by
  start_stream(), closed by cancel(). A new session gets a new sink.
- Audio is linear16 at the ACTIVATED format (rate/channels), never assumed.
- Interim results are enabled; `Results` messages map to partial/final.

Event behavior:
- is_final=False with text      => TranscriptPartial
- is_final=True with text       => TranscriptFinal (session continues)
- Empty transcripts             => dropped
- Connect/send/recv failure or
  an unexpected server close    => TranscriptError (at most once)

Design constraints:
- Sink must not touch session state.
- Sink must not know about the HTTP surface.
"""

from __future__ import annotations

import asyncio
import json
import time
import urllib.parse
from typing import Any

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import WebSocketException

from adapters.asr.base import TranscriptionSink
from audio.formats import ActiveFormat
from capture.context import EmitSinkEvent
from capture.events import (
    SinkEvent,
    SinkEventType,
    TranscriptError,
    TranscriptFinal,
    TranscriptPartial,
)
from constants import (
    DEEPGRAM_ENDPOINTING_MS,
    DEEPGRAM_LISTEN_URL,
    DEEPGRAM_MAX_MESSAGE_BYTES,
)
from observability.logger import log_event


def _now_ms() -> int:
    return int(time.time() * 1000)


class DeepgramTranscriptionSink(TranscriptionSink):
    """
    Deepgram Live (v1 listen) sink.

    Public interface:
    - start_stream(session_id, fmt): connect and start the receiver loop
    - push_buffer(session_id, sequence_num, pcm_bytes): forward audio
    - cancel(session_id): flush, close, stop emitting
    """

    def __init__(
        self,
        *,
        emit_event: EmitSinkEvent,
        api_key: str,
        model: str,
        language: str | None = None,
        punctuate: bool = True,
        smart_format: bool = True,
        endpointing_ms: int = DEEPGRAM_ENDPOINTING_MS,
        url: str = DEEPGRAM_LISTEN_URL,
    ) -> None:
        self._emit_async = emit_event
        self._api_key = api_key
        self._model = model
        self._language = language
        self._punctuate = punctuate
        self._smart_format = smart_format
        self._endpointing_ms = endpointing_ms
        self._url = url

        self._ws: ClientConnection | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._session_id: int | None = None
        self._error_emitted: bool = False

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def start_stream(self, session_id: int, fmt: ActiveFormat) -> None:
        if self._session_id is not None:
            raise RuntimeError(
                f"sink already serving session {self._session_id}; create a new sink"
            )
        self._session_id = session_id

        url = self.build_url(fmt)
        headers = {"Authorization": f"Token {self._api_key}"}

        try:
            ws = await ws_connect(
                url,
                additional_headers=headers,
                max_size=DEEPGRAM_MAX_MESSAGE_BYTES,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            await self._emit_error(session_id, f"deepgram_connect_failed: {e!r}")
            return

        if self._session_id != session_id:
            # Cancelled while connecting
            await ws.close()
            return

        self._ws = ws
        self._recv_task = asyncio.create_task(self._recv_loop(session_id, ws))

        log_event({
            "event_type": "ASR_STREAM_OPENED",
            "session_id": session_id,
            "model": self._model,
            "sample_rate": fmt.sample_rate,
        })

    async def push_buffer(
            self,
            session_id: int,
            sequence_num: int,  # pylint: disable=unused-argument
            pcm_bytes: bytes) -> None:
        if session_id != self._session_id:
            return

        ws = self._ws
        if ws is None:
            # Connection failed or dropped; the error was already emitted
            return

        try:
            await ws.send(pcm_bytes)
        except (OSError, WebSocketException) as e:
            await self._drop_connection()
            await self._emit_error(session_id, f"deepgram_send_failed: {e!r}")

    async def cancel(self, session_id: int) -> None:
        if session_id != self._session_id:
            return

        # Stop emitting before the socket goes away
        self._session_id = None

        ws = self._ws
        if ws is not None:
            try:
                await ws.send(json.dumps({"type": "CloseStream"}))
            except (OSError, WebSocketException):
                pass
        await self._drop_connection()

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    def build_url(self, fmt: ActiveFormat) -> str:
        params: dict[str, str] = {
            "model": self._model,
            "encoding": "linear16",
            # Source always downmixes to mono
            "sample_rate": str(fmt.sample_rate),
            "channels": "1",
            "interim_results": "true",
            "punctuate": str(self._punctuate).lower(),
            "smart_format": str(self._smart_format).lower(),
            "endpointing": str(int(self._endpointing_ms)),
        }
        if self._language:
            params["language"] = self._language

        qs = urllib.parse.urlencode(params)
        return f"{self._url}?{qs}"

    async def _drop_connection(self) -> None:
        ws = self._ws
        self._ws = None

        task = self._recv_task
        self._recv_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                log_event({
                    "event_type": "ASR_CLOSE_FAILED",
                    "message": repr(e),
                }, level="WARNING")

    # -------------------------------------------------------------------------
    # Background loop
    # -------------------------------------------------------------------------

    async def _recv_loop(self, session_id: int, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                try:
                    data = json.loads(raw)
                except (TypeError, ValueError):
                    log_event({
                        "event_type": "ASR_BAD_MESSAGE",
                        "session_id": session_id,
                    }, level="WARNING")
                    continue

                await self.handle_message(session_id, data)
        except asyncio.CancelledError:
            return
        except WebSocketException as e:
            await self._emit_error(session_id, f"deepgram_recv_failed: {e!r}")
            return

        # Server closed the stream while the session was still live
        if self._session_id == session_id:
            await self._emit_error(
                session_id,
                f"deepgram_closed: {ws.close_code} {ws.close_reason or ''}".strip(),
            )

    async def handle_message(self, session_id: int, data: dict[str, Any]) -> None:
        """Map one decoded Deepgram message to sink events."""
        msg_type = data.get("type")

        if msg_type == "Error":
            await self._emit_error(
                session_id,
                f"deepgram_error: {data.get('err_code') or data.get('code')} "
                f"{data.get('err_msg') or data.get('description')}",
            )
            return

        if msg_type != "Results":
            # Metadata, SpeechStarted, UtteranceEnd
            return

        transcript = _first_transcript(data)
        if not transcript:
            return

        if data.get("is_final"):
            await self._emit(
                TranscriptFinal(
                    event_type=SinkEventType.TRANSCRIPT_FINAL,
                    ts_ms=_now_ms(),
                    session_id=session_id,
                    text=transcript,
                )
            )
        else:
            await self._emit(
                TranscriptPartial(
                    event_type=SinkEventType.TRANSCRIPT_PARTIAL,
                    ts_ms=_now_ms(),
                    session_id=session_id,
                    text=transcript,
                )
            )

    # -------------------------------------------------------------------------
    # Emission
    # -------------------------------------------------------------------------

    async def _emit(self, event: SinkEvent) -> None:
        if event.session_id != self._session_id:
            return
        await self._emit_async(event)

    async def _emit_error(self, session_id: int, cause: str) -> None:
        if self._error_emitted:
            return
        self._error_emitted = True
        log_event({
            "event_type": "ASR_ERROR",
            "session_id": session_id,
            "cause": cause,
        }, level="ERROR")
        await self._emit(
            TranscriptError(
                event_type=SinkEventType.TRANSCRIPT_ERROR,
                ts_ms=_now_ms(),
                session_id=session_id,
                cause=cause,
            )
        )


def _first_transcript(data: dict[str, Any]) -> str:
    channel = data.get("channel")
    if not isinstance(channel, dict):
        return ""
    alternatives = channel.get("alternatives")
    if not isinstance(alternatives, list) or not alternatives:
        return ""
    first = alternatives[0]
    raw = first.get("transcript") if isinstance(first, dict) else None
    return raw.strip() if isinstance(raw, str) else ""
