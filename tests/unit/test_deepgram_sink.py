# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
import urllib.parse
from typing import Any

import pytest

from adapters.asr import deepgram
from adapters.asr.deepgram import DeepgramTranscriptionSink
from audio.formats import ActiveFormat, RouteMode
from capture.events import SinkEvent, TranscriptError, TranscriptFinal, TranscriptPartial


FMT = ActiveFormat(
    mode=RouteMode.FALLBACK,
    sample_rate=48000,
    channels=1,
    device=None,
    blocksize=1024,
    latency="high",
)


class FakeConnection:
    """In-memory stand-in for a websockets ClientConnection."""

    def __init__(self) -> None:
        self.sent: list[Any] = []
        self.closed = False
        self.close_code = 1011
        self.close_reason = ""
        self.inbox: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, data: Any) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self.inbox.put_nowait(None)

    def server_says(self, message: dict[str, Any]) -> None:
        self.inbox.put_nowait(json.dumps(message))

    def server_closes(self) -> None:
        self.inbox.put_nowait(None)

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> str:
        msg = await self.inbox.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


class Harness:
    def __init__(self, monkeypatch: pytest.MonkeyPatch, *, connect_error: Exception | None = None) -> None:
        self.events: list[SinkEvent] = []
        self.connections: list[FakeConnection] = []
        self.connect_calls: list[tuple[str, dict[str, Any]]] = []

        async def fake_connect(url: str, **kwargs: Any) -> FakeConnection:
            self.connect_calls.append((url, kwargs))
            if connect_error is not None:
                raise connect_error
            conn = FakeConnection()
            self.connections.append(conn)
            return conn

        async def emit(event: SinkEvent) -> None:
            self.events.append(event)

        monkeypatch.setattr(deepgram, "ws_connect", fake_connect)
        self.sink = DeepgramTranscriptionSink(
            emit_event=emit,
            api_key="dg-key",
            model="nova-2",
            language="en-US",
        )

    @property
    def conn(self) -> FakeConnection:
        return self.connections[-1]


def _results(text: str, *, is_final: bool) -> dict[str, Any]:
    return {
        "type": "Results",
        "is_final": is_final,
        "channel": {"alternatives": [{"transcript": text, "confidence": 0.9}]},
    }


async def drain(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _ignore(_: SinkEvent) -> None:
    return None


def test_url_carries_activated_format_and_options():
    sink = DeepgramTranscriptionSink(
        emit_event=_ignore,
        api_key="dg-key",
        model="nova-2",
        language="en-US",
    )

    url = sink.build_url(FMT)
    base, _, query = url.partition("?")
    params = dict(urllib.parse.parse_qsl(query))

    assert base == "wss://api.deepgram.com/v1/listen"
    assert params["encoding"] == "linear16"
    assert params["sample_rate"] == "48000"
    assert params["channels"] == "1"
    assert params["interim_results"] == "true"
    assert params["language"] == "en-US"
    assert params["model"] == "nova-2"


def test_results_map_to_partial_and_final(monkeypatch: pytest.MonkeyPatch):
    h = Harness(monkeypatch)

    async def scenario() -> None:
        await h.sink.start_stream(1, FMT)
        h.conn.server_says({"type": "Metadata", "request_id": "r1"})
        h.conn.server_says(_results("hel", is_final=False))
        h.conn.server_says(_results("   ", is_final=False))
        h.conn.server_says(_results(" hello world ", is_final=True))
        await drain()
        await h.sink.cancel(1)

    asyncio.run(scenario())

    assert [(type(e), getattr(e, "text", None)) for e in h.events] == [
        (TranscriptPartial, "hel"),
        (TranscriptFinal, "hello world"),
    ]
    assert all(e.session_id == 1 for e in h.events)
    _, kwargs = h.connect_calls[0]
    assert kwargs["additional_headers"] == {"Authorization": "Token dg-key"}


def test_buffers_are_sent_for_current_session_only(monkeypatch: pytest.MonkeyPatch):
    h = Harness(monkeypatch)

    async def scenario() -> None:
        await h.sink.start_stream(3, FMT)
        await h.sink.push_buffer(3, 1, b"\x01\x02")
        await h.sink.push_buffer(2, 1, b"\xff\xff")
        await h.sink.cancel(3)

    asyncio.run(scenario())

    assert h.conn.sent[0] == b"\x01\x02"
    assert json.loads(h.conn.sent[-1]) == {"type": "CloseStream"}
    assert len(h.conn.sent) == 2
    assert h.conn.closed


def test_cancel_stops_emitting(monkeypatch: pytest.MonkeyPatch):
    h = Harness(monkeypatch)

    async def scenario() -> None:
        await h.sink.start_stream(1, FMT)
        await h.sink.cancel(1)
        await h.sink.handle_message(1, _results("late", is_final=True))
        await drain()

    asyncio.run(scenario())

    assert not h.events


def test_unexpected_server_close_is_reported_once(monkeypatch: pytest.MonkeyPatch):
    h = Harness(monkeypatch)

    async def scenario() -> None:
        await h.sink.start_stream(1, FMT)
        h.conn.server_closes()
        await drain()
        await h.sink.handle_message(1, {"type": "Error", "err_code": "X", "err_msg": "again"})

    asyncio.run(scenario())

    assert len(h.events) == 1
    err = h.events[0]
    assert isinstance(err, TranscriptError)
    assert err.cause == "deepgram_closed: 1011"


def test_provider_error_message_becomes_sink_error(monkeypatch: pytest.MonkeyPatch):
    h = Harness(monkeypatch)

    async def scenario() -> None:
        await h.sink.start_stream(1, FMT)
        h.conn.server_says({"type": "Error", "err_code": "INVALID_AUTH", "err_msg": "bad key"})
        await drain()
        await h.sink.cancel(1)

    asyncio.run(scenario())

    assert len(h.events) == 1
    assert isinstance(h.events[0], TranscriptError)
    assert "INVALID_AUTH" in h.events[0].cause


def test_connect_failure_emits_error(monkeypatch: pytest.MonkeyPatch):
    h = Harness(monkeypatch, connect_error=OSError("connection refused"))

    async def scenario() -> None:
        await h.sink.start_stream(1, FMT)
        await h.sink.push_buffer(1, 1, b"\x00\x00")

    asyncio.run(scenario())

    assert len(h.events) == 1
    assert isinstance(h.events[0], TranscriptError)
    assert h.events[0].cause.startswith("deepgram_connect_failed")


def test_sink_serves_a_single_session(monkeypatch: pytest.MonkeyPatch):
    h = Harness(monkeypatch)

    async def scenario() -> None:
        await h.sink.start_stream(1, FMT)
        with pytest.raises(RuntimeError):
            await h.sink.start_stream(2, FMT)
        await h.sink.cancel(1)

    asyncio.run(scenario())
