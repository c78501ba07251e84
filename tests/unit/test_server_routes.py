# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import dataclasses
import json
from typing import Any, Callable

import pytest

try:
    import sounddevice  # pylint: disable=unused-import
except OSError:
    pytest.skip("PortAudio library not available", allow_module_level=True)

from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from adapters.charts.astrologer import ChartAPIError, ChartResult
from adapters.tts.base import SpeechSynthesisError
from audio.formats import ActiveFormat, RouteMode
from capture.enums.state import SessionState
from capture.errors import AlreadyActive, SessionError
from capture.snapshot import SessionSnapshot
from config import AppConfig
from observability import logger
from server.app import create_app


FMT = ActiveFormat(
    mode=RouteMode.PRIMARY,
    sample_rate=16000,
    channels=1,
    device=None,
    blocksize=1024,
    latency="low",
)


class FakeController:
    def __init__(self, *, start_error: SessionError | None = None) -> None:
        self.start_error = start_error
        self.snapshot = SessionSnapshot()
        self.teardown_errors: tuple[str, ...] = ()
        self.stops = 0
        self.unsubscribes = 0

    async def start(self) -> ActiveFormat:
        if self.start_error is not None:
            raise self.start_error
        self.snapshot = dataclasses.replace(
            self.snapshot,
            state=SessionState.STREAMING,
            is_recording=True,
            route_mode=FMT.mode,
            session_id=self.snapshot.session_id + 1,
        )
        return FMT

    async def stop_and_wait(self) -> None:
        self.stops += 1
        self.snapshot = dataclasses.replace(
            self.snapshot, state=SessionState.IDLE, is_recording=False, route_mode=None,
        )

    def subscribe(self, observer: Callable[[SessionSnapshot], None]) -> Callable[[], None]:
        observer(self.snapshot)

        def _unsubscribe() -> None:
            self.unsubscribes += 1

        return _unsubscribe


class FakeSpeaker:
    def __init__(self, *, error: SpeechSynthesisError | None = None) -> None:
        self.error = error
        self.spoken: list[tuple[str, bool]] = []
        self.voice_id = "21m00Tcm4TlvDq8ikWAM"

    def set_voice(self, voice_id: str) -> None:
        self.voice_id = voice_id

    async def speak(self, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.spoken.append((text, False))

    async def speak_long_text(self, text: str) -> None:
        self.spoken.append((text, True))


class FakeCharts:
    def __init__(self, *, error: ChartAPIError | None = None) -> None:
        self.error = error
        self.requests: list[Any] = []

    async def birth_chart(self, birth: Any, **kwargs: Any) -> ChartResult:
        self.requests.append((birth, kwargs))
        if self.error is not None:
            raise self.error
        return ChartResult(chart="<svg/>", status="OK")


def _config(**overrides: Any) -> AppConfig:
    values: dict[str, Any] = {
        "env": "test",
        "log_level": "ERROR",
        "audio_input_device": None,
        "route_settle_ms": 0,
        "deepgram_api_key": None,
        "deepgram_model": "nova-2",
        "asr_language": "en-US",
        "enable_elevenlabs": True,
        "elevenlabs_api_key": None,
        "elevenlabs_voice_id": "21m00Tcm4TlvDq8ikWAM",
        "elevenlabs_model_id": "eleven_monolingual_v1",
        "astrologer_api_key": None,
        "astrologer_api_host": "astrologer.p.rapidapi.com",
        "astrologer_base_url": "https://astrologer.p.rapidapi.com/api/v4",
    }
    values.update(overrides)
    return AppConfig(**values)


def _client(
    *,
    controller: FakeController | None = None,
    speaker: FakeSpeaker | None = None,
    charts: FakeCharts | None = None,
    **config: Any,
) -> TestClient:
    app = create_app(
        _config(**config),
        controller=controller or FakeController(),  # type: ignore[arg-type]
        speaker=speaker or FakeSpeaker(),  # type: ignore[arg-type]
        charts=charts or FakeCharts(),  # type: ignore[arg-type]
    )
    return TestClient(app)


def test_health():
    with _client() as client:
        assert client.get("/health").json() == {"status": "ok"}


def test_dictation_start_reports_session_and_format():
    with _client() as client:
        resp = client.post("/dictation/start")

    assert resp.status_code == 200
    body = resp.json()
    assert body["session"]["state"] == "STREAMING"
    assert body["session"]["route_mode"] == "PRIMARY"
    assert body["format"]["sample_rate"] == 16000


def test_dictation_start_maps_session_errors():
    controller = FakeController(start_error=AlreadyActive("STREAMING"))

    with _client(controller=controller) as client:
        resp = client.post("/dictation/start")

    assert resp.status_code == 409
    assert resp.json()["error"] == "already_active"


def test_dictation_stop_and_status():
    controller = FakeController()

    with _client(controller=controller) as client:
        client.post("/dictation/start")
        stopped = client.post("/dictation/stop").json()
        status = client.get("/dictation").json()

    assert stopped["session"]["state"] == "IDLE"
    assert stopped["teardown_errors"] == []
    assert status["session"]["is_recording"] is False


def test_shutdown_disposes_the_session():
    controller = FakeController()

    with _client(controller=controller) as client:
        client.post("/dictation/start")

    assert controller.stops == 1


def test_stream_sends_current_snapshot_on_connect():
    with _client() as client:
        with client.websocket_connect("/dictation/stream") as ws:
            snap = ws.receive_json()

    assert snap["state"] == "IDLE"
    assert snap["session_id"] == 0


def test_speech_uses_requested_voice():
    speaker = FakeSpeaker()

    with _client(speaker=speaker) as client:
        resp = client.post("/speech", json={"text": "Hello.", "voice_id": "ErXwobaYiN019PkySvjV"})

    assert resp.status_code == 200
    assert resp.json()["voice_id"] == "ErXwobaYiN019PkySvjV"
    assert speaker.spoken == [("Hello.", False)]


def test_speech_errors_map_to_status():
    speaker = FakeSpeaker(error=SpeechSynthesisError("empty_text", "nothing to synthesize"))

    with _client(speaker=speaker) as client:
        resp = client.post("/speech", json={"text": " "})

    assert resp.status_code == 400
    assert resp.json()["error"] == "empty_text"


def test_speech_disabled_by_config():
    with _client(enable_elevenlabs=False) as client:
        resp = client.post("/speech", json={"text": "Hello."})

    assert resp.status_code == 404
    assert resp.json()["error"] == "feature_disabled"


def test_birth_chart_passes_request_through():
    charts = FakeCharts()
    payload = {
        "date": "1990-05-17T14:30:00",
        "latitude": 40.7128,
        "longitude": -74.006,
        "timezone": "America/New_York",
    }

    with _client(charts=charts) as client:
        resp = client.post("/charts/birth", json=payload)

    assert resp.status_code == 200
    assert resp.json()["chart"] == "<svg/>"
    birth, kwargs = charts.requests[0]
    assert birth.timezone == "America/New_York"
    assert kwargs["theme"] == "classic"


def test_birth_chart_validation_and_provider_errors():
    charts = FakeCharts(error=ChartAPIError("http_error", "quota", status=429))
    good = {
        "date": "1990-05-17T14:30:00",
        "latitude": 40.7128,
        "longitude": -74.006,
        "timezone": "America/New_York",
    }

    with _client(charts=charts) as client:
        bad = client.post("/charts/birth", json={**good, "latitude": 120})
        failed = client.post("/charts/birth", json=good)

    assert bad.status_code == 422
    assert failed.status_code == 502
    assert failed.json() == {"error": "http_error", "message": "quota", "status": 429}


class BrokenWebSocket:
    """Accepts, fails every send, then reports the peer gone."""

    def __init__(self) -> None:
        self.send_attempted = asyncio.Event()

    async def accept(self) -> None:
        return None

    async def send_json(self, data: Any) -> None:  # pylint: disable=unused-argument
        self.send_attempted.set()
        raise RuntimeError("connection reset by peer")

    async def receive_text(self) -> str:
        await self.send_attempted.wait()
        raise WebSocketDisconnect(code=1006)


def test_stream_send_failure_is_logged_and_subscription_released(monkeypatch: pytest.MonkeyPatch):
    lines: list[str] = []
    controller = FakeController()
    app = create_app(
        _config(),
        controller=controller,  # type: ignore[arg-type]
        speaker=FakeSpeaker(),  # type: ignore[arg-type]
        charts=FakeCharts(),  # type: ignore[arg-type]
    )
    monkeypatch.setattr(logger, "_print", lines.append)
    endpoint = next(
        route.endpoint for route in app.routes
        if getattr(route, "path", None) == "/dictation/stream"
    )

    asyncio.run(endpoint(BrokenWebSocket()))

    events = [json.loads(line) for line in lines]
    failures = [e for e in events if e["event_type"] == "WS_SEND_FAILED"]
    assert len(failures) == 1
    assert failures[0]["exception"] == "RuntimeError"
    assert controller.unsubscribes == 1
