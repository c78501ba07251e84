# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pytest

from adapters.charts.astrologer import (
    AstrologerClient,
    BirthData,
    ChartAPIError,
    build_subject,
    parse_chart_response,
    validate_birth_data,
)


BIRTH = BirthData(
    date=datetime(1990, 5, 17, 14, 30),
    latitude=40.7128,
    longitude=-74.006,
    timezone="America/New_York",
)

CHART_PAYLOAD: dict[str, Any] = {
    "status": "OK",
    "chart": "<svg></svg>",
    "data": {
        "sun": {"abs_pos": 56.2, "sign": "Tau", "house": "Ninth_House", "retrograde": False},
        "moon": {"abs_pos": 301.0, "sign": "Aqu", "house": "Fifth_House", "retrograde": False},
        "ascendant": {"abs_pos": 160.4, "sign": "Vir"},
    },
    "aspects": [
        {"p1_name": "Sun", "p2_name": "Moon", "aspect": "square", "orbit": 4.8},
    ],
}


def _client(handler: Callable[[httpx.Request], httpx.Response], api_key: str | None = "rk") -> AstrologerClient:
    return AstrologerClient(api_key=api_key, transport=httpx.MockTransport(handler))


def test_birth_chart_posts_subject_in_local_time():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=CHART_PAYLOAD)

    result = asyncio.run(_client(handler).birth_chart(BIRTH))

    request = seen[0]
    assert request.url.path.endswith("/birth-chart")
    assert request.headers["X-RapidAPI-Key"] == "rk"
    assert request.headers["X-RapidAPI-Host"] == "astrologer.p.rapidapi.com"
    subject = json.loads(request.content)["subject"]
    assert (subject["year"], subject["hour"], subject["minute"]) == (1990, 14, 30)
    assert subject["timezone"] == "America/New_York"

    assert result.chart == "<svg></svg>"
    assert result.planets["sun"].sign == "Tau"
    assert result.houses["ascendant"].abs_pos == pytest.approx(160.4)
    assert result.aspects[0].aspect == "square"


def test_non_200_is_an_http_error():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="Too many requests")

    with pytest.raises(ChartAPIError) as info:
        asyncio.run(_client(handler).birth_chart(BIRTH))

    assert info.value.kind == "http_error"
    assert info.value.status == 429
    assert info.value.detail == "Too many requests"


def test_missing_key_fails_before_any_request():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=CHART_PAYLOAD)

    with pytest.raises(ChartAPIError) as info:
        asyncio.run(_client(handler, api_key=None).synastry_chart(BIRTH, BIRTH))

    assert info.value.kind == "missing_api_key"
    assert not calls


def test_transport_failure_is_a_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ChartAPIError) as info:
        asyncio.run(_client(handler).transit_chart(BIRTH))

    assert info.value.kind == "network_error"


def test_non_json_body_is_a_decoding_error():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(ChartAPIError) as info:
        asyncio.run(_client(handler).birth_chart(BIRTH))

    assert info.value.kind == "decoding_error"


def test_transit_chart_sends_natal_and_transit_subjects():
    bodies: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=CHART_PAYLOAD)

    moment = datetime(2026, 1, 2, 3, 4, tzinfo=timezone.utc)
    asyncio.run(_client(handler).transit_chart(BIRTH, transit_date=moment))

    assert bodies[0]["natal"]["name"] == "Natal Chart"
    # 03:04 UTC is the previous evening in New York
    assert (bodies[0]["transit"]["day"], bodies[0]["transit"]["hour"]) == (1, 22)


@pytest.mark.parametrize(
    "birth",
    [
        BirthData(date=BIRTH.date, latitude=95.0, longitude=0.0, timezone="UTC"),
        BirthData(date=BIRTH.date, latitude=0.0, longitude=-181.0, timezone="UTC"),
        BirthData(date=BIRTH.date, latitude=0.0, longitude=0.0, timezone="Mars/Olympus"),
        BirthData(date=datetime(1900, 1, 1), latitude=0.0, longitude=0.0, timezone="UTC"),
        BirthData(date=datetime(2040, 1, 1), latitude=0.0, longitude=0.0, timezone="UTC"),
    ],
)
def test_invalid_birth_data_is_rejected(birth: BirthData):
    now = datetime(2026, 10, 18, tzinfo=timezone.utc)

    with pytest.raises(ChartAPIError) as info:
        validate_birth_data(birth, now=now)

    assert info.value.kind == "invalid_birth_data"


def test_subject_defaults_match_provider_schema():
    subject = build_subject(BIRTH)

    assert subject["zodiac_type"] == "Tropic"
    assert subject["houses_system_identifier"] == "P"
    assert subject["name"] == "User"


def test_response_without_chart_is_rejected():
    with pytest.raises(ChartAPIError) as info:
        parse_chart_response({"status": "OK"})

    assert info.value.kind == "decoding_error"
