"""
Astrologer (RapidAPI) chart client.

Serializes birth data, POSTs it, maps non-200 statuses to ChartAPIError and
parses the response into typed results. Chart correctness is the provider's
concern; this module only moves data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from constants import (
    ASTROLOGER_DEFAULT_BASE_URL,
    ASTROLOGER_DEFAULT_HOST,
    BIRTH_DATE_MAX_YEARS_FUTURE,
    BIRTH_DATE_MAX_YEARS_PAST,
    CHART_REQUEST_TIMEOUT_S,
)
from observability.logger import log_event
from observability.metrics import timed


PLANET_KEYS: tuple[str, ...] = (
    "sun", "moon", "mercury", "venus", "mars",
    "jupiter", "saturn", "uranus", "neptune", "pluto",
)

HOUSE_KEYS: tuple[str, ...] = (
    "first_house", "second_house", "third_house", "fourth_house",
    "fifth_house", "sixth_house", "seventh_house", "eighth_house",
    "ninth_house", "tenth_house", "eleventh_house", "twelfth_house",
)


class ChartAPIError(Exception):
    """
    kind:
        "missing_api_key" | "invalid_birth_data" | "http_error"
        | "network_error" | "decoding_error"
    """

    def __init__(self, kind: str, detail: str, *, status: int | None = None) -> None:
        super().__init__(f"{kind}: {detail}" if status is None else f"{kind} ({status}): {detail}")
        self.kind = kind
        self.detail = detail
        self.status = status


# ---------------------------------------------------------------------
# Request model
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class BirthData:
    """
    date:
        Moment of birth. Naive datetimes are read in `timezone`.

    timezone:
        IANA zone name, e.g. "America/New_York".
    """
    date: datetime
    latitude: float
    longitude: float
    timezone: str


def validate_birth_data(birth: BirthData, *, now: datetime | None = None) -> None:
    """
    Raises:
        ChartAPIError(invalid_birth_data) for out-of-range coordinates, an
        unknown zone, or a date outside the accepted window.
    """
    if not -90.0 <= birth.latitude <= 90.0:
        raise ChartAPIError("invalid_birth_data", f"latitude out of range: {birth.latitude}")
    if not -180.0 <= birth.longitude <= 180.0:
        raise ChartAPIError("invalid_birth_data", f"longitude out of range: {birth.longitude}")

    moment = _localize(birth)
    now = now or datetime.now(dt_timezone.utc)
    earliest = _add_years(now, -BIRTH_DATE_MAX_YEARS_PAST)
    latest = _add_years(now, BIRTH_DATE_MAX_YEARS_FUTURE)
    if not earliest <= moment <= latest:
        raise ChartAPIError("invalid_birth_data", f"date out of range: {moment.isoformat()}")


def build_subject(
    birth: BirthData,
    *,
    name: str = "User",
    theme: str = "classic",
    city: str = "New York",
    nation: str = "US",
) -> dict[str, Any]:
    """Subject payload as the provider expects it (fields in local time)."""
    local = _localize(birth)
    return {
        "year": local.year,
        "month": local.month,
        "day": local.day,
        "hour": local.hour,
        "minute": local.minute,
        "longitude": birth.longitude,
        "latitude": birth.latitude,
        "city": city,
        "nation": nation,
        "timezone": birth.timezone,
        "name": name,
        "zodiac_type": "Tropic",
        "sidereal_mode": None,
        "perspective_type": "Apparent Geocentric",
        "houses_system_identifier": "P",
        "theme": theme,
        "language": "EN",
        "wheel_only": False,
    }


def _localize(birth: BirthData) -> datetime:
    try:
        zone = ZoneInfo(birth.timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ChartAPIError("invalid_birth_data", f"unknown timezone: {birth.timezone}") from exc
    if birth.date.tzinfo is None:
        return birth.date.replace(tzinfo=zone)
    return birth.date.astimezone(zone)


def _add_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return moment.replace(year=moment.year + years, day=28)


# ---------------------------------------------------------------------
# Response model
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PlanetPosition:
    name: str
    abs_pos: float | None
    sign: str | None
    house: str | None
    retrograde: bool | None


@dataclass(frozen=True)
class HouseCusp:
    name: str
    abs_pos: float | None
    sign: str | None


@dataclass(frozen=True)
class Aspect:
    p1_name: str
    p2_name: str
    aspect: str
    orbit: float
    aspect_degrees: float | None = None
    diff: float | None = None


@dataclass(frozen=True)
class ChartResult:
    """
    chart:
        Rendered chart (SVG markup).
    """
    chart: str
    status: str | None
    planets: dict[str, PlanetPosition] = field(default_factory=dict)
    houses: dict[str, HouseCusp] = field(default_factory=dict)
    aspects: tuple[Aspect, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "chart": self.chart,
            "status": self.status,
            "planets": {k: vars(v) for k, v in self.planets.items()},
            "houses": {k: vars(v) for k, v in self.houses.items()},
            "aspects": [vars(a) for a in self.aspects],
        }


def parse_chart_response(payload: Any) -> ChartResult:
    """
    Raises:
        ChartAPIError(decoding_error) if required fields are missing or mistyped.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("chart"), str):
        raise ChartAPIError("decoding_error", "response has no chart")

    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise ChartAPIError("decoding_error", "data is not an object")

    planets: dict[str, PlanetPosition] = {}
    for key in PLANET_KEYS:
        raw = data.get(key)
        if isinstance(raw, dict):
            planets[key] = PlanetPosition(
                name=key,
                abs_pos=_opt_float(raw.get("abs_pos")),
                sign=raw.get("sign"),
                house=raw.get("house"),
                retrograde=raw.get("retrograde"),
            )

    houses: dict[str, HouseCusp] = {}
    for key in ("ascendant",) + HOUSE_KEYS:
        raw = data.get(key)
        if isinstance(raw, dict):
            houses[key] = HouseCusp(
                name=key,
                abs_pos=_opt_float(raw.get("abs_pos")),
                sign=raw.get("sign"),
            )

    aspects: list[Aspect] = []
    for raw in payload.get("aspects") or []:
        try:
            aspects.append(
                Aspect(
                    p1_name=str(raw["p1_name"]),
                    p2_name=str(raw["p2_name"]),
                    aspect=str(raw["aspect"]),
                    orbit=float(raw["orbit"]),
                    aspect_degrees=_opt_float(raw.get("aspect_degrees")),
                    diff=_opt_float(raw.get("diff")),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ChartAPIError("decoding_error", f"bad aspect entry: {exc!r}") from exc

    return ChartResult(
        chart=payload["chart"],
        status=payload.get("status"),
        planets=planets,
        houses=houses,
        aspects=tuple(aspects),
    )


def _opt_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ChartAPIError("decoding_error", f"not a number: {value!r}") from exc


# ---------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------

class AstrologerClient:
    """Thin async client for the birth, synastry and transit chart endpoints."""

    def __init__(
        self,
        *,
        api_key: str | None,
        api_host: str = ASTROLOGER_DEFAULT_HOST,
        base_url: str = ASTROLOGER_DEFAULT_BASE_URL,
        timeout_s: float = CHART_REQUEST_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_host = api_host
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_s)
        self._transport = transport

    async def birth_chart(
        self,
        birth: BirthData,
        *,
        theme: str = "classic",
        city: str = "User Location",
        nation: str = "US",
    ) -> ChartResult:
        validate_birth_data(birth)
        body = {
            "subject": build_subject(birth, name="User", theme=theme, city=city, nation=nation),
        }
        return await self._post("birth-chart", body)

    async def synastry_chart(
        self,
        person1: BirthData,
        person2: BirthData,
        *,
        theme: str = "classic",
    ) -> ChartResult:
        body = {
            "subject1": build_subject(person1, name="Person 1", theme=theme, city="Location 1"),
            "subject2": build_subject(person2, name="Person 2", theme=theme, city="Location 2"),
        }
        return await self._post("synastry-chart", body)

    async def transit_chart(
        self,
        birth: BirthData,
        *,
        transit_date: datetime | None = None,
        theme: str = "classic",
    ) -> ChartResult:
        transit = BirthData(
            date=transit_date or datetime.now(dt_timezone.utc),
            latitude=birth.latitude,
            longitude=birth.longitude,
            timezone=birth.timezone,
        )
        body = {
            "natal": build_subject(birth, name="Natal Chart", theme=theme, city="User Location"),
            "transit": build_subject(
                transit, name="Current Transits", theme=theme, city="Transit Location"
            ),
        }
        return await self._post("transit-chart", body)

    async def _post(self, endpoint: str, body: dict[str, Any]) -> ChartResult:
        if not self._api_key:
            raise ChartAPIError("missing_api_key", "ASTROLOGER_API_KEY is not set")

        url = f"{self._base_url}/{endpoint}"
        headers = {
            "Content-Type": "application/json",
            "X-RapidAPI-Key": self._api_key,
            "X-RapidAPI-Host": self._api_host,
        }

        with timed("chart_request_ms") as scope:
            scope.details["endpoint"] = endpoint
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout,
                    transport=self._transport,
                ) as client:
                    resp = await client.post(url, json=body, headers=headers)
            except httpx.HTTPError as exc:
                raise ChartAPIError("network_error", repr(exc)) from exc

            scope.details["status"] = resp.status_code
            if resp.status_code != 200:
                log_event({
                    "event_type": "CHART_API_ERROR",
                    "endpoint": endpoint,
                    "status": resp.status_code,
                }, level="WARNING")
                raise ChartAPIError(
                    "http_error",
                    resp.text or "Unknown error",
                    status=resp.status_code,
                )

            try:
                payload = resp.json()
            except ValueError as exc:
                raise ChartAPIError("decoding_error", "response is not JSON") from exc

        return parse_chart_response(payload)
