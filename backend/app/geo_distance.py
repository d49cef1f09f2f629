from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Literal

import httpx

from .metrics import chat_distance_lookups_total
from .settings import settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371e3

DistanceMethod = Literal["distance_matrix", "haversine"]
TravelMode = Literal["driving", "walking", "bicycling", "transit"]

_AT_COORDS_RE = re.compile(r"@(-?\d+(?:\.\d+)?),(-?\d+(?:\.\d+)?)")
_QUERY_COORDS_RE = re.compile(r"[?&](?:q|query|ll|destination)=(-?\d+(?:\.\d+)?)(?:,|%2C)(-?\d+(?:\.\d+)?)")
_BARE_COORDS_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")


class DistanceUnavailable(RuntimeError):
    pass


@dataclass(slots=True)
class DistanceResult:
    meters: int
    text: str
    method: DistanceMethod
    duration_text: str | None = None


def _valid(lat: float, lng: float) -> bool:
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def parse_coordinates(reference: str | None) -> tuple[float, float] | None:
    """Read `lat,lng` from a maps URL (`@lat,lng` or `?q=lat,lng`) or a bare pair."""
    if not reference:
        return None
    for pattern in (_AT_COORDS_RE, _QUERY_COORDS_RE, _BARE_COORDS_RE):
        match = pattern.search(reference)
        if match:
            lat, lng = float(match.group(1)), float(match.group(2))
            if _valid(lat, lng):
                return lat, lng
    return None


async def resolve_destination(reference: str) -> tuple[float, float]:
    coords = parse_coordinates(reference)
    if coords is not None:
        return coords
    if not reference.startswith(("http://", "https://")):
        raise DistanceUnavailable(f"Cannot read coordinates from {reference!r}")
    # short links (maps.app.goo.gl, goo.gl/maps) only carry coordinates after redirect
    try:
        async with httpx.AsyncClient(
            timeout=settings.GEO_TIMEOUT_SECONDS, follow_redirects=True
        ) as client:
            resp = await client.get(reference)
    except httpx.HTTPError as exc:
        raise DistanceUnavailable(f"Map link resolution failed: {exc}") from exc
    coords = parse_coordinates(str(resp.url))
    if coords is None:
        raise DistanceUnavailable(f"No coordinates in resolved link {resp.url}")
    return coords


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def straight_line(origin: tuple[float, float], destination: tuple[float, float]) -> DistanceResult:
    meters = haversine_meters(origin[0], origin[1], destination[0], destination[1])
    return DistanceResult(
        meters=int(round(meters)),
        text=f"{meters / 1000:.2f} km",
        method="haversine",
    )


async def _distance_matrix(
    origin: tuple[float, float], destination: tuple[float, float], mode: TravelMode
) -> DistanceResult:
    if not settings.GOOGLE_MAPS_API_KEY:
        raise DistanceUnavailable("GOOGLE_MAPS_API_KEY not configured")
    params = {
        "units": "metric",
        "origins": f"{origin[0]},{origin[1]}",
        "destinations": f"{destination[0]},{destination[1]}",
        "mode": mode,
        "key": settings.GOOGLE_MAPS_API_KEY,
    }
    started = time.perf_counter()
    try:
        async with httpx.AsyncClient(timeout=settings.GEO_TIMEOUT_SECONDS) as client:
            resp = await client.get(settings.DISTANCE_MATRIX_URL, params=params)
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise DistanceUnavailable(f"Distance Matrix request failed: {exc}") from exc
    try:
        data = resp.json()
        element = data["rows"][0]["elements"][0]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise DistanceUnavailable("Malformed Distance Matrix response") from exc
    if data.get("status") != "OK" or element.get("status") != "OK":
        raise DistanceUnavailable(
            f"Distance Matrix status {data.get('status')}/{element.get('status')}"
        )
    logger.info(
        "Distance Matrix origin=(%.4f,%.4f) dest=(%.4f,%.4f) distance=%sm latency=%.1fms",
        origin[0],
        origin[1],
        destination[0],
        destination[1],
        element["distance"]["value"],
        (time.perf_counter() - started) * 1000,
    )
    return DistanceResult(
        meters=int(element["distance"]["value"]),
        text=str(element["distance"]["text"]),
        duration_text=(element.get("duration") or {}).get("text"),
        method="distance_matrix",
    )


async def distance(
    origin_lat: float,
    origin_lng: float,
    destination_ref: str,
    *,
    mode: TravelMode = "driving",
    allow_fallback: bool = True,
) -> DistanceResult:
    """Road distance from the user to a venue, or straight-line distance when the API fails.

    Raises DistanceUnavailable when the destination cannot be located at all, or when
    the routing call fails and `allow_fallback` is off.
    """
    if not _valid(origin_lat, origin_lng):
        raise DistanceUnavailable(f"Invalid origin ({origin_lat}, {origin_lng})")
    origin = (origin_lat, origin_lng)
    destination = await resolve_destination(destination_ref)
    try:
        result = await _distance_matrix(origin, destination, mode)
    except DistanceUnavailable as exc:
        if not allow_fallback:
            raise
        logger.warning("Distance Matrix unavailable, using straight-line distance: %s", exc)
        result = straight_line(origin, destination)
    chat_distance_lookups_total.labels(method=result.method).inc()
    return result


__all__ = [
    "DistanceResult",
    "DistanceUnavailable",
    "distance",
    "haversine_meters",
    "parse_coordinates",
    "resolve_destination",
    "straight_line",
]
