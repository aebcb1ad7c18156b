"""Geospatial consistency summary for an evidence set."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

EARTH_RADIUS_METERS = 6_371_000


@dataclass(frozen=True)
class GpsSummary:
    latitude: float
    longitude: float
    radius_meters: int


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points, in metres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def gps_summary(points: Iterable[tuple[float, float]]) -> GpsSummary | None:
    """Centroid of the points and the largest distance from it, rounded up.

    Returns None when there are no points.
    """
    coords = list(points)
    if not coords:
        return None

    center_lat = sum(lat for lat, _ in coords) / len(coords)
    center_lng = sum(lng for _, lng in coords) / len(coords)

    max_distance = max(haversine_meters(center_lat, center_lng, lat, lng) for lat, lng in coords)
    return GpsSummary(
        latitude=center_lat,
        longitude=center_lng,
        radius_meters=math.ceil(max_distance),
    )
