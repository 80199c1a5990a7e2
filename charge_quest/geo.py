"""Pure geographic helpers: great-circle distance, rectangles, movement deltas."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Tuple

EARTH_RADIUS_M = 6_371_000.0

LatLon = Tuple[float, float]


class HasCoordinates(Protocol):
    latitude: float
    longitude: float


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the great-circle distance between two points in metres."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: HasCoordinates, b: HasCoordinates) -> float:
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


def destination_point(
    lat: float, lon: float, bearing_deg: float, distance_m: float
) -> LatLon:
    """Return the point ``distance_m`` away from (lat, lon) along ``bearing_deg``."""

    delta = distance_m / EARTH_RADIUS_M
    theta = math.radians(bearing_deg)
    phi1 = math.radians(lat)
    lambda1 = math.radians(lon)
    phi2 = math.asin(
        math.sin(phi1) * math.cos(delta)
        + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    )
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    lon2 = (math.degrees(lambda2) + 540.0) % 360.0 - 180.0
    return math.degrees(phi2), lon2


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lon rectangle (no antimeridian wrapping)."""

    south: float
    west: float
    north: float
    east: float

    def __post_init__(self) -> None:
        if self.south > self.north or self.west > self.east:
            raise ValueError(f"degenerate bounding box {self}")

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east

    @property
    def northeast(self) -> LatLon:
        return self.north, self.east

    @property
    def southwest(self) -> LatLon:
        return self.south, self.west


def bounding_box_around(lat: float, lon: float, radius_deg: float) -> BoundingBox:
    if radius_deg < 0:
        raise ValueError("radius_deg must be >= 0")
    return BoundingBox(
        south=max(-90.0, lat - radius_deg),
        west=max(-180.0, lon - radius_deg),
        north=min(90.0, lat + radius_deg),
        east=min(180.0, lon + radius_deg),
    )


class Movement(str, Enum):
    NOISE = "noise"
    MOVE = "move"
    JUMP = "jump"


def classify_movement(
    distance_m: float, threshold_m: float, exit_distance_m: float
) -> Movement:
    """Classify a position delta against the noise threshold and the exit distance.

    Anything under ``threshold_m`` is noise, even when the threshold exceeds the
    exit distance. ``JUMP`` means the delta is large enough to wake a
    stationary filter.
    """

    if distance_m < threshold_m:
        return Movement.NOISE
    if distance_m >= exit_distance_m:
        return Movement.JUMP
    return Movement.MOVE
