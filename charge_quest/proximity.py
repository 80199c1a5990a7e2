"""Turn accepted fixes into Enter/Exit events against the station catalog."""

from __future__ import annotations

import logging
from typing import Collection, Dict, Iterable, List

from .catalog import StationCatalog
from .config import ACTIVATION_RADIUS_M
from .geo import haversine_m
from .models import Position, ProximityEvent, ProximityKind

LOGGER = logging.getLogger(__name__)


class ProximityEngine:
    """Remembers, per station, whether the previous fix was in range.

    A linear scan is fine for catalogs of a few thousand stations.
    """

    def __init__(self) -> None:
        self._in_range: Dict[str, bool] = {}

    def prime(self, station_ids: Iterable[str]) -> None:
        for station_id in station_ids:
            self._in_range[station_id] = True

    def is_in_range(self, station_id: str) -> bool:
        return self._in_range.get(station_id, False)

    def evaluate(
        self,
        fix: Position,
        catalog: StationCatalog,
        activation_radius_m: float = ACTIVATION_RADIUS_M,
        claimed: Collection[str] = (),
    ) -> List[ProximityEvent]:
        events: List[ProximityEvent] = []
        for station_id, station in catalog.snapshot().items():
            if station_id in claimed:
                self._in_range.pop(station_id, None)
                continue
            distance = haversine_m(
                fix.latitude, fix.longitude, station.latitude, station.longitude
            )
            now_in_range = distance <= activation_radius_m
            was_in_range = self._in_range.get(station_id, False)
            if now_in_range and not was_in_range:
                events.append(
                    ProximityEvent(ProximityKind.ENTER, station_id, distance)
                )
            elif was_in_range and not now_in_range:
                events.append(ProximityEvent(ProximityKind.EXIT, station_id, distance))
            if now_in_range:
                self._in_range[station_id] = True
            else:
                self._in_range.pop(station_id, None)
        if events:
            LOGGER.debug(
                "Proximity at (%.6f, %.6f): %s",
                fix.latitude,
                fix.longitude,
                ", ".join(f"{e.kind.value}:{e.station_id}" for e in events),
            )
        return events


__all__ = ["ProximityEngine"]
