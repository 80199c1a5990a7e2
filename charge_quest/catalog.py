"""Deduplicated station catalog keyed by the provider's external id.

Providers happily return the same station from several overlapping rectangle
searches (and from consecutive pages when pagination is broken), so every
batch goes through :meth:`StationCatalog.merge`, which has set semantics on
``external_id``. The catalog is copy-on-write: a merge builds a new mapping
under the writer lock and publishes it with a single reference swap, so
readers never block and never observe a half-applied batch.
"""

from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from .geo import BoundingBox, haversine_m
from .models import MergeResult, Station

LOGGER = logging.getLogger(__name__)


class StationCatalog:
    def __init__(self, stations: Iterable[Station] = ()) -> None:
        self._write_lock = threading.Lock()
        self._stations: Mapping[str, Station] = MappingProxyType({})
        if stations:
            self.load(stations)

    # -- reads ---------------------------------------------------------------
    def snapshot(self) -> Mapping[str, Station]:
        """Return an immutable view of the catalog as of now."""

        return self._stations

    def get(self, external_id: str) -> Optional[Station]:
        return self._stations.get(external_id)

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._stations

    def __len__(self) -> int:
        return len(self._stations)

    def __iter__(self) -> Iterator[Station]:
        return iter(list(self._stations.values()))

    def within(self, bbox: BoundingBox) -> List[Station]:
        return [
            station
            for station in self._stations.values()
            if bbox.contains(station.latitude, station.longitude)
        ]

    def nearest(
        self,
        latitude: float,
        longitude: float,
        limit: int = 10,
        operators: Sequence[str] | None = None,
    ) -> List[Station]:
        """Return up to ``limit`` stations sorted by distance from the point.

        ``operators`` keeps only stations whose operator contains one of the
        given names (case-insensitive).
        """

        candidates: Iterable[Station] = self._stations.values()
        if operators:
            wanted = [op.lower() for op in operators if op]
            candidates = [
                s for s in candidates if any(w in s.operator.lower() for w in wanted)
            ]
        ranked = sorted(
            candidates,
            key=lambda s: haversine_m(latitude, longitude, s.latitude, s.longitude),
        )
        return ranked[: max(0, limit)]

    def count_within(self, latitude: float, longitude: float, radius_m: float) -> int:
        return sum(
            1
            for s in self._stations.values()
            if haversine_m(latitude, longitude, s.latitude, s.longitude) <= radius_m
        )

    # -- writes --------------------------------------------------------------
    def merge(self, batch: Iterable[Station]) -> MergeResult:
        """Upsert a batch; known ids keep their identity and take the new fields."""

        incoming: Dict[str, Station] = {}
        for station in batch:
            # Duplicates inside one batch collapse; the last occurrence wins.
            incoming[station.external_id] = station
        if not incoming:
            return MergeResult()

        with self._write_lock:
            current = self._stations
            updated_map = dict(current)
            added = updated = unchanged = 0
            for external_id, station in incoming.items():
                previous = current.get(external_id)
                if previous is None:
                    added += 1
                elif previous == station:
                    unchanged += 1
                    continue
                else:
                    updated += 1
                updated_map[external_id] = station
            self._stations = MappingProxyType(updated_map)

        result = MergeResult(added=added, updated=updated, unchanged=unchanged)
        LOGGER.debug(
            "Merged batch of %d stations: added=%d updated=%d unchanged=%d total=%d",
            len(incoming),
            result.added,
            result.updated,
            result.unchanged,
            len(self._stations),
        )
        return result

    def load(self, stations: Iterable[Station]) -> None:
        """Replace the contents wholesale (used when rehydrating from storage)."""

        fresh = {station.external_id: station for station in stations}
        with self._write_lock:
            self._stations = MappingProxyType(fresh)


__all__ = ["StationCatalog"]
