"""Station sync service.

Fetches every configured search center from the provider and merges each
center's stations into the live catalog as soon as they arrive. A failing
center is logged and reported; the catalog keeps whatever it already knew
about that area. Cancellation drops results that have not been merged yet,
while every merge that did happen is complete.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
import random
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..catalog import StationCatalog
from ..config import SYNC_MAX_PARALLELISM, SYNC_SEARCH_CENTERS, SYNC_SEARCH_RADIUS_DEG
from ..errors import PersistenceFailureError, ProviderError
from ..geo import BoundingBox, bounding_box_around
from ..models import Station
from ..provider import NobilClient
from ..storage import GameRepository

SearchCenter = Tuple[str, float, float]
AreaFetcher = Callable[[BoundingBox, Optional[threading.Event]], List[Station]]


@dataclass(slots=True)
class SyncServiceConfig:
    # Without a fetcher the service pages through one NobilClient, so every
    # center shares its rate limiter and page cache.
    fetcher: AreaFetcher | None = None
    client: NobilClient | None = None
    centers: Sequence[SearchCenter] = field(
        default_factory=lambda: list(SYNC_SEARCH_CENTERS)
    )
    radius_deg: float = SYNC_SEARCH_RADIUS_DEG
    max_parallelism: int = SYNC_MAX_PARALLELISM
    logger: logging.Logger | None = None


@dataclass
class SyncReport:
    centers_total: int = 0
    centers_synced: int = 0
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors and not self.cancelled


class StationSyncService:
    def __init__(
        self,
        catalog: StationCatalog,
        config: SyncServiceConfig | None = None,
        repository: GameRepository | None = None,
    ):
        self.catalog = catalog
        self.config = config or SyncServiceConfig()
        self.repository = repository
        self._log = self.config.logger or logging.getLogger(self.__class__.__name__)
        self.client = self.config.client
        if self.config.fetcher is not None:
            self._fetch: AreaFetcher = self.config.fetcher
        else:
            if self.client is None:
                self.client = NobilClient()
            self._fetch = self.client.fetch_area

    def run(self, cancel_event: threading.Event | None = None) -> SyncReport:
        centers = list(self.config.centers)
        report = SyncReport(centers_total=len(centers))
        if not centers:
            return report

        self._log.info(
            "Syncing %d search centers (radius %.2f deg, catalog has %d stations)",
            len(centers),
            self.config.radius_deg,
            len(self.catalog),
        )
        max_parallel = max(1, self.config.max_parallelism)
        batch_size = min(max_parallel, len(centers))

        def fetch_center(center: SearchCenter) -> List[Station]:
            name, lat, lon = center
            bbox = bounding_box_around(lat, lon, self.config.radius_deg)
            stations = self._fetch(bbox, cancel_event)
            self._log.debug("Center %s returned %d stations", name, len(stations))
            return stations

        for batch_index in range(0, len(centers), batch_size):
            if cancel_event and cancel_event.is_set():
                report.cancelled = True
                break
            batch = centers[batch_index : batch_index + batch_size]
            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                future_map = {
                    executor.submit(fetch_center, center): center for center in batch
                }
                for future in as_completed(future_map):
                    name = future_map[future][0]
                    try:
                        stations = future.result()
                    except ProviderError as exc:
                        report.errors[name] = str(exc)
                        self._log.warning("Center %s sync failed: %s", name, exc)
                        continue
                    except Exception as exc:  # pragma: no cover - defensive logging
                        report.errors[name] = f"{exc.__class__.__name__}: {exc}"
                        self._log.error(
                            "Center %s sync failed due to unexpected error: %s",
                            name,
                            exc,
                            exc_info=True,
                        )
                        continue
                    if cancel_event and cancel_event.is_set():
                        report.cancelled = True
                        continue
                    self._merge(name, stations, report)
            if report.cancelled:
                break
            if batch_index + batch_size < len(centers):
                # Randomness only paces requests.
                time.sleep(random.uniform(0.05, 0.2))  # nosec B311

        if report.cancelled:
            self._log.info("Sync cancelled after %d centers", report.centers_synced)
        if report.errors:
            self._log.warning(
                "Suppressed %d center errors (centers: %s)",
                len(report.errors),
                ", ".join(sorted(report.errors)),
            )
        self._log.info(
            "Sync finished: added=%d updated=%d unchanged=%d catalog=%d",
            report.added,
            report.updated,
            report.unchanged,
            len(self.catalog),
        )
        return report

    def _merge(self, name: str, stations: List[Station], report: SyncReport) -> None:
        result = self.catalog.merge(stations)
        report.centers_synced += 1
        report.added += result.added
        report.updated += result.updated
        report.unchanged += result.unchanged
        if self.repository is None or not (result.added or result.updated):
            return
        try:
            self.repository.save_stations(stations)
        except PersistenceFailureError as exc:
            report.errors[f"{name} (persist)"] = str(exc)
            self._log.error("Persisting stations from %s failed: %s", name, exc)


__all__ = ["StationSyncService", "SyncReport", "SyncServiceConfig"]
