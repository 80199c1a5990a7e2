"""NOBIL charging-station search client.

Wraps the rectangle search endpoint with the same retry/backoff loop used for
every outbound call: network errors, 429s, 5xx responses and non-JSON bodies
are retried with exponential backoff up to ``max_retries`` attempts, after
which :class:`ProviderUnavailableError` is raised. Successful pages are kept in
a short-lived TTL cache so repeated syncs over the same area stay cheap.
"""

from __future__ import annotations

import logging
import threading
import time
from threading import Event
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from cachetools import TTLCache

from ..config import (
    NOBIL_API_KEY,
    NOBIL_API_VERSION,
    NOBIL_BASE_URL,
    PROVIDER_BACKOFF_INITIAL_SECONDS,
    PROVIDER_BACKOFF_MAX_SECONDS,
    PROVIDER_CACHE_SECONDS,
    PROVIDER_CACHE_SIZE,
    PROVIDER_DUPLICATE_PAGE_RATIO,
    PROVIDER_MAX_PAGES,
    PROVIDER_MAX_RETRIES,
    PROVIDER_PAGE_SIZE,
    REQUEST_TIMEOUT,
)
from ..errors import ProviderError, ProviderPermissionError, ProviderUnavailableError
from ..geo import BoundingBox
from ..models import Station
from .rate_limiter import RateLimiter, parse_retry_after
from .response_handling import ResponseAction, classify_response_status
from .session import get_default_session
from .transform import stations_from_payload

LOGGER = logging.getLogger(__name__)

_PageKey = Tuple[float, float, float, float, int, int]


def _format_corner(lat: float, lon: float) -> str:
    return f"({lat}, {lon})"


class NobilClient:
    def __init__(
        self,
        *,
        api_key: str = NOBIL_API_KEY,
        base_url: str = NOBIL_BASE_URL,
        session: requests.Session | None = None,
        limiter: RateLimiter | None = None,
        timeout: int = REQUEST_TIMEOUT,
        max_retries: int = PROVIDER_MAX_RETRIES,
        backoff_initial: float = PROVIDER_BACKOFF_INITIAL_SECONDS,
        backoff_max: float = PROVIDER_BACKOFF_MAX_SECONDS,
        page_size: int = PROVIDER_PAGE_SIZE,
        max_pages: int = PROVIDER_MAX_PAGES,
        duplicate_ratio: float = PROVIDER_DUPLICATE_PAGE_RATIO,
        cache_seconds: int = PROVIDER_CACHE_SECONDS,
        cache_size: int = PROVIDER_CACHE_SIZE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._session = session or get_default_session()
        self._limiter = limiter or RateLimiter()
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max
        self.page_size = max(1, page_size)
        self.max_pages = max(1, max_pages)
        self.duplicate_ratio = duplicate_ratio
        self._sleep = sleep
        self._cache: TTLCache[_PageKey, Tuple[List[Station], int]] = TTLCache(
            maxsize=max(1, cache_size), ttl=max(1, cache_seconds)
        )
        self._cache_lock = threading.RLock()

    # -- public API ----------------------------------------------------------
    def search_rectangle(
        self, bbox: BoundingBox, limit: int | None = None, offset: int = 0
    ) -> List[Station]:
        """Return the stations of one result page inside ``bbox``."""

        stations, _ = self._search_page(bbox, limit or self.page_size, offset)
        return stations

    def fetch_area(
        self, bbox: BoundingBox, cancel_event: Event | None = None
    ) -> List[Station]:
        """Walk result pages for ``bbox`` and return the distinct stations.

        Paging stops after two consecutive empty pages, on a short page, on a
        page with no new stations, when more than ``duplicate_ratio`` of a page
        was already seen, or at ``max_pages``. A failure on the first page
        propagates; later failures keep what was gathered so far.
        """

        seen: Dict[str, Station] = {}
        empty_streak = 0
        for page in range(self.max_pages):
            if cancel_event and cancel_event.is_set():
                LOGGER.info("Area fetch cancelled before page %d", page + 1)
                break
            offset = page * self.page_size
            try:
                batch, raw_count = self._search_page(bbox, self.page_size, offset)
            except ProviderError as exc:
                if page == 0:
                    raise
                LOGGER.warning(
                    "Page %d failed (%s); keeping %d stations", page + 1, exc, len(seen)
                )
                break

            if raw_count == 0:
                empty_streak += 1
                LOGGER.debug("Page %d empty (streak %d)", page + 1, empty_streak)
                if empty_streak >= 2:
                    break
                continue
            empty_streak = 0

            new_count = 0
            duplicates = 0
            for station in batch:
                if station.external_id in seen:
                    duplicates += 1
                else:
                    new_count += 1
                seen[station.external_id] = station
            LOGGER.debug(
                "Page %d: %d new, %d duplicates, %d total",
                page + 1,
                new_count,
                duplicates,
                len(seen),
            )
            if batch and duplicates > len(batch) * self.duplicate_ratio:
                LOGGER.warning(
                    "Page %d repeated %d/%d stations; provider is not paginating",
                    page + 1,
                    duplicates,
                    len(batch),
                )
                break
            if raw_count < self.page_size:
                break
            if new_count == 0:
                break
        else:
            LOGGER.info("Reached page cap (%d) for %s", self.max_pages, bbox)
        return list(seen.values())

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    # -- internals -----------------------------------------------------------
    def _search_page(
        self, bbox: BoundingBox, limit: int, offset: int
    ) -> Tuple[List[Station], int]:
        key: _PageKey = (
            round(bbox.south, 6),
            round(bbox.west, 6),
            round(bbox.north, 6),
            round(bbox.east, 6),
            limit,
            offset,
        )
        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            LOGGER.debug("Cache hit for rectangle %s offset=%d", key[:4], offset)
            return list(cached[0]), cached[1]

        if not self._api_key:
            raise ProviderPermissionError("NOBIL_API_KEY is not configured")

        north_lat, east_lon = bbox.northeast
        south_lat, west_lon = bbox.southwest
        params: Dict[str, Any] = {
            "apikey": self._api_key,
            "apiversion": NOBIL_API_VERSION,
            "action": "search",
            "type": "rectangle",
            "northeast": _format_corner(north_lat, east_lon),
            "southwest": _format_corner(south_lat, west_lon),
            "format": "json",
            "limit": limit,
            "offset": offset,
        }
        payload = self._fetch_json(params, f"Rectangle search offset={offset}")
        entries = payload.get("chargerstations")
        if entries is None:
            entries = []
        if not isinstance(entries, list):
            raise ProviderError(
                f"unexpected chargerstations type {type(entries).__name__}"
            )
        stations = stations_from_payload(entries)
        with self._cache_lock:
            self._cache[key] = (stations, len(entries))
        return list(stations), len(entries)

    def _fetch_json(self, params: Dict[str, Any], context: str) -> Dict[str, Any]:
        backoff = self._backoff_initial
        attempt = 0
        while True:
            attempt += 1
            can_retry = attempt < self._max_retries
            self._limiter.before_request()
            response: Optional[requests.Response] = None
            try:
                response = self._session.get(
                    self._base_url, params=params, timeout=self._timeout
                )
            except requests.RequestException as exc:
                self._limiter.after_response(None)
                if can_retry:
                    LOGGER.warning(
                        "%s network error attempt=%s err=%s; retrying in %.1fs",
                        context,
                        attempt,
                        exc.__class__.__name__,
                        backoff,
                    )
                    self._sleep(backoff)
                    backoff = min(backoff * 2, self._backoff_max)
                    continue
                message = (
                    f"{context} network error after {attempt} attempts: "
                    f"{exc.__class__.__name__}"
                )
                LOGGER.error(message)
                raise ProviderUnavailableError(message) from exc
            else:
                self._limiter.after_response(
                    response.status_code, parse_retry_after(response.headers)
                )

            action, error = classify_response_status(
                response,
                context,
                attempt=attempt,
                backoff=backoff,
                can_retry=can_retry,
            )
            if action is ResponseAction.RETRY:
                self._sleep(backoff)
                backoff = min(backoff * 2, self._backoff_max)
                continue
            if action is ResponseAction.RAISE and error is not None:
                raise error

            try:
                data = response.json()
            except ValueError as exc:
                if can_retry:
                    LOGGER.warning(
                        "Non-JSON response for %s attempt=%s; retrying in %.1fs",
                        context,
                        attempt,
                        backoff,
                    )
                    self._sleep(backoff)
                    backoff = min(backoff * 2, self._backoff_max)
                    continue
                message = f"{context} returned non-JSON payload"
                LOGGER.error(message)
                raise ProviderUnavailableError(message) from exc

            if not isinstance(data, dict):
                raise ProviderError(
                    f"{context} returned {type(data).__name__}, expected an object"
                )
            if data.get("error"):
                raise ProviderError(f"{context} provider error: {data['error']}")
            return data


__all__ = ["NobilClient"]
