"""NobilClient behaviour against a fake HTTP session (no network)."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, List

import pytest
import requests
from urllib3.util.retry import Retry

from charge_quest.errors import (
    ProviderError,
    ProviderPermissionError,
    ProviderUnavailableError,
)
from charge_quest.geo import bounding_box_around
from charge_quest.provider import (
    NobilClient,
    RateLimiter,
    close_default_session,
    get_default_session,
)
from charge_quest.provider.transform import parse_position, station_from_payload

from conftest import nobil_entry

BBOX = bounding_box_around(59.3293, 18.0686, 0.45)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.headers = {"Content-Type": "application/json"}
        self.url = "https://nobil.test/search"

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _session(responses: List[Any], calls: List[dict]):
    def get(url, params=None, timeout=None):
        calls.append(dict(params or {}))
        item = responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    return SimpleNamespace(get=get)


def _client(responses, calls=None, sleeps=None, **kwargs):
    calls = [] if calls is None else calls
    sleeps = [] if sleeps is None else sleeps
    return NobilClient(
        api_key="test-key",
        session=_session(responses, calls),
        limiter=RateLimiter(jitter_range=(0.0, 0.0), min_interval=0.0),
        sleep=sleeps.append,
        **kwargs,
    )


def _page(*entries):
    return FakeResponse(200, {"chargerstations": list(entries)})


def test_search_rectangle_sends_expected_params():
    calls: List[dict] = []
    client = _client([_page(nobil_entry(42665, 59.3293, 18.0686, "Sergels torg"))], calls)
    stations = client.search_rectangle(BBOX, limit=50, offset=100)

    assert [s.external_id for s in stations] == ["SE_42665"]
    params = calls[0]
    assert params["apikey"] == "test-key"
    assert params["apiversion"] == "3"
    assert params["action"] == "search"
    assert params["type"] == "rectangle"
    assert params["format"] == "json"
    assert params["limit"] == 50
    assert params["offset"] == 100
    assert params["northeast"] == f"({BBOX.north}, {BBOX.east})"
    assert params["southwest"] == f"({BBOX.south}, {BBOX.west})"


def test_pages_are_served_from_cache():
    calls: List[dict] = []
    client = _client([_page(nobil_entry(1, 59.3, 18.0))], calls)
    first = client.search_rectangle(BBOX)
    second = client.search_rectangle(BBOX)
    assert first == second
    assert len(calls) == 1
    client.clear_cache()
    with pytest.raises(IndexError):
        client.search_rectangle(BBOX)


def test_retries_server_errors_with_capped_backoff():
    sleeps: List[float] = []
    responses = [
        FakeResponse(503, {"error": "busy"}),
        requests.ConnectionError("reset"),
        FakeResponse(500, None, text="<html>down</html>"),
        _page(nobil_entry(1, 59.3, 18.0)),
    ]
    client = _client(
        responses, sleeps=sleeps, max_retries=5, backoff_initial=2.0, backoff_max=5.0
    )
    stations = client.search_rectangle(BBOX)
    assert len(stations) == 1
    assert sleeps == [2.0, 4.0, 5.0]


def test_exhausted_retries_raise_unavailable():
    responses = [FakeResponse(503), FakeResponse(503), FakeResponse(503)]
    client = _client(responses, max_retries=3)
    with pytest.raises(ProviderUnavailableError):
        client.search_rectangle(BBOX)


def test_network_errors_exhaust_into_unavailable():
    responses = [requests.Timeout("slow"), requests.Timeout("slow")]
    client = _client(responses, max_retries=2)
    with pytest.raises(ProviderUnavailableError):
        client.search_rectangle(BBOX)


def test_forbidden_is_not_retried():
    calls: List[dict] = []
    client = _client([FakeResponse(403, {"error": "bad key"})], calls, max_retries=3)
    with pytest.raises(ProviderPermissionError, match="bad key"):
        client.search_rectangle(BBOX)
    assert len(calls) == 1


def test_missing_api_key_fails_fast():
    client = NobilClient(api_key="", session=SimpleNamespace(get=None))
    with pytest.raises(ProviderPermissionError):
        client.search_rectangle(BBOX)


def test_error_payload_raises_provider_error():
    client = _client([FakeResponse(200, {"error": "invalid apikey"})])
    with pytest.raises(ProviderError):
        client.search_rectangle(BBOX)


def test_fetch_area_stops_on_short_page():
    calls: List[dict] = []
    responses = [
        _page(nobil_entry(1, 59.30, 18.0), nobil_entry(2, 59.31, 18.0)),
        _page(nobil_entry(3, 59.32, 18.0)),
    ]
    client = _client(responses, calls, page_size=2)
    stations = client.fetch_area(BBOX)
    assert sorted(s.external_id for s in stations) == ["SE_1", "SE_2", "SE_3"]
    assert [c["offset"] for c in calls] == [0, 2]


def test_fetch_area_detects_non_paginating_provider():
    same = [nobil_entry(i, 59.3 + i / 100, 18.0) for i in range(5)]
    calls: List[dict] = []
    client = _client([_page(*same), _page(*same), _page(*same)], calls, page_size=5)
    stations = client.fetch_area(BBOX)
    assert len(stations) == 5
    assert len(calls) == 2


def test_fetch_area_stops_after_two_empty_pages():
    calls: List[dict] = []
    responses = [_page(), _page(), _page(nobil_entry(1, 59.3, 18.0))]
    client = _client(responses, calls, page_size=1)
    assert client.fetch_area(BBOX) == []
    assert len(calls) == 2


def test_fetch_area_respects_page_cap():
    responses = [_page(nobil_entry(i, 59.3, 18.0 + i / 100)) for i in range(10)]
    calls: List[dict] = []
    client = _client(responses, calls, page_size=1, max_pages=3)
    assert len(client.fetch_area(BBOX)) == 3
    assert len(calls) == 3


def test_fetch_area_keeps_partial_results_on_later_failure():
    responses = [
        _page(nobil_entry(1, 59.3, 18.0)),
        FakeResponse(404, {"error": "gone"}),
    ]
    client = _client(responses, page_size=1)
    assert [s.external_id for s in client.fetch_area(BBOX)] == ["SE_1"]


def test_fetch_area_first_page_failure_propagates():
    client = _client([FakeResponse(401, {"error": "nope"})], page_size=1)
    with pytest.raises(ProviderPermissionError):
        client.fetch_area(BBOX)


def test_parse_position_variants():
    assert parse_position("(59.87447,10.49982)") == (59.87447, 10.49982)
    assert parse_position(" ( 59.1 , 18.2 ) ") == (59.1, 18.2)
    assert parse_position("59.1,18.2") is None
    assert parse_position("(95.0,18.0)") is None
    assert parse_position(None) is None


def test_station_from_payload_normalizes_fields():
    entry = nobil_entry(
        7,
        59.3,
        18.0,
        name="  ",
        owner="",
        City="Stockholm",
        Number_charging_points=4,
        Land_code="NOR",
    )
    station = station_from_payload(entry)
    assert station.external_id == "NO_7"
    assert station.display_name == "Station 7"
    assert station.operator == "Unknown"
    assert station.metadata["city"] == "Stockholm"
    assert station.metadata["total_charging_points"] == 4
    assert station_from_payload({"csmd": {"name": "no id"}}) is None
    assert station_from_payload({"nope": 1}) is None


def test_default_session_is_shared_and_closable():
    first = get_default_session()
    try:
        assert get_default_session() is first
        assert first.headers["Accept"] == "application/json"
        assert isinstance(first.get_adapter("https://nobil.no").max_retries, Retry)
    finally:
        close_default_session()
    second = get_default_session()
    assert second is not first
    close_default_session()
