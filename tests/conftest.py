"""Global pytest fixtures & helpers.

Adds project root to path and provides reusable factories for stations,
GPS fixes and a controllable clock so tests stay deterministic and offline.
"""
from __future__ import annotations

import os
import random
import sys
from datetime import datetime, timedelta, timezone

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from charge_quest.catalog import StationCatalog
from charge_quest.geo import destination_point
from charge_quest.loot import LootGenerator
from charge_quest.models import Position, Station

# Monday 6 May 2024, ISO week 2024-W19.
BASE_TIME = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)
STOCKHOLM = (59.3293, 18.0686)


# --- Factory helpers -------------------------------------------------
def make_station(
    external_id: str = "SE_1",
    lat: float = STOCKHOLM[0],
    lon: float = STOCKHOLM[1],
    name: str | None = None,
    operator: str = "Recharge",
    **metadata,
) -> Station:
    return Station(
        external_id=external_id,
        latitude=lat,
        longitude=lon,
        display_name=name or f"Station {external_id}",
        operator=operator,
        metadata=metadata,
    )


def make_fix(
    lat: float,
    lon: float,
    seconds: float = 0,
    accuracy: float | None = None,
) -> Position:
    return Position(
        latitude=lat,
        longitude=lon,
        captured_at=BASE_TIME + timedelta(seconds=seconds),
        accuracy=accuracy,
    )


def fix_near(
    origin: tuple[float, float],
    meters: float,
    seconds: float = 0,
    bearing: float = 90.0,
    accuracy: float | None = None,
) -> Position:
    lat, lon = destination_point(origin[0], origin[1], bearing, meters)
    return make_fix(lat, lon, seconds=seconds, accuracy=accuracy)


def nobil_entry(station_id, lat, lon, name="Test", owner="Recharge", **extra):
    csmd = {
        "id": station_id,
        "name": name,
        "Position": f"({lat},{lon})",
        "Owned_by": owner,
    }
    csmd.update(extra)
    return {"csmd": csmd}


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stockholm_station():
    return make_station("SE_42665", *STOCKHOLM, name="Sergels torg")


@pytest.fixture
def catalog(stockholm_station):
    return StationCatalog([stockholm_station])


@pytest.fixture
def seeded_generator():
    return LootGenerator(random.Random(1234))
