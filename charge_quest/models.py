from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidPositionError
from .utils import format_iso, parse_iso_datetime


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    captured_at: datetime
    accuracy: float | None = None

    def validate(self) -> "Position":
        """Reject fixes the core cannot reason about; returns self when valid."""

        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            raise InvalidPositionError(
                f"non-finite coordinates ({self.latitude}, {self.longitude})"
            )
        if not -90.0 <= self.latitude <= 90.0:
            raise InvalidPositionError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise InvalidPositionError(f"longitude out of range: {self.longitude}")
        if self.accuracy is not None and (
            not math.isfinite(self.accuracy) or self.accuracy < 0
        ):
            raise InvalidPositionError(f"invalid accuracy: {self.accuracy}")
        return self


@dataclass(frozen=True)
class Station:
    external_id: str
    latitude: float
    longitude: float
    display_name: str
    operator: str = "Unknown"
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_id": self.external_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "display_name": self.display_name,
            "operator": self.operator,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Station":
        return cls(
            external_id=str(data["external_id"]),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            display_name=str(data.get("display_name") or data["external_id"]),
            operator=str(data.get("operator") or "Unknown"),
            metadata=dict(data.get("metadata") or {}),
        )


class LifecycleState(str, Enum):
    UNDISCOVERED = "undiscovered"
    DISCOVERABLE = "discoverable"
    CLAIMED = "claimed"


@dataclass
class StationProgress:
    station_id: str
    state: LifecycleState = LifecycleState.UNDISCOVERED
    entered_discoverable_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None

    @property
    def is_claimed(self) -> bool:
        return self.state is LifecycleState.CLAIMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "station_id": self.station_id,
            "state": self.state.value,
            "entered_discoverable_at": format_iso(self.entered_discoverable_at),
            "claimed_at": format_iso(self.claimed_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StationProgress":
        return cls(
            station_id=str(data["station_id"]),
            state=LifecycleState(data.get("state", LifecycleState.UNDISCOVERED.value)),
            entered_discoverable_at=parse_iso_datetime(
                data.get("entered_discoverable_at")
            ),
            claimed_at=parse_iso_datetime(data.get("claimed_at")),
        )


@dataclass
class LootReward:
    id: str
    station_id: str
    epoch_id: str
    rarity: str
    reward_type: str
    value: int
    description: str
    experience_bonus: int
    spawned_at: datetime
    collected: bool = False
    collected_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "epoch_id": self.epoch_id,
            "rarity": self.rarity,
            "reward_type": self.reward_type,
            "value": self.value,
            "description": self.description,
            "experience_bonus": self.experience_bonus,
            "spawned_at": format_iso(self.spawned_at),
            "collected": self.collected,
            "collected_at": format_iso(self.collected_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LootReward":
        spawned_at = parse_iso_datetime(data.get("spawned_at"))
        if spawned_at is None:
            raise ValueError(f"loot {data.get('id')!r} has no spawned_at")
        return cls(
            id=str(data["id"]),
            station_id=str(data["station_id"]),
            epoch_id=str(data["epoch_id"]),
            rarity=str(data["rarity"]),
            reward_type=str(data.get("reward_type", "unknown")),
            value=int(data.get("value", 0)),
            description=str(data.get("description", "")),
            experience_bonus=int(data.get("experience_bonus", 0)),
            spawned_at=spawned_at,
            collected=bool(data.get("collected", False)),
            collected_at=parse_iso_datetime(data.get("collected_at")),
        )


class ProximityKind(str, Enum):
    ENTER = "enter"
    EXIT = "exit"


@dataclass(frozen=True)
class ProximityEvent:
    kind: ProximityKind
    station_id: str
    distance_m: float


@dataclass(frozen=True)
class MergeResult:
    added: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def total(self) -> int:
        return self.added + self.updated + self.unchanged
