"""Events handed to the presentation layer.

The core never renders anything; it pushes these records into whatever
callable the caller registered as the sink.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Tuple, Type, TypeVar, Union

from .models import LootReward, Station
from .utils import _normalise_value


@dataclass(frozen=True)
class StationBecameDiscoverable:
    station: Station
    distance_m: float


@dataclass(frozen=True)
class StationClaimed:
    station: Station
    experience_awarded: int
    total_experience: int
    reward: LootReward | None = None


@dataclass(frozen=True)
class LevelUp:
    new_level: int
    title: str
    unlocked_tools: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LootCollected:
    reward: LootReward
    experience_awarded: int
    total_experience: int


GameEvent = Union[StationBecameDiscoverable, StationClaimed, LevelUp, LootCollected]
EventSink = Callable[[GameEvent], None]

E = TypeVar("E")


def discard(event: GameEvent) -> None:
    """Sink that drops every event."""


def event_to_dict(event: GameEvent) -> Dict[str, Any]:
    """JSON-friendly rendering used by the CLI."""

    payload = _normalise_value(asdict(event))
    payload["event"] = type(event).__name__
    return payload


class CollectingSink:
    """Sink that records events in order; handy for the CLI and tests."""

    def __init__(self) -> None:
        self.events: List[GameEvent] = []

    def __call__(self, event: GameEvent) -> None:
        self.events.append(event)

    def of_type(self, kind: Type[E]) -> List[E]:
        return [event for event in self.events if isinstance(event, kind)]

    def clear(self) -> None:
        self.events.clear()


__all__ = [
    "CollectingSink",
    "EventSink",
    "GameEvent",
    "LevelUp",
    "LootCollected",
    "StationBecameDiscoverable",
    "StationClaimed",
    "discard",
    "event_to_dict",
]
