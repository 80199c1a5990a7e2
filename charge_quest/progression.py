"""Experience ledger and level derivation.

Levels are never stored: they are recomputed from the cumulative experience
total through :data:`LEVEL_TABLE` every time they are needed. The ledger does
not deduplicate awards; the state machine only calls it once per genuine
claim or collect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Set


@dataclass(frozen=True)
class LevelInfo:
    level: int
    min_experience: int
    title: str
    description: str
    unlocks: Optional[str] = None


# Ascending by min_experience.
LEVEL_TABLE: tuple[LevelInfo, ...] = (
    LevelInfo(1, 0, "Energy Seeker", "Starting your exploration journey"),
    LevelInfo(2, 300, "Grid Explorer", "Unlocks Energy Radar", "energy_radar"),
    LevelInfo(3, 800, "Charge Hunter", "Unlocks Treasure Preview", "treasure_preview"),
    LevelInfo(4, 1500, "Power Tracker", "Unlocks Explorer's Eye", "explorer_eye"),
    LevelInfo(5, 2500, "Energy Master", "Unlocks Master Tracker", "master_tracker"),
)


def level_for(total_experience: int) -> int:
    level = LEVEL_TABLE[0].level
    for info in LEVEL_TABLE:
        if total_experience >= info.min_experience:
            level = info.level
    return level


def level_info(level: int) -> LevelInfo:
    for info in LEVEL_TABLE:
        if info.level == level:
            return info
    return LEVEL_TABLE[0]


def next_level_threshold(level: int) -> Optional[int]:
    """Experience needed for ``level + 1``, or None at the top of the table."""

    for info in LEVEL_TABLE:
        if info.level == level + 1:
            return info.min_experience
    return None


def unlocked_tools(level: int) -> List[str]:
    return [
        info.unlocks
        for info in LEVEL_TABLE
        if info.unlocks is not None and info.level <= level
    ]


def is_tool_unlocked(tool: str, level: int) -> bool:
    return tool in unlocked_tools(level)


@dataclass
class PlayerProgression:
    total_experience: int = 0
    claimed_station_ids: Set[str] = field(default_factory=set)

    @property
    def level(self) -> int:
        return level_for(self.total_experience)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_experience": self.total_experience,
            "claimed_station_ids": sorted(self.claimed_station_ids),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlayerProgression":
        return cls(
            total_experience=max(0, int(data.get("total_experience", 0))),
            claimed_station_ids=set(data.get("claimed_station_ids") or ()),
        )


class AwardResult(NamedTuple):
    new_total: int
    new_level: int
    leveled_up: bool


class ProgressionLedger:
    def __init__(self, progression: PlayerProgression | None = None) -> None:
        self._progression = progression or PlayerProgression()
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def progression(self) -> PlayerProgression:
        return self._progression

    @property
    def total_experience(self) -> int:
        return self._progression.total_experience

    @property
    def level(self) -> int:
        return self._progression.level

    def award_experience(self, amount: int, reason: str | None = None) -> AwardResult:
        if amount < 0:
            raise ValueError(f"experience awards must be non-negative, got {amount}")
        previous_level = self._progression.level
        self._progression.total_experience += amount
        new_total = self._progression.total_experience
        new_level = self._progression.level
        leveled_up = new_level > previous_level
        if reason:
            self._log.info(
                "+%d XP: %s (total=%d level=%d)", amount, reason, new_total, new_level
            )
        if leveled_up:
            self._log.info(
                "Level up %d -> %d (%s)",
                previous_level,
                new_level,
                level_info(new_level).title,
            )
        return AwardResult(new_total, new_level, leveled_up)

    def record_claim(self, station_id: str) -> None:
        self._progression.claimed_station_ids.add(station_id)

    def has_claimed(self, station_id: str) -> bool:
        return station_id in self._progression.claimed_station_ids


__all__ = [
    "AwardResult",
    "LEVEL_TABLE",
    "LevelInfo",
    "PlayerProgression",
    "ProgressionLedger",
    "is_tool_unlocked",
    "level_for",
    "level_info",
    "next_level_threshold",
    "unlocked_tools",
]
