"""Per-station discovery lifecycle for a single player.

States move Undiscovered -> Discoverable -> Claimed. Claimed is terminal; the
only way into it is an explicit :meth:`DiscoveryStateMachine.claim`. The
machine owns no locks: :class:`charge_quest.session.PlayerSession` serializes
every call for its player.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .catalog import StationCatalog
from .config import CLAIM_BASE_EXPERIENCE
from .errors import LootNotFoundError, NotDiscoverableError, UnknownStationError
from .events import (
    GameEvent,
    LevelUp,
    LootCollected,
    StationBecameDiscoverable,
    StationClaimed,
)
from .loot import (
    SPARSE_AREA_RADIUS_M,
    LootBook,
    LootGenerator,
    RewardEpochPolicy,
    loyalty_weeks,
    odds_multiplier,
)
from .models import (
    LifecycleState,
    LootReward,
    ProximityEvent,
    ProximityKind,
    StationProgress,
)
from .progression import AwardResult, ProgressionLedger, level_info, unlocked_tools
from .utils import to_utc

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimResult:
    station_id: str
    already_claimed: bool = False
    experience_awarded: int = 0
    total_experience: int = 0
    level: int = 1
    leveled_up: bool = False
    reward: LootReward | None = None
    events: Tuple[GameEvent, ...] = ()


@dataclass(frozen=True)
class CollectResult:
    reward: LootReward
    already_collected: bool = False
    experience_awarded: int = 0
    total_experience: int = 0
    level: int = 1
    leveled_up: bool = False
    events: Tuple[GameEvent, ...] = ()


class DiscoveryStateMachine:
    def __init__(
        self,
        catalog: StationCatalog,
        ledger: ProgressionLedger,
        loot_book: LootBook | None = None,
        generator: LootGenerator | None = None,
        epoch_policy: RewardEpochPolicy | None = None,
        progress: Iterable[StationProgress] = (),
        base_experience: int = CLAIM_BASE_EXPERIENCE,
    ) -> None:
        self.catalog = catalog
        self.ledger = ledger
        self.loot_book = loot_book or LootBook()
        self.generator = generator or LootGenerator()
        self.epoch_policy = epoch_policy or RewardEpochPolicy()
        self.base_experience = base_experience
        self._progress: Dict[str, StationProgress] = {
            item.station_id: item for item in progress
        }
        # Either half of a claim may be all that reached the store; a station
        # counted by either side is Claimed on both.
        for item in self._progress.values():
            if item.is_claimed:
                self.ledger.record_claim(item.station_id)
        self.repaired_ids: List[str] = [
            sid
            for sid in sorted(self.ledger.progression.claimed_station_ids)
            if self._repair_claimed(sid)
        ]

    # -- queries -------------------------------------------------------------
    def progress_for(self, station_id: str) -> Optional[StationProgress]:
        return self._progress.get(station_id)

    def state_of(self, station_id: str) -> LifecycleState:
        item = self._progress.get(station_id)
        return item.state if item else LifecycleState.UNDISCOVERED

    def all_progress(self) -> List[StationProgress]:
        return list(self._progress.values())

    def claimed_ids(self) -> frozenset[str]:
        return frozenset(
            sid for sid, item in self._progress.items() if item.is_claimed
        )

    def discoverable_ids(self) -> List[str]:
        return [
            sid
            for sid, item in self._progress.items()
            if item.state is LifecycleState.DISCOVERABLE
        ]

    # -- proximity -----------------------------------------------------------
    def apply(
        self, events: Iterable[ProximityEvent], now: datetime
    ) -> List[GameEvent]:
        """Apply Enter/Exit events; returns the UI events they produced."""

        now = to_utc(now)
        emitted: List[GameEvent] = []
        for event in events:
            item = self._progress.get(event.station_id)
            if item is not None and item.is_claimed:
                continue
            if event.kind is ProximityKind.ENTER:
                station = self.catalog.get(event.station_id)
                if station is None:
                    continue
                if item is None:
                    item = StationProgress(event.station_id)
                    self._progress[event.station_id] = item
                if item.state is LifecycleState.UNDISCOVERED:
                    item.state = LifecycleState.DISCOVERABLE
                    item.entered_discoverable_at = now
                    LOGGER.info(
                        "Station %s discoverable at %.1fm",
                        event.station_id,
                        event.distance_m,
                    )
                    emitted.append(
                        StationBecameDiscoverable(station, event.distance_m)
                    )
            elif event.kind is ProximityKind.EXIT:
                if item is not None and item.state is LifecycleState.DISCOVERABLE:
                    item.state = LifecycleState.UNDISCOVERED
                    LOGGER.debug("Station %s out of range", event.station_id)
        return emitted

    # -- commands ------------------------------------------------------------
    def claim(self, station_id: str, now: datetime) -> ClaimResult:
        now = to_utc(now)
        station = self.catalog.get(station_id)
        if station is None:
            raise UnknownStationError(f"station {station_id!r} is not in the catalog")

        item = self._progress.get(station_id)
        if self.ledger.has_claimed(station_id):
            self._repair_claimed(station_id)
            item = self._progress[station_id]
        if item is not None and item.is_claimed:
            LOGGER.debug("Claim for %s ignored: already claimed", station_id)
            return ClaimResult(
                station_id,
                already_claimed=True,
                total_experience=self.ledger.total_experience,
                level=self.ledger.level,
            )
        if item is None or item.state is not LifecycleState.DISCOVERABLE:
            raise NotDiscoverableError(
                f"station {station_id!r} is not within claiming range"
            )

        item.state = LifecycleState.CLAIMED
        item.claimed_at = now
        award = self.ledger.award_experience(
            self.base_experience, f"claimed {station.display_name}"
        )
        self.ledger.record_claim(station_id)

        reward, _ = self._spawn_if_missing(station_id, now, discovery=True)
        events: List[GameEvent] = [
            StationClaimed(
                station,
                self.base_experience,
                award.new_total,
                reward,
            )
        ]
        events.extend(self._level_up_events(award))
        return ClaimResult(
            station_id,
            experience_awarded=self.base_experience,
            total_experience=award.new_total,
            level=award.new_level,
            leveled_up=award.leveled_up,
            reward=reward,
            events=tuple(events),
        )

    def collect_loot(self, loot_id: str, now: datetime) -> CollectResult:
        reward = self.loot_book.get(loot_id)
        if reward is None:
            raise LootNotFoundError(f"no loot with id {loot_id!r}")
        if reward.collected:
            return CollectResult(
                reward,
                already_collected=True,
                total_experience=self.ledger.total_experience,
                level=self.ledger.level,
            )

        reward.collected = True
        reward.collected_at = to_utc(now)
        award = self.ledger.award_experience(
            reward.experience_bonus, f"collected {reward.rarity} loot {reward.id}"
        )
        events: List[GameEvent] = [
            LootCollected(reward, reward.experience_bonus, award.new_total)
        ]
        events.extend(self._level_up_events(award))
        return CollectResult(
            reward,
            experience_awarded=reward.experience_bonus,
            total_experience=award.new_total,
            level=award.new_level,
            leveled_up=award.leveled_up,
            events=tuple(events),
        )

    def refresh_epoch(self, now: datetime) -> List[LootReward]:
        """Spawn this epoch's loot for every claimed station still missing one."""

        spawned: List[LootReward] = []
        for station_id in sorted(self.claimed_ids()):
            reward, created = self._spawn_if_missing(station_id, now, discovery=False)
            if created:
                spawned.append(reward)
        if spawned:
            LOGGER.info(
                "Epoch %s: spawned %d loot drops",
                self.epoch_policy.epoch_id(now),
                len(spawned),
            )
        return spawned

    def loot_for_station(self, station_id: str, now: datetime) -> Optional[LootReward]:
        """Uncollected loot of the current epoch for the station, if any."""

        reward = self.loot_book.for_slot(station_id, self.epoch_policy.epoch_id(now))
        if reward is None or reward.collected:
            return None
        return reward

    # -- helpers -------------------------------------------------------------
    def _repair_claimed(self, station_id: str) -> bool:
        item = self._progress.get(station_id)
        if item is not None and item.is_claimed:
            return False
        if item is None:
            item = StationProgress(station_id)
            self._progress[station_id] = item
        LOGGER.warning(
            "Station %s was %s but already counted as claimed; marking it claimed",
            station_id,
            item.state.value,
        )
        item.state = LifecycleState.CLAIMED
        return True

    def _spawn_if_missing(
        self, station_id: str, now: datetime, discovery: bool
    ) -> Tuple[LootReward, bool]:
        epoch_id = self.epoch_policy.epoch_id(now)
        existing = self.loot_book.for_slot(station_id, epoch_id)
        if existing is not None:
            return existing, False
        reward = self.generator.generate(
            station_id,
            epoch_id,
            self.ledger.level,
            discovery,
            to_utc(now),
            self._odds_for(station_id, now),
        )
        self.loot_book.add(reward)
        return reward, True

    def _odds_for(self, station_id: str, now: datetime) -> float:
        station = self.catalog.get(station_id)
        if station is None:
            return 1.0
        item = self._progress.get(station_id)
        weeks = loyalty_weeks(item.claimed_at if item else None, now)
        nearby = self.catalog.count_within(
            station.latitude, station.longitude, SPARSE_AREA_RADIUS_M
        )
        return odds_multiplier(weeks, nearby)

    @staticmethod
    def _level_up_events(award: AwardResult) -> List[GameEvent]:
        if not award.leveled_up:
            return []
        info = level_info(award.new_level)
        tools = tuple(unlocked_tools(award.new_level))
        return [LevelUp(award.new_level, info.title, tools)]


__all__ = ["ClaimResult", "CollectResult", "DiscoveryStateMachine"]
