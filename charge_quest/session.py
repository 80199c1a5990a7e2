"""Per-player pipeline tying sampling, proximity and discovery together.

A :class:`PlayerSession` owns every piece of mutable per-player state. All
entry points take the same re-entrant lock, so a claim can never interleave
with the fix that made the station discoverable. Each mutation is persisted
before the call returns; when the store fails the session keeps its in-memory
state, marks itself dirty and re-raises, and the caller retries
:meth:`PlayerSession.flush` rather than the command.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, NamedTuple

from .catalog import StationCatalog
from .config import ACTIVATION_RADIUS_M
from .discovery import ClaimResult, CollectResult, DiscoveryStateMachine
from .errors import PersistenceFailureError
from .events import EventSink, GameEvent, discard
from .loot import LootBook, LootGenerator, RewardEpochPolicy
from .models import LootReward, Position
from .progression import (
    PlayerProgression,
    ProgressionLedger,
    level_info,
    next_level_threshold,
    unlocked_tools,
)
from .proximity import ProximityEngine
from .sampling import FilterDecision, SampleFilter
from .storage import GameRepository, PlayerState
from .utils import utcnow

Clock = Callable[[], datetime]


class FixOutcome(NamedTuple):
    decision: FilterDecision
    events: List[GameEvent]


class PlayerSession:
    def __init__(
        self,
        player_id: str,
        catalog: StationCatalog,
        repository: GameRepository | None = None,
        *,
        state: PlayerState | None = None,
        sink: EventSink | None = None,
        clock: Clock = utcnow,
        sample_filter: SampleFilter | None = None,
        generator: LootGenerator | None = None,
        epoch_policy: RewardEpochPolicy | None = None,
        activation_radius_m: float = ACTIVATION_RADIUS_M,
    ) -> None:
        state = state or PlayerState()
        self.player_id = player_id
        self.catalog = catalog
        self.repository = repository
        self.sink: EventSink = sink or discard
        self.clock = clock
        self.activation_radius_m = activation_radius_m
        self.sample_filter = sample_filter or SampleFilter()
        self.proximity = ProximityEngine()
        self.ledger = ProgressionLedger(state.progression)
        self.machine = DiscoveryStateMachine(
            catalog,
            self.ledger,
            loot_book=LootBook(state.loot),
            generator=generator,
            epoch_policy=epoch_policy,
            progress=state.progress,
        )
        # Stations left Discoverable by a previous run are still in range as
        # far as the engine is concerned; this avoids a duplicate Enter.
        self.proximity.prime(self.machine.discoverable_ids())
        self._lock = threading.RLock()
        self._dirty = bool(self.machine.repaired_ids)
        self._log = logging.getLogger(self.__class__.__name__)

    @classmethod
    def load(
        cls,
        player_id: str,
        catalog: StationCatalog,
        repository: GameRepository,
        **kwargs: Any,
    ) -> "PlayerSession":
        state = repository.load_player(player_id)
        session = cls(player_id, catalog, repository, state=state, **kwargs)
        session._log.info(
            "Loaded player %s: xp=%d level=%d claimed=%d loot=%d",
            player_id,
            session.ledger.total_experience,
            session.ledger.level,
            len(session.machine.claimed_ids()),
            len(state.loot),
        )
        return session

    @property
    def dirty(self) -> bool:
        return self._dirty

    # -- location ------------------------------------------------------------
    def handle_fix(self, raw: Position) -> FixOutcome:
        raw.validate()
        with self._lock:
            decision = self.sample_filter.accept(raw)
            if not decision.accepted:
                return FixOutcome(decision, [])
            proximity_events = self.proximity.evaluate(
                raw,
                self.catalog,
                activation_radius_m=self.activation_radius_m,
                claimed=self.machine.claimed_ids(),
            )
            if not proximity_events:
                return FixOutcome(decision, [])
            events = self.machine.apply(proximity_events, raw.captured_at)
            self._publish(events)
            self._persist()
            return FixOutcome(decision, events)

    # -- commands ------------------------------------------------------------
    def request_claim(self, station_id: str) -> ClaimResult:
        with self._lock:
            result = self.machine.claim(station_id, self.clock())
            if result.already_claimed:
                return result
            self._publish(result.events)
            self._persist()
            return result

    def collect_loot(self, loot_id: str) -> CollectResult:
        with self._lock:
            result = self.machine.collect_loot(loot_id, self.clock())
            if result.already_collected:
                return result
            self._publish(result.events)
            self._persist()
            return result

    def refresh_epoch(self) -> List[LootReward]:
        with self._lock:
            spawned = self.machine.refresh_epoch(self.clock())
            if spawned:
                self._persist()
            return spawned

    def flush(self) -> None:
        """Persist the current state; clears the dirty flag on success."""

        with self._lock:
            self._persist(force=True)

    # -- queries -------------------------------------------------------------
    def available_loot(self) -> List[LootReward]:
        with self._lock:
            now = self.clock()
            found = []
            for station_id in sorted(self.machine.claimed_ids()):
                reward = self.machine.loot_for_station(station_id, now)
                if reward is not None:
                    found.append(reward)
            return found

    def status(self) -> Dict[str, Any]:
        with self._lock:
            level = self.ledger.level
            return {
                "player_id": self.player_id,
                "total_experience": self.ledger.total_experience,
                "level": level,
                "title": level_info(level).title,
                "next_level_at": next_level_threshold(level),
                "unlocked_tools": unlocked_tools(level),
                "claimed": len(self.machine.claimed_ids()),
                "discoverable": sorted(self.machine.discoverable_ids()),
                "loot_available": [reward.id for reward in self.available_loot()],
                "dirty": self._dirty,
            }

    # -- internals -----------------------------------------------------------
    def _publish(self, events: Iterable[GameEvent]) -> None:
        for event in events:
            self.sink(event)

    def _snapshot(self) -> PlayerState:
        progression: PlayerProgression = self.ledger.progression
        return PlayerState(
            progression=progression,
            progress=self.machine.all_progress(),
            loot=self.machine.loot_book.all(),
        )

    def _persist(self, force: bool = False) -> None:
        if self.repository is None:
            return
        self._dirty = True
        try:
            self.repository.save_player(self.player_id, self._snapshot())
        except PersistenceFailureError:
            self._log.error(
                "Persisting player %s failed; state kept in memory until flush()",
                self.player_id,
            )
            raise
        self._dirty = False
        if force:
            self._log.debug("Flushed player %s", self.player_id)


__all__ = ["FixOutcome", "PlayerSession"]
