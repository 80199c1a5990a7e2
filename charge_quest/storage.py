"""Narrow key-value persistence for catalog and per-player game state.

The core only needs ``get``/``put``/``keys``; any backend offering those can
sit behind :class:`GameRepository`. Two are provided: :class:`MemoryStore`
for tests and ephemeral runs, and :class:`JsonFileStore`, which keeps one JSON
document per key and writes atomically (temp file + ``os.replace``).

Key layout::

    station:<external_id>           Station record
    player:<player_id>:progression  PlayerProgression
    player:<player_id>:progress     list of StationProgress
    player:<player_id>:loot         list of LootReward

Missing keys load as defaults: empty catalog, zero-XP level-1 progression,
no station progress and no loot.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol
from urllib.parse import quote, unquote

from .errors import PersistenceFailureError
from .models import LootReward, Station, StationProgress
from .progression import PlayerProgression
from .utils import _normalise_value

LOGGER = logging.getLogger(__name__)

STATION_PREFIX = "station:"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any) -> None: ...

    def keys(self, prefix: str = "") -> List[str]: ...


class MemoryStore:
    """Thread-safe in-process store; values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            value = self._data.get(key)
        return copy.deepcopy(value)

    def put(self, key: str, value: Any) -> None:
        normalised = _normalise_value(value)
        with self._lock:
            self._data[key] = normalised

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(key for key in self._data if key.startswith(prefix))


class JsonFileStore:
    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root).expanduser()
        self._lock = threading.Lock()

    def _path_for(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path_for(key)
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.error("Failed reading %s: %s", path, exc)
            raise PersistenceFailureError(f"could not read {key!r}: {exc}") from exc

    def put(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        data = json.dumps(_normalise_value(value), ensure_ascii=False, indent=2)
        temp_path: Path | None = None
        with self._lock:
            try:
                self.root.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    "w", encoding="utf-8", dir=self.root, suffix=".tmp", delete=False
                ) as handle:
                    temp_path = Path(handle.name)
                    handle.write(data)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(temp_path, path)
                temp_path = None
            except OSError as exc:
                LOGGER.error("Failed writing %s: %s", path, exc)
                raise PersistenceFailureError(f"could not write {key!r}: {exc}") from exc
            finally:
                if temp_path is not None:
                    try:
                        temp_path.unlink()
                    except FileNotFoundError:
                        pass

    def keys(self, prefix: str = "") -> List[str]:
        if not self.root.is_dir():
            return []
        found = []
        for path in self.root.glob("*.json"):
            key = unquote(path.stem)
            if key.startswith(prefix):
                found.append(key)
        return sorted(found)


@dataclass
class PlayerState:
    progression: PlayerProgression = field(default_factory=PlayerProgression)
    progress: List[StationProgress] = field(default_factory=list)
    loot: List[LootReward] = field(default_factory=list)


class GameRepository:
    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self._log = logging.getLogger(self.__class__.__name__)

    # -- catalog -------------------------------------------------------------
    def save_stations(self, stations: Iterable[Station]) -> int:
        count = 0
        for station in stations:
            self.store.put(STATION_PREFIX + station.external_id, station.to_dict())
            count += 1
        self._log.debug("Persisted %d stations", count)
        return count

    def load_stations(self) -> List[Station]:
        stations: List[Station] = []
        for key in self.store.keys(STATION_PREFIX):
            raw = self.store.get(key)
            if raw is None:
                continue
            try:
                stations.append(Station.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                self._log.warning("Skipping malformed station record %s: %s", key, exc)
        return stations

    # -- players -------------------------------------------------------------
    @staticmethod
    def _player_key(player_id: str, part: str) -> str:
        return f"player:{player_id}:{part}"

    def load_player(self, player_id: str) -> PlayerState:
        state = PlayerState()
        raw_progression = self.store.get(self._player_key(player_id, "progression"))
        if raw_progression:
            state.progression = PlayerProgression.from_dict(raw_progression)
        for raw in self.store.get(self._player_key(player_id, "progress")) or []:
            try:
                state.progress.append(StationProgress.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                self._log.warning("Skipping malformed progress for %s: %s", player_id, exc)
        for raw in self.store.get(self._player_key(player_id, "loot")) or []:
            try:
                state.loot.append(LootReward.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                self._log.warning("Skipping malformed loot for %s: %s", player_id, exc)
        return state

    def save_player(self, player_id: str, state: PlayerState) -> None:
        self.store.put(
            self._player_key(player_id, "progression"), state.progression.to_dict()
        )
        self.store.put(
            self._player_key(player_id, "progress"),
            [item.to_dict() for item in state.progress],
        )
        self.store.put(
            self._player_key(player_id, "loot"), [item.to_dict() for item in state.loot]
        )

    def player_ids(self) -> List[str]:
        ids = set()
        for key in self.store.keys("player:"):
            parts = key.split(":")
            if len(parts) >= 3:
                ids.add(":".join(parts[1:-1]))
        return sorted(ids)


__all__ = [
    "GameRepository",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "PlayerState",
]
