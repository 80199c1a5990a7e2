"""Adaptive filter deciding which raw GPS fixes are worth acting on.

The filter trades battery against responsiveness: while the player keeps
producing sub-threshold movement it drops into a stationary mode with a wider
poll interval, and wakes up again as soon as a real displacement shows up.
The returned poll interval is advisory; the location source decides whether to
honour it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import NamedTuple, Optional

from .config import (
    FILTER_ACCURACY_FACTOR,
    FILTER_MIN_INTERVAL_MOVING_S,
    FILTER_MIN_INTERVAL_STATIONARY_S,
    FILTER_MIN_MOVEMENT_M,
    FILTER_POLL_MOVING_MS,
    FILTER_POLL_STATIONARY_MS,
    FILTER_STATIONARY_AFTER,
    FILTER_STATIONARY_EXIT_M,
)
from .geo import Movement, classify_movement, distance_between
from .models import Position

LOGGER = logging.getLogger(__name__)


class FilterMode(str, Enum):
    MOVING = "moving"
    STATIONARY = "stationary"


class FilterDecision(NamedTuple):
    accepted: bool
    next_poll_interval_ms: int


@dataclass(slots=True)
class SampleFilterSettings:
    min_movement_m: float = FILTER_MIN_MOVEMENT_M
    accuracy_factor: float = FILTER_ACCURACY_FACTOR
    stationary_after: int = FILTER_STATIONARY_AFTER
    stationary_exit_m: float = FILTER_STATIONARY_EXIT_M
    min_interval_moving_s: float = FILTER_MIN_INTERVAL_MOVING_S
    min_interval_stationary_s: float = FILTER_MIN_INTERVAL_STATIONARY_S
    poll_moving_ms: int = FILTER_POLL_MOVING_MS
    poll_stationary_ms: int = FILTER_POLL_STATIONARY_MS


class SampleFilter:
    """Stateful accept/reject filter for a single position stream.

    Not thread-safe: callers feeding it from several threads must serialize.
    """

    def __init__(self, settings: SampleFilterSettings | None = None) -> None:
        self.settings = settings or SampleFilterSettings()
        self.reset()

    def reset(self) -> None:
        self._mode = FilterMode.MOVING
        self._last_accepted: Optional[Position] = None
        self._last_accept_time: Optional[datetime] = None
        self._small_moves = 0

    @property
    def mode(self) -> FilterMode:
        return self._mode

    @property
    def last_accepted(self) -> Optional[Position]:
        return self._last_accepted

    @property
    def consecutive_small_moves(self) -> int:
        return self._small_moves

    def threshold_for(self, raw: Position) -> float:
        accuracy = raw.accuracy or 0.0
        return max(
            self.settings.min_movement_m, self.settings.accuracy_factor * accuracy
        )

    def accept(self, raw: Position) -> FilterDecision:
        last = self._last_accepted
        if last is None or self._last_accept_time is None:
            self._take(raw)
            return self._decision(True)

        distance = distance_between(last, raw)
        if self._mode is FilterMode.STATIONARY:
            # Never below the moving-mode noise threshold.
            threshold = max(self.threshold_for(raw), self.settings.stationary_exit_m)
            movement = classify_movement(distance, threshold, threshold)
        else:
            movement = classify_movement(
                distance, self.threshold_for(raw), self.settings.stationary_exit_m
            )

        if movement is Movement.NOISE:
            self._small_moves += 1
            if (
                self._mode is FilterMode.MOVING
                and self._small_moves >= self.settings.stationary_after
            ):
                self._mode = FilterMode.STATIONARY
                LOGGER.debug(
                    "Filter entering stationary mode after %d small moves",
                    self._small_moves,
                )
            return self._decision(False)

        min_interval = self._min_interval()
        if self._mode is FilterMode.STATIONARY:
            LOGGER.debug("Filter waking up: moved %.1fm while stationary", distance)
            self._mode = FilterMode.MOVING
            self._small_moves = 0

        elapsed = (raw.captured_at - self._last_accept_time).total_seconds()
        if elapsed < min_interval:
            return self._decision(False)

        self._take(raw)
        return self._decision(True)

    def _take(self, raw: Position) -> None:
        self._last_accepted = raw
        self._last_accept_time = raw.captured_at
        self._small_moves = 0

    def _min_interval(self) -> float:
        if self._mode is FilterMode.STATIONARY:
            return self.settings.min_interval_stationary_s
        return self.settings.min_interval_moving_s

    def _decision(self, accepted: bool) -> FilterDecision:
        if self._mode is FilterMode.STATIONARY:
            return FilterDecision(accepted, self.settings.poll_stationary_ms)
        return FilterDecision(accepted, self.settings.poll_moving_ms)


__all__ = ["FilterDecision", "FilterMode", "SampleFilter", "SampleFilterSettings"]
