"""Reward epochs and loot generation for claimed stations.

Every claimed station may hold at most one loot drop per reward epoch. The
epoch boundary is a configurable policy; rarity rolls come from an injected
``random.Random`` so tests and replays are reproducible.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from .config import REWARD_EPOCH_ANCHOR, REWARD_EPOCH_DAYS, REWARD_EPOCH_MODE
from .models import LootReward
from .utils import to_utc

LOGGER = logging.getLogger(__name__)

EPOCH_MODES = ("iso_week", "rolling")


class RewardEpochPolicy:
    """Maps instants onto reward epochs.

    Windows are half-open ``[start, end)``: an instant exactly on a boundary
    belongs to the epoch that starts there.
    """

    def __init__(
        self,
        mode: str = REWARD_EPOCH_MODE,
        length_days: int = REWARD_EPOCH_DAYS,
        anchor: datetime = REWARD_EPOCH_ANCHOR,
    ) -> None:
        if mode not in EPOCH_MODES:
            raise ValueError(f"unknown reward epoch mode {mode!r}")
        if length_days < 1:
            raise ValueError("length_days must be at least 1")
        self.mode = mode
        self.length = timedelta(days=length_days)
        self.anchor = to_utc(anchor)

    def epoch_id(self, now: datetime) -> str:
        start, _ = self.epoch_bounds(now)
        if self.mode == "iso_week":
            year, week, _ = start.isocalendar()
            return f"{year}-W{week:02d}"
        index = (start - self.anchor) // self.length
        return f"R{index}"

    def epoch_bounds(self, now: datetime) -> Tuple[datetime, datetime]:
        now = to_utc(now)
        if self.mode == "iso_week":
            midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
            start = midnight - timedelta(days=midnight.weekday())
            return start, start + timedelta(days=7)
        # Floor division keeps instants before the anchor in negative windows.
        index = (now - self.anchor) // self.length
        start = self.anchor + index * self.length
        return start, start + self.length


@dataclass(frozen=True)
class RewardType:
    name: str
    value: int
    description: str


@dataclass(frozen=True)
class RarityTier:
    rarity: str
    probability: int  # out of 1000
    experience_bonus: int
    reward_types: Tuple[RewardType, ...]


RARITY_TABLE: Tuple[RarityTier, ...] = (
    RarityTier(
        "common",
        500,
        25,
        (
            RewardType("coffee_voucher", 25, "Espresso House - Free coffee"),
            RewardType("snack_voucher", 15, "7-Eleven - Pastry or sandwich"),
            RewardType("charging_credit", 10, "EV Charging - 10 SEK bonus"),
            RewardType("digital_magazine", 0, "Digital Magazine - 1-month trial"),
            RewardType("spotify_trial", 0, "Spotify Premium - 7-day trial"),
        ),
    ),
    RarityTier(
        "rare",
        290,
        50,
        (
            RewardType("juice_combo", 45, "Joe & The Juice - Fresh juice + sandwich"),
            RewardType("foodora_discount", 30, "Foodora - 20% off next delivery"),
            RewardType("premium_charging", 50, "Premium Charging - 50 SEK credit"),
            RewardType("cinema_discount", 40, "SF Cinema - Student ticket price"),
            RewardType("transport_credit", 50, "SL Travel - 50 SEK credit"),
        ),
    ),
    RarityTier(
        "super_rare",
        150,
        100,
        (
            RewardType("restaurant_voucher", 100, "Local Restaurant - 100 SEK voucher"),
            RewardType("nk_shopping", 75, "NK Department Store - 75 SEK credit"),
            RewardType("car2go_credit", 60, "Car2Go - Free 30-min car sharing"),
            RewardType("gym_pass", 80, "SATS Gym - Day pass"),
            RewardType("grona_lund", 90, "Grona Lund - Discounted entry"),
        ),
    ),
    RarityTier(
        "epic",
        47,
        200,
        (
            RewardType(
                "brewery_tour", 200, "Stockholms Brygghus - Brewery tour + tasting"
            ),
            RewardType("hotel_discount", 300, "Nordic Hotels - Weekend night discount"),
            RewardType("theatre_tickets", 250, "Dramaten Theatre - Premium show tickets"),
            RewardType("helicopter_tour", 500, "Stockholm Helicopter - City tour discount"),
            RewardType("fotografiska", 150, "Fotografiska - Premium exhibition + workshop"),
        ),
    ),
    RarityTier(
        "mythic",
        10,
        400,
        (
            RewardType("michelin_dinner", 800, "Michelin Restaurant - Tasting menu for 2"),
            RewardType("archipelago_tour", 1200, "Archipelago - Private boat experience"),
            RewardType("royal_palace", 400, "Royal Palace - Private guided tour"),
            RewardType("are_ski_weekend", 1000, "Are Ski Resort - Weekend getaway package"),
            RewardType("tesla_experience", 600, "Tesla Test Drive - Model S experience day"),
        ),
    ),
    RarityTier(
        "legendary",
        3,
        750,
        (
            RewardType("grand_hotel", 2000, "Grand Hotel Stockholm - Luxury weekend stay"),
            RewardType("sas_premium", 1500, "SAS Premium - Upgrade voucher for European flights"),
            RewardType("abba_vip", 800, "ABBA Experience - VIP museum tour + dinner"),
            RewardType("yacht_club", 1200, "Royal Yacht Club - Exclusive sailing experience"),
            RewardType("nobel_private", 1000, "Nobel Museum - Private after-hours tour + champagne"),
        ),
    ),
)

# Rolls at or above this value sit in the epic+ band where bonuses apply.
BONUS_BAND_START = 880
LEVEL_BONUS_POINTS = 50
DISCOVERY_BONUS_POINTS = 150

# Treasure odds boosts: long-held stations and stations in sparse areas.
LOYALTY_STEP = 0.05
LOYALTY_MAX_MULTIPLIER = 1.5
SPARSE_AREA_RADIUS_M = 5000.0
SPARSE_AREA_MAX_STATIONS = 10
SPARSE_AREA_MULTIPLIER = 1.5


def rarity_tier(rarity: str) -> Optional[RarityTier]:
    for tier in RARITY_TABLE:
        if tier.rarity == rarity:
            return tier
    return None


def experience_bonus_for(rarity: str) -> int:
    tier = rarity_tier(rarity)
    return tier.experience_bonus if tier else 0


def loot_id_for(station_id: str, epoch_id: str) -> str:
    return f"loot_{station_id}_{epoch_id}"


def loyalty_weeks(claimed_at: Optional[datetime], now: datetime) -> int:
    """Weeks a station has been held, counting the week of the claim as one."""

    if claimed_at is None:
        return 0
    held = to_utc(now) - to_utc(claimed_at)
    return max(0, held // timedelta(weeks=1)) + 1


def odds_multiplier(weeks_held: int, nearby_stations: int) -> float:
    """Combined loyalty and station-density boost passed to the rarity roll.

    ``nearby_stations`` counts the station itself, so a lone charger is 1.
    """

    loyalty = min(1.0 + max(0, weeks_held) * LOYALTY_STEP, LOYALTY_MAX_MULTIPLIER)
    density = (
        SPARSE_AREA_MULTIPLIER if nearby_stations < SPARSE_AREA_MAX_STATIONS else 1.0
    )
    return loyalty * density


class LootGenerator:
    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def roll_rarity(
        self, level: int = 1, discovery: bool = False, odds_multiplier: float = 1.0
    ) -> str:
        roll = self._rng.randrange(1000)
        bonus = (
            max(0, level - 1) * LEVEL_BONUS_POINTS
            + (DISCOVERY_BONUS_POINTS if discovery else 0)
            + int((odds_multiplier - 1.0) * 200)
        )
        if bonus > 0 and roll >= BONUS_BAND_START:
            roll = max(0, roll - bonus)
        cumulative = 0
        for tier in RARITY_TABLE:
            cumulative += tier.probability
            if roll < cumulative:
                return tier.rarity
        return RARITY_TABLE[0].rarity

    def generate(
        self,
        station_id: str,
        epoch_id: str,
        level: int,
        discovery: bool,
        now: datetime,
        odds_multiplier: float = 1.0,
    ) -> LootReward:
        rarity = self.roll_rarity(level, discovery, odds_multiplier)
        tier = rarity_tier(rarity)
        if tier is None or not tier.reward_types:
            reward = RewardType("unknown", 0, "Unknown treasure")
            bonus = 0
        else:
            reward = self._rng.choice(tier.reward_types)
            bonus = tier.experience_bonus
        loot = LootReward(
            id=loot_id_for(station_id, epoch_id),
            station_id=station_id,
            epoch_id=epoch_id,
            rarity=rarity,
            reward_type=reward.name,
            value=reward.value,
            description=reward.description,
            experience_bonus=bonus,
            spawned_at=to_utc(now),
        )
        LOGGER.info(
            "Spawned %s loot %s for station %s (odds x%.2f)%s",
            rarity,
            loot.id,
            station_id,
            odds_multiplier,
            " (discovery bonus)" if discovery else "",
        )
        return loot


class LootBook:
    """Per-player loot index, unique on (station, epoch)."""

    def __init__(self, rewards: Iterable[LootReward] = ()) -> None:
        self._by_id: Dict[str, LootReward] = {}
        self._by_slot: Dict[Tuple[str, str], LootReward] = {}
        for reward in rewards:
            self.add(reward)

    def add(self, reward: LootReward) -> None:
        slot = (reward.station_id, reward.epoch_id)
        existing = self._by_slot.get(slot)
        if existing is not None and existing.id != reward.id:
            raise ValueError(
                f"station {reward.station_id} already has loot {existing.id} "
                f"in epoch {reward.epoch_id}"
            )
        self._by_id[reward.id] = reward
        self._by_slot[slot] = reward

    def get(self, loot_id: str) -> Optional[LootReward]:
        return self._by_id.get(loot_id)

    def for_slot(self, station_id: str, epoch_id: str) -> Optional[LootReward]:
        return self._by_slot.get((station_id, epoch_id))

    def __contains__(self, loot_id: object) -> bool:
        return loot_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def all(self) -> List[LootReward]:
        return sorted(self._by_id.values(), key=lambda r: (r.spawned_at, r.id))


__all__ = [
    "BONUS_BAND_START",
    "LootBook",
    "LootGenerator",
    "RARITY_TABLE",
    "RarityTier",
    "RewardEpochPolicy",
    "RewardType",
    "experience_bonus_for",
    "loot_id_for",
    "loyalty_weeks",
    "odds_multiplier",
    "rarity_tier",
]
