"""ChargeQuest discovery core package."""

from .main import main
from .models import Position, Station, StationProgress, LootReward
from .errors import ChargeQuestError, ProviderError
from .session import PlayerSession

__all__ = [
    "main",
    "Position",
    "Station",
    "StationProgress",
    "LootReward",
    "ChargeQuestError",
    "ProviderError",
    "PlayerSession",
]
