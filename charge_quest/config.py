"""Central configuration for the ChargeQuest discovery core.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets are read from environment variables (optionally
via a local `.env`).
"""

from __future__ import annotations

import importlib
import os
from datetime import datetime, timezone


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _env_datetime(key: str, default: datetime) -> datetime:
    value = os.getenv(key)
    if not value:
        return default
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
# Directory (absolute or relative) holding the JSON key-value store.
DATA_DIR = os.getenv("CHARGEQUEST_DATA_DIR", "chargequest_data")

# Player id used by the CLI when --player is omitted.
DEFAULT_PLAYER_ID = os.getenv("CHARGEQUEST_PLAYER_ID", "local")


# ---------------------------------------------------------------------------
# Location sampling
# ---------------------------------------------------------------------------
# Floor for the noise threshold; the live value is max(floor, factor * accuracy).
FILTER_MIN_MOVEMENT_M = _env_float("FILTER_MIN_MOVEMENT_M", 1.0)
FILTER_ACCURACY_FACTOR = _env_float("FILTER_ACCURACY_FACTOR", 0.5)

# Consecutive sub-threshold fixes before switching to stationary mode.
FILTER_STATIONARY_AFTER = _env_int("FILTER_STATIONARY_AFTER", 3)

# Movement that drops a stationary filter back into moving mode.
FILTER_STATIONARY_EXIT_M = _env_float("FILTER_STATIONARY_EXIT_M", 10.0)

# Minimum time between accepted fixes, per mode.
FILTER_MIN_INTERVAL_MOVING_S = _env_float("FILTER_MIN_INTERVAL_MOVING_S", 5.0)
FILTER_MIN_INTERVAL_STATIONARY_S = _env_float("FILTER_MIN_INTERVAL_STATIONARY_S", 15.0)

# Advisory polling cadence handed back to the location source.
FILTER_POLL_MOVING_MS = _env_int("FILTER_POLL_MOVING_MS", 10_000)
FILTER_POLL_STATIONARY_MS = _env_int("FILTER_POLL_STATIONARY_MS", 30_000)


# ---------------------------------------------------------------------------
# Discovery & rewards
# ---------------------------------------------------------------------------
# Stations within this radius (metres, inclusive) become discoverable.
ACTIVATION_RADIUS_M = _env_float("ACTIVATION_RADIUS_M", 25.0)

# Experience granted for every first claim of a station.
CLAIM_BASE_EXPERIENCE = _env_int("CLAIM_BASE_EXPERIENCE", 100)

# Reward epoch policy: "iso_week" (calendar week, Monday 00:00 UTC) or
# "rolling" (fixed-length windows counted from REWARD_EPOCH_ANCHOR).
REWARD_EPOCH_MODE = os.getenv("REWARD_EPOCH_MODE", "iso_week")
REWARD_EPOCH_DAYS = _env_int("REWARD_EPOCH_DAYS", 7)
REWARD_EPOCH_ANCHOR = _env_datetime(
    "REWARD_EPOCH_ANCHOR", datetime(2024, 1, 1, tzinfo=timezone.utc)
)

# Seed for loot rolls. Empty means non-deterministic.
LOOT_RANDOM_SEED = os.getenv("LOOT_RANDOM_SEED", "")


# ---------------------------------------------------------------------------
# Station provider (NOBIL)
# ---------------------------------------------------------------------------
NOBIL_BASE_URL = os.getenv(
    "NOBIL_BASE_URL", "https://nobil.no/api/server/search.php"
)
NOBIL_API_KEY = os.getenv("NOBIL_API_KEY", "")
NOBIL_API_VERSION = "3"

# Prefix for external ids when the payload carries no land code.
NOBIL_DEFAULT_COUNTRY = os.getenv("NOBIL_DEFAULT_COUNTRY", "SE")

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_int("REQUEST_TIMEOUT", 10)

# HTTP session pool sizes for concurrent requests.
HTTP_POOL_CONNECTIONS = 10
HTTP_POOL_MAXSIZE = 10
# Adapter-level retries for connection resets and 502/503/504.
HTTP_TRANSPORT_RETRIES = _env_int("HTTP_TRANSPORT_RETRIES", 2)
PROVIDER_USER_AGENT = os.getenv("PROVIDER_USER_AGENT", "charge-quest/0.1")

# Retry/backoff behaviour for provider fetches.
# PROVIDER_MAX_RETRIES covers network failures, 5xx, 429 or bad payloads.
PROVIDER_MAX_RETRIES = _env_int("PROVIDER_MAX_RETRIES", 3)
# PROVIDER_BACKOFF_INITIAL_SECONDS is the first sleep; it doubles per attempt.
PROVIDER_BACKOFF_INITIAL_SECONDS = _env_float("PROVIDER_BACKOFF_INITIAL_SECONDS", 1.0)
# PROVIDER_BACKOFF_MAX_SECONDS caps the exponential backoff per attempt.
PROVIDER_BACKOFF_MAX_SECONDS = _env_float("PROVIDER_BACKOFF_MAX_SECONDS", 5.0)

# Pagination guards against providers that repeat results across offsets.
PROVIDER_PAGE_SIZE = _env_int("PROVIDER_PAGE_SIZE", 500)
PROVIDER_MAX_PAGES = _env_int("PROVIDER_MAX_PAGES", 5)
PROVIDER_DUPLICATE_PAGE_RATIO = _env_float("PROVIDER_DUPLICATE_PAGE_RATIO", 0.8)

# How long (seconds) a fetched page is served from memory.
PROVIDER_CACHE_SECONDS = _env_int("PROVIDER_CACHE_SECONDS", 300)
PROVIDER_CACHE_SIZE = _env_int("PROVIDER_CACHE_SIZE", 64)

# Rate limiter settings.
# RATE_LIMIT_MAX_CONCURRENT caps total in-flight requests.
RATE_LIMIT_MAX_CONCURRENT = _env_int("RATE_LIMIT_MAX_CONCURRENT", 4)
# RATE_LIMIT_JITTER_RANGE adds random delay (seconds) to smooth bursts.
RATE_LIMIT_JITTER_RANGE = (0.05, 0.2)
# RATE_LIMIT_THROTTLE_SECONDS is the pause applied on 429s.
RATE_LIMIT_THROTTLE_SECONDS = _env_int("RATE_LIMIT_THROTTLE_SECONDS", 15)
# RATE_LIMIT_MIN_INTERVAL_SECONDS keeps request starts at least this far apart.
RATE_LIMIT_MIN_INTERVAL_SECONDS = _env_float("RATE_LIMIT_MIN_INTERVAL_SECONDS", 0.25)


# ---------------------------------------------------------------------------
# Sync pipeline
# ---------------------------------------------------------------------------
# Maximum parallel center fetches during one sync pass.
SYNC_MAX_PARALLELISM = _env_int("SYNC_MAX_PARALLELISM", 3)

# Half-width (degrees) of the rectangle searched around each center.
SYNC_SEARCH_RADIUS_DEG = _env_float("SYNC_SEARCH_RADIUS_DEG", 0.45)

# Strategic centers covering Greater Stockholm: (name, lat, lon).
SYNC_SEARCH_CENTERS = [
    ("Central Stockholm", 59.3293, 18.0686),
    ("North Stockholm (Sollentuna/Häggvik)", 59.4280, 17.9470),
    ("Northeast Stockholm (Täby/Danderyd)", 59.4430, 18.1300),
    ("South Stockholm (Huddinge/Flemingsberg)", 59.2370, 17.9770),
    ("Southeast Stockholm (Nacka/Värmdö)", 59.3100, 18.2640),
    ("West Stockholm (Vällingby/Rinkeby)", 59.3650, 17.8770),
    ("Northwest Stockholm (Kista)", 59.4040, 17.9440),
]
