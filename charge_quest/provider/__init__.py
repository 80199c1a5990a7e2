"""Station provider adapter (NOBIL HTTP client, rate limiter, session)."""

from .client import NobilClient  # noqa: F401
from .rate_limiter import RateLimiter, parse_retry_after  # noqa: F401
from .session import (  # noqa: F401
    close_default_session,
    create_default_session,
    get_default_session,
)
from .transform import station_from_payload, stations_from_payload  # noqa: F401
