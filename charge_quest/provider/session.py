"""Pooled HTTP session for NOBIL requests."""

from __future__ import annotations

import logging
import threading

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import (
    HTTP_POOL_CONNECTIONS,
    HTTP_POOL_MAXSIZE,
    HTTP_TRANSPORT_RETRIES,
    PROVIDER_USER_AGENT,
)

__all__ = ["close_default_session", "create_default_session", "get_default_session"]

LOGGER = logging.getLogger(__name__)

_session_lock = threading.Lock()
_default_session: requests.Session | None = None


def create_default_session(
    user_agent: str = PROVIDER_USER_AGENT,
    transport_retries: int = HTTP_TRANSPORT_RETRIES,
) -> requests.Session:
    """Build a session whose adapter retries connection resets and gateway errors.

    Rate limits and JSON errors are left to :class:`NobilClient`, which has
    its own backoff loop, so 429 is not in the status list.
    """

    retry = Retry(
        total=max(0, transport_retries),
        connect=max(0, transport_retries),
        backoff_factor=0.5,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=retry,
    )
    session = requests.Session()
    for prefix in ("https://", "http://"):
        session.mount(prefix, adapter)
    session.headers["Accept"] = "application/json"
    session.headers["User-Agent"] = user_agent
    return session


def get_default_session() -> requests.Session:
    """Return the process-wide provider session, creating it on first use."""

    global _default_session
    with _session_lock:
        if _default_session is None:
            _default_session = create_default_session()
            LOGGER.debug("Created provider HTTP session")
        return _default_session


def close_default_session() -> None:
    global _default_session
    with _session_lock:
        session, _default_session = _default_session, None
    if session is not None:
        session.close()
