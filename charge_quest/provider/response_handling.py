"""Map NOBIL HTTP statuses onto retry decisions and provider errors."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Tuple

import requests

from ..errors import (
    ProviderError,
    ProviderPermissionError,
    ProviderResourceNotFoundError,
    ProviderUnavailableError,
)

LOGGER = logging.getLogger(__name__)

__all__ = ["ResponseAction", "classify_response_status", "extract_error"]

# NOBIL sometimes answers with an HTML error page; keep log lines readable.
_MAX_DETAIL_CHARS = 200


class ResponseAction(str, Enum):
    OK = "ok"
    RETRY = "retry"
    RAISE = "raise"


def _is_transient(status: int) -> bool:
    return status == 429 or 500 <= status < 600


def classify_response_status(
    response: requests.Response,
    context: str,
    *,
    attempt: int,
    backoff: float,
    can_retry: bool,
) -> Tuple[ResponseAction, Optional[ProviderError]]:
    status = response.status_code
    if status < 400:
        return ResponseAction.OK, None

    if _is_transient(status):
        if can_retry:
            LOGGER.warning(
                "%s got %s on attempt %d; retrying in %.1fs",
                context,
                status,
                attempt,
                backoff,
            )
            return ResponseAction.RETRY, None
        error: ProviderError = ProviderUnavailableError(
            _message(response, f"{context} unavailable after {attempt} attempts")
        )
    elif status in (401, 403):
        error = ProviderPermissionError(
            _message(response, f"{context} rejected the NOBIL API key")
        )
    elif status == 404:
        error = ProviderResourceNotFoundError(
            _message(response, f"{context} endpoint not found")
        )
    else:
        error = ProviderError(_message(response, f"{context} failed"))
    LOGGER.error("%s", error)
    return ResponseAction.RAISE, error


def _message(response: requests.Response, summary: str) -> str:
    detail = extract_error(response)
    head = f"{summary} (HTTP {response.status_code})"
    return f"{head}: {detail}" if detail else head


def extract_error(response: Optional[requests.Response]) -> Optional[str]:
    """Pull a short error description out of a NOBIL error response."""

    if response is None:
        return None
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("error", "message", "Error"):
            if data.get(key):
                return str(data[key])[:_MAX_DETAIL_CHARS]
        return None
    text = getattr(response, "text", None)
    if not isinstance(text, str) or not text.strip():
        return None
    text = " ".join(text.split())
    if len(text) > _MAX_DETAIL_CHARS:
        return text[: _MAX_DETAIL_CHARS - 3] + "..."
    return text
