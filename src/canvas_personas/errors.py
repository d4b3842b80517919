"""Remote error taxonomy shared by the canvas and generation clients.

Retry decisions are made on the exception type alone:
- RateLimitedError and TransientRemoteError are retried
- PermanentRemoteError is surfaced immediately
"""

from __future__ import annotations

import time
from email.utils import parsedate_to_datetime
from typing import Mapping

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})


class RemoteError(Exception):
    """Base class for failures reported by an outbound collaborator."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(RemoteError):
    """The remote asked us to slow down (HTTP 429 or equivalent)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class TransientRemoteError(RemoteError):
    """Server-side or network failure that may succeed on a later attempt."""


class PermanentRemoteError(RemoteError):
    """Validation, auth or not-found failure. Never retried."""


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delta seconds or HTTP date) into seconds."""

    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    remaining = when.timestamp() - time.time()
    return remaining if remaining > 0 else None


def classify_status(
    status_code: int,
    message: str,
    headers: Mapping[str, str] | None = None,
) -> RemoteError:
    """Map an HTTP status to the matching RemoteError subclass."""

    if status_code == 429:
        retry_after = parse_retry_after((headers or {}).get("Retry-After"))
        return RateLimitedError(message, status_code=status_code, retry_after=retry_after)
    if status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600:
        return TransientRemoteError(message, status_code=status_code)
    return PermanentRemoteError(message, status_code=status_code)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (RateLimitedError, TransientRemoteError)):
        return True
    # Raw socket-level failures that escaped a client wrapper.
    return isinstance(exc, (ConnectionError, TimeoutError))


class MissingBusinessNotesError(Exception):
    """Required Business Model Canvas notes (or the Personas anchor) are absent."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing required notes: {', '.join(missing)}")
        self.missing = list(missing)


class PersonaGenerationError(Exception):
    """Persona generation produced fewer personas than the configured minimum."""
