from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FetchOutcome(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    INVALID_URI = "invalid_uri"
    HTTP_ERROR = "http_error"
    TRANSPORT_ERROR = "transport_error"
    RETRIES_EXHAUSTED = "retries_exhausted"


TERMINAL_OUTCOMES = frozenset(
    {
        FetchOutcome.NOT_FOUND,
        FetchOutcome.SERVER_ERROR,
        FetchOutcome.INVALID_URI,
        FetchOutcome.HTTP_ERROR,
    }
)


@dataclass
class FetchResult:
    uri: str
    outcome: FetchOutcome
    content: bytes = b""
    status_code: int | None = None
    attempts: int = 0
    error: str | None = None
    fetched_at: datetime = field(default_factory=_utc_now)
    elapsed_ms: int | None = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is FetchOutcome.SUCCESS

    @property
    def terminal(self) -> bool:
        """True when retrying the same URI cannot change the outcome."""
        return self.outcome in TERMINAL_OUTCOMES
