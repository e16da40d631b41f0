from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable
from urllib.parse import urlsplit

import httpx
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_exponential,
)

from upton.config import FetcherConfig
from upton.models import FetchOutcome, FetchResult


NOT_FOUND_STATUSES = frozenset({404, 410})
REQUEST_TIMEOUT_STATUS = 408


@dataclass
class HttpFetcher:
    """Single-request HTTP retrieval with failure classification.

    Timeouts, HTTP 408 responses included, are retried forever unless
    ``max_timeout_retries`` is set. Every other failure is terminal for this
    call and comes back as an empty-bodied ``FetchResult`` tagged with its
    ``FetchOutcome``.
    """

    timeout: float = 20.0
    user_agent: str = "upton/0.1"
    max_timeout_retries: int | None = None
    retry_wait_min: float = 1.0
    retry_wait_max: float = 8.0
    transport: httpx.BaseTransport | None = None
    log: Callable[[str], None] | None = None

    @classmethod
    def from_config(
        cls,
        config: FetcherConfig,
        transport: httpx.BaseTransport | None = None,
        log: Callable[[str], None] | None = None,
    ) -> "HttpFetcher":
        return cls(
            timeout=config.timeout,
            user_agent=config.user_agent,
            max_timeout_retries=config.max_timeout_retries,
            retry_wait_min=config.retry_wait_min,
            retry_wait_max=config.retry_wait_max,
            transport=transport,
            log=log,
        )

    def fetch(self, uri: str) -> FetchResult:
        detail = self.log or (lambda message: None)
        started = _utc_now()

        if not is_valid_uri(uri):
            detail(f"Invalid URI: {uri}")
            return self._failure(uri, FetchOutcome.INVALID_URI, started, 0, "malformed URI")

        attempts = 0
        try:
            for attempt in self._retrying(uri, detail):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    detail(f"Downloading from {uri}")
                    response = self._get(uri)
                    if response.status_code == REQUEST_TIMEOUT_STATUS:
                        raise httpx.ReadTimeout(
                            f"HTTP 408 from {uri}", request=response.request
                        )
        except RetryError as exc:
            detail(f"Giving up on {uri} after {attempts} timeouts")
            cause = exc.last_attempt.exception()
            return self._failure(
                uri, FetchOutcome.RETRIES_EXHAUSTED, started, attempts, str(cause)
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            detail(f"Invalid URI: {uri}")
            return self._failure(uri, FetchOutcome.INVALID_URI, started, attempts, str(exc))
        except httpx.RequestError as exc:
            detail(f"Transport error, skipping: {uri} ({exc})")
            return self._failure(
                uri, FetchOutcome.TRANSPORT_ERROR, started, attempts, str(exc)
            )

        status = response.status_code
        outcome = classify_status(status)
        if outcome is not FetchOutcome.SUCCESS:
            detail(f"{status} error, skipping: {uri}")
            result = self._failure(uri, outcome, started, attempts, f"HTTP {status}")
            result.status_code = status
            return result

        detail(f"Downloaded {uri}")
        return FetchResult(
            uri=uri,
            outcome=FetchOutcome.SUCCESS,
            content=response.content,
            status_code=status,
            attempts=attempts,
            fetched_at=started,
            elapsed_ms=_elapsed_ms(started),
        )

    def fetch_content(self, uri: str) -> bytes:
        return self.fetch(uri).content

    def _retrying(self, uri: str, detail: Callable[[str], None]) -> Retrying:
        if self.max_timeout_retries is None:
            stop = stop_never
        else:
            stop = stop_after_attempt(self.max_timeout_retries + 1)

        def _before_sleep(state: RetryCallState) -> None:
            detail(f"Timeout: {uri} (attempt {state.attempt_number})")

        return Retrying(
            retry=retry_if_exception_type(httpx.TimeoutException),
            stop=stop,
            wait=wait_exponential(
                multiplier=1, min=self.retry_wait_min, max=self.retry_wait_max
            ),
            before_sleep=_before_sleep,
        )

    def _get(self, uri: str) -> httpx.Response:
        with httpx.Client(
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            return client.get(uri)

    @staticmethod
    def _failure(
        uri: str,
        outcome: FetchOutcome,
        started: datetime,
        attempts: int,
        error: str,
    ) -> FetchResult:
        return FetchResult(
            uri=uri,
            outcome=outcome,
            attempts=attempts,
            error=error,
            fetched_at=started,
            elapsed_ms=_elapsed_ms(started),
        )


def classify_status(status: int) -> FetchOutcome:
    if 200 <= status < 300:
        return FetchOutcome.SUCCESS
    if status in NOT_FOUND_STATUSES:
        return FetchOutcome.NOT_FOUND
    if status >= 500:
        return FetchOutcome.SERVER_ERROR
    return FetchOutcome.HTTP_ERROR


def is_valid_uri(uri: str) -> bool:
    if not isinstance(uri, str) or not uri.strip():
        return False
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)


def _elapsed_ms(started: datetime) -> int:
    return int((_utc_now() - started).total_seconds() * 1000)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
