from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Protocol

from upton.config import CacheConfig
from upton.models import FetchOutcome, FetchResult
from upton.reporting.logging import log_event
from upton.storage.keys import build_cache_key


CACHE_DIR_MODE = 0o700
TEMP_PREFIX = ".upton-"


class Fetcher(Protocol):
    def fetch(self, uri: str) -> FetchResult:
        ...


def initialize_cache_dir(location: Path) -> Path:
    """Create ``location`` owner-only if it is missing; a no-op otherwise.

    Errors (permissions, a regular file in the way, disk full) propagate.
    """
    if not location.is_dir():
        location.mkdir(mode=CACHE_DIR_MODE, parents=True)
        location.chmod(CACHE_DIR_MODE)
    return location


def write_atomic(path: Path, content: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _noop(_message: str) -> None:
    return None


@dataclass
class CacheStore:
    """Write-through disk cache in front of a ``Fetcher``.

    An entry is the raw body stored at ``<location>/<key>``. Once an entry
    exists it is served forever; nothing here expires or validates it.
    """

    config: CacheConfig
    fetcher: Fetcher
    log: Callable[[str], None] = print
    log_detail: Callable[[str], None] = _noop
    event_log: Path | None = None
    clock: Callable[[], datetime] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        initialize_cache_dir(self.config.location)

    @property
    def location(self) -> Path:
        return self.config.location

    def key_for(self, uri: str) -> str:
        now = self.clock() if self.clock is not None else None
        return build_cache_key(
            uri,
            readable=self.config.readable_filenames,
            max_length=self.config.max_filename_length,
            now=now,
        )

    def path_for(self, uri: str) -> Path:
        return self.location / self.key_for(uri)

    def get(self, uri: str) -> bytes:
        return self.lookup(uri).content

    def lookup(self, uri: str) -> FetchResult:
        # Readable keys embed the time, so the path is computed once per call.
        path = self.path_for(uri)
        if path.exists():
            self.log(f"Cache of {uri} available")
            content = path.read_bytes()
            self._event("cache_hit", uri, path, size=len(content))
            return FetchResult(
                uri=uri,
                outcome=FetchOutcome.SUCCESS,
                content=content,
                from_cache=True,
            )

        self.log(f"Cache of {uri} unavailable. Will download from the internet")
        self._event("cache_miss", uri, path)
        result = self.fetcher.fetch(uri)

        if not self._should_persist(result):
            self.log_detail(f"Not caching {uri}: {result.outcome.value}")
            return result
        if path.exists():
            self.log_detail(f"Cache of {uri} appeared during download; keeping it")
            return result

        self.log(f"Writing {uri} data to the cache")
        write_atomic(path, result.content)
        self._event("cache_write", uri, path, size=len(result.content), outcome=result.outcome)
        return result

    def _should_persist(self, result: FetchResult) -> bool:
        if result.ok:
            return True
        return result.terminal and self.config.cache_failures

    def _event(self, event: str, uri: str, path: Path, **extra: object) -> None:
        if self.event_log is None:
            return
        log_event(event, {"uri": uri, "path": path, **extra}, self.event_log)
