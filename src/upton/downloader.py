from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import httpx

from upton.config import AppConfig
from upton.fetchers.http import HttpFetcher
from upton.models import FetchResult
from upton.storage.stash import CacheStore, Fetcher


class Downloader:
    """Fetch one URI, going through the on-disk stash when caching is on.

    ``options`` takes the flat keys ``cache``, ``cache_location``,
    ``verbose`` and ``readable_filenames`` (plus the fetcher and cache tuning
    keys understood by ``AppConfig.from_options``); anything else is ignored.
    With caching off the stash directory is never created or touched.
    """

    def __init__(
        self,
        uri: str,
        options: Optional[Mapping[str, Any]] = None,
        *,
        config: Optional[AppConfig] = None,
        fetcher: Optional[Fetcher] = None,
        transport: Optional[httpx.BaseTransport] = None,
        log: Optional[Callable[[str], None]] = None,
        log_detail: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.uri = uri
        self.config = AppConfig.from_options(options, base=config)
        self.log = log or print
        if log_detail is not None:
            self.log_detail = log_detail
        elif self.config.verbose:
            self.log_detail = self.log
        else:
            self.log_detail = lambda message: None

        self.fetcher = fetcher or HttpFetcher.from_config(
            self.config.fetcher, transport=transport, log=self.log_detail
        )
        self.store: Optional[CacheStore] = None
        if self.cache_enabled:
            self.store = CacheStore(
                config=self.config.cache,
                fetcher=self.fetcher,
                log=self.log,
                log_detail=self.log_detail,
                event_log=self.config.event_log,
            )

    @property
    def cache_enabled(self) -> bool:
        return self.config.cache.enabled

    @property
    def cache_location(self) -> Path:
        return self.config.cache.location

    @property
    def verbose(self) -> bool:
        return self.config.verbose

    def get(self) -> bytes:
        return self.fetch().content

    def fetch(self) -> FetchResult:
        if self.store is not None:
            self.log(f"Stashing enabled. Will try reading {self.uri} data from cache.")
            return self.store.lookup(self.uri)
        self.log("Stashing disabled. Will download from the internet.")
        return self.fetcher.fetch(self.uri)
