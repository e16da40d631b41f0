"""On-disk stash of fetched resources."""

from __future__ import annotations

__all__ = ["CacheStore", "build_cache_key", "hashed_key", "readable_key"]

from upton.storage.keys import build_cache_key, hashed_key, readable_key
from upton.storage.stash import CacheStore
