from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone

from upton.config import MAX_FILENAME_LENGTH, MIN_READABLE_FILENAME_LENGTH


UNREADABLE_CHARS = re.compile(r"[^A-Za-z0-9\-_]")
READABLE_SUFFIX = ".html"


def hashed_key(uri: str) -> str:
    return hashlib.md5(uri.encode("utf-8")).hexdigest()


def readable_key(
    uri: str,
    now: datetime | None = None,
    max_length: int = MAX_FILENAME_LENGTH,
) -> str:
    """Inspectable filename: stripped URI plus a UTC timestamp.

    The timestamp changes on every call, so readable keys never produce
    cache hits across calls.
    """
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    stamp = f"{moment:%Y-%m-%d_%H:%M:%S}_UTC{READABLE_SUFFIX}"
    if max_length < MIN_READABLE_FILENAME_LENGTH:
        raise ValueError(f"max_length {max_length} cannot hold the timestamp suffix")
    budget = max_length - len(stamp) - 1
    clean = UNREADABLE_CHARS.sub("", uri)[:budget]
    return f"{clean}.{stamp}"


def build_cache_key(
    uri: str,
    readable: bool = False,
    max_length: int = MAX_FILENAME_LENGTH,
    now: datetime | None = None,
) -> str:
    if readable:
        return readable_key(uri, now=now, max_length=max_length)
    return hashed_key(uri)
