"""HTTP fetching with timeout retries and failure classification."""

from __future__ import annotations

__all__ = ["HttpFetcher", "classify_status", "is_valid_uri"]

from upton.fetchers.http import HttpFetcher, classify_status, is_valid_uri
