"""Diagnostics for cache decisions."""

from __future__ import annotations

__all__ = ["log_event"]

from upton.reporting.logging import log_event
