"""Shared utility functions used across kolscore modules."""
from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the store's DateTime columns."""
    return datetime.now(UTC).replace(tzinfo=None)
