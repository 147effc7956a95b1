"""State acceptance policy.

Kept separate from the cache so that replay and live dispatch share one rule.
"""

from __future__ import annotations


def should_accept_update(*, cached_timestamp: int | None, incoming_timestamp: int) -> bool:
    """Accept the first write for a vehicle and anything strictly newer after that.

    Equal timestamps are treated as duplicates and rejected.
    """
    if cached_timestamp is None:
        return True
    return incoming_timestamp > cached_timestamp


def is_stale(*, cached_timestamp: int | None, incoming_timestamp: int) -> bool:
    """Whether already forwarded state is strictly newer than *incoming_timestamp*."""
    return cached_timestamp is not None and cached_timestamp > incoming_timestamp
