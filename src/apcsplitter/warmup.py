"""Warm-up: rebuild in-memory state by replaying broker history.

Two topics are replayed before live processing starts:

- the splitter's own output, to restore the vehicle state cache, and
- the vehicle registry, to restore the accepted-vehicle set.

A corrupt message in the output history aborts the cache replay. Live
processing skips bad input unit by unit instead; replay assumes an unbroken
history and stops trusting it at the first gap.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from google.protobuf.message import DecodeError

from apcsplitter._constants import EXTENDED_WINDOW_FACTOR
from apcsplitter._redact import describe_message
from apcsplitter.broker import BrokerMessage, Reader
from apcsplitter.identity import FeedPublisherMap, resolve_feed_publisher_id, resolve_unique_vehicle_id
from apcsplitter.ingestion.feed import decode_feed_message, is_not_servicing, resolve_entity_timestamp
from apcsplitter.ingestion.registry import apply_registry_snapshot
from apcsplitter.state.cache import VehicleStateCache
from apcsplitter.state.registry import AcceptedVehicles

_logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


async def seek_to_window(
    reader: Reader,
    window_seconds: int,
    *,
    clock: Callable[[], int] = _now_ms,
) -> None:
    """Seek *reader* to the start of the replay window.

    A topic with nothing inside the window is sought again
    ``EXTENDED_WINDOW_FACTOR`` windows back.
    """
    now = clock()
    await reader.seek_to_timestamp(now - window_seconds * 1000)
    if reader.has_next():
        return
    extended = window_seconds * EXTENDED_WINDOW_FACTOR
    _logger.info("No messages in replay window, extending window_seconds=%d", extended)
    await reader.seek_to_timestamp(now - extended * 1000)


async def build_cache_from_history(
    cache: VehicleStateCache,
    reader: Reader,
    window_seconds: int,
    feed_map: FeedPublisherMap,
    *,
    clock: Callable[[], int] = _now_ms,
) -> int:
    """Replay previously published per-vehicle messages into *cache*.

    Returns the number of messages admitted. Never raises: on unexpected
    errors the cache is left partially built.
    """
    admitted = 0
    try:
        await seek_to_window(reader, window_seconds, clock=clock)
        while reader.has_next():
            message = await reader.read_next()
            if not _replay_cache_message(cache, message, feed_map):
                _logger.warning("Aborting cache replay after %d admitted messages", admitted)
                break
            admitted += 1
    except Exception:
        _logger.exception("Cache replay failed, continuing with partial cache admitted=%d", admitted)
    return admitted


def _replay_cache_message(
    cache: VehicleStateCache,
    message: BrokerMessage,
    feed_map: FeedPublisherMap,
) -> bool:
    """Admit one historical message. ``False`` means replay must stop."""
    try:
        feed = decode_feed_message(message.data())
    except DecodeError as exc:
        _logger.warning("Could not parse cache message error=%s message=%s", exc, describe_message(message))
        return False

    if not feed.entity:
        _logger.warning("Cache message has no entity message=%s", describe_message(message))
        return False

    topic = message.topic_name()
    feed_publisher_id = resolve_feed_publisher_id(feed_map, topic)
    if feed_publisher_id is None:
        _logger.warning(
            "Could not get feed publisher from the cache topic name topic=%s message=%s",
            topic,
            describe_message(message),
        )
        return False

    entity = feed.entity[0]
    unique_vehicle_id = resolve_unique_vehicle_id(entity, feed_publisher_id)
    timestamp = resolve_entity_timestamp(entity, feed.header)
    if unique_vehicle_id is None or timestamp is None:
        _logger.warning(
            "Could not get unique vehicle id or timestamp from cache message message=%s",
            describe_message(message),
        )
        return True

    cache.admit(unique_vehicle_id, timestamp, not_servicing=is_not_servicing(message.properties()))
    return True


async def build_accepted_vehicles_from_history(
    accepted: AcceptedVehicles,
    reader: Reader,
    window_seconds: int,
    feed_map: FeedPublisherMap,
    *,
    clock: Callable[[], int] = _now_ms,
) -> bool:
    """Restore *accepted* from the latest registry snapshot in history.

    Every registry message is a full snapshot, so only the last one read
    matters. Returns whether a snapshot was applied.
    """
    try:
        await seek_to_window(reader, window_seconds, clock=clock)
        latest: BrokerMessage | None = None
        skipped = 0
        while reader.has_next():
            if latest is not None:
                skipped += 1
            latest = await reader.read_next()
        if latest is None:
            _logger.warning("No vehicle registry snapshot found in history")
            return False
        _logger.debug("Applying latest registry snapshot, discarded older snapshots=%d", skipped)
        return apply_registry_snapshot(latest, feed_map, accepted)
    except Exception:
        _logger.exception("Vehicle registry replay failed")
        return False


async def warm_up(
    cache: VehicleStateCache,
    accepted: AcceptedVehicles,
    cache_reader: Reader,
    registry_reader: Reader,
    window_seconds: int,
    feed_map: FeedPublisherMap,
    *,
    clock: Callable[[], int] = _now_ms,
) -> None:
    """Rebuild the cache and the accepted-vehicle set before live processing."""
    _logger.info("Building vehicle state cache from history window_seconds=%d", window_seconds)
    admitted = await build_cache_from_history(cache, cache_reader, window_seconds, feed_map, clock=clock)
    _logger.info("Building accepted vehicles from history")
    await build_accepted_vehicles_from_history(accepted, registry_reader, window_seconds, feed_map, clock=clock)
    _logger.info(
        "Warm-up done admitted_messages=%d cached_vehicles=%d servicing=%d accepted_vehicles=%d",
        admitted,
        len(cache),
        len(cache.servicing_ids()),
        len(accepted),
    )
