"""Splitter / dispatcher.

For every inbound vehicle-position batch:

1. forward each accepted vehicle as its own single-entity batch,
2. announce every previously servicing vehicle that is missing from the batch
   with a synthetic servicing-loss message,
3. wait for all sends before the caller acknowledges the inbound message.

At most one cache transition per vehicle happens per batch. The seen set is
scoped to one batch and thrown away afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from google.protobuf.message import DecodeError, EncodeError
from google.transit import gtfs_realtime_pb2

from apcsplitter._constants import IS_SERVICING_PROPERTY, ORIGIN_MESSAGE_ID_PROPERTY
from apcsplitter._redact import describe_message
from apcsplitter.broker import BrokerMessage, OutboundMessage
from apcsplitter.exceptions import FanOutError
from apcsplitter.identity import (
    FeedPublisherMap,
    UniqueVehicleId,
    resolve_feed_publisher_id,
    resolve_unique_vehicle_id,
    vehicle_id_from_unique_id,
)
from apcsplitter.ingestion.feed import (
    build_not_servicing_message,
    build_vehicle_message,
    decode_feed_message,
    resolve_entity_timestamp,
)
from apcsplitter.state.cache import VehicleStateCache
from apcsplitter.state.policy import is_stale
from apcsplitter.state.registry import AcceptedVehicles

_logger = logging.getLogger(__name__)

SendCallback = Callable[[OutboundMessage], Awaitable[Any]]


def split_vehicles(
    feed: gtfs_realtime_pb2.FeedMessage,
    feed_publisher_id: str,
    accepted: AcceptedVehicles,
    cache: VehicleStateCache,
    origin_message_id: str,
    send: SendCallback,
    seen: set[UniqueVehicleId],
) -> list[Awaitable[Any]]:
    """Send one message per accepted vehicle in *feed*.

    Sent vehicles are added to *seen*. Returns the completion handles.
    """
    handles: list[Awaitable[Any]] = []
    header = feed.header
    for entity in feed.entity:
        unique_vehicle_id = resolve_unique_vehicle_id(entity, feed_publisher_id)
        if unique_vehicle_id is None:
            _logger.warning(
                "Could not get unique vehicle id from the GTFS Realtime entity feed_publisher_id=%s entity_id=%s",
                feed_publisher_id,
                entity.id,
            )
            continue
        if unique_vehicle_id not in accepted:
            continue

        timestamp = resolve_entity_timestamp(entity, header)
        if timestamp is None:
            _logger.warning("Entity and header both lack a timestamp vehicle=%s", unique_vehicle_id)
            continue

        cached = cache.get(unique_vehicle_id)
        if is_stale(
            cached_timestamp=cached.latest_timestamp if cached is not None else None,
            incoming_timestamp=timestamp,
        ):
            _logger.debug("Skipping stale vehicle position vehicle=%s timestamp=%s", unique_vehicle_id, timestamp)
            continue

        try:
            data = build_vehicle_message(header, entity, timestamp)
        except EncodeError as exc:
            _logger.warning("Could not encode vehicle message vehicle=%s error=%s", unique_vehicle_id, exc)
            continue

        cache.admit(unique_vehicle_id, timestamp, not_servicing=False)
        seen.add(unique_vehicle_id)
        handles.append(send(OutboundMessage(data=data, properties={ORIGIN_MESSAGE_ID_PROPERTY: origin_message_id})))
        _logger.debug("Vehicle message sent vehicle=%s timestamp=%s", unique_vehicle_id, timestamp)
    return handles


def send_not_servicing_messages(
    cache: VehicleStateCache,
    seen: set[UniqueVehicleId],
    header: gtfs_realtime_pb2.FeedHeader,
    origin_message_id: str,
    feed_publisher_ids: list[str],
    send: SendCallback,
) -> list[Awaitable[Any]]:
    """Mark servicing vehicles missing from *seen* as not servicing and announce them."""
    handles: list[Awaitable[Any]] = []
    for unique_vehicle_id, state in cache.items():
        if not state.is_servicing or unique_vehicle_id in seen:
            continue
        cache.mark_not_servicing(unique_vehicle_id)
        vehicle_id = vehicle_id_from_unique_id(unique_vehicle_id, feed_publisher_ids)
        try:
            data = build_not_servicing_message(header, unique_vehicle_id, vehicle_id)
        except EncodeError as exc:
            _logger.warning("Could not encode servicing-loss message vehicle=%s error=%s", unique_vehicle_id, exc)
            continue
        handles.append(
            send(
                OutboundMessage(
                    data=data,
                    properties={
                        ORIGIN_MESSAGE_ID_PROPERTY: origin_message_id,
                        IS_SERVICING_PROPERTY: "false",
                    },
                )
            )
        )
        _logger.debug("Servicing-loss message sent vehicle=%s", unique_vehicle_id)
    return handles


async def join_sends(handles: list[Awaitable[Any]], origin_message_id: str) -> int:
    """Wait for every send of a batch.

    Raises :class:`FanOutError` if any send failed or resolved to an empty
    acknowledgement. Returns the number of sends.
    """
    if not handles:
        return 0
    results = await asyncio.gather(*handles, return_exceptions=True)
    failures = [result for result in results if isinstance(result, BaseException) or not result]
    if failures:
        first = failures[0]
        raise FanOutError(
            f"{len(failures)} of {len(results)} sends failed for message {origin_message_id}: {first!r}",
            origin_message_id=origin_message_id,
            failed=len(failures),
        ) from (first if isinstance(first, BaseException) else None)
    return len(results)


class Splitter:
    """Dispatcher bound to the shared cache and accepted-vehicle set."""

    def __init__(
        self,
        feed_map: FeedPublisherMap,
        cache: VehicleStateCache,
        accepted: AcceptedVehicles,
    ) -> None:
        self._feed_map = feed_map
        self._feed_publisher_ids = sorted(set(feed_map.values()))
        self._cache = cache
        self._accepted = accepted

    @property
    def cache(self) -> VehicleStateCache:
        return self._cache

    @property
    def accepted(self) -> AcceptedVehicles:
        return self._accepted

    def split_and_send(self, message: BrokerMessage, send: SendCallback) -> list[Awaitable[Any]]:
        """Run the whole per-batch state machine up to, not including, the join.

        Everything in here is synchronous, so no other task can touch the
        cache or the registry while a batch is being split.
        """
        try:
            feed = decode_feed_message(message.data())
        except DecodeError as exc:
            _logger.warning(
                "The GTFS Realtime message does not conform to the proto definition error=%s message=%s",
                exc,
                describe_message(message),
            )
            return []

        topic = message.topic_name()
        feed_publisher_id = resolve_feed_publisher_id(self._feed_map, topic)
        if feed_publisher_id is None:
            _logger.warning("Could not get feed publisher from the topic name topic=%s", topic)
            return []

        if not self._accepted:
            _logger.info("No accepted vehicles yet, skipping batch topic=%s entities=%d", topic, len(feed.entity))
            return []

        origin_message_id = str(message.message_id())
        _logger.debug("Handling GTFS Realtime entities count=%d", len(feed.entity))

        seen: set[UniqueVehicleId] = set()
        handles = split_vehicles(
            feed,
            feed_publisher_id,
            self._accepted,
            self._cache,
            origin_message_id,
            send,
            seen,
        )
        if len(self._cache) > 0:
            handles.extend(
                send_not_servicing_messages(
                    self._cache,
                    seen,
                    feed.header,
                    origin_message_id,
                    self._feed_publisher_ids,
                    send,
                )
            )
        return handles

    async def process(self, message: BrokerMessage, send: SendCallback) -> int:
        """Split *message*, send the results and wait for all of them.

        Returns the number of messages sent. Raises :class:`FanOutError` when
        the batch must not be acknowledged.
        """
        handles = self.split_and_send(message, send)
        return await join_sends(handles, str(message.message_id()))
