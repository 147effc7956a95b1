"""Registry update.

Applies one passenger-counter mapping snapshot to the accepted-vehicle set.
Used once during warm-up and then for every live registry message.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from apcsplitter._redact import describe_message
from apcsplitter.broker import BrokerMessage
from apcsplitter.identity import (
    FeedPublisherMap,
    UniqueVehicleId,
    resolve_feed_publisher_id,
    resolve_unique_vehicle_id_from_mapping,
)
from apcsplitter.models.registry import parse_registry_snapshot
from apcsplitter.state.registry import AcceptedVehicles

_logger = logging.getLogger(__name__)


def apply_registry_snapshot(
    message: BrokerMessage,
    feed_map: FeedPublisherMap,
    accepted: AcceptedVehicles,
) -> bool:
    """Replace *accepted* with the APC-equipped vehicles of *message*.

    Returns ``False`` and leaves *accepted* untouched when the payload cannot
    be parsed or the topic maps to no feed publisher.
    """
    try:
        snapshot = parse_registry_snapshot(message.data())
    except ValidationError as exc:
        _logger.warning(
            "Could not parse vehicle registry message error=%s message=%s",
            exc,
            describe_message(message),
        )
        return False

    topic = message.topic_name()
    feed_publisher_id = resolve_feed_publisher_id(feed_map, topic)
    if feed_publisher_id is None:
        _logger.warning(
            "Could not get feed publisher from the registry topic name topic=%s message=%s",
            topic,
            describe_message(message),
        )
        return False

    members: set[UniqueVehicleId] = set()
    for entry in snapshot:
        if not entry.has_passenger_counter:
            continue
        unique_vehicle_id = resolve_unique_vehicle_id_from_mapping(entry, feed_publisher_id)
        if unique_vehicle_id is None:
            _logger.warning(
                "Could not get unique vehicle id from registry entry feed_publisher_id=%s entry=%s",
                feed_publisher_id,
                entry.raw,
            )
            continue
        members.add(unique_vehicle_id)

    accepted.replace(members)

    if not members:
        _logger.warning(
            "No vehicles with passenger counters in registry snapshot topic=%s entries=%d",
            topic,
            len(snapshot),
        )
    else:
        _logger.debug("Accepted vehicles updated count=%d vehicles=%s", len(members), sorted(members))
    return True
