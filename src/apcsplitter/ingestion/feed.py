"""GTFS Realtime helpers.

Decoding of inbound batches and construction of the single-vehicle messages
the splitter publishes. Outbound messages use the same protobuf binary
encoding as the inbound feed.
"""

from __future__ import annotations

from collections.abc import Mapping

from google.transit import gtfs_realtime_pb2

from apcsplitter._constants import IS_SERVICING_PROPERTY, LEGACY_NOT_SERVICING_PROPERTY


def decode_feed_message(data: bytes) -> gtfs_realtime_pb2.FeedMessage:
    """Decode a GTFS Realtime payload.

    Raises :class:`google.protobuf.message.DecodeError` for payloads that do
    not conform to the proto definition.
    """
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.ParseFromString(data)
    return feed


def resolve_entity_timestamp(
    entity: gtfs_realtime_pb2.FeedEntity,
    header: gtfs_realtime_pb2.FeedHeader,
) -> int | None:
    """Vehicle timestamp of the entity, falling back to the header timestamp."""
    if entity.HasField("vehicle") and entity.vehicle.HasField("timestamp"):
        return int(entity.vehicle.timestamp)
    if header.HasField("timestamp"):
        return int(header.timestamp)
    return None


def build_vehicle_message(
    header: gtfs_realtime_pb2.FeedHeader,
    entity: gtfs_realtime_pb2.FeedEntity,
    timestamp: int,
) -> bytes:
    """Single-entity batch carrying *entity* under a copy of *header*.

    The header timestamp is replaced with the entity's own timestamp.
    Raises :class:`google.protobuf.message.EncodeError` if required fields
    are missing.
    """
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.CopyFrom(header)
    feed.header.timestamp = timestamp
    feed.entity.add().CopyFrom(entity)
    return feed.SerializeToString()


def build_not_servicing_message(
    header: gtfs_realtime_pb2.FeedHeader,
    unique_vehicle_id: str,
    vehicle_id: str,
) -> bytes:
    """Synthetic batch announcing that a vehicle stopped servicing.

    The only entity has a vehicle descriptor id and a vehicle timestamp equal
    to the inbound header timestamp. Position and trip are left out.
    """
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.CopyFrom(header)
    entity = feed.entity.add()
    entity.id = unique_vehicle_id
    entity.vehicle.vehicle.id = vehicle_id
    if header.HasField("timestamp"):
        entity.vehicle.timestamp = header.timestamp
    return feed.SerializeToString()


def is_not_servicing(properties: Mapping[str, str]) -> bool:
    """Whether message properties mark a servicing-loss message."""
    if properties.get(IS_SERVICING_PROPERTY) == "false":
        return True
    return properties.get(LEGACY_NOT_SERVICING_PROPERTY) == "true"
