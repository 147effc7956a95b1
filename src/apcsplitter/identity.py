"""Identity resolution.

Maps broker topics to feed publishers and feed entities / registry records to
unique vehicle ids of the form ``{feedPublisherId}:{vehicleId}``.

Feed-derived ids use the feed's own vehicle descriptor id while registry ids
are built as ``{operatorId}_{vehicleShortName}``. The two only match when the
upstream systems agree on that convention; nothing here validates it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from google.transit import gtfs_realtime_pb2

from apcsplitter.models.registry import VehicleApcMapping

UniqueVehicleId = str
FeedPublisherId = str
FeedPublisherMap = Mapping[str, FeedPublisherId]


def resolve_feed_publisher_id(feed_map: FeedPublisherMap, topic: str) -> FeedPublisherId | None:
    """Return the feed publisher for *topic*, ``None`` for unroutable topics."""
    return feed_map.get(topic)


def build_unique_vehicle_id(feed_publisher_id: FeedPublisherId, vehicle_id: str) -> UniqueVehicleId:
    return f"{feed_publisher_id}:{vehicle_id}"


def resolve_unique_vehicle_id(
    entity: gtfs_realtime_pb2.FeedEntity,
    feed_publisher_id: FeedPublisherId,
) -> UniqueVehicleId | None:
    """Unique id of the vehicle described by a feed entity.

    ``None`` when the entity has no vehicle position, no vehicle descriptor or
    an empty descriptor id.
    """
    if not entity.HasField("vehicle") or not entity.vehicle.HasField("vehicle"):
        return None
    vehicle_id = entity.vehicle.vehicle.id
    if not vehicle_id:
        return None
    return build_unique_vehicle_id(feed_publisher_id, vehicle_id)


def resolve_unique_vehicle_id_from_mapping(
    entry: VehicleApcMapping,
    feed_publisher_id: FeedPublisherId,
) -> UniqueVehicleId | None:
    """Unique id of a registry record, ``None`` if operator or short name is missing."""
    if entry.operator_id is None or entry.vehicle_short_name is None:
        return None
    return build_unique_vehicle_id(feed_publisher_id, f"{entry.operator_id}_{entry.vehicle_short_name}")


def vehicle_id_from_unique_id(
    unique_vehicle_id: UniqueVehicleId,
    feed_publisher_ids: Iterable[FeedPublisherId],
) -> str:
    """Strip the feed publisher prefix from a unique vehicle id.

    Publisher ids may themselves contain ``:`` (``fi:kuopio``), so the longest
    known matching prefix wins. Ids with no known prefix are returned as is.
    """
    best = ""
    for publisher in feed_publisher_ids:
        prefix = f"{publisher}:"
        if unique_vehicle_id.startswith(prefix) and len(prefix) > len(best):
            best = prefix
    return unique_vehicle_id[len(best) :]
