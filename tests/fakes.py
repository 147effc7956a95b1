"""In-memory broker doubles and GTFS Realtime builders shared by the tests."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from google.transit import gtfs_realtime_pb2

from apcsplitter.broker import OutboundMessage

FEED_TOPIC = "persistent://public/default/fi-kuopio-vp"
CACHE_TOPIC = "persistent://public/default/fi-kuopio-apc-vp"
REGISTRY_TOPIC = "persistent://public/default/fi-kuopio-vehicle-registry"
FEED_PUBLISHER_ID = "fi:kuopio"
FEED_MAP = {
    FEED_TOPIC: FEED_PUBLISHER_ID,
    CACHE_TOPIC: FEED_PUBLISHER_ID,
    REGISTRY_TOPIC: FEED_PUBLISHER_ID,
}


@dataclass
class FakeMessage:
    topic: str
    payload: bytes
    props: dict[str, str] = field(default_factory=dict)
    publish_time: int = 0
    msg_id: str = "1:0:-1:0"

    def topic_name(self) -> str:
        return self.topic

    def data(self) -> bytes:
        return self.payload

    def properties(self) -> dict[str, str]:
        return self.props

    def event_timestamp(self) -> int:
        return self.publish_time

    def message_id(self) -> str:
        return self.msg_id


class FakeReader:
    """Reader over a fixed history; seeking positions at the first message at or after a time."""

    def __init__(self, messages: Sequence[FakeMessage] = ()) -> None:
        self._messages: list[FakeMessage] = list(messages)
        self._position = 0
        self._arrived = asyncio.Event()
        self.seeks: list[int] = []
        self.reads = 0

    async def seek_to_timestamp(self, timestamp_ms: int) -> None:
        self.seeks.append(timestamp_ms)
        self._position = next(
            (index for index, message in enumerate(self._messages) if message.publish_time >= timestamp_ms),
            len(self._messages),
        )

    def has_next(self) -> bool:
        return self._position < len(self._messages)

    async def read_next(self) -> FakeMessage:
        while not self.has_next():
            self._arrived.clear()
            await self._arrived.wait()
        message = self._messages[self._position]
        self._position += 1
        self.reads += 1
        return message

    def push(self, message: FakeMessage) -> None:
        self._messages.append(message)
        self._arrived.set()


class FakeProducer:
    """Records sends. ``fail_at`` sends raise, ``empty_ack_at`` sends resolve to ``None``."""

    def __init__(self, *, fail_at: Sequence[int] = (), empty_ack_at: Sequence[int] = ()) -> None:
        self.sent: list[OutboundMessage] = []
        self._fail_at = set(fail_at)
        self._empty_ack_at = set(empty_ack_at)

    def send(self, message: OutboundMessage) -> asyncio.Future[Any]:
        index = len(self.sent)
        self.sent.append(message)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        if index in self._fail_at:
            future.set_exception(RuntimeError(f"send {index} failed"))
        elif index in self._empty_ack_at:
            future.set_result(None)
        else:
            future.set_result(f"out:{index}")
        return future


class FakeConsumer:
    def __init__(self, messages: Sequence[FakeMessage] = ()) -> None:
        self._queue: asyncio.Queue[FakeMessage] = asyncio.Queue()
        for message in messages:
            self._queue.put_nowait(message)
        self.acked: list[FakeMessage] = []

    async def receive(self) -> FakeMessage:
        return await self._queue.get()

    async def acknowledge(self, message: FakeMessage) -> None:
        self.acked.append(message)

    def push(self, message: FakeMessage) -> None:
        self._queue.put_nowait(message)


def make_header(timestamp: int | None = 1667406730) -> gtfs_realtime_pb2.FeedHeader:
    header = gtfs_realtime_pb2.FeedHeader()
    header.gtfs_realtime_version = "2.0"
    header.incrementality = gtfs_realtime_pb2.FeedHeader.FULL_DATASET
    if timestamp is not None:
        header.timestamp = timestamp
    return header


def make_feed(
    vehicles: Sequence[tuple[str, int | None]],
    *,
    header_timestamp: int | None = 1667406730,
) -> gtfs_realtime_pb2.FeedMessage:
    """Feed with one entity per ``(vehicle_id, vehicle_timestamp)``."""
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.CopyFrom(make_header(header_timestamp))
    for vehicle_id, timestamp in vehicles:
        entity = feed.entity.add()
        entity.id = vehicle_id
        entity.vehicle.vehicle.id = vehicle_id
        entity.vehicle.vehicle.license_plate = "JLJ-160"
        entity.vehicle.trip.trip_id = "Talvikausi_Koulp_4_0_180300_183700_1"
        entity.vehicle.trip.route_id = "4"
        entity.vehicle.position.latitude = 62.8871765
        entity.vehicle.position.longitude = 27.6281261
        entity.vehicle.current_stop_sequence = 23
        if timestamp is not None:
            entity.vehicle.timestamp = timestamp
    return feed


def feed_message(
    vehicles: Sequence[tuple[str, int | None]],
    *,
    topic: str = FEED_TOPIC,
    header_timestamp: int | None = 1667406730,
    props: dict[str, str] | None = None,
    publish_time: int = 0,
    msg_id: str = "1:0:-1:0",
) -> FakeMessage:
    payload = make_feed(vehicles, header_timestamp=header_timestamp).SerializeToString()
    return FakeMessage(topic=topic, payload=payload, props=props or {}, publish_time=publish_time, msg_id=msg_id)


def decode(data: bytes) -> gtfs_realtime_pb2.FeedMessage:
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.ParseFromString(data)
    return feed
