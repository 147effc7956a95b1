"""The two long-running processing loops.

Both loops run as tasks on one asyncio event loop and only yield at broker
reads, sends and acknowledgements. Mutation of the cache and the registry for
one message always completes before the loop asks for the next one, so the
loops interleave at message boundaries only and need no locks.
"""

from __future__ import annotations

import asyncio
import logging

from apcsplitter.broker import Consumer, Producer, Reader
from apcsplitter.config import ProcessingConfig
from apcsplitter.exceptions import SplitterError
from apcsplitter.identity import FeedPublisherMap
from apcsplitter.ingestion.registry import apply_registry_snapshot
from apcsplitter.splitter import Splitter
from apcsplitter.state.cache import VehicleStateCache
from apcsplitter.state.registry import AcceptedVehicles
from apcsplitter.warmup import warm_up

_logger = logging.getLogger(__name__)


async def keep_reacting_to_gtfsrt(consumer: Consumer, producer: Producer, splitter: Splitter) -> None:
    """Receive, split, send and acknowledge vehicle-position batches forever.

    A :class:`~apcsplitter.exceptions.FanOutError` escapes before the
    acknowledgement, leaving the batch for redelivery after restart.
    """
    while True:
        message = await consumer.receive()
        _logger.debug(
            "Received GTFS Realtime message topic=%s event_timestamp=%s message_id=%s properties=%s",
            message.topic_name(),
            message.event_timestamp(),
            message.message_id(),
            dict(message.properties()),
        )
        sent = await splitter.process(message, producer.send)
        _logger.debug("Ack GTFS Realtime message message_id=%s sent=%d", message.message_id(), sent)
        await consumer.acknowledge(message)


async def keep_reading_vehicle_registry(
    reader: Reader,
    feed_map: FeedPublisherMap,
    accepted: AcceptedVehicles,
) -> None:
    """Apply every new registry snapshot forever."""
    while True:
        message = await reader.read_next()
        _logger.debug(
            "Received vehicle registry message topic=%s message_id=%s",
            message.topic_name(),
            message.message_id(),
        )
        apply_registry_snapshot(message, feed_map, accepted)


async def keep_processing_messages(
    *,
    producer: Producer,
    gtfsrt_consumer: Consumer,
    registry_reader: Reader,
    cache_reader: Reader,
    config: ProcessingConfig,
    cache: VehicleStateCache | None = None,
    accepted: AcceptedVehicles | None = None,
) -> None:
    """Warm up, then run both loops until the first one ends.

    The loops are expected to run forever, so either of them finishing is
    fatal: the other loop is cancelled and the error is raised to the caller.
    """
    cache = cache if cache is not None else VehicleStateCache()
    accepted = accepted if accepted is not None else AcceptedVehicles()

    await warm_up(
        cache,
        accepted,
        cache_reader,
        registry_reader,
        config.cache_window_seconds,
        config.feed_map,
    )

    splitter = Splitter(config.feed_map, cache, accepted)
    tasks = [
        asyncio.create_task(keep_reacting_to_gtfsrt(gtfsrt_consumer, producer, splitter), name="gtfsrt"),
        asyncio.create_task(
            keep_reading_vehicle_registry(registry_reader, config.feed_map, accepted),
            name="vehicle-registry",
        ),
    ]
    try:
        done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    finished = next(iter(done))
    exc = finished.exception()
    if exc is not None:
        raise exc
    raise SplitterError(f"Processing loop {finished.get_name()} stopped unexpectedly")
