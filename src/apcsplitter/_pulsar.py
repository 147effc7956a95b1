"""Apache Pulsar adapter.

``pulsar-client`` exposes a blocking API plus callback-based asynchronous
sends running on the client's own threads. Blocking calls are pushed to the
event loop's default executor, and send callbacks are bridged back onto the
loop with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import pulsar

from apcsplitter.broker import OutboundMessage
from apcsplitter.config import PulsarConfig
from apcsplitter.exceptions import BrokerError

_logger = logging.getLogger(__name__)

_COMPRESSION_TYPES: dict[str, Any] = {
    "Zlib": pulsar.CompressionType.ZLib,
    "LZ4": pulsar.CompressionType.LZ4,
    "ZSTD": pulsar.CompressionType.ZSTD,
    "SNAPPY": pulsar.CompressionType.SNAPPY,
}


class PulsarProducer:
    def __init__(self, producer: pulsar.Producer, *, loop: asyncio.AbstractEventLoop) -> None:
        self._producer = producer
        self._loop = loop

    def send(self, message: OutboundMessage) -> asyncio.Future[Any]:
        future: asyncio.Future[Any] = self._loop.create_future()
        topic = self._producer.topic()

        def on_sent(result: Any, message_id: Any) -> None:
            self._loop.call_soon_threadsafe(_resolve_send, future, result, message_id, topic)

        self._producer.send_async(message.data, on_sent, properties=message.properties)
        return future

    async def flush(self) -> None:
        await self._loop.run_in_executor(None, self._producer.flush)

    async def close(self) -> None:
        await self._loop.run_in_executor(None, self._producer.close)


def _resolve_send(future: asyncio.Future[Any], result: Any, message_id: Any, topic: str) -> None:
    if future.done():
        return
    if result == pulsar.Result.Ok:
        future.set_result(message_id)
    else:
        future.set_exception(BrokerError(f"Send failed: {result}", topic=topic))


class PulsarConsumer:
    def __init__(self, consumer: pulsar.Consumer, *, loop: asyncio.AbstractEventLoop) -> None:
        self._consumer = consumer
        self._loop = loop

    async def receive(self) -> pulsar.Message:
        return await self._loop.run_in_executor(None, self._consumer.receive)

    async def acknowledge(self, message: pulsar.Message) -> None:
        await self._loop.run_in_executor(None, self._consumer.acknowledge, message)

    async def close(self) -> None:
        await self._loop.run_in_executor(None, self._consumer.close)


class PulsarReader:
    def __init__(self, reader: pulsar.Reader, *, loop: asyncio.AbstractEventLoop) -> None:
        self._reader = reader
        self._loop = loop

    async def read_next(self) -> pulsar.Message:
        return await self._loop.run_in_executor(None, self._reader.read_next)

    def has_next(self) -> bool:
        return bool(self._reader.has_message_available())

    async def seek_to_timestamp(self, timestamp_ms: int) -> None:
        await self._loop.run_in_executor(None, self._reader.seek, timestamp_ms)

    async def close(self) -> None:
        await self._loop.run_in_executor(None, self._reader.close)


class PulsarBroker:
    """Owns the Pulsar client and creates the producer, consumer and readers."""

    def __init__(self, config: PulsarConfig, *, loop: asyncio.AbstractEventLoop) -> None:
        self._config = config
        self._loop = loop
        authentication = None
        if config.oauth2 is not None:
            authentication = pulsar.AuthenticationOauth2(config.oauth2.to_auth_params())
        self._client = pulsar.Client(
            config.service_url,
            authentication=authentication,
            tls_validate_hostname=config.tls_validate_hostname,
            logger=logging.getLogger("pulsar"),
        )

    async def create_producer(self) -> PulsarProducer:
        producer = await self._loop.run_in_executor(
            None,
            lambda: self._client.create_producer(
                self._config.producer_topic,
                block_if_queue_full=self._config.block_if_queue_full,
                compression_type=_COMPRESSION_TYPES[self._config.compression_type],
            ),
        )
        return PulsarProducer(producer, loop=self._loop)

    async def create_gtfsrt_consumer(self) -> PulsarConsumer:
        consumer = await self._loop.run_in_executor(
            None,
            lambda: self._client.subscribe(
                re.compile(self._config.gtfsrt_consumer_topics_pattern),
                self._config.gtfsrt_subscription,
                consumer_type=pulsar.ConsumerType.Exclusive,
                initial_position=pulsar.InitialPosition.Earliest,
            ),
        )
        return PulsarConsumer(consumer, loop=self._loop)

    async def create_reader(self, topic: str, reader_name: str) -> PulsarReader:
        reader = await self._loop.run_in_executor(
            None,
            lambda: self._client.create_reader(
                topic,
                pulsar.MessageId.earliest,
                reader_name=reader_name,
            ),
        )
        return PulsarReader(reader, loop=self._loop)

    async def create_cache_reader(self) -> PulsarReader:
        return await self.create_reader(self._config.cache_reader_topic, self._config.cache_reader_name)

    async def create_vehicle_registry_reader(self) -> PulsarReader:
        return await self.create_reader(self._config.vehicle_reader_topic, self._config.vehicle_reader_name)

    async def close(self) -> None:
        await self._loop.run_in_executor(None, self._client.close)
