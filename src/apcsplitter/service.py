"""Process bootstrap and lifecycle.

Usage::

    async with SplitterService(config) as service:
        await service.run()

``run`` never returns normally. Any exception reaching :func:`main` ends the
process with a non-zero exit code, and external supervision is expected to
restart it; warm-up then rebuilds state from broker history.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from collections.abc import Callable
from typing import Any

from apcsplitter._constants import SERVICE_NAME
from apcsplitter._pulsar import PulsarBroker
from apcsplitter._redact import redact_for_log
from apcsplitter.config import PulsarConfig, SplitterConfig
from apcsplitter.exceptions import SplitterConfigError, SplitterError
from apcsplitter.health import HealthCheckServer
from apcsplitter.processing import keep_processing_messages

_logger = logging.getLogger(__name__)

_SIGNAL_EXIT_CODES: dict[signal.Signals, int] = {
    signal.SIGINT: 130,
    signal.SIGQUIT: 131,
    signal.SIGTERM: 143,
}

BrokerFactory = Callable[..., Any]


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger. The level defaults to ``LOG_LEVEL`` or INFO."""
    resolved = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )


class SplitterService:
    """Owns the health check server and all broker resources."""

    def __init__(
        self,
        config: SplitterConfig,
        *,
        broker_factory: BrokerFactory = PulsarBroker,
    ) -> None:
        self._config = config
        self._broker_factory = broker_factory
        self._health: HealthCheckServer | None = None
        self._broker: Any = None
        self._producer: Any = None
        self._gtfsrt_consumer: Any = None
        self._registry_reader: Any = None
        self._cache_reader: Any = None

    @property
    def health(self) -> HealthCheckServer | None:
        return self._health

    async def __aenter__(self) -> SplitterService:
        try:
            await self._start()
        except BaseException:
            await self._stop()
            raise
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self._stop()

    async def _start(self) -> None:
        loop = asyncio.get_running_loop()
        _logger.info("Create health check server")
        self._health = HealthCheckServer(self._config.health_check)
        await self._health.start()
        _logger.info("Create Pulsar client")
        self._broker = self._broker_factory(self._config.pulsar, loop=loop)
        _logger.info("Create Pulsar producer")
        self._producer = await self._broker.create_producer()
        _logger.info("Create GTFS Realtime Pulsar consumer")
        self._gtfsrt_consumer = await self._broker.create_gtfsrt_consumer()
        _logger.info("Create vehicle registry Pulsar reader")
        self._registry_reader = await self._broker.create_vehicle_registry_reader()
        _logger.info("Create cache Pulsar reader")
        self._cache_reader = await self._broker.create_cache_reader()
        _logger.info("Set health check status to OK")
        self._health.set_ok(True)

    async def run(self) -> None:
        _logger.info("Keep processing messages")
        await keep_processing_messages(
            producer=self._producer,
            gtfsrt_consumer=self._gtfsrt_consumer,
            registry_reader=self._registry_reader,
            cache_reader=self._cache_reader,
            config=self._config.processing,
        )

    async def _stop(self) -> None:
        if self._health is not None:
            _logger.info("Set health checks to fail")
            self._health.set_ok(False)
        await self._close_quietly("vehicle registry Pulsar reader", self._registry_reader, "close")
        await self._close_quietly("cache Pulsar reader", self._cache_reader, "close")
        await self._close_quietly("GTFS Realtime Pulsar consumer", self._gtfsrt_consumer, "close")
        await self._close_quietly("Pulsar producer", self._producer, "flush")
        await self._close_quietly("Pulsar producer", self._producer, "close")
        await self._close_quietly("Pulsar client", self._broker, "close")
        await self._close_quietly("health check server", self._health, "close")
        self._registry_reader = None
        self._cache_reader = None
        self._gtfsrt_consumer = None
        self._producer = None
        self._broker = None
        self._health = None

    @staticmethod
    async def _close_quietly(name: str, resource: Any, method: str) -> None:
        if resource is None:
            return
        try:
            _logger.info("%s %s", method.capitalize(), name)
            await getattr(resource, method)()
        except Exception:
            action = "flushing" if method == "flush" else "closing"
            _logger.error("Something went wrong when %s %s", action, name, exc_info=True)


async def run_service(config: SplitterConfig, *, broker_factory: BrokerFactory = PulsarBroker) -> int:
    """Run until a fatal error or a termination signal. Returns the exit code."""
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    received: list[signal.Signals] = []

    def on_signal(sig: signal.Signals) -> None:
        _logger.info("Received signal %s", sig.name)
        received.append(sig)
        if main_task is not None:
            main_task.cancel()

    installed: list[signal.Signals] = []
    for sig in _SIGNAL_EXIT_CODES:
        try:
            loop.add_signal_handler(sig, on_signal, sig)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            _logger.debug("Signal handler not supported for %s", sig.name)

    try:
        async with SplitterService(config, broker_factory=broker_factory) as service:
            await service.run()
    except asyncio.CancelledError:
        if not received:
            raise
        return _SIGNAL_EXIT_CODES[received[0]]
    except SplitterError:
        _logger.critical("Fatal processing error, exiting", exc_info=True)
        return 1
    except Exception:
        _logger.critical("Unexpected error, exiting", exc_info=True)
        return 1
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
    # keep_processing_messages only ends by raising.
    return 1


def _describe_config(config: SplitterConfig) -> dict[str, Any]:
    pulsar_config: PulsarConfig = config.pulsar
    return {
        "feed_map": dict(config.processing.feed_map),
        "cache_window_seconds": config.processing.cache_window_seconds,
        "pulsar": redact_for_log(
            {
                "service_url": pulsar_config.service_url,
                "producer_topic": pulsar_config.producer_topic,
                "gtfsrt_consumer_topics_pattern": pulsar_config.gtfsrt_consumer_topics_pattern,
                "cache_reader_topic": pulsar_config.cache_reader_topic,
                "vehicle_reader_topic": pulsar_config.vehicle_reader_topic,
                "private_key": pulsar_config.oauth2.private_key if pulsar_config.oauth2 else None,
            }
        ),
        "health_check_port": config.health_check.port,
    }


def main() -> int:
    configure_logging()
    _logger.info("Start service %s", SERVICE_NAME)
    _logger.info("Read configuration")
    try:
        config = SplitterConfig.from_env()
    except SplitterConfigError:
        _logger.critical("Invalid configuration", exc_info=True)
        return 1
    _logger.debug("Configuration %s", _describe_config(config))
    exit_code = asyncio.run(run_service(config))
    _logger.info("Exit process exit_code=%d", exit_code)
    return exit_code
