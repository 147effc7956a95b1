"""Broker-facing interfaces.

The processing core only talks to the broker through these structural
protocols. The production implementation lives in :mod:`apcsplitter._pulsar`;
tests pass in-memory doubles.
"""

from __future__ import annotations

from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol


class BrokerMessage(Protocol):
    """A received message. Method names follow ``pulsar.Message``."""

    def topic_name(self) -> str: ...

    def data(self) -> bytes: ...

    def properties(self) -> Mapping[str, str]: ...

    def event_timestamp(self) -> int: ...

    def message_id(self) -> Any: ...


@dataclass(frozen=True)
class OutboundMessage:
    """A message handed to :meth:`Producer.send`."""

    data: bytes
    properties: dict[str, str] = field(default_factory=dict)


class Consumer(Protocol):
    async def receive(self) -> BrokerMessage: ...

    async def acknowledge(self, message: BrokerMessage) -> None: ...


class Reader(Protocol):
    async def read_next(self) -> BrokerMessage: ...

    def has_next(self) -> bool: ...

    async def seek_to_timestamp(self, timestamp_ms: int) -> None: ...


class Producer(Protocol):
    def send(self, message: OutboundMessage) -> Awaitable[Any]:
        """Issue a send and return its completion handle.

        The handle resolves to the broker message id. Issuing does not wait for
        the broker, so several sends can be in flight at once.
        """
        ...
