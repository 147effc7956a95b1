"""Custom exception hierarchy for apcsplitter."""

from __future__ import annotations


class SplitterError(Exception):
    """Base exception for all apcsplitter errors."""


class SplitterConfigError(SplitterError):
    """Invalid or missing configuration."""


class BrokerError(SplitterError):
    """Broker-level failure (send rejected, reader or consumer failure)."""

    def __init__(
        self,
        message: str,
        *,
        topic: str = "",
    ) -> None:
        self.topic = topic
        super().__init__(message)


class FanOutError(SplitterError):
    """At least one outbound send of a batch failed or was not acknowledged.

    This is fatal for the whole process. The inbound message is left
    unacknowledged so that the broker redelivers it after a restart, and the
    warm-up replay re-derives consistent state.
    """

    def __init__(
        self,
        message: str,
        *,
        origin_message_id: str = "",
        failed: int = 0,
    ) -> None:
        self.origin_message_id = origin_message_id
        self.failed = failed
        super().__init__(message)
