"""Service configuration read from environment variables."""

from __future__ import annotations

import dataclasses
import json
import os
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from apcsplitter._constants import DEFAULT_CACHE_WINDOW_SECONDS
from apcsplitter.exceptions import SplitterConfigError

_COMPRESSION_TYPES: frozenset[str] = frozenset({"Zlib", "LZ4", "ZSTD", "SNAPPY"})


def _get_required(env: Mapping[str, str], key: str) -> str:
    value = env.get(key)
    if value is None:
        raise SplitterConfigError(f"{key} must be defined")
    return value


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    value = env.get(key)
    if value is None:
        return default
    if value not in {"true", "false"}:
        raise SplitterConfigError(f'{key} must be either "false" or "true"')
    return value == "true"


def _get_positive_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError as exc:
        raise SplitterConfigError(f"{key} must be an integer, got {value!r}") from exc
    if parsed <= 0:
        raise SplitterConfigError(f"{key} must be positive, got {parsed}")
    return parsed


def parse_feed_map(raw: str, *, key: str = "FEED_MAP") -> Mapping[str, str]:
    """Parse a JSON array of ``[topic, feedPublisherId]`` pairs.

    Example::

        [["persistent://tenant/ns/fi-kuopio-vp", "fi:kuopio"]]
    """
    try:
        pairs = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SplitterConfigError(f"{key} must be valid JSON") from exc
    if not isinstance(pairs, list):
        raise SplitterConfigError(f"{key} must be an array")
    if not pairs:
        raise SplitterConfigError(f"{key} must have at least one array entry in the form of [string, string]")

    feed_map: dict[str, str] = {}
    for pair in pairs:
        if not (isinstance(pair, list) and len(pair) == 2 and all(isinstance(part, str) for part in pair)):
            raise SplitterConfigError(f"{key} must contain only strings in the form of [string, string]")
        topic, feed_publisher_id = pair
        if topic in feed_map:
            raise SplitterConfigError(f"{key} must have each key only once, duplicate {topic!r}")
        feed_map[topic] = feed_publisher_id
    return MappingProxyType(feed_map)


@dataclasses.dataclass(frozen=True)
class ProcessingConfig:
    """Core processing settings.

    Parameters
    ----------
    feed_map : Mapping[str, str]
        Broker topic name to feed publisher id. Must cover the GTFS Realtime
        topics, the registry topic and the splitter's own output topic.
    cache_window_seconds : int
        How far back warm-up replays history. Defaults to two days.
    """

    feed_map: Mapping[str, str]
    cache_window_seconds: int = DEFAULT_CACHE_WINDOW_SECONDS

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> ProcessingConfig:
        env = os.environ if env is None else env
        config_kwargs: dict[str, Any] = {}
        if "feed_map" not in overrides:
            config_kwargs["feed_map"] = parse_feed_map(_get_required(env, "FEED_MAP"))
        if "cache_window_seconds" not in overrides:
            config_kwargs["cache_window_seconds"] = _get_positive_int(
                env, "CACHE_WINDOW_IN_SECONDS", DEFAULT_CACHE_WINDOW_SECONDS
            )
        config_kwargs.update(overrides)
        return cls(**config_kwargs)


@dataclasses.dataclass(frozen=True)
class PulsarOauth2Config:
    issuer_url: str
    private_key: str
    audience: str

    def to_auth_params(self) -> str:
        """JSON parameter string for ``pulsar.AuthenticationOauth2``."""
        return json.dumps(
            {
                "type": "client_credentials",
                "issuer_url": self.issuer_url,
                "private_key": self.private_key,
                "audience": self.audience,
            }
        )


@dataclasses.dataclass(frozen=True)
class PulsarConfig:
    """Pulsar connection, producer, consumer and reader settings.

    ``oauth2`` is ``None`` when no OAuth2 variables are set.
    """

    service_url: str
    producer_topic: str
    gtfsrt_consumer_topics_pattern: str
    gtfsrt_subscription: str
    cache_reader_topic: str
    cache_reader_name: str
    vehicle_reader_topic: str
    vehicle_reader_name: str
    oauth2: PulsarOauth2Config | None = None
    tls_validate_hostname: bool = True
    block_if_queue_full: bool = True
    compression_type: str = "ZSTD"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> PulsarConfig:
        env = os.environ if env is None else env

        oauth2_keys = ("PULSAR_OAUTH2_ISSUER_URL", "PULSAR_OAUTH2_KEY_PATH", "PULSAR_OAUTH2_AUDIENCE")
        present = [key for key in oauth2_keys if env.get(key) is not None]
        oauth2: PulsarOauth2Config | None = None
        if present:
            if len(present) != len(oauth2_keys):
                missing = sorted(set(oauth2_keys) - set(present))
                raise SplitterConfigError(f"Incomplete OAuth2 configuration, missing {', '.join(missing)}")
            oauth2 = PulsarOauth2Config(
                issuer_url=env["PULSAR_OAUTH2_ISSUER_URL"],
                private_key=env["PULSAR_OAUTH2_KEY_PATH"],
                audience=env["PULSAR_OAUTH2_AUDIENCE"],
            )

        compression_type = env.get("PULSAR_COMPRESSION_TYPE", "ZSTD")
        if compression_type not in _COMPRESSION_TYPES:
            raise SplitterConfigError(
                "If defined, PULSAR_COMPRESSION_TYPE must be one of 'Zlib', 'LZ4', 'ZSTD' or 'SNAPPY'. "
                "Default is 'ZSTD'."
            )

        return cls(
            service_url=_get_required(env, "PULSAR_SERVICE_URL"),
            producer_topic=_get_required(env, "PULSAR_PRODUCER_TOPIC"),
            gtfsrt_consumer_topics_pattern=_get_required(env, "PULSAR_GTFSRT_CONSUMER_TOPICS_PATTERN"),
            gtfsrt_subscription=_get_required(env, "PULSAR_GTFSRT_SUBSCRIPTION"),
            cache_reader_topic=_get_required(env, "PULSAR_CACHE_READER_TOPIC"),
            cache_reader_name=_get_required(env, "PULSAR_CACHE_READER_NAME"),
            vehicle_reader_topic=_get_required(env, "PULSAR_VEHICLE_READER_TOPIC"),
            vehicle_reader_name=_get_required(env, "PULSAR_VEHICLE_READER_NAME"),
            oauth2=oauth2,
            tls_validate_hostname=_get_bool(env, "PULSAR_TLS_VALIDATE_HOSTNAME", True),
            block_if_queue_full=_get_bool(env, "PULSAR_BLOCK_IF_QUEUE_FULL", True),
            compression_type=compression_type,
        )


@dataclasses.dataclass(frozen=True)
class HealthCheckConfig:
    port: int = 8080

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> HealthCheckConfig:
        env = os.environ if env is None else env
        return cls(port=_get_positive_int(env, "HEALTH_CHECK_PORT", 8080))


@dataclasses.dataclass(frozen=True)
class SplitterConfig:
    processing: ProcessingConfig
    pulsar: PulsarConfig
    health_check: HealthCheckConfig = dataclasses.field(default_factory=HealthCheckConfig)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> SplitterConfig:
        """Create the whole configuration from environment variables.

        Raises
        ------
        SplitterConfigError
            If a required variable is missing or a value is invalid.
        """
        env = os.environ if env is None else env
        return cls(
            processing=ProcessingConfig.from_env(env),
            pulsar=PulsarConfig.from_env(env),
            health_check=HealthCheckConfig.from_env(env),
        )
