from __future__ import annotations

import json
import logging

import pytest
from fakes import CACHE_TOPIC, FEED_MAP, REGISTRY_TOPIC, FakeMessage, FakeReader, feed_message

from apcsplitter.state.cache import VehicleState, VehicleStateCache
from apcsplitter.state.registry import AcceptedVehicles
from apcsplitter.warmup import (
    build_accepted_vehicles_from_history,
    build_cache_from_history,
    seek_to_window,
    warm_up,
)

NOW_MS = 1_700_000_000_000
WINDOW = 172800


def _clock() -> int:
    return NOW_MS


def _recent(offset_ms: int = 0) -> int:
    return NOW_MS - 1000 + offset_ms


def _cache_message(vehicle_id: str, timestamp: int, **kwargs) -> FakeMessage:
    return feed_message([(vehicle_id, timestamp)], topic=CACHE_TOPIC, publish_time=_recent(), **kwargs)


def _registry_message(*short_names: str, publish_time: int | None = None) -> FakeMessage:
    entries = [
        {"operatorId": "6903", "vehicleShortName": name, "equipment": [{"type": "PASSENGER_COUNTER", "id": name}]}
        for name in short_names
    ]
    return FakeMessage(
        topic=REGISTRY_TOPIC,
        payload=json.dumps(entries).encode("utf-8"),
        publish_time=_recent() if publish_time is None else publish_time,
    )


@pytest.mark.asyncio
async def test_seek_uses_window_when_history_is_recent() -> None:
    reader = FakeReader([_cache_message("1", 100)])

    await seek_to_window(reader, WINDOW, clock=_clock)

    assert reader.seeks == [NOW_MS - WINDOW * 1000]


@pytest.mark.asyncio
async def test_seek_extends_window_when_nothing_recent() -> None:
    old = _cache_message("1", 100)
    old.publish_time = NOW_MS - 3 * WINDOW * 1000
    reader = FakeReader([old])

    await seek_to_window(reader, WINDOW, clock=_clock)

    assert reader.seeks == [NOW_MS - WINDOW * 1000, NOW_MS - 7 * WINDOW * 1000]
    assert reader.has_next()


@pytest.mark.asyncio
async def test_cache_replay_admits_history() -> None:
    cache = VehicleStateCache()
    reader = FakeReader(
        [
            _cache_message("44517_160", 1667406732),
            _cache_message("44517_160", 1667406770),
            _cache_message("44517_161", 1667406700),
            _cache_message("44517_161", 1667406800, props={"isServicing": "false"}),
        ]
    )

    admitted = await build_cache_from_history(cache, reader, WINDOW, FEED_MAP, clock=_clock)

    assert admitted == 4
    assert cache.get("fi:kuopio:44517_160") == VehicleState(latest_timestamp=1667406770, is_servicing=True)
    assert cache.get("fi:kuopio:44517_161") == VehicleState(latest_timestamp=1667406800, is_servicing=False)


@pytest.mark.asyncio
async def test_cache_replay_uses_header_timestamp_when_entity_has_none() -> None:
    cache = VehicleStateCache()
    message = feed_message([("44517_160", None)], topic=CACHE_TOPIC, header_timestamp=1667406999, publish_time=_recent())

    await build_cache_from_history(cache, FakeReader([message]), WINDOW, FEED_MAP, clock=_clock)

    assert cache.get("fi:kuopio:44517_160") == VehicleState(latest_timestamp=1667406999, is_servicing=True)


@pytest.mark.asyncio
async def test_cache_replay_aborts_on_corrupt_message(caplog: pytest.LogCaptureFixture) -> None:
    cache = VehicleStateCache()
    valid_before = [_cache_message(f"v{index}", 1667406700 + index) for index in range(5)]
    corrupt = FakeMessage(topic=CACHE_TOPIC, payload=b"\xff\xff\xff\xff", publish_time=_recent())
    valid_after = [_cache_message(f"w{index}", 1667406800 + index) for index in range(2)]
    reader = FakeReader([*valid_before, corrupt, *valid_after])

    with caplog.at_level(logging.WARNING):
        admitted = await build_cache_from_history(cache, reader, WINDOW, FEED_MAP, clock=_clock)

    assert admitted == 5
    assert len(cache) == 5
    assert "fi:kuopio:w0" not in cache
    assert reader.reads == 6
    assert "Aborting cache replay" in caplog.text


@pytest.mark.asyncio
async def test_cache_replay_aborts_on_empty_batch() -> None:
    cache = VehicleStateCache()
    empty = feed_message([], topic=CACHE_TOPIC, publish_time=_recent())
    reader = FakeReader([_cache_message("1", 100), empty, _cache_message("2", 200)])

    assert await build_cache_from_history(cache, reader, WINDOW, FEED_MAP, clock=_clock) == 1
    assert "fi:kuopio:2" not in cache


@pytest.mark.asyncio
async def test_cache_replay_aborts_on_unknown_topic() -> None:
    cache = VehicleStateCache()
    unknown = feed_message([("1", 100)], topic="persistent://public/default/other", publish_time=_recent())
    reader = FakeReader([unknown, _cache_message("2", 200)])

    assert await build_cache_from_history(cache, reader, WINDOW, FEED_MAP, clock=_clock) == 0
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_cache_replay_swallows_unexpected_errors(caplog: pytest.LogCaptureFixture) -> None:
    class BrokenReader(FakeReader):
        async def read_next(self) -> FakeMessage:
            raise ConnectionError("broker went away")

    cache = VehicleStateCache()
    reader = BrokenReader([_cache_message("1", 100)])

    with caplog.at_level(logging.ERROR):
        admitted = await build_cache_from_history(cache, reader, WINDOW, FEED_MAP, clock=_clock)

    assert admitted == 0
    assert "Cache replay failed" in caplog.text


@pytest.mark.asyncio
async def test_registry_replay_applies_only_latest_snapshot() -> None:
    accepted = AcceptedVehicles()
    reader = FakeReader(
        [
            _registry_message("1", "2", "3"),
            FakeMessage(topic=REGISTRY_TOPIC, payload=b"not json", publish_time=_recent()),
            _registry_message("2"),
        ]
    )

    applied = await build_accepted_vehicles_from_history(accepted, reader, WINDOW, FEED_MAP, clock=_clock)

    assert applied is True
    assert accepted.snapshot() == frozenset({"fi:kuopio:6903_2"})
    assert accepted.generation == 1


@pytest.mark.asyncio
async def test_registry_replay_without_history() -> None:
    accepted = AcceptedVehicles()
    reader = FakeReader()

    assert await build_accepted_vehicles_from_history(accepted, reader, WINDOW, FEED_MAP, clock=_clock) is False
    assert len(reader.seeks) == 2
    assert len(accepted) == 0


@pytest.mark.asyncio
async def test_warm_up_restores_both_structures() -> None:
    cache = VehicleStateCache()
    accepted = AcceptedVehicles()
    cache_reader = FakeReader([_cache_message("44517_160", 1667406770)])
    registry_reader = FakeReader([_registry_message("ELY 18")])

    await warm_up(cache, accepted, cache_reader, registry_reader, WINDOW, FEED_MAP, clock=_clock)

    assert "fi:kuopio:44517_160" in cache
    assert "fi:kuopio:6903_ELY 18" in accepted
