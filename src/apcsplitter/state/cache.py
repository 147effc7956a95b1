"""Per-vehicle state cache.

Holds, for every vehicle ever forwarded, the latest accepted timestamp and
whether the vehicle is currently servicing. :meth:`VehicleStateCache.admit` is
the only way a timestamp gets written.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from apcsplitter.identity import UniqueVehicleId
from apcsplitter.state.policy import should_accept_update

_logger = logging.getLogger(__name__)


class VehicleState(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    latest_timestamp: int
    is_servicing: bool


class VehicleStateCache:
    """In-memory map from unique vehicle id to :class:`VehicleState`.

    Entries are never removed. A vehicle that disappears from the feed is
    marked as not servicing instead, so that its reappearance is seen as a
    transition back to servicing.
    """

    def __init__(self) -> None:
        self._vehicles: dict[UniqueVehicleId, VehicleState] = {}

    def __len__(self) -> int:
        return len(self._vehicles)

    def __contains__(self, key: object) -> bool:
        return key in self._vehicles

    def get(self, key: UniqueVehicleId) -> VehicleState | None:
        return self._vehicles.get(key)

    def items(self) -> list[tuple[UniqueVehicleId, VehicleState]]:
        """Snapshot of all entries, safe to iterate while mutating the cache."""
        return list(self._vehicles.items())

    def servicing_ids(self) -> list[UniqueVehicleId]:
        return [key for key, state in self._vehicles.items() if state.is_servicing]

    def admit(self, key: UniqueVehicleId, timestamp: int, *, not_servicing: bool) -> bool:
        """Apply an update for *key* if it is newer than what is stored.

        Returns whether the update was applied.
        """
        cached = self._vehicles.get(key)
        is_servicing = not not_servicing

        if not should_accept_update(
            cached_timestamp=cached.latest_timestamp if cached is not None else None,
            incoming_timestamp=timestamp,
        ):
            assert cached is not None  # noqa: S101
            _logger.debug(
                "Rejected out-of-order or duplicate update vehicle=%s timestamp=%s cached_timestamp=%s",
                key,
                timestamp,
                cached.latest_timestamp,
            )
            return False

        self._vehicles[key] = VehicleState(latest_timestamp=timestamp, is_servicing=is_servicing)
        if cached is not None and cached.is_servicing != is_servicing:
            _logger.info(
                "Vehicle servicing state changed vehicle=%s is_servicing=%s timestamp=%s",
                key,
                is_servicing,
                timestamp,
            )
        return True

    def mark_not_servicing(self, key: UniqueVehicleId) -> VehicleState | None:
        """Flip *key* to not servicing, keeping its timestamp.

        Returns the previous state, ``None`` if the vehicle is unknown.
        """
        cached = self._vehicles.get(key)
        if cached is None:
            return None
        self._vehicles[key] = cached.model_copy(update={"is_servicing": False})
        if cached.is_servicing:
            _logger.info(
                "Vehicle servicing state changed vehicle=%s is_servicing=False timestamp=%s",
                key,
                cached.latest_timestamp,
            )
        return cached
