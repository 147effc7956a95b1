"""Accepted-vehicle registry.

The set of vehicles currently carrying a passenger counter. Each registry
snapshot replaces the whole set: the new generation is built first and then
swapped in, so a reader never sees a half-built or transiently empty set.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from apcsplitter.identity import UniqueVehicleId


class AcceptedVehicles:
    def __init__(self, initial: Iterable[UniqueVehicleId] = ()) -> None:
        self._members: frozenset[UniqueVehicleId] = frozenset(initial)
        self._generation = 0

    def __contains__(self, key: object) -> bool:
        return key in self._members

    def __len__(self) -> int:
        return len(self._members)

    def __iter__(self) -> Iterator[UniqueVehicleId]:
        return iter(self._members)

    def __bool__(self) -> bool:
        return bool(self._members)

    @property
    def generation(self) -> int:
        """Number of snapshots applied so far."""
        return self._generation

    def snapshot(self) -> frozenset[UniqueVehicleId]:
        return self._members

    def replace(self, members: Iterable[UniqueVehicleId]) -> None:
        """Replace the whole membership with *members*."""
        self._members = frozenset(members)
        self._generation += 1
