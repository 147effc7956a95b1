"""Passenger-counter mapping (vehicle registry) records.

A registry message is a full snapshot: a JSON array with one record per
vehicle that carries some piece of equipment, for example::

    [
      {
        "operatorId": "6903",
        "vehicleShortName": "ELY 18",
        "equipment": [{"type": "PASSENGER_COUNTER", "id": "apc-123"}]
      }
    ]
"""

from __future__ import annotations

from pydantic import Field, TypeAdapter

from apcsplitter._constants import PASSENGER_COUNTER
from apcsplitter.models._base import ApcBaseModel


class Equipment(ApcBaseModel):
    """One piece of equipment installed in a vehicle."""

    type: str
    id: str | None = None


class VehicleApcMapping(ApcBaseModel):
    """Registry record for one vehicle.

    Parameters
    ----------
    operator_id : str or None
        Operator (transport company) id, ``operatorId`` on the wire.
    vehicle_short_name : str or None
        Short name of the vehicle within the operator, ``vehicleShortName``.
    equipment : list of Equipment
        Installed equipment.
    """

    operator_id: str | None = None
    vehicle_short_name: str | None = None
    equipment: list[Equipment] = Field(default_factory=list)

    @property
    def has_passenger_counter(self) -> bool:
        return any(item.type == PASSENGER_COUNTER for item in self.equipment)


RegistrySnapshot = list[VehicleApcMapping]

_SNAPSHOT_ADAPTER: TypeAdapter[RegistrySnapshot] = TypeAdapter(RegistrySnapshot)


def parse_registry_snapshot(data: bytes | str) -> RegistrySnapshot:
    """Parse a registry payload.

    Raises :class:`pydantic.ValidationError` when the payload is not a JSON
    array of registry records.
    """
    return _SNAPSHOT_ADAPTER.validate_json(data)
