"""Data models for externally produced records."""

from apcsplitter.models._base import ApcBaseModel
from apcsplitter.models.registry import (
    Equipment,
    RegistrySnapshot,
    VehicleApcMapping,
    parse_registry_snapshot,
)

__all__ = [
    "ApcBaseModel",
    "Equipment",
    "RegistrySnapshot",
    "VehicleApcMapping",
    "parse_registry_snapshot",
]
