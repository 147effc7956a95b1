"""State layer.

The vehicle state cache and the accepted-vehicle registry are the only state
that survives from one inbound batch to the next. Both are rebuilt from broker
history at startup and shared by the two processing loops.
"""

from apcsplitter.state.cache import VehicleState, VehicleStateCache
from apcsplitter.state.registry import AcceptedVehicles

__all__ = ["AcceptedVehicles", "VehicleState", "VehicleStateCache"]
