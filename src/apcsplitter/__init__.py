"""apcsplitter - split GTFS Realtime vehicle positions for APC-equipped vehicles."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("apcsplitter")
except PackageNotFoundError:
    __version__ = "0+local"
from apcsplitter.broker import BrokerMessage, Consumer, OutboundMessage, Producer, Reader
from apcsplitter.config import HealthCheckConfig, ProcessingConfig, PulsarConfig, SplitterConfig
from apcsplitter.exceptions import BrokerError, FanOutError, SplitterConfigError, SplitterError
from apcsplitter.splitter import Splitter
from apcsplitter.state import AcceptedVehicles, VehicleState, VehicleStateCache

__all__ = [
    "__version__",
    "AcceptedVehicles",
    "BrokerError",
    "BrokerMessage",
    "Consumer",
    "FanOutError",
    "HealthCheckConfig",
    "OutboundMessage",
    "ProcessingConfig",
    "Producer",
    "PulsarConfig",
    "Reader",
    "Splitter",
    "SplitterConfig",
    "SplitterConfigError",
    "SplitterError",
    "VehicleState",
    "VehicleStateCache",
]
