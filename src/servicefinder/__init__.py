"""servicefinder package"""

from .errors import (
    BindError,
    GroupJoinError,
    MalformedPacketError,
    NoNetworkError,
    NoServicesFoundError,
    SendError,
    ServiceFinderError,
    TransportReadError,
)
from .finder import FinderState, ServiceFinder
from .registry import ServiceInstance

__all__ = [
    "BindError",
    "FinderState",
    "GroupJoinError",
    "MalformedPacketError",
    "NoNetworkError",
    "NoServicesFoundError",
    "SendError",
    "ServiceFinder",
    "ServiceFinderError",
    "ServiceInstance",
    "TransportReadError",
]
