"""Error taxonomy for servicefinder.

Brief:
  Every error the package raises or surfaces through a finder callback derives
  from ServiceFinderError, so callers can tell failures apart from the
  no-argument success notification with a single isinstance check.
"""

from __future__ import annotations

from typing import Optional


class ServiceFinderError(Exception):
    """Brief: Base class for all servicefinder errors."""


class NoNetworkError(ServiceFinderError):
    """Brief: No usable (IPv4) network interface was found at startup."""


class BindError(ServiceFinderError):
    """
    Brief: A UDP socket could not be created or bound.

    Inputs:
    - message: description
    - address: local address that failed to bind (optional)

    Outputs:
    - Exception instance
    """

    def __init__(self, message: str, address: Optional[str] = None) -> None:
        super().__init__(message)
        self.address = address


class GroupJoinError(ServiceFinderError):
    """Brief: Joining the mDNS multicast group failed on a socket."""


class SendError(ServiceFinderError):
    """Brief: Sending a query datagram failed on one socket."""


class TransportReadError(ServiceFinderError):
    """
    Brief: The transport hit a terminal error while reading datagrams.

    Inputs:
    - code: errno-style integer reported by the transport

    Outputs:
    - Exception instance carrying ``code``
    """

    def __init__(self, code: int, message: Optional[str] = None) -> None:
        super().__init__(message or f"socket read error (code={code})")
        self.code = code


class NoServicesFoundError(ServiceFinderError):
    """Brief: Informational; nothing answered within the initial-silence window."""


class MalformedPacketError(ServiceFinderError, ValueError):
    """Brief: A DNS datagram could not be decoded."""


class RecordInterpretationError(ServiceFinderError, ValueError):
    """Brief: A record was projected as a type it does not carry."""
