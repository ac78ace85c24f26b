"""Typed record payloads and pure projections over decoded DNS records.

Brief:
  Decoded resource records carry one of the payload classes below as their
  ``data``; together they form a tagged variant over PTR, SRV, TXT, A and
  anything else (UnknownData). The ``as_*`` helpers are side-effect-free views
  that refuse records of the wrong type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Tuple, Union

from dnslib import QTYPE

from ..errors import RecordInterpretationError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .packet import DNSRecord

QTYPE_A = 1
QTYPE_PTR = 12
QTYPE_TXT = 16
QTYPE_SRV = 33

CLASS_IN = 1


@dataclass(frozen=True)
class PtrData:
    """Brief: PTR payload; ``target`` is the pointed-to name."""

    target: str


@dataclass(frozen=True)
class SrvData:
    """
    Brief: SRV payload.

    Inputs:
      - priority: SRV priority (16-bit).
      - weight: SRV weight (16-bit).
      - port: service port (16-bit).
      - target: host name offering the service.

    Outputs:
      - SrvData instance.
    """

    priority: int
    weight: int
    port: int
    target: str


@dataclass(frozen=True)
class TxtData:
    """Brief: TXT payload kept as the raw list of character-strings."""

    strings: Tuple[bytes, ...]


@dataclass(frozen=True)
class AData:
    """Brief: A payload as a dotted-quad string."""

    address: str


@dataclass(frozen=True)
class UnknownData:
    """Brief: Opaque payload for record types the finder does not interpret."""

    rtype: int
    raw: bytes


RecordData = Union[PtrData, SrvData, TxtData, AData, UnknownData]


def type_name(rtype: int) -> str:
    """Brief: Human-readable label for a numeric record type (e.g. 12 -> 'PTR')."""
    return str(QTYPE.get(rtype, f"TYPE{rtype}"))


def _expect(rec: "DNSRecord", rtype: int, payload_cls: type):
    if rec.rtype != rtype or not isinstance(rec.data, payload_cls):
        raise RecordInterpretationError(
            f"record {rec.name!r} is {type_name(rec.rtype)}, not {type_name(rtype)}"
        )
    return rec.data


def as_ptr_target(rec: "DNSRecord") -> str:
    """
    Brief: Project a PTR record onto its target name.

    Inputs:
      - rec: decoded DNSRecord.

    Outputs:
      - str: the PTR target.

    Raises:
      - RecordInterpretationError: when rec is not a PTR answer.
    """
    return _expect(rec, QTYPE_PTR, PtrData).target


def as_srv(rec: "DNSRecord") -> SrvData:
    """Brief: Project an SRV record onto its SrvData payload."""
    return _expect(rec, QTYPE_SRV, SrvData)


def as_txt_list(rec: "DNSRecord") -> List[bytes]:
    """Brief: Project a TXT record onto its list of raw strings."""
    return list(_expect(rec, QTYPE_TXT, TxtData).strings)


def as_address(rec: "DNSRecord") -> str:
    """Brief: Project an A record onto its dotted-quad address."""
    return _expect(rec, QTYPE_A, AData).address
