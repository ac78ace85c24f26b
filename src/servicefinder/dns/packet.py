"""DNS wire-format codec for mDNS / DNS-SD traffic.

Brief:
  Encodes outgoing query packets and decodes incoming datagrams into a
  structured DNSPacket (header plus question/answer/authority/additional
  sections). Only PTR, SRV, TXT and A payloads are interpreted; other record
  types are carried through as UnknownData.

Inputs:
  - DNSPacket instances (encode) or raw datagram bytes (decode)

Outputs:
  - bytes (encode) or DNSPacket (decode)

Example:
    >>> pkt = DNSPacket.query("_http._tcp.local")
    >>> DNSPacket.parse(pkt.pack()).questions[0].name
    '_http._tcp.local'
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import dnslib
from dnslib import A, PTR, RD, RR, SRV, TXT, DNSError, DNSHeader, DNSQuestion
from dnslib.bimap import BimapError
from dnslib.buffer import BufferError as DNSBufferError
from dnslib.label import DNSBuffer, DNSLabel, DNSLabelError

from ..errors import MalformedPacketError
from .records import (
    CLASS_IN,
    QTYPE_A,
    QTYPE_PTR,
    QTYPE_SRV,
    QTYPE_TXT,
    AData,
    PtrData,
    RecordData,
    SrvData,
    TxtData,
    UnknownData,
    type_name,
)

MAX_LABEL_LENGTH = 63
MAX_NAME_LENGTH = 255

# Top bit of the class field is the mDNS cache-flush (answers) or
# unicast-response (questions) flag, not part of the class.
_CLASS_MASK = 0x7FFF

_RDATA_TYPES = {QTYPE_PTR: PTR, QTYPE_SRV: SRV, QTYPE_TXT: TXT, QTYPE_A: A}

SECTIONS = ("questions", "answers", "authorities", "additionals")
_SECTION_ALIASES = {
    "qd": "questions",
    "an": "answers",
    "ns": "authorities",
    "ar": "additionals",
}


@dataclass(frozen=True)
class DNSRecord:
    """
    Brief: One question or resource record.

    Inputs:
      - name: dot-separated owner name without trailing dot ('' for the root).
      - rtype: numeric record type.
      - rclass: numeric class (IN=1).
      - ttl: seconds; None for questions.
      - data: typed payload (see dns.records); None for questions.

    Outputs:
      - DNSRecord instance.
    """

    name: str
    rtype: int
    rclass: int = CLASS_IN
    ttl: Optional[int] = None
    data: Optional[RecordData] = None

    @property
    def is_question(self) -> bool:
        return self.ttl is None and self.data is None

    def __str__(self) -> str:
        if self.is_question:
            return f"{self.name} {type_name(self.rtype)}?"
        return f"{self.name} {self.ttl} {type_name(self.rtype)} {self.data}"


@dataclass
class DNSPacket:
    """
    Brief: A DNS message: header id/flags and four ordered record sections.

    Inputs:
      - id: 16-bit message id (0 for mDNS queries).
      - flags: 16-bit header flags (0 is a standard query).
      - questions/answers/authorities/additionals: record lists.

    Outputs:
      - DNSPacket instance; counts are derived from the lists when packed.
    """

    id: int = 0
    flags: int = 0
    questions: List[DNSRecord] = field(default_factory=list)
    answers: List[DNSRecord] = field(default_factory=list)
    authorities: List[DNSRecord] = field(default_factory=list)
    additionals: List[DNSRecord] = field(default_factory=list)

    @classmethod
    def query(cls, name: str, rtype: int = QTYPE_PTR) -> "DNSPacket":
        """Brief: Build a single-question standard query packet."""
        return cls(questions=[DNSRecord(name, rtype, CLASS_IN)])

    @classmethod
    def parse(cls, data: bytes) -> "DNSPacket":
        return decode_packet(data)

    def pack(self) -> bytes:
        return encode_packet(self)

    def push(self, section: str, record: DNSRecord) -> None:
        """Brief: Append a record to a section ('answers' or alias 'an', ...)."""
        getattr(self, _section_name(section)).append(record)

    def records(self, section: str, rtype: Optional[int] = None) -> Iterator[DNSRecord]:
        """
        Brief: Iterate one section, optionally keeping only one record type.

        Inputs:
          - section: section name or alias ('qd', 'an', 'ns', 'ar').
          - rtype: optional numeric type filter.

        Outputs:
          - Iterator[DNSRecord]
        """
        for rec in getattr(self, _section_name(section)):
            if rtype is None or rec.rtype == rtype:
                yield rec

    def resource_records(self) -> Iterator[DNSRecord]:
        """Brief: Answers, then authorities, then additionals."""
        for section in SECTIONS[1:]:
            yield from getattr(self, section)


def _section_name(section: str) -> str:
    name = _SECTION_ALIASES.get(section, section)
    if name not in SECTIONS:
        raise ValueError(f"unknown packet section {section!r}")
    return name


# --- Encoding ---------------------------------------------------------------


def _name_labels(name: str) -> Tuple[bytes, ...]:
    stripped = name[:-1] if name.endswith(".") else name
    if not stripped:
        return ()
    labels = []
    wire_len = 1
    for label in stripped.split("."):
        if not label:
            raise ValueError(f"empty label in name {name!r}")
        if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in label):
            raise ValueError(f"control character in name {name!r}")
        raw = label.encode("utf-8")
        if len(raw) > MAX_LABEL_LENGTH:
            raise ValueError(f"label {label!r} longer than {MAX_LABEL_LENGTH} bytes")
        wire_len += len(raw) + 1
        labels.append(raw)
    if wire_len > MAX_NAME_LENGTH:
        raise ValueError(f"name {name!r} longer than {MAX_NAME_LENGTH} bytes")
    return tuple(labels)


def encode_name(name: str) -> bytes:
    """
    Brief: Encode a dotted name as length-prefixed labels plus a zero byte.

    Inputs:
      - name: dotted name; a single trailing dot is accepted and ignored.

    Outputs:
      - bytes: uncompressed wire-format name.

    Raises:
      - ValueError: empty inner label, label over 63 bytes, name over 255
        bytes, or control characters. These are caller bugs.
    """
    out = bytearray()
    for raw in _name_labels(name):
        out.append(len(raw))
        out += raw
    out.append(0)
    return bytes(out)


def _wire_name(name: str) -> DNSLabel:
    # Labels stay raw UTF-8; a plain str would be IDNA-encoded by dnslib.
    return DNSLabel(_name_labels(name))


def _wire_rdata(data: RecordData) -> RD:
    if isinstance(data, PtrData):
        return PTR(_wire_name(data.target))
    if isinstance(data, SrvData):
        return SRV(data.priority, data.weight, data.port, _wire_name(data.target))
    if isinstance(data, TxtData):
        if any(len(s) > 255 for s in data.strings):
            raise ValueError("TXT character-string longer than 255 bytes")
        return TXT(list(data.strings) or [b""])
    if isinstance(data, AData):
        return A(tuple(ipaddress.IPv4Address(data.address).packed))
    if isinstance(data, UnknownData):
        return RD(data.raw)
    raise TypeError(f"unsupported record payload {type(data).__name__}")


def _wire_rr(rec: DNSRecord) -> RR:
    if rec.ttl is None or rec.data is None:
        raise ValueError(f"resource record {rec.name!r} needs a ttl and data")
    return RR(_wire_name(rec.name), rec.rtype, rec.rclass, rec.ttl, _wire_rdata(rec.data))


def encode_packet(packet: DNSPacket) -> bytes:
    """
    Brief: Serialize a DNSPacket to wire format with dnslib.

    Inputs:
      - packet: DNSPacket to encode.

    Outputs:
      - bytes: header followed by every section in order; counts match the
        section lengths and repeated names are compressed.

    Raises:
      - ValueError: invalid names, missing resource data or values out of
        range for their wire fields.
    """
    message = dnslib.DNSRecord(
        DNSHeader(id=packet.id & 0xFFFF, bitmap=packet.flags & 0xFFFF),
        questions=[
            DNSQuestion(_wire_name(q.name), q.rtype, q.rclass) for q in packet.questions
        ],
        rr=[_wire_rr(rec) for rec in packet.answers],
        auth=[_wire_rr(rec) for rec in packet.authorities],
        ar=[_wire_rr(rec) for rec in packet.additionals],
    )
    try:
        return message.pack()
    except (DNSError, DNSLabelError, DNSBufferError) as exc:
        raise ValueError(f"cannot encode packet: {exc}") from exc


# --- Decoding ---------------------------------------------------------------


def _decoded_name(label: DNSLabel) -> str:
    wire_len = 1
    for part in label.label:
        # dnslib reads the reserved 0x40/0x80 prefixes as long labels.
        if len(part) > MAX_LABEL_LENGTH:
            raise MalformedPacketError(f"label of {len(part)} bytes in name")
        wire_len += len(part) + 1
    if wire_len > MAX_NAME_LENGTH:
        raise MalformedPacketError("name longer than 255 bytes")
    return b".".join(label.label).decode("utf-8")


def _record_data(rtype: int, rdata: RD) -> RecordData:
    if rtype == QTYPE_PTR:
        return PtrData(_decoded_name(rdata.label))
    if rtype == QTYPE_SRV:
        return SrvData(rdata.priority, rdata.weight, rdata.port, _decoded_name(rdata.target))
    if rtype == QTYPE_TXT:
        return TxtData(tuple(rdata.data))
    if rtype == QTYPE_A:
        return AData(str(ipaddress.IPv4Address(bytes(rdata.data))))
    return UnknownData(rtype, bytes(rdata.data))


def _decode_resource(buffer: DNSBuffer) -> DNSRecord:
    name = _decoded_name(buffer.decode_name())
    rtype, rclass, ttl, rdlength = buffer.unpack("!HHIH")
    if rdlength > buffer.remaining():
        raise MalformedPacketError(f"truncated rdata at offset {buffer.offset}")
    if rtype == QTYPE_A and rdlength != 4:
        raise MalformedPacketError(f"A rdata must be 4 bytes, got {rdlength}")
    start = buffer.offset
    rdata = _RDATA_TYPES.get(rtype, RD).parse(buffer, rdlength)
    if buffer.offset != start + rdlength:
        raise MalformedPacketError(f"{type_name(rtype)} rdata length mismatch")
    return DNSRecord(name, rtype, rclass & _CLASS_MASK, ttl, _record_data(rtype, rdata))


def decode_packet(data: bytes) -> DNSPacket:
    """
    Brief: Parse a datagram into a DNSPacket using dnslib's buffer and
    record parsers.

    Inputs:
      - data: raw UDP payload.

    Outputs:
      - DNSPacket with every declared record decoded; unknown types become
        UnknownData.

    Raises:
      - MalformedPacketError: on any truncation or structural error.
    """
    buffer = DNSBuffer(bytes(data))
    try:
        header = DNSHeader.parse(buffer)
        packet = DNSPacket(id=header.id, flags=header.bitmap)
        for _ in range(header.q):
            question = DNSQuestion.parse(buffer)
            packet.questions.append(
                DNSRecord(
                    _decoded_name(question.qname),
                    question.qtype,
                    question.qclass & _CLASS_MASK,
                )
            )
        counts = (header.a, header.auth, header.ar)
        for section, count in zip(SECTIONS[1:], counts):
            records = getattr(packet, section)
            for _ in range(count):
                records.append(_decode_resource(buffer))
    except (DNSError, DNSBufferError, DNSLabelError, BimapError, RecursionError) as exc:
        raise MalformedPacketError(str(exc) or type(exc).__name__) from exc
    return packet
