"""DNS wire codec and record interpreters used by the finder."""

from .packet import DNSPacket, DNSRecord, decode_packet, encode_name, encode_packet
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
    as_address,
    as_ptr_target,
    as_srv,
    as_txt_list,
    type_name,
)

__all__ = [
    "CLASS_IN",
    "QTYPE_A",
    "QTYPE_PTR",
    "QTYPE_SRV",
    "QTYPE_TXT",
    "AData",
    "DNSPacket",
    "DNSRecord",
    "PtrData",
    "RecordData",
    "SrvData",
    "TxtData",
    "UnknownData",
    "as_address",
    "as_ptr_target",
    "as_srv",
    "as_txt_list",
    "decode_packet",
    "encode_name",
    "encode_packet",
    "type_name",
]
