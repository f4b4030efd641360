"""
Record content parsers and record-set loaders.
"""

from .csv import RecordCSVParser
from .payload import (
    AddressPayload,
    HostPayload,
    MxPayload,
    RecordPayload,
    SrvPayload,
    TextPayload,
    extract_target,
    mx_priority,
    parse_payload,
)

__all__ = [
    "RecordCSVParser",
    "RecordPayload",
    "AddressPayload",
    "HostPayload",
    "MxPayload",
    "SrvPayload",
    "TextPayload",
    "extract_target",
    "mx_priority",
    "parse_payload",
]
