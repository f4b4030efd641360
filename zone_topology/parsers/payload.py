"""
Record payload parsing.

Each DNS type's content string is split exactly once, here, into a typed
payload. Callers use ``payload.target`` instead of re-splitting content.
Parsing never raises: malformed content yields a payload whose target is
``None``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..core.models import Record
from ..utils.validators import normalize_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordPayload:
    """Base payload; records without a resolvable target."""

    record_type: str

    @property
    def target(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class AddressPayload(RecordPayload):
    address: str

    @property
    def target(self) -> Optional[str]:
        return self.address or None


@dataclass(frozen=True)
class HostPayload(RecordPayload):
    host: str

    @property
    def target(self) -> Optional[str]:
        return self.host or None


@dataclass(frozen=True)
class MxPayload(RecordPayload):
    priority: Optional[int]
    exchange: str

    @property
    def target(self) -> Optional[str]:
        return self.exchange or None


@dataclass(frozen=True)
class SrvPayload(RecordPayload):
    priority: Optional[int]
    weight: Optional[int]
    port: Optional[int]
    host: str

    @property
    def target(self) -> Optional[str]:
        return self.host or None


@dataclass(frozen=True)
class TextPayload(RecordPayload):
    text: str


def _to_int(token: str) -> Optional[int]:
    try:
        return int(token)
    except (TypeError, ValueError):
        return None


def _parse_address(record: Record) -> RecordPayload:
    return AddressPayload(record.type, str(record.content or "").strip())


def _parse_host(record: Record) -> RecordPayload:
    return HostPayload(record.type, normalize_name(record.content))


def _parse_mx(record: Record) -> RecordPayload:
    parts = str(record.content or "").split()
    if not parts:
        return MxPayload(record.type, record.priority, "")

    priority = _to_int(parts[0])
    if priority is not None:
        return MxPayload(record.type, priority, normalize_name(" ".join(parts[1:])))

    # Providers that keep the preference in a separate field store only the host
    if len(parts) == 1 and record.priority is not None:
        return MxPayload(record.type, record.priority, normalize_name(parts[0]))

    return MxPayload(record.type, None, normalize_name(" ".join(parts[1:])))


def _parse_srv(record: Record) -> RecordPayload:
    parts = str(record.content or "").split()
    fields = [_to_int(p) for p in parts[:3]] + [None] * (3 - len(parts[:3]))
    return SrvPayload(
        record.type,
        fields[0],
        fields[1],
        fields[2],
        normalize_name(" ".join(parts[3:])),
    )


def _parse_text(record: Record) -> RecordPayload:
    return TextPayload(record.type, str(record.content or ""))


_PARSERS = {
    "A": _parse_address,
    "AAAA": _parse_address,
    "CNAME": _parse_host,
    "NS": _parse_host,
    "MX": _parse_mx,
    "SRV": _parse_srv,
    "TXT": _parse_text,
    "SPF": _parse_text,
}


def parse_payload(record: Record) -> RecordPayload:
    """Parse a record's content into its typed payload."""
    parser = _PARSERS.get(str(record.type or "").upper())
    if parser is None:
        return RecordPayload(record.type)
    try:
        return parser(record)
    except Exception as e:
        logger.debug(f"Unparseable {record.type} content {record.content!r}: {e}")
        return RecordPayload(record.type)


def extract_target(record: Record) -> Optional[str]:
    """
    Extract the resolution target of a record.

    Args:
        record: Record to inspect

    Returns:
        Normalized hostname for CNAME/NS/MX/SRV, the literal address for
        A/AAAA, or None when the type has no target or content is malformed
    """
    return parse_payload(record).target


def mx_priority(record: Record) -> Optional[int]:
    """MX preference from content, falling back to the record's priority field."""
    payload = parse_payload(record)
    if isinstance(payload, MxPayload):
        return payload.priority
    return None
