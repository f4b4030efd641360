"""
Record Graph Builder - Local topology primitives from a zone record set

This module turns an immutable record set into CNAME maps, address maps,
CNAME chains, MX trails and per-name area tags. Everything here is pure
and synchronous; no network access happens in this module.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .models import LocalResolution, Record
from ..parsers.payload import extract_target, mx_priority
from ..utils.validators import MAX_HOPS, MIN_HOPS, is_ip_address, normalize_name

logger = logging.getLogger(__name__)

EMAIL_NAME_HINTS = ("_dmarc", "_domainkey", "_bimi")
EMAIL_TXT_PREFIXES = ("v=spf1", "v=dmarc1", "v=dkim1", "v=bimi1")
EMAIL_TYPES = {"MX", "SPF"}
INFRA_TYPES = {"NS", "SOA", "CAA", "DNSKEY", "DS", "RRSIG", "NSEC", "NSEC3"}
WEB_TYPES = {"A", "AAAA", "CNAME", "SVCB", "HTTPS", "SRV"}
TARGET_TYPES = {"CNAME", "NS", "MX", "SRV"}

AREAS = ("email", "web", "infra", "misc")


def _check_hops(max_hops: int) -> int:
    if isinstance(max_hops, bool) or not isinstance(max_hops, int):
        raise ValueError(f"max_hops must be an integer, got {max_hops!r}")
    if not MIN_HOPS <= max_hops <= MAX_HOPS:
        raise ValueError(f"max_hops must be within {MIN_HOPS}..{MAX_HOPS}, got {max_hops}")
    return max_hops


def build_cname_map(records: Iterable[Record]) -> Dict[str, str]:
    """Map each CNAME owner to its target; the last duplicate wins."""
    cname_map: Dict[str, str] = {}
    for record in records:
        if record.type != "CNAME":
            continue
        source = normalize_name(record.name)
        target = normalize_name(record.content)
        if source and target:
            cname_map[source] = target
    return cname_map


def build_address_maps(
    records: Iterable[Record],
) -> Tuple[Dict[str, List[str]], Dict[str, List[str]]]:
    """
    Union all A and AAAA records per owner name.

    Returns:
        Tuple of (ipv4 by name, ipv6 by name); address lists keep first-seen order
    """
    ipv4_by_name: Dict[str, List[str]] = {}
    ipv6_by_name: Dict[str, List[str]] = {}
    for record in records:
        if record.type not in ("A", "AAAA"):
            continue
        name = normalize_name(record.name)
        address = str(record.content or "").strip()
        if not name or not address:
            continue
        bucket = ipv4_by_name if record.type == "A" else ipv6_by_name
        addresses = bucket.setdefault(name, [])
        if address not in addresses:
            addresses.append(address)
    return ipv4_by_name, ipv6_by_name


def compute_cname_chains(records: Sequence[Record], max_hops: int) -> List[Dict]:
    """
    Find transitive CNAME chains inside the zone.

    A chain that only covers a single direct CNAME is not reported. The
    repeated name closing a cycle is appended before the walk stops, so a
    cycle shows up as ``[a, b, a]``.
    """
    _check_hops(max_hops)
    cname_map = build_cname_map(records)

    chains = []
    for start in cname_map:
        seen = {start}
        chain = [start]
        current = start
        hops = 0
        while hops < max_hops:
            nxt = cname_map.get(current)
            if not nxt:
                break
            chain.append(nxt)
            hops += 1
            if nxt in seen:
                break
            seen.add(nxt)
            current = nxt
        if len(chain) > 2:
            chains.append({"start": start, "chain": chain})
    return chains


def resolve_name_to_terminal(
    name: str,
    cname_map: Dict[str, str],
    ipv4_by_name: Dict[str, List[str]],
    ipv6_by_name: Dict[str, List[str]],
    max_hops: int,
) -> LocalResolution:
    """
    Walk in-zone CNAMEs from ``name`` to its terminal.

    The walk stops at a missing hop, a repeated name, or after ``max_hops``
    hops, so the chain never holds more than ``max_hops + 1`` names.
    """
    _check_hops(max_hops)
    start = normalize_name(name)
    if not start:
        return LocalResolution(chain=(), terminal="")

    chain = [start]
    seen = {start}
    current = start
    hops = 0
    while hops < max_hops:
        nxt = cname_map.get(current)
        if not nxt or nxt in seen:
            break
        chain.append(nxt)
        seen.add(nxt)
        current = nxt
        hops += 1

    return LocalResolution(
        chain=tuple(chain),
        terminal=current,
        ipv4=tuple(ipv4_by_name.get(current, ())),
        ipv6=tuple(ipv6_by_name.get(current, ())),
    )


def classify_areas(name: str, records_at_name: Sequence[Record], email_path_names: Set[str]) -> List[str]:
    """
    Tag a name with the functional areas its records serve.

    Returns:
        Areas in canonical order; ``["misc"]`` when nothing else matched
    """
    lower = normalize_name(name)
    types = {record.type for record in records_at_name}
    areas = set()

    has_email_txt = any(
        any(prefix in str(record.content or "").lower() for prefix in EMAIL_TXT_PREFIXES)
        for record in records_at_name
        if record.type == "TXT"
    )
    if (
        any(hint in lower for hint in EMAIL_NAME_HINTS)
        or types & EMAIL_TYPES
        or has_email_txt
        or lower in email_path_names
    ):
        areas.add("email")
    if types & INFRA_TYPES:
        areas.add("infra")
    if types & WEB_TYPES:
        areas.add("web")
    if not areas:
        areas.add("misc")
    return [area for area in AREAS if area in areas]


def owner_name(record: Record, zone: str) -> str:
    """Normalized owner name with the apex marker mapped to the zone."""
    name = normalize_name(record.name)
    if not name or name == "@":
        return normalize_name(zone)
    return name


def candidate_hostnames(records: Iterable[Record]) -> List[str]:
    """Every non-IP target of CNAME/NS/MX/SRV records, in first-seen order."""
    candidates: List[str] = []
    seen: Set[str] = set()
    for record in records:
        if record.type not in TARGET_TYPES:
            continue
        target = extract_target(record)
        if not target or is_ip_address(target):
            continue
        hostname = normalize_name(target)
        if hostname and hostname not in seen:
            seen.add(hostname)
            candidates.append(hostname)
    return candidates


def records_fingerprint(records: Iterable[Record]) -> str:
    return "||".join(sorted(record.fingerprint() for record in records))


class GraphIdAllocator:
    """Hands out one incrementing id per distinct (kind, key) pair."""

    def __init__(self, prefix: str = "n_"):
        self.prefix = prefix
        self._ids: Dict[Tuple[str, str], str] = {}

    def id_for(self, kind: str, key: str) -> str:
        dedupe_key = (kind, key)
        node_id = self._ids.get(dedupe_key)
        if node_id is None:
            node_id = f"{self.prefix}{len(self._ids)}"
            self._ids[dedupe_key] = node_id
        return node_id

    def get(self, kind: str, key: str) -> Optional[str]:
        return self._ids.get((kind, key))

    def __contains__(self, dedupe_key: Tuple[str, str]) -> bool:
        return dedupe_key in self._ids


class RecordGraphBuilder:
    """Local graph primitives for one immutable record set."""

    def __init__(self, records: Sequence[Record], zone: str, max_hops: int):
        self.records = tuple(records)
        self.zone = normalize_name(zone)
        self.max_hops = _check_hops(max_hops)
        self.cname_map = build_cname_map(self.records)
        self.ipv4_by_name, self.ipv6_by_name = build_address_maps(self.records)
        self.records_by_name = self._group_by_name()
        logger.debug(
            f"Built local maps for {self.zone}: {len(self.cname_map)} CNAMEs, "
            f"{len(self.ipv4_by_name)} A owners, {len(self.ipv6_by_name)} AAAA owners"
        )

    def _group_by_name(self) -> Dict[str, List[Record]]:
        grouped: Dict[str, List[Record]] = {}
        for record in self.records:
            grouped.setdefault(owner_name(record, self.zone), []).append(record)
        return grouped

    def resolve(self, name: str) -> LocalResolution:
        return resolve_name_to_terminal(
            name, self.cname_map, self.ipv4_by_name, self.ipv6_by_name, self.max_hops
        )

    def cname_chains(self) -> List[Dict]:
        return compute_cname_chains(self.records, self.max_hops)

    def mx_entries(self) -> List[Dict]:
        """MX records as (owner, priority, target) entries; malformed ones skipped."""
        entries = []
        for record in self.records:
            if record.type != "MX":
                continue
            target = extract_target(record)
            if not target:
                logger.debug(f"Skipping MX record {record.id}: no target in {record.content!r}")
                continue
            entries.append(
                {
                    "record_id": record.id,
                    "from": owner_name(record, self.zone),
                    "priority": mx_priority(record),
                    "target": target,
                }
            )
        return entries

    def areas_for(self, name: str, email_path_names: Set[str]) -> List[str]:
        return classify_areas(name, self.records_by_name.get(name, []), email_path_names)

    def candidates(self) -> List[str]:
        return candidate_hostnames(self.records)
