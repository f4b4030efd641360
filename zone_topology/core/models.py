"""
Data model for the topology engine.

Records are owned by the caller and never mutated; resolution results are
immutable once created; graph structures are rebuilt wholesale per run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from ..utils.validators import normalize_name

TTLValue = Union[int, str]


@dataclass(frozen=True)
class Record:
    """A zone record as handed over by the zone provider."""

    id: str
    type: str
    name: str
    content: str
    ttl: TTLValue = "auto"
    priority: Optional[int] = None
    proxied: Optional[bool] = None
    modified_on: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        """Build a record from a provider-shaped mapping."""
        ttl = data.get("ttl", "auto")
        if ttl not in (None, "", "auto"):
            try:
                ttl = int(ttl)
            except (TypeError, ValueError):
                ttl = "auto"
        else:
            ttl = "auto"

        priority = data.get("priority")
        if priority in ("", None):
            priority = None
        else:
            try:
                priority = int(priority)
            except (TypeError, ValueError):
                priority = None

        return cls(
            id=str(data.get("id", "") or ""),
            type=str(data.get("type", "") or "").strip().upper(),
            name=str(data.get("name", "") or ""),
            content=str(data.get("content", "") or ""),
            ttl=ttl,
            priority=priority,
            proxied=data.get("proxied"),
            modified_on=str(data.get("modified_on", "") or ""),
        )

    def fingerprint(self) -> str:
        return "|".join(
            [
                self.id,
                self.type,
                normalize_name(self.name),
                normalize_name(self.content),
                self.modified_on,
            ]
        )


@dataclass(frozen=True)
class ResolutionResult:
    """Externally resolved view of one hostname."""

    chain: Tuple[str, ...]
    terminal: str
    ipv4: Tuple[str, ...] = ()
    ipv6: Tuple[str, ...] = ()
    requested_name: Optional[str] = None
    reverse_hostnames_by_ip: Optional[Dict[str, Tuple[str, ...]]] = None
    geo_by_ip: Optional[Dict[str, Dict[str, str]]] = None
    source: str = "external"
    error: Optional[str] = None

    @property
    def has_endpoints(self) -> bool:
        return bool(self.ipv4 or self.ipv6)

    @classmethod
    def placeholder(cls, name: str, error: str = "no records found") -> "ResolutionResult":
        return cls(chain=(name,), terminal=name, requested_name=name, error=error)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "requestedName": self.requested_name,
            "chain": list(self.chain),
            "terminal": self.terminal,
            "ipv4": list(self.ipv4),
            "ipv6": list(self.ipv6),
            "source": self.source,
        }
        if self.reverse_hostnames_by_ip:
            data["reverseHostnamesByIp"] = {
                ip: list(names) for ip, names in self.reverse_hostnames_by_ip.items()
            }
        if self.geo_by_ip:
            data["geoByIp"] = dict(self.geo_by_ip)
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class LocalResolution:
    """In-zone walk result from the record graph builder."""

    chain: Tuple[str, ...]
    terminal: str
    ipv4: Tuple[str, ...] = ()
    ipv6: Tuple[str, ...] = ()


class NodeKind(str, Enum):
    ZONE = "zone"
    RECORD = "record"
    TARGET = "target"
    IP = "ip"
    SERVICE = "service"
    MX_PRIORITY = "mx-priority"


class EdgeKind(str, Enum):
    CNAME = "CNAME"
    A = "A"
    AAAA = "AAAA"
    MX = "MX"
    PTR = "PTR"
    NS = "NS"
    SRV = "SRV"
    ZONE = "zone"
    SERVICE_LINK = "service-link"


@dataclass
class Node:
    id: str
    kind: NodeKind
    label: str
    detail: str = ""
    record_id: Optional[str] = None
    address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "kind": self.kind.value, "label": self.label}
        if self.detail:
            data["detail"] = self.detail
        if self.record_id:
            data["recordId"] = self.record_id
        if self.address:
            data["address"] = self.address
        return data


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    kind: EdgeKind
    label: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "from": self.source,
            "to": self.target,
            "kind": self.kind.value,
            "label": self.label,
        }


@dataclass(frozen=True)
class ProgressState:
    running: bool = False
    total: int = 0
    done: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"running": self.running, "total": self.total, "done": self.done}


@dataclass
class TopologySummary:
    cname_chains: List[Dict[str, Any]] = field(default_factory=list)
    shared_ips: List[Dict[str, Any]] = field(default_factory=list)
    detected_services: List[Dict[str, str]] = field(default_factory=list)
    mx_trails: List[Dict[str, Any]] = field(default_factory=list)
    area_counts: Dict[str, int] = field(
        default_factory=lambda: {"email": 0, "web": 0, "infra": 0, "misc": 0}
    )
    node_summaries: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cnameChains": self.cname_chains,
            "sharedIps": self.shared_ips,
            "detectedServices": self.detected_services,
            "mxTrails": self.mx_trails,
            "areaCounts": self.area_counts,
            "perNodeSummaries": self.node_summaries,
        }


@dataclass
class Topology:
    nodes: List[Node]
    edges: List[Edge]
    summary: TopologySummary

    def node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph": {
                "nodes": [node.to_dict() for node in self.nodes],
                "edges": [edge.to_dict() for edge in self.edges],
            },
            "summary": self.summary.to_dict(),
        }
