"""
Graph Assembler - Merges local and external resolution into a topology

This module combines the record graph builder's in-zone maps with the
external resolutions published by the coordinator. Every place that needs
a name's final chain or addresses goes through ``pick_best_resolution`` so
node summaries, MX trails and shared-IP clusters agree with each other.
"""

import logging
from dataclasses import asdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .fingerprint import ServiceFingerprinter
from .graph_builder import GraphIdAllocator, RecordGraphBuilder, owner_name
from .models import (
    Edge,
    EdgeKind,
    LocalResolution,
    Node,
    NodeKind,
    Record,
    ResolutionResult,
    Topology,
    TopologySummary,
)
from ..parsers.payload import extract_target, mx_priority
from ..utils.validators import normalize_name

logger = logging.getLogger(__name__)

ZONE_NODE_ID = "zone_root"


def pick_best_resolution(
    requested_name: str,
    local: LocalResolution,
    external_by_name: Mapping[str, ResolutionResult],
) -> ResolutionResult:
    """
    Choose between the in-zone walk and the external resolution of a name.

    Args:
        requested_name: Name the caller is resolving
        local: In-zone walk result for that name
        external_by_name: Published external resolutions keyed by name

    Returns:
        The external result when local has no addresses and external has
        addresses or a strictly longer chain; otherwise the local view,
        carrying external PTR annotations when both sides have addresses
    """
    requested = normalize_name(requested_name)
    local_terminal = normalize_name(local.terminal or requested)
    local_view = ResolutionResult(
        chain=local.chain,
        terminal=local.terminal,
        ipv4=local.ipv4,
        ipv6=local.ipv6,
        requested_name=requested or None,
    )
    external = external_by_name.get(requested) or external_by_name.get(local_terminal)
    if external is None:
        return local_view

    local_has_endpoints = bool(local.ipv4 or local.ipv6)
    deeper_chain = len(external.chain) > len(local.chain)
    if not local_has_endpoints and (external.has_endpoints or deeper_chain):
        return external
    if local_has_endpoints and external.has_endpoints:
        return ResolutionResult(
            chain=local.chain,
            terminal=local.terminal,
            ipv4=local.ipv4,
            ipv6=local.ipv6,
            requested_name=requested or None,
            reverse_hostnames_by_ip=external.reverse_hostnames_by_ip,
        )
    return local_view


class _GraphUnit:
    """One record node: a single record, or all A/AAAA records of one type at one name."""

    def __init__(self, key: str, record_type: str, name: str, records: List[Record], aggregate: bool):
        self.key = key
        self.type = record_type
        self.name = name
        self.records = records
        self.aggregate = aggregate


class _GraphState:
    """Node and edge accumulator with deterministic ids and edge dedupe."""

    def __init__(self):
        self.ids = GraphIdAllocator()
        self.nodes: Dict[str, Node] = {}
        self.edges: List[Edge] = []
        self._edge_set: Set[Edge] = set()

    def add_node(self, node: Node) -> str:
        if node.id not in self.nodes:
            self.nodes[node.id] = node
        return node.id

    def node_for(self, kind: NodeKind, key: str, label: str, detail: str = "", **kwargs) -> str:
        node_id = self.ids.id_for(kind.value, key)
        return self.add_node(Node(id=node_id, kind=kind, label=label, detail=detail, **kwargs))

    def add_edge(self, source: str, target: str, kind: EdgeKind, label: str = "") -> None:
        edge = Edge(source=source, target=target, kind=kind, label=label)
        if edge not in self._edge_set:
            self._edge_set.add(edge)
            self.edges.append(edge)


class GraphAssembler:
    """Builds the final node/edge graph and summary for a zone."""

    def __init__(self, fingerprinter: Optional[ServiceFingerprinter] = None):
        self.fingerprinter = fingerprinter or ServiceFingerprinter()

    def assemble(
        self,
        records: Sequence[Record],
        zone: str,
        max_hops: int,
        external_by_name: Optional[Mapping[str, ResolutionResult]] = None,
    ) -> Topology:
        external_by_name = external_by_name or {}
        builder = RecordGraphBuilder(records, zone, max_hops)
        zone_name = builder.zone
        geo_by_ip = self._collect_geo(external_by_name.values())

        def best(name: str) -> ResolutionResult:
            return pick_best_resolution(name, builder.resolve(name), external_by_name)

        def ip_detail(ip: str) -> str:
            geo = geo_by_ip.get(ip)
            if not geo or not geo.get("country"):
                return "IP"
            code = geo.get("country_code", "")
            prefix = f"{code.upper()} - " if code else ""
            return f"IP | GEO: {prefix}{geo['country']}"

        mx_trails = []
        email_path_names: Set[str] = set()
        for entry in builder.mx_entries():
            local = builder.resolve(entry["target"])
            resolved = pick_best_resolution(entry["target"], local, external_by_name)
            if local.ipv4 or local.ipv6:
                source = "in-zone"
            elif resolved.has_endpoints or len(resolved.chain) > len(local.chain):
                source = "external"
            else:
                source = "none"
            mx_trails.append(
                {
                    "from": entry["from"],
                    "priority": entry["priority"],
                    "target": entry["target"],
                    "chain": list(resolved.chain),
                    "terminal": resolved.terminal,
                    "ipv4": list(resolved.ipv4),
                    "ipv6": list(resolved.ipv6),
                    "source": source,
                    "reverse": {
                        ip: list(names) for ip, names in (resolved.reverse_hostnames_by_ip or {}).items()
                    },
                }
            )
            email_path_names.update(resolved.chain)
            if resolved.terminal:
                email_path_names.add(resolved.terminal)

        state = _GraphState()
        state.add_node(Node(id=ZONE_NODE_ID, kind=NodeKind.ZONE, label=f"Zone: {zone_name or zone}"))

        area_counts = {"email": 0, "web": 0, "infra": 0, "misc": 0}
        ip_sources: Dict[str, Set[str]] = {}
        service_targets: List[str] = []

        def ip_node(ip: str) -> str:
            return state.node_for(NodeKind.IP, ip, ip, ip_detail(ip), address=ip)

        def target_node(name: str) -> str:
            return state.node_for(NodeKind.TARGET, name, name, address=name)

        for unit in self._build_units(builder):
            areas = builder.areas_for(unit.name, email_path_names)
            for area in areas:
                area_counts[area] += 1

            resolved = best(unit.name)
            record_id = state.ids.id_for("record", unit.key)
            state.add_node(
                Node(
                    id=record_id,
                    kind=NodeKind.RECORD,
                    label=unit.name,
                    detail=self._record_info(unit, resolved) or "record",
                    record_id=unit.records[0].id if len(unit.records) == 1 and unit.records[0].id else None,
                    address=unit.name,
                )
            )
            state.add_edge(ZONE_NODE_ID, record_id, EdgeKind.ZONE)

            is_ip = unit.type in ("A", "AAAA")
            for target, priority in self._target_entries(unit):
                if is_ip:
                    target_id = ip_node(target)
                    ip_sources.setdefault(target, set()).add(unit.name)
                else:
                    target_id = target_node(target)
                    service_targets.append(target)

                if unit.type == "MX":
                    prio_text = "?" if priority is None else str(priority)
                    prio_id = state.node_for(
                        NodeKind.MX_PRIORITY,
                        f"{'na' if priority is None else priority}:{target}",
                        f"MX Priority {prio_text}",
                    )
                    state.add_edge(record_id, prio_id, EdgeKind.MX, "MX")
                    state.add_edge(prio_id, target_id, EdgeKind.MX, f"prio {prio_text}")
                else:
                    state.add_edge(record_id, target_id, EdgeKind(unit.type), unit.type)

                if is_ip:
                    continue

                resolved_target = best(target)
                chain = list(resolved_target.chain)
                for source_name, next_name in zip(chain, chain[1:]):
                    state.add_edge(target_node(source_name), target_node(next_name), EdgeKind.CNAME, "CNAME")
                    service_targets.append(next_name)

                terminal = resolved_target.terminal or target
                terminal_id = target_node(terminal)
                for kind, addresses in ((EdgeKind.A, resolved_target.ipv4), (EdgeKind.AAAA, resolved_target.ipv6)):
                    for ip in addresses:
                        state.add_edge(terminal_id, ip_node(ip), kind, kind.value)
                        ip_sources.setdefault(ip, set()).add(terminal)

                for ip, ptr_names in (resolved_target.reverse_hostnames_by_ip or {}).items():
                    if not ptr_names:
                        continue
                    ip_id = ip_node(ip)
                    for ptr_name in ptr_names:
                        ptr = normalize_name(ptr_name)
                        if ptr:
                            state.add_edge(ip_id, target_node(ptr), EdgeKind.PTR, "PTR")

        detected = self.fingerprinter.fingerprint(service_targets)
        for index, entry in enumerate(detected):
            target_id = state.ids.get(NodeKind.TARGET.value, entry["target"])
            if target_id is None:
                continue
            service_id = f"svc_{index}"
            state.add_node(Node(id=service_id, kind=NodeKind.SERVICE, label=entry["service"]))
            state.add_edge(target_id, service_id, EdgeKind.SERVICE_LINK)

        shared_ips = [
            {"ip": ip, "names": sorted(names)} for ip, names in ip_sources.items() if len(names) > 1
        ]

        summary = TopologySummary(
            cname_chains=builder.cname_chains(),
            shared_ips=shared_ips,
            detected_services=detected,
            mx_trails=mx_trails,
            area_counts=area_counts,
            node_summaries=self._node_summaries(builder, best, email_path_names),
        )
        logger.info(
            f"Assembled topology for {zone_name}: {len(state.nodes)} nodes, {len(state.edges)} edges, "
            f"{len(external_by_name)} external resolution(s)"
        )
        return Topology(nodes=list(state.nodes.values()), edges=state.edges, summary=summary)

    @staticmethod
    def _collect_geo(resolutions: Iterable[ResolutionResult]) -> Dict[str, Dict[str, str]]:
        geo_by_ip: Dict[str, Dict[str, str]] = {}
        for resolution in resolutions:
            for ip, geo in (resolution.geo_by_ip or {}).items():
                if geo and geo.get("country") and ip not in geo_by_ip:
                    geo_by_ip[ip] = geo
        return geo_by_ip

    @staticmethod
    def _build_units(builder: RecordGraphBuilder) -> List[_GraphUnit]:
        units: List[_GraphUnit] = []
        aggregated: Dict[str, List[Record]] = {}
        for index, record in enumerate(builder.records):
            name = owner_name(record, builder.zone)
            if record.type in ("A", "AAAA"):
                aggregated.setdefault(f"{record.type}:{name}", []).append(record)
            else:
                units.append(_GraphUnit(f"record:{record.id or index}", record.type, name, [record], False))
        for key, grouped in aggregated.items():
            name = owner_name(grouped[0], builder.zone)
            units.append(_GraphUnit(f"agg:{key}", grouped[0].type, name, grouped, True))
        return units

    @staticmethod
    def _record_info(unit: _GraphUnit, resolved: ResolutionResult) -> str:
        info = [f"type:{unit.type}" + (f" x{len(unit.records)}" if unit.aggregate else "")]
        if unit.type == "MX":
            priority = mx_priority(unit.records[0])
            if priority is not None:
                info.append(f"prio:{priority}")

        ttls = {str(record.ttl if record.ttl is not None else "auto") for record in unit.records}
        info.append(f"ttl:{ttls.pop() if len(ttls) == 1 else 'mixed'}")
        proxy = {"proxied" if record.proxied else "dns-only" for record in unit.records}
        info.append(proxy.pop() if len(proxy) == 1 else "proxy:mixed")

        if len(resolved.chain) > 1:
            info.append(f"resolves:{resolved.terminal}")
        if resolved.has_endpoints:
            info.append(f"A:{len(resolved.ipv4)} AAAA:{len(resolved.ipv6)}")
        return " | ".join(info)

    @staticmethod
    def _target_entries(unit: _GraphUnit) -> List[Tuple[str, Optional[int]]]:
        """(target, mx priority) pairs of a unit; MX keeps one entry per record."""
        if unit.type == "MX":
            entries = []
            for record in unit.records:
                target = extract_target(record)
                if target:
                    entries.append((target, mx_priority(record)))
            return entries

        targets: List[Tuple[str, Optional[int]]] = []
        for record in unit.records:
            target = extract_target(record)
            if target and (target, None) not in targets:
                targets.append((target, None))
        return targets

    @staticmethod
    def _node_summaries(builder: RecordGraphBuilder, best, email_path_names: Set[str]) -> List[Dict]:
        summaries = []
        for name in sorted(builder.records_by_name):
            resolved = best(name)
            summaries.append(
                {
                    "name": name,
                    "records": [asdict(record) for record in builder.records_by_name[name]],
                    "resolvedTo": list(resolved.chain[1:]),
                    "areas": builder.areas_for(name, email_path_names),
                    "terminal": resolved.terminal,
                    "ipv4": list(resolved.ipv4),
                    "ipv6": list(resolved.ipv6),
                }
            )
        return summaries


def build_topology(
    records: Sequence[Record],
    zone: str,
    max_hops: int,
    external_by_name: Optional[Mapping[str, ResolutionResult]] = None,
    fingerprinter: Optional[ServiceFingerprinter] = None,
) -> Topology:
    """Assemble the topology graph and summary for a record set."""
    return GraphAssembler(fingerprinter).assemble(records, zone, max_hops, external_by_name)
