"""
Core topology functionality.

This package contains the record graph builder, the resolution cache and
coordinator, and the graph assembler.
"""

from .models import Edge, EdgeKind, Node, NodeKind, ProgressState, Record, ResolutionResult, Topology
from .graph_builder import RecordGraphBuilder
from .cache import ResolutionCache
from .fingerprint import ServiceFingerprinter
from .assembler import GraphAssembler, build_topology, pick_best_resolution
from .coordinator import CoordinatorState, ResolutionCoordinator, compute_run_key
from .discovery import DiscoveryItem, ServiceDiscovery
from .topology_manager import TopologyManager

__all__ = [
    "Edge",
    "EdgeKind",
    "Node",
    "NodeKind",
    "ProgressState",
    "Record",
    "ResolutionResult",
    "Topology",
    "RecordGraphBuilder",
    "ResolutionCache",
    "ServiceFingerprinter",
    "GraphAssembler",
    "build_topology",
    "pick_best_resolution",
    "CoordinatorState",
    "ResolutionCoordinator",
    "compute_run_key",
    "DiscoveryItem",
    "ServiceDiscovery",
    "TopologyManager",
]
