"""
Zone Topology - DNS zone delivery topology analysis

Reconstructs the effective delivery topology of a DNS zone: CNAME chains,
terminal endpoints, MX priority trails, shared-IP clusters and third-party
service fingerprints, augmented with externally resolved DNS data.
"""

__version__ = "1.0.0"
__author__ = "Zone Topology Team"
__description__ = "DNS zone topology resolution and graph construction"

from .core.topology_manager import TopologyManager
from .core.coordinator import ResolutionCoordinator
from .core.assembler import GraphAssembler
from .resolvers.resolver_client import ResolverClient

__all__ = [
    "TopologyManager",
    "ResolutionCoordinator",
    "GraphAssembler",
    "ResolverClient",
]
