"""
External resolver implementations.

This package contains the batch backend resolver, the DNS-over-HTTPS
fallback resolver, and an in-memory mock resolver.
"""

from .base_resolver import (
    BackendUnavailable,
    BatchResolver,
    BatchResult,
    ExternalResolver,
    ServiceProbe,
    TcpProbe,
)
from .batch_resolver import BatchBackendResolver
from .doh_resolver import DoHClient, FallbackDoHResolver, resolve_doh_endpoints, select_dns_server
from .mock_resolver import MockResolver
from .resolver_client import ResolverClient

__all__ = [
    "BackendUnavailable",
    "BatchResolver",
    "BatchResult",
    "ExternalResolver",
    "ServiceProbe",
    "TcpProbe",
    "BatchBackendResolver",
    "DoHClient",
    "FallbackDoHResolver",
    "MockResolver",
    "ResolverClient",
    "resolve_doh_endpoints",
    "select_dns_server",
]
