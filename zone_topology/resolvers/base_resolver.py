"""
Base external resolver interface.

This module defines the capability every external resolver implements and
the result shapes exchanged with the resolution coordinator.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from ..core.models import ResolutionResult
from ..utils.cancellation import CancellationToken
from ..utils.validators import ResolverConfig

ResultCallback = Callable[[str, ResolutionResult], None]


class BackendUnavailable(RuntimeError):
    """The batch backend channel could not be established."""


@dataclass(frozen=True)
class ServiceProbe:
    host: str
    https_up: bool
    http_up: bool


@dataclass(frozen=True)
class TcpProbe:
    host: str
    port: int
    up: bool


@dataclass
class BatchResult:
    resolutions: List[ResolutionResult] = field(default_factory=list)
    probes: List[ServiceProbe] = field(default_factory=list)
    tcp_probes: List[TcpProbe] = field(default_factory=list)


class ExternalResolver(ABC):
    """Abstract base class for external resolvers."""

    @abstractmethod
    def resolve(
        self,
        names: Sequence[str],
        config: ResolverConfig,
        token: Optional[CancellationToken] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> Dict[str, ResolutionResult]:
        """Resolve hostnames to chains and addresses, keyed by normalized name."""
        pass


class BatchResolver(ExternalResolver):
    """Resolver that answers a whole batch, plus service probes, in one call."""

    @abstractmethod
    def resolve_batch(
        self,
        hostnames: Sequence[str],
        config: ResolverConfig,
        service_hosts: Sequence[str] = (),
        token: Optional[CancellationToken] = None,
    ) -> Optional[BatchResult]:
        """Return the batch result, or None when the backend is absent."""
        pass

    def resolve(self, names, config, token=None, on_result=None):
        batch = self.resolve_batch(names, config, token=token)
        results: Dict[str, ResolutionResult] = {}
        if batch is None:
            return results
        for resolution in batch.resolutions:
            name = resolution.requested_name or (resolution.chain[0] if resolution.chain else "")
            if not name:
                continue
            results[name] = resolution
            if on_result:
                on_result(name, resolution)
        return results
