"""
Mock resolver for testing and offline demonstration.

This module provides a resolver that answers from an in-memory table
instead of the network. It counts its calls so callers can verify cache
behaviour, and can be held on a gate to simulate a slow upstream.
"""

import logging
import threading
from typing import Dict, List, Optional, Sequence

from .base_resolver import BatchResolver, BatchResult, ResultCallback, ServiceProbe, TcpProbe
from ..core.models import ResolutionResult
from ..utils.cancellation import CancellationToken
from ..utils.validators import ResolverConfig, normalize_name

logger = logging.getLogger(__name__)


class MockResolver(BatchResolver):
    """In-memory resolver for tests and offline runs."""

    def __init__(
        self,
        answers: Optional[Dict[str, ResolutionResult]] = None,
        available: bool = True,
        gate: Optional[threading.Event] = None,
        probes_up: bool = False,
    ):
        """
        Initialize mock resolver.

        Args:
            answers: Resolution results keyed by hostname
            available: When False, ``resolve_batch`` reports the backend as absent
            gate: Optional event every call waits on before answering
            probes_up: Reachability reported for every probed host and port
        """
        self.answers = {normalize_name(name): result for name, result in (answers or {}).items()}
        self.available = available
        self.gate = gate
        self.probes_up = probes_up
        self.calls = 0
        self.requested: List[str] = []
        self._lock = threading.Lock()
        logger.info(f"Mock resolver initialized with {len(self.answers)} answer(s)")

    def _record_call(self, names: Sequence[str]) -> None:
        with self._lock:
            self.calls += 1
            self.requested.extend(normalize_name(name) for name in names)

    def _wait_for_gate(self, token: Optional[CancellationToken]) -> None:
        if self.gate is None:
            return
        while not self.gate.wait(0.01):
            if token is not None:
                token.raise_if_cancelled()

    def answer(self, name: str) -> ResolutionResult:
        normalized = normalize_name(name)
        result = self.answers.get(normalized)
        if result is None:
            return ResolutionResult(
                chain=(normalized,),
                terminal=normalized,
                requested_name=normalized,
                error="no CNAME/A/AAAA records found",
            )
        return result

    def resolve_batch(
        self,
        hostnames: Sequence[str],
        config: ResolverConfig,
        service_hosts: Sequence[str] = (),
        token: Optional[CancellationToken] = None,
    ) -> Optional[BatchResult]:
        self._record_call(hostnames)
        self._wait_for_gate(token)
        if not self.available:
            logger.info("Mock: batch backend reported absent")
            return None

        resolutions = [self.answer(name) for name in hostnames]
        probes = [ServiceProbe(host, self.probes_up, self.probes_up) for host in service_hosts]
        tcp_probes = [
            TcpProbe(host, port, self.probes_up)
            for host in service_hosts
            for port in config.tcp_service_ports
        ]
        logger.info(f"Mock: resolved {len(resolutions)} hostname(s) in one batch")
        return BatchResult(resolutions=resolutions, probes=probes, tcp_probes=tcp_probes)

    def resolve(
        self,
        names: Sequence[str],
        config: ResolverConfig,
        token: Optional[CancellationToken] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> Dict[str, ResolutionResult]:
        self._record_call(names)
        self._wait_for_gate(token)
        results: Dict[str, ResolutionResult] = {}
        for name in names:
            normalized = normalize_name(name)
            result = self.answer(normalized)
            results[normalized] = result
            if on_result:
                on_result(normalized, result)
        return results
