"""
Batch backend resolver.

This module resolves a whole batch of hostnames in one call using the
dnspython library against the configured DNS server, with DoH answers
supplementing empty native answers in DoH mode. It also runs HTTP/HTTPS
reachability probes and TCP connect probes for service hosts.
"""

import ipaddress
import logging
import socket
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

import dns.exception
import dns.resolver
import dns.reversename
import requests

from .base_resolver import BackendUnavailable, BatchResolver, BatchResult, ServiceProbe, TcpProbe
from .doh_resolver import DoHClient, resolve_doh_endpoints, select_dns_server
from .geo import GeoLocator
from ..core.models import ResolutionResult
from ..utils.cancellation import CancellationToken, OperationCancelled
from ..utils.validators import ResolverConfig, normalize_name

logger = logging.getLogger(__name__)

RESOLVE_PARALLELISM = 16
PROBE_PARALLELISM = 8
PROBE_TIMEOUT = 5.0


def _unique_names(names: Sequence[str]) -> List[str]:
    unique: List[str] = []
    for name in names:
        normalized = normalize_name(name)
        if normalized and normalized not in unique:
            unique.append(normalized)
    return unique


class BatchBackendResolver(BatchResolver):
    """Native DNS batch resolver using dnspython."""

    def __init__(self, session_factory=requests.Session, resolver_factory=None):
        self.session_factory = session_factory
        self.resolver_factory = resolver_factory or self._initialize_dns_resolver

    def _initialize_dns_resolver(self, config: ResolverConfig) -> dns.resolver.Resolver:
        """Initialize a resolver pointed at the selected DNS server."""
        server = select_dns_server(config)
        try:
            ipaddress.ip_address(server)
        except ValueError:
            logger.debug(f"DNS server '{server}' is not an address, using system configuration")
            try:
                resolver = dns.resolver.Resolver()
            except dns.resolver.NoResolverConfiguration as e:
                raise BackendUnavailable(f"No system resolver configuration: {e}")
        else:
            resolver = dns.resolver.Resolver(configure=False)
            resolver.nameservers = [server]

        resolver.timeout = config.lookup_timeout
        resolver.lifetime = config.lookup_timeout
        return resolver

    def resolve_batch(
        self,
        hostnames: Sequence[str],
        config: ResolverConfig,
        service_hosts: Sequence[str] = (),
        token: Optional[CancellationToken] = None,
    ) -> Optional[BatchResult]:
        token = token or CancellationToken()
        try:
            resolver = self.resolver_factory(config)
        except BackendUnavailable as e:
            logger.info(f"Batch backend unavailable: {e}")
            return None

        session = self.session_factory()
        token.on_cancel(session.close)
        try:
            doh = None
            if config.resolver_mode == "doh":
                doh = DoHClient(session, resolve_doh_endpoints(config), config.lookup_timeout_ms, token)
            geo = None
            if not config.disable_geo_lookups:
                geo = GeoLocator(session, config.geo_provider, timeout=config.lookup_timeout)

            hosts = _unique_names(hostnames)
            resolutions: List[ResolutionResult] = []
            with ThreadPoolExecutor(max_workers=RESOLVE_PARALLELISM, thread_name_prefix="batch") as pool:
                futures = [
                    pool.submit(self._resolve_host, resolver, doh, geo, host, config, token)
                    for host in hosts
                ]
                for future in futures:
                    resolutions.append(future.result())
                    token.raise_if_cancelled()

            probes, tcp_probes = self._probe_services(session, _unique_names(service_hosts), config, token)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(f"Batch backend failed, falling back: {e}")
            return None
        finally:
            session.close()

        logger.info(
            f"Batch backend resolved {len(resolutions)} host(s), "
            f"{len(probes)} HTTP probe(s), {len(tcp_probes)} TCP probe(s)"
        )
        return BatchResult(resolutions=resolutions, probes=probes, tcp_probes=tcp_probes)

    def _query_dns(self, resolver, name: str, record_type: str, token: CancellationToken) -> List[str]:
        """Query DNS for a specific record type; failures yield an empty list."""
        token.raise_if_cancelled()
        try:
            answers = resolver.resolve(name, record_type, raise_on_no_answer=False)
        except dns.exception.DNSException as e:
            logger.debug(f"DNS query failed for {name} ({record_type}): {e}")
            return []

        values: List[str] = []
        for answer in answers or []:
            value = normalize_name(answer.to_text())
            if value and value not in values:
                values.append(value)
        return values

    def _resolve_host(
        self,
        resolver,
        doh: Optional[DoHClient],
        geo: Optional[GeoLocator],
        host: str,
        config: ResolverConfig,
        token: CancellationToken,
    ) -> ResolutionResult:
        chain = [host]
        seen = {host}
        current = host

        if config.scan_resolution_chain:
            for _ in range(config.max_resolution_hops):
                cnames = self._query_dns(resolver, current, "CNAME", token)
                if not cnames and doh is not None:
                    cnames = doh.query(current, "CNAME")
                nxt = cnames[0] if cnames else ""
                if not nxt or nxt in seen:
                    break
                chain.append(nxt)
                seen.add(nxt)
                current = nxt

        ipv4 = self._query_dns(resolver, current, "A", token)
        ipv6 = self._query_dns(resolver, current, "AAAA", token)
        if doh is not None:
            if not ipv4:
                ipv4 = doh.query(current, "A")
            if not ipv6:
                ipv6 = doh.query(current, "AAAA")

        reverse: Dict[str, Tuple[str, ...]] = {}
        if not config.disable_ptr_lookups:
            for ip in ipv4 + ipv6:
                names = self._reverse_lookup(resolver, ip, token)
                if names:
                    reverse[ip] = tuple(names)

        geo_by_ip: Dict[str, Dict[str, str]] = {}
        if geo is not None:
            for ip in ipv4 + ipv6:
                token.raise_if_cancelled()
                info = geo.lookup(ip)
                if info:
                    geo_by_ip[ip] = info

        unresolved = len(chain) <= 1 and not ipv4 and not ipv6
        return ResolutionResult(
            chain=tuple(chain),
            terminal=current,
            ipv4=tuple(ipv4),
            ipv6=tuple(ipv6),
            requested_name=host,
            reverse_hostnames_by_ip=reverse or None,
            geo_by_ip=geo_by_ip or None,
            error="no CNAME/A/AAAA records found" if unresolved else None,
        )

    def _reverse_lookup(self, resolver, ip: str, token: CancellationToken) -> List[str]:
        try:
            reverse_name = dns.reversename.from_address(ip)
        except (dns.exception.SyntaxError, ValueError):
            return []
        return self._query_dns(resolver, reverse_name.to_text(), "PTR", token)

    def _probe_services(
        self,
        session: requests.Session,
        hosts: List[str],
        config: ResolverConfig,
        token: CancellationToken,
    ) -> Tuple[List[ServiceProbe], List[TcpProbe]]:
        if not hosts:
            return [], []

        probes: List[ServiceProbe] = []
        tcp_probes: List[TcpProbe] = []
        with ThreadPoolExecutor(max_workers=PROBE_PARALLELISM, thread_name_prefix="probe") as pool:
            http_futures = [
                (host, pool.submit(self._probe_url, session, f"https://{host}"),
                 pool.submit(self._probe_url, session, f"http://{host}"))
                for host in hosts
            ]
            tcp_futures = [
                (host, port, pool.submit(self._probe_tcp, host, port, config.lookup_timeout))
                for host in hosts
                for port in config.tcp_service_ports
            ]
            for host, https_future, http_future in http_futures:
                token.raise_if_cancelled()
                probes.append(ServiceProbe(host, https_future.result(), http_future.result()))
            for host, port, future in tcp_futures:
                token.raise_if_cancelled()
                tcp_probes.append(TcpProbe(host, port, future.result()))
        return probes, tcp_probes

    def _probe_url(self, session: requests.Session, url: str) -> bool:
        try:
            session.get(url, timeout=PROBE_TIMEOUT, allow_redirects=True)
            return True
        except requests.RequestException as e:
            logger.debug(f"Probe {url} failed: {e}")
            return False

    def _probe_tcp(self, host: str, port: int, timeout: float) -> bool:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError as e:
            logger.debug(f"TCP connect {host}:{port} failed: {e}")
            return False
