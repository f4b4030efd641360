"""
Service Discovery - Service signals inferred from records and live probes

Signals come from two places: record heuristics (MX means SMTP, NS means
DNS, and so on) and reachability probes for a handful of web hosts plus
TCP connect probes on configured ports. Probes go through the batch
backend when it is present and fall back to direct HTTP requests.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import requests

from .cache import CACHE_TTL_SECONDS
from .models import Record
from ..resolvers.base_resolver import BatchResolver, ServiceProbe
from ..utils.validators import ResolverConfig, normalize_name

logger = logging.getLogger(__name__)

MAX_PROBE_HOSTS = 4
HTTP_PROBE_TIMEOUT = 5.0

PORT_LABELS = {
    21: "FTP",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    110: "POP3",
    143: "IMAP",
    443: "HTTPS",
    465: "SMTPS",
    587: "Submission",
    993: "IMAPS",
    995: "POP3S",
    3306: "MySQL",
    5432: "PostgreSQL",
}


def port_label(port: int) -> str:
    return PORT_LABELS.get(port, f"TCP {port}")


@dataclass(frozen=True)
class DiscoveryItem:
    service: str
    status: str  # up, down or inferred
    details: str

    def to_dict(self) -> Dict[str, str]:
        return {"service": self.service, "status": self.status, "details": self.details}


def infer_services(records: Sequence[Record]) -> List[DiscoveryItem]:
    """Service signals implied by the record set alone."""
    items = []
    srv_records = [r for r in records if r.type == "SRV"]
    if any(r.type == "MX" for r in records):
        items.append(DiscoveryItem("SMTP", "inferred", "MX records present"))
    if any(r.type == "NS" for r in records):
        items.append(DiscoveryItem("DNS", "inferred", "NS records present"))

    ssh_host = any("ssh" in normalize_name(r.name) for r in records)
    ssh_srv = any("22 " in str(r.content or "").lower() for r in srv_records)
    if ssh_host or ssh_srv:
        items.append(DiscoveryItem("SSH", "inferred", "SSH-like host/SRV detected"))
    if any("_ftp" in normalize_name(r.name) for r in srv_records):
        items.append(DiscoveryItem("FTP", "inferred", "FTP SRV found"))
    return items


def select_probe_hosts(records: Sequence[Record], zone: str) -> List[str]:
    """The apex, ``www.`` and any apex/www/api web names, capped at four."""
    base = normalize_name(zone)
    hosts: List[str] = []
    for host in (base, f"www.{base}" if base else ""):
        if host and host not in hosts:
            hosts.append(host)
    for record in records:
        if record.type not in ("A", "AAAA", "CNAME"):
            continue
        name = normalize_name(record.name)
        if name and (name == base or name.startswith("www.") or name.startswith("api.")):
            if name not in hosts:
                hosts.append(name)
    return hosts[:MAX_PROBE_HOSTS]


class ServiceDiscovery:
    """Runs service discovery for a zone with a five-minute probe cache."""

    def __init__(
        self,
        backend: Optional[BatchResolver] = None,
        session_factory=requests.Session,
        clock: Optional[Callable[[], float]] = None,
        ttl: float = CACHE_TTL_SECONDS,
        direct_probes: bool = True,
    ):
        self.backend = backend
        self.direct_probes = direct_probes
        self.session_factory = session_factory
        self.clock = clock or time.monotonic
        self.ttl = ttl
        self._probe_cache: Dict[str, Tuple[ServiceProbe, float]] = {}
        self._lock = threading.Lock()

    def _cache_key(self, config: ResolverConfig, host: str) -> str:
        return f"{config.cache_prefix()}|probe|{host}"

    def _cached_probe(self, config: ResolverConfig, host: str) -> Optional[ServiceProbe]:
        with self._lock:
            entry = self._probe_cache.get(self._cache_key(config, host))
        if entry is None or self.clock() - entry[1] > self.ttl:
            return None
        return entry[0]

    def _store_probe(self, config: ResolverConfig, probe: ServiceProbe) -> None:
        with self._lock:
            self._probe_cache[self._cache_key(config, probe.host)] = (probe, self.clock())

    def discover(self, records: Sequence[Record], zone: str, config: ResolverConfig) -> List[DiscoveryItem]:
        """
        Collect service signals for a zone.

        Args:
            records: Zone record set
            zone: Zone name
            config: Resolver configuration

        Returns:
            Inferred signals followed by probe results; empty when discovery is disabled
        """
        if config.disable_service_discovery:
            logger.info("Service discovery disabled by configuration")
            return []

        items = infer_services(records)
        hosts = select_probe_hosts(records, zone)

        probes: Dict[str, ServiceProbe] = {}
        for host in hosts:
            cached = self._cached_probe(config, host)
            if cached is not None:
                probes[host] = cached

        batch = None
        if self.backend is not None:
            try:
                batch = self.backend.resolve_batch([], config, service_hosts=hosts)
            except Exception as e:
                logger.warning(f"Backend probe call failed: {e}")

        if batch is not None and batch.probes:
            for probe in batch.probes:
                host = normalize_name(probe.host)
                probe = ServiceProbe(host, probe.https_up, probe.http_up)
                probes[host] = probe
                self._store_probe(config, probe)

        if probes:
            for probe in probes.values():
                items.extend(self._probe_items(probe, "Backend probe reachable", "Backend probe failed"))
        elif self.direct_probes:
            items.extend(self._direct_probe_items(hosts))
        else:
            logger.info(f"Direct probes disabled, skipping {len(hosts)} host(s)")

        if batch is not None:
            for tcp in batch.tcp_probes:
                items.append(
                    DiscoveryItem(
                        f"{port_label(tcp.port)} ({tcp.host}:{tcp.port})",
                        "up" if tcp.up else "down",
                        "TCP connect succeeded" if tcp.up else "TCP connect failed",
                    )
                )

        logger.info(f"Discovery complete: found {len(items)} service signal(s) for {zone}")
        return items

    @staticmethod
    def _probe_items(probe: ServiceProbe, up_text: str, down_text: str) -> List[DiscoveryItem]:
        return [
            DiscoveryItem(
                f"HTTPS ({probe.host})",
                "up" if probe.https_up else "down",
                up_text if probe.https_up else down_text,
            ),
            DiscoveryItem(
                f"HTTP ({probe.host})",
                "up" if probe.http_up else "down",
                up_text if probe.http_up else down_text,
            ),
        ]

    def _direct_probe_items(self, hosts: List[str]) -> List[DiscoveryItem]:
        items = []
        with self.session_factory() as session:
            for host in hosts:
                probe = ServiceProbe(
                    host,
                    self._probe_http(session, f"https://{host}"),
                    self._probe_http(session, f"http://{host}"),
                )
                items.extend(self._probe_items(probe, "Probe reachable", "Probe failed/blocked"))
        return items

    def _probe_http(self, session: requests.Session, url: str) -> bool:
        try:
            session.get(url, timeout=HTTP_PROBE_TIMEOUT)
            return True
        except requests.RequestException as e:
            logger.debug(f"Direct probe {url} failed: {e}")
            return False
