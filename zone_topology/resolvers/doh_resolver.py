"""
DNS-over-HTTPS fallback resolver.

Resolves each hostname independently by querying a ranked list of
JSON DoH endpoints in sequence, accepting the first non-empty answer.
"""

import logging
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence

import requests

from .base_resolver import ExternalResolver, ResultCallback
from ..core.models import ResolutionResult
from ..utils.cancellation import CancellationToken, OperationCancelled
from ..utils.validators import MIN_TIMEOUT_MS, ResolverConfig, normalize_name

logger = logging.getLogger(__name__)

CLOUDFLARE_DOH = "https://cloudflare-dns.com/dns-query"
GOOGLE_DOH = "https://dns.google/resolve"
QUAD9_DOH = "https://dns.quad9.net:5053/dns-query"

DEFAULT_DOH_ENDPOINTS = (CLOUDFLARE_DOH, GOOGLE_DOH, QUAD9_DOH)

PROVIDER_DOH_ENDPOINTS = {
    "cloudflare": CLOUDFLARE_DOH,
    "google": GOOGLE_DOH,
    "quad9": QUAD9_DOH,
}

PROVIDER_DNS_SERVERS = {
    "cloudflare": "1.1.1.1",
    "google": "8.8.8.8",
    "quad9": "9.9.9.9",
}

SERVER_DOH_ENDPOINTS = {
    "1.1.1.1": CLOUDFLARE_DOH,
    "1.0.0.1": CLOUDFLARE_DOH,
    "8.8.8.8": GOOGLE_DOH,
    "8.8.4.4": GOOGLE_DOH,
    "9.9.9.9": QUAD9_DOH,
    "149.112.112.112": QUAD9_DOH,
}

# JSON DoH answer type codes
RRTYPE_CODES = {"A": 1, "CNAME": 5, "PTR": 12, "AAAA": 28}


def select_dns_server(config: ResolverConfig) -> str:
    """The plain DNS server address implied by the configuration."""
    selected = config.dns_server.strip()
    if selected.lower() == "custom":
        custom = config.custom_dns_server.strip()
        if custom:
            return custom
        selected = ""
    if selected:
        return selected
    return PROVIDER_DNS_SERVERS.get(config.doh_provider, "1.1.1.1")


def resolve_doh_endpoints(config: ResolverConfig) -> List[str]:
    """
    Rank DoH endpoints for a configuration.

    The preferred endpoint comes first: the custom URL when set, else the
    endpoint matching the selected DNS server, else the provider's endpoint.
    Cloudflare, Google and Quad9 follow, deduplicated in order.
    """
    preferred = config.doh_custom_url.strip()
    if not preferred:
        preferred = SERVER_DOH_ENDPOINTS.get(select_dns_server(config), "")
    if not preferred:
        preferred = PROVIDER_DOH_ENDPOINTS.get(config.doh_provider, CLOUDFLARE_DOH)

    endpoints: List[str] = []
    for endpoint in (preferred,) + DEFAULT_DOH_ENDPOINTS:
        if endpoint and endpoint not in endpoints:
            endpoints.append(endpoint)
    return endpoints


class DoHClient:
    """Cascading JSON DoH queries over one requests session."""

    def __init__(
        self,
        session: requests.Session,
        endpoints: Sequence[str],
        timeout_ms: int,
        token: Optional[CancellationToken] = None,
    ):
        self.session = session
        self.endpoints = list(endpoints)
        self.timeout = max(MIN_TIMEOUT_MS, int(timeout_ms)) / 1000.0
        self.token = token or CancellationToken()
        self.queries = 0

    def query(self, name: str, record_type: str) -> List[str]:
        """
        Query endpoints in order until one returns a non-empty answer.

        Returns:
            Deduplicated, normalized answer data; empty when every endpoint failed
        """
        for endpoint in self.endpoints:
            self.token.raise_if_cancelled()
            answers = self._query_one(endpoint, name, record_type)
            if answers:
                return answers
        return []

    def _query_one(self, endpoint: str, name: str, record_type: str) -> List[str]:
        self.queries += 1
        try:
            response = self.session.get(
                endpoint,
                params={"name": name, "type": record_type},
                headers={"Accept": "application/dns-json"},
                timeout=(self.timeout, self.timeout),
            )
            if not response.ok:
                logger.debug(f"DoH {endpoint} returned HTTP {response.status_code} for {name} {record_type}")
                return []
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            if self.token.cancelled:
                raise OperationCancelled(self.token.reason or "operation cancelled")
            logger.debug(f"DoH query to {endpoint} failed for {name} {record_type}: {e}")
            return []

        wanted = RRTYPE_CODES.get(record_type)
        answers: List[str] = []
        for answer in (payload or {}).get("Answer") or []:
            if not isinstance(answer, dict):
                continue
            answer_type = answer.get("type")
            if wanted is not None and answer_type is not None and answer_type != wanted:
                continue
            value = normalize_name(answer.get("data"))
            if value and value not in answers:
                answers.append(value)
        return answers


class FallbackDoHResolver(ExternalResolver):
    """Per-hostname DoH resolution with a bounded worker pool."""

    def __init__(self, session_factory=requests.Session):
        self.session_factory = session_factory

    def resolve(
        self,
        names: Sequence[str],
        config: ResolverConfig,
        token: Optional[CancellationToken] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> Dict[str, ResolutionResult]:
        token = token or CancellationToken()
        unique = []
        for name in names:
            normalized = normalize_name(name)
            if normalized and normalized not in unique:
                unique.append(normalized)
        if not unique:
            return {}

        endpoints = resolve_doh_endpoints(config)
        logger.info(f"Resolving {len(unique)} hostname(s) over DoH via {endpoints[0]}")

        results: Dict[str, ResolutionResult] = {}
        session = self.session_factory()
        token.on_cancel(session.close)
        executor = ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="doh")
        try:
            client = DoHClient(session, endpoints, config.lookup_timeout_ms, token)
            pending = {
                executor.submit(self.resolve_one, client, name, config): name for name in unique
            }
            while pending:
                done, _ = wait(list(pending), timeout=0.1, return_when=FIRST_COMPLETED)
                token.raise_if_cancelled()
                for future in done:
                    name = pending.pop(future)
                    result = future.result()
                    results[name] = result
                    if on_result:
                        on_result(name, result)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            session.close()
        return results

    def resolve_one(self, client: DoHClient, name: str, config: ResolverConfig) -> ResolutionResult:
        """Follow CNAMEs (when enabled) then query A and AAAA in parallel."""
        start = normalize_name(name)
        if not start:
            return ResolutionResult(chain=(), terminal="", error="empty name")

        chain = [start]
        seen = {start}
        current = start
        try:
            if config.scan_resolution_chain:
                hops = 0
                while hops < config.max_resolution_hops:
                    cnames = client.query(current, "CNAME")
                    nxt = cnames[0] if cnames else ""
                    if not nxt or nxt in seen:
                        break
                    chain.append(nxt)
                    seen.add(nxt)
                    current = nxt
                    hops += 1

            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="doh-addr") as lookups:
                ipv4_future = lookups.submit(client.query, current, "A")
                ipv6_future = lookups.submit(client.query, current, "AAAA")
                ipv4 = ipv4_future.result()
                ipv6 = ipv6_future.result()
        except OperationCancelled:
            raise
        except Exception as e:
            logger.debug(f"DoH resolution failed for {start}: {e}")
            return ResolutionResult(
                chain=tuple(chain), terminal=current, requested_name=start, error=str(e)
            )

        error = None
        if len(chain) <= 1 and not ipv4 and not ipv6:
            error = "no CNAME/A/AAAA records found"
        return ResolutionResult(
            chain=tuple(chain),
            terminal=current,
            ipv4=tuple(ipv4),
            ipv6=tuple(ipv6),
            requested_name=start,
            error=error,
        )
