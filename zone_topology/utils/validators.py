"""
Validators - Input normalization and configuration validation

This module provides hostname normalization, IP detection and the
resolver configuration value used throughout the topology engine.
"""

import hashlib
import ipaddress
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

RESOLVER_MODES = ("dns", "doh")
DOH_PROVIDERS = ("google", "cloudflare", "quad9", "custom")
GEO_PROVIDERS = ("auto", "ipwhois", "ipapi_co", "ip_api", "internal")

MIN_HOPS = 1
MAX_HOPS = 15
MIN_TIMEOUT_MS = 250
MAX_TIMEOUT_MS = 10000

_IPV4_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
_IPV6_RE = re.compile(r"^[0-9a-f:.]+$", re.IGNORECASE)


class ConfigurationError(ValueError):
    """Raised when resolver configuration is outside its documented range."""


def normalize_name(name: Optional[str]) -> str:
    """
    Normalize a hostname for use as a map key.

    Args:
        name: Raw hostname, possibly fully qualified with a trailing dot

    Returns:
        Lowercase hostname without surrounding whitespace or trailing dot
    """
    if not name:
        return ""
    value = str(name).strip().lower()
    while value.endswith("."):
        value = value[:-1]
    return value


def is_ip_address(value: Optional[str]) -> bool:
    """Check whether a record target is a literal IPv4 or IPv6 address."""
    candidate = str(value or "").strip()
    if not candidate:
        return False
    if _IPV4_RE.match(candidate):
        return True
    if ":" in candidate and _IPV6_RE.match(candidate):
        return True
    return False


def is_private_address(value: str) -> bool:
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local


def _clamp_int(value, lower: int, upper: int, option: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{option} must be a number, got {value!r}")
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        raise ConfigurationError(f"{option} must be a number, got {value!r}")

    clamped = max(lower, min(upper, number))
    if clamped != number:
        logger.warning(f"{option}={number} outside {lower}..{upper}, clamped to {clamped}")
    return clamped


def _choice(value, choices: Tuple[str, ...], option: str) -> str:
    normalized = str(value).strip().lower()
    if normalized not in choices:
        raise ConfigurationError(
            f"{option} must be one of: {', '.join(choices)} (got {value!r})"
        )
    return normalized


def _flag(options: Dict[str, Any], option: str, default: bool) -> bool:
    value = options.get(option, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{option} must be true or false, got {value!r}")
    return value


def _validate_ports(ports) -> Tuple[int, ...]:
    if ports is None:
        return ()
    if not isinstance(ports, (list, tuple)):
        raise ConfigurationError("tcp_service_ports must be a list of integers")
    validated = []
    for port in ports:
        if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
            raise ConfigurationError(f"Invalid TCP service port: {port!r}")
        if port not in validated:
            validated.append(port)
    return tuple(validated)


@dataclass(frozen=True)
class ResolverConfig:
    """Resolver options recognized by the topology engine."""

    resolver_mode: str = "dns"
    dns_server: str = "1.1.1.1"
    custom_dns_server: str = ""
    doh_provider: str = "cloudflare"
    doh_custom_url: str = ""
    max_resolution_hops: int = MAX_HOPS
    lookup_timeout_ms: int = 1200
    disable_ptr_lookups: bool = False
    disable_geo_lookups: bool = False
    geo_provider: str = "auto"
    scan_resolution_chain: bool = True
    disable_service_discovery: bool = False
    tcp_service_ports: Tuple[int, ...] = field(default=(80, 443, 22))
    max_workers: int = 16
    use_backend: bool = True

    @classmethod
    def from_dict(cls, options: Optional[Dict]) -> "ResolverConfig":
        """
        Build a validated configuration from a YAML ``resolver:`` mapping.

        Args:
            options: Mapping of snake_case option names to values

        Returns:
            Immutable, validated ResolverConfig

        Raises:
            ConfigurationError: If an option is malformed or unknown
        """
        options = dict(options or {})
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigurationError(f"Unknown resolver option(s): {', '.join(unknown)}")

        defaults = cls()
        return cls(
            resolver_mode=_choice(
                options.get("resolver_mode", defaults.resolver_mode), RESOLVER_MODES, "resolver_mode"
            ),
            dns_server=str(options.get("dns_server", defaults.dns_server) or "").strip(),
            custom_dns_server=str(options.get("custom_dns_server") or "").strip(),
            doh_provider=_choice(
                options.get("doh_provider", defaults.doh_provider), DOH_PROVIDERS, "doh_provider"
            ),
            doh_custom_url=str(options.get("doh_custom_url") or "").strip(),
            max_resolution_hops=_clamp_int(
                options.get("max_resolution_hops", defaults.max_resolution_hops),
                MIN_HOPS,
                MAX_HOPS,
                "max_resolution_hops",
            ),
            lookup_timeout_ms=_clamp_int(
                options.get("lookup_timeout_ms", defaults.lookup_timeout_ms),
                MIN_TIMEOUT_MS,
                MAX_TIMEOUT_MS,
                "lookup_timeout_ms",
            ),
            disable_ptr_lookups=_flag(options, "disable_ptr_lookups", False),
            disable_geo_lookups=_flag(options, "disable_geo_lookups", False),
            geo_provider=_choice(
                options.get("geo_provider", defaults.geo_provider), GEO_PROVIDERS, "geo_provider"
            ),
            scan_resolution_chain=_flag(options, "scan_resolution_chain", True),
            disable_service_discovery=_flag(options, "disable_service_discovery", False),
            tcp_service_ports=_validate_ports(
                options.get("tcp_service_ports", list(defaults.tcp_service_ports))
            ),
            max_workers=_clamp_int(options.get("max_workers", defaults.max_workers), 1, 64, "max_workers"),
            use_backend=_flag(options, "use_backend", True),
        )

    @property
    def lookup_timeout(self) -> float:
        """Per-query timeout in seconds."""
        return self.lookup_timeout_ms / 1000.0

    def fingerprint(self) -> str:
        """Stable text form of every option, used in run keys."""
        values = asdict(self)
        return "|".join(f"{key}={values[key]}" for key in sorted(values))

    def cache_prefix(self) -> str:
        """Hash of the options that change what a lookup returns."""
        geo = "nogeo" if self.disable_geo_lookups else f"geo:{self.geo_provider}"
        parts = [
            self.resolver_mode,
            self.dns_server,
            self.custom_dns_server,
            self.doh_provider,
            self.doh_custom_url,
            str(self.max_resolution_hops),
            "noptr" if self.disable_ptr_lookups else "ptr",
            geo,
            "chain" if self.scan_resolution_chain else "nochain",
        ]
        return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()


def validate_zone_name(zone: str) -> bool:
    """
    Validate DNS zone name.

    Args:
        zone: The zone name to validate

    Returns:
        True if valid, False otherwise
    """
    normalized = normalize_name(zone)
    if not normalized or len(normalized) > 253:
        return False
    if is_ip_address(normalized):
        return False

    labels: List[str] = normalized.split(".")
    for label in labels:
        if not re.match(r"^[a-z0-9_]([a-z0-9_-]{0,61}[a-z0-9])?$", label):
            logger.warning(f"Invalid label '{label}' in zone: {zone}")
            return False
    return True
