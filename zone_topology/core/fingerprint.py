"""
Service Fingerprinter - Recognizes hosting and CDN providers by hostname
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from ..utils.validators import is_ip_address, normalize_name

logger = logging.getLogger(__name__)

# Tested in declared order; the first match wins.
SERVICE_PATTERNS: Tuple[Tuple[str, str], ...] = (
    (r"cloudfront\.net$", "AWS CloudFront"),
    (r"elb\.amazonaws\.com$", "AWS ELB"),
    (r"azureedge\.net$", "Azure Edge/CDN"),
    (r"trafficmanager\.net$", "Azure Traffic Manager"),
    (r"fastly\.net$", "Fastly"),
    (r"akamai(?:net|hd)\.net$", "Akamai"),
    (r"herokudns\.com$", "Heroku DNS"),
    (r"vercel-dns\.com$", "Vercel"),
    (r"github\.io$", "GitHub Pages"),
    (r"netlify\.(?:app|global)$", "Netlify"),
    (r"cloudflare\.com$", "Cloudflare"),
)


class ServiceFingerprinter:
    """Matches resolution targets against known provider hostname patterns."""

    def __init__(self, patterns: Iterable[Tuple[str, str]] = SERVICE_PATTERNS):
        self.patterns: List[Tuple[Pattern, str]] = [
            (re.compile(pattern, re.IGNORECASE), provider) for pattern, provider in patterns
        ]

    def match(self, target: str) -> Optional[str]:
        """Return the first provider whose pattern matches, or None."""
        name = normalize_name(target)
        if not name or is_ip_address(name):
            return None
        for pattern, provider in self.patterns:
            if pattern.search(name):
                return provider
        return None

    def fingerprint(self, targets: Iterable[str]) -> List[Dict[str, str]]:
        """
        Fingerprint each unique target once.

        Returns:
            List of {"target", "service"} entries in first-seen target order
        """
        detected = []
        seen = set()
        for target in targets:
            name = normalize_name(target)
            if not name or name in seen:
                continue
            seen.add(name)
            provider = self.match(name)
            if provider:
                detected.append({"target": name, "service": provider})
        if detected:
            logger.debug(f"Detected {len(detected)} third-party service target(s)")
        return detected
