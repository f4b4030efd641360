"""
IP geolocation lookups used to annotate resolved addresses.
"""

import logging
from typing import Callable, Dict, Optional, Tuple

import requests

from ..utils.validators import is_private_address

logger = logging.getLogger(__name__)

GeoInfo = Dict[str, str]


def _parse_ipwhois(payload: Dict) -> Optional[GeoInfo]:
    if payload.get("success") is False:
        return None
    return _geo(payload.get("country"), payload.get("country_code"))


def _parse_ipapi_co(payload: Dict) -> Optional[GeoInfo]:
    if payload.get("error"):
        return None
    return _geo(payload.get("country_name"), payload.get("country_code"))


def _parse_ip_api(payload: Dict) -> Optional[GeoInfo]:
    if payload.get("status") != "success":
        return None
    return _geo(payload.get("country"), payload.get("countryCode"))


def _geo(country, country_code) -> Optional[GeoInfo]:
    country = str(country or "").strip()
    if not country:
        return None
    geo = {"country": country}
    code = str(country_code or "").strip()
    if code:
        geo["country_code"] = code
    return geo


GEO_ENDPOINTS: Dict[str, Tuple[str, Callable[[Dict], Optional[GeoInfo]]]] = {
    "ipwhois": ("https://ipwho.is/{ip}", _parse_ipwhois),
    "ipapi_co": ("https://ipapi.co/{ip}/json/", _parse_ipapi_co),
    "ip_api": ("http://ip-api.com/json/{ip}", _parse_ip_api),
}

AUTO_ORDER = ("ipwhois", "ipapi_co", "ip_api")


class GeoLocator:
    """Country lookup for IP addresses, memoized per locator instance."""

    def __init__(self, session: requests.Session, provider: str = "auto", timeout: float = 2.0):
        self.session = session
        self.provider = provider
        self.timeout = timeout
        self._memo: Dict[str, Optional[GeoInfo]] = {}

    def lookup(self, ip: str) -> Optional[GeoInfo]:
        if ip in self._memo:
            return self._memo[ip]

        if is_private_address(ip):
            geo = {"country": "Private network"}
        elif self.provider == "internal":
            geo = None
        else:
            order = AUTO_ORDER if self.provider == "auto" else (self.provider,)
            geo = None
            for provider in order:
                geo = self._query(provider, ip)
                if geo:
                    break

        self._memo[ip] = geo
        return geo

    def _query(self, provider: str, ip: str) -> Optional[GeoInfo]:
        url_template, parser = GEO_ENDPOINTS[provider]
        try:
            response = self.session.get(url_template.format(ip=ip), timeout=self.timeout)
            if not response.ok:
                return None
            return parser(response.json() or {})
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"Geo lookup via {provider} failed for {ip}: {e}")
            return None
