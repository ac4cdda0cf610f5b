"""
IP geolocation for audit entries via ipinfo.io.

Lookups are best-effort: failures resolve to an "Unknown" location and are
logged, never raised.
"""

import ipaddress
import re
from typing import Any, Dict, Optional

import httpx
import structlog

from .cache import TTLCache

logger = structlog.get_logger(__name__)

IPINFO_URL = "https://ipinfo.io"
LOOKUP_TIMEOUT_SECONDS = 5.0

_PRIVATE_RANGES = (
    re.compile(r"^127\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^10\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^::1$"),
    re.compile(r"^fc00:"),
    re.compile(r"^169\.254\."),
)

LOCAL_LOCATION: Dict[str, Any] = {
    "country": "Local Network",
    "region": "Private",
    "city": "Private",
    "isp": "Local Network",
}

UNKNOWN_LOCATION: Dict[str, Any] = {
    "country": "Unknown",
    "region": "Unknown",
    "city": "Unknown",
    "timezone": "Unknown",
    "isp": "Unknown",
}


def is_private_ip(ip: Optional[str]) -> bool:
    if not ip or ip == "unknown":
        return True
    return any(pattern.match(ip) for pattern in _PRIVATE_RANGES)


def is_valid_ip(ip: str) -> bool:
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True


class GeoLocator:
    """Resolves IPs to coarse locations, caching results for the TTL."""

    def __init__(
        self,
        cache: TTLCache,
        token: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.cache = cache
        self.token = token
        self.client = client

    def locate(self, ip: Optional[str]) -> Dict[str, Any]:
        if is_private_ip(ip):
            return dict(LOCAL_LOCATION)
        if not is_valid_ip(ip):
            return dict(UNKNOWN_LOCATION)

        cached = self.cache.get(ip)
        if cached is not None:
            return cached

        try:
            location = self._fetch(ip)
        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
            logger.warning("geolocation_lookup_failed", ip=ip, error=str(e))
            return dict(UNKNOWN_LOCATION)

        self.cache.set(ip, location)
        return location

    def _get(self, url: str, **kwargs) -> httpx.Response:
        if self.client is not None:
            return self.client.get(url, **kwargs)
        with httpx.Client(timeout=LOOKUP_TIMEOUT_SECONDS) as client:
            return client.get(url, **kwargs)

    def _fetch(self, ip: str) -> Dict[str, Any]:
        if self.token:
            url, params = f"{IPINFO_URL}/{ip}", {"token": self.token}
        else:
            url, params = f"{IPINFO_URL}/{ip}/json", None
        response = self._get(
            url,
            params=params,
            headers={"Accept": "application/json", "User-Agent": "quota-guard/1.0"},
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected geolocation payload: {type(data).__name__}")

        lat = lon = None
        if data.get("loc"):
            lat_text, lon_text = str(data["loc"]).split(",", 1)
            lat, lon = float(lat_text), float(lon_text)

        return {
            "country": data.get("country") or "Unknown",
            "region": data.get("region") or "Unknown",
            "city": data.get("city") or "Unknown",
            "timezone": data.get("timezone") or "Unknown",
            "isp": data.get("org") or "Unknown",
            "lat": lat,
            "lon": lon,
            "postal": data.get("postal"),
        }
