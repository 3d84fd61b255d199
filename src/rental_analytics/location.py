"""
Coarse IP geolocation.

Lookups are best effort. Local and private addresses never leave the
process, and every failure of the remote resolver degrades to an empty
LocationInfo, which callers treat as "unknown".
"""

import ipaddress
import logging
from dataclasses import dataclass

import httpx

from .config import DEFAULT_GEOLOCATION_URL

logger = logging.getLogger(__name__)

LOCAL_LABEL = "Local"

LOOKUP_FIELDS = "status,country,regionName,city"
LOOKUP_USER_AGENT = "Car Rental Analytics"


@dataclass(frozen=True)
class LocationInfo:
    """Country, city and region, each None when unknown."""
    country: str | None = None
    city: str | None = None
    region: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.country or self.city or self.region)

    def to_dict(self) -> dict:
        """Convert to row fields for storage."""
        return {
            "country": self.country,
            "city": self.city,
            "region": self.region,
        }


LOCAL_LOCATION = LocationInfo(country=LOCAL_LABEL, city=LOCAL_LABEL, region=LOCAL_LABEL)
UNKNOWN_LOCATION = LocationInfo()


def is_local_address(ip: str) -> bool:
    """Check for loopback, link-local and private addresses.

    Any `172.*` literal counts as private, not only 172.16.0.0/12.
    """
    ip = ip.strip()
    if ip == "localhost" or ip.startswith("172."):
        return True
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.is_loopback or address.is_link_local or address.is_private


def parse_ip(value: str | None) -> str | None:
    """Return `value` if it is an IP literal (or localhost), else None."""
    if not value:
        return None
    value = value.strip()
    if value == "localhost":
        return value
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        return None


class IpGeolocator:
    """Resolve IP addresses through an ip-api.com compatible endpoint."""

    def __init__(self, base_url: str = DEFAULT_GEOLOCATION_URL, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def lookup(self, ip: str | None) -> LocationInfo:
        """
        Resolve `ip` to a LocationInfo. Never raises.

        Args:
            ip: IPv4/IPv6 literal, "localhost", or None

        Returns:
            LOCAL_LOCATION for local or missing addresses, the resolver's answer on
            success, otherwise an empty LocationInfo
        """
        # Missing addresses count as local
        if not ip or not ip.strip() or is_local_address(ip):
            return LOCAL_LOCATION

        if parse_ip(ip) is None:
            logger.warning(f"Skipping geolocation for malformed address {ip!r}")
            return UNKNOWN_LOCATION

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}/{ip.strip()}",
                    params={"fields": LOOKUP_FIELDS},
                    headers={"User-Agent": LOOKUP_USER_AGENT},
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Geolocation lookup failed for {ip}: {e}")
            return UNKNOWN_LOCATION

        if not isinstance(data, dict) or data.get("status") != "success":
            return UNKNOWN_LOCATION

        return LocationInfo(
            country=data.get("country") or None,
            city=data.get("city") or None,
            region=data.get("regionName") or None,
        )


async def detect_location(ip: str | None, geolocator: IpGeolocator | None = None) -> LocationInfo:
    """Resolve `ip` with the given (or a default) geolocator."""
    return await (geolocator or IpGeolocator()).lookup(ip)
