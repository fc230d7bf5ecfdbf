"""IP geolocation with a well-defined fallback.

Loopback, private, link-local and unparseable addresses resolve to "Local"
without any network call. Everything else goes to an ipapi.co-style JSON
endpoint with a bounded timeout; any failure there raises GeoLookupError,
which ``locate_or_fallback`` turns into an "Unknown" location.
"""

import ipaddress
import logging

import httpx
from prometheus_client import Counter

from shortlink.errors import GeoLookupError
from shortlink.schemas import GeoLocation

__all__ = ["is_valid_ip", "is_local_ip", "fallback_location", "GeoLocator"]

logger = logging.getLogger(__name__)

GEO_LOOKUPS_TOTAL = Counter(
    "shortlink_geo_lookups_total",
    "Geolocation lookups by outcome",
    ["outcome"],
)

UNKNOWN = "Unknown"


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def is_local_ip(ip: str) -> bool:
    """True for loopback, private and link-local addresses, and for anything unparseable."""
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return True
    return addr.is_loopback or addr.is_private or addr.is_link_local


def fallback_location(ip: str) -> GeoLocation:
    if is_local_ip(ip):
        return GeoLocation.local()
    return GeoLocation.unknown()


def _or_unknown(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        return UNKNOWN
    return value


class GeoLocator:
    def __init__(
        self,
        client: httpx.AsyncClient,
        url_template: str = "https://ipapi.co/{ip}/json/",
        timeout: float = 5.0,
    ) -> None:
        self._client = client
        self._url_template = url_template
        self._timeout = timeout

    async def locate(self, ip: str) -> GeoLocation:
        """Look up ``ip``.

        Raises:
            GeoLookupError: transport error, timeout, non-200 status,
                malformed body, or an error reported by the API.
        """
        if is_local_ip(ip):
            GEO_LOOKUPS_TOTAL.labels(outcome="local").inc()
            return GeoLocation.local()

        url = self._url_template.format(ip=ip)
        try:
            response = await self._client.get(url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise GeoLookupError(f"failed to fetch location data: {exc}") from exc

        if response.status_code != 200:
            raise GeoLookupError(f"API returned status code: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise GeoLookupError(f"failed to decode response: {exc}") from exc

        if not isinstance(payload, dict):
            raise GeoLookupError("unexpected response shape")
        if payload.get("error"):
            raise GeoLookupError(f"API error: {payload.get('reason', 'unknown')}")

        GEO_LOOKUPS_TOTAL.labels(outcome="resolved").inc()
        return GeoLocation(
            country=_or_unknown(payload.get("country_name")),
            region=_or_unknown(payload.get("region")),
            city=_or_unknown(payload.get("city")),
        )

    async def locate_or_fallback(self, ip: str) -> GeoLocation:
        try:
            return await self.locate(ip)
        except GeoLookupError as exc:
            GEO_LOOKUPS_TOTAL.labels(outcome="fallback").inc()
            logger.warning(f"Geolocation degraded for {ip}: {exc}")
            return fallback_location(ip)
