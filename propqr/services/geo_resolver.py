import ipaddress
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


@dataclass(frozen=True)
class GeoLocation:
    country: str = UNKNOWN
    region: str = UNKNOWN


UNKNOWN_LOCATION = GeoLocation()


class GeoResolver:
    """
    IP → 국가/지역 조회 (ip-api.com 호환 JSON 응답).
    조회 실패는 예외 없이 UNKNOWN_LOCATION 으로 처리한다.
    """

    def __init__(self, lookup_url: str, timeout: float = 2.0, client: Optional[httpx.Client] = None):
        self.lookup_url = lookup_url
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def resolve(self, ip: Optional[str]) -> GeoLocation:
        if not self.lookup_url or not ip:
            return UNKNOWN_LOCATION

        try:
            addr = ipaddress.ip_address(ip.strip())
        except ValueError:
            logger.debug(f"[GEO] Invalid IP: {ip!r}")
            return UNKNOWN_LOCATION
        if addr.is_private or addr.is_loopback or addr.is_reserved:
            return UNKNOWN_LOCATION

        try:
            resp = self._get_client().get(self.lookup_url.format(ip=str(addr)))
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[GEO] Lookup failed for {addr}: {e}")
            return UNKNOWN_LOCATION

        if data.get("status") not in (None, "success"):
            return UNKNOWN_LOCATION

        country = data.get("countryCode") or data.get("country") or UNKNOWN
        region = data.get("regionName") or data.get("region") or UNKNOWN
        return GeoLocation(country=str(country), region=str(region))

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
