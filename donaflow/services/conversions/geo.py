"""Best-effort IP to country lookup across several public services."""

import httpx

from donaflow.common.logging import logger

COUNTRY_FIELDS = ("country_code", "countryCode", "country")


class GeoLocator:
    """Round-robin country lookup; never raises, returns "" when unknown.

    The rotation cursor belongs to the instance so each locator keeps its own
    spread of requests across the configured services.
    """

    def __init__(self, urls: list[str], client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self.urls = list(urls)
        self.timeout = timeout
        self._client = client
        self._cursor = 0

    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _rotation(self) -> list[str]:
        if not self.urls:
            return []
        start = self._cursor % len(self.urls)
        self._cursor = (start + 1) % len(self.urls)
        return self.urls[start:] + self.urls[:start]

    @staticmethod
    def _country_from(body) -> str:
        if not isinstance(body, dict):
            return ""
        for field in COUNTRY_FIELDS:
            value = body.get(field)
            if isinstance(value, str) and len(value.strip()) == 2:
                return value.strip().upper()
        return ""

    async def lookup(self, ip: str | None) -> str:
        """Country code for `ip`, trying each service once from the cursor."""

        if not ip:
            return ""
        for template in self._rotation():
            url = template.format(ip=ip)
            try:
                resp = await self.client().get(url)
                resp.raise_for_status()
                country = self._country_from(resp.json())
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("geo_lookup_failed url=%s error=%s", url, exc)
                continue
            if country:
                return country
            logger.debug("geo_lookup_no_country url=%s", url)
        return ""

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
