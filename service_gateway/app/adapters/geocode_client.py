"""
Place name geocoding through Nominatim.
"""

from typing import Any, Dict, List

import httpx

from shared.errors import NotFoundError, UpstreamMalformedResponse, UpstreamServerError, UpstreamTimeout, ValidationError
from shared.logging import get_logger

SERVICE = "geocode"


class GeocodeClient:
    """Resolves a place name to the ``lat,lon`` string the data API expects."""

    def __init__(self, search_url: str, http_client: httpx.AsyncClient,
                 user_agent: str = "AstroInsights/1.0", timeout: float = 10.0):
        self.search_url = search_url
        self.user_agent = user_agent
        self.timeout = timeout
        self.logger = get_logger("gateway.geocode_client")
        self._client = http_client

    async def search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        if not query or not query.strip():
            raise ValidationError("Missing required parameter: q", details={"field": "q"})

        try:
            response = await self._client.get(
                self.search_url,
                params={"q": query.strip(), "format": "json", "limit": limit},
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(SERVICE) from exc
        except httpx.HTTPError as exc:
            raise UpstreamServerError(SERVICE, "Geocoding service unreachable", details={"error": str(exc)}) from exc

        if response.status_code != 200:
            self.logger.error("Geocoding failed", status_code=response.status_code, query=query)
            raise UpstreamServerError(
                SERVICE,
                f"Unexpected status {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            results = response.json()
        except ValueError as exc:
            raise UpstreamMalformedResponse(SERVICE, "Geocoding response is not JSON") from exc
        if not isinstance(results, list):
            raise UpstreamMalformedResponse(SERVICE, "Geocoding response is not a list")

        return [
            {
                "lat": item.get("lat"),
                "lon": item.get("lon"),
                "display_name": item.get("display_name"),
            }
            for item in results
            if isinstance(item, dict)
        ]

    async def resolve(self, place: str) -> str:
        """Best match for ``place`` as ``"lat,lon"``."""
        results = await self.search(place, limit=1)
        if not results or not results[0]["lat"] or not results[0]["lon"]:
            raise NotFoundError(f"Could not find coordinates for {place}", details={"place": place})

        best = results[0]
        coordinates = f"{float(best['lat']):.4f},{float(best['lon']):.4f}"
        self.logger.info("Place geocoded", place=place, coordinates=coordinates)
        return coordinates
