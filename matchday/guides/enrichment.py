"""Places enrichment source for stadium guides (TripAdvisor Content API)."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

from matchday.telemetry import record_provider_error, record_provider_request

logger = logging.getLogger(__name__)

PROVIDER = "tripadvisor"


@dataclass
class PlaceInfo:
    """Enrichment payload for a venue and its city."""

    overview: Optional[str] = None
    city_highlights: Optional[str] = None
    attractions: list[dict] = field(default_factory=list)
    restaurants: list[dict] = field(default_factory=list)
    facilities: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    transport: Optional[str] = None


class EnrichmentSource(ABC):
    """Looks up descriptive content for a place; None means nothing usable was found."""

    @abstractmethod
    async def find_place_info(self, query: str, city: Optional[str]) -> Optional[PlaceInfo]:
        pass

    async def close(self) -> None:
        pass


class TripAdvisorClient(EnrichmentSource):
    """TripAdvisor Content API client.

    Every failure mode (no key, no match, HTTP or transport error) yields
    None so the caller can fall back to placeholder content.
    """

    BASE_URL = "https://api.content.tripadvisor.com/api/v1"

    def __init__(self, api_key: str, timeout: float = 15.0, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout, headers={"accept": "application/json"})
        if not api_key:
            logger.warning("[GUIDES] TripAdvisor disabled: no API key provided")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _get(self, endpoint: str, params: Optional[dict] = None) -> Optional[dict]:
        query = {"key": self.api_key, "language": "en", **(params or {})}
        endpoint_label = "location/search" if endpoint.endswith("search") else f"location/{endpoint.rsplit('/', 1)[-1]}"
        start_time = time.monotonic()
        try:
            response = await self.client.get(f"{self.BASE_URL}/{endpoint}", params=query)
        except httpx.HTTPError as e:
            record_provider_error(PROVIDER, endpoint_label, "request_error")
            logger.warning(f"[GUIDES] TripAdvisor {endpoint} failed: {e}")
            return None

        record_provider_request(PROVIDER, endpoint_label, response.status_code, (time.monotonic() - start_time) * 1000)
        if response.status_code != 200:
            record_provider_error(PROVIDER, endpoint_label, f"http_{response.status_code}")
            logger.warning(f"[GUIDES] TripAdvisor {endpoint} returned {response.status_code}")
            return None
        return response.json()

    async def _search(self, query: str, category: str) -> list[dict]:
        data = await self._get("location/search", {"searchQuery": query, "category": category})
        return (data or {}).get("data") or []

    async def find_place_info(self, query: str, city: Optional[str]) -> Optional[PlaceInfo]:
        if not self.enabled:
            return None

        try:
            matches = await self._search(query, "attractions")
            if not matches:
                logger.info(f"[GUIDES] No TripAdvisor location for {query!r}")
                return None

            location = matches[0]
            location_id = location.get("location_id")
            details = await self._get(f"location/{location_id}/details") or {}
            photos = await self._get(f"location/{location_id}/photos") or {}

            attractions = []
            restaurants = []
            city_highlights = None
            if city:
                attractions = await self._search(f"{city} attractions", "attractions")
                restaurants = await self._search(f"restaurants near {query}", "restaurants")
                city_matches = await self._search(city, "geos")
                if city_matches:
                    city_details = await self._get(f"location/{city_matches[0].get('location_id')}/details") or {}
                    city_highlights = city_details.get("description")

            address = details.get("address_obj") or {}
            return PlaceInfo(
                overview=details.get("description") or location.get("name"),
                city_highlights=city_highlights,
                attractions=[
                    {"name": a.get("name"), "distance": a.get("distance")}
                    for a in attractions[:5] if a.get("name")
                ],
                restaurants=[
                    {"name": r.get("name"), "distance": r.get("distance")}
                    for r in restaurants[:5] if r.get("name")
                ],
                facilities=list(details.get("amenities") or []),
                images=[
                    p["images"]["large"]["url"]
                    for p in (photos.get("data") or [])
                    if (p.get("images") or {}).get("large", {}).get("url")
                ],
                transport=address.get("address_string"),
            )
        except Exception as e:
            logger.error(f"[GUIDES] TripAdvisor lookup failed for {query!r}: {e}")
            return None

    async def close(self) -> None:
        await self.client.aclose()
