"""Stadium guide enrichment."""

from matchday.guides.enrichment import EnrichmentSource, PlaceInfo, TripAdvisorClient
from matchday.guides.service import GuideProcessingResult, StadiumGuideService

__all__ = [
    "EnrichmentSource",
    "PlaceInfo",
    "TripAdvisorClient",
    "GuideProcessingResult",
    "StadiumGuideService",
]
