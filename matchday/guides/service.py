"""Stadium guide creation and enrichment."""

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from sqlalchemy import select

from matchday.database import SessionFactory
from matchday.guides.enrichment import EnrichmentSource, PlaceInfo
from matchday.models import StadiumGuide, Venue, utc_now

logger = logging.getLogger(__name__)

DEFAULT_FACILITIES = ["Seating", "Concessions", "Restrooms", "Merchandise Shops"]


@dataclass
class GuideProcessingResult:
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def build_guide_content(venue: Venue, place: Optional[PlaceInfo]) -> dict:
    """Guide fields for a venue, falling back to placeholder text where enrichment is missing."""
    city = venue.city or "the city"
    place = place or PlaceInfo()

    sections = [
        {
            "title": "Stadium Overview",
            "content": place.overview or f"{venue.name} is a sports venue located in {city}.",
        },
        {
            "title": "City Highlights",
            "content": place.city_highlights or f"{city} is a vibrant city with plenty to offer visitors.",
        },
    ]
    if place.transport:
        sections.append({"title": "Getting There", "content": place.transport})

    return {
        "title": f"Guide to {venue.name}",
        "overview": sections[0]["content"],
        "sections": sections,
        "facilities": place.facilities or list(DEFAULT_FACILITIES),
        "attractions": place.attractions,
        "restaurants": place.restaurants,
        "image_urls": place.images,
        "source": "tripadvisor" if place.overview else "placeholder",
    }


class StadiumGuideService:
    """Creates one guide per venue and refreshes them from the enrichment source.

    A missing or failing source never blocks guide creation: the guide is
    written with placeholder content and can be enriched later.
    """

    def __init__(self, session_factory: SessionFactory, source: EnrichmentSource):
        self.session_factory = session_factory
        self.source = source

    async def process(
        self,
        venue_ids: Optional[list[str]] = None,
        force_update: bool = False,
    ) -> GuideProcessingResult:
        """Create guides for venues lacking one; with force_update, also regenerate existing ones."""
        result = GuideProcessingResult()

        async with self.session_factory() as session:
            query = select(Venue)
            if venue_ids:
                query = query.where(Venue.id.in_(venue_ids))
            venues = list((await session.execute(query)).scalars().all())

        logger.info(f"[GUIDES] Processing {len(venues)} venues")

        for venue in venues:
            result.processed += 1
            try:
                outcome = await self._upsert_guide(venue, force_update)
            except Exception as e:
                result.failed += 1
                logger.error(f"[GUIDES] Failed to process guide for venue {venue.id}: {e}")
                continue
            setattr(result, outcome, getattr(result, outcome) + 1)

        logger.info(
            f"[GUIDES] Done: created={result.created} updated={result.updated} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        return result

    async def enrich_all_guides(self) -> GuideProcessingResult:
        """Re-run enrichment for every existing guide."""
        async with self.session_factory() as session:
            result = await session.execute(select(StadiumGuide.venue_id))
            venue_ids = list(result.scalars().all())

        if not venue_ids:
            return GuideProcessingResult()
        return await self.process(venue_ids, force_update=True)

    async def get_guide(self, venue_id: str) -> Optional[StadiumGuide]:
        async with self.session_factory() as session:
            result = await session.execute(select(StadiumGuide).where(StadiumGuide.venue_id == venue_id))
            return result.scalar_one_or_none()

    async def _upsert_guide(self, venue: Venue, force_update: bool) -> str:
        async with self.session_factory() as session:
            result = await session.execute(select(StadiumGuide).where(StadiumGuide.venue_id == venue.id))
            existing = result.scalar_one_or_none()

        if existing is not None and not force_update:
            logger.debug(f"[GUIDES] Guide already exists for venue {venue.id}, skipping")
            return "skipped"

        place = None
        if venue.name:
            query = f"{venue.name} stadium {venue.city or ''}".strip()
            place = await self.source.find_place_info(query, venue.city)
            if place is None:
                logger.info(f"[GUIDES] No enrichment for {venue.name}, using placeholder content")

        content = build_guide_content(venue, place)

        async with self.session_factory() as session:
            async with session.begin():
                guide = None
                if existing is not None:
                    guide = await session.get(StadiumGuide, existing.id)
                if guide is None:
                    session.add(StadiumGuide(venue_id=venue.id, **content))
                    return "created"
                for key, value in content.items():
                    setattr(guide, key, value)
                guide.updated_at = utc_now()
        return "updated"
