"""Candidate extraction from place providers and data enrichment."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from spot_discovery.core.cancellation import is_cancelled, pause
from spot_discovery.core.config import Settings
from spot_discovery.core.models import DiscoverySource, Location, PriceTier, SpotCandidate, utcnow
from spot_discovery.core.scoring import CandidateScorer
from spot_discovery.core.text import names_similar
from spot_discovery.etl.transform import place_details_to_candidate
from spot_discovery.vendors.places import PlaceSearchProvider

logger = logging.getLogger(__name__)

CITY_CENTERS: Dict[str, Location] = {
    "lagos": Location(6.5244, 3.3792),
    "ibadan": Location(7.3775, 3.9470),
    "abeokuta": Location(7.1475, 3.3619),
    "ilorin": Location(8.4966, 4.5426),
    "ogbomoso": Location(8.1335, 4.2407),
}

ENRICHMENT_RADIUS_M = 100
ENRICHMENT_PLACE_TYPE = "restaurant"


class CandidateExtractionService:
    def __init__(
        self,
        settings: Settings,
        provider: PlaceSearchProvider,
        scorer: CandidateScorer,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self.scorer = scorer
        self.clock = clock

    def resolve_city_center(self, city: str) -> Optional[Location]:
        key = city.split(",")[0].strip().lower()
        if key in CITY_CENTERS:
            return CITY_CENTERS[key]
        logger.debug("City %s not in the coordinate table; geocoding", city)
        return self.provider.geocode_address(city)

    def extract_from_place_provider(self, cancel_event: Optional[threading.Event] = None) -> List[SpotCandidate]:
        """Search every configured city and keyword pair and convert the results."""
        candidates: List[SpotCandidate] = []
        seen_place_ids: Set[str] = set()
        delay = self.settings.places_request_delay_ms / 1000
        today = self.clock().date()

        for city in self.settings.target_cities:
            if is_cancelled(cancel_event):
                break
            center = self.resolve_city_center(city)
            if center is None:
                logger.warning("Could not resolve coordinates for %s; skipping", city)
                continue

            for keyword in self.settings.search_keywords:
                if is_cancelled(cancel_event):
                    break
                query = f"{keyword} in {city}"
                try:
                    found = self._extract_query(query, center, seen_place_ids, today, cancel_event)
                    logger.info("Query %r produced %s candidate(s)", query, len(found))
                    candidates.extend(found)
                except Exception as exc:  # noqa: BLE001
                    logger.error("Error extracting places for %r: %s", query, exc)
                if pause(delay, cancel_event):
                    break

        logger.info("Place provider extraction produced %s candidate(s)", len(candidates))
        return candidates

    def _extract_query(
        self,
        query: str,
        center: Location,
        seen_place_ids: Set[str],
        today,
        cancel_event: Optional[threading.Event],
    ) -> List[SpotCandidate]:
        results = []
        places = self.provider.search_places(center, self.settings.search_radius_meters, query, cancel_event)
        for place in places:
            if not place.place_id or place.place_id in seen_place_ids:
                continue
            seen_place_ids.add(place.place_id)
            details = self.provider.get_place_details(place.place_id)
            if details is None:
                logger.debug("No details for %s (%s)", place.name, place.place_id)
                continue
            candidate = place_details_to_candidate(details, today=today, vocabulary=self.scorer.vocabulary)
            results.append(self.scorer.score(candidate))
        return results

    def extract_from_social_media(self) -> List[SpotCandidate]:
        if not self.settings.social_media_enabled:
            logger.debug("Social media discovery is disabled")
        else:
            logger.info("Social media discovery is not implemented; hashtags %s ignored", ", ".join(self.settings.social_hashtags))
        return []

    def enrich_candidate_data(self, candidate: SpotCandidate) -> SpotCandidate:
        """Fill gaps from the place provider. Each step is best effort."""
        if candidate.location is None and candidate.address:
            try:
                location = self.provider.geocode_address(candidate.address)
                if location is not None:
                    candidate.location = location
                    logger.debug("Geocoded %s to %s", candidate.name, location)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Geocoding failed for %s: %s", candidate.name, exc)

        if candidate.source is not DiscoverySource.google_places and candidate.location is not None:
            try:
                self._backfill_from_nearby(candidate)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Nearby lookup failed for %s: %s", candidate.name, exc)

        return candidate

    def _backfill_from_nearby(self, candidate: SpotCandidate) -> None:
        nearby = self.provider.find_nearby_places(candidate.location, ENRICHMENT_RADIUS_M, ENRICHMENT_PLACE_TYPE)
        match = next((place for place in nearby if names_similar(place.name, candidate.name)), None)
        if match is None:
            return

        details = self.provider.get_place_details(match.place_id)
        if details is None:
            return

        if not candidate.phone and details.phone:
            candidate.phone = details.phone
        if details.rating is not None:
            candidate.source_data["provider_rating"] = float(details.rating)
        if details.user_ratings_total is not None:
            candidate.source_data["provider_review_count"] = int(details.user_ratings_total)
        if details.place_id:
            candidate.source_data["place_id"] = details.place_id
        if details.price_level is not None:
            try:
                candidate.price_tier = PriceTier(int(details.price_level))
            except ValueError:
                logger.debug("Ignoring unknown price level %s", details.price_level)
