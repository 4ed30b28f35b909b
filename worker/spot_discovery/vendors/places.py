"""Place search provider abstraction.

Backends are selected with the PLACES_PROVIDER setting. Every public method is
best effort: network or API failures are logged and come back as an empty list
or ``None`` so pipeline stages never have to guard against provider errors.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from spot_discovery.core.config import Settings
from spot_discovery.core.models import Location


@dataclass(slots=True)
class PlaceCandidate:
    """A search result summary."""

    place_id: str
    name: str
    location: Optional[Location] = None
    address: Optional[str] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None
    types: List[str] = field(default_factory=list)
    open_now: Optional[bool] = None
    photo_reference: Optional[str] = None


@dataclass(frozen=True, slots=True)
class OpeningPeriod:
    # day uses 0=Sunday .. 6=Saturday, times are "HHMM"
    day: int
    open_time: str
    close_time: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PlaceReview:
    text: str
    rating: Optional[int] = None
    author_name: Optional[str] = None


@dataclass(slots=True)
class PlaceDetails(PlaceCandidate):
    """A search result plus contact details, hours and reviews."""

    phone: Optional[str] = None
    website: Optional[str] = None
    opening_periods: List[OpeningPeriod] = field(default_factory=list)
    weekday_text: List[str] = field(default_factory=list)
    reviews: List[PlaceReview] = field(default_factory=list)
    photo_references: List[str] = field(default_factory=list)


class PlaceSearchProvider(ABC):
    name = "abstract"

    @abstractmethod
    def search_places(
        self,
        center: Location,
        radius_m: int,
        query: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[PlaceCandidate]:
        """Text search biased towards ``center``."""

    @abstractmethod
    def get_place_details(self, place_id: str) -> Optional[PlaceDetails]:
        """Full details for one place, or ``None`` when unavailable."""

    @abstractmethod
    def geocode_address(self, address: str) -> Optional[Location]:
        """Resolve a free-form address to a point."""

    @abstractmethod
    def find_nearby_places(self, center: Location, radius_m: int, place_type: str) -> List[PlaceCandidate]:
        """Places of ``place_type`` within ``radius_m`` metres of ``center``."""


def get_places_provider(settings: Settings) -> PlaceSearchProvider:
    """Return the configured provider implementation."""
    if settings.places_provider == "serpapi":
        from spot_discovery.vendors.serpapi_places import SerpApiPlacesProvider

        return SerpApiPlacesProvider(api_key=settings.serpapi_api_key)

    from spot_discovery.vendors.google_places import GooglePlacesProvider

    return GooglePlacesProvider(
        api_key=settings.google_api_key,
        page_delay_seconds=settings.places_request_delay_ms / 1000,
        max_pages=settings.places_max_pages,
    )
