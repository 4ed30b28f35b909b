"""Client utilities for the Google Places web service."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

import requests

from spot_discovery.core.cancellation import is_cancelled, pause
from spot_discovery.core.models import Location
from spot_discovery.vendors.places import (
    OpeningPeriod,
    PlaceCandidate,
    PlaceDetails,
    PlaceReview,
    PlaceSearchProvider,
)

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/place"
_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
_DETAIL_FIELDS = (
    "place_id,name,formatted_address,geometry,formatted_phone_number,website,rating,"
    "user_ratings_total,price_level,opening_hours,reviews,photos,types"
)
_OK_STATUSES = {"OK", "ZERO_RESULTS"}
# next_page_token is only honoured after a short delay on Google's side.
MIN_PAGE_DELAY_SECONDS = 2.0


class GooglePlacesError(RuntimeError):
    """Raised when the Places API returns a non-successful response."""


def _get_json(url: str, params: Dict[str, Any]) -> Dict[str, Any]:
    response = _SESSION.get(url, params=params, timeout=10)
    response.raise_for_status()
    payload = response.json()
    status = payload.get("status")
    if status not in _OK_STATUSES:
        logger.error("Places request failed: status=%s, error_message=%s", status, payload.get("error_message"))
        raise GooglePlacesError(payload.get("error_message") or status)
    return payload


def _parse_location(raw: Dict[str, Any]) -> Optional[Location]:
    point = (raw.get("geometry") or {}).get("location") or {}
    lat, lng = point.get("lat"), point.get("lng")
    if lat is None or lng is None:
        return None
    return Location(latitude=float(lat), longitude=float(lng))


def _parse_candidate(raw: Dict[str, Any]) -> PlaceCandidate:
    photos = raw.get("photos") or []
    return PlaceCandidate(
        place_id=raw.get("place_id", ""),
        name=raw.get("name", ""),
        location=_parse_location(raw),
        address=raw.get("formatted_address") or raw.get("vicinity"),
        rating=raw.get("rating"),
        user_ratings_total=raw.get("user_ratings_total"),
        price_level=raw.get("price_level"),
        types=list(raw.get("types") or []),
        open_now=(raw.get("opening_hours") or {}).get("open_now"),
        photo_reference=photos[0].get("photo_reference") if photos else None,
    )


def _parse_periods(opening_hours: Dict[str, Any]) -> List[OpeningPeriod]:
    periods = []
    for raw in opening_hours.get("periods") or []:
        open_part = raw.get("open") or {}
        if "day" not in open_part or not open_part.get("time"):
            continue
        close_part = raw.get("close") or {}
        periods.append(
            OpeningPeriod(day=int(open_part["day"]), open_time=open_part["time"], close_time=close_part.get("time"))
        )
    return periods


def _parse_details(raw: Dict[str, Any]) -> PlaceDetails:
    summary = _parse_candidate(raw)
    opening_hours = raw.get("opening_hours") or {}
    return PlaceDetails(
        place_id=summary.place_id,
        name=summary.name,
        location=summary.location,
        address=summary.address,
        rating=summary.rating,
        user_ratings_total=summary.user_ratings_total,
        price_level=summary.price_level,
        types=summary.types,
        open_now=summary.open_now,
        photo_reference=summary.photo_reference,
        phone=raw.get("formatted_phone_number"),
        website=raw.get("website"),
        opening_periods=_parse_periods(opening_hours),
        weekday_text=list(opening_hours.get("weekday_text") or []),
        reviews=[
            PlaceReview(text=review.get("text") or "", rating=review.get("rating"), author_name=review.get("author_name"))
            for review in raw.get("reviews") or []
        ],
        photo_references=[photo["photo_reference"] for photo in raw.get("photos") or [] if photo.get("photo_reference")],
    )


class GooglePlacesProvider(PlaceSearchProvider):
    name = "google"

    def __init__(self, api_key: str, page_delay_seconds: float = MIN_PAGE_DELAY_SECONDS, max_pages: int = 1) -> None:
        self.api_key = api_key
        self.page_delay_seconds = max(page_delay_seconds, MIN_PAGE_DELAY_SECONDS)
        self.max_pages = max(1, max_pages)
        if not api_key:
            logger.warning("GOOGLE_API_KEY not set; Places calls will fail")

    def text_search(self, query: str, center: Location, radius_m: int, pagetoken: Optional[str] = None) -> Dict[str, Any]:
        params = {
            "query": query,
            "key": self.api_key,
            "locationbias": f"circle:{radius_m}@{center.latitude},{center.longitude}",
        }
        if pagetoken:
            params = {"pagetoken": pagetoken, "key": self.api_key}
        return _get_json(f"{_BASE_URL}/textsearch/json", params)

    def search_places(
        self,
        center: Location,
        radius_m: int,
        query: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[PlaceCandidate]:
        results: List[PlaceCandidate] = []
        pagetoken = None
        try:
            for page in range(self.max_pages):
                payload = self.text_search(query, center, radius_m, pagetoken)
                results.extend(_parse_candidate(raw) for raw in payload.get("results") or [])
                pagetoken = payload.get("next_page_token")
                if not pagetoken or page + 1 >= self.max_pages:
                    break
                if pause(self.page_delay_seconds, cancel_event) or is_cancelled(cancel_event):
                    logger.info("Place search for %r cancelled after %s page(s)", query, page + 1)
                    break
        except (requests.RequestException, GooglePlacesError, ValueError) as exc:
            logger.error("Error searching places for %r: %s", query, exc)
        return results

    def get_place_details(self, place_id: str) -> Optional[PlaceDetails]:
        params = {"place_id": place_id, "key": self.api_key, "fields": _DETAIL_FIELDS}
        try:
            payload = _get_json(f"{_BASE_URL}/details/json", params)
        except (requests.RequestException, GooglePlacesError, ValueError) as exc:
            logger.error("Error getting place details for %s: %s", place_id, exc)
            return None
        result = payload.get("result")
        if not result:
            return None
        return _parse_details(result)

    def geocode_address(self, address: str) -> Optional[Location]:
        try:
            payload = _get_json(_GEOCODE_URL, {"address": address, "key": self.api_key})
        except (requests.RequestException, GooglePlacesError, ValueError) as exc:
            logger.error("Error geocoding address %r: %s", address, exc)
            return None
        results = payload.get("results") or []
        if not results:
            return None
        return _parse_location(results[0])

    def find_nearby_places(self, center: Location, radius_m: int, place_type: str) -> List[PlaceCandidate]:
        params = {
            "location": f"{center.latitude},{center.longitude}",
            "radius": radius_m,
            "type": place_type,
            "key": self.api_key,
        }
        try:
            payload = _get_json(f"{_BASE_URL}/nearbysearch/json", params)
        except (requests.RequestException, GooglePlacesError, ValueError) as exc:
            logger.error("Error finding nearby places: %s", exc)
            return []
        return [_parse_candidate(raw) for raw in payload.get("results") or []]
