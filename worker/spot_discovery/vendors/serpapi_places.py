"""SerpAPI Google Maps backend for place search."""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Dict, Iterable, List, Optional

from serpapi import GoogleSearch

from spot_discovery.core.models import Location
from spot_discovery.vendors.places import (
    OpeningPeriod,
    PlaceCandidate,
    PlaceDetails,
    PlaceReview,
    PlaceSearchProvider,
)

logger = logging.getLogger(__name__)

_WEEKDAYS = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")
_HOURS_RE = re.compile(
    r"(\d{1,2})(?::(\d{2}))?\s*([AP]M)?\s*[–—-]\s*(\d{1,2})(?::(\d{2}))?\s*([AP]M)",
    re.IGNORECASE,
)


class SerpApiError(RuntimeError):
    """Raised when SerpAPI answers with an error payload."""


def build_serpapi_params(api_key: str, query: str, ll: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """Construct SerpAPI request parameters for the Google Maps engine."""
    if not query or not query.strip():
        raise ValueError("Query must be provided for SerpAPI lookups.")

    params: Dict[str, Any] = {
        "engine": "google_maps",
        "q": query.strip(),
        "api_key": api_key,
        "type": "search",
    }
    if ll:
        params["ll"] = ll
    params.update(extra)
    return params


def build_ll(center: Location, radius_m: int) -> str:
    """Viewport string whose zoom roughly covers ``radius_m``."""
    if radius_m <= 250:
        zoom = 18
    elif radius_m <= 1000:
        zoom = 16
    elif radius_m <= 5000:
        zoom = 14
    else:
        zoom = 12
    return f"@{center.latitude},{center.longitude},{zoom}z"


def fetch_from_serpapi(params: Dict[str, Any]) -> Dict[str, Any]:
    """Call SerpAPI once and return the raw JSON response."""
    logger.info("Calling SerpAPI for q=%s type=%s ll=%s", params.get("q"), params.get("type"), params.get("ll"))
    data = GoogleSearch(params).get_dict()
    if not data:
        raise SerpApiError("SerpAPI returned an empty payload.")
    if "error" in data:
        raise SerpApiError(f"SerpAPI returned an error response: {data.get('error')}")
    return data


def parse_serpapi_maps(data: Optional[Dict[str, Any]]) -> List[PlaceCandidate]:
    """Extract SerpAPI local/place results into PlaceCandidate objects."""
    if not data:
        return []

    items = list(_extract_items(data))
    if not items:
        place_results = data.get("place_results")
        if isinstance(place_results, list):
            items = place_results
        elif isinstance(place_results, dict):
            items = [place_results]

    candidates: List[PlaceCandidate] = []
    for raw in items:
        if not isinstance(raw, dict):
            continue
        name = (raw.get("title") or raw.get("name") or "").strip()
        if not name:
            continue
        candidates.append(_parse_candidate(raw, name))
    return candidates


def parse_place_details(data: Optional[Dict[str, Any]]) -> Optional[PlaceDetails]:
    raw = (data or {}).get("place_results")
    if not isinstance(raw, dict):
        return None
    name = (raw.get("title") or raw.get("name") or "").strip()
    if not name:
        return None

    summary = _parse_candidate(raw, name)
    hours = raw.get("operating_hours") or {}
    reviews_section = raw.get("user_reviews") or {}
    raw_reviews = reviews_section.get("most_relevant") if isinstance(reviews_section, dict) else reviews_section
    photos = raw.get("images") or []

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
        phone=_strip_or_none(raw.get("phone")),
        website=_strip_or_none(raw.get("website")),
        opening_periods=parse_operating_hours(hours) if isinstance(hours, dict) else [],
        weekday_text=[f"{day.title()}: {value}" for day, value in hours.items()] if isinstance(hours, dict) else [],
        reviews=[
            PlaceReview(
                text=str(review.get("description") or review.get("snippet") or ""),
                rating=_safe_int(review.get("rating")),
                author_name=(review.get("user") or {}).get("name") if isinstance(review.get("user"), dict) else None,
            )
            for review in raw_reviews or []
            if isinstance(review, dict)
        ],
        photo_references=[str(photo.get("thumbnail")) for photo in photos if isinstance(photo, dict) and photo.get("thumbnail")],
    )


def parse_operating_hours(hours: Dict[str, Any]) -> List[OpeningPeriod]:
    """Turn {"monday": "8 AM-10 PM"} style hours into periods."""
    periods = []
    for day_name, value in hours.items():
        day_key = str(day_name).strip().lower()
        if day_key not in _WEEKDAYS or not isinstance(value, str):
            continue
        if "24 hours" in value.lower():
            periods.append(OpeningPeriod(day=_WEEKDAYS.index(day_key), open_time="0000", close_time=None))
            continue
        match = _HOURS_RE.search(value)
        if not match:
            continue
        open_h, open_m, open_meridiem, close_h, close_m, close_meridiem = match.groups()
        periods.append(
            OpeningPeriod(
                day=_WEEKDAYS.index(day_key),
                open_time=_to_hhmm(open_h, open_m, open_meridiem or close_meridiem),
                close_time=_to_hhmm(close_h, close_m, close_meridiem),
            )
        )
    return periods


def _to_hhmm(hour: str, minute: Optional[str], meridiem: str) -> str:
    value = int(hour) % 12
    if meridiem.upper() == "PM":
        value += 12
    return f"{value:02d}{int(minute or 0):02d}"


def _parse_candidate(raw: Dict[str, Any], name: str) -> PlaceCandidate:
    gps = raw.get("gps_coordinates") or {}
    latitude = _safe_float(gps.get("latitude"))
    longitude = _safe_float(gps.get("longitude"))
    location = Location(latitude, longitude) if latitude is not None and longitude is not None else None

    types = raw.get("types")
    if not isinstance(types, list):
        types = [raw["type"]] if raw.get("type") else []

    return PlaceCandidate(
        place_id=str(raw.get("place_id") or raw.get("data_id") or ""),
        name=name,
        location=location,
        address=_strip_or_none(raw.get("address")),
        rating=_safe_float(raw.get("rating")),
        user_ratings_total=_safe_int(raw.get("reviews_count") or raw.get("reviews")),
        price_level=_price_level(raw.get("price")),
        types=[str(item) for item in types],
        open_now=_open_now(raw.get("open_state")),
        photo_reference=_strip_or_none(raw.get("thumbnail")),
    )


def _extract_items(data: Dict[str, Any]) -> Iterable[Any]:
    """SerpAPI sometimes returns local_results as a list or nested dict."""
    local_results = data.get("local_results")
    if isinstance(local_results, list):
        return local_results
    if isinstance(local_results, dict):
        logger.debug("local_results is dict with keys: %s", list(local_results.keys())[:10])
        for maybe in (local_results.get("places"), local_results.get("results"), local_results.get("local_results")):
            if isinstance(maybe, list):
                return maybe
    return []


def _price_level(value: Any) -> Optional[int]:
    # "₦₦" / "$$" style markers
    if not isinstance(value, str) or not value.strip():
        return None
    symbols = value.strip()
    if len(set(symbols)) == 1:
        return min(len(symbols), 4)
    return None


def _open_now(value: Any) -> Optional[bool]:
    if not isinstance(value, str):
        return None
    lowered = value.lower()
    if lowered.startswith("open"):
        return True
    if lowered.startswith("closed"):
        return False
    return None


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)

    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            return int(digits)
    return None


class SerpApiPlacesProvider(PlaceSearchProvider):
    name = "serpapi"

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key
        if not api_key:
            logger.warning("SERPAPI_API_KEY not set; SerpAPI calls will fail")

    def search_places(
        self,
        center: Location,
        radius_m: int,
        query: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[PlaceCandidate]:
        try:
            data = fetch_from_serpapi(build_serpapi_params(self.api_key, query, build_ll(center, radius_m)))
        except Exception as exc:  # noqa: BLE001
            logger.error("SerpAPI search failed for %r: %s", query, exc)
            return []
        return parse_serpapi_maps(data)

    def get_place_details(self, place_id: str) -> Optional[PlaceDetails]:
        if not place_id:
            return None
        params = {"engine": "google_maps", "type": "place", "place_id": place_id, "api_key": self.api_key}
        try:
            data = fetch_from_serpapi(params)
        except Exception as exc:  # noqa: BLE001
            logger.error("SerpAPI place lookup failed for %s: %s", place_id, exc)
            return None
        return parse_place_details(data)

    def geocode_address(self, address: str) -> Optional[Location]:
        try:
            data = fetch_from_serpapi(build_serpapi_params(self.api_key, address))
        except Exception as exc:  # noqa: BLE001
            logger.error("SerpAPI geocoding failed for %r: %s", address, exc)
            return None
        for candidate in parse_serpapi_maps(data):
            if candidate.location is not None:
                return candidate.location
        return None

    def find_nearby_places(self, center: Location, radius_m: int, place_type: str) -> List[PlaceCandidate]:
        try:
            data = fetch_from_serpapi(build_serpapi_params(self.api_key, place_type, build_ll(center, radius_m)))
        except Exception as exc:  # noqa: BLE001
            logger.error("SerpAPI nearby search failed: %s", exc)
            return []
        return parse_serpapi_maps(data)
