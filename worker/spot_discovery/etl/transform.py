"""Utilities for transforming provider payloads and candidates into rows and JSON."""

import logging
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from spot_discovery.core.models import (
    CandidateStatus,
    DiscoveryMetrics,
    DiscoveryResult,
    DiscoverySource,
    Location,
    PriceTier,
    SpotCandidate,
    utcnow,
)
from spot_discovery.core.scoring import DEFAULT_VOCABULARY, KeywordVocabulary
from spot_discovery.vendors.places import PlaceDetails

logger = logging.getLogger(__name__)

MAX_REVIEWS_SCANNED = 10
END_OF_DAY = time(23, 59)
_IGNORE_TYPES = {"point_of_interest", "establishment", "political", "premise"}


def google_weekday(day: date) -> int:
    """Places numbers days from Sunday=0, Python from Monday=0."""
    return (day.weekday() + 1) % 7


def parse_hhmm(value: Optional[str]) -> Optional[time]:
    if not value or len(value) != 4 or not value.isdigit():
        return None
    hour, minute = int(value[:2]), int(value[2:])
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def hours_for_day(details: PlaceDetails, day: date) -> Tuple[Optional[time], Optional[time]]:
    weekday = google_weekday(day)
    for period in details.opening_periods:
        if period.day != weekday:
            continue
        opening = parse_hhmm(period.open_time)
        if opening is None:
            continue
        closing = parse_hhmm(period.close_time) if period.close_time else END_OF_DAY
        return opening, closing or END_OF_DAY
    return None, None


def extract_specialties(details: PlaceDetails, vocabulary: KeywordVocabulary = DEFAULT_VOCABULARY) -> List[str]:
    specialties: List[str] = []
    for review in details.reviews[:MAX_REVIEWS_SCANNED]:
        text = (review.text or "").lower()
        for term in vocabulary.specialty_terms:
            if term in text and term not in specialties:
                specialties.append(term)
    return specialties


def price_tier(price_level: Optional[int]) -> PriceTier:
    if price_level is None:
        return PriceTier.budget
    try:
        return PriceTier(int(price_level))
    except ValueError:
        logger.debug("Unknown price level %s; defaulting to budget", price_level)
        return PriceTier.budget


def primary_type(types: List[str]) -> Optional[str]:
    for type_name in types or []:
        if type_name not in _IGNORE_TYPES:
            return type_name
    return None


def maps_url(place_id: str) -> str:
    return f"https://www.google.com/maps/place/?q=place_id:{place_id}"


def place_details_to_candidate(
    details: PlaceDetails,
    today: Optional[date] = None,
    vocabulary: KeywordVocabulary = DEFAULT_VOCABULARY,
) -> SpotCandidate:
    today = today or utcnow().date()
    opening, closing = hours_for_day(details, today)

    source_data: Dict[str, Any] = {"place_id": details.place_id}
    if details.rating is not None:
        source_data["provider_rating"] = float(details.rating)
    if details.user_ratings_total is not None:
        source_data["provider_review_count"] = int(details.user_ratings_total)
    if details.types:
        source_data["types"] = ",".join(details.types)
        kind = primary_type(details.types)
        if kind:
            source_data["primary_type"] = kind
    if details.website:
        source_data["website"] = details.website

    return SpotCandidate(
        name=details.name,
        source=DiscoverySource.google_places,
        address=details.address,
        location=details.location,
        phone=details.phone,
        opening_time=opening,
        closing_time=closing,
        price_tier=price_tier(details.price_level),
        specialties=extract_specialties(details, vocabulary),
        source_url=maps_url(details.place_id),
        source_data=source_data,
    )


def _iso(value: Optional[Any]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def candidate_to_dict(candidate: SpotCandidate) -> Dict[str, Any]:
    """JSON friendly representation used by the CLI and HTTP surfaces."""
    return {
        "id": candidate.id,
        "name": candidate.name,
        "description": candidate.description,
        "address": candidate.address,
        "latitude": candidate.location.latitude if candidate.location else None,
        "longitude": candidate.location.longitude if candidate.location else None,
        "phone": candidate.phone,
        "opening_time": candidate.opening_time.strftime("%H:%M") if candidate.opening_time else None,
        "closing_time": candidate.closing_time.strftime("%H:%M") if candidate.closing_time else None,
        "price_tier": candidate.price_tier.name,
        "specialties": list(candidate.specialties),
        "source": candidate.source.value,
        "source_url": candidate.source_url,
        "source_data": dict(candidate.source_data),
        "confidence_score": candidate.confidence_score,
        "quality_score": candidate.quality_score,
        "status": candidate.status.value,
        "verification_notes": candidate.verification_notes,
        "existing_spot_id": candidate.existing_spot_id,
        "discovered_at": _iso(candidate.discovered_at),
        "processed_at": _iso(candidate.processed_at),
        "verified_at": _iso(candidate.verified_at),
    }


def candidate_to_row(candidate: SpotCandidate) -> Dict[str, Any]:
    return {
        "id": candidate.id,
        "name": candidate.name,
        "description": candidate.description,
        "address": candidate.address,
        "lat": candidate.location.latitude if candidate.location else None,
        "lng": candidate.location.longitude if candidate.location else None,
        "phone": candidate.phone,
        "opening_time": candidate.opening_time,
        "closing_time": candidate.closing_time,
        "price_tier": int(candidate.price_tier),
        "specialties": list(candidate.specialties),
        "source": candidate.source.value,
        "source_url": candidate.source_url,
        "source_data": dict(candidate.source_data),
        "confidence_score": candidate.confidence_score,
        "quality_score": candidate.quality_score,
        "status": candidate.status.value,
        "verification_notes": candidate.verification_notes,
        "existing_spot_id": candidate.existing_spot_id,
        "discovered_at": candidate.discovered_at,
        "processed_at": candidate.processed_at,
        "verified_at": candidate.verified_at,
    }


def _parse_time(value: Any) -> Optional[time]:
    if value is None or isinstance(value, time):
        return value
    return time.fromisoformat(str(value))


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def candidate_from_row(row: Dict[str, Any]) -> SpotCandidate:
    lat, lng = row.get("lat"), row.get("lng")
    location = Location(float(lat), float(lng)) if lat is not None and lng is not None else None
    return SpotCandidate(
        id=str(row["id"]),
        name=row["name"],
        description=row.get("description"),
        address=row.get("address"),
        location=location,
        phone=row.get("phone"),
        opening_time=_parse_time(row.get("opening_time")),
        closing_time=_parse_time(row.get("closing_time")),
        price_tier=PriceTier.budget if row.get("price_tier") is None else PriceTier(int(row["price_tier"])),
        specialties=list(row.get("specialties") or []),
        source=DiscoverySource(row["source"]),
        source_url=row.get("source_url"),
        source_data=dict(row.get("source_data") or {}),
        confidence_score=float(row.get("confidence_score") or 0.0),
        quality_score=float(row.get("quality_score") or 0.0),
        status=CandidateStatus(row["status"]),
        verification_notes=row.get("verification_notes"),
        existing_spot_id=str(row["existing_spot_id"]) if row.get("existing_spot_id") else None,
        discovered_at=_parse_datetime(row.get("discovered_at")) or utcnow(),
        processed_at=_parse_datetime(row.get("processed_at")),
        verified_at=_parse_datetime(row.get("verified_at")),
    )


def result_to_dict(result: DiscoveryResult) -> Dict[str, Any]:
    return {
        "total_candidates_found": result.total_candidates_found,
        "candidates_admitted": result.candidates_admitted,
        "candidates_enriched": result.candidates_enriched,
        "candidates_verified": result.candidates_verified,
        "candidates_approved": result.candidates_approved,
        "candidates_rejected": result.candidates_rejected,
        "duplicates_found": result.duplicates_found,
        "source_breakdown": {source.value: count for source, count in result.source_breakdown.items()},
        "errors": list(result.errors),
        "duration_seconds": result.duration_seconds,
        "started_at": _iso(result.started_at),
        "cancelled": result.cancelled,
    }


def metrics_to_dict(metrics: DiscoveryMetrics) -> Dict[str, Any]:
    return {
        "total_candidates": metrics.total_candidates,
        "approved_candidates": metrics.approved_candidates,
        "rejected_candidates": metrics.rejected_candidates,
        "duplicate_candidates": metrics.duplicate_candidates,
        "pending_candidates": metrics.pending_candidates,
        "average_confidence_score": metrics.average_confidence_score,
        "average_quality_score": metrics.average_quality_score,
        "source_distribution": {source.value: count for source, count in metrics.source_distribution.items()},
        "status_distribution": {status.value: count for status, count in metrics.status_distribution.items()},
        "last_discovered_at": _iso(metrics.last_discovered_at),
        "discovered_today": metrics.discovered_today,
    }
