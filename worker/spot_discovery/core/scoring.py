"""Normalisation, confidence/quality scoring and validation of candidates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

import phonenumbers

from spot_discovery.core.config import Settings
from spot_discovery.core.models import (
    CandidateStatus,
    DiscoverySource,
    SpotCandidate,
    ValidationResult,
    utcnow,
)
from spot_discovery.core.text import (
    DEFAULT_SPAM_PATTERNS,
    contains_any,
    is_spam,
    normalize_phone,
    normalize_text,
    within_bounds,
)

logger = logging.getLogger(__name__)

SOURCE_BONUS = {
    DiscoverySource.google_places: 0.3,
    DiscoverySource.user_submission: 0.15,
    DiscoverySource.web_scraping: 0.05,
    DiscoverySource.social_media: 0.0,
}

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 200
ADDRESS_MAX_LENGTH = 500
HIGH_RATING = 4.0


@dataclass(frozen=True)
class KeywordVocabulary:
    strong: Tuple[str, ...] = ("amala", "gbegiri", "ewedu", "abula", "amala spot", "amala joint")
    weak: Tuple[str, ...] = (
        "yoruba food",
        "nigerian restaurant",
        "local food",
        "traditional food",
        "mama put",
        "buka",
        "bukka",
        "nigerian cuisine",
        "west african food",
    )
    spam_patterns: Tuple[str, ...] = DEFAULT_SPAM_PATTERNS
    specialty_terms: Tuple[str, ...] = ("amala", "gbegiri", "ewedu", "abula", "stew", "soup")

    @property
    def all_keywords(self) -> Tuple[str, ...]:
        return self.strong + self.weak


DEFAULT_VOCABULARY = KeywordVocabulary()


def clamp_score(score: float) -> float:
    # Rounded so that sums of tenths compare exactly against thresholds.
    return round(min(1.0, max(0.0, score)), 4)


def _text_of(candidate: SpotCandidate) -> str:
    return f"{candidate.name or ''} {candidate.description or ''}".lower()


class CandidateScorer:
    def __init__(
        self,
        settings: Settings,
        vocabulary: KeywordVocabulary = DEFAULT_VOCABULARY,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self.vocabulary = vocabulary
        self.clock = clock

    def has_strong_keyword(self, candidate: SpotCandidate) -> bool:
        return contains_any(_text_of(candidate), self.vocabulary.strong)

    def has_weak_keyword(self, candidate: SpotCandidate) -> bool:
        return contains_any(_text_of(candidate), self.vocabulary.weak)

    def passes_content_gate(self, candidate: SpotCandidate) -> bool:
        """Cheap relevance check applied to scraped listings before they are kept."""
        name = (candidate.name or "").strip()
        if not name or not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
            return False
        if not contains_any(_text_of(candidate), self.vocabulary.all_keywords):
            return False
        if is_spam(candidate.name, self.vocabulary.spam_patterns):
            return False
        if is_spam(candidate.description, self.vocabulary.spam_patterns):
            return False
        return True

    def normalize(self, candidate: SpotCandidate) -> SpotCandidate:
        candidate.name = normalize_text(candidate.name)
        candidate.description = normalize_text(candidate.description) or None
        candidate.address = normalize_text(candidate.address) or None
        candidate.phone = normalize_phone(candidate.phone, self.settings.phone_country_code) or None
        candidate.source_url = (candidate.source_url or "").strip() or None

        specialties: List[str] = []
        seen = set()
        for raw in candidate.specialties:
            tag = normalize_text(raw)
            if tag and tag.lower() not in seen:
                seen.add(tag.lower())
                specialties.append(tag)
        candidate.specialties = specialties
        return candidate

    def confidence_score(self, candidate: SpotCandidate) -> float:
        score = 0.0
        if self.has_strong_keyword(candidate):
            score += 0.6
        elif self.has_weak_keyword(candidate):
            score += 0.3
        if candidate.location is not None:
            score += 0.2
        if candidate.phone:
            score += 0.1
        if candidate.address:
            score += 0.1
        score += SOURCE_BONUS.get(candidate.source, 0.0)
        return clamp_score(score)

    def quality_score(self, candidate: SpotCandidate) -> float:
        score = 0.0
        for present in (
            bool(candidate.name and candidate.name.strip()),
            bool(candidate.description and candidate.description.strip()),
            bool(candidate.address and candidate.address.strip()),
            candidate.location is not None,
            bool(candidate.phone),
        ):
            if present:
                score += 0.2
        if candidate.opening_time is not None and candidate.closing_time is not None:
            score += 0.1

        rating = candidate.source_data.get("provider_rating")
        if isinstance(rating, (int, float)) and not isinstance(rating, bool) and rating >= HIGH_RATING:
            score += 0.1
        return clamp_score(score)

    def score(self, candidate: SpotCandidate) -> SpotCandidate:
        """Normalise fields and recompute both scores without touching the status."""
        self.normalize(candidate)
        candidate.confidence_score = self.confidence_score(candidate)
        candidate.quality_score = self.quality_score(candidate)
        return candidate

    def process_candidate(self, candidate: SpotCandidate) -> SpotCandidate:
        logger.debug("Processing candidate: %s", candidate.name)
        self.score(candidate)
        candidate.status = CandidateStatus.enriched
        candidate.processed_at = self.clock()
        return candidate

    def phone_looks_valid(self, phone: str) -> bool:
        try:
            parsed = phonenumbers.parse(phone, self.settings.default_phone_region)
        except phonenumbers.NumberParseException:
            return False
        return phonenumbers.is_valid_number(parsed)

    def validate(self, candidate: SpotCandidate) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        name = (candidate.name or "").strip()
        if not name:
            errors.append("Name is required")
        elif len(name) < NAME_MIN_LENGTH:
            errors.append(f"Name must be at least {NAME_MIN_LENGTH} characters long")
        elif len(name) > NAME_MAX_LENGTH:
            errors.append(f"Name must be less than {NAME_MAX_LENGTH} characters")

        address = (candidate.address or "").strip()
        if not address:
            errors.append("Address is required")
        elif len(address) > ADDRESS_MAX_LENGTH:
            errors.append(f"Address must be less than {ADDRESS_MAX_LENGTH} characters")

        if candidate.location is None:
            warnings.append("Location coordinates are missing")
        elif not within_bounds(candidate.location, self.settings.service_area_bbox):
            errors.append("Location is outside the supported service area")

        if candidate.confidence_score < self.settings.min_confidence_score:
            warnings.append(
                f"Confidence score ({candidate.confidence_score:.2f}) is below minimum threshold "
                f"({self.settings.min_confidence_score:.2f})"
            )

        strong = self.has_strong_keyword(candidate)
        weak = self.has_weak_keyword(candidate)
        if not strong and not weak:
            errors.append("Content does not appear to be related to amala or Nigerian food")
        elif not strong:
            warnings.append("Content may not be specifically about amala")

        if is_spam(candidate.name, self.vocabulary.spam_patterns) or is_spam(
            candidate.description, self.vocabulary.spam_patterns
        ):
            errors.append("Content appears to be spam")

        if candidate.phone and not self.phone_looks_valid(candidate.phone):
            warnings.append("Phone number format may be invalid")

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            quality_score=self.quality_score(candidate),
        )


def summarize(messages: List[str], prefix: str) -> Optional[str]:
    if not messages:
        return None
    return f"{prefix}: {', '.join(messages)}"
