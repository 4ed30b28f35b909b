"""Core data models shared by the discovery pipeline."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Dict, List, Mapping, Optional, Tuple, Union

# Source-specific metadata stays flat: scalar values only.
SourceValue = Union[str, int, float, bool]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiscoverySource(str, enum.Enum):
    web_scraping = "web_scraping"
    google_places = "google_places"
    social_media = "social_media"
    user_submission = "user_submission"


class CandidateStatus(str, enum.Enum):
    discovered = "discovered"
    enriching = "enriching"
    enriched = "enriched"
    verifying = "verifying"
    verified = "verified"
    approved = "approved"
    rejected = "rejected"
    duplicate = "duplicate"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CandidateStatus.approved, CandidateStatus.rejected, CandidateStatus.duplicate})


class PriceTier(enum.IntEnum):
    free = 0
    budget = 1
    moderate = 2
    expensive = 3
    very_expensive = 4


@dataclass(frozen=True, slots=True)
class Location:
    latitude: float
    longitude: float


@dataclass(slots=True)
class SpotCandidate:
    """A venue observation that has not been accepted into the registry yet."""

    name: str
    source: DiscoverySource
    address: Optional[str] = None
    description: Optional[str] = None
    location: Optional[Location] = None
    phone: Optional[str] = None
    opening_time: Optional[time] = None
    closing_time: Optional[time] = None
    price_tier: PriceTier = PriceTier.budget
    specialties: List[str] = field(default_factory=list)
    source_url: Optional[str] = None
    source_data: Dict[str, SourceValue] = field(default_factory=dict)
    confidence_score: float = 0.0
    quality_score: float = 0.0
    status: CandidateStatus = CandidateStatus.discovered
    verification_notes: Optional[str] = None
    existing_spot_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    discovered_at: datetime = field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    quality_score: float = 0.0


@dataclass(slots=True)
class CandidateFilter:
    status: Optional[CandidateStatus] = None
    source: Optional[DiscoverySource] = None
    min_confidence: Optional[float] = None
    min_quality: Optional[float] = None
    discovered_after: Optional[datetime] = None
    discovered_before: Optional[datetime] = None
    limit: Optional[int] = 50
    offset: int = 0

    def matches(self, candidate: SpotCandidate) -> bool:
        if self.status is not None and candidate.status != self.status:
            return False
        if self.source is not None and candidate.source != self.source:
            return False
        if self.min_confidence is not None and candidate.confidence_score < self.min_confidence:
            return False
        if self.min_quality is not None and candidate.quality_score < self.min_quality:
            return False
        if self.discovered_after is not None and candidate.discovered_at < self.discovered_after:
            return False
        if self.discovered_before is not None and candidate.discovered_at > self.discovered_before:
            return False
        return True


@dataclass(frozen=True, slots=True)
class VenueRef:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class VenueDraft:
    """Fields handed to the registry when a candidate is promoted."""

    name: str
    address: Optional[str]
    location: Location
    description: Optional[str] = None
    phone: Optional[str] = None
    opening_time: Optional[time] = None
    closing_time: Optional[time] = None
    price_tier: PriceTier = PriceTier.budget
    specialties: Tuple[str, ...] = ()
    is_verified: bool = False
    created_by: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DiscoveryResult:
    total_candidates_found: int = 0
    candidates_admitted: int = 0
    candidates_enriched: int = 0
    candidates_verified: int = 0
    candidates_approved: int = 0
    candidates_rejected: int = 0
    duplicates_found: int = 0
    source_breakdown: Mapping[DiscoverySource, int] = field(default_factory=dict)
    errors: Tuple[str, ...] = ()
    duration_seconds: float = 0.0
    started_at: Optional[datetime] = None
    cancelled: bool = False


@dataclass(frozen=True, slots=True)
class DiscoveryMetrics:
    total_candidates: int = 0
    approved_candidates: int = 0
    rejected_candidates: int = 0
    duplicate_candidates: int = 0
    pending_candidates: int = 0
    average_confidence_score: float = 0.0
    average_quality_score: float = 0.0
    source_distribution: Mapping[DiscoverySource, int] = field(default_factory=dict)
    status_distribution: Mapping[CandidateStatus, int] = field(default_factory=dict)
    last_discovered_at: Optional[datetime] = None
    discovered_today: int = 0
