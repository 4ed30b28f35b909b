"""Storage interfaces for candidates and the venue registry."""

from __future__ import annotations

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from spot_discovery.core.models import (
    CandidateFilter,
    CandidateStatus,
    Location,
    SpotCandidate,
    VenueDraft,
    VenueRef,
)
from spot_discovery.core.text import haversine_km

# Candidates in these states no longer compete for a venue.
CLOSED_STATUSES = frozenset({CandidateStatus.rejected, CandidateStatus.duplicate})


def sort_candidates(candidates: List[SpotCandidate]) -> List[SpotCandidate]:
    return sorted(
        candidates,
        key=lambda c: (c.quality_score, c.confidence_score, c.discovered_at),
        reverse=True,
    )


class CandidateStore(ABC):
    @abstractmethod
    def upsert(self, candidate: SpotCandidate) -> None:
        """Insert or replace a candidate keyed by id."""

    @abstractmethod
    def get(self, candidate_id: str) -> Optional[SpotCandidate]:
        ...

    @abstractmethod
    def query(self, candidate_filter: CandidateFilter) -> List[SpotCandidate]:
        ...

    @abstractmethod
    def find_nearby(self, location: Location, radius_km: float, exclude_id: Optional[str] = None) -> List[SpotCandidate]:
        """Open candidates (not rejected or duplicate) within ``radius_km``."""


class SpotRegistry(ABC):
    @abstractmethod
    def create_venue(self, draft: VenueDraft) -> str:
        ...

    @abstractmethod
    def find_nearby(self, location: Location, radius_km: float) -> List[VenueRef]:
        ...


class InMemoryCandidateStore(CandidateStore):
    """Process-local store for dry runs and tests. Copies on the way in and out."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, SpotCandidate] = {}

    def upsert(self, candidate: SpotCandidate) -> None:
        with self._lock:
            self._items[candidate.id] = copy.deepcopy(candidate)

    def get(self, candidate_id: str) -> Optional[SpotCandidate]:
        with self._lock:
            found = self._items.get(candidate_id)
            return copy.deepcopy(found) if found else None

    def query(self, candidate_filter: CandidateFilter) -> List[SpotCandidate]:
        with self._lock:
            matched = [copy.deepcopy(c) for c in self._items.values() if candidate_filter.matches(c)]
        ordered = sort_candidates(matched)[candidate_filter.offset :]
        if candidate_filter.limit is not None:
            ordered = ordered[: candidate_filter.limit]
        return ordered

    def find_nearby(self, location: Location, radius_km: float, exclude_id: Optional[str] = None) -> List[SpotCandidate]:
        with self._lock:
            return [
                copy.deepcopy(c)
                for c in self._items.values()
                if c.id != exclude_id
                and c.status not in CLOSED_STATUSES
                and c.location is not None
                and haversine_km(location, c.location) <= radius_km
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class InMemorySpotRegistry(SpotRegistry):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._venues: Dict[str, VenueDraft] = {}

    def create_venue(self, draft: VenueDraft) -> str:
        venue_id = str(uuid.uuid4())
        with self._lock:
            self._venues[venue_id] = draft
        return venue_id

    def find_nearby(self, location: Location, radius_km: float) -> List[VenueRef]:
        with self._lock:
            return [
                VenueRef(id=venue_id, name=draft.name)
                for venue_id, draft in self._venues.items()
                if haversine_km(location, draft.location) <= radius_km
            ]

    def get(self, venue_id: str) -> Optional[VenueDraft]:
        with self._lock:
            return self._venues.get(venue_id)

    def add_existing(self, name: str, location: Location, venue_id: Optional[str] = None) -> str:
        """Seed a venue that predates discovery."""
        venue_id = venue_id or str(uuid.uuid4())
        with self._lock:
            self._venues[venue_id] = VenueDraft(name=name, address=None, location=location)
        return venue_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._venues)
