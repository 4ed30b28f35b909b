"""Proximity and name based duplicate screening."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from spot_discovery.core.models import SpotCandidate
from spot_discovery.core.stores import CandidateStore, SpotRegistry
from spot_discovery.core.text import names_similar

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DuplicateMatch:
    kind: str  # "spot" or "candidate"
    name: str
    venue_id: Optional[str] = None
    candidate_id: Optional[str] = None

    @property
    def note(self) -> str:
        if self.kind == "spot":
            return f"Duplicate of existing spot: {self.name} ({self.venue_id})"
        return f"Duplicate of pending candidate: {self.name} ({self.candidate_id})"


class DuplicateDetector:
    """Registry venues are checked before sibling candidates.

    Lookup errors from either collaborator propagate to the caller.
    """

    def __init__(
        self,
        registry: SpotRegistry,
        store: CandidateStore,
        radius_km: float = 0.1,
        min_name_ratio: Optional[float] = 0.8,
    ) -> None:
        self.registry = registry
        self.store = store
        self.radius_km = radius_km
        self.min_name_ratio = min_name_ratio

    def check(self, candidate: SpotCandidate) -> Optional[DuplicateMatch]:
        if candidate.location is None:
            logger.debug("Skipping duplicate check for %s: no location", candidate.name)
            return None

        for venue in self.registry.find_nearby(candidate.location, self.radius_km):
            if names_similar(venue.name, candidate.name, self.min_name_ratio):
                return DuplicateMatch(kind="spot", name=venue.name, venue_id=venue.id)

        for sibling in self.store.find_nearby(candidate.location, self.radius_km, exclude_id=candidate.id):
            if names_similar(sibling.name, candidate.name, self.min_name_ratio):
                return DuplicateMatch(kind="candidate", name=sibling.name, candidate_id=sibling.id)

        return None
