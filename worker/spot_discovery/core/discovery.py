"""Discovery orchestration: sources in, verified and approved spots out.

One run pulls candidates from every enabled source, keeps those at or above the
minimum confidence (capped per run) and drives each one through

    discovered -> enriching -> enriched -> verifying -> verified | rejected | duplicate

Verified candidates are rescored, persisted and promoted to the spot registry
when their quality reaches the auto-approval threshold. Failures are isolated
per source and per candidate and end up in the run's error list.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from spot_discovery.core.cancellation import is_cancelled
from spot_discovery.core.config import Settings
from spot_discovery.core.duplicates import DuplicateDetector
from spot_discovery.core.extraction import CandidateExtractionService
from spot_discovery.core.models import (
    TERMINAL_STATUSES,
    CandidateFilter,
    CandidateStatus,
    DiscoveryMetrics,
    DiscoveryResult,
    DiscoverySource,
    Location,
    PriceTier,
    SpotCandidate,
    ValidationResult,
    VenueDraft,
    utcnow,
)
from spot_discovery.core.scoring import CandidateScorer, summarize
from spot_discovery.core.site_scraper import HtmlSpotExtractor, RequestsPageFetcher, WebScrapingService
from spot_discovery.core.stores import (
    CandidateStore,
    InMemoryCandidateStore,
    InMemorySpotRegistry,
    SpotRegistry,
)
from spot_discovery.core.text import within_bounds

logger = logging.getLogger(__name__)

# Spots promoted at or above this quality are flagged verified in the registry.
VERIFIED_SPOT_QUALITY = 0.8


class CandidateNotFoundError(LookupError):
    """Raised when a candidate id is unknown to the store."""


class InvalidCandidateStateError(RuntimeError):
    """Raised when a candidate's status does not allow the requested transition."""


@dataclass(frozen=True)
class CandidateOutcome:
    candidate_id: str
    enriched: bool = False
    verified: bool = False
    approved: bool = False
    rejected: bool = False
    duplicate: bool = False
    error: Optional[str] = None


def fold_outcomes(
    outcomes: Sequence[CandidateOutcome],
    *,
    found: int,
    admitted: int,
    source_breakdown: Dict[DiscoverySource, int],
    source_errors: Iterable[str],
    started_at: datetime,
    duration_seconds: float,
    cancelled: bool,
) -> DiscoveryResult:
    return DiscoveryResult(
        total_candidates_found=found,
        candidates_admitted=admitted,
        candidates_enriched=sum(1 for o in outcomes if o.enriched),
        candidates_verified=sum(1 for o in outcomes if o.verified),
        candidates_approved=sum(1 for o in outcomes if o.approved),
        candidates_rejected=sum(1 for o in outcomes if o.rejected),
        duplicates_found=sum(1 for o in outcomes if o.duplicate),
        source_breakdown=dict(source_breakdown),
        errors=tuple(source_errors) + tuple(o.error for o in outcomes if o.error),
        duration_seconds=round(duration_seconds, 3),
        started_at=started_at,
        cancelled=cancelled,
    )


class SpotDiscoveryService:
    def __init__(
        self,
        settings: Settings,
        store: CandidateStore,
        registry: SpotRegistry,
        scorer: CandidateScorer,
        extraction: CandidateExtractionService,
        duplicate_detector: DuplicateDetector,
        web_scraper: Optional[WebScrapingService] = None,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.store = store
        self.registry = registry
        self.scorer = scorer
        self.extraction = extraction
        self.duplicate_detector = duplicate_detector
        self.web_scraper = web_scraper
        self.clock = clock
        self.monotonic = monotonic
        self._last_result: Optional[DiscoveryResult] = None
        self._result_lock = threading.Lock()

    @property
    def last_result(self) -> Optional[DiscoveryResult]:
        with self._result_lock:
            return self._last_result

    # Sources

    def discover_from_web_scraping(self, cancel_event: Optional[threading.Event] = None) -> List[SpotCandidate]:
        if not self.settings.web_scraping_enabled or self.web_scraper is None:
            logger.info("Web scraping is disabled")
            return []
        return self.web_scraper.scrape_configured_websites(cancel_event)

    def discover_from_place_provider(self, cancel_event: Optional[threading.Event] = None) -> List[SpotCandidate]:
        if not self.settings.places_enabled:
            logger.info("Place provider discovery is disabled")
            return []
        return self.extraction.extract_from_place_provider(cancel_event)

    def discover_from_social_media(self, cancel_event: Optional[threading.Event] = None) -> List[SpotCandidate]:
        return self.extraction.extract_from_social_media()

    # Run

    def run_discovery(self, cancel_event: Optional[threading.Event] = None) -> DiscoveryResult:
        started_at = self.clock()
        start = self.monotonic()
        source_errors: List[str] = []
        breakdown: Dict[DiscoverySource, int] = {}
        outcomes: List[CandidateOutcome] = []
        found: List[SpotCandidate] = []
        admitted: List[SpotCandidate] = []

        if not self.settings.discovery_enabled:
            logger.info("Discovery is disabled; skipping run")
            return self._finish(
                fold_outcomes(
                    outcomes,
                    found=0,
                    admitted=0,
                    source_breakdown=breakdown,
                    source_errors=source_errors,
                    started_at=started_at,
                    duration_seconds=0.0,
                    cancelled=False,
                )
            )

        logger.info("Starting discovery run")
        try:
            sources = (
                (DiscoverySource.web_scraping, "Web scraping", self.discover_from_web_scraping),
                (DiscoverySource.google_places, "Place provider", self.discover_from_place_provider),
                (DiscoverySource.social_media, "Social media", self.discover_from_social_media),
            )
            for source, label, discover in sources:
                if is_cancelled(cancel_event):
                    logger.info("Discovery cancelled before %s", label)
                    break
                try:
                    candidates = discover(cancel_event)
                except Exception as exc:  # noqa: BLE001
                    logger.error("%s discovery failed: %s", label, exc)
                    source_errors.append(f"{label} error: {exc}")
                    continue
                breakdown[source] = len(candidates)
                found.extend(candidates)
                logger.info("%s found %s candidate(s)", label, len(candidates))

            admitted = [c for c in found if c.confidence_score >= self.settings.min_confidence_score]
            admitted = admitted[: self.settings.max_candidates_per_run]
            logger.info("Admitted %s of %s candidate(s)", len(admitted), len(found))

            for candidate in admitted:
                if is_cancelled(cancel_event):
                    logger.info("Discovery cancelled with %s candidate(s) left", len(admitted) - len(outcomes))
                    break
                outcomes.append(self.process_discovered(candidate))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Critical error during discovery run")
            source_errors.append(f"Critical error: {exc}")

        result = fold_outcomes(
            outcomes,
            found=len(found),
            admitted=len(admitted),
            source_breakdown=breakdown,
            source_errors=source_errors,
            started_at=started_at,
            duration_seconds=self.monotonic() - start,
            cancelled=is_cancelled(cancel_event),
        )
        logger.info(
            "Discovery run finished: found=%s enriched=%s verified=%s approved=%s rejected=%s duplicates=%s errors=%s",
            result.total_candidates_found,
            result.candidates_enriched,
            result.candidates_verified,
            result.candidates_approved,
            result.candidates_rejected,
            result.duplicates_found,
            len(result.errors),
        )
        return self._finish(result)

    def _finish(self, result: DiscoveryResult) -> DiscoveryResult:
        with self._result_lock:
            self._last_result = result
        return result

    def process_discovered(self, candidate: SpotCandidate) -> CandidateOutcome:
        """Drive one candidate through the pipeline, absorbing its failure."""
        progress: Dict[str, bool] = {}
        try:
            return self._drive(candidate, progress)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error processing candidate %s: %s", candidate.name, exc)
            return CandidateOutcome(
                candidate_id=candidate.id,
                enriched=progress.get("enriched", False),
                error=f"Error processing candidate {candidate.name}: {exc}",
            )

    def _drive(self, candidate: SpotCandidate, progress: Dict[str, bool]) -> CandidateOutcome:
        self.enrich_candidate(candidate)
        progress["enriched"] = True

        self.verify_candidate(candidate)
        if candidate.status is CandidateStatus.rejected or candidate.status is CandidateStatus.duplicate:
            self.store.upsert(candidate)
            return CandidateOutcome(
                candidate_id=candidate.id,
                enriched=True,
                rejected=candidate.status is CandidateStatus.rejected,
                duplicate=candidate.status is CandidateStatus.duplicate,
            )

        self.score_candidate(candidate)
        self.store.upsert(candidate)

        approved = False
        error = None
        if (
            candidate.status is CandidateStatus.verified
            and candidate.quality_score >= self.settings.auto_approval_quality_threshold
        ):
            try:
                self._promote(candidate, approved_by=None)
                approved = True
            except Exception as exc:  # noqa: BLE001
                logger.error("Auto-approval failed for %s: %s", candidate.name, exc)
                error = f"Auto-approval failed for {candidate.name}: {exc}"

        return CandidateOutcome(candidate_id=candidate.id, enriched=True, verified=True, approved=approved, error=error)

    # Stages

    def enrich_candidate(self, candidate: SpotCandidate) -> SpotCandidate:
        candidate.status = CandidateStatus.enriching
        try:
            self.extraction.enrich_candidate_data(candidate)
            self.scorer.process_candidate(candidate)
        except Exception:
            candidate.status = CandidateStatus.discovered
            raise
        return candidate

    def verify_candidate(self, candidate: SpotCandidate) -> ValidationResult:
        candidate.status = CandidateStatus.verifying
        try:
            validation = self.scorer.validate(candidate)
            if not validation.is_valid:
                candidate.status = CandidateStatus.rejected
                candidate.verification_notes = summarize(validation.errors, "Validation failed")
                logger.info("Rejected %s: %s", candidate.name, "; ".join(validation.errors))
                return validation

            match = self.duplicate_detector.check(candidate)
            if match is not None:
                candidate.status = CandidateStatus.duplicate
                candidate.existing_spot_id = match.venue_id
                candidate.verification_notes = match.note
                if match.candidate_id:
                    candidate.source_data["duplicate_of_candidate"] = match.candidate_id
                logger.info("Duplicate %s: %s", candidate.name, match.note)
                return validation

            candidate.status = CandidateStatus.verified
            candidate.verified_at = self.clock()
            candidate.verification_notes = summarize(validation.warnings, "Warnings")
            return validation
        except Exception:
            candidate.status = CandidateStatus.enriched
            raise

    def score_candidate(self, candidate: SpotCandidate) -> SpotCandidate:
        """Recompute scores on the final data. The status is left as is."""
        self.scorer.score(candidate)
        candidate.processed_at = self.clock()
        return candidate

    def _promote(self, candidate: SpotCandidate, approved_by: Optional[str]) -> str:
        if candidate.location is None or not within_bounds(candidate.location, self.settings.service_area_bbox):
            raise InvalidCandidateStateError(f"Candidate {candidate.id} has no location inside the service area")

        draft = VenueDraft(
            name=candidate.name,
            address=candidate.address,
            location=candidate.location,
            description=candidate.description,
            phone=candidate.phone,
            opening_time=candidate.opening_time,
            closing_time=candidate.closing_time,
            price_tier=candidate.price_tier,
            specialties=tuple(candidate.specialties),
            is_verified=candidate.quality_score >= VERIFIED_SPOT_QUALITY,
            created_by=approved_by,
        )
        venue_id = self.registry.create_venue(draft)

        previous_status = candidate.status
        candidate.status = CandidateStatus.approved
        candidate.existing_spot_id = venue_id
        candidate.processed_at = self.clock()
        if approved_by:
            candidate.source_data["approved_by"] = approved_by
        try:
            self.store.upsert(candidate)
        except Exception as exc:
            candidate.status = previous_status
            candidate.existing_spot_id = None
            candidate.source_data.pop("approved_by", None)
            logger.error("Spot %s was created but candidate %s could not be linked to it", venue_id, candidate.id)
            raise RuntimeError(f"spot {venue_id} created but candidate not saved: {exc}") from exc
        logger.info("Approved candidate %s as spot %s", candidate.name, venue_id)
        return venue_id

    # Explicit operations

    def _require(self, candidate_id: str) -> SpotCandidate:
        candidate = self.store.get(candidate_id)
        if candidate is None:
            raise CandidateNotFoundError(f"Candidate {candidate_id} not found")
        return candidate

    def approve_candidate(self, candidate_id: str, approved_by: Optional[str] = None) -> str:
        candidate = self._require(candidate_id)
        if candidate.status is CandidateStatus.approved:
            raise InvalidCandidateStateError(f"Candidate {candidate_id} is already approved")
        if candidate.status is CandidateStatus.rejected:
            raise InvalidCandidateStateError(f"Candidate {candidate_id} was rejected and cannot be approved")
        if candidate.status is CandidateStatus.duplicate:
            raise InvalidCandidateStateError(f"Candidate {candidate_id} is a duplicate and cannot be approved")
        return self._promote(candidate, approved_by)

    def reject_candidate(self, candidate_id: str, reason: str, rejected_by: Optional[str] = None) -> SpotCandidate:
        if not reason or not reason.strip():
            raise ValueError("A rejection reason is required")
        candidate = self._require(candidate_id)
        if candidate.status is CandidateStatus.approved:
            raise InvalidCandidateStateError(f"Candidate {candidate_id} is approved and cannot be rejected")

        candidate.status = CandidateStatus.rejected
        candidate.verification_notes = f"Rejected: {reason.strip()}"
        candidate.processed_at = self.clock()
        if rejected_by:
            candidate.source_data["rejected_by"] = rejected_by
        self.store.upsert(candidate)
        logger.info("Rejected candidate %s: %s", candidate.name, reason.strip())
        return candidate

    def submit_candidate(
        self,
        name: str,
        address: Optional[str] = None,
        *,
        description: Optional[str] = None,
        location: Optional[Location] = None,
        phone: Optional[str] = None,
        specialties: Optional[List[str]] = None,
        price_tier: PriceTier = PriceTier.budget,
        source_url: Optional[str] = None,
        submitted_by: Optional[str] = None,
    ) -> SpotCandidate:
        """Run a user submitted venue through the same chain as discovered ones."""
        candidate = SpotCandidate(
            name=name,
            source=DiscoverySource.user_submission,
            address=address,
            description=description,
            location=location,
            phone=phone,
            price_tier=price_tier,
            specialties=list(specialties or []),
            source_url=source_url,
            discovered_at=self.clock(),
        )
        if submitted_by:
            candidate.source_data["submitted_by"] = submitted_by
        self.scorer.score(candidate)
        self._drive(candidate, {})
        return candidate

    def get_candidate(self, candidate_id: str) -> Optional[SpotCandidate]:
        return self.store.get(candidate_id)

    def get_candidates(self, candidate_filter: Optional[CandidateFilter] = None) -> List[SpotCandidate]:
        return self.store.query(candidate_filter or CandidateFilter())

    def get_discovery_metrics(
        self,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> DiscoveryMetrics:
        candidates = self.store.query(
            CandidateFilter(discovered_after=from_date, discovered_before=to_date, limit=None)
        )
        today: date = self.clock().date()

        by_source: Dict[DiscoverySource, int] = {}
        by_status: Dict[CandidateStatus, int] = {}
        for candidate in candidates:
            by_source[candidate.source] = by_source.get(candidate.source, 0) + 1
            by_status[candidate.status] = by_status.get(candidate.status, 0) + 1

        total = len(candidates)
        return DiscoveryMetrics(
            total_candidates=total,
            approved_candidates=by_status.get(CandidateStatus.approved, 0),
            rejected_candidates=by_status.get(CandidateStatus.rejected, 0),
            duplicate_candidates=by_status.get(CandidateStatus.duplicate, 0),
            pending_candidates=sum(1 for c in candidates if c.status not in TERMINAL_STATUSES),
            average_confidence_score=round(sum(c.confidence_score for c in candidates) / total, 4) if total else 0.0,
            average_quality_score=round(sum(c.quality_score for c in candidates) / total, 4) if total else 0.0,
            source_distribution=by_source,
            status_distribution=by_status,
            last_discovered_at=max((c.discovered_at for c in candidates), default=None),
            discovered_today=sum(1 for c in candidates if c.discovered_at.date() == today),
        )


def build_discovery_service(settings: Settings, in_memory: bool = False) -> SpotDiscoveryService:
    """Wire the service from settings."""
    from spot_discovery.vendors.places import get_places_provider

    if in_memory:
        store: CandidateStore = InMemoryCandidateStore()
        registry: SpotRegistry = InMemorySpotRegistry()
    else:
        from spot_discovery.core.db import PostgresCandidateStore, PostgresSpotRegistry

        store = PostgresCandidateStore()
        registry = PostgresSpotRegistry()

    scorer = CandidateScorer(settings)
    provider = get_places_provider(settings)
    extraction = CandidateExtractionService(settings, provider, scorer)
    web_scraper = WebScrapingService(
        settings,
        fetcher=RequestsPageFetcher(settings.user_agent),
        extractor=HtmlSpotExtractor(scorer),
    )
    detector = DuplicateDetector(
        registry,
        store,
        radius_km=settings.duplicate_radius_km,
        min_name_ratio=settings.duplicate_name_ratio,
    )
    return SpotDiscoveryService(
        settings,
        store=store,
        registry=registry,
        scorer=scorer,
        extraction=extraction,
        duplicate_detector=detector,
        web_scraper=web_scraper,
    )
