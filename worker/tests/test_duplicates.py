import pytest

from spot_discovery.core.duplicates import DuplicateDetector
from spot_discovery.core.models import CandidateStatus, DiscoverySource, Location, SpotCandidate
from spot_discovery.core.stores import InMemoryCandidateStore, InMemorySpotRegistry

SURULERE = Location(6.4969, 3.3553)
# Roughly 80 metres north of SURULERE.
NEARBY = Location(6.4976, 3.3553)
# Roughly 1.1 km north of SURULERE.
FAR = Location(6.5069, 3.3553)


def _candidate(name, location=SURULERE, **extra):
    return SpotCandidate(name=name, source=DiscoverySource.web_scraping, location=location, **extra)


@pytest.fixture
def store():
    return InMemoryCandidateStore()


@pytest.fixture
def registry():
    return InMemorySpotRegistry()


def test_registry_venue_with_contained_name_is_duplicate(store, registry):
    venue_id = registry.add_existing("Mama Cass Amala", NEARBY)
    detector = DuplicateDetector(registry, store)

    match = detector.check(_candidate("Mama Cass Amala Joint"))

    assert match is not None
    assert match.kind == "spot"
    assert match.venue_id == venue_id
    assert match.note == f"Duplicate of existing spot: Mama Cass Amala ({venue_id})"


def test_sibling_candidate_is_duplicate(store, registry):
    sibling = _candidate("Iya Basira Bukka", location=NEARBY)
    store.upsert(sibling)
    detector = DuplicateDetector(registry, store)

    match = detector.check(_candidate("iya basira bukka"))

    assert match.kind == "candidate"
    assert match.candidate_id == sibling.id
    assert match.venue_id is None
    assert "pending candidate" in match.note


def test_registry_is_checked_before_siblings(store, registry):
    registry.add_existing("Amala Skye", NEARBY)
    store.upsert(_candidate("Amala Skye", location=NEARBY))

    match = DuplicateDetector(registry, store).check(_candidate("Amala Skye"))

    assert match.kind == "spot"


def test_candidate_does_not_match_itself(store, registry):
    candidate = _candidate("Amala Skye")
    store.upsert(candidate)

    assert DuplicateDetector(registry, store).check(candidate) is None


def test_no_location_means_no_match(store, registry):
    registry.add_existing("Amala Skye", SURULERE)

    assert DuplicateDetector(registry, store).check(_candidate("Amala Skye", location=None)) is None


def test_far_or_differently_named_places_are_not_duplicates(store, registry):
    registry.add_existing("Amala Skye", FAR)
    registry.add_existing("Mr Biggs", NEARBY)

    assert DuplicateDetector(registry, store).check(_candidate("Amala Skye")) is None


def test_closed_siblings_are_ignored(store, registry):
    store.upsert(_candidate("Amala Skye", location=NEARBY, status=CandidateStatus.rejected))
    store.upsert(_candidate("Amala Skye", location=NEARBY, status=CandidateStatus.duplicate))

    assert DuplicateDetector(registry, store).check(_candidate("Amala Skye")) is None


def test_similarity_ratio_threshold(store, registry):
    registry.add_existing("Amala Shitta", NEARBY)

    assert DuplicateDetector(registry, store).check(_candidate("Amala Shita")) is not None
    assert DuplicateDetector(registry, store, min_name_ratio=0.95).check(_candidate("Amala Shita")) is None


def test_lookup_errors_propagate(store):
    class BrokenRegistry(InMemorySpotRegistry):
        def find_nearby(self, location, radius_km):
            raise RuntimeError("registry offline")

    with pytest.raises(RuntimeError):
        DuplicateDetector(BrokenRegistry(), store).check(_candidate("Amala Skye"))
