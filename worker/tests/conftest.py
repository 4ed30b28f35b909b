import sys
from pathlib import Path

import pytest

# Ensure `spot_discovery` is importable when running pytest from the repository root or worker directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from spot_discovery.core.config import Settings  # noqa: E402
from spot_discovery.core.models import Location  # noqa: E402
from spot_discovery.vendors.places import PlaceSearchProvider  # noqa: E402

LAGOS = Location(6.5244, 3.3792)


class FakePlacesProvider(PlaceSearchProvider):
    """In-memory provider keyed by query, place id and address."""

    name = "fake"

    def __init__(self, search_results=None, details=None, geocodes=None, nearby=None, fail_queries=()):
        self.search_results = search_results or {}
        self.details = details or {}
        self.geocodes = geocodes or {}
        self.nearby = nearby or []
        self.fail_queries = set(fail_queries)
        self.search_calls = []
        self.details_calls = []
        self.geocode_calls = []
        self.nearby_calls = []

    def search_places(self, center, radius_m, query, cancel_event=None):
        self.search_calls.append((center, radius_m, query))
        if query in self.fail_queries:
            raise RuntimeError(f"search exploded for {query}")
        return list(self.search_results.get(query, []))

    def get_place_details(self, place_id):
        self.details_calls.append(place_id)
        return self.details.get(place_id)

    def geocode_address(self, address):
        self.geocode_calls.append(address)
        return self.geocodes.get(address)

    def find_nearby_places(self, center, radius_m, place_type):
        self.nearby_calls.append((center, radius_m, place_type))
        return list(self.nearby)


@pytest.fixture
def settings():
    return Settings(
        request_delay_ms=0,
        places_request_delay_ms=0,
        target_cities=("Lagos, Nigeria",),
        search_keywords=("amala spot",),
    )


@pytest.fixture
def provider():
    return FakePlacesProvider()
