import pytest
from conftest import FakePlacesProvider

from spot_discovery.core.config import Settings
from spot_discovery.core.discovery import SpotDiscoveryService
from spot_discovery.core.duplicates import DuplicateDetector
from spot_discovery.core.extraction import CandidateExtractionService
from spot_discovery.core.models import CandidateStatus, DiscoverySource, Location, SpotCandidate
from spot_discovery.core.scoring import CandidateScorer
from spot_discovery.core.stores import InMemoryCandidateStore, InMemorySpotRegistry
from spot_discovery.jobs import discovery_server

SETTINGS = Settings(places_enabled=False, web_scraping_enabled=False)


class DummyFuture:
    def __init__(self):
        self.finished = False

    def done(self):
        return self.finished


class DummyExecutor:
    def __init__(self):
        self.submitted = []
        self.futures = []

    def submit(self, fn, *args):
        self.submitted.append((fn, args))
        future = DummyFuture()
        self.futures.append(future)
        return future


@pytest.fixture
def service():
    store = InMemoryCandidateStore()
    registry = InMemorySpotRegistry()
    scorer = CandidateScorer(SETTINGS)
    return SpotDiscoveryService(
        SETTINGS,
        store=store,
        registry=registry,
        scorer=scorer,
        extraction=CandidateExtractionService(SETTINGS, FakePlacesProvider(), scorer),
        duplicate_detector=DuplicateDetector(registry, store),
    )


@pytest.fixture(autouse=True)
def server_state(monkeypatch, service):
    executor = DummyExecutor()
    monkeypatch.setattr(discovery_server, "_executor", executor)
    monkeypatch.setattr(discovery_server, "_service", service)
    monkeypatch.setattr(discovery_server, "_active_run", None)
    monkeypatch.setattr(discovery_server, "_cancel_event", None)
    monkeypatch.setattr(discovery_server, "get_settings", lambda: SETTINGS)
    yield executor


@pytest.fixture
def client():
    return discovery_server.app.test_client()


def _verified(service, name="Amala Skye", **extra):
    candidate = SpotCandidate(
        name=name,
        source=DiscoverySource.web_scraping,
        address="Surulere, Lagos",
        location=Location(6.4969, 3.3553),
        status=CandidateStatus.verified,
        **extra,
    )
    service.store.upsert(candidate)
    return candidate


def test_health_endpoint(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "ok"
    assert body["run_in_progress"] is False
    assert body["places_provider"] == "google"


def test_trigger_run_queues_once(client, server_state):
    response = client.post("/discovery/run")

    assert response.status_code == 202
    assert response.get_json()["data"]["status"] == "queued"
    fn, args = server_state.submitted[0]
    assert fn is discovery_server._run_job_safe
    assert not args[1].is_set()

    assert client.post("/discovery/run").status_code == 409
    assert client.get("/healthz").get_json()["run_in_progress"] is True

    server_state.futures[0].finished = True
    assert client.post("/discovery/run").status_code == 202
    assert len(server_state.submitted) == 2


def test_cancel_run(client, server_state):
    assert client.post("/discovery/cancel").get_json()["data"]["status"] == "idle"

    client.post("/discovery/run")
    response = client.post("/discovery/cancel")

    assert response.status_code == 202
    assert response.get_json()["data"]["status"] == "cancelling"
    assert server_state.submitted[0][1][1].is_set()


def test_run_job_safe_executes_and_records(service, client):
    discovery_server._run_job_safe(service, discovery_server.threading.Event())

    body = client.get("/discovery/runs/last").get_json()
    assert body["data"]["total_candidates_found"] == 0
    assert body["data"]["errors"] == []


def test_run_job_safe_swallows_errors(monkeypatch, service):
    def boom(cancel_event=None):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(service, "run_discovery", boom)

    discovery_server._run_job_safe(service, discovery_server.threading.Event())


def test_last_run_before_any_run(client):
    body = client.get("/discovery/runs/last").get_json()
    assert body["data"] is None
    assert body["run_in_progress"] is False


def test_list_and_get_candidates(client, service):
    first = _verified(service, quality_score=0.9)
    _verified(service, name="Amala Corner", quality_score=0.4)

    listed = client.get("/discovery/candidates?status=verified&min_quality=0.5").get_json()["data"]
    assert [c["id"] for c in listed] == [first.id]

    single = client.get(f"/discovery/candidates/{first.id}")
    assert single.status_code == 200
    assert single.get_json()["data"]["name"] == "Amala Skye"

    assert client.get("/discovery/candidates/missing").status_code == 404


def test_list_candidates_validates_query(client):
    assert client.get("/discovery/candidates?status=pending").status_code == 400
    assert client.get("/discovery/candidates?limit=-1").status_code == 400
    assert client.get("/discovery/candidates?limit=ten").status_code == 400
    assert client.get("/discovery/candidates?min_confidence=high").status_code == 400
    assert client.get("/discovery/candidates?from=yesterday").status_code == 400


def test_submit_candidate(client, service):
    response = client.post(
        "/discovery/candidates",
        json={
            "name": "Amala Corner",
            "address": "Allen Avenue, Ikeja, Lagos",
            "description": "Hot amala and gbegiri",
            "latitude": 6.6018,
            "longitude": 3.3515,
            "phone": "0803 123 4567",
            "specialties": ["amala", "gbegiri"],
            "submitted_by": "user-42",
        },
    )

    assert response.status_code == 201
    data = response.get_json()["data"]
    assert data["source"] == "user_submission"
    assert data["status"] == "approved"
    assert data["existing_spot_id"] is not None
    assert service.get_candidate(data["id"]).source_data["submitted_by"] == "user-42"


def test_submit_candidate_validates_payload(client):
    assert client.post("/discovery/candidates", json={}).status_code == 400
    assert client.post("/discovery/candidates", json={"name": "Amala Corner"}).status_code == 400
    base = {"name": "Amala Corner", "address": "Ikeja, Lagos"}
    assert client.post("/discovery/candidates", json=dict(base, latitude=6.6)).status_code == 400
    assert client.post("/discovery/candidates", json=dict(base, latitude="north", longitude=3.3)).status_code == 400
    assert client.post("/discovery/candidates", json=dict(base, specialties="amala")).status_code == 400
    assert client.post("/discovery/candidates", json=dict(base, price_tier="cheap")).status_code == 400


def test_approve_candidate(client, service):
    candidate = _verified(service)

    response = client.post(f"/discovery/candidates/{candidate.id}/approve", json={"approved_by": "admin-1"})

    assert response.status_code == 200
    spot_id = response.get_json()["data"]["spot_id"]
    assert service.get_candidate(candidate.id).existing_spot_id == spot_id

    assert client.post(f"/discovery/candidates/{candidate.id}/approve").status_code == 400
    assert client.post("/discovery/candidates/missing/approve").status_code == 404


def test_reject_candidate(client, service):
    candidate = _verified(service)

    assert client.post(f"/discovery/candidates/{candidate.id}/reject", json={}).status_code == 400
    assert client.post("/discovery/candidates/missing/reject", json={"reason": "closed"}).status_code == 404

    response = client.post(
        f"/discovery/candidates/{candidate.id}/reject",
        json={"reason": "Closed down", "rejected_by": "admin-2"},
    )

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["status"] == "rejected"
    assert data["verification_notes"] == "Rejected: Closed down"


def test_reject_approved_candidate_is_invalid(client, service):
    candidate = _verified(service)
    service.approve_candidate(candidate.id)

    response = client.post(f"/discovery/candidates/{candidate.id}/reject", json={"reason": "dup"})

    assert response.status_code == 400
    assert "approved" in response.get_json()["error"]


def test_metrics_endpoint(client, service):
    _verified(service)

    response = client.get("/discovery/metrics?from=2000-01-01T00:00:00%2B00:00")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["total_candidates"] == 1
    assert data["status_distribution"] == {"verified": 1}
    assert client.get("/discovery/metrics?to=soon").status_code == 400


def test_date_window_accepts_bare_dates(client, service):
    candidate = _verified(service)

    metrics = client.get("/discovery/metrics?from=2000-01-01&to=2999-12-31")
    assert metrics.status_code == 200
    assert metrics.get_json()["data"]["total_candidates"] == 1

    listed = client.get("/discovery/candidates?from=2000-01-01").get_json()["data"]
    assert [c["id"] for c in listed] == [candidate.id]

    assert client.get("/discovery/candidates?from=2999-01-01").get_json()["data"] == []
