import argparse
import json
import threading
from datetime import datetime, timezone

import pytest

from spot_discovery.core.config import Settings
from spot_discovery.core.discovery import CandidateNotFoundError, InvalidCandidateStateError
from spot_discovery.core.models import (
    CandidateStatus,
    DiscoveryMetrics,
    DiscoveryResult,
    DiscoverySource,
    SpotCandidate,
)
from spot_discovery.jobs import run_discovery

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class DummyService:
    def __init__(self):
        self.runs = 0
        self.filters = []
        self.approvals = []
        self.rejections = []
        self.metrics_args = None
        self.on_run = None

    def run_discovery(self, cancel_event=None):
        self.runs += 1
        if self.on_run:
            self.on_run(cancel_event)
        return DiscoveryResult(total_candidates_found=2, started_at=NOW)

    def get_discovery_metrics(self, from_date=None, to_date=None):
        self.metrics_args = (from_date, to_date)
        return DiscoveryMetrics(total_candidates=5, source_distribution={DiscoverySource.web_scraping: 5})

    def get_candidates(self, candidate_filter=None):
        self.filters.append(candidate_filter)
        return [SpotCandidate(name="Amala Skye", source=DiscoverySource.web_scraping, id="c1")]

    def approve_candidate(self, candidate_id, approved_by=None):
        if candidate_id == "missing":
            raise CandidateNotFoundError("Candidate missing not found")
        if candidate_id == "rejected":
            raise InvalidCandidateStateError("Candidate rejected was rejected and cannot be approved")
        self.approvals.append((candidate_id, approved_by))
        return "venue-1"

    def reject_candidate(self, candidate_id, reason, rejected_by=None):
        self.rejections.append((candidate_id, reason, rejected_by))
        return SpotCandidate(
            name="Amala Skye",
            source=DiscoverySource.web_scraping,
            id=candidate_id,
            status=CandidateStatus.rejected,
            verification_notes=f"Rejected: {reason}",
        )


@pytest.fixture
def service(monkeypatch):
    dummy = DummyService()
    captured = {}

    def fake_build(settings, in_memory=False):
        captured["in_memory"] = in_memory
        return dummy

    monkeypatch.setattr(run_discovery, "get_settings", lambda: Settings(interval_minutes=1))
    monkeypatch.setattr(run_discovery, "build_discovery_service", fake_build)
    dummy.captured = captured
    return dummy


def test_run_discovery_job_single_run(service, capsys):
    run_discovery.run_discovery_job(service)

    assert service.runs == 1
    out = json.loads(capsys.readouterr().out)
    assert out["total_candidates_found"] == 2


def test_run_discovery_job_loop_stops_when_cancelled(service, monkeypatch, capsys):
    event = threading.Event()
    pauses = []

    def fake_pause(seconds, cancel_event=None):
        pauses.append(seconds)
        if len(pauses) == 2:
            cancel_event.set()
        return cancel_event.is_set()

    monkeypatch.setattr(run_discovery, "pause", fake_pause)

    run_discovery.run_discovery_job(service, loop=True, interval_minutes=5, cancel_event=event)

    assert service.runs == 2
    assert pauses == [300, 300]


def test_run_discovery_job_loop_exits_when_run_cancelled(service):
    service.on_run = lambda cancel_event: cancel_event.set()

    run_discovery.run_discovery_job(service, loop=True, interval_minutes=5)

    assert service.runs == 1


def test_build_parser():
    parser = run_discovery.build_parser()
    args = parser.parse_args(["--in-memory", "candidates", "--status", "verified", "--limit", "5"])

    assert isinstance(parser, argparse.ArgumentParser)
    assert args.in_memory is True
    assert args.command == "candidates"
    assert args.status == "verified"
    assert args.limit == 5
    assert args.offset == 0


def test_build_parser_rejects_bad_input():
    parser = run_discovery.build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["reject", "c1"])
    with pytest.raises(SystemExit):
        parser.parse_args(["metrics", "--from", "yesterday"])
    with pytest.raises(SystemExit):
        parser.parse_args(["candidates", "--status", "pending"])


def test_main_run(service, capsys):
    assert run_discovery.main(["--in-memory", "run"]) == 0

    assert service.runs == 1
    assert service.captured["in_memory"] is True
    assert json.loads(capsys.readouterr().out)["total_candidates_found"] == 2


def test_main_metrics_passes_dates(service, capsys):
    assert run_discovery.main(["metrics", "--from", "2026-03-01T00:00:00+00:00"]) == 0

    from_date, to_date = service.metrics_args
    assert from_date == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert to_date is None
    out = json.loads(capsys.readouterr().out)
    assert out["total_candidates"] == 5
    assert out["source_distribution"] == {"web_scraping": 5}


def test_main_metrics_reads_bare_dates_as_utc(service):
    assert run_discovery.main(["metrics", "--from", "2026-03-01", "--to", "2026-03-02T12:00"]) == 0

    from_date, to_date = service.metrics_args
    assert from_date == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert to_date == datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def test_main_candidates_builds_filter(service, capsys):
    assert run_discovery.main(["candidates", "--status", "verified", "--source", "google_places", "--min-quality", "0.7"]) == 0

    candidate_filter = service.filters[0]
    assert candidate_filter.status is CandidateStatus.verified
    assert candidate_filter.source is DiscoverySource.google_places
    assert candidate_filter.min_quality == 0.7
    assert json.loads(capsys.readouterr().out)[0]["id"] == "c1"


def test_main_approve_and_reject(service, capsys):
    assert run_discovery.main(["approve", "c1", "--by", "admin-1"]) == 0
    assert json.loads(capsys.readouterr().out) == {"candidate_id": "c1", "spot_id": "venue-1"}
    assert service.approvals == [("c1", "admin-1")]

    assert run_discovery.main(["reject", "c2", "--reason", "closed down"]) == 0
    assert json.loads(capsys.readouterr().out)["status"] == "rejected"
    assert service.rejections == [("c2", "closed down", None)]


def test_main_reports_admin_errors(service):
    assert run_discovery.main(["approve", "missing"]) == 1
    assert run_discovery.main(["approve", "rejected"]) == 1


def test_main_init_db(service, monkeypatch):
    calls = []
    monkeypatch.setattr(run_discovery, "ensure_schema", lambda: calls.append(True))

    assert run_discovery.main(["init-db"]) == 0
    assert calls == [True]
    assert "in_memory" not in service.captured
