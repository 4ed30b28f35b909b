"""HTTP entrypoint that triggers discovery runs and exposes the admin read surface."""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from spot_discovery.core.config import get_settings
from spot_discovery.core.discovery import (
    CandidateNotFoundError,
    InvalidCandidateStateError,
    SpotDiscoveryService,
    build_discovery_service,
)
from spot_discovery.core.models import CandidateFilter, CandidateStatus, DiscoverySource, Location, PriceTier
from spot_discovery.etl.transform import candidate_to_dict, metrics_to_dict, result_to_dict

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
# One worker: runs are serialised.
_executor = ThreadPoolExecutor(max_workers=1)
_state_lock = threading.Lock()
_active_run: Optional[Future] = None
_cancel_event: Optional[threading.Event] = None
_service: Optional[SpotDiscoveryService] = None


def get_service() -> SpotDiscoveryService:
    global _service
    with _state_lock:
        if _service is None:
            in_memory = os.getenv("DISCOVERY_IN_MEMORY", "").lower() in {"1", "true", "yes"}
            _service = build_discovery_service(get_settings(), in_memory=in_memory)
        return _service


def _run_in_progress() -> bool:
    return _active_run is not None and not _active_run.done()


# ---------- Error handlers ----------


@app.errorhandler(CandidateNotFoundError)
def handle_not_found(exc: CandidateNotFoundError) -> Any:
    return jsonify({"error": str(exc)}), 404


@app.errorhandler(InvalidCandidateStateError)
def handle_invalid_state(exc: InvalidCandidateStateError) -> Any:
    return jsonify({"error": str(exc)}), 400


@app.errorhandler(ValueError)
def handle_bad_value(exc: ValueError) -> Any:
    return jsonify({"error": str(exc)}), 400


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint. Reads settings only, never touches the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "discovery_enabled": settings.discovery_enabled,
                "places_provider": settings.places_provider,
                "run_in_progress": _run_in_progress(),
                "worker_port_config": settings.worker_port,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/discovery/run")
def trigger_run() -> Any:
    global _active_run, _cancel_event
    service = get_service()
    with _state_lock:
        if _run_in_progress():
            return jsonify({"error": "a discovery run is already in progress"}), 409
        _cancel_event = threading.Event()
        logger.info("Queueing discovery run")
        _active_run = _executor.submit(_run_job_safe, service, _cancel_event)
    return jsonify({"data": {"status": "queued"}}), 202


@app.post("/discovery/cancel")
def cancel_run() -> Any:
    with _state_lock:
        if not _run_in_progress() or _cancel_event is None:
            return jsonify({"data": {"status": "idle"}}), 200
        _cancel_event.set()
    logger.info("Cancellation requested for the active discovery run")
    return jsonify({"data": {"status": "cancelling"}}), 202


@app.get("/discovery/runs/last")
def last_run() -> Any:
    result = get_service().last_result
    if result is None:
        return jsonify({"data": None, "run_in_progress": _run_in_progress()}), 200
    return jsonify({"data": result_to_dict(result), "run_in_progress": _run_in_progress()}), 200


@app.get("/discovery/metrics")
def metrics() -> Any:
    from_date = _parse_datetime_arg("from")
    to_date = _parse_datetime_arg("to")
    return jsonify({"data": metrics_to_dict(get_service().get_discovery_metrics(from_date, to_date))}), 200


@app.get("/discovery/candidates")
def list_candidates() -> Any:
    args = request.args
    candidate_filter = CandidateFilter(
        status=CandidateStatus(args["status"]) if args.get("status") else None,
        source=DiscoverySource(args["source"]) if args.get("source") else None,
        min_confidence=_float_arg("min_confidence"),
        min_quality=_float_arg("min_quality"),
        discovered_after=_parse_datetime_arg("from"),
        discovered_before=_parse_datetime_arg("to"),
        limit=_int_arg("limit", 50),
        offset=_int_arg("offset", 0),
    )
    candidates = get_service().get_candidates(candidate_filter)
    return jsonify({"data": [candidate_to_dict(c) for c in candidates]}), 200


@app.get("/discovery/candidates/<candidate_id>")
def get_candidate(candidate_id: str) -> Any:
    candidate = get_service().get_candidate(candidate_id)
    if candidate is None:
        raise CandidateNotFoundError(f"Candidate {candidate_id} not found")
    return jsonify({"data": candidate_to_dict(candidate)}), 200


@app.post("/discovery/candidates")
def submit_candidate() -> Any:
    """Submit a spot by hand. Required JSON fields: name, address."""
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    missing = [f for f in ("name", "address") if not str(payload.get(f) or "").strip()]
    if missing:
        return jsonify({"error": f"missing fields: {', '.join(missing)}"}), 400

    location = None
    if payload.get("latitude") is not None or payload.get("longitude") is not None:
        try:
            location = Location(float(payload["latitude"]), float(payload["longitude"]))
        except (KeyError, TypeError, ValueError):
            return jsonify({"error": "latitude and longitude must both be numeric"}), 400

    specialties = payload.get("specialties") or []
    if not isinstance(specialties, list):
        return jsonify({"error": "specialties must be a list"}), 400

    try:
        price_tier = PriceTier[str(payload.get("price_tier") or "budget")]
    except KeyError:
        return jsonify({"error": "unknown price_tier"}), 400

    candidate = get_service().submit_candidate(
        str(payload["name"]),
        str(payload["address"]),
        description=payload.get("description"),
        location=location,
        phone=payload.get("phone"),
        specialties=[str(s) for s in specialties],
        price_tier=price_tier,
        source_url=payload.get("source_url"),
        submitted_by=payload.get("submitted_by"),
    )
    return jsonify({"data": candidate_to_dict(candidate)}), 201


@app.post("/discovery/candidates/<candidate_id>/approve")
def approve_candidate(candidate_id: str) -> Any:
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    venue_id = get_service().approve_candidate(candidate_id, approved_by=payload.get("approved_by"))
    return jsonify({"data": {"candidate_id": candidate_id, "spot_id": venue_id}}), 200


@app.post("/discovery/candidates/<candidate_id>/reject")
def reject_candidate(candidate_id: str) -> Any:
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    reason = str(payload.get("reason") or "").strip()
    if not reason:
        return jsonify({"error": "reason is required"}), 400
    candidate = get_service().reject_candidate(candidate_id, reason, rejected_by=payload.get("rejected_by"))
    return jsonify({"data": candidate_to_dict(candidate)}), 200


# ---------- Internals ----------


def _float_arg(name: str) -> Optional[float]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be numeric") from exc


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _parse_datetime_arg(name: str) -> Optional[datetime]:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an ISO date/time") from exc
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _run_job_safe(service: SpotDiscoveryService, cancel_event: threading.Event) -> None:
    try:
        service.run_discovery(cancel_event)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Discovery run failed: %s", exc)


def main() -> None:
    """Cloud Run injects PORT; fall back to WORKER_PORT locally."""
    port = int(os.getenv("PORT") or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
