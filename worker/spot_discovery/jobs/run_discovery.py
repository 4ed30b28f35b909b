"""CLI job to run discovery and administer candidates."""

import argparse
import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, List, Optional

from spot_discovery.core.cancellation import pause
from spot_discovery.core.config import get_settings
from spot_discovery.core.db import ensure_schema
from spot_discovery.core.discovery import (
    CandidateNotFoundError,
    InvalidCandidateStateError,
    SpotDiscoveryService,
    build_discovery_service,
)
from spot_discovery.core.models import CandidateFilter, CandidateStatus, DiscoverySource
from spot_discovery.etl.transform import candidate_to_dict, metrics_to_dict, result_to_dict

logger = logging.getLogger(__name__)


def _emit(payload: Any) -> None:
    json.dump(payload, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def _parse_datetime(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO date/time: {value}") from exc
    # Naive values are read as UTC.
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def run_discovery_job(
    service: SpotDiscoveryService,
    *,
    loop: bool = False,
    interval_minutes: int = 60,
    cancel_event: Optional[threading.Event] = None,
) -> None:
    cancel_event = cancel_event or threading.Event()
    while True:
        result = service.run_discovery(cancel_event)
        _emit(result_to_dict(result))
        if not loop or cancel_event.is_set():
            break
        logger.info("Next discovery run in %s minute(s)", interval_minutes)
        if pause(interval_minutes * 60, cancel_event):
            break


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Amala spot discovery worker")
    parser.add_argument("--in-memory", action="store_true", help="Use process-local stores instead of PostgreSQL")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a discovery cycle")
    run.add_argument("--loop", action="store_true", help="Keep running every DISCOVERY_INTERVAL_MINUTES")

    metrics = sub.add_parser("metrics", help="Show discovery metrics")
    metrics.add_argument("--from", dest="from_date", type=_parse_datetime)
    metrics.add_argument("--to", dest="to_date", type=_parse_datetime)

    candidates = sub.add_parser("candidates", help="List candidates")
    candidates.add_argument("--status", choices=[s.value for s in CandidateStatus])
    candidates.add_argument("--source", choices=[s.value for s in DiscoverySource])
    candidates.add_argument("--min-confidence", type=float)
    candidates.add_argument("--min-quality", type=float)
    candidates.add_argument("--limit", type=int, default=50)
    candidates.add_argument("--offset", type=int, default=0)

    approve = sub.add_parser("approve", help="Approve a candidate")
    approve.add_argument("candidate_id")
    approve.add_argument("--by", dest="approved_by")

    reject = sub.add_parser("reject", help="Reject a candidate")
    reject.add_argument("candidate_id")
    reject.add_argument("--reason", required=True)
    reject.add_argument("--by", dest="rejected_by")

    sub.add_parser("init-db", help="Create tables and indexes")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)
    settings = get_settings()

    if args.command == "init-db":
        ensure_schema()
        return 0

    service = build_discovery_service(settings, in_memory=args.in_memory)

    try:
        if args.command == "run":
            cancel_event = threading.Event()
            worker = threading.Thread(
                target=run_discovery_job,
                args=(service,),
                kwargs={"loop": args.loop, "interval_minutes": settings.interval_minutes, "cancel_event": cancel_event},
                name="discovery-run",
            )
            worker.start()
            try:
                while worker.is_alive():
                    worker.join(0.5)
            except KeyboardInterrupt:
                logger.info("Interrupted; cancelling discovery after the current step")
                cancel_event.set()
                worker.join()
        elif args.command == "metrics":
            _emit(metrics_to_dict(service.get_discovery_metrics(args.from_date, args.to_date)))
        elif args.command == "candidates":
            candidate_filter = CandidateFilter(
                status=CandidateStatus(args.status) if args.status else None,
                source=DiscoverySource(args.source) if args.source else None,
                min_confidence=args.min_confidence,
                min_quality=args.min_quality,
                limit=args.limit,
                offset=args.offset,
            )
            _emit([candidate_to_dict(c) for c in service.get_candidates(candidate_filter)])
        elif args.command == "approve":
            venue_id = service.approve_candidate(args.candidate_id, approved_by=args.approved_by)
            _emit({"candidate_id": args.candidate_id, "spot_id": venue_id})
        elif args.command == "reject":
            candidate = service.reject_candidate(args.candidate_id, args.reason, rejected_by=args.rejected_by)
            _emit(candidate_to_dict(candidate))
    except (CandidateNotFoundError, InvalidCandidateStateError, ValueError) as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
