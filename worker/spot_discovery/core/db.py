"""Database helpers for the worker."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
from psycopg2 import extras, pool

from spot_discovery.core.config import get_settings
from spot_discovery.core.models import CandidateFilter, Location, SpotCandidate, VenueDraft, VenueRef
from spot_discovery.core.stores import CandidateStore, SpotRegistry
from spot_discovery.etl.transform import candidate_from_row, candidate_to_row

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        pg_pool.putconn(conn)


SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS postgis;

CREATE TABLE IF NOT EXISTS spots (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    address TEXT,
    description TEXT,
    phone TEXT,
    opening_time TIME,
    closing_time TIME,
    price_tier SMALLINT NOT NULL DEFAULT 1,
    specialties TEXT[] NOT NULL DEFAULT '{}',
    location GEOGRAPHY(Point, 4326) NOT NULL,
    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
    created_by TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS spots_location_idx ON spots USING GIST (location);

CREATE TABLE IF NOT EXISTS spot_candidates (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    address TEXT,
    location GEOGRAPHY(Point, 4326),
    phone TEXT,
    opening_time TIME,
    closing_time TIME,
    price_tier SMALLINT NOT NULL DEFAULT 1,
    specialties TEXT[] NOT NULL DEFAULT '{}',
    source TEXT NOT NULL,
    source_url TEXT,
    source_data JSONB NOT NULL DEFAULT '{}'::jsonb,
    confidence_score DOUBLE PRECISION NOT NULL DEFAULT 0,
    quality_score DOUBLE PRECISION NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    verification_notes TEXT,
    existing_spot_id TEXT,
    discovered_at TIMESTAMPTZ NOT NULL,
    processed_at TIMESTAMPTZ,
    verified_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS spot_candidates_status_idx ON spot_candidates (status);
CREATE INDEX IF NOT EXISTS spot_candidates_discovered_at_idx ON spot_candidates (discovered_at);
CREATE INDEX IF NOT EXISTS spot_candidates_location_idx ON spot_candidates USING GIST (location);
"""


def ensure_schema() -> None:
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
        conn.commit()
    logger.info("Database schema ensured")


_POINT_SQL = """CASE WHEN %(lng)s IS NOT NULL AND %(lat)s IS NOT NULL THEN
        ST_SetSRID(ST_MakePoint(%(lng)s, %(lat)s), 4326)::geography
    ELSE NULL END"""

_UPSERT_CANDIDATE = f"""
INSERT INTO spot_candidates (
    id,
    name,
    description,
    address,
    location,
    phone,
    opening_time,
    closing_time,
    price_tier,
    specialties,
    source,
    source_url,
    source_data,
    confidence_score,
    quality_score,
    status,
    verification_notes,
    existing_spot_id,
    discovered_at,
    processed_at,
    verified_at,
    updated_at
) VALUES (
    %(id)s,
    %(name)s,
    %(description)s,
    %(address)s,
    {_POINT_SQL},
    %(phone)s,
    %(opening_time)s,
    %(closing_time)s,
    %(price_tier)s,
    %(specialties)s,
    %(source)s,
    %(source_url)s,
    %(source_data)s,
    %(confidence_score)s,
    %(quality_score)s,
    %(status)s,
    %(verification_notes)s,
    %(existing_spot_id)s,
    %(discovered_at)s,
    %(processed_at)s,
    %(verified_at)s,
    NOW()
)
ON CONFLICT (id) DO UPDATE SET
    name = EXCLUDED.name,
    description = EXCLUDED.description,
    address = EXCLUDED.address,
    location = EXCLUDED.location,
    phone = EXCLUDED.phone,
    opening_time = EXCLUDED.opening_time,
    closing_time = EXCLUDED.closing_time,
    price_tier = EXCLUDED.price_tier,
    specialties = EXCLUDED.specialties,
    source_url = EXCLUDED.source_url,
    source_data = EXCLUDED.source_data,
    confidence_score = EXCLUDED.confidence_score,
    quality_score = EXCLUDED.quality_score,
    status = EXCLUDED.status,
    verification_notes = EXCLUDED.verification_notes,
    existing_spot_id = EXCLUDED.existing_spot_id,
    processed_at = EXCLUDED.processed_at,
    verified_at = EXCLUDED.verified_at,
    updated_at = NOW();
"""

_SELECT_CANDIDATE = """
SELECT
    id, name, description, address,
    ST_Y(location::geometry) AS lat,
    ST_X(location::geometry) AS lng,
    phone, opening_time, closing_time, price_tier, specialties,
    source, source_url, source_data, confidence_score, quality_score,
    status, verification_notes, existing_spot_id,
    discovered_at, processed_at, verified_at
FROM spot_candidates
"""

_INSERT_SPOT = f"""
INSERT INTO spots (
    name,
    address,
    description,
    phone,
    opening_time,
    closing_time,
    price_tier,
    specialties,
    location,
    is_verified,
    created_by
) VALUES (
    %(name)s,
    %(address)s,
    %(description)s,
    %(phone)s,
    %(opening_time)s,
    %(closing_time)s,
    %(price_tier)s,
    %(specialties)s,
    {_POINT_SQL},
    %(is_verified)s,
    %(created_by)s
)
RETURNING id::text AS id;
"""


def _prepare_candidate_params(candidate: SpotCandidate) -> Dict[str, Any]:
    params = candidate_to_row(candidate)
    params["source_data"] = extras.Json(params["source_data"])
    return params


def build_candidate_query(candidate_filter: CandidateFilter) -> Tuple[str, Dict[str, Any]]:
    clauses: List[str] = []
    params: Dict[str, Any] = {}
    if candidate_filter.status is not None:
        clauses.append("status = %(status)s")
        params["status"] = candidate_filter.status.value
    if candidate_filter.source is not None:
        clauses.append("source = %(source)s")
        params["source"] = candidate_filter.source.value
    if candidate_filter.min_confidence is not None:
        clauses.append("confidence_score >= %(min_confidence)s")
        params["min_confidence"] = candidate_filter.min_confidence
    if candidate_filter.min_quality is not None:
        clauses.append("quality_score >= %(min_quality)s")
        params["min_quality"] = candidate_filter.min_quality
    if candidate_filter.discovered_after is not None:
        clauses.append("discovered_at >= %(discovered_after)s")
        params["discovered_after"] = candidate_filter.discovered_after
    if candidate_filter.discovered_before is not None:
        clauses.append("discovered_at <= %(discovered_before)s")
        params["discovered_before"] = candidate_filter.discovered_before

    sql = _SELECT_CANDIDATE
    if clauses:
        sql += "WHERE " + " AND ".join(clauses) + "\n"
    sql += "ORDER BY quality_score DESC, confidence_score DESC, discovered_at DESC\n"
    if candidate_filter.limit is not None:
        sql += "LIMIT %(limit)s "
        params["limit"] = candidate_filter.limit
    sql += "OFFSET %(offset)s"
    params["offset"] = candidate_filter.offset
    return sql, params


class PostgresCandidateStore(CandidateStore):
    def upsert(self, candidate: SpotCandidate) -> None:
        params = _prepare_candidate_params(candidate)
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_UPSERT_CANDIDATE, params)
            conn.commit()
        logger.debug("Upserted candidate %s (%s)", candidate.name, candidate.status.value)

    def _fetch(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                return list(cur.fetchall())

    def get(self, candidate_id: str) -> Optional[SpotCandidate]:
        rows = self._fetch(_SELECT_CANDIDATE + "WHERE id = %(id)s", {"id": candidate_id})
        return candidate_from_row(rows[0]) if rows else None

    def query(self, candidate_filter: CandidateFilter) -> List[SpotCandidate]:
        sql, params = build_candidate_query(candidate_filter)
        return [candidate_from_row(row) for row in self._fetch(sql, params)]

    def find_nearby(self, location: Location, radius_km: float, exclude_id: Optional[str] = None) -> List[SpotCandidate]:
        sql = (
            _SELECT_CANDIDATE
            + """WHERE location IS NOT NULL
  AND status NOT IN ('rejected', 'duplicate')
  AND (%(exclude_id)s IS NULL OR id <> %(exclude_id)s)
  AND ST_DWithin(location, ST_SetSRID(ST_MakePoint(%(lng)s, %(lat)s), 4326)::geography, %(radius_m)s)"""
        )
        params = {
            "exclude_id": exclude_id,
            "lng": location.longitude,
            "lat": location.latitude,
            "radius_m": radius_km * 1000,
        }
        return [candidate_from_row(row) for row in self._fetch(sql, params)]


class PostgresSpotRegistry(SpotRegistry):
    def create_venue(self, draft: VenueDraft) -> str:
        params = {
            "name": draft.name,
            "address": draft.address,
            "description": draft.description,
            "phone": draft.phone,
            "opening_time": draft.opening_time,
            "closing_time": draft.closing_time,
            "price_tier": int(draft.price_tier),
            "specialties": list(draft.specialties),
            "lng": draft.location.longitude,
            "lat": draft.location.latitude,
            "is_verified": draft.is_verified,
            "created_by": draft.created_by,
        }
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(_INSERT_SPOT, params)
                row = cur.fetchone()
            conn.commit()
        if not row:
            raise psycopg2.DatabaseError("spots insert returned no id")
        logger.info("Created spot %s (%s)", draft.name, row["id"])
        return str(row["id"])

    def find_nearby(self, location: Location, radius_km: float) -> List[VenueRef]:
        sql = """
SELECT id::text AS id, name
FROM spots
WHERE ST_DWithin(location, ST_SetSRID(ST_MakePoint(%(lng)s, %(lat)s), 4326)::geography, %(radius_m)s)
ORDER BY ST_Distance(location, ST_SetSRID(ST_MakePoint(%(lng)s, %(lat)s), 4326)::geography)
"""
        params = {"lng": location.longitude, "lat": location.latitude, "radius_m": radius_km * 1000}
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return [VenueRef(id=row["id"], name=row["name"]) for row in rows]
