"""Application configuration helpers.

Every option is read from the environment (optionally seeded from a `.env`
file). Scraping targets are structured, so they come either as a JSON string in
`WEB_SCRAPING_TARGETS` or from the JSON file named by
`WEB_SCRAPING_TARGETS_FILE`.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "AmalaSpotLocator/1.0 (+https://amalaspotlocator.com)"

DEFAULT_SEARCH_KEYWORDS: Tuple[str, ...] = (
    "amala restaurant",
    "amala spot",
    "yoruba restaurant",
    "nigerian restaurant amala",
    "local amala joint",
)

DEFAULT_TARGET_CITIES: Tuple[str, ...] = (
    "Lagos, Nigeria",
    "Ibadan, Nigeria",
    "Abeokuta, Nigeria",
    "Ilorin, Nigeria",
    "Ogbomoso, Nigeria",
)

DEFAULT_SOCIAL_HASHTAGS: Tuple[str, ...] = ("#amala", "#amalaspot", "#yorubafood", "#nigerianfood", "#lagosrestaurant")

# (min_lat, min_lng, max_lat, max_lng)
NIGERIA_BBOX: Tuple[float, float, float, float] = (4.0, 2.5, 14.0, 15.0)

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


class ConfigError(RuntimeError):
    """Raised when configuration values cannot be parsed."""


@dataclass(frozen=True)
class ScrapingTarget:
    name: str
    base_url: str
    search_urls: Tuple[str, ...] = ()
    selectors: Dict[str, str] = field(default_factory=dict)
    enabled: bool = True

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ScrapingTarget":
        if not isinstance(raw, dict):
            raise ConfigError(f"Scraping target must be an object, got {type(raw).__name__}")
        name = str(raw.get("name") or "").strip()
        base_url = str(raw.get("base_url") or raw.get("baseUrl") or "").strip()
        if not name or not base_url:
            raise ConfigError("Scraping targets require 'name' and 'base_url'")

        search_urls = raw.get("search_urls", raw.get("searchUrls")) or [base_url]
        selectors = raw.get("selectors") or {}
        if not isinstance(search_urls, list) or not isinstance(selectors, dict):
            raise ConfigError(f"Scraping target {name!r} has malformed search_urls or selectors")

        return cls(
            name=name,
            base_url=base_url,
            search_urls=tuple(str(url).strip() for url in search_urls if str(url).strip()),
            selectors={str(key): str(value) for key, value in selectors.items()},
            enabled=bool(raw.get("enabled", True)),
        )


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    worker_port: int = 9000

    discovery_enabled: bool = True
    interval_minutes: int = 60
    max_candidates_per_run: int = 50
    min_confidence_score: float = 0.6
    auto_approval_quality_threshold: float = 0.8
    duplicate_radius_km: float = 0.1
    duplicate_name_ratio: float = 0.8
    service_area_bbox: Tuple[float, float, float, float] = NIGERIA_BBOX
    phone_country_code: str = "234"
    default_phone_region: str = "NG"

    web_scraping_enabled: bool = True
    scraping_targets: Tuple[ScrapingTarget, ...] = ()
    request_delay_ms: int = 1000
    max_pages_per_site: int = 10
    user_agent: str = DEFAULT_USER_AGENT

    places_enabled: bool = True
    places_provider: str = "google"
    google_api_key: str = ""
    serpapi_api_key: str = ""
    search_radius_meters: int = 5000
    search_keywords: Tuple[str, ...] = DEFAULT_SEARCH_KEYWORDS
    target_cities: Tuple[str, ...] = DEFAULT_TARGET_CITIES
    places_request_delay_ms: int = 1000
    places_max_pages: int = 1

    social_media_enabled: bool = False
    social_hashtags: Tuple[str, ...] = DEFAULT_SOCIAL_HASHTAGS


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    # City names contain commas, so list values are pipe separated.
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return tuple(item.strip() for item in raw.split("|") if item.strip())


def _env_bbox(name: str, default: Tuple[float, float, float, float]) -> Tuple[float, float, float, float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        min_lat, min_lng, max_lat, max_lng = (float(part) for part in raw.split(","))
    except ValueError as exc:
        raise ConfigError(f"{name} must be 'min_lat,min_lng,max_lat,max_lng', got {raw!r}") from exc
    if min_lat >= max_lat or min_lng >= max_lng:
        raise ConfigError(f"{name} has inverted bounds: {raw!r}")
    return min_lat, min_lng, max_lat, max_lng


def load_scraping_targets(raw_json: Optional[str] = None, path: Optional[str] = None) -> Tuple[ScrapingTarget, ...]:
    """Parse scraping targets from a JSON string or a JSON file."""
    if path:
        try:
            raw_json = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Unable to read scraping targets file {path}: {exc}") from exc

    if not raw_json or not raw_json.strip():
        return ()

    try:
        payload = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Scraping targets are not valid JSON: {exc}") from exc

    if isinstance(payload, dict):
        payload = payload.get("targets", [])
    if not isinstance(payload, list):
        raise ConfigError("Scraping targets must be a JSON list")
    return tuple(ScrapingTarget.from_dict(item) for item in payload)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    google_api_key = os.getenv("GOOGLE_API_KEY", "")
    serpapi_api_key = os.getenv("SERPAPI_API_KEY", "")
    places_provider = os.getenv("PLACES_PROVIDER", "google").strip().lower() or "google"
    default_phone_region = (os.getenv("DEFAULT_PHONE_REGION") or "NG").strip().upper()

    scraping_targets = load_scraping_targets(
        raw_json=os.getenv("WEB_SCRAPING_TARGETS"),
        path=os.getenv("WEB_SCRAPING_TARGETS_FILE") or None,
    )

    settings = Settings(
        database_url=database_url,
        worker_port=_env_int("WORKER_PORT", 9000),
        discovery_enabled=_env_bool("DISCOVERY_ENABLED", True),
        interval_minutes=_env_int("DISCOVERY_INTERVAL_MINUTES", 60),
        max_candidates_per_run=_env_int("DISCOVERY_MAX_CANDIDATES_PER_RUN", 50),
        min_confidence_score=_env_float("DISCOVERY_MIN_CONFIDENCE", 0.6),
        auto_approval_quality_threshold=_env_float("DISCOVERY_AUTO_APPROVAL_THRESHOLD", 0.8),
        duplicate_radius_km=_env_float("DISCOVERY_DUPLICATE_RADIUS_KM", 0.1),
        duplicate_name_ratio=_env_float("DISCOVERY_DUPLICATE_NAME_RATIO", 0.8),
        service_area_bbox=_env_bbox("SERVICE_AREA_BBOX", NIGERIA_BBOX),
        phone_country_code=os.getenv("PHONE_COUNTRY_CODE", "234").strip().lstrip("+") or "234",
        default_phone_region=default_phone_region,
        web_scraping_enabled=_env_bool("WEB_SCRAPING_ENABLED", True),
        scraping_targets=scraping_targets,
        request_delay_ms=_env_int("WEB_SCRAPING_REQUEST_DELAY_MS", 1000),
        max_pages_per_site=_env_int("WEB_SCRAPING_MAX_PAGES_PER_SITE", 10),
        user_agent=os.getenv("WEB_SCRAPING_USER_AGENT") or DEFAULT_USER_AGENT,
        places_enabled=_env_bool("PLACES_ENABLED", True),
        places_provider=places_provider,
        google_api_key=google_api_key,
        serpapi_api_key=serpapi_api_key,
        search_radius_meters=_env_int("PLACES_SEARCH_RADIUS_METERS", 5000),
        search_keywords=_env_list("PLACES_SEARCH_KEYWORDS", DEFAULT_SEARCH_KEYWORDS),
        target_cities=_env_list("PLACES_TARGET_CITIES", DEFAULT_TARGET_CITIES),
        places_request_delay_ms=_env_int("PLACES_REQUEST_DELAY_MS", 1000),
        places_max_pages=_env_int("PLACES_MAX_PAGES", 1),
        social_media_enabled=_env_bool("SOCIAL_MEDIA_ENABLED", False),
        social_hashtags=_env_list("SOCIAL_MEDIA_HASHTAGS", DEFAULT_SOCIAL_HASHTAGS),
    )

    if not 0.0 <= settings.min_confidence_score <= 1.0:
        raise ConfigError("DISCOVERY_MIN_CONFIDENCE must be between 0 and 1")
    if not 0.0 <= settings.auto_approval_quality_threshold <= 1.0:
        raise ConfigError("DISCOVERY_AUTO_APPROVAL_THRESHOLD must be between 0 and 1")
    if settings.places_provider not in {"google", "serpapi"}:
        raise ConfigError(f"Unknown PLACES_PROVIDER: {settings.places_provider}")

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if settings.places_enabled and settings.places_provider == "google" and not google_api_key:
        logger.warning("GOOGLE_API_KEY is not configured; Google Places requests will fail.")
    if settings.places_enabled and settings.places_provider == "serpapi" and not serpapi_api_key:
        logger.warning("SERPAPI_API_KEY is not configured; SerpAPI requests will fail.")
    if settings.web_scraping_enabled and not scraping_targets:
        logger.warning("No scraping targets configured; web scraping will find nothing.")

    return settings
