"""Pure text, phone and geometry helpers used across the pipeline."""

from __future__ import annotations

import math
import re
from typing import Iterable, Optional, Tuple

from spot_discovery.core.models import Location

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_PHONE_STRIP_RE = re.compile(r"[^\d+]")

DEFAULT_SPAM_PATTERNS: Tuple[str, ...] = (
    r"click here",
    r"buy now",
    r"free money",
    r"viagra",
    r"casino",
    r"lottery",
    r"winner",
    r"congratulations",
    r"urgent",
    r"limited time",
)


def normalize_text(text: Optional[str]) -> str:
    """Strip HTML-like tags and collapse whitespace."""
    if not text:
        return ""
    without_tags = _TAG_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", without_tags).strip()


def normalize_phone(raw: Optional[str], country_code: str = "234") -> str:
    """Rewrite national numbers into +<country> form.

    Shapes that are not recognised come back cleaned but otherwise untouched.
    """
    if not raw:
        return ""
    cleaned = _PHONE_STRIP_RE.sub("", raw)
    national_length = 11
    international_length = len(country_code) + national_length - 1

    if cleaned.startswith("0") and len(cleaned) == national_length:
        return f"+{country_code}{cleaned[1:]}"
    if cleaned.startswith(country_code) and len(cleaned) == international_length:
        return f"+{cleaned}"
    return cleaned


def levenshtein(a: str, b: str) -> int:
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity_ratio(a: Optional[str], b: Optional[str]) -> float:
    """1.0 for identical names, falling with edit distance over the longer name."""
    left = normalize_text(a).lower()
    right = normalize_text(b).lower()
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    return 1.0 - levenshtein(left, right) / max(len(left), len(right))


def names_similar(a: Optional[str], b: Optional[str], min_ratio: Optional[float] = None) -> bool:
    """Case-insensitive venue name comparison.

    Equal names and names contained in one another always match. Otherwise
    either the edit distance must stay within 30% of the shorter name, or, when
    ``min_ratio`` is given, :func:`similarity_ratio` must reach it.
    """
    left = normalize_text(a).lower()
    right = normalize_text(b).lower()
    if not left or not right:
        return False
    if left == right or left in right or right in left:
        return True
    if min_ratio is not None:
        return similarity_ratio(left, right) >= min_ratio
    return levenshtein(left, right) <= min(len(left), len(right)) * 0.3


def is_spam(text: Optional[str], patterns: Iterable[str] = DEFAULT_SPAM_PATTERNS) -> bool:
    if not text or not text.strip():
        return False
    return any(re.search(pattern, text, re.IGNORECASE) for pattern in patterns)


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def haversine_km(a: Location, b: Location) -> float:
    """Great-circle distance between two points in kilometres."""
    radius = 6371.0
    dlat = math.radians(b.latitude - a.latitude)
    dlng = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(a.latitude)) * math.cos(math.radians(b.latitude)) * math.sin(dlng / 2) ** 2
    )
    return radius * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def within_bounds(location: Location, bbox: Tuple[float, float, float, float]) -> bool:
    min_lat, min_lng, max_lat, max_lng = bbox
    return min_lat <= location.latitude <= max_lat and min_lng <= location.longitude <= max_lng
