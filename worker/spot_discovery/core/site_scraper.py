"""Scraping of configured listing sites for candidate spots."""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Set
from urllib.parse import urldefrag, urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag

from spot_discovery.core.cancellation import is_cancelled, pause
from spot_discovery.core.config import ScrapingTarget, Settings
from spot_discovery.core.models import DiscoverySource, SpotCandidate, utcnow
from spot_discovery.core.scoring import CandidateScorer
from spot_discovery.core.text import contains_any

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
MAX_NAME_FALLBACK_LENGTH = 100
DESCRIPTION_LENGTH_RANGE = (20, 1000)
FALLBACK_LINE_RANGE = (10, 500)

LISTING_SELECTORS = (
    "div[class*='restaurant']",
    "div[class*='listing']",
    "div[class*='business']",
    "article",
    ".card",
    ".item",
    "[itemtype*='Restaurant']",
    "[itemtype*='LocalBusiness']",
)
NAME_SELECTORS = (
    "h1",
    "h2",
    "h3",
    ".name",
    ".title",
    ".restaurant-name",
    "[itemprop='name']",
    ".business-name",
    ".listing-title",
)
DESCRIPTION_SELECTORS = (
    ".description",
    ".summary",
    ".about",
    "[itemprop='description']",
    ".restaurant-description",
    ".business-description",
    "p",
)
ADDRESS_SELECTORS = (
    ".address",
    "[itemprop='address']",
    ".location",
    ".venue",
    ".restaurant-address",
    ".business-address",
)
PHONE_SELECTORS = (
    "a[href^='tel:']",
    ".phone",
    "[itemprop='telephone']",
    ".contact",
    ".tel",
    ".phone-number",
)

KNOWN_CITIES = (
    "lagos",
    "ibadan",
    "abeokuta",
    "ilorin",
    "ogbomoso",
    "oyo",
    "osogbo",
    "ado ekiti",
    "akure",
    "ile ife",
)
CITY_REGEX = re.compile(r"\b(?:" + "|".join(KNOWN_CITIES) + r")\b", re.IGNORECASE)
PHONE_REGEX = re.compile(r"(?<!\d)(?:\+234|0)\s?[789]\d{2}[\s-]?\d{3}[\s-]?\d{4}(?!\d)")
SEGMENT_SPLIT_REGEX = re.compile(r"\s+[-|]\s+")
NAME_SPLIT_REGEX = re.compile(r" - |, | \| ")


def resolve_search_url(base_url: str, search_url: str) -> Optional[str]:
    """Absolute listing page URL for one of a target's search paths."""
    base = (base_url or "").strip()
    if base and "://" not in base:
        base = f"https://{base}"

    url, _ = urldefrag(urljoin(base, (search_url or "").strip()))
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return urlunparse(parsed._replace(path=parsed.path or "/"))


def extract_address(text: str) -> Optional[str]:
    """Return the first delimited segment that names a known city."""
    for segment in SEGMENT_SPLIT_REGEX.split(text or ""):
        segment = segment.strip()
        if CITY_REGEX.search(segment):
            return segment[:500]
    return None


def extract_phone(text: str) -> Optional[str]:
    match = PHONE_REGEX.search(text or "")
    return match.group(0) if match else None


class PageFetcher(ABC):
    @abstractmethod
    def fetch(self, url: str) -> Optional[str]:
        """Return the raw HTML at ``url`` or ``None`` when it cannot be fetched."""


class RequestsPageFetcher(PageFetcher):
    def __init__(self, user_agent: str, session: Optional[requests.Session] = None, timeout: int = REQUEST_TIMEOUT) -> None:
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", user_agent)
        self.session.headers.setdefault("Accept", "text/html,application/xhtml+xml")
        self.timeout = timeout

    def fetch(self, url: str) -> Optional[str]:
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to fetch %s: %s", url, exc)
            return None

        content_type = response.headers.get("Content-Type", "").lower()
        if "text/html" not in content_type:
            logger.debug("Skipping non-HTML content at %s (content-type=%s)", url, content_type)
            return None
        return response.text

    def close(self) -> None:
        self.session.close()


class HtmlSpotExtractor:
    """Turn a listing page into scored candidates."""

    def __init__(self, scorer: CandidateScorer) -> None:
        self.scorer = scorer

    def extract(self, html: str, page_url: str, target: ScrapingTarget) -> List[SpotCandidate]:
        soup = BeautifulSoup(html, "html.parser")
        raw = self._extract_structured(soup, target)
        if not raw:
            raw = self._extract_from_text(soup)

        candidates: List[SpotCandidate] = []
        seen: Set[str] = set()
        extracted_at = utcnow().isoformat()
        for fields in raw:
            candidate = SpotCandidate(
                name=fields.get("name") or "",
                source=DiscoverySource.web_scraping,
                description=fields.get("description"),
                address=fields.get("address"),
                phone=fields.get("phone"),
                source_url=page_url,
                source_data={"target": target.name, "extracted_at": extracted_at},
            )
            self.scorer.score(candidate)
            if not self.scorer.passes_content_gate(candidate):
                logger.debug("Dropping listing %r from %s", candidate.name, page_url)
                continue
            key = candidate.name.lower()
            if key in seen:
                continue
            seen.add(key)
            candidates.append(candidate)
        return candidates

    def _selectors(self, target: ScrapingTarget, key: str, defaults: Sequence[str]) -> Sequence[str]:
        override = target.selectors.get(key)
        if override:
            return (override,) + tuple(defaults)
        return defaults

    def _extract_structured(self, soup: BeautifulSoup, target: ScrapingTarget) -> List[Dict[str, Optional[str]]]:
        listings: List[Tag] = []
        seen_nodes: Set[int] = set()
        for selector in self._selectors(target, "listing", LISTING_SELECTORS):
            for node in soup.select(selector):
                if id(node) not in seen_nodes:
                    seen_nodes.add(id(node))
                    listings.append(node)

        results = []
        for element in listings:
            name = self._extract_name(element, target)
            if not name:
                continue
            results.append(
                {
                    "name": name,
                    "description": self._extract_description(element, target),
                    "address": self._extract_address(element, target),
                    "phone": self._extract_phone(element, target),
                }
            )
        return results

    def _first_text(self, element: Tag, selectors: Sequence[str]) -> Optional[str]:
        for selector in selectors:
            node = element.select_one(selector)
            if node is None:
                continue
            text = node.get_text(" ", strip=True)
            if text:
                return text
        return None

    def _extract_name(self, element: Tag, target: ScrapingTarget) -> Optional[str]:
        name = self._first_text(element, self._selectors(target, "name", NAME_SELECTORS))
        if name:
            return name
        text = element.get_text(" ", strip=True)
        if text and len(text) <= MAX_NAME_FALLBACK_LENGTH:
            return text
        return None

    def _extract_description(self, element: Tag, target: ScrapingTarget) -> Optional[str]:
        low, high = DESCRIPTION_LENGTH_RANGE
        for selector in self._selectors(target, "description", DESCRIPTION_SELECTORS):
            for node in element.select(selector):
                text = node.get_text(" ", strip=True)
                if low <= len(text) <= high:
                    return text
        return None

    def _extract_address(self, element: Tag, target: ScrapingTarget) -> Optional[str]:
        address = self._first_text(element, self._selectors(target, "address", ADDRESS_SELECTORS))
        if address:
            return address
        return extract_address(element.get_text(" - ", strip=True))

    def _extract_phone(self, element: Tag, target: ScrapingTarget) -> Optional[str]:
        for selector in self._selectors(target, "phone", PHONE_SELECTORS):
            node = element.select_one(selector)
            if node is None:
                continue
            href = node.get("href") or ""
            if href.lower().startswith("tel:"):
                return href.split(":", 1)[1].strip() or None
            phone = extract_phone(node.get_text(" ", strip=True))
            if phone:
                return phone
        return extract_phone(element.get_text(" ", strip=True))

    def _extract_from_text(self, soup: BeautifulSoup) -> List[Dict[str, Optional[str]]]:
        low, high = FALLBACK_LINE_RANGE
        keywords = self.scorer.vocabulary.all_keywords
        results = []
        for line in soup.get_text("\n").splitlines():
            line = line.strip()
            if not low <= len(line) <= high or not contains_any(line, keywords):
                continue
            name = NAME_SPLIT_REGEX.split(line, maxsplit=1)[0].strip()
            results.append(
                {
                    "name": name,
                    "description": line,
                    "address": extract_address(line),
                    "phone": extract_phone(line),
                }
            )
        return results


class WebScrapingService:
    """Walk the configured targets politely and collect candidates."""

    def __init__(
        self,
        settings: Settings,
        fetcher: PageFetcher,
        extractor: HtmlSpotExtractor,
        targets: Optional[Sequence[ScrapingTarget]] = None,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher
        self.extractor = extractor
        self.targets = tuple(targets if targets is not None else settings.scraping_targets)

    @property
    def delay_seconds(self) -> float:
        return self.settings.request_delay_ms / 1000

    def scrape_configured_websites(self, cancel_event: Optional[threading.Event] = None) -> List[SpotCandidate]:
        candidates: List[SpotCandidate] = []
        enabled = [target for target in self.targets if target.enabled]
        logger.info("Scraping %s enabled target(s)", len(enabled))

        for index, target in enumerate(enabled):
            if is_cancelled(cancel_event):
                logger.info("Web scraping cancelled before target %s", target.name)
                break
            try:
                found = self.scrape_target(target, cancel_event)
                logger.info("Target %s produced %s candidate(s)", target.name, len(found))
                candidates.extend(found)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error scraping target %s: %s", target.name, exc)

            if index + 1 < len(enabled) and pause(self.delay_seconds, cancel_event):
                break
        return candidates

    def scrape_target(self, target: ScrapingTarget, cancel_event: Optional[threading.Event] = None) -> List[SpotCandidate]:
        candidates: List[SpotCandidate] = []
        raw_urls = target.search_urls or (target.base_url,)
        urls = [url for url in (resolve_search_url(target.base_url, raw) for raw in raw_urls) if url]

        for page_number, url in enumerate(urls[: self.settings.max_pages_per_site]):
            if page_number and pause(self.delay_seconds, cancel_event):
                break
            try:
                html = self.fetcher.fetch(url)
                if not html:
                    continue
                candidates.extend(self.extractor.extract(html, url, target))
            except Exception as exc:  # noqa: BLE001
                logger.warning("Error scraping %s: %s", url, exc)
        return candidates
