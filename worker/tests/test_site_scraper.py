import threading

import pytest
import requests

from spot_discovery.core import site_scraper
from spot_discovery.core.config import ScrapingTarget, Settings
from spot_discovery.core.models import CandidateStatus, DiscoverySource
from spot_discovery.core.scoring import CandidateScorer

TARGET = ScrapingTarget(name="naija-eats", base_url="https://naijaeats.example", search_urls=("/amala",))

STRUCTURED_PAGE = """
<html><body>
  <div class="restaurant-card">
    <h2>Amala Shitta</h2>
    <p class="description">Legendary amala joint serving gbegiri and ewedu since 1984.</p>
    <span class="address">Adeniran Ogunsanya Street, Surulere, Lagos</span>
    <a href="tel:08031234567">Call us</a>
  </div>
  <div class="restaurant-card">
    <h3>Iya Basira Bukka</h3>
    <p>Best buka in Ibadan for abula and amala lovers.</p>
    <div>Contact: 0805 987 6543</div>
  </div>
  <div class="restaurant-card">
    <h2>Shoe Palace</h2>
    <p>Fine leather shoes and bags for the whole family.</p>
  </div>
  <div class="restaurant-card">
    <h2>Amala lottery winner</h2>
  </div>
</body></html>
"""

TEXT_PAGE = """
<html><body>
<pre>
Our top picks this week
Amala Skye - Bode Thomas Street, Surulere, Lagos - 08021234567
Buka Express | Ring Road, Ibadan
short
Shoe shop - Allen Avenue, Lagos
</pre>
</body></html>
"""


@pytest.fixture
def extractor():
    return site_scraper.HtmlSpotExtractor(CandidateScorer(Settings()))


def test_structured_extraction(extractor):
    candidates = extractor.extract(STRUCTURED_PAGE, "https://naijaeats.example/amala", TARGET)

    names = [c.name for c in candidates]
    assert names == ["Amala Shitta", "Iya Basira Bukka"]

    shitta, basira = candidates
    assert shitta.source is DiscoverySource.web_scraping
    assert shitta.status is CandidateStatus.discovered
    assert shitta.description.startswith("Legendary amala joint")
    assert shitta.address == "Adeniran Ogunsanya Street, Surulere, Lagos"
    assert shitta.phone == "+2348031234567"
    assert shitta.source_url == "https://naijaeats.example/amala"
    assert shitta.source_data["target"] == "naija-eats"
    assert shitta.confidence_score > 0

    assert basira.description == "Best buka in Ibadan for abula and amala lovers."
    assert basira.phone == "+2348059876543"


def test_selector_overrides_take_priority(extractor):
    html = """
    <ul>
      <li class="spot"><span class="spot-name">Amala Palace</span><em class="where">Oyo Road, Ogbomoso</em></li>
    </ul>
    """
    target = ScrapingTarget(
        name="custom",
        base_url="https://custom.example",
        selectors={"listing": "li.spot", "name": ".spot-name", "address": ".where"},
    )

    candidates = extractor.extract(html, "https://custom.example", target)

    assert [c.name for c in candidates] == ["Amala Palace"]
    assert candidates[0].address == "Oyo Road, Ogbomoso"


def test_text_fallback_when_no_listings(extractor):
    candidates = extractor.extract(TEXT_PAGE, "https://naijaeats.example/amala", TARGET)

    by_name = {c.name: c for c in candidates}
    assert set(by_name) == {"Amala Skye", "Buka Express"}
    assert by_name["Amala Skye"].address == "Bode Thomas Street, Surulere, Lagos"
    assert by_name["Amala Skye"].phone == "+2348021234567"
    assert by_name["Buka Express"].address == "Ring Road, Ibadan"


def test_extract_helpers():
    assert site_scraper.extract_address("Amala Skye - 3 Allen Ave, Ikeja, Lagos State - 0802") == "3 Allen Ave, Ikeja, Lagos State"
    assert site_scraper.extract_address("No city here") is None
    assert site_scraper.extract_phone("call +234 803 123 4567 today") == "+234 803 123 4567"
    assert site_scraper.extract_phone("call 12345") is None


def test_resolve_search_url():
    assert site_scraper.resolve_search_url("naijaeats.example", "/amala?page=2#top") == "https://naijaeats.example/amala?page=2"
    assert site_scraper.resolve_search_url("https://a.example", "https://a.example") == "https://a.example/"
    assert site_scraper.resolve_search_url("https://a.example/lagos/", "buka") == "https://a.example/lagos/buka"
    assert site_scraper.resolve_search_url("https://a.example", "mailto:info@a.example") is None
    assert site_scraper.resolve_search_url("  ", "  ") is None


class DummyResponse:
    def __init__(self, text="", content_type="text/html; charset=utf-8", status_code=200):
        self.text = text
        self.headers = {"Content-Type": content_type}
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError("boom")


class DummySession:
    def __init__(self, response):
        self.headers = {}
        self.response = response
        self.calls = []

    def get(self, url, timeout=None, allow_redirects=True):
        self.calls.append((url, timeout))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def test_requests_fetcher_returns_html():
    session = DummySession(DummyResponse(text="<html></html>"))
    fetcher = site_scraper.RequestsPageFetcher("AmalaBot/1.0", session=session)

    assert fetcher.fetch("https://a.example") == "<html></html>"
    assert session.headers["User-Agent"] == "AmalaBot/1.0"
    assert session.calls[0][1] == 30


def test_requests_fetcher_skips_non_html_and_failures():
    assert site_scraper.RequestsPageFetcher("ua", session=DummySession(DummyResponse(content_type="application/pdf"))).fetch("u") is None
    assert site_scraper.RequestsPageFetcher("ua", session=DummySession(DummyResponse(status_code=503))).fetch("u") is None
    assert site_scraper.RequestsPageFetcher("ua", session=DummySession(requests.Timeout("slow"))).fetch("u") is None


class DummyFetcher(site_scraper.PageFetcher):
    def __init__(self, pages, failing=()):
        self.pages = pages
        self.failing = set(failing)
        self.calls = []

    def fetch(self, url):
        self.calls.append(url)
        if url in self.failing:
            raise RuntimeError("fetch exploded")
        return self.pages.get(url)


def _service(fetcher, targets, **settings_overrides):
    settings = Settings(request_delay_ms=0, **settings_overrides)
    extractor = site_scraper.HtmlSpotExtractor(CandidateScorer(settings))
    return site_scraper.WebScrapingService(settings, fetcher, extractor, targets=targets)


def test_scrape_configured_websites_skips_disabled_and_failures():
    targets = [
        ScrapingTarget(name="a", base_url="https://a.example", search_urls=("/one", "/two")),
        ScrapingTarget(name="off", base_url="https://off.example", enabled=False),
        ScrapingTarget(name="b", base_url="https://b.example"),
    ]
    fetcher = DummyFetcher(
        {"https://a.example/two": STRUCTURED_PAGE, "https://b.example/": TEXT_PAGE},
        failing={"https://a.example/one"},
    )

    candidates = _service(fetcher, targets).scrape_configured_websites()

    assert "https://off.example/" not in fetcher.calls
    assert fetcher.calls == ["https://a.example/one", "https://a.example/two", "https://b.example/"]
    assert {c.source_data["target"] for c in candidates} == {"a", "b"}
    assert len(candidates) == 4


def test_max_pages_per_site_caps_fetches():
    target = ScrapingTarget(name="a", base_url="https://a.example", search_urls=("/1", "/2", "/3"))
    fetcher = DummyFetcher({})

    _service(fetcher, [target], max_pages_per_site=2).scrape_configured_websites()

    assert fetcher.calls == ["https://a.example/1", "https://a.example/2"]


def test_cancelled_run_fetches_nothing():
    event = threading.Event()
    event.set()
    fetcher = DummyFetcher({})

    result = _service(fetcher, [TARGET]).scrape_configured_websites(event)

    assert result == []
    assert fetcher.calls == []
