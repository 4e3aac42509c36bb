"""Website scraper service.

Crawls a business website breadth-first with headless Chromium
(Playwright) and returns the raw pages. Links to business-relevant pages
(about, contact, services, ...) are queued ahead of everything else;
blogs, legal pages, auth/cart flows and static assets are never visited.

When the browser crawl comes back thin, the hosted Apify
website-content-crawler is used instead. If that fails too, CrawlError is
raised and nothing downstream is created.
"""

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Awaitable, Callable, Protocol
from urllib.parse import urljoin, urlparse

import httpx

from app.core.config import settings
from app.utils.http import default_timeout, request_with_retry

logger = logging.getLogger(__name__)

PRIMARY_MAX_PAGES = 20
MIN_PRIMARY_PAGES = 5
PAGE_TIMEOUT_MS = 30_000
POLITE_DELAY_SECONDS = 1.0

FALLBACK_MAX_DEPTH = 3
FALLBACK_MAX_PAGES = 50

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

PRIORITY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"/(home|index)$",
        r"/about",
        r"/contact",
        r"/services",
        r"/products",
        r"/solutions",
        r"/team",
        r"/company",
        r"/info",
    ]
]

EXCLUDE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"/blog",
        r"/news",
        r"/press",
        r"/media",
        r"/events",
        r"/careers",
        r"/jobs",
        r"/privacy",
        r"/terms",
        r"/legal",
        r"/cookie",
        r"/search",
        r"/login",
        r"/register",
        r"/cart",
        r"/checkout",
    ]
]

_ASSET_EXTENSION = re.compile(r"\.(pdf|jpe?g|png|gif|svg|webp|zip|docx?)$", re.IGNORECASE)

_SKIP_TAGS = {"script", "style", "nav", "footer", "header", "noscript", "svg", "iframe"}
_BLOCK_TAGS = {
    "p", "div", "section", "article", "main", "aside", "br", "hr",
    "h1", "h2", "h3", "h4", "h5", "h6", "li", "ul", "ol", "dl", "dt", "dd",
    "table", "tr", "td", "th", "blockquote", "pre", "address", "form", "label",
}


class CrawlError(Exception):
    """Both crawling backends failed or produced nothing."""


@dataclass
class ScrapedPage:
    url: str
    title: str = ""
    html: str = ""
    text: str = ""


@dataclass
class FetchedPage:
    url: str
    title: str
    html: str
    links: list[str] = field(default_factory=list)


@dataclass
class CrawlResult:
    pages: list[ScrapedPage] = field(default_factory=list)
    failed_urls: list[str] = field(default_factory=list)


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> FetchedPage: ...


# ---------------------------------------------------------------------------
# HTML text extraction
# ---------------------------------------------------------------------------

class _PageExtractor(HTMLParser):
    def __init__(self, base_url: str = ""):
        super().__init__(convert_charrefs=True)
        self.base_url = base_url
        self.lines: list[str] = []
        self.links: list[str] = []
        self.title: str = ""
        self._in_title = False
        self._skip_depth = 0
        self._buffer: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag in _SKIP_TAGS:
            self._skip_depth += 1
        if tag == "title":
            self._in_title = True
        if tag == "a":
            href = dict(attrs).get("href")
            if href:
                self.links.append(urljoin(self.base_url, href))
        if tag in _BLOCK_TAGS:
            self._flush()

    def handle_endtag(self, tag):
        if tag in _SKIP_TAGS and self._skip_depth > 0:
            self._skip_depth -= 1
        if tag == "title":
            self._in_title = False
        if tag in _BLOCK_TAGS:
            self._flush()

    def handle_data(self, data):
        if self._in_title:
            self.title += data.strip()
        elif self._skip_depth == 0:
            self._buffer.append(data)

    def close(self):
        super().close()
        self._flush()

    def _flush(self):
        text = " ".join("".join(self._buffer).split())
        if text:
            self.lines.append(text)
        self._buffer = []


@dataclass
class ExtractedPage:
    title: str
    text: str
    links: list[str]


def extract_page(html: str, base_url: str = "") -> ExtractedPage:
    """Readable text (one line per block element), title and absolute links."""
    extractor = _PageExtractor(base_url)
    extractor.feed(html)
    extractor.close()
    return ExtractedPage(
        title=extractor.title,
        text="\n".join(extractor.lines),
        links=extractor.links,
    )


# ---------------------------------------------------------------------------
# Link policy
# ---------------------------------------------------------------------------

def classify_link(link: str, base_host: str) -> str | None:
    """Return "priority", "regular", or None when the link must not be crawled."""
    try:
        parsed = urlparse(link)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or parsed.hostname != base_host:
        return None
    if "#" in link or _ASSET_EXTENSION.search(parsed.path):
        return None
    if any(p.search(link) for p in EXCLUDE_PATTERNS):
        return None
    if any(p.search(link) for p in PRIORITY_PATTERNS):
        return "priority"
    return "regular"


def partition_links(links: list[str], base_host: str, seen: set[str]) -> tuple[list[str], list[str]]:
    priority: list[str] = []
    regular: list[str] = []
    for link in links:
        if link in seen or link in priority or link in regular:
            continue
        kind = classify_link(link, base_host)
        if kind == "priority":
            priority.append(link)
        elif kind == "regular":
            regular.append(link)
    return priority, regular


# ---------------------------------------------------------------------------
# Primary crawl (headless browser)
# ---------------------------------------------------------------------------

async def crawl_site(
    start_url: str,
    fetcher: PageFetcher,
    max_pages: int = PRIMARY_MAX_PAGES,
    delay_seconds: float = POLITE_DELAY_SECONDS,
) -> CrawlResult:
    """Breadth-first crawl of start_url's host, priority links first."""
    base_host = urlparse(start_url).hostname
    result = CrawlResult()
    visited: set[str] = set()
    queued: set[str] = {start_url}
    to_visit: deque[str] = deque([start_url])

    while to_visit and len(result.pages) < max_pages:
        url = to_visit.popleft()
        if url in visited:
            continue
        visited.add(url)

        try:
            logger.info("Scraping: %s", url)
            fetched = await fetcher.fetch(url)
        except Exception as e:
            logger.error("Error scraping page %s: %s", url, e)
            result.failed_urls.append(url)
            continue

        extracted = extract_page(fetched.html, url)
        result.pages.append(ScrapedPage(
            url=url,
            title=fetched.title or extracted.title,
            html=fetched.html,
            text=extracted.text,
        ))

        priority, regular = partition_links(fetched.links or extracted.links, base_host, visited | queued)
        for link in priority + regular:
            to_visit.append(link)
            queued.add(link)

        if delay_seconds and to_visit and len(result.pages) < max_pages:
            await asyncio.sleep(delay_seconds)

    return result


class PlaywrightFetcher:
    """Headless Chromium page fetcher; use as an async context manager."""

    def __init__(self, timeout_ms: int = PAGE_TIMEOUT_MS):
        self.timeout_ms = timeout_ms
        self._playwright = None
        self._browser = None
        self._page = None

    async def __aenter__(self) -> "PlaywrightFetcher":
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=True,
            args=[
                "--disable-blink-features=AutomationControlled",
                "--no-sandbox",
                "--disable-setuid-sandbox",
                "--disable-dev-shm-usage",
            ],
        )
        context = await self._browser.new_context(
            user_agent=USER_AGENT,
            viewport={"width": 1920, "height": 1080},
            locale="en-US",
        )
        # Anti-detection: remove webdriver fingerprint
        await context.add_init_script(
            "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"
        )
        self._page = await context.new_page()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()

    async def fetch(self, url: str) -> FetchedPage:
        await self._page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
        html = await self._page.content()
        title = await self._page.title()
        links = await self._page.eval_on_selector_all(
            "a[href]", "anchors => anchors.map(a => a.href)"
        )
        return FetchedPage(url=url, title=title, html=html, links=links)


async def primary_scrape(url: str) -> CrawlResult:
    """Browser crawl capped at PRIMARY_MAX_PAGES. Never raises."""
    try:
        async with PlaywrightFetcher() as fetcher:
            return await crawl_site(url, fetcher)
    except Exception as e:
        logger.error("Error in primary scrape of %s: %s", url, e)
        return CrawlResult(failed_urls=[url])


# ---------------------------------------------------------------------------
# Fallback crawl (hosted crawler)
# ---------------------------------------------------------------------------

class ApifyCrawler:
    """Apify website-content-crawler, run synchronously via the REST API."""

    ACTOR_ID = "apify~website-content-crawler"

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        max_depth: int = FALLBACK_MAX_DEPTH,
        max_pages: int = FALLBACK_MAX_PAGES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token if token is not None else settings.APIFY_API_TOKEN
        self.base_url = (base_url or settings.APIFY_BASE_URL).rstrip("/")
        self.max_depth = max_depth
        self.max_pages = max_pages
        self._transport = transport

    def build_input(self, url: str) -> dict:
        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        return {
            "startUrls": [{"url": url}],
            "crawlerType": "cheerio",
            "includeUrlGlobs": [{"glob": f"{origin}/**"}],
            "maxCrawlDepth": self.max_depth,
            "maxCrawlPages": self.max_pages,
            "removeCookieWarnings": True,
            "saveHtml": True,
        }

    async def crawl(self, url: str) -> list[ScrapedPage]:
        if not self.token:
            raise CrawlError("Apify API token not configured")

        logger.info("Starting Apify fallback scraping for %s", url)
        async with httpx.AsyncClient(timeout=default_timeout(300.0), transport=self._transport) as client:
            response = await request_with_retry(
                client,
                "POST",
                f"{self.base_url}/acts/{self.ACTOR_ID}/run-sync-get-dataset-items",
                params={"token": self.token},
                json=self.build_input(url),
                max_attempts=2,
            )

        if response.status_code >= 400:
            raise CrawlError(f"Apify crawl failed: {response.status_code} - {response.text[:200]}")

        pages = [
            ScrapedPage(
                url=item.get("url", ""),
                title=item.get("title") or (item.get("metadata") or {}).get("title") or "",
                html=item.get("html") or "",
                text=item.get("text") or "",
            )
            for item in response.json()
            if item.get("url")
        ]
        logger.info("Apify returned %d pages", len(pages))
        return pages


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def needs_fallback(result: CrawlResult) -> bool:
    """A thin crawl only counts as final if it covered the site without errors."""
    if len(result.pages) >= MIN_PRIMARY_PAGES:
        return False
    return not result.pages or bool(result.failed_urls)


def normalize_start_url(url: str) -> str:
    url = url.strip()
    if not re.match(r"^https?://", url, re.IGNORECASE):
        url = f"https://{url}"
    return url


async def scrape_website(
    url: str,
    primary: Callable[[str], Awaitable[CrawlResult]] | None = None,
    fallback: Callable[[str], Awaitable[list[ScrapedPage]]] | None = None,
) -> list[ScrapedPage]:
    """Scrape a website, switching to the hosted crawler on insufficient yield.

    Raises CrawlError when the fallback fails or returns no pages.
    """
    url = normalize_start_url(url)
    primary = primary or primary_scrape
    fallback = fallback or ApifyCrawler().crawl

    result = await primary(url)
    if not needs_fallback(result):
        logger.info("Primary scrape of %s returned %d pages", url, len(result.pages))
        return result.pages

    logger.info(
        "Primary scrape returned %d pages (%d failed), using fallback crawler",
        len(result.pages),
        len(result.failed_urls),
    )
    try:
        pages = await fallback(url)
    except Exception as e:
        logger.error("Fallback crawler unavailable for %s: %s", url, e)
        raise CrawlError(
            "Website scraping service temporarily unavailable. Please try again later."
        ) from e

    if not pages:
        raise CrawlError("No pages could be scraped from the website")
    return pages
