# scraper.py
import asyncio
import json
from typing import Any, NamedTuple, Optional

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

import config
from domain import FlashcardSet
from errors import ScraperFailed, SetNotFound, SetPrivate
from locator import data_endpoint_url, set_page_url
from log import get_logger
from validator import validate_response

logger = get_logger(__name__)


# Browser-like headers so the platform doesn't challenge us immediately
HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}

DATA_CALL_MARKER = "studiable-item-documents"
CHALLENGE_TITLES = ("just a moment", "attention required", "access denied")


# -----------------------------------------------------------------------------
# FlashcardScraper
# -----------------------------------------------------------------------------
class _RawFetch(NamedTuple):
    status: int
    body: str


class _SetPageStatus(Exception):
    def __init__(self, status: int, body: str):
        super().__init__(status)
        self.status = status
        self.body = body


def is_challenge_page(body: str) -> bool:
    text = (body or "").lstrip()
    if not text.startswith("<"):
        return False
    soup = BeautifulSoup(text, "html.parser")
    title = soup.title.get_text(strip=True).lower() if soup.title else ""
    return any(t in title for t in CHALLENGE_TITLES)


def decode_body(body: str) -> Any:
    """Parse the data payload; browsers wrap raw JSON navigations in a <pre>."""
    text = (body or "").strip()
    if text.startswith("<"):
        if is_challenge_page(text):
            raise ValueError("bot challenge page instead of data")
        soup = BeautifulSoup(text, "html.parser")
        pre = soup.find("pre")
        text = pre.get_text() if pre else soup.get_text()
    return json.loads(text)


class FlashcardScraper:
    def __init__(self, host: Optional[str] = None, timeout: Optional[float] = None,
                 session_cookie: Optional[str] = None, headless: Optional[bool] = None,
                 playwright_factory=async_playwright):
        self.host = host or config.PLATFORM_HOST
        self.timeout = timeout if timeout is not None else config.SCRAPER_TIMEOUT_SECONDS
        self.session_cookie = config.PLATFORM_SESSION_COOKIE if session_cookie is None else session_cookie
        self.headless = config.SCRAPER_HEADLESS if headless is None else headless
        self._playwright_factory = playwright_factory

    async def scrape(self, set_id: str, title_guess: str) -> FlashcardSet:
        api_url = data_endpoint_url(set_id, self.host)
        logger.info("Scraping set %s", set_id)
        try:
            raw = await asyncio.wait_for(self._fetch(set_id, api_url), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ScraperFailed(
                f"Fetching the flashcard set took longer than {self.timeout:g}s.",
                api_url, {"reason": "timeout"},
            ) from e
        except PlaywrightError as e:
            raise ScraperFailed(
                "Automated browser could not fetch the flashcard set.",
                api_url, {"reason": (str(e).splitlines() or [type(e).__name__])[0]},
            ) from e

        self.classify(raw, set_id, api_url)
        try:
            payload = decode_body(raw.body)
        except ValueError as e:
            raise ScraperFailed(
                "Platform returned something other than flashcard data.",
                api_url, {"reason": str(e)[:200]},
            ) from e

        logger.info("Fetched set %s (HTTP %s)", set_id, raw.status)
        return validate_response(payload, title_guess, set_id)

    @staticmethod
    def classify(raw: _RawFetch, set_id: str, api_url: str) -> None:
        # A bot wall also answers 403; that is our failure, not a private set
        if raw.status in (403, 429, 503) and is_challenge_page(raw.body):
            raise ScraperFailed("Platform presented a bot challenge.", api_url, {"status": raw.status})
        if raw.status == 404:
            raise SetNotFound("Flashcard set not found.", {"set_id": set_id})
        if raw.status == 403:
            raise SetPrivate("This flashcard set is private.", {"set_id": set_id})
        if not 200 <= raw.status < 300:
            raise ScraperFailed(f"Platform responded with HTTP {raw.status}.", api_url, {"status": raw.status})

    async def _fetch(self, set_id: str, api_url: str) -> _RawFetch:
        # Browser is released on every path, cancellation included
        async with self._playwright_factory() as pw:
            browser = await pw.chromium.launch(headless=self.headless)
            try:
                context = await browser.new_context(
                    user_agent=HEADERS["User-Agent"],
                    locale="en-US",
                    extra_http_headers={"Accept-Language": HEADERS["Accept-Language"]},
                )
                if self.session_cookie:
                    await context.add_cookies([{
                        "name": config.PLATFORM_SESSION_COOKIE_NAME,
                        "value": self.session_cookie,
                        "domain": f".{self.host}",
                        "path": "/",
                    }])
                page = await context.new_page()
                return await self._intercept_or_navigate(page, set_id, api_url)
            finally:
                await browser.close()

    async def _intercept_or_navigate(self, page, set_id: str, api_url: str) -> _RawFetch:
        try:
            async with page.expect_response(
                lambda r: DATA_CALL_MARKER in r.url, timeout=self.timeout * 1000 / 2,
            ) as response_info:
                page_response = await page.goto(set_page_url(set_id, self.host), wait_until="domcontentloaded")
                # A missing set is final; a 403 may be a bot wall or login wall in front of the page
                if page_response is not None and page_response.status in (403, 404):
                    raise _SetPageStatus(page_response.status, await page_response.text())
            response = await response_info.value
            return _RawFetch(response.status, await response.text())
        except _SetPageStatus as e:
            if e.status != 403:
                return _RawFetch(e.status, e.body)
            logger.warning("Set page for %s answered 403; requesting the data endpoint directly", set_id)
        except PlaywrightError as e:
            logger.warning("Data call for set %s not intercepted (%s); navigating to it directly",
                           set_id, type(e).__name__)

        response = await page.goto(api_url, wait_until="domcontentloaded")
        if response is None:
            raise ScraperFailed("Direct navigation to the data endpoint returned nothing.", api_url)
        return _RawFetch(response.status, await response.text())
