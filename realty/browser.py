"""
Playwright session and listing page fetcher.
"""
import logging
from typing import List, Optional

from playwright.async_api import Page, Route, async_playwright

from .config import Config
from .models import UNAVAILABLE_STATUSES, PageContent
from .utils import clean_text

logger = logging.getLogger(__name__)


USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)
EXTRA_HEADERS = {
    "Accept-Language": "en-US,en;q=0.9,ru;q=0.8",
    "Referer": "https://www.olx.uz/",
}
BLOCKED_RESOURCES = {"image", "media", "font"}

# Listing page selectors
TITLE_SEL = "div[data-cy='ad_title'] h4"
DESCRIPTION_SEL = "div[data-cy='ad_description'] > div"
PARAMETERS_SEL = "div[data-testid='ad-parameters-container'] p"
PRICE_SEL = "div[data-testid='ad-price-container'] h3"
LOCATION_SEL = "section div p.css-7wnksb"
INACTIVE_SEL = "div[data-testid='ad-inactive-msg']"


class SessionError(RuntimeError):
    """The browser could not be launched."""


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCES:
        await route.abort()
    else:
        await route.continue_()


async def _text(page: Page, selector: str) -> str:
    loc = page.locator(selector).first
    if await loc.count() == 0:
        return ""
    return clean_text(await loc.text_content())


async def _texts(page: Page, selector: str) -> List[str]:
    texts = await page.locator(selector).all_text_contents()
    return [t for t in (clean_text(x) for x in texts) if t]


class PageFetcher:
    """Fetches listing pages through one browser page. Not shared between workers."""

    def __init__(self, page: Page, config: Config):
        self.page = page
        self.config = config

    async def fetch(self, url: str) -> PageContent:
        """
        Load a listing and read its title and description.

        Navigation errors propagate to the caller. Deleted or expired
        listings come back with empty text (see ``PageContent.is_unavailable``).
        """
        response = await self.page.goto(
            url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms
        )
        status = response.status if response else None
        if status in UNAVAILABLE_STATUSES:
            logger.info(f"Page unavailable (status {status}): {url}")
            return PageContent(url=url, status_code=status)

        await self.page.wait_for_selector("body", timeout=self.config.navigation_timeout_ms)
        if await self.page.locator(INACTIVE_SEL).count() > 0:
            logger.info(f"Listing inactive: {url}")
            return PageContent(url=url, status_code=status)

        return PageContent(
            url=url,
            status_code=status,
            title=await _text(self.page, TITLE_SEL),
            description=await _text(self.page, DESCRIPTION_SEL),
        )

    async def fetch_details(self, url: str) -> Optional[PageContent]:
        """
        Load a listing with every field the extraction step needs.

        Returns None when the listing is inactive or any field is missing.
        """
        await self.page.goto(
            url, wait_until="networkidle", timeout=self.config.details_timeout_ms
        )
        if await self.page.locator(INACTIVE_SEL).count() > 0:
            logger.warning(f"Listing inactive: {url}")
            return None

        await self.page.wait_for_selector(TITLE_SEL, timeout=10_000)
        await self.page.wait_for_selector(DESCRIPTION_SEL, timeout=10_000)

        content = PageContent(
            url=url,
            title=await _text(self.page, TITLE_SEL),
            description=await _text(self.page, DESCRIPTION_SEL),
            price_text=await _text(self.page, PRICE_SEL),
            location_text=await _text(self.page, LOCATION_SEL),
            listing_parameters=await _texts(self.page, PARAMETERS_SEL),
        )
        logger.debug(f"Extracted page data: {content.to_dict()}")

        missing = [
            name for name, value in (
                ("title", content.title),
                ("description", content.description),
                ("parameters", content.listing_parameters),
                ("price", content.price_text),
                ("location", content.location_text),
            ) if not value
        ]
        if missing:
            logger.warning(f"Missing fields {missing} on {url}")
            return None
        return content


class BrowserSession:
    """
    One browser per stage run. Each worker asks for its own page.

    Usage::

        async with BrowserSession(config) as session:
            fetcher = await session.new_fetcher()
    """

    def __init__(self, config: Config):
        self.config = config
        self._playwright = None
        self._browser = None
        self._context = None
        self._pages: List[Page] = []

    async def start(self) -> "BrowserSession":
        launch_args = ["--disable-blink-features=AutomationControlled"]
        if self.config.headless:
            launch_args += ["--disable-dev-shm-usage", "--no-sandbox", "--disable-gpu"]

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=launch_args,
            )
            self._context = await self._browser.new_context(
                viewport={"width": 1366, "height": 768},
                user_agent=USER_AGENT,
                locale="en-US",
                extra_http_headers=EXTRA_HEADERS,
            )
        except Exception as e:
            await self.close()
            raise SessionError(f"Failed to launch browser: {e}") from e

        self._context.set_default_timeout(self.config.navigation_timeout_ms)
        logger.info(f">>> Browser started (headless={self.config.headless})")
        return self

    async def new_page(self) -> Page:
        if self._context is None:
            raise SessionError("Browser session is not started")
        page = await self._context.new_page()
        await page.route("**/*", _block_heavy_resources)
        self._pages.append(page)
        return page

    async def new_fetcher(self) -> PageFetcher:
        return PageFetcher(await self.new_page(), self.config)

    async def close(self) -> None:
        for page in self._pages:
            if not page.is_closed():
                try:
                    await page.close()
                except Exception as e:
                    logger.debug(f"Error closing page: {e}")
        self._pages.clear()
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
            logger.info(">>> Browser closed")
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self) -> "BrowserSession":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
