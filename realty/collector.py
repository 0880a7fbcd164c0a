"""
Stage 1: walk the search result pages and collect listing links.
"""
import asyncio
import logging
import random
from typing import List
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from playwright.async_api import Page

from .config import Config
from .storage import save_links
from .utils import unique

logger = logging.getLogger(__name__)


CARD_SEL = "[data-cy='l-card']"
PAGINATION_SEL = "[data-testid^='pagination-link-']"
BLOCK_MARKERS = ("captcha", "blocked", "suspicious activity")


def page_url(base_url: str, number: int) -> str:
    """Return the search URL with its ``page`` query parameter set."""
    parts = urlparse(base_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "page"]
    query.append(("page", str(number)))
    return urlunparse(parts._replace(query=urlencode(query)))


async def get_max_pages(page: Page) -> int:
    """Highest page number shown in the pagination bar (1 when there is none)."""
    max_page = 1
    for text in await page.locator(PAGINATION_SEL).all_text_contents():
        text = text.strip()
        if text.isdigit():
            max_page = max(max_page, int(text))
    logger.debug(f"Found {max_page} pages.")
    return max_page


async def extract_card_links(page: Page, base_url: str) -> List[str]:
    """Absolute listing links from the cards on the current page."""
    hrefs = await page.eval_on_selector_all(
        f"{CARD_SEL} a",
        "els => els.map(a => a.getAttribute('href')).filter(Boolean)",
    )
    links = unique(urljoin(base_url, h).split("#")[0] for h in hrefs)
    if not links:
        logger.warning("No links were extracted from the cards")
    else:
        logger.debug(f"Successfully extracted {len(links)} links")
    return links


async def is_blocked(page: Page) -> bool:
    body = (await page.locator("body").text_content() or "").lower()
    return any(marker in body for marker in BLOCK_MARKERS)


async def navigate(page: Page, url: str, retries: int, timeout_ms: int) -> bool:
    for attempt in range(1, retries + 1):
        try:
            logger.debug(f"Attempt {attempt}: navigating to {url}")
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            return True
        except Exception as e:
            logger.error(f"Attempt {attempt} failed: {e}")
            if attempt < retries:
                await asyncio.sleep(random.uniform(1.0, 2.5))
    logger.error(f"Failed to open {url} after {retries} attempts.")
    return False


async def collect_links(session, config: Config) -> List[str]:
    """
    Collect listing links page by page, merge-appending them to the link file.

    Links collected before a crash are saved before the error propagates.
    """
    links_path = config.path(config.links_file)
    collected: List[str] = []
    saved_count = 0

    page = await session.new_page()
    try:
        if not await navigate(page, config.base_url, config.navigation_retries, config.navigation_timeout_ms):
            return []
        max_pages = min(await get_max_pages(page), config.max_pages)

        for number in range(1, max_pages + 1):
            if number > 1:
                url = page_url(config.base_url, number)
                if not await navigate(page, url, config.navigation_retries, config.navigation_timeout_ms):
                    logger.error("Navigation to next page failed, ending collection.")
                    break

            logger.info(f"Parsing page {number} of {max_pages}")
            page_links = await extract_card_links(page, config.base_url)
            if not page_links:
                if await is_blocked(page):
                    logger.error("Possible CAPTCHA or IP block detected!")
                    break
                await page.reload(wait_until="domcontentloaded")
                page_links = await extract_card_links(page, config.base_url)
                if not page_links:
                    logger.error("Still no listings after retry. Moving to next page.")

            collected = unique(collected + page_links)
            logger.info(f"Found {len(page_links)} listings on page {number}")

            if number % config.save_every == 0 and len(collected) > saved_count:
                save_links(links_path, collected)
                saved_count = len(collected)
                logger.info(f"Intermediate save: {len(collected)} listings total")

            await asyncio.sleep(random.uniform(1.0, 2.5))
    finally:
        if len(collected) > saved_count:
            try:
                save_links(links_path, collected)
            except (OSError, ValueError) as e:
                logger.error(f"Error saving links: {e}")

    logger.info(f"Total listings collected: {len(collected)}")
    return collected
