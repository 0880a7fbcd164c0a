"""
Stage drivers: collect -> filter -> enrich.

Each driver owns its browser session and releases it in ``finally``.
"""
import logging
from typing import Callable, List, Optional

from .browser import BrowserSession
from .collector import collect_links
from .config import Config
from .coordinator import BatchCoordinator
from .extraction import AttributeExtractor, ChatModelClient, RentalSignal
from .finalizer import finalize
from .keywords import KeywordClassifier
from .models import Report
from .storage import append_json_array, append_unique, read_json_array, read_links, read_report
from .store import ALL_LINKS, LinkStore, open_store

logger = logging.getLogger(__name__)


SessionFactory = Callable[[Config], BrowserSession]


async def run_collect(config: Config, session_factory: SessionFactory = BrowserSession) -> List[str]:
    logger.info(">>> Stage 1: collecting links")
    async with session_factory(config) as session:
        return await collect_links(session, config)


async def restore_report(store: LinkStore, report: Report) -> int:
    """Load a previous report into the store so its links are not fetched again."""
    await store.add_discovered(report.allLinks)
    handled = await store.handled_links()
    records = [r for r in report.records() if r.link not in handled]
    for record in records:
        await store.record_classification(record)
    return len(records)


async def run_filter(
    config: Config,
    store: Optional[LinkStore] = None,
    session_factory: SessionFactory = BrowserSession,
) -> Optional[Report]:
    """
    Stage 2: classify every link from the link file that has not been handled yet.

    The report is written in ``finally`` so partial progress survives errors.
    A failure before the links and the previous report are loaded leaves the
    existing report untouched.
    """
    logger.info(">>> Stage 2: filtering links")
    own_store = store is None
    store = store or open_store(config.state_store_url)
    session = None
    report = None
    loaded = False
    try:
        links = read_links(config.path(config.links_file))
        logger.info(f"Loaded {len(links)} links from {config.path(config.links_file)}")
        await store.add_discovered(links)

        if config.resume:
            previous = read_report(config.path(config.output_file))
            if previous is not None:
                restored = await restore_report(store, previous)
                logger.info(f"Restored {restored} classifications from the previous report")
        loaded = True

        handled = await store.handled_links()
        pending = [link for link in await store.members(ALL_LINKS) if link not in handled]
        logger.info(f"Links left to process: {len(pending)}")
        await store.reset_processed()

        if pending:
            session = await session_factory(config).start()
            classifier = KeywordClassifier(config.keywords, config.fuzzy_cutoff)
            if not classifier.keywords:
                logger.warning("No keywords configured, every available listing will be ready for use")
            coordinator = BatchCoordinator(session, store, classifier, config)
            await coordinator.run(pending, config.concurrency)
    finally:
        if session is not None:
            try:
                await session.close()
            except Exception as e:
                logger.error(f"Error closing browser: {e}")
        if loaded:
            report = await finalize(store, config)
        else:
            logger.error("Stage failed before the links were loaded, keeping the previous report")
        if own_store:
            await store.close()
        logger.info(">>> Filtering finished")
    return report


async def run_enrich(
    config: Config,
    llm=None,
    session_factory: SessionFactory = BrowserSession,
) -> int:
    """
    Stage 3: extract attributes for every ready-for-use link.

    Links already in the enriched output or the leaked list are skipped.
    Returns the number of listings written.
    """
    logger.info(">>> Stage 3: extracting attributes")
    report = read_report(config.path(config.output_file))
    if report is None:
        logger.error("No results to process")
        return 0

    processed_path = config.path(config.processed_file)
    leaked_path = config.path(config.leaked_file)
    done = {row.get("ссылка") for row in read_json_array(processed_path) if isinstance(row, dict)}
    done |= set(read_json_array(leaked_path))
    pending = [link for link in report.readyForUse if link not in done]
    logger.info(f"Found {len(pending)} links to process ({len(report.readyForUse) - len(pending)} already done)")
    if not pending:
        return 0

    extractor = AttributeExtractor.from_config(llm or ChatModelClient.from_config(config), config)
    written = 0

    def leak(link: str) -> None:
        try:
            append_unique(leaked_path, link)
        except (OSError, ValueError) as e:
            logger.error(f"Error updating leaked list: {e}")

    async with session_factory(config) as session:
        fetcher = await session.new_fetcher()
        for link in pending:
            logger.info(f"Processing link: {link}")
            try:
                content = await fetcher.fetch_details(link)
                if content is None:
                    logger.error(f"Could not extract page data for {link}, marking as leaked")
                    leak(link)
                    continue

                result = await extractor.extract(content.as_text(), link, content.price_text)
                if isinstance(result, RentalSignal):
                    logger.warning(f"Rental listing: {link}")
                    leak(link)
                    continue

                append_json_array(processed_path, result.to_dict())
                written += 1
                logger.info(f"Successfully processed link: {link}")
            except Exception as e:
                logger.error(f"Error processing {link}: {e}")
                leak(link)

    logger.info(f">>> Extraction finished: {written} listings written")
    return written


async def run_all(config: Config) -> None:
    await run_collect(config)
    await run_filter(config)
    await run_enrich(config)
