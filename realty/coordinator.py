"""
Batch classification: split links across workers, fetch, classify, record.
"""
import asyncio
import logging
import math
from typing import List, Optional, Sequence

from .config import Config
from .keywords import KeywordClassifier
from .models import ClassificationRecord, PageContent
from .storage import append_unique
from .store import LinkStore

logger = logging.getLogger(__name__)


def partition(links: Sequence[str], parts: int) -> List[List[str]]:
    """Split links into at most ``parts`` contiguous chunks of near-equal size."""
    links = list(links)
    if not links:
        return []
    parts = max(1, min(parts, len(links)))
    size = math.ceil(len(links) / parts)
    return [links[i:i + size] for i in range(0, len(links), size)]


def classify_page(content: PageContent, classifier: KeywordClassifier) -> ClassificationRecord:
    """Turn fetched page content into a classification record."""
    if content.is_unavailable:
        return ClassificationRecord.unavailable(content.url)

    match = classifier.classify(f"{content.title} {content.description}")
    logger.info(f"Keywords found: {'yes' if match.contains else 'no'} {list(match.matches)}")
    return ClassificationRecord(
        link=content.url,
        title=content.title,
        description=content.description,
        is_available=True,
        contains_keywords=match.contains,
        matched_keywords=match.matches,
    )


class BatchCoordinator:
    """
    Drives ``concurrency`` workers over a link set.

    ``session`` must provide ``async new_fetcher()``; every worker gets its
    own fetcher so navigation state is never shared.
    """

    def __init__(self, session, store: LinkStore, classifier: KeywordClassifier, config: Config):
        self.session = session
        self.store = store
        self.classifier = classifier
        self.config = config
        self.exhausted: List[str] = []

    async def run(self, links: Sequence[str], concurrency: Optional[int] = None) -> None:
        concurrency = concurrency or self.config.concurrency
        batches = partition(links, concurrency)
        total = len(links)
        if not batches:
            logger.info("Nothing to classify")
            return

        logger.info(f">>> Classifying {total} links with {len(batches)} workers")
        fetchers = [await self.session.new_fetcher() for _ in batches]
        await asyncio.gather(*[
            self._run_batch(worker, fetcher, batch, total)
            for worker, (fetcher, batch) in enumerate(zip(fetchers, batches), 1)
        ])
        if self.exhausted:
            logger.warning(f"{len(self.exhausted)} links gave up after {self.config.max_attempts} attempts")

    async def _run_batch(self, worker: int, fetcher, links: List[str], total: int) -> None:
        for link in links:
            done = await self._process_link(worker, fetcher, link, total)
            if not done:
                await self._on_exhausted(link)

    async def _process_link(self, worker: int, fetcher, link: str, total: int) -> bool:
        """Classify one link with retries. Returns False when all attempts failed."""
        record: Optional[ClassificationRecord] = None
        attempts = self.config.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                if record is None:
                    logger.info(f"[worker {worker}] Processing: {link}")
                    content = await fetcher.fetch(link)
                    candidate = classify_page(content, self.classifier)
                    await self.store.record_classification(candidate)
                    record = candidate

                count = await self.store.increment_processed()
                logger.info(
                    f"[worker {worker}] Progress: {count / total * 100:.1f}% | "
                    f"processed: {count}/{total} | remaining: {total - count}"
                )
                return True
            except Exception as e:
                logger.error(
                    f"[worker {worker}] Error processing {link} "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
        return False

    async def _on_exhausted(self, link: str) -> None:
        self.exhausted.append(link)
        if self.config.exhausted_policy == "exclude":
            try:
                append_unique(self.config.path(self.config.leaked_file), link)
                logger.info(f"Excluded after failed attempts: {link}")
            except (OSError, ValueError) as e:
                logger.error(f"Could not update leaked list for {link}: {e}")
        else:
            logger.warning(f"Skipped after failed attempts: {link}")
