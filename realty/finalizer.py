"""
Snapshot the link state store into the durable report and reset the store.
"""
import logging
from typing import Optional

from .config import Config
from .models import Report
from .storage import write_report
from .store import LinkStore
from .utils import now_iso

logger = logging.getLogger(__name__)


async def finalize(store: LinkStore, config: Config) -> Optional[Report]:
    """
    Write the store snapshot to ``config.output_file`` and clear the store.

    The store is cleared only after the report is on disk. Any failure is
    logged and leaves the store untouched so the next run can pick it up.
    """
    try:
        report = await store.snapshot()
    except Exception as e:
        logger.error(f"Error reading link state for finalization: {e}")
        return None

    if not report.lastUpdated:
        report.lastUpdated = now_iso()

    path = config.path(config.output_file)
    try:
        write_report(path, report)
    except OSError as e:
        logger.error(f"Error writing report {path}: {e}")
        return None
    logger.info(
        f"Final results saved to {path} "
        f"(ready for use: {len(report.readyForUse)}, "
        f"keyword matched: {len(report.keywordMatchedLinks)}, "
        f"unavailable: {len(report.unavailableLinks)})"
    )

    try:
        await store.clear()
        logger.info("Link state cleared after finalization")
    except Exception as e:
        logger.error(f"Error clearing link state: {e}")
    return report
