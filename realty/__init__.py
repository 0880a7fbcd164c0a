"""
Real-estate listing crawler: collect links, filter by keywords, extract attributes.
"""
from .config import Config
from .coordinator import BatchCoordinator, classify_page, partition
from .extraction import RENTAL, AttributeExtractor, ChatModelClient, RentalSignal
from .finalizer import finalize
from .keywords import KeywordClassifier, KeywordMatch
from .models import ClassificationRecord, ExtractedListing, PageContent, Report
from .storage import merge_links
from .store import LinkStore, MemoryLinkStore, RedisLinkStore, SqliteLinkStore, open_store
from .utils import init_logger, now_iso

__version__ = "1.0.0"

__all__ = [
    "Config",
    "BatchCoordinator",
    "classify_page",
    "partition",
    "RENTAL",
    "AttributeExtractor",
    "ChatModelClient",
    "RentalSignal",
    "finalize",
    "KeywordClassifier",
    "KeywordMatch",
    "ClassificationRecord",
    "ExtractedListing",
    "PageContent",
    "Report",
    "merge_links",
    "LinkStore",
    "MemoryLinkStore",
    "RedisLinkStore",
    "SqliteLinkStore",
    "open_store",
    "init_logger",
    "now_iso",
]
