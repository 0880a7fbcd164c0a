"""
Utility functions for text processing, number parsing, and logging.
"""
import logging
import math
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional


def init_logger(
    name: str = "realty",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_file: Optional[str] = "realty.log"
) -> logging.Logger:
    """Initialize logger with console and optional file handlers."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    if logger.handlers:
        return logger

    console_level_num = getattr(logging, console_level.upper(), logging.INFO)
    ch = logging.StreamHandler()
    ch.setLevel(console_level_num)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if log_file:  # Create file handler only if log_file is provided
        file_level_num = getattr(logging, file_level.upper(), logging.DEBUG)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level_num)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger


def now_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def clean_text(s: Optional[str]) -> str:
    """Clean and normalize text by removing extra whitespace."""
    if not s:
        return ""
    s = re.sub(r"\s+", " ", s)
    return s.strip()


def normalize_text(text: str) -> str:
    """Lowercase text and fold 'ё' into 'е'."""
    return text.lower().replace("ё", "е")


def parse_number(text) -> Optional[float]:
    """
    Parse the first number in a price or area string.

    Handles thousands separators written as spaces ("75 000 у.е."), a decimal
    comma ("45,5 м²") and plain numbers. Returns None for anything that is not
    a finite number.
    """
    if text is None or isinstance(text, bool):
        return None
    if isinstance(text, (int, float)):
        value = float(text)
        return value if math.isfinite(value) else None

    s = str(text).replace("\xa0", " ").replace(" ", " ")
    m = re.search(r"-?\d+(?:[ ]\d{3})*(?:[.,]\d+)?", s)
    if not m:
        return None
    num = m.group(0).replace(" ", "").replace(",", ".")
    try:
        value = float(num)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def unique(items: Iterable[str]) -> List[str]:
    """Remove duplicates while preserving order."""
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
