"""
JSON artifact files: link list, report, enriched output, leaked list, audit log.

Writes go to a temporary file first and are then moved over the target, so a
crash never leaves a half-written JSON array behind.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, List, Optional, Sequence

from .models import Report
from .utils import now_iso

logger = logging.getLogger(__name__)


def write_json(path: Path, data: Any) -> None:
    """Write JSON (UTF-8, indented, non-ASCII kept) atomically, creating parent directories."""
    path = Path(path)
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created directory: {path.parent}")
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def read_json_array(path: Path) -> List[Any]:
    """
    Read a JSON array file.

    A missing or empty file reads as ``[]``. A file with invalid JSON or a
    non-array payload is logged and read as ``[]`` so appends start over.
    """
    path = Path(path)
    if not path.exists():
        return []
    content = path.read_text(encoding="utf-8")
    if not content.strip():
        return []
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning(f"File {path} contains invalid JSON ({e}), starting a new array")
        return []
    if not isinstance(data, list):
        logger.warning(f"File {path} does not contain a JSON array, starting a new array")
        return []
    return data


def append_json_array(path: Path, item: Any) -> int:
    """Append one item to a JSON array file. Returns the new length."""
    data = read_json_array(path)
    data.append(item)
    write_json(path, data)
    logger.debug(f"Wrote {len(data)} records to {path}")
    return len(data)


def append_unique(path: Path, value: str) -> bool:
    """Append a string to a JSON array file unless already present."""
    data = read_json_array(path)
    if value in data:
        logger.debug(f"{value} already listed in {path}")
        return False
    data.append(value)
    write_json(path, data)
    return True


# Link file

def merge_links(existing: Sequence[str], new: Sequence[str]) -> List[str]:
    """Append new links to existing ones, keeping order and dropping duplicates."""
    merged = list(dict.fromkeys(existing))
    seen = set(merged)
    for link in new:
        if link not in seen:
            seen.add(link)
            merged.append(link)
    return merged


def read_links(path: Path) -> List[str]:
    """
    Read the link file.

    Raises ``ValueError`` when the file does not hold an array of strings.
    """
    path = Path(path)
    if not path.exists():
        return []
    data = json.loads(path.read_text(encoding="utf-8") or "[]")
    if not isinstance(data, list) or not all(isinstance(x, str) for x in data):
        raise ValueError(f"File {path} must contain an array of strings")
    return data


def save_links(path: Path, links: Sequence[str]) -> int:
    """Merge-append links into the link file. Returns the number of new links."""
    existing = read_links(path)
    merged = merge_links(existing, links)
    added = max(len(merged) - len(existing), 0)
    logger.debug(f"Existing links: {len(existing)}, candidates: {len(links)}, new: {added}")
    if merged == existing:
        logger.info("No new links to save.")
        return 0
    write_json(path, merged)
    logger.info(f"Saved {path} (total links: {len(merged)}, new: {added})")
    return added


# Report

def write_report(path: Path, report: Report) -> None:
    write_json(path, report.model_dump())


def read_report(path: Path) -> Optional[Report]:
    """Read the durable report, or None when it is missing or unreadable."""
    path = Path(path)
    if not path.exists():
        logger.warning(f"Report file does not exist: {path}")
        return None
    try:
        return Report.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error(f"Error reading report {path}: {e}")
        return None


# Audit log

def append_audit(path: Path, prompt: str, raw_response: str, final_response: Any, input_text: str) -> None:
    append_json_array(path, {
        "timestamp": now_iso(),
        "prompt": prompt,
        "rawResponse": raw_response,
        "finalResponse": final_response,
        "inputText": input_text,
    })
