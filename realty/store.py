"""
Link state store: set-based ledger of which links are in which stage.

Three backends share one async interface:

- ``MemoryLinkStore``  - in-process, used by tests and one-off runs
- ``SqliteLinkStore``  - durable file, survives process restarts
- ``RedisLinkStore``   - networked, shared between processes

Set-add operations are idempotent. ``increment_processed`` is a single atomic
operation in every backend, so concurrent workers never lose an update.
"""
import asyncio
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

import redis.asyncio as redis

from .models import ClassificationRecord, Report
from .utils import now_iso

logger = logging.getLogger(__name__)


ALL_LINKS = "allLinks"
PROCESSED_LINKS = "processedLinks"
UNAVAILABLE_LINKS = "unavailableLinks"
KEYWORD_MATCHED_LINKS = "keywordMatchedLinks"
NON_MATCHED_LINKS = "nonMatchedLinks"
READY_FOR_USE = "readyForUse"

SET_NAMES = (
    ALL_LINKS,
    PROCESSED_LINKS,
    UNAVAILABLE_LINKS,
    KEYWORD_MATCHED_LINKS,
    NON_MATCHED_LINKS,
    READY_FOR_USE,
)
TERMINAL_SETS = (UNAVAILABLE_LINKS, KEYWORD_MATCHED_LINKS, NON_MATCHED_LINKS)


def route(record: ClassificationRecord) -> Dict[str, bool]:
    """
    Decide set membership of a classified link.

    Returns a mapping of set name -> member?. Every set except ``allLinks``
    appears, so writers can add and remove in one pass (last write wins).
    """
    available = record.is_available
    matched = available and record.contains_keywords
    non_matched = available and not record.contains_keywords
    return {
        PROCESSED_LINKS: available,
        UNAVAILABLE_LINKS: not available,
        KEYWORD_MATCHED_LINKS: matched,
        NON_MATCHED_LINKS: non_matched,
        READY_FOR_USE: non_matched,
    }


class LinkStore(ABC):
    """Async interface shared by all store backends."""

    @abstractmethod
    async def add_discovered(self, links: Iterable[str]) -> None:
        ...

    @abstractmethod
    async def record_classification(self, record: ClassificationRecord) -> None:
        ...

    @abstractmethod
    async def increment_processed(self) -> int:
        ...

    @abstractmethod
    async def reset_processed(self) -> None:
        ...

    @abstractmethod
    async def members(self, name: str) -> List[str]:
        ...

    @abstractmethod
    async def snapshot(self) -> Report:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    async def close(self) -> None:
        pass

    async def handled_links(self) -> set:
        """Links that already reached a classification (available or not)."""
        processed = await self.members(PROCESSED_LINKS)
        unavailable = await self.members(UNAVAILABLE_LINKS)
        return set(processed) | set(unavailable)

    @staticmethod
    def _check_name(name: str) -> None:
        if name not in SET_NAMES:
            raise KeyError(f"Unknown link set: {name}")


class MemoryLinkStore(LinkStore):
    """In-process store. Sets keep insertion order."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._reset_state()

    def _reset_state(self) -> None:
        self._sets: Dict[str, Dict[str, None]] = {name: {} for name in SET_NAMES}
        self._objects: List[dict] = []
        self._last_updated: Optional[str] = None
        self._processed = 0

    async def add_discovered(self, links: Iterable[str]) -> None:
        async with self._lock:
            for link in links:
                self._sets[ALL_LINKS].setdefault(link, None)

    async def record_classification(self, record: ClassificationRecord) -> None:
        async with self._lock:
            self._objects.append(record.to_dict())
            for name, member in route(record).items():
                if member:
                    self._sets[name].setdefault(record.link, None)
                else:
                    self._sets[name].pop(record.link, None)
            self._last_updated = now_iso()

    async def increment_processed(self) -> int:
        async with self._lock:
            self._processed += 1
            return self._processed

    async def reset_processed(self) -> None:
        async with self._lock:
            self._processed = 0

    async def members(self, name: str) -> List[str]:
        self._check_name(name)
        async with self._lock:
            return list(self._sets[name])

    async def snapshot(self) -> Report:
        async with self._lock:
            return Report(
                **{name: list(self._sets[name]) for name in SET_NAMES},
                processedObjects=[dict(o) for o in self._objects],
                lastUpdated=self._last_updated,
            )

    async def clear(self) -> None:
        async with self._lock:
            self._reset_state()


# Schema definitions
DDL_LINK_SETS = """
CREATE TABLE IF NOT EXISTS link_sets (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  set_name TEXT NOT NULL,
  link TEXT NOT NULL,
  UNIQUE (set_name, link)
);
"""

DDL_PROCESSED_OBJECTS = """
CREATE TABLE IF NOT EXISTS processed_objects (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  link TEXT NOT NULL,
  payload TEXT NOT NULL
);
"""

DDL_META = """
CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT
);
"""

DDL_COUNTERS = """
CREATE TABLE IF NOT EXISTS counters (
  name TEXT PRIMARY KEY,
  value INTEGER NOT NULL
);
"""

DDL_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_link_sets_name ON link_sets(set_name, id);",
]

COUNTER_PROCESSED = "globalProcessed"


def db_connect(path: str) -> sqlite3.Connection:
    """Create database connection with optimized settings."""
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def db_init(conn: sqlite3.Connection):
    """Initialize database schema with tables and indexes."""
    conn.execute(DDL_LINK_SETS)
    conn.execute(DDL_PROCESSED_OBJECTS)
    conn.execute(DDL_META)
    conn.execute(DDL_COUNTERS)
    for ddl in DDL_INDEXES:
        conn.execute(ddl)
    conn.commit()


class SqliteLinkStore(LinkStore):
    """
    Durable store in a SQLite file.

    Calls run in a worker thread; a lock serializes access to the shared
    connection and every mutating call is one transaction.
    """

    def __init__(self, path: str):
        self.path = path
        self._conn = db_connect(path)
        db_init(self._conn)
        self._lock = threading.Lock()

    async def _run(self, fn, *args):
        return await asyncio.to_thread(self._locked, fn, *args)

    def _locked(self, fn, *args):
        with self._lock:
            try:
                result = fn(*args)
                self._conn.commit()
                return result
            except sqlite3.Error:
                self._conn.rollback()
                raise

    def _add(self, name: str, links: Iterable[str]) -> None:
        self._conn.executemany(
            "INSERT OR IGNORE INTO link_sets (set_name, link) VALUES (?, ?)",
            [(name, link) for link in links],
        )

    def _remove(self, name: str, link: str) -> None:
        self._conn.execute(
            "DELETE FROM link_sets WHERE set_name = ? AND link = ?", (name, link)
        )

    def _set_meta(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value)
        )

    def _members(self, name: str) -> List[str]:
        cur = self._conn.execute(
            "SELECT link FROM link_sets WHERE set_name = ? ORDER BY id", (name,)
        )
        return [row[0] for row in cur.fetchall()]

    def _record(self, record: ClassificationRecord) -> None:
        self._conn.execute(
            "INSERT INTO processed_objects (link, payload) VALUES (?, ?)",
            (record.link, json.dumps(record.to_dict(), ensure_ascii=False)),
        )
        for name, member in route(record).items():
            if member:
                self._add(name, [record.link])
            else:
                self._remove(name, record.link)
        self._set_meta("lastUpdated", now_iso())

    def _increment(self) -> int:
        # single statement, so the read-modify-write happens inside SQLite
        cur = self._conn.execute(
            """
            INSERT INTO counters (name, value) VALUES (?, 1)
            ON CONFLICT(name) DO UPDATE SET value = value + 1
            RETURNING value
            """,
            (COUNTER_PROCESSED,),
        )
        return int(cur.fetchone()[0])

    def _reset_counter(self) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO counters (name, value) VALUES (?, 0)",
            (COUNTER_PROCESSED,),
        )

    def _snapshot(self) -> Report:
        sets = {name: self._members(name) for name in SET_NAMES}
        cur = self._conn.execute("SELECT payload FROM processed_objects ORDER BY id")
        objects = [json.loads(row[0]) for row in cur.fetchall()]
        cur = self._conn.execute("SELECT value FROM meta WHERE key = 'lastUpdated'")
        row = cur.fetchone()
        return Report(**sets, processedObjects=objects, lastUpdated=row[0] if row else None)

    def _clear(self) -> None:
        for table in ("link_sets", "processed_objects", "meta", "counters"):
            self._conn.execute(f"DELETE FROM {table}")

    async def add_discovered(self, links: Iterable[str]) -> None:
        await self._run(self._add, ALL_LINKS, list(links))

    async def record_classification(self, record: ClassificationRecord) -> None:
        await self._run(self._record, record)

    async def increment_processed(self) -> int:
        return await self._run(self._increment)

    async def reset_processed(self) -> None:
        await self._run(self._reset_counter)

    async def members(self, name: str) -> List[str]:
        self._check_name(name)
        return await self._run(self._members, name)

    async def snapshot(self) -> Report:
        return await self._run(self._snapshot)

    async def clear(self) -> None:
        await self._run(self._clear)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


# Redis key names
REDIS_PREFIX = "results:"
REDIS_OBJECTS = "processedObjects"
REDIS_LAST_UPDATED = "lastUpdated"


class RedisLinkStore(LinkStore):
    """Networked store; every multi-key write is a MULTI/EXEC transaction."""

    def __init__(self, client, prefix: str = REDIS_PREFIX):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = REDIS_PREFIX) -> "RedisLinkStore":
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def _all_keys(self) -> List[str]:
        names = list(SET_NAMES) + [REDIS_OBJECTS, REDIS_LAST_UPDATED, COUNTER_PROCESSED]
        return [self.key(n) for n in names]

    async def add_discovered(self, links: Iterable[str]) -> None:
        links = list(links)
        if links:
            await self.client.sadd(self.key(ALL_LINKS), *links)

    async def record_classification(self, record: ClassificationRecord) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.rpush(self.key(REDIS_OBJECTS), json.dumps(record.to_dict(), ensure_ascii=False))
            for name, member in route(record).items():
                if member:
                    pipe.sadd(self.key(name), record.link)
                else:
                    pipe.srem(self.key(name), record.link)
            pipe.set(self.key(REDIS_LAST_UPDATED), now_iso())
            await pipe.execute()

    async def increment_processed(self) -> int:
        return int(await self.client.incr(self.key(COUNTER_PROCESSED)))

    async def reset_processed(self) -> None:
        await self.client.set(self.key(COUNTER_PROCESSED), 0)

    async def members(self, name: str) -> List[str]:
        self._check_name(name)
        return sorted(await self.client.smembers(self.key(name)))

    async def snapshot(self) -> Report:
        async with self.client.pipeline(transaction=True) as pipe:
            for name in SET_NAMES:
                pipe.smembers(self.key(name))
            pipe.lrange(self.key(REDIS_OBJECTS), 0, -1)
            pipe.get(self.key(REDIS_LAST_UPDATED))
            results = await pipe.execute()

        sets = {name: sorted(results[i]) for i, name in enumerate(SET_NAMES)}
        objects = [json.loads(item) for item in results[len(SET_NAMES)]]
        return Report(**sets, processedObjects=objects, lastUpdated=results[-1])

    async def clear(self) -> None:
        await self.client.delete(*self._all_keys())

    async def close(self) -> None:
        await self.client.aclose()


def open_store(url: str) -> LinkStore:
    """
    Open a store backend from a URL.

    ``memory://``, ``sqlite:///relative/path.db``, ``sqlite:////abs/path.db``
    and ``redis://host:port/db`` are understood.
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme == "memory":
        return MemoryLinkStore()
    if scheme == "sqlite":
        path = url[len("sqlite:///"):] if url.startswith("sqlite:///") else parsed.path
        if not path:
            raise ValueError(f"SQLite store URL has no path: {url}")
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Opening SQLite link store: {path}")
        return SqliteLinkStore(path)
    if scheme in ("redis", "rediss", "unix"):
        logger.debug(f"Opening Redis link store: {url}")
        return RedisLinkStore.from_url(url)
    raise ValueError(f"Unsupported store URL: {url}")
