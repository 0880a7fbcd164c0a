"""
Tests for batch classification.
"""
import asyncio
import json

from realty.conftest import FakeSession, page
from realty.config import Config
from realty.coordinator import BatchCoordinator, classify_page, partition
from realty.keywords import KeywordClassifier
from realty.store import MemoryLinkStore


class SpyClassifier(KeywordClassifier):
    def __init__(self, keywords):
        super().__init__(keywords)
        self.texts = []

    def classify(self, text):
        self.texts.append(text)
        return super().classify(text)


class FlakyStore(MemoryLinkStore):
    """Fails the first ``record_failures`` records and ``increment_failures`` increments."""

    def __init__(self, record_failures=0, increment_failures=0):
        super().__init__()
        self.record_failures = record_failures
        self.increment_failures = increment_failures

    async def record_classification(self, record):
        if self.record_failures:
            self.record_failures -= 1
            raise ConnectionError("store unavailable")
        await super().record_classification(record)

    async def increment_processed(self):
        if self.increment_failures:
            self.increment_failures -= 1
            raise ConnectionError("store unavailable")
        return await super().increment_processed()


def make(config, pages, store=None, keywords=("ипотека",)):
    session = FakeSession(pages)
    store = store or MemoryLinkStore()
    classifier = SpyClassifier(keywords)
    return BatchCoordinator(session, store, classifier, config), session, store, classifier


def test_partition_is_contiguous_and_balanced():
    assert partition(["a", "b", "c", "d", "e"], 2) == [["a", "b", "c"], ["d", "e"]]
    assert partition(["a", "b"], 5) == [["a"], ["b"]]
    assert partition([], 3) == []
    assert partition(["a", "b", "c"], 0) == [["a", "b", "c"]]


def test_classify_page_unavailable_skips_classifier():
    clf = SpyClassifier(["ипотека"])
    record = classify_page(page("u", "ипотека", "x", status=404), clf)
    assert record.is_available is False
    assert clf.texts == []

    record = classify_page(page("v", "", ""), clf)
    assert record.is_available is False
    assert clf.texts == []


def test_classify_page_available():
    clf = SpyClassifier(["ипотека"])
    record = classify_page(page("u", "Квартира", "возможна ипотека"), clf)
    assert record.is_available is True
    assert record.contains_keywords is True
    assert record.matched_keywords == ("ипотека",)
    assert clf.texts == ["Квартира возможна ипотека"]


def test_run_routes_links_and_counts(config):
    pages = {
        "l1": page("l1", "Квартира", "возможна ипотека"),
        "l2": page("l2", "Квартира", "собственник"),
        "l3": page("l3", status=410),
        "l4": page("l4", "Дом", "хороший"),
    }
    coordinator, session, store, _ = make(config, pages)

    async def scenario():
        await coordinator.run(list(pages), 2)
        return await store.snapshot(), await store.increment_processed()

    report, next_count = asyncio.run(scenario())
    assert report.keywordMatchedLinks == ["l1"]
    assert sorted(report.readyForUse) == ["l2", "l4"]
    assert report.unavailableLinks == ["l3"]
    assert next_count == 5  # four completed before this one


def test_each_worker_gets_its_own_fetcher(config):
    pages = {f"l{i}": page(f"l{i}", "t", "d") for i in range(5)}
    coordinator, session, _, _ = make(config, pages)
    asyncio.run(coordinator.run(list(pages), 2))

    assert len(session.fetchers) == 2
    assert session.fetchers[0].calls == ["l0", "l1", "l2"]
    assert session.fetchers[1].calls == ["l3", "l4"]


def test_transient_failures_are_retried(config):
    pages = {"l1": [TimeoutError("nav"), TimeoutError("nav"), page("l1", "t", "d")]}
    coordinator, session, store, _ = make(config, pages)
    asyncio.run(coordinator.run(["l1"], 1))

    report = asyncio.run(store.snapshot())
    assert report.readyForUse == ["l1"]
    assert len(report.processedObjects) == 1
    assert session.fetchers[0].calls == ["l1", "l1", "l1"]
    assert coordinator.exhausted == []


def test_exhausted_link_is_skipped(config):
    pages = {
        "bad": TimeoutError("nav"),
        "good": page("good", "t", "d"),
    }
    coordinator, session, store, _ = make(config, pages)
    asyncio.run(coordinator.run(["bad", "good"], 1))

    report = asyncio.run(store.snapshot())
    assert report.readyForUse == ["good"]
    assert "bad" not in report.unavailableLinks
    assert session.fetchers[0].calls.count("bad") == config.max_attempts
    assert coordinator.exhausted == ["bad"]
    assert not config.path(config.leaked_file).exists()


def test_exhausted_link_is_excluded_when_configured(config):
    config = config.with_overrides(exhausted_policy="exclude", max_attempts=2)
    coordinator, session, _, _ = make(config, {"bad": RuntimeError("boom")})
    asyncio.run(coordinator.run(["bad"], 1))

    leaked = json.loads(config.path(config.leaked_file).read_text(encoding="utf-8"))
    assert leaked == ["bad"]
    assert session.fetchers[0].calls == ["bad", "bad"]


def test_store_write_failure_is_retried(config):
    store = FlakyStore(record_failures=1)
    coordinator, _, _, _ = make(config, {"l1": page("l1", "t", "d")}, store=store)
    asyncio.run(coordinator.run(["l1"], 1))

    report = asyncio.run(store.snapshot())
    assert report.readyForUse == ["l1"]
    assert len(report.processedObjects) == 1


def test_record_is_written_once_when_increment_fails(config):
    store = FlakyStore(increment_failures=1)
    coordinator, session, _, _ = make(config, {"l1": page("l1", "t", "d")}, store=store)
    asyncio.run(coordinator.run(["l1"], 1))

    report = asyncio.run(store.snapshot())
    assert len(report.processedObjects) == 1
    assert session.fetchers[0].calls == ["l1"]
    assert asyncio.run(store.increment_processed()) == 2


def test_run_with_no_links_does_nothing(config):
    coordinator, session, _, _ = make(config, {})
    asyncio.run(coordinator.run([], 2))
    assert session.fetchers == []


def test_default_concurrency_comes_from_config(tmp_path):
    config = Config(directory=str(tmp_path), concurrency=3)
    pages = {f"l{i}": page(f"l{i}", "t", "d") for i in range(6)}
    coordinator, session, _, _ = make(config, pages)
    asyncio.run(coordinator.run(list(pages)))
    assert len(session.fetchers) == 3


def test_unreadable_leaked_file_does_not_stop_other_workers(config):
    config = config.with_overrides(exhausted_policy="exclude", max_attempts=1)
    leaked = config.path(config.leaked_file)
    leaked.parent.mkdir(parents=True, exist_ok=True)
    leaked.write_bytes(b"\xff\xfe not utf-8")
    pages = {
        "bad": RuntimeError("boom"),
        "l1": page("l1", "t", "d"),
        "l2": page("l2", "t", "d"),
    }
    coordinator, _, store, _ = make(config, pages)
    asyncio.run(coordinator.run(["bad", "l1", "l2"], 2))

    report = asyncio.run(store.snapshot())
    assert sorted(report.readyForUse) == ["l1", "l2"]
    assert coordinator.exhausted == ["bad"]
