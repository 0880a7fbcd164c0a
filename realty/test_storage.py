"""
Tests for artifact files and report finalization.
"""
import asyncio
import json

import pytest

from realty.finalizer import finalize
from realty.models import ClassificationRecord, Report
from realty.storage import (
    append_json_array,
    append_unique,
    merge_links,
    read_json_array,
    read_links,
    read_report,
    save_links,
)
from realty.store import MemoryLinkStore


def test_merge_links_appends_without_duplicates():
    assert merge_links(["a", "b"], ["b", "c"]) == ["a", "b", "c"]
    assert merge_links([], ["c", "c"]) == ["c"]
    assert merge_links(["a"], []) == ["a"]


def test_save_links_merges_with_existing_file(tmp_path):
    path = tmp_path / "out" / "links.json"
    assert save_links(path, ["a", "b"]) == 2
    assert save_links(path, ["b", "c"]) == 1
    assert save_links(path, ["a"]) == 0
    assert read_links(path) == ["a", "b", "c"]


def test_read_links_rejects_non_strings(tmp_path):
    path = tmp_path / "links.json"
    path.write_text(json.dumps([1, 2]), encoding="utf-8")
    with pytest.raises(ValueError):
        read_links(path)
    assert read_links(tmp_path / "missing.json") == []


def test_append_unique_deduplicates(tmp_path):
    path = tmp_path / "leaked.json"
    assert append_unique(path, "a") is True
    assert append_unique(path, "a") is False
    assert append_unique(path, "b") is True
    assert read_json_array(path) == ["a", "b"]


def test_append_json_array_recovers_from_invalid_file(tmp_path):
    path = tmp_path / "processed.json"
    path.write_text("{not json", encoding="utf-8")
    assert append_json_array(path, {"ссылка": "a"}) == 1
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == [{"ссылка": "a"}]
    # non-ASCII is written as is
    assert "ссылка" in path.read_text(encoding="utf-8")


def test_finalize_writes_report_and_clears_store(config):
    store = MemoryLinkStore()

    async def scenario():
        await store.add_discovered(["a", "b"])
        await store.record_classification(
            ClassificationRecord("a", "t", "d", True, False, ())
        )
        report = await finalize(store, config)
        return report, await store.snapshot()

    report, after = asyncio.run(scenario())
    assert report.readyForUse == ["a"]
    assert after.allLinks == []

    on_disk = json.loads(config.path(config.output_file).read_text(encoding="utf-8"))
    assert set(on_disk) == {
        "allLinks", "processedLinks", "unavailableLinks", "keywordMatchedLinks",
        "nonMatchedLinks", "readyForUse", "processedObjects", "lastUpdated",
    }
    assert on_disk["allLinks"] == ["a", "b"]
    assert on_disk["processedObjects"][0]["isAvailable"] is True
    assert read_report(config.path(config.output_file)) == report


def test_finalize_sets_timestamp_for_empty_store(config):
    report = asyncio.run(finalize(MemoryLinkStore(), config))
    assert report.lastUpdated
    assert report.allLinks == []


def test_finalize_keeps_store_when_write_fails(tmp_path, config):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    config = config.with_overrides(directory=str(blocker / "sub"))
    store = MemoryLinkStore()

    async def scenario():
        await store.add_discovered(["a"])
        report = await finalize(store, config)
        return report, await store.members("allLinks")

    report, remaining = asyncio.run(scenario())
    assert report is None
    assert remaining == ["a"]


def test_read_report_handles_missing_and_broken_files(tmp_path):
    assert read_report(tmp_path / "missing.json") is None
    broken = tmp_path / "broken.json"
    broken.write_text("[]", encoding="utf-8")
    assert read_report(broken) is None


def test_report_records_round_trip():
    record = ClassificationRecord("a", "t", "d", True, True, ("ипотека",))
    report = Report(processedObjects=[record.to_dict()])
    assert report.records() == [record]
