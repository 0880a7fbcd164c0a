"""
Tests for link collection with a fake result page.
"""
import asyncio
import json

import pytest

from realty import collector
from realty.collector import collect_links, page_url

BASE = "https://example.uz/nedvizhimost/?currency=UYE"


class FakeLocator:
    def __init__(self, texts):
        self.texts = texts

    async def all_text_contents(self):
        return list(self.texts)

    async def text_content(self):
        return " ".join(self.texts)


class FakePage:
    """Result pages keyed by URL: (card hrefs, body text)."""

    def __init__(self, pages, pagination, fail=()):
        self.pages = pages
        self.pagination = pagination
        self.fail = set(fail)
        self.url = None
        self.visited = []

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        if url in self.fail:
            raise TimeoutError("navigation timeout")
        self.url = url

    async def reload(self, wait_until=None):
        self.visited.append(self.url)

    def locator(self, selector):
        if selector == collector.PAGINATION_SEL:
            return FakeLocator(self.pagination)
        return FakeLocator([self.pages[self.url][1]])

    async def eval_on_selector_all(self, selector, script):
        return list(self.pages[self.url][0])


class FakeBrowser:
    def __init__(self, page):
        self.page = page

    async def new_page(self):
        return self.page


@pytest.fixture(autouse=True)
def no_delays(monkeypatch):
    monkeypatch.setattr(collector.random, "uniform", lambda a, b: 0)


def test_page_url_replaces_page_parameter():
    assert page_url(BASE, 2) == "https://example.uz/nedvizhimost/?currency=UYE&page=2"
    assert page_url(BASE + "&page=7", 3) == "https://example.uz/nedvizhimost/?currency=UYE&page=3"


def test_collects_until_block_and_saves(config):
    config = config.with_overrides(base_url=BASE, navigation_retries=1)
    page = FakePage(
        {
            BASE: (["/d/a.html", "/d/b.html#gallery"], ""),
            page_url(BASE, 2): (["/d/b.html", "https://example.uz/d/c.html"], ""),
            page_url(BASE, 3): ([], "Please solve the CAPTCHA"),
        },
        pagination=["1", "2", "3", "..."],
    )

    links = asyncio.run(collect_links(FakeBrowser(page), config))

    expected = [
        "https://example.uz/d/a.html",
        "https://example.uz/d/b.html",
        "https://example.uz/d/c.html",
    ]
    assert links == expected
    saved = json.loads(config.path(config.links_file).read_text(encoding="utf-8"))
    assert saved == expected


def test_collection_merges_with_existing_links(config):
    config = config.with_overrides(base_url=BASE, navigation_retries=1)
    path = config.path(config.links_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(["https://example.uz/d/old.html"]), encoding="utf-8")
    page = FakePage({BASE: (["/d/new.html"], "")}, pagination=[])

    asyncio.run(collect_links(FakeBrowser(page), config))

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved == ["https://example.uz/d/old.html", "https://example.uz/d/new.html"]


def test_respects_max_pages(config):
    config = config.with_overrides(base_url=BASE, max_pages=1, navigation_retries=1)
    page = FakePage({BASE: (["/d/a.html"], "")}, pagination=["1", "2", "3"])

    asyncio.run(collect_links(FakeBrowser(page), config))
    assert page.visited == [BASE]


def test_unreachable_start_page_collects_nothing(config):
    config = config.with_overrides(base_url=BASE, navigation_retries=2)
    page = FakePage({}, pagination=[], fail=[BASE])

    assert asyncio.run(collect_links(FakeBrowser(page), config)) == []
    assert page.visited == [BASE, BASE]
    assert not config.path(config.links_file).exists()
