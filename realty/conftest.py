"""
Shared fakes for the browser session and the language model.
"""
from typing import Dict, List, Optional, Union

import pytest

from realty.config import Config
from realty.models import PageContent


class FakeFetcher:
    """Serves canned pages. A value that is an exception is raised instead."""

    def __init__(self, pages: Dict[str, Union[PageContent, Exception, list]]):
        self.pages = pages
        self.calls: List[str] = []

    def _next(self, url: str):
        value = self.pages[url]
        if isinstance(value, list):
            # scripted sequence: consume one step per call, repeat the last
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch(self, url: str) -> PageContent:
        self.calls.append(url)
        return self._next(url)

    async def fetch_details(self, url: str) -> Optional[PageContent]:
        self.calls.append(url)
        return self._next(url)


class FakeSession:
    def __init__(self, pages: Dict[str, Union[PageContent, Exception, list]]):
        self.pages = pages
        self.fetchers: List[FakeFetcher] = []
        self.started = False
        self.closed = False

    async def start(self) -> "FakeSession":
        self.started = True
        return self

    async def new_fetcher(self) -> FakeFetcher:
        fetcher = FakeFetcher(self.pages)
        self.fetchers.append(fetcher)
        return fetcher

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self) -> "FakeSession":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class FakeLLM:
    """Returns scripted responses in order; exceptions are raised."""

    def __init__(self, *responses: Union[str, Exception]):
        self.responses = list(responses)
        self.prompts: List[str] = []

    async def invoke(self, prompt: str) -> str:
        self.prompts.append(prompt)
        value = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(value, Exception):
            raise value
        return value


def page(url: str, title: str = "", description: str = "", status: Optional[int] = 200, **kwargs) -> PageContent:
    return PageContent(url=url, status_code=status, title=title, description=description, **kwargs)


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        directory=str(tmp_path / "output"),
        keywords=("ипотека", "агентство недвижимости"),
        store_url="memory://",
        concurrency=2,
    )
