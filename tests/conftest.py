"""Test configuration and fixtures."""

from __future__ import annotations

import concurrent.futures
import json
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest
import requests

from golem_requestor.events import Event
from golem_requestor.storage import Content, Destination, Source, StorageProvider


class MemorySource:
    def __init__(self, url: str, data: bytes) -> None:
        self._url = url
        self.data = data

    def download_url(self) -> str:
        return self._url

    def content_length(self) -> int:
        return len(self.data)


class MemoryDestination(Destination):
    def __init__(self, url: str, path: str | Path | None = None) -> None:
        self._url = url
        self.path = path
        self.content = b""

    def upload_url(self) -> str:
        return self._url

    def download_stream(self) -> Content:
        chunks = [self.content[i : i + 4] for i in range(0, len(self.content), 4)]
        return Content(length=len(self.content), stream=chunks)


class MemoryStorage(StorageProvider):
    """Storage backend keeping everything in memory."""

    def __init__(self) -> None:
        self.uploads: dict[str, bytes] = {}
        self.destinations: list[MemoryDestination] = []

    def upload_stream(self, length: int, stream: Iterable[bytes]) -> Source:
        data = b"".join(stream)
        assert len(data) == length
        url = f"mem://upload/{len(self.uploads)}"
        self.uploads[url] = data
        return MemorySource(url, data)

    def new_destination(self, destination_file: str | Path | None = None) -> Destination:
        dest = MemoryDestination(f"mem://download/{len(self.destinations)}", destination_file)
        self.destinations.append(dest)
        return dest


class InlineExecutor(concurrent.futures.Executor):
    """Runs submitted callables immediately in the calling thread."""

    def submit(
        self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any
    ) -> concurrent.futures.Future:
        future: concurrent.futures.Future = concurrent.futures.Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


@pytest.fixture
def storage() -> MemoryStorage:
    """Provide an in-memory storage backend."""
    return MemoryStorage()


@pytest.fixture
def events() -> list[Event]:
    """Collect emitted domain events; pass `events.append` as the emitter."""
    return []


@pytest.fixture
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture
def session() -> Mock:
    """Provide a mocked `requests.Session` with a real headers mapping."""
    mock_session = Mock(spec=requests.Session)
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def make_response() -> Callable[..., Mock]:
    """Build mocked `requests.Response` objects."""

    def _make(status_code: int = 200, body: Any = None) -> Mock:
        resp = Mock(spec=requests.Response)
        resp.status_code = status_code
        resp.content = b"" if body is None else json.dumps(body).encode("utf-8")
        resp.text = resp.content.decode("utf-8")
        resp.json.return_value = body
        return resp

    return _make
