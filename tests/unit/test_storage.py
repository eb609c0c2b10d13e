"""Unit tests for the storage helpers shared by every backend."""

from __future__ import annotations

import io
import threading
from pathlib import Path

import pytest

from golem_requestor.errors import OperationCancelled
from golem_requestor.storage import BUFFER_SIZE, ComposedStorageProvider, Content

from conftest import MemoryDestination, MemoryStorage


def test_upload_bytes_goes_through_upload_stream(storage: MemoryStorage) -> None:
    source = storage.upload_bytes(b"payload")

    assert source.content_length() == 7
    assert storage.uploads[source.download_url()] == b"payload"


def test_upload_file_streams_the_file(storage: MemoryStorage, tmp_path: Path) -> None:
    data = b"x" * (BUFFER_SIZE + 10)
    path = tmp_path / "input.bin"
    path.write_bytes(data)

    source = storage.upload_file(path)

    assert source.content_length() == len(data)
    assert storage.uploads[source.download_url()] == data


def test_content_from_reader_chunks_the_stream() -> None:
    reader = io.BytesIO(b"a" * (BUFFER_SIZE * 2 + 1))

    content = Content.from_reader(BUFFER_SIZE * 2 + 1, reader)

    assert [len(chunk) for chunk in content.stream] == [BUFFER_SIZE, BUFFER_SIZE, 1]


def test_download_bytes_truncates_at_limit() -> None:
    dest = MemoryDestination("mem://d")
    dest.content = b"0123456789"

    assert dest.download_bytes() == b"0123456789"
    assert dest.download_bytes(limit=6) == b"012345"


def test_download_bytes_observes_cancel() -> None:
    dest = MemoryDestination("mem://d")
    dest.content = b"0123456789"
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        dest.download_bytes(cancel=cancel)


def test_download_file_creates_parent_directories(tmp_path: Path) -> None:
    dest = MemoryDestination("mem://d")
    dest.content = b"result data"
    target = tmp_path / "out" / "nested" / "result.txt"

    dest.download_file(target)

    assert target.read_bytes() == b"result data"


def test_composed_provider_delegates_by_direction() -> None:
    inbound = MemoryStorage()
    outbound = MemoryStorage()
    storage = ComposedStorageProvider(inbound, outbound)

    storage.upload_bytes(b"in")
    dest = storage.new_destination("result.txt")

    assert list(inbound.uploads.values()) == [b"in"]
    assert outbound.uploads == {}
    assert outbound.destinations == [dest]
    assert inbound.destinations == []
