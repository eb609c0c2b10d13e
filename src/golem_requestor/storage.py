"""Storage backends used to move content to and from providers.

A backend publishes local content under a URL the provider can fetch
(`Source`) and allocates URLs the provider can push results to
(`Destination`). Concrete backends implement the abstract methods; the byte
and file helpers are shared.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol

from golem_requestor.errors import OperationCancelled

BUFFER_SIZE = 40960
DOWNLOAD_BYTES_LIMIT_DEFAULT = 1 * 1024 * 1024


def _read_chunks(reader: BinaryIO, chunk_size: int = BUFFER_SIZE) -> Iterator[bytes]:
    while chunk := reader.read(chunk_size):
        yield chunk


def _file_chunks(path: Path, chunk_size: int = BUFFER_SIZE) -> Iterator[bytes]:
    with path.open("rb") as fh:
        yield from _read_chunks(fh, chunk_size)


@dataclass(frozen=True)
class Content:
    length: int
    stream: Iterable[bytes]

    @classmethod
    def from_reader(cls, length: int, reader: BinaryIO) -> Content:
        return cls(length=length, stream=_read_chunks(reader))


class Source(Protocol):
    """Content published for download by a provider."""

    def download_url(self) -> str: ...

    def content_length(self) -> int: ...


class Destination(ABC):
    """A location a provider uploads results to."""

    @abstractmethod
    def upload_url(self) -> str:
        """URL the provider pushes the content to."""

    @abstractmethod
    def download_stream(self) -> Content:
        """Stream the content the provider uploaded."""

    def download_bytes(
        self,
        limit: int = DOWNLOAD_BYTES_LIMIT_DEFAULT,
        cancel: threading.Event | None = None,
    ) -> bytes:
        """Collect at most `limit` bytes of the uploaded content."""

        output = bytearray()
        for chunk in self.download_stream().stream:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"download from {self.upload_url()} cancelled")
            output += chunk[: limit - len(output)]
            if len(output) >= limit:
                break
        return bytes(output)

    def download_file(self, path: str | Path, cancel: threading.Event | None = None) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as fh:
            for chunk in self.download_stream().stream:
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled(f"download to {path} cancelled")
                fh.write(chunk)


class InputStorageProvider(ABC):
    @abstractmethod
    def upload_stream(self, length: int, stream: Iterable[bytes]) -> Source:
        """Publish `length` bytes read from `stream`."""

    def upload_bytes(self, data: bytes) -> Source:
        return self.upload_stream(len(data), iter([data]))

    def upload_file(self, path: str | Path) -> Source:
        path = Path(path)
        return self.upload_stream(path.stat().st_size, _file_chunks(path))


class OutputStorageProvider(ABC):
    @abstractmethod
    def new_destination(self, destination_file: str | Path | None = None) -> Destination:
        """Allocate a destination, optionally backed by `destination_file`."""


class StorageProvider(InputStorageProvider, OutputStorageProvider):
    """A backend usable in both directions."""


class ComposedStorageProvider(StorageProvider):
    """Combines separate input and output backends into one provider."""

    def __init__(self, input_storage: InputStorageProvider, output_storage: OutputStorageProvider):
        self._input = input_storage
        self._output = output_storage

    def upload_stream(self, length: int, stream: Iterable[bytes]) -> Source:
        return self._input.upload_stream(length, stream)

    def upload_bytes(self, data: bytes) -> Source:
        return self._input.upload_bytes(data)

    def upload_file(self, path: str | Path) -> Source:
        return self._input.upload_file(path)

    def new_destination(self, destination_file: str | Path | None = None) -> Destination:
        return self._output.new_destination(destination_file)
