"""User-level work steps compiled into a single exe-script.

Every step goes through the same three phases, in order:

1. `prepare()` - local setup outside the script (publishing content, allocating
   a destination for results).
2. `register(commands)` - append the step's commands to the shared container.
3. `post(cancel)` - actions after the batch completed (fetching results).

`Steps` runs a list of steps phase by phase and stops at the first error.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any

from golem_requestor.errors import ContentDecodeError, DestinationNotPrepared, StepNotPrepared
from golem_requestor.events import DownloadFinished, DownloadStarted, Emitter, discard
from golem_requestor.execution.commands import CommandContainer
from golem_requestor.storage import (
    DOWNLOAD_BYTES_LIMIT_DEFAULT,
    Destination,
    Source,
    StorageProvider,
)


class CaptureMode(StrEnum):
    HEAD = "head"
    TAIL = "tail"
    HEAD_TAIL = "headTail"
    STREAM = "stream"


class CaptureFormat(StrEnum):
    BIN = "bin"
    STR = "str"


@dataclass(frozen=True, slots=True)
class CaptureSpec:
    """How the provider should capture one output stream of a `Run` command."""

    mode: CaptureMode
    limit: int | None = None
    fmt: CaptureFormat | None = None

    @classmethod
    def build(
        cls, mode: str = "all", limit: int | None = None, fmt: str | None = None
    ) -> CaptureSpec:
        """Validate user-facing options. `"all"` captures everything at the end."""

        capture_fmt = CaptureFormat(fmt) if fmt else None
        if mode in ("", "all"):
            return cls(mode=CaptureMode.HEAD, fmt=capture_fmt)
        try:
            capture_mode = CaptureMode(mode)
        except ValueError:
            raise ValueError(f"Invalid output capture mode: {mode}") from None
        if limit is not None and limit < 0:
            raise ValueError(f"Invalid output capture limit: {limit}")
        return cls(mode=capture_mode, limit=limit, fmt=capture_fmt)

    @property
    def is_streaming(self) -> bool:
        return self.mode is CaptureMode.STREAM

    def to_dict(self) -> dict[str, dict[str, Any]]:
        inner: dict[str, Any] = {}
        if self.limit is not None:
            inner[self.mode.value] = self.limit
        if self.fmt is not None:
            inner["format"] = self.fmt.value
        return {"stream": inner} if self.is_streaming else {"atEnd": inner}


class WorkStep:
    """Base step; every phase is a no-op unless overridden."""

    timeout: timedelta | None = None

    def prepare(self) -> None:
        pass

    def register(self, commands: CommandContainer) -> None:
        pass

    def post(self, cancel: threading.Event | None = None) -> None:
        pass


class Init(WorkStep):
    """Deploy and start the execution unit."""

    def register(self, commands: CommandContainer) -> None:
        commands.add("deploy")
        commands.add("start")


class _SendWork(WorkStep):
    def __init__(self, storage: StorageProvider, dst_path: str) -> None:
        self._storage = storage
        self._dst_path = dst_path
        self._src: Source | None = None
        self._idx: int | None = None

    def _do_upload(self, storage: StorageProvider) -> Source:
        raise NotImplementedError

    def prepare(self) -> None:
        self._src = self._do_upload(self._storage)

    def register(self, commands: CommandContainer) -> None:
        if self._src is None:
            raise StepNotPrepared(f"transfer to {self._dst_path} registered before prepare")
        self._idx = commands.add(
            "transfer", _from=self._src.download_url(), _to=f"container:{self._dst_path}"
        )


class SendBytes(_SendWork):
    def __init__(self, storage: StorageProvider, dst_path: str, data: bytes) -> None:
        super().__init__(storage, dst_path)
        self._data = data

    def _do_upload(self, storage: StorageProvider) -> Source:
        return storage.upload_bytes(self._data)


class SendJson(SendBytes):
    def __init__(self, storage: StorageProvider, dst_path: str, data: Any) -> None:
        super().__init__(storage, dst_path, json.dumps(data).encode("utf-8"))


class SendFile(_SendWork):
    def __init__(self, storage: StorageProvider, src_path: str | Path, dst_path: str) -> None:
        super().__init__(storage, dst_path)
        self._src_path = Path(src_path)

    def _do_upload(self, storage: StorageProvider) -> Source:
        return storage.upload_file(self._src_path)


class Run(WorkStep):
    """Run `cmd` with `args` inside the execution unit."""

    def __init__(
        self,
        cmd: str,
        *args: str,
        env: Mapping[str, str] | None = None,
        stdout: CaptureSpec | None = None,
        stderr: CaptureSpec | None = None,
    ) -> None:
        self.cmd = cmd
        self.args = args
        self.env = dict(env) if env else None
        self.stdout = stdout
        self.stderr = stderr
        self._idx: int | None = None

    def register(self, commands: CommandContainer) -> None:
        capture: dict[str, Any] = {}
        if self.stdout is not None:
            capture["stdout"] = self.stdout.to_dict()
        if self.stderr is not None:
            capture["stderr"] = self.stderr.to_dict()
        kwargs: dict[str, Any] = {
            "entry_point": self.cmd,
            "args": list(self.args),
            "capture": capture,
        }
        if self.env:
            kwargs["env"] = self.env
        self._idx = commands.add("run", **kwargs)


class _ReceiveContent(WorkStep):
    def __init__(
        self,
        storage: StorageProvider,
        src_path: str,
        *,
        dst_path: str | Path | None = None,
        emitter: Emitter | None = None,
    ) -> None:
        self._storage = storage
        self._src_path = src_path
        self._dst_path = dst_path
        self._emit = emitter or discard
        self._dst_slot: Destination | None = None
        self._idx: int | None = None

    def prepare(self) -> None:
        self._dst_slot = self._storage.new_destination(self._dst_path)

    def register(self, commands: CommandContainer) -> None:
        if self._dst_slot is None:
            raise DestinationNotPrepared(self._src_path)
        self._idx = commands.add(
            "transfer", _from=f"container:{self._src_path}", _to=self._dst_slot.upload_url()
        )

    def _slot(self) -> Destination:
        if self._dst_slot is None:
            raise DestinationNotPrepared(self._src_path)
        return self._dst_slot

    def _emit_download_start(self) -> None:
        self._emit(DownloadStarted(path=self._src_path))

    def _emit_download_end(self) -> None:
        path = self._dst_path if self._dst_path is not None else self._src_path
        self._emit(DownloadFinished(path=str(path)))


class ReceiveFile(_ReceiveContent):
    def __init__(
        self,
        storage: StorageProvider,
        src_path: str,
        dst_path: str | Path,
        emitter: Emitter | None = None,
    ) -> None:
        super().__init__(storage, src_path, dst_path=dst_path, emitter=emitter)

    def post(self, cancel: threading.Event | None = None) -> None:
        slot = self._slot()
        self._emit_download_start()
        assert self._dst_path is not None
        slot.download_file(self._dst_path, cancel=cancel)
        self._emit_download_end()


class ReceiveBytes(_ReceiveContent):
    def __init__(
        self,
        storage: StorageProvider,
        src_path: str,
        on_download: Callable[[bytes], None],
        limit: int = DOWNLOAD_BYTES_LIMIT_DEFAULT,
        emitter: Emitter | None = None,
    ) -> None:
        super().__init__(storage, src_path, emitter=emitter)
        self._on_download = on_download
        self._limit = limit

    def _download(self, cancel: threading.Event | None) -> bytes:
        slot = self._slot()
        self._emit_download_start()
        data = slot.download_bytes(limit=self._limit, cancel=cancel)
        self._emit_download_end()
        return data

    def post(self, cancel: threading.Event | None = None) -> None:
        self._on_download(self._download(cancel))


class ReceiveJson(ReceiveBytes):
    def __init__(
        self,
        storage: StorageProvider,
        src_path: str,
        on_download: Callable[[Any], None],
        limit: int = DOWNLOAD_BYTES_LIMIT_DEFAULT,
        emitter: Emitter | None = None,
    ) -> None:
        super().__init__(storage, src_path, on_download, limit=limit, emitter=emitter)

    def post(self, cancel: threading.Event | None = None) -> None:
        data = self._download(cancel)
        try:
            content = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ContentDecodeError(self._src_path, str(e)) from e
        self._on_download(content)


class Steps(WorkStep):
    """Ordered group of steps dispatched as one script."""

    def __init__(self, *steps: WorkStep, timeout: timedelta | None = None) -> None:
        self.steps = steps
        self.timeout = timeout

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[WorkStep]:
        return iter(self.steps)

    def prepare(self) -> None:
        for step in self.steps:
            step.prepare()

    def register(self, commands: CommandContainer) -> None:
        for step in self.steps:
            step.register(commands)

    def post(self, cancel: threading.Event | None = None) -> None:
        for step in self.steps:
            step.post(cancel)
