"""Per-provider work context accumulating steps for the next script."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from datetime import timedelta
from pathlib import Path
from typing import Any

from golem_requestor.events import Emitter
from golem_requestor.props.models import NodeInfo
from golem_requestor.storage import DOWNLOAD_BYTES_LIMIT_DEFAULT, StorageProvider
from golem_requestor.work.steps import (
    CaptureSpec,
    Init,
    ReceiveBytes,
    ReceiveFile,
    ReceiveJson,
    Run,
    SendBytes,
    SendFile,
    SendJson,
    Steps,
    WorkStep,
)


class WorkContext:
    """Collects the steps a worker wants to run on one provider.

    The first step added to a context is always preceded by an implicit `Init`
    (deploy and start); `commit()` hands the pending steps over as one `Steps`
    group and starts a fresh list.
    """

    def __init__(
        self,
        ctx_id: str,
        node_info: NodeInfo,
        storage: StorageProvider | None = None,
        emitter: Emitter | None = None,
    ) -> None:
        self.id = ctx_id
        self._node_info = node_info
        self._storage = storage
        self._emitter = emitter
        self._lock = threading.Lock()
        self._pending_steps: list[WorkStep] = []
        self._started = False

    def __repr__(self) -> str:
        return f"WorkContext({self.id!r}, provider={self.provider_name!r})"

    @property
    def provider_name(self) -> str | None:
        return self._node_info.name

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending_steps)

    def _require_storage(self) -> StorageProvider:
        if self._storage is None:
            raise ValueError(f"{self!r} has no storage provider for content transfers")
        return self._storage

    def _add(self, step: WorkStep) -> None:
        with self._lock:
            if not self._started:
                self._pending_steps.append(Init())
                self._started = True
            self._pending_steps.append(step)

    def send_json(self, json_path: str, data: Any) -> None:
        """Serialize `data` and place it at `json_path` in the execution unit."""

        self._add(SendJson(self._require_storage(), json_path, data))

    def send_bytes(self, dst_path: str, data: bytes) -> None:
        self._add(SendBytes(self._require_storage(), dst_path, data))

    def send_file(self, src_path: str | Path, dst_path: str) -> None:
        self._add(SendFile(self._require_storage(), src_path, dst_path))

    def run(
        self,
        cmd: str,
        *args: str,
        env: Mapping[str, str] | None = None,
        stdout: CaptureSpec | None = None,
        stderr: CaptureSpec | None = None,
    ) -> None:
        """Run `cmd`; output of both streams is captured as a stream by default."""

        self._add(
            Run(
                cmd,
                *args,
                env=env,
                stdout=stdout or CaptureSpec.build(mode="stream"),
                stderr=stderr or CaptureSpec.build(mode="stream"),
            )
        )

    def download_file(self, src_path: str, dst_path: str | Path) -> None:
        self._add(ReceiveFile(self._require_storage(), src_path, dst_path, emitter=self._emitter))

    def download_bytes(
        self,
        src_path: str,
        on_download: Callable[[bytes], None],
        limit: int = DOWNLOAD_BYTES_LIMIT_DEFAULT,
    ) -> None:
        self._add(
            ReceiveBytes(
                self._require_storage(),
                src_path,
                on_download,
                limit=limit,
                emitter=self._emitter,
            )
        )

    def download_json(
        self,
        src_path: str,
        on_download: Callable[[Any], None],
        limit: int = DOWNLOAD_BYTES_LIMIT_DEFAULT,
    ) -> None:
        self._add(
            ReceiveJson(
                self._require_storage(),
                src_path,
                on_download,
                limit=limit,
                emitter=self._emitter,
            )
        )

    def commit(self, timeout: timedelta | None = None) -> Steps:
        with self._lock:
            steps, self._pending_steps = self._pending_steps, []
        return Steps(*steps, timeout=timeout)
