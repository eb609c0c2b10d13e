"""Work orchestration: steps, the per-provider context and the executor."""

from golem_requestor.work.context import WorkContext
from golem_requestor.work.executor import DEFAULT_STEPS_TIMEOUT, execute_steps
from golem_requestor.work.steps import (
    CaptureFormat,
    CaptureMode,
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

__all__ = [
    "DEFAULT_STEPS_TIMEOUT",
    "CaptureFormat",
    "CaptureMode",
    "CaptureSpec",
    "Init",
    "ReceiveBytes",
    "ReceiveFile",
    "ReceiveJson",
    "Run",
    "SendBytes",
    "SendFile",
    "SendJson",
    "Steps",
    "WorkContext",
    "WorkStep",
    "execute_steps",
]
