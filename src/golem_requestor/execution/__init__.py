"""Remote batch execution: command scripts and their ordered result events."""

from golem_requestor.execution.batch import (
    Batch,
    PollingBatch,
    ServerSentEvent,
    StreamingBatch,
    classify_result,
    classify_runtime_event,
    parse_sse,
)
from golem_requestor.execution.commands import (
    CommandContainer,
    CommandEvent,
    CommandExecuted,
    CommandStarted,
    CommandStdErr,
    CommandStdOut,
    computation_finished,
)

__all__ = [
    "Batch",
    "CommandContainer",
    "CommandEvent",
    "CommandExecuted",
    "CommandStarted",
    "CommandStdErr",
    "CommandStdOut",
    "PollingBatch",
    "ServerSentEvent",
    "StreamingBatch",
    "classify_result",
    "classify_runtime_event",
    "computation_finished",
    "parse_sse",
]
