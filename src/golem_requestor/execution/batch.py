"""Result consumption for dispatched exe-script batches.

Two transports are supported and share the `Batch` bookkeeping:

- `PollingBatch` long-polls the batch results endpoint.
- `StreamingBatch` subscribes to the server-sent runtime events of the batch.

Both expose `events(cancel)`, a generator yielding `CommandEvent`s in command
index order. Terminal errors (`BatchTimeout`, `BatchCancelled`,
`OrderingViolation`, `UnsupportedEventKind`) are raised from the generator.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import requests
from pydantic import BaseModel, ValidationError

from golem_requestor.errors import (
    ApiError,
    BatchCancelled,
    BatchTimeout,
    OrderingViolation,
    PollTimeout,
    SubscriptionError,
    UnsupportedEventKind,
)
from golem_requestor.execution.commands import (
    CommandEvent,
    CommandExecuted,
    CommandStarted,
    CommandStdErr,
    CommandStdOut,
    computation_finished,
)

if TYPE_CHECKING:
    from golem_requestor.rest.activity import ActivityApi, ExeScriptCommandResult

logger = logging.getLogger(__name__)

# Upper bound of a single long-poll fetch.
POLL_TIMEOUT_CAP_SECONDS = 5.0
# Upper bound of the pause after a fetch cycle that brought nothing new.
POLL_IDLE_DELAY_CAP_SECONDS = 3.0
# Pause before re-subscribing after the event stream failed.
RESUBSCRIBE_DELAY_SECONDS = 5.0
# Read timeout on the event stream; bounds how long a cancel can go unnoticed.
STREAM_READ_TIMEOUT_CAP_SECONDS = 5.0

RUNTIME_EVENT = "runtime"


class Batch(ABC):
    """A script dispatched to an activity, identified by `(activity_id, batch_id)`."""

    def __init__(
        self,
        *,
        api: ActivityApi,
        activity_id: str,
        batch_id: str,
        size: int,
        deadline: datetime,
        log: logging.Logger | None = None,
    ) -> None:
        self._api = api
        self.activity_id = activity_id
        self._id = batch_id
        self.size = size
        self.deadline = deadline
        self._logger = log or logger
        self._last_idx = 0
        self._done = False

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(activity_id={self.activity_id!r}, batch_id={self._id!r}, "
            f"size={self.size})"
        )

    @property
    def id(self) -> str:
        return self._id

    @property
    def last_seen_index(self) -> int:
        """Index of the next command whose result has not been consumed yet."""

        return self._last_idx

    @property
    def done(self) -> bool:
        return self._done

    def seconds_left(self) -> float:
        return (self.deadline - datetime.now(tz=UTC)).total_seconds()

    def __iter__(self) -> Iterator[CommandEvent]:
        return self.events()

    @abstractmethod
    def events(self, cancel: threading.Event | None = None) -> Iterator[CommandEvent]:
        """Yield command events in order until the batch completes."""

    def _ensure_active(self, cancel: threading.Event) -> float:
        """Return the seconds left, or raise if cancelled or past the deadline."""

        if cancel.is_set():
            raise BatchCancelled(self._id)
        remaining = self.seconds_left()
        if remaining <= 0:
            raise BatchTimeout(self._id)
        return remaining


def classify_result(result: ExeScriptCommandResult) -> CommandExecuted:
    """Turn one long-poll result record into a `CommandExecuted` event."""

    message = result.message
    if message is None and (result.stdout is not None or result.stderr is not None):
        message = json.dumps({"stdout": result.stdout, "stderr": result.stderr})
    return CommandExecuted(
        index=result.index,
        success=result.result.lower() == "ok",
        message=message,
    )


class PollingBatch(Batch):
    def events(self, cancel: threading.Event | None = None) -> Iterator[CommandEvent]:
        cancel = cancel or threading.Event()
        while self._last_idx < self.size:
            remaining = self._ensure_active(cancel)
            try:
                results = self._api.get_exec_batch_results(
                    self.activity_id,
                    self._id,
                    timeout=min(remaining, POLL_TIMEOUT_CAP_SECONDS),
                    max_count=self.size - self._last_idx,
                )
            except PollTimeout:
                continue
            except ApiError as e:
                if e.status_code < 500:
                    raise
                self._logger.debug(
                    "Batch results endpoint unavailable, retrying",
                    extra={"batch_id": self._id, "status_code": e.status_code},
                )
                results = []
            except requests.RequestException:
                self._logger.debug(
                    "Fetching batch results failed, retrying",
                    extra={"batch_id": self._id},
                    exc_info=True,
                )
                results = []

            any_new = False
            for result in results:
                # The endpoint may return results we have already consumed.
                if result.index < self._last_idx:
                    continue
                if result.index != self._last_idx:
                    raise OrderingViolation(self._id, self._last_idx, result.index)
                if cancel.is_set():
                    raise BatchCancelled(self._id)

                any_new = True
                self._last_idx = result.index + 1
                if result.is_batch_finished:
                    self._done = True
                yield classify_result(result)
                if self._done:
                    return

            if not any_new:
                delay = min(POLL_IDLE_DELAY_CAP_SECONDS, max(0.0, self.seconds_left()))
                if cancel.wait(delay):
                    raise BatchCancelled(self._id)

        self._done = True


@dataclass(frozen=True, slots=True)
class ServerSentEvent:
    event: str
    data: str
    id: str | None = None


def parse_sse(lines: Iterable[str | bytes]) -> Iterator[ServerSentEvent]:
    """Frame a line iterator into server-sent events.

    Only the subset of the format the daemon uses is handled: `event`, `data`
    (multi-line data joined with newlines), `id` and comment lines. An event
    without data is dropped, as is a trailing event not closed by a blank line.
    """

    event = ""
    data: list[str] = []
    last_id: str | None = None
    for raw in lines:
        line = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        line = line.rstrip("\r")
        if not line:
            if data:
                yield ServerSentEvent(event=event or "message", data="\n".join(data), id=last_id)
            event = ""
            data = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
        elif name == "id":
            last_id = value


class _StartedKind(BaseModel):
    command: Any


class _FinishedKind(BaseModel):
    return_code: int
    message: str | None = None


class _RuntimeEvent(BaseModel):
    index: int
    kind: dict[str, Any]


_RUNTIME_KINDS = frozenset({"started", "finished", "stdout", "stderr"})


def classify_runtime_event(batch_id: str, sse: ServerSentEvent) -> CommandEvent:
    """Decode one `runtime` server-sent event into a `CommandEvent`.

    The payload's `kind` is a tagged object that must hold exactly one of
    `started`, `finished`, `stdout` or `stderr`.
    """

    if sse.event != RUNTIME_EVENT:
        raise UnsupportedEventKind(batch_id, sse.event)
    try:
        evt = _RuntimeEvent.model_validate_json(sse.data)
    except ValidationError as e:
        raise UnsupportedEventKind(batch_id, f"malformed runtime event: {e}") from e

    if len(evt.kind) != 1 or not _RUNTIME_KINDS.issuperset(evt.kind):
        raise UnsupportedEventKind(batch_id, ",".join(sorted(evt.kind)) or "<empty kind>")
    tag, value = next(iter(evt.kind.items()))

    try:
        if tag == "started":
            started = _StartedKind.model_validate(value)
            return CommandStarted(index=evt.index, command=started.command)
        if tag == "finished":
            finished = _FinishedKind.model_validate(value)
            return CommandExecuted(
                index=evt.index, success=finished.return_code == 0, message=finished.message
            )
    except ValidationError as e:
        raise UnsupportedEventKind(batch_id, f"invalid {tag} event: {e}") from e

    output = value if isinstance(value, str) else json.dumps(value)
    if tag == "stdout":
        return CommandStdOut(index=evt.index, output=output)
    return CommandStdErr(index=evt.index, output=output)


class StreamingBatch(Batch):
    """Consumes the batch's runtime events over a server-sent-events stream.

    The batch is complete once the `CommandExecuted` event of the last command
    (index `size - 1`) has been yielded.
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._current_idx = -1
        # Non-terminal events already yielded for the command still running.
        self._inflight_idx = -1
        self._inflight_seen = 0

    def _check_order(self, index: int) -> None:
        # The first event must belong to command 0; afterwards an event may
        # refer to the current command or the next one, never skip or go back.
        if self._current_idx < 0:
            expected = 0
            ok = index == 0
        else:
            expected = self._current_idx
            ok = index in (self._current_idx, self._current_idx + 1)
        if not ok:
            raise OrderingViolation(self._id, expected, index)
        self._current_idx = index

    def _subscribe(self, timeout: float) -> requests.Response:
        try:
            return self._api.stream_exec_batch(self.activity_id, self._id, timeout=timeout)
        except (ApiError, requests.RequestException) as e:
            raise SubscriptionError(self._id, f"cannot subscribe to the event stream: {e}") from e

    def events(self, cancel: threading.Event | None = None) -> Iterator[CommandEvent]:
        cancel = cancel or threading.Event()
        if self.size == 0:
            self._done = True
            return
        last_index = self.size - 1
        last_error: SubscriptionError | None = None

        while True:
            try:
                remaining = self._ensure_active(cancel)
            except BatchTimeout as e:
                raise e from last_error

            try:
                resp = self._subscribe(min(remaining, STREAM_READ_TIMEOUT_CAP_SECONDS))
            except SubscriptionError as e:
                last_error = e
                self._logger.warning(
                    "Event stream subscription failed, retrying",
                    extra={"batch_id": self._id, "error": str(e)},
                )
                if cancel.wait(min(RESUBSCRIBE_DELAY_SECONDS, max(0.0, self.seconds_left()))):
                    raise BatchCancelled(self._id) from e
                continue

            pause = True
            # A new subscription replays the batch from the start.
            replay_idx, replay_left = self._inflight_idx, self._inflight_seen
            try:
                with resp:
                    for sse in parse_sse(resp.iter_lines(decode_unicode=True)):
                        if cancel.is_set():
                            raise BatchCancelled(self._id)
                        if self.seconds_left() <= 0:
                            raise BatchTimeout(self._id)
                        event = classify_runtime_event(self._id, sse)
                        if event.index < self._last_idx:
                            continue
                        executed = isinstance(event, CommandExecuted)
                        if event.index == replay_idx and not executed and replay_left > 0:
                            replay_left -= 1
                            continue
                        self._check_order(event.index)
                        if executed:
                            self._last_idx = event.index + 1
                            self._inflight_idx, self._inflight_seen = -1, 0
                        else:
                            if event.index != self._inflight_idx:
                                self._inflight_idx, self._inflight_seen = event.index, 0
                            self._inflight_seen += 1
                        finished = computation_finished(event, last_index)
                        if finished:
                            self._done = True
                        yield event
                        if finished:
                            return
            except requests.RequestException as e:
                # A read timeout on a quiet stream surfaces here too; reconnect
                # right away so cancel and deadline get checked.
                pause = False
                last_error = SubscriptionError(self._id, f"event stream broken: {e}")
                self._logger.debug(
                    "Event stream broken", extra={"batch_id": self._id}, exc_info=True
                )

            if pause:
                self._logger.debug(
                    "Event stream ended before the batch completed",
                    extra={"batch_id": self._id, "last_seen_index": self._last_idx},
                )
                if cancel.wait(min(RESUBSCRIBE_DELAY_SECONDS, max(0.0, self.seconds_left()))):
                    raise BatchCancelled(self._id)
