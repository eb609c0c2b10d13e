"""Run committed steps on an activity and stream back their command events."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

from golem_requestor.errors import CommandExecutionError
from golem_requestor.events import Emitter, ScriptFinished, ScriptSent, discard
from golem_requestor.execution.commands import CommandContainer, CommandEvent, CommandExecuted
from golem_requestor.rest.activity import Activity
from golem_requestor.work.steps import WorkStep

logger = logging.getLogger(__name__)

DEFAULT_STEPS_TIMEOUT = timedelta(minutes=5)


def execute_steps(
    activity: Activity,
    steps: WorkStep,
    *,
    stream: bool = False,
    cancel: threading.Event | None = None,
    emitter: Emitter | None = None,
) -> Iterator[CommandEvent]:
    """Compile `steps` into one script, dispatch it and yield its events.

    `post()` of the steps runs only after every command completed. A failed
    command is yielded first and then raised as `CommandExecutionError`.
    """

    emit = emitter or discard
    cancel = cancel or threading.Event()

    steps.prepare()
    commands = CommandContainer()
    steps.register(commands)
    script = commands.commands

    deadline = datetime.now(tz=UTC) + (steps.timeout or DEFAULT_STEPS_TIMEOUT)
    batch = activity.send(script, stream=stream, deadline=deadline)
    emit(ScriptSent(agr_id=activity.agreement_id, batch_id=batch.id, commands=tuple(script)))

    for event in batch.events(cancel):
        yield event
        if isinstance(event, CommandExecuted) and not event.success:
            command = json.dumps(script[event.index]) if event.index < len(script) else "?"
            logger.debug(
                "Command failed",
                extra={"batch_id": batch.id, "index": event.index, "error": event.message},
            )
            raise CommandExecutionError(command, event.message)

    steps.post(cancel)
    emit(ScriptFinished(agr_id=activity.agreement_id, batch_id=batch.id))
