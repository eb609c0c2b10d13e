from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypeAlias


class CommandContainer:
    """Append-only list of exe-script commands.

    A command's position in the container is its index in the batch, which is
    what result events refer back to.
    """

    def __init__(self) -> None:
        self._commands: list[dict[str, dict[str, Any]]] = []

    def __len__(self) -> int:
        return len(self._commands)

    def add(self, name: str, **kwargs: Any) -> int:
        """Append a command and return its index.

        Leading underscores are stripped from argument names so that Python
        keywords can be passed (`_from=...` becomes `from`).
        """

        args = {key.lstrip("_"): value for key, value in kwargs.items()}
        idx = len(self._commands)
        self._commands.append({name: args})
        return idx

    @property
    def commands(self) -> list[dict[str, dict[str, Any]]]:
        return [dict(c) for c in self._commands]


@dataclass(frozen=True, slots=True)
class CommandStarted:
    index: int
    command: Any


@dataclass(frozen=True, slots=True)
class CommandStdOut:
    index: int
    output: str


@dataclass(frozen=True, slots=True)
class CommandStdErr:
    index: int
    output: str


@dataclass(frozen=True, slots=True)
class CommandExecuted:
    index: int
    success: bool
    message: str | None = None


CommandEvent: TypeAlias = CommandStarted | CommandStdOut | CommandStdErr | CommandExecuted


def computation_finished(event: CommandEvent, last_index: int) -> bool:
    """True when `event` resolves the command at `last_index` (or beyond)."""

    return isinstance(event, CommandExecuted) and event.index >= last_index
