"""Domain events emitted to the caller.

Every variant is a flat frozen dataclass. Shared information is composed in
rather than inherited: each event carries `exc_info` (the error that caused it,
if any) and proposal/agreement/script scoped events carry their correlation id.
Consumers dispatch on the concrete class.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TypeAlias

from golem_requestor.props.models import NodeInfo


@dataclass(frozen=True, slots=True)
class ProposalFailed:
    prop_id: str
    exc_info: BaseException | None = None


@dataclass(frozen=True, slots=True)
class AgreementCreated:
    agr_id: str
    provider_id: str
    provider_info: NodeInfo
    exc_info: BaseException | None = None


@dataclass(frozen=True, slots=True)
class AgreementConfirmed:
    agr_id: str
    exc_info: BaseException | None = None


@dataclass(frozen=True, slots=True)
class AgreementRejected:
    agr_id: str
    exc_info: BaseException | None = None


@dataclass(frozen=True, slots=True)
class AgreementTerminated:
    agr_id: str
    reason: Mapping[str, str] = field(default_factory=dict)
    exc_info: BaseException | None = None


@dataclass(frozen=True, slots=True)
class ScriptSent:
    agr_id: str | None
    batch_id: str
    commands: tuple[dict[str, object], ...]
    exc_info: BaseException | None = None


@dataclass(frozen=True, slots=True)
class ScriptFinished:
    agr_id: str | None
    batch_id: str
    exc_info: BaseException | None = None


@dataclass(frozen=True, slots=True)
class DownloadStarted:
    path: str
    exc_info: BaseException | None = None


@dataclass(frozen=True, slots=True)
class DownloadFinished:
    path: str
    exc_info: BaseException | None = None


Event: TypeAlias = (
    ProposalFailed
    | AgreementCreated
    | AgreementConfirmed
    | AgreementRejected
    | AgreementTerminated
    | ScriptSent
    | ScriptFinished
    | DownloadStarted
    | DownloadFinished
)

Emitter: TypeAlias = Callable[[Event], None]


def discard(_event: Event) -> None:
    """Emitter used when the caller is not interested in events."""
