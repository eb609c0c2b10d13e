"""Agreement pool: turns scored proposals into confirmed, reusable agreements.

The pool keeps the most recent proposal per provider and a table of confirmed
agreements. `use_agreement` picks an agreement (reusing a tracked one when
possible, negotiating a new one otherwise) and binds a worker task to it.
Released agreements stay in the pool for reuse only when both sides of the
agreement advertise multi-activity support; every other release terminates
the agreement in the background.

All bookkeeping happens under a single lock. Market RPCs (agreement creation,
detail fetch, confirmation, termination) run without holding it: a chosen
proposal is removed from the buffer before its RPCs start, and a freshly
confirmed agreement is published already reserved for the caller that
negotiated it.
"""

from __future__ import annotations

import concurrent.futures
import logging
import random
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from golem_requestor import props
from golem_requestor.errors import (
    AgreementConfirmationFailed,
    AgreementCreationFailed,
    AgreementNotFound,
    ProposalSelectionEmpty,
    WorkerAlreadyBound,
)
from golem_requestor.events import (
    AgreementConfirmed,
    AgreementCreated,
    AgreementRejected,
    AgreementTerminated,
    Emitter,
    ProposalFailed,
    discard,
)
from golem_requestor.props.models import NodeInfo
from golem_requestor.rest.market import Agreement, OfferProposal

logger = logging.getLogger(__name__)

RELEASE_REASON: Mapping[str, str] = {
    "message": "Work cancelled",
    "golem.requestor.code": "Cancelled",
}


class Task(Protocol):
    """Unit of work bound to an agreement. `concurrent.futures.Future` fits."""

    def done(self) -> bool: ...

    def cancel(self) -> bool: ...

    def exception(self, timeout: float | None = None) -> BaseException | None: ...


BindFn = Callable[[Agreement, NodeInfo], Task]


@dataclass(frozen=True)
class BufferedProposal:
    score: float
    proposal: OfferProposal
    received_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass
class _BufferedAgreement:
    agreement: Agreement
    node_info: NodeInfo
    has_multi_activity: bool
    worker_task: Task | None = None
    # Set between selection and the bind callback returning.
    reserved: bool = False
    terminating: bool = False

    @property
    def bound(self) -> bool:
        return self.worker_task is not None or self.reserved


def _task_error(task: Task) -> BaseException | None:
    try:
        return task.exception(timeout=0)
    except concurrent.futures.CancelledError as e:
        return e


class AgreementPool:
    def __init__(
        self,
        emitter: Emitter | None = None,
        *,
        log: logging.Logger | None = None,
        rng: random.Random | None = None,
        executor: concurrent.futures.Executor | None = None,
    ) -> None:
        self._emit = emitter or discard
        self._logger = log or logger
        self._rng = rng or random.Random()
        self._owns_executor = executor is None
        self._executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="agreement-terminate"
        )
        self._lock = threading.Lock()
        self._offer_buffer: dict[str, BufferedProposal] = {}
        self._agreements: dict[str, _BufferedAgreement] = {}
        self._terminations: set[concurrent.futures.Future[None]] = set()
        self.rejected_providers: set[str] = set()
        self.confirmed = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._agreements)

    def agreement_ids(self) -> list[str]:
        with self._lock:
            return list(self._agreements)

    def buffered_proposals(self) -> dict[str, BufferedProposal]:
        with self._lock:
            return dict(self._offer_buffer)

    # Proposals

    def add_proposal(self, score: float, proposal: OfferProposal) -> None:
        """Buffer `proposal`, replacing any earlier one from the same issuer."""

        with self._lock:
            self._offer_buffer[proposal.issuer] = BufferedProposal(score=score, proposal=proposal)

    # Selection and binding

    def use_agreement(self, bind: BindFn) -> Task:
        """Obtain an agreement and bind the task produced by `bind` to it.

        Raises:
            ProposalSelectionEmpty: nothing tracked and nothing buffered.
            WorkerAlreadyBound: the selected agreement already has a worker.
            AgreementCreationFailed / AgreementConfirmationFailed: negotiation failed.
        """

        with self._lock:
            entry, chosen = self._select_unlocked()
            if entry is not None:
                if entry.bound:
                    raise WorkerAlreadyBound(entry.agreement.id)
                entry.reserved = True
                self._logger.info(
                    "Reusing agreement", extra={"agreement_id": entry.agreement.id}
                )

        if entry is None:
            assert chosen is not None
            entry = self._negotiate(chosen)

        try:
            task = bind(entry.agreement, entry.node_info)
        except BaseException:
            with self._lock:
                entry.reserved = False
            raise

        with self._lock:
            entry.reserved = False
            entry.worker_task = task
            dropped = self._agreements.get(entry.agreement.id) is not entry
        if dropped:
            # Terminated by the remote side while the worker was being created.
            task.cancel()
        return task

    def _select_unlocked(self) -> tuple[_BufferedAgreement | None, BufferedProposal | None]:
        candidates = [a for a in self._agreements.values() if not a.terminating]
        if candidates:
            return self._rng.choice(candidates), None

        if not self._offer_buffer:
            raise ProposalSelectionEmpty()
        max_score = max(bp.score for bp in self._offer_buffer.values())
        best = [bp for bp in self._offer_buffer.values() if bp.score == max_score]
        chosen = self._rng.choice(best)
        del self._offer_buffer[chosen.proposal.issuer]
        return None, chosen

    def _negotiate(self, chosen: BufferedProposal) -> _BufferedAgreement:
        proposal = chosen.proposal
        try:
            agreement = proposal.create_agreement()
        except AgreementCreationFailed as e:
            self._emit(ProposalFailed(prop_id=proposal.id, exc_info=e))
            raise

        try:
            details = agreement.details()
            provider_activity = details.provider_view.extract(props.Activity)
            requester_activity = details.requester_view.extract(props.Activity)
            node_info = details.provider_view.extract(NodeInfo)
        except Exception:
            # The agreement is not tracked yet; terminate it here.
            self._submit_termination(agreement, RELEASE_REASON)
            raise
        self._logger.info(
            "New agreement",
            extra={"agreement_id": agreement.id, "provider": node_info.name},
        )
        self._emit(
            AgreementCreated(
                agr_id=agreement.id, provider_id=proposal.issuer, provider_info=node_info
            )
        )

        try:
            agreement.confirm()
        except AgreementConfirmationFailed as e:
            with self._lock:
                self.rejected_providers.add(proposal.issuer)
            self._emit(AgreementRejected(agr_id=agreement.id, exc_info=e))
            raise

        entry = _BufferedAgreement(
            agreement=agreement,
            node_info=node_info,
            has_multi_activity=bool(
                provider_activity.multi_activity and requester_activity.multi_activity
            ),
            reserved=True,
        )
        with self._lock:
            self.rejected_providers.discard(proposal.issuer)
            self._agreements[agreement.id] = entry
            self.confirmed += 1
        self._emit(AgreementConfirmed(agr_id=agreement.id))
        return entry

    # Release and termination

    def cycle(self) -> None:
        """Release every agreement whose worker task has finished.

        Reuse is allowed only when the task finished without an error.
        """

        # Only a finished task has a terminal error to decide reuse on, so
        # running workers are left bound.
        with self._lock:
            finished = [
                (agreement_id, entry.worker_task)
                for agreement_id, entry in self._agreements.items()
                if entry.worker_task is not None and entry.worker_task.done()
            ]

        for agreement_id, task in finished:
            error = _task_error(task)
            if error is not None:
                self._logger.debug(
                    "Worker finished with an error",
                    extra={"agreement_id": agreement_id, "error": repr(error)},
                )
            try:
                self.release_agreement(agreement_id, allow_reuse=error is None)
            except AgreementNotFound:
                continue

    def release_agreement(
        self, agreement_id: str, allow_reuse: bool = True
    ) -> concurrent.futures.Future[None] | None:
        """Unbind the worker; terminate unless the agreement can be reused.

        Returns the handle of the background termination, if one was started.
        """

        with self._lock:
            entry = self._agreements.get(agreement_id)
            if entry is None:
                raise AgreementNotFound(agreement_id)
            entry.worker_task = None
            if allow_reuse and entry.has_multi_activity:
                return None
            entry.terminating = True
        return self._submit_termination(entry.agreement, RELEASE_REASON)

    def terminate_all(self, reason: Mapping[str, str]) -> list[concurrent.futures.Future[None]]:
        with self._lock:
            # Entries already terminating have a termination in flight.
            entries = [e for e in self._agreements.values() if not e.terminating]
            for entry in entries:
                entry.terminating = True
        return [self._submit_termination(entry.agreement, reason) for entry in entries]

    def on_agreement_terminated(self, agreement_id: str, reason: Mapping[str, str]) -> None:
        """Handle a termination reported by the remote side."""

        with self._lock:
            entry = self._agreements.pop(agreement_id, None)
        if entry is not None and entry.worker_task is not None:
            entry.worker_task.cancel()
        self._emit(AgreementTerminated(agr_id=agreement_id, reason=dict(reason)))

    def _submit_termination(
        self, agreement: Agreement, reason: Mapping[str, str]
    ) -> concurrent.futures.Future[None]:
        future = self._executor.submit(self._terminate, agreement, reason)
        with self._lock:
            self._terminations.add(future)
        future.add_done_callback(self._forget_termination)
        return future

    def _forget_termination(self, future: concurrent.futures.Future[None]) -> None:
        with self._lock:
            self._terminations.discard(future)

    def _terminate(self, agreement: Agreement, reason: Mapping[str, str]) -> None:
        with self._lock:
            entry = self._agreements.get(agreement.id)
            task = entry.worker_task if entry is not None else None
        if task is not None and not task.done():
            task.cancel()

        self._logger.debug(
            "Terminating agreement", extra={"agreement_id": agreement.id, "reason": dict(reason)}
        )
        error: BaseException | None = None
        try:
            agreement.terminate(reason)
        except Exception as e:
            error = e
            self._logger.warning(
                "Failed to terminate agreement",
                extra={"agreement_id": agreement.id},
                exc_info=True,
            )

        with self._lock:
            self._agreements.pop(agreement.id, None)
        self._emit(AgreementTerminated(agr_id=agreement.id, reason=dict(reason), exc_info=error))

    def join(self, timeout: float | None = None) -> bool:
        """Wait for outstanding terminations; returns False on timeout."""

        with self._lock:
            pending = list(self._terminations)
        if not pending:
            return True
        _, not_done = concurrent.futures.wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, timeout: float | None = None) -> bool:
        finished = self.join(timeout)
        if self._owns_executor:
            self._executor.shutdown(wait=finished)
        return finished
