"""Exception hierarchy for the requestor engine."""

from __future__ import annotations


class RequestorError(Exception):
    """Base class for every error raised by this package."""


# Agreement lifecycle


class ProposalSelectionEmpty(RequestorError):
    """No agreement is tracked and no proposal is buffered."""

    def __init__(self) -> None:
        super().__init__("No proposals or agreements available")


class AgreementCreationFailed(RequestorError):
    def __init__(self, proposal_id: str, reason: str = "") -> None:
        self.proposal_id = proposal_id
        msg = f"Could not create an agreement from proposal {proposal_id}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class AgreementConfirmationFailed(RequestorError):
    def __init__(self, agreement_id: str, reason: str = "") -> None:
        self.agreement_id = agreement_id
        msg = f"Agreement {agreement_id} was not confirmed"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class ApprovalTimeout(AgreementConfirmationFailed):
    """The provider did not approve the agreement before the client-side timeout."""

    def __init__(self, agreement_id: str) -> None:
        super().__init__(agreement_id, "client-side approval timeout")


class WorkerAlreadyBound(RequestorError):
    def __init__(self, agreement_id: str) -> None:
        self.agreement_id = agreement_id
        super().__init__(f"Agreement {agreement_id} already has a worker bound")


class AgreementNotFound(RequestorError, KeyError):
    def __init__(self, agreement_id: str) -> None:
        self.agreement_id = agreement_id
        super().__init__(agreement_id)

    def __str__(self) -> str:
        return f"Agreement not found in the pool: {self.agreement_id}"


# Batch pipeline


class BatchError(RequestorError):
    """Base class for errors that end a single batch."""

    def __init__(self, batch_id: str, message: str) -> None:
        self.batch_id = batch_id
        super().__init__(f"batch {batch_id}: {message}")


class OrderingViolation(BatchError):
    def __init__(self, batch_id: str, expected: int, got: int) -> None:
        self.expected = expected
        self.got = got
        super().__init__(batch_id, f"expected command index {expected}, got {got}")


class BatchTimeout(BatchError):
    def __init__(self, batch_id: str) -> None:
        super().__init__(batch_id, "deadline elapsed before the batch completed")


class BatchCancelled(BatchError):
    def __init__(self, batch_id: str) -> None:
        super().__init__(batch_id, "cancelled")


class SubscriptionError(BatchError):
    """Opening or reading the event stream failed; the caller may retry."""


class UnsupportedEventKind(BatchError):
    def __init__(self, batch_id: str, kind: str) -> None:
        self.kind = kind
        super().__init__(batch_id, f"unsupported event: {kind!r}")


class OperationCancelled(RequestorError):
    """A blocking operation outside a batch observed its cancel event."""


class CommandExecutionError(RequestorError):
    def __init__(self, command: str, message: str | None = None) -> None:
        self.command = command
        self.message = message
        text = f"Command {command} failed on provider"
        if message:
            text = f"{text} with message {message!r}"
        super().__init__(text)


# Work steps


class StepNotPrepared(RequestorError):
    """`register()` was called before `prepare()` produced what it needs."""


class DestinationNotPrepared(StepNotPrepared):
    def __init__(self, src_path: str) -> None:
        self.src_path = src_path
        super().__init__(f"command creation without prepare (receiving {src_path})")


class ContentDecodeError(RequestorError, ValueError):
    def __init__(self, src_path: str, reason: str) -> None:
        self.src_path = src_path
        super().__init__(f"Cannot decode content received from {src_path}: {reason}")


# REST layer


class ApiError(RequestorError):
    def __init__(self, method: str, url: str, status_code: int, body: str = "") -> None:
        self.method = method
        self.url = url
        self.status_code = status_code
        self.body = body
        super().__init__(f"{method} {url} returned {status_code}: {body[:200]}")


class PollTimeout(RequestorError):
    """The long-poll endpoint timed out without new results (HTTP 408)."""


class InvalidPropertiesError(RequestorError, ValueError):
    def __init__(self, detail: str = "") -> None:
        msg = "Invalid properties"
        if detail:
            msg = f"{msg} {{{detail}}}"
        super().__init__(msg)
