"""Activity API: execution units created on top of an agreement."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from types import TracebackType
from typing import Any

import requests
from pydantic import BaseModel, ConfigDict, Field

from golem_requestor.errors import ApiError, PollTimeout
from golem_requestor.execution.batch import Batch, PollingBatch, StreamingBatch
from golem_requestor.rest.client import ApiClient

logger = logging.getLogger(__name__)

DEFAULT_BATCH_TIMEOUT = timedelta(minutes=5)


class ExeScriptCommandResult(BaseModel):
    """One record of the batch results endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    index: int
    result: str
    message: str | None = None
    stdout: str | None = None
    stderr: str | None = None
    is_batch_finished: bool = Field(default=False, alias="isBatchFinished")


class ActivityState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    state: list[str | None] = Field(default_factory=list)
    reason: str | None = None
    error_message: str | None = Field(default=None, alias="errorMessage")


def _unwrap_id(data: Any, key: str) -> str:
    if isinstance(data, dict):
        value = data.get(key)
        if not isinstance(value, str):
            raise ValueError(f"Unexpected response: missing {key}")
        return value
    if isinstance(data, str) and data:
        return data
    raise ValueError(f"Unexpected response: missing {key}")


class ActivityApi(ApiClient):
    """Requestor control and state endpoints of the activity REST API."""

    def create_activity(self, agreement_id: str) -> str:
        resp = self._request("POST", "activity", json={"agreementId": agreement_id})
        return _unwrap_id(self._json(resp), "activityId")

    def destroy_activity(self, activity_id: str) -> None:
        self._request("DELETE", f"activity/{activity_id}")

    def get_state(self, activity_id: str) -> ActivityState:
        resp = self._request("GET", f"activity/{activity_id}/state")
        return ActivityState.model_validate(self._json(resp))

    def exec(self, activity_id: str, script: Sequence[dict[str, Any]]) -> str:
        resp = self._request(
            "POST", f"activity/{activity_id}/exec", json={"text": json.dumps(list(script))}
        )
        return _unwrap_id(self._json(resp), "batchId")

    def get_exec_batch_results(
        self,
        activity_id: str,
        batch_id: str,
        *,
        timeout: float,
        max_count: int | None = None,
    ) -> list[ExeScriptCommandResult]:
        """Long-poll the results of a batch.

        Raises:
            PollTimeout: the server answered 408 or the request itself timed out;
                both mean "nothing new yet".
        """

        params: dict[str, Any] = {"timeout": timeout}
        if max_count is not None:
            params["maxCount"] = max_count
        try:
            resp = self._request(
                "GET",
                f"activity/{activity_id}/exec/{batch_id}",
                params=params,
                # Leave the server room to answer before the transport gives up.
                timeout=timeout + 1.0,
                allowed=frozenset({408}),
            )
        except requests.Timeout as e:
            raise PollTimeout(str(e)) from e
        if resp.status_code == 408:
            raise PollTimeout(f"batch {batch_id}: no new results within {timeout}s")
        data = self._json(resp) or []
        return [ExeScriptCommandResult.model_validate(item) for item in data]

    def stream_exec_batch(
        self, activity_id: str, batch_id: str, *, timeout: float
    ) -> requests.Response:
        """Open the server-sent-events stream of a batch.

        `timeout` is the read timeout between two chunks of the stream.
        """

        return self._request(
            "GET",
            f"activity/{activity_id}/exec/{batch_id}",
            headers={"Accept": "text/event-stream"},
            stream=True,
            timeout=(self._timeout, timeout),
        )


class Activity:
    """Handle to a remote execution unit bound to an agreement."""

    def __init__(
        self, *, api: ActivityApi, activity_id: str, agreement_id: str | None = None
    ) -> None:
        self._api = api
        self._id = activity_id
        self.agreement_id = agreement_id

    @classmethod
    def create(cls, api: ActivityApi, agreement_id: str) -> Activity:
        activity_id = api.create_activity(agreement_id)
        logger.debug(
            "Activity created", extra={"activity_id": activity_id, "agreement_id": agreement_id}
        )
        return cls(api=api, activity_id=activity_id, agreement_id=agreement_id)

    def __repr__(self) -> str:
        return f"Activity({self._id!r})"

    @property
    def id(self) -> str:
        return self._id

    def state(self) -> ActivityState:
        return self._api.get_state(self._id)

    def send(
        self,
        script: Sequence[dict[str, Any]],
        *,
        stream: bool = False,
        deadline: datetime | None = None,
    ) -> Batch:
        """Dispatch `script` and return the batch that reports its results."""

        batch_id = self._api.exec(self._id, script)
        deadline = deadline or datetime.now(tz=UTC) + DEFAULT_BATCH_TIMEOUT
        batch_cls = StreamingBatch if stream else PollingBatch
        batch = batch_cls(
            api=self._api,
            activity_id=self._id,
            batch_id=batch_id,
            size=len(script),
            deadline=deadline,
        )
        logger.debug(
            "Script sent",
            extra={"activity_id": self._id, "batch_id": batch_id, "size": len(script)},
        )
        return batch

    def destroy(self) -> None:
        try:
            self._api.destroy_activity(self._id)
        except (ApiError, requests.RequestException):
            logger.debug(
                "Got API exception when destroying activity",
                extra={"activity_id": self._id},
                exc_info=True,
            )
            return
        logger.debug("Activity destroyed successfully", extra={"activity_id": self._id})

    def __enter__(self) -> Activity:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            logger.debug(
                "Destroying activity after error",
                extra={"activity_id": self._id, "error": repr(exc)},
            )
        self.destroy()
