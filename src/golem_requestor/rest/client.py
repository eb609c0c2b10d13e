"""Shared HTTP plumbing for the daemon APIs."""

from __future__ import annotations

import logging
from typing import Any

import requests

from golem_requestor.errors import ApiError

logger = logging.getLogger(__name__)


class ApiClient:
    """Small wrapper around a `requests.Session` bound to one API root.

    The session is injectable so tests can pass a `Mock(spec=requests.Session)`.
    """

    def __init__(
        self,
        *,
        base_url: str,
        app_key: str,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not app_key:
            raise ValueError("API application key is required")
        if not base_url:
            raise ValueError("API base URL is required")

        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {app_key}",
                "Accept": "application/json",
                "User-Agent": "golem-requestor",
            }
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        allowed: frozenset[int] = frozenset(),
        timeout: float | tuple[float, float] | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Send a request and raise `ApiError` for unexpected statuses.

        Status codes listed in `allowed` are returned to the caller untouched.
        """

        url = self._url(path)
        resp = self._session.request(
            method, url, timeout=timeout if timeout is not None else self._timeout, **kwargs
        )
        if resp.status_code in allowed:
            return resp
        if resp.status_code >= 400:
            logger.debug(
                "API call failed",
                extra={"method": method, "url": url, "status_code": resp.status_code},
            )
            raise ApiError(method, url, resp.status_code, resp.text)
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> Any:
        if not resp.content:
            return None
        return resp.json()

    def close(self) -> None:
        self._session.close()
