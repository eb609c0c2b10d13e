"""Configuration for the requestor engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

The variable names follow the yagna daemon conventions (`YAGNA_APPKEY`,
`YAGNA_API_URL`, ...) so the same `.env` can be shared with other tooling.
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_YAGNA_API_URL = "http://127.0.0.1:7465"


def _resolve_url(base_url: str, explicit: str | None, suffix: str) -> str:
    if explicit and explicit.strip():
        return explicit.strip().rstrip("/")
    return f"{base_url}{suffix}"


class RequestorSettings(BaseSettings):
    """Settings for the requestor-side daemon APIs.

    Environment variables:
    - YAGNA_APPKEY           (required)
    - YAGNA_API_URL          (optional)
    - YAGNA_MARKET_URL       (optional, derived from YAGNA_API_URL)
    - YAGNA_ACTIVITY_URL     (optional, derived from YAGNA_API_URL)
    - YAGNA_PAYMENT_URL      (optional, derived from YAGNA_API_URL)
    - YAGNA_REQUEST_TIMEOUT  (optional)
    - LOG_LEVEL              (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `RequestorSettings(_env_file=path_to_env)`.
    """

    app_key: str = Field(
        default="",
        validation_alias="YAGNA_APPKEY",
        description="Application key used as the bearer token for every API call",
    )
    api_url: str = Field(
        default=DEFAULT_YAGNA_API_URL,
        validation_alias="YAGNA_API_URL",
        description="Root URL of the yagna daemon REST API",
    )
    market_url: str | None = Field(
        default=None,
        validation_alias="YAGNA_MARKET_URL",
        description="Market API URL (defaults to <api_url>/market-api/v1)",
    )
    activity_url: str | None = Field(
        default=None,
        validation_alias="YAGNA_ACTIVITY_URL",
        description="Activity API URL (defaults to <api_url>/activity-api/v1)",
    )
    payment_url: str | None = Field(
        default=None,
        validation_alias="YAGNA_PAYMENT_URL",
        description="Payment API URL (defaults to <api_url>/payment-api/v1)",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        validation_alias="YAGNA_REQUEST_TIMEOUT",
        description="Transport timeout in seconds for plain (non long-poll) calls",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _resolve_urls(self) -> RequestorSettings:
        if not self.app_key.strip():
            raise ValueError("missing API authentication token, please set YAGNA_APPKEY")
        self.api_url = self.api_url.strip().rstrip("/") or DEFAULT_YAGNA_API_URL
        self.market_url = _resolve_url(self.api_url, self.market_url, "/market-api/v1")
        self.activity_url = _resolve_url(self.api_url, self.activity_url, "/activity-api/v1")
        self.payment_url = _resolve_url(self.api_url, self.payment_url, "/payment-api/v1")
        return self
