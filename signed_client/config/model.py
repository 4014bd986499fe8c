from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..constants import (
    API_REQUEST_TIMEOUT_MS,
    API_RETRY_ATTEMPTS,
    API_RETRY_DELAY_MS,
    DEFAULT_BASE_URL,
    DEFAULT_KEYRING_SERVICE,
    MIN_NONCE_BYTE_LENGTH,
    NONCE_BYTE_LENGTH,
)

# Environment variable -> settings field
ENV_FIELDS: dict[str, str] = {
    "API_BASE_URL": "base_url",
    "API_SHARED_SECRET": "shared_secret",
    "API_APP_ID": "app_id",
    "API_BYPASS_TOKEN": "bypass_token",
    "API_REQUEST_TIMEOUT_MS": "request_timeout_ms",
    "API_RETRY_ATTEMPTS": "retry_attempts",
    "API_RETRY_DELAY_MS": "retry_delay_ms",
    "API_NONCE_LENGTH": "nonce_length",
    "API_KEYRING_SERVICE": "keyring_service",
}


class ClientSettings(BaseModel):
    """Settings for a signed API client instance.

    Attributes:
        base_url: Scheme + host (+ optional path prefix) of the backend.
        shared_secret: HMAC key shared with the backend. Required.
        app_id: Optional application identifier sent as X-App-Id.
        bypass_token: Optional deployment protection bypass token.
        request_timeout_ms: Upper bound for one network attempt.
        retry_attempts: Retries after the first attempt when no response arrives.
        retry_delay_ms: Fixed delay between those retries.
        nonce_length: Random bytes per request nonce.
        keyring_service: Service name used for keyring-backed storage.
    """

    base_url: str = DEFAULT_BASE_URL
    shared_secret: str = Field(min_length=1)
    app_id: str | None = None
    bypass_token: str | None = None
    request_timeout_ms: int = Field(default=API_REQUEST_TIMEOUT_MS, gt=0)
    retry_attempts: int = Field(default=API_RETRY_ATTEMPTS, ge=0)
    retry_delay_ms: int = Field(default=API_RETRY_DELAY_MS, ge=0)
    nonce_length: int = Field(default=NONCE_BYTE_LENGTH, ge=MIN_NONCE_BYTE_LENGTH)
    keyring_service: str = DEFAULT_KEYRING_SERVICE

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an absolute http(s) URL and drop the trailing slash."""
        value = v.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("shared_secret")
    @classmethod
    def validate_shared_secret(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("shared_secret must not be blank")
        return v

    @field_validator("app_id", "bypass_token", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def request_timeout(self) -> float:
        """Per-attempt timeout in seconds."""
        return self.request_timeout_ms / 1000

    @property
    def retry_delay(self) -> float:
        """Retry delay in seconds."""
        return self.retry_delay_ms / 1000

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> ClientSettings:
        """Build settings from an environment mapping.

        Unset or empty variables fall back to the field defaults.
        """
        data: dict[str, Any] = {}
        for env_name, field_name in ENV_FIELDS.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            data[field_name] = raw
        return cls.model_validate(data)
