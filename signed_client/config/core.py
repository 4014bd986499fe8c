"""Procedural configuration API: load settings from the environment."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from pydantic import ValidationError

from ..errors.internal import ConfigurationError
from .model import ENV_FIELDS, ClientSettings


def load_settings(environ: Mapping[str, str] | None = None) -> ClientSettings:
    """Load and validate client settings.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        Validated ClientSettings.

    Raises:
        ConfigurationError: If a required value is missing or invalid.
    """
    env = os.environ if environ is None else environ
    try:
        settings = ClientSettings.from_env(env)
    except ValidationError as e:
        field_to_env = {v: k for k, v in ENV_FIELDS.items()}
        names: list[str] = []
        problems: list[str] = []
        for err in e.errors():
            loc = str(err["loc"][0]) if err.get("loc") else "settings"
            name = field_to_env.get(loc, loc)
            names.append(name)
            problems.append(f"{name}: {err['msg']}")
        if "API_SHARED_SECRET" in names:
            logging.error("❌ Missing API_SHARED_SECRET for request signing")
        raise ConfigurationError(
            f"Invalid client configuration: {'; '.join(problems)}",
            data={"fields": names},
        ) from e
    logging.debug(f"⚙️ Loaded client settings base_url={settings.base_url}")
    return settings


def _mask(value: str | None) -> str:
    if not value:
        return "<unset>"
    if len(value) <= 4:
        return "****"
    return f"{value[:2]}…{value[-2:]}"


def print_settings_summary(settings: ClientSettings) -> None:
    """Log a human-readable summary of the active settings with secrets masked."""
    logging.info(f"🌐 Base URL: {settings.base_url}")
    logging.info(f"🔑 Shared secret: {_mask(settings.shared_secret)}")
    logging.info(f"🪪 App id: {settings.app_id or '<unset>'}")
    logging.info(f"🚧 Bypass token: {_mask(settings.bypass_token)}")
    logging.info(
        f"⏱️ Timeout {settings.request_timeout_ms}ms, retries {settings.retry_attempts} "
        f"every {settings.retry_delay_ms}ms"
    )
