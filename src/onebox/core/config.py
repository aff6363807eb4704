"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


class AccountSettings(BaseModel):
    """Credentials and endpoint for a single mailbox."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Stable account identifier")
    host: str = Field(description="IMAP hostname")
    port: int = Field(default=993, description="IMAP port, typically 993 for SSL")
    user: str = Field(description="Login name")
    password: str = Field(description="Password or app password")
    use_ssl: bool = Field(default=True, description="Whether to connect over TLS")


class SyncSettings(BaseModel):
    """Settings controlling the synchronization engine."""

    mailbox: str = Field(default="INBOX", description="Folder kept in sync")
    keepalive_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Interval between keepalive probes while idling",
    )
    reconnect_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Delay before reconnecting after an unsolicited close",
    )
    connect_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Socket timeout for the initial handshake"
    )
    max_message_bytes: int = Field(
        default=25 * 1024 * 1024,
        ge=1024,
        description="Messages larger than this are skipped",
    )
    uidnext_fallback_window: int = Field(
        default=50,
        ge=1,
        description="How far below UIDNEXT to start when no watermark is known",
    )
    fetch_batch_size: int = Field(
        default=50, ge=1, description="UIDs per size-probe FETCH command"
    )


class LlmSettings(BaseModel):
    """Settings for the local LLM provider."""

    base_url: str | None = Field(
        default=None, description="Ollama server URL; unset disables the LLM"
    )
    model: str = Field(default="llama3.1:8b", description="Model identifier")
    timeout_seconds: int = Field(
        default=30, description="Request timeout for LLM calls"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for LLM completions",
    )
    max_output_tokens: int | None = Field(
        default=100,
        ge=16,
        description="Maximum tokens to request from the provider",
    )
    max_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts per LLM request before giving up"
    )


class NotificationSettings(BaseModel):
    """Outbound notification targets for interested leads."""

    slack_webhook_url: str | None = Field(
        default=None, description="Slack incoming webhook URL"
    )
    webhook_url: str | None = Field(
        default=None, description="Generic webhook receiving JSON events"
    )
    timeout_seconds: float = Field(default=10.0, gt=0)


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./onebox.db"), description="SQLite database path"
    )


class ApiSettings(BaseModel):
    """Settings for the management HTTP API."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000)


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    accounts: list[AccountSettings] = Field(default_factory=list)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    llm: LlmSettings = Field(default_factory=LlmSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("accounts")
    @classmethod
    def _unique_account_ids(
        cls, accounts: list[AccountSettings]
    ) -> list[AccountSettings]:
        seen: set[str] = set()
        for account in accounts:
            if account.id in seen:
                raise ValueError(f"Duplicate account id '{account.id}'")
            seen.add(account.id)
        return accounts


ENV_PREFIX = "ONEBOX_"
_NESTING = "__"


def _coerce(value: str | None) -> Any:
    """Map blank strings to ``None`` and ``true``/``false`` to booleans."""
    if value is None or value == "":
        return None
    return {"true": True, "false": False}.get(value.lower(), value)


def _key_path(key: str) -> list[str]:
    """``ONEBOX_SYNC__MAILBOX`` -> ``["sync", "mailbox"]``."""
    return [part.lower() for part in key.removeprefix(ENV_PREFIX).split(_NESTING) if part]


def _listify(node: Any) -> Any:
    """Turn mappings keyed only by integers into lists ordered by key."""
    if not isinstance(node, dict):
        return node
    converted = {key: _listify(value) for key, value in node.items()}
    if converted and all(key.isdigit() for key in converted):
        return [converted[key] for key in sorted(converted, key=int)]
    return converted


def _prefixed(values: Mapping[str, str | None]) -> dict[str, str | None]:
    return {key: value for key, value in values.items() if key.startswith(ENV_PREFIX)}


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool = True
) -> dict[str, Any]:
    """Build a nested settings mapping; the process environment wins over the file."""
    flat: dict[str, str | None] = {}
    if env_file and Path(env_file).is_file():
        flat.update(_prefixed(dotenv_values(env_file)))
    if include_environment:
        flat.update(_prefixed(os.environ))

    tree: dict[str, Any] = {}
    for key, raw in flat.items():
        path = _key_path(key)
        if not path:
            continue
        node = tree
        for part in path[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ValueError(f"{key} conflicts with a scalar setting")
            node = child
        node[path[-1]] = _coerce(raw)
    return cast(dict[str, Any], _listify(tree))


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    *,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load settings once from ``env_file`` and ``ONEBOX_*`` environment variables."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AccountSettings",
    "ApiSettings",
    "AppSettings",
    "ENV_PREFIX",
    "LlmSettings",
    "LoggingSettings",
    "NotificationSettings",
    "StorageSettings",
    "SyncSettings",
    "load_app_settings",
]
