"""Relay configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Each concern has its own prefix; :class:`RelayConfig` nests them.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode


def _split_list(value: Any, *, strip_at: bool = False) -> list[str]:
    """Parse a comma-separated env value into trimmed, lowercased items."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    result: list[str] = []
    for item in items:
        normalized = str(item).strip().lower()
        if strip_at:
            normalized = normalized.lstrip("@")
        if normalized:
            result.append(normalized)
    return result


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(default="imap.qq.com", description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str = Field(default="", description="IMAP login username")
    password: SecretStr = Field(default=SecretStr(""), description="IMAP login password")
    mailbox: str = Field(default="INBOX", description="IMAP mailbox/folder to watch")
    since_hours: float = Field(
        default=3.0,
        gt=0,
        description="Lookback window in hours for each fetch cycle",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Socket timeout for the ephemeral fetch session",
    )


class SenderFilterConfig(BaseSettings):
    """Sender admission allow-lists.

    Both lists empty means no restriction is configured.
    """

    model_config = {"env_prefix": "SENDER_FILTER_"}

    allowed_senders: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Comma-separated sender addresses to admit",
    )
    allowed_domains: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Comma-separated sender domains to admit",
    )
    allow_any: bool = Field(default=False, description="Admit every sender")

    @field_validator("allowed_senders", mode="before")
    @classmethod
    def _parse_senders(cls, value: Any) -> list[str]:
        return _split_list(value)

    @field_validator("allowed_domains", mode="before")
    @classmethod
    def _parse_domains(cls, value: Any) -> list[str]:
        return _split_list(value, strip_at=True)

    @property
    def is_unrestricted(self) -> bool:
        return self.allow_any or (not self.allowed_senders and not self.allowed_domains)


class WatcherConfig(BaseSettings):
    """Persistent IDLE watcher settings."""

    model_config = {"env_prefix": "WATCHER_"}

    enabled: bool = Field(default=True, description="Run the IDLE mailbox watcher")
    debounce_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Delay before a change notification triggers a refresh",
    )
    backoff_initial_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Initial reconnect backoff",
    )
    backoff_max_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Maximum reconnect backoff",
    )
    idle_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Seconds before an IDLE command is re-issued",
    )
    push_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Seconds without any server push before the session is considered dead",
    )


class CacheConfig(BaseSettings):
    """Read-serving policy for the per-tenant cache."""

    model_config = {"env_prefix": "CACHE_"}

    fresh_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Entries younger than this are served without a refresh",
    )
    refresh_timeout_seconds: float = Field(
        default=12.0,
        gt=0,
        description="Deadline for a forced refresh",
    )
    keepalive_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Interval between stream keep-alive comments",
    )


class TenantDirectoryConfig(BaseSettings):
    """Where tenant records are loaded from."""

    model_config = {"env_prefix": "TENANT_"}

    config_path: str | None = Field(
        default=None,
        description="Path to a JSON array of tenant records",
    )
    config_json: str | None = Field(
        default=None,
        description="Inline JSON array of tenant records (fallback)",
    )


class RelayConfig(BaseSettings):
    """Root configuration for a relay process.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "OTP_RELAY_"}

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, description="Bind port")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )

    imap: ImapConfig = Field(default_factory=ImapConfig)
    sender_filter: SenderFilterConfig = Field(default_factory=SenderFilterConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    tenants: TenantDirectoryConfig = Field(default_factory=TenantDirectoryConfig)
