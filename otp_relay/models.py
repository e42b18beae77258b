"""Data models for the relay pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

UNKNOWN_RECIPIENT = "unknown"


def normalize_email(value: str) -> str:
    """Lowercase and trim an address for comparison or storage."""
    return value.strip().lower()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


@dataclass
class ParsedMessage:
    """Structured view of one fetched message. Not retained after the cycle."""

    subject: str
    body: str
    from_address: str
    headers: dict[str, list[str]]
    to_addresses: list[str]
    date: datetime


@dataclass
class CodeCandidate:
    """A six-digit run found in the subject or body, before scoring."""

    code: str
    position: int
    source_text: str
    source_weight: int


class VerificationCode(_CamelModel):
    """A verification code surfaced to tenants."""

    code: str = Field(description="Six-digit verification code")
    sender: str = Field(description="Sender address, or 'Unknown'")
    recipient: str = Field(description="Resolved recipient, or the unknown marker")
    normalized_recipient: str | None = Field(
        default=None,
        description="Lowercased recipient used for tenant routing; None if unresolved",
    )
    subject: str = Field(default="", description="Message subject")
    date: datetime = Field(description="Message date")


class TenantConfig(_CamelModel):
    """A tenant record as loaded from the tenant directory."""

    id: str = Field(min_length=1)
    display_name: str | None = None
    recipients: frozenset[str] = Field(description="Normalized recipient addresses")
    access_key_hash: str = Field(min_length=1)
    enabled: bool = True

    @field_validator("id", mode="before")
    @classmethod
    def _strip_id(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("recipients", mode="before")
    @classmethod
    def _normalize_recipients(cls, value: Any) -> frozenset[str]:
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("recipients must be a list of addresses")
        recipients = frozenset(
            normalize_email(item) for item in value if isinstance(item, str) and item.strip()
        )
        if not recipients:
            raise ValueError("recipients must not be empty")
        return recipients

    @field_validator("access_key_hash", mode="before")
    @classmethod
    def _normalize_hash(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def label(self) -> str:
        return self.display_name or self.id


@dataclass(frozen=True)
class CacheEntry:
    """One tenant's code list. Replaced wholesale on every refresh."""

    codes: tuple[VerificationCode, ...]
    timestamp: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.timestamp)


class CodesResponse(_CamelModel):
    """Pull interface payload."""

    success: bool
    tenant_id: str
    codes: list[VerificationCode] = Field(default_factory=list)
    cached: bool = False
    cache_age: int | None = None
    stale: bool | None = None
    warming: bool | None = None
    timeout: bool | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StreamEvent(_CamelModel):
    """Push interface event: one per cache update for a tenant."""

    type: str = "codes"
    tenant_id: str
    data: dict[str, Any]

    @classmethod
    def from_entry(cls, tenant_id: str, entry: CacheEntry) -> StreamEvent:
        return cls(
            tenant_id=tenant_id,
            data={
                "codes": [
                    code.model_dump(mode="json", by_alias=True) for code in entry.codes
                ],
                "timestamp": int(entry.timestamp * 1000),
            },
        )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

