"""Shared test fixtures for the otp-relay test suite."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from otp_relay.config import (
    CacheConfig,
    ImapConfig,
    RelayConfig,
    SenderFilterConfig,
    TenantDirectoryConfig,
    WatcherConfig,
)
from otp_relay.models import TenantConfig, VerificationCode
from otp_relay.tenants import sha256_hex


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="relay@test.com",
        password="testpass",
        mailbox="INBOX",
        since_hours=3.0,
    )


@pytest.fixture
def sender_config() -> SenderFilterConfig:
    return SenderFilterConfig(allowed_senders=[], allowed_domains=[], allow_any=False)


@pytest.fixture
def watcher_config() -> WatcherConfig:
    return WatcherConfig(
        enabled=True,
        debounce_seconds=0.0,
        backoff_initial_seconds=1.0,
        backoff_max_seconds=60.0,
    )


@pytest.fixture
def relay_config(imap_config: ImapConfig, sender_config: SenderFilterConfig) -> RelayConfig:
    return RelayConfig(
        imap=imap_config,
        sender_filter=sender_config,
        watcher=WatcherConfig(enabled=False),
        cache=CacheConfig(fresh_seconds=5.0, refresh_timeout_seconds=0.2, keepalive_seconds=15.0),
        tenants=TenantDirectoryConfig(),
    )


# ------------------------------------------------------------------
# Tenants and codes
# ------------------------------------------------------------------


def make_tenant(
    tenant_id: str,
    recipients: list[str],
    *,
    access_key: str | None = None,
    enabled: bool = True,
) -> TenantConfig:
    return TenantConfig(
        id=tenant_id,
        display_name=tenant_id.title(),
        recipients=recipients,
        access_key_hash=sha256_hex(access_key or f"{tenant_id}-key"),
        enabled=enabled,
    )


def make_code(
    code: str = "123456",
    recipient: str | None = "alice@example.com",
    *,
    minute: int = 0,
    subject: str = "Your code",
) -> VerificationCode:
    return VerificationCode(
        code=code,
        sender="noreply@service.com",
        recipient=recipient or "unknown",
        normalized_recipient=recipient,
        subject=subject,
        date=datetime(2025, 6, 1, 12, minute, tzinfo=UTC),
    )


class FakeTenants:
    """In-memory stand-in for the tenant directory."""

    def __init__(self, tenants: list[TenantConfig]) -> None:
        self.tenants = tenants

    def list_enabled(self) -> list[TenantConfig]:
        return [t for t in self.tenants if t.enabled]

    def get_tenant_by_access_key(self, access_key: str) -> TenantConfig | None:
        digest = sha256_hex(access_key.strip())
        for tenant in self.list_enabled():
            if tenant.access_key_hash == digest:
                return tenant
        return None


class FakeSource:
    """Code source with an invocation counter.

    ``gate`` (if set) blocks every run until released, so tests can
    observe concurrent callers.
    """

    def __init__(
        self,
        codes: list[VerificationCode] | None = None,
        *,
        error: BaseException | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.codes = codes or []
        self.error = error
        self.gate = gate
        self.calls = 0

    async def run(self) -> list[VerificationCode]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.codes)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def alice() -> TenantConfig:
    return make_tenant("alice", ["Alice@Example.com"], access_key="alice-secret")


@pytest.fixture
def bob() -> TenantConfig:
    return make_tenant("bob", ["bob@example.com", "shared@example.com"], access_key="bob-secret")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str = "Your verification code",
    from_addr: str = "noreply@service.com",
    to_addr: str = "alice@example.com",
    body: str = "Verification code: 551234. Thanks.",
    date: str = "Sun, 01 Jun 2025 12:00:00 +0000",
    extra_headers: dict[str, str] | None = None,
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = "<otp-001@service.com>"
    if date:
        msg["Date"] = date
    for name, value in (extra_headers or {}).items():
        msg[name] = value
    return msg.as_bytes()


def _build_html_email(*, body_html: str, subject: str = "Sign in") -> bytes:
    msg = MIMEText(body_html, "html", "utf-8")
    msg["Subject"] = subject
    msg["From"] = "noreply@service.com"
    msg["To"] = "alice@example.com"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def _build_alternative_email(*, body_text: str, body_html: str) -> bytes:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = "Multipart"
    msg["From"] = "Service <NoReply@Service.com>"
    msg["To"] = "alice@example.com"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    msg.attach(MIMEText(body_text, "plain", "utf-8"))
    msg.attach(MIMEText(body_html, "html", "utf-8"))
    return msg.as_bytes()


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()
