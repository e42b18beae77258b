"""Refresh coordinator: one fetch cycle in flight, shared by all callers."""

from __future__ import annotations

import asyncio
import time
from typing import Protocol

import structlog

from .cache import CacheStore
from .errors import ProtocolError, RefreshTimeoutError
from .models import TenantConfig, VerificationCode
from .routing import group_codes_by_tenant

logger = structlog.get_logger()

TenantCodes = dict[str, list[VerificationCode]]


class CodeSource(Protocol):
    async def run(self) -> list[VerificationCode]: ...


class TenantSource(Protocol):
    def list_enabled(self) -> list[TenantConfig]: ...


class RefreshCoordinator:
    """Coalesce refresh requests into a single fetch + route + cache write.

    While a refresh is in flight every caller awaits the same task.  The
    slot clears when the task settles, successfully or not.  Callers
    never cancel the shared task: a caller that gives up (timeout or
    cancellation) only stops waiting.
    """

    def __init__(
        self,
        source: CodeSource,
        tenants: TenantSource,
        cache: CacheStore,
        *,
        timeout_seconds: float = 12.0,
    ) -> None:
        self._source = source
        self._tenants = tenants
        self._cache = cache
        self._timeout = timeout_seconds
        self._in_flight: asyncio.Task[TenantCodes] | None = None
        self.last_success: float | None = None
        self.last_error: str | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def trigger(self) -> asyncio.Task[TenantCodes]:
        """Start a refresh unless one is already running; do not wait."""
        if self._in_flight is None:
            task = asyncio.create_task(self._run(), name="otp-relay-refresh")
            task.add_done_callback(self._settle)
            self._in_flight = task
        return self._in_flight

    async def refresh(self) -> TenantCodes:
        """Run (or join) a refresh and return the routed codes."""
        return await asyncio.shield(self.trigger())

    async def refresh_with_timeout(self, timeout: float | None = None) -> TenantCodes:
        """Like :meth:`refresh`, but give up waiting after *timeout* seconds.

        Raises :class:`RefreshTimeoutError`; the refresh keeps running
        and still populates the cache when it completes.
        """
        deadline = self._timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(self.refresh(), deadline)
        except TimeoutError as exc:
            logger.warning("refresh_timed_out", timeout=deadline)
            raise RefreshTimeoutError(f"refresh exceeded {deadline}s") from exc

    async def wait_idle(self) -> None:
        """Wait for the in-flight refresh, if any, ignoring its outcome."""
        task = self._in_flight
        if task is not None:
            await asyncio.wait([task])

    async def _run(self) -> TenantCodes:
        started = time.monotonic()
        codes = await self._source.run()
        tenants = self._tenants.list_enabled()
        by_tenant = group_codes_by_tenant(codes, tenants)
        self._cache.set_many([tenant.id for tenant in tenants], by_tenant)
        logger.info(
            "refresh_complete",
            codes=len(codes),
            tenants=len(tenants),
            duration_ms=round((time.monotonic() - started) * 1000),
        )
        return by_tenant

    def _settle(self, task: asyncio.Task[TenantCodes]) -> None:
        if self._in_flight is task:
            self._in_flight = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            self.last_success = self._cache.now()
            self.last_error = None
        else:
            self.last_error = str(exc) or type(exc).__name__
            # Protocol errors are already logged by the fetch cycle
            if not isinstance(exc, ProtocolError):
                logger.error("refresh_failed", error=self.last_error, error_type=type(exc).__name__)
