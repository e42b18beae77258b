"""CodeService: owns the cache, refresh coordinator and watcher, and
serves the pull and push interfaces on top of them.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, Callable

import structlog

from .cache import CacheStore
from .config import RelayConfig
from .errors import RefreshTimeoutError
from .fetch import FetchCycle
from .models import CacheEntry, CodesResponse, StreamEvent
from .refresh import CodeSource, RefreshCoordinator
from .tenants import TenantDirectory
from .watcher import MailboxWatcher

logger = structlog.get_logger()


class CodeService:
    """Process-wide relay state behind one object.

    Construct once, ``await start()`` before serving requests and
    ``await stop()`` on shutdown.  Request handlers receive the instance
    by injection.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        source: CodeSource | None = None,
        tenants: TenantDirectory | None = None,
        watcher: MailboxWatcher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self.cache = CacheStore(clock)
        self.tenants = tenants or TenantDirectory(config.tenants)
        self.source = source or FetchCycle(config.imap, config.sender_filter)
        self.coordinator = RefreshCoordinator(
            self.source,
            self.tenants,
            self.cache,
            timeout_seconds=config.cache.refresh_timeout_seconds,
        )
        self.watcher = watcher or MailboxWatcher(config.imap, config.watcher, self.coordinator)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        if self._config.sender_filter.is_unrestricted and not self._config.sender_filter.allow_any:
            logger.warning("sender_filter_unrestricted")
        self.watcher.start()
        logger.info("code_service_started", watcher_enabled=self._config.watcher.enabled)

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.watcher.stop()
        await self.coordinator.wait_idle()
        logger.info("code_service_stopped")

    # ------------------------------------------------------------------
    # Pull interface
    # ------------------------------------------------------------------

    async def get_codes(self, tenant_id: str, *, force: bool = False) -> CodesResponse:
        """Serve a tenant's codes per the cache read policy.

        Never raises for mailbox failures: degrades to stale cache, then
        a warming response, then ``success=False``.
        """
        entry = self.cache.get(tenant_id)

        if not force:
            if entry is None:
                self._kick_refresh()
                return CodesResponse(success=True, tenant_id=tenant_id, cached=False, warming=True)
            if self.cache.age(entry) >= self._config.cache.fresh_seconds:
                self._kick_refresh()
            return self._from_entry(tenant_id, entry)

        try:
            await self.coordinator.refresh_with_timeout()
        except RefreshTimeoutError:
            if entry is not None:
                return self._from_entry(tenant_id, entry, stale=True, timeout=True)
            self._kick_refresh()
            return CodesResponse(
                success=True,
                tenant_id=tenant_id,
                cached=False,
                warming=True,
                timeout=True,
            )
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.warning("forced_refresh_failed", tenant_id=tenant_id, error=error)
            if entry is not None:
                return self._from_entry(tenant_id, entry, stale=True, error=error)
            return CodesResponse(success=False, tenant_id=tenant_id, cached=False, error=error)

        fresh = self.cache.get(tenant_id)
        return CodesResponse(
            success=True,
            tenant_id=tenant_id,
            codes=list(fresh.codes) if fresh is not None else [],
            cached=False,
        )

    def _from_entry(
        self,
        tenant_id: str,
        entry: CacheEntry,
        *,
        stale: bool | None = None,
        timeout: bool | None = None,
        error: str | None = None,
    ) -> CodesResponse:
        return CodesResponse(
            success=True,
            tenant_id=tenant_id,
            codes=list(entry.codes),
            cached=True,
            cache_age=int(self.cache.age(entry)),
            stale=stale,
            timeout=timeout,
            error=error,
        )

    def _kick_refresh(self) -> None:
        self.coordinator.trigger()

    # ------------------------------------------------------------------
    # Push interface
    # ------------------------------------------------------------------

    async def stream(
        self,
        tenant_id: str,
        *,
        keepalive_seconds: float | None = None,
    ) -> AsyncGenerator[StreamEvent | None, None]:
        """Yield the current snapshot, then one event per cache update.

        ``None`` is yielded every *keepalive_seconds* without updates so
        the transport can emit a keep-alive.  Closing the generator
        unsubscribes.
        """
        interval = keepalive_seconds or self._config.cache.keepalive_seconds
        updates: asyncio.Queue[CacheEntry] = asyncio.Queue()
        unsubscribe = self.cache.subscribe(tenant_id, updates.put_nowait)
        logger.debug("stream_subscribed", tenant_id=tenant_id)
        try:
            entry = self.cache.get(tenant_id)
            if entry is not None:
                yield StreamEvent.from_entry(tenant_id, entry)
            else:
                self._kick_refresh()

            while True:
                try:
                    entry = await asyncio.wait_for(updates.get(), interval)
                except TimeoutError:
                    yield None
                    continue
                yield StreamEvent.from_entry(tenant_id, entry)
        finally:
            unsubscribe()
            logger.debug("stream_unsubscribed", tenant_id=tenant_id)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> dict[str, object]:
        return {
            "started": self._started,
            "watcher_enabled": self._config.watcher.enabled,
            "watcher_state": self.watcher.state.value,
            "watcher_sessions": self.watcher.sessions_started,
            "refresh_in_flight": self.coordinator.in_flight,
            "last_refresh": self.coordinator.last_success,
            "last_error": self.coordinator.last_error,
        }
