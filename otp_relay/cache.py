"""In-memory per-tenant cache with change notification.

Writes swap a tenant's :class:`CacheEntry` in one assignment and then
call that tenant's subscribers synchronously, in registration order.
Nothing here awaits, so on a single event loop readers never observe
a half-written entry.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping

import structlog

from .models import CacheEntry, VerificationCode

logger = structlog.get_logger()

Listener = Callable[[CacheEntry], None]


class CacheStore:
    """Tenant id → latest :class:`CacheEntry`, plus a subscriber registry."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._listeners: dict[str, list[Listener]] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, tenant_id: str) -> CacheEntry | None:
        return self._entries.get(tenant_id)

    def age(self, entry: CacheEntry) -> float:
        return entry.age(self._clock())

    def set(
        self,
        tenant_id: str,
        codes: Iterable[VerificationCode],
        timestamp: float | None = None,
    ) -> CacheEntry:
        """Replace *tenant_id*'s entry and notify its subscribers."""
        entry = CacheEntry(
            codes=tuple(codes),
            timestamp=self._clock() if timestamp is None else timestamp,
        )
        self._entries[tenant_id] = entry

        # Copy: a listener may unsubscribe itself while being notified
        for listener in list(self._listeners.get(tenant_id, ())):
            try:
                listener(entry)
            except Exception:
                logger.exception("cache_listener_failed", tenant_id=tenant_id)
        return entry

    def set_many(
        self,
        tenant_ids: Iterable[str],
        codes_by_tenant: Mapping[str, Iterable[VerificationCode]],
        timestamp: float | None = None,
    ) -> None:
        """Write one entry per tenant; tenants with no codes get an empty list."""
        ts = self._clock() if timestamp is None else timestamp
        for tenant_id in tenant_ids:
            self.set(tenant_id, codes_by_tenant.get(tenant_id, ()), ts)

    def subscribe(self, tenant_id: str, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns the matching unsubscribe callable."""
        self._listeners.setdefault(tenant_id, []).append(listener)

        def unsubscribe() -> None:
            current = self._listeners.get(tenant_id)
            if not current:
                return
            try:
                current.remove(listener)
            except ValueError:
                return
            if not current:
                del self._listeners[tenant_id]

        return unsubscribe

    def subscriber_count(self, tenant_id: str) -> int:
        return len(self._listeners.get(tenant_id, ()))
