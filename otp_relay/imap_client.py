"""Async IMAP client wrapping stdlib imaplib with asyncio.to_thread.

Used for the short-lived fetch session only; the long-lived IDLE
session lives in :mod:`otp_relay.watcher`.
"""

from __future__ import annotations

import asyncio
import imaplib
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, TypeVar

import structlog

from .config import ImapConfig
from .errors import ProtocolError, to_protocol_error

logger = structlog.get_logger()

T = TypeVar("T")

_PROTOCOL_ERRORS = (imaplib.IMAP4.error, OSError, EOFError)


class AsyncImapClient:
    """Async-friendly IMAP client.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop, and any
    failure surfaces as :class:`~otp_relay.errors.ProtocolError`.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._mailbox_lock = asyncio.Lock()

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except _PROTOCOL_ERRORS as exc:
            raise to_protocol_error(exc) from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect and login."""
        await self._call(self._connect_sync)
        logger.debug("imap_connected", host=self._config.host)

    def _connect_sync(self) -> None:
        timeout = self._config.timeout_seconds
        if self._config.use_ssl:
            self._conn = imaplib.IMAP4_SSL(self._config.host, self._config.port, timeout=timeout)
        else:
            self._conn = imaplib.IMAP4(self._config.host, self._config.port, timeout=timeout)
        self._conn.login(self._config.username, self._config.password.get_secret_value())

    async def logout(self) -> None:
        """Logout, ignoring errors. Safe to call when not connected."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            await asyncio.to_thread(conn.logout)
        except _PROTOCOL_ERRORS as exc:
            logger.debug("imap_logout_failed", error=str(exc))
        logger.debug("imap_logged_out")

    async def is_connected(self) -> bool:
        """Check connection liveness with a NOOP command."""
        if self._conn is None:
            return False
        try:
            status, _ = await asyncio.to_thread(self._conn.noop)
            return status == "OK"
        except _PROTOCOL_ERRORS:
            return False

    @asynccontextmanager
    async def mailbox_lock(self, mailbox: str | None = None) -> AsyncIterator[None]:
        """Hold the mailbox open for the duration of the block.

        The mailbox is selected read-only and closed on every exit path.
        """
        name = mailbox or self._config.mailbox
        async with self._mailbox_lock:
            conn = self._require_conn()
            status, data = await self._call(conn.select, name, True)
            if status != "OK":
                raise ProtocolError(f"cannot open mailbox {name!r}: {data!r}")
            try:
                yield
            finally:
                try:
                    await asyncio.to_thread(conn.close)
                except _PROTOCOL_ERRORS as exc:
                    logger.debug("imap_close_failed", mailbox=name, error=str(exc))

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    async def search_since(self, since: datetime) -> list[str]:
        """Return the UIDs of messages received on or after *since*.

        IMAP date search is day-granular (not timestamp-granular).
        """
        conn = self._require_conn()
        criteria = f"SINCE {since.strftime('%d-%b-%Y')}"
        status, data = await self._call(conn.uid, "SEARCH", None, criteria)
        if status != "OK":
            raise ProtocolError(f"search failed: {data!r}")
        if not data or not data[0]:
            return []
        return [uid.decode() for uid in data[0].split()]

    async def fetch_source(self, uid: str) -> bytes | None:
        """Fetch the full RFC 822 source without setting ``\\Seen``."""
        conn = self._require_conn()
        status, msg_data = await self._call(conn.uid, "FETCH", uid, "(BODY.PEEK[])")
        if status != "OK" or not msg_data:
            return None
        for item in msg_data:
            if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes):
                return item[1]
        return None

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise ProtocolError("not connected")
        return self._conn
