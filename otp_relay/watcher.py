"""Mailbox watcher: persistent IMAP IDLE session driving debounced refreshes.

The session task parks in IDLE and turns server pushes into
:class:`MailboxEvent` values on a queue.  A separate debounce task
drains the queue and schedules at most one pending refresh at a time.
Any session failure tears the connection down and reconnects after an
exponential backoff.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import aioimaplib
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_exponential

from .config import ImapConfig, WatcherConfig
from .errors import ProtocolError
from .logging import log_protocol_error
from .refresh import RefreshCoordinator

logger = structlog.get_logger()

_LOGOUT_TIMEOUT_SECONDS = 5.0
_IDLE_DONE_TIMEOUT_SECONDS = 10.0


class MailboxEvent(str, Enum):
    CONNECTED = "connected"
    MESSAGE_ADDED = "exists"
    MESSAGE_REMOVED = "expunge"
    FLAGS_CHANGED = "fetch"


class WatcherState(str, Enum):
    STOPPED = "stopped"
    CONNECTING = "connecting"
    IDLE = "idle"
    BACKOFF = "backoff"


_PUSH_EVENTS = {
    "EXISTS": MailboxEvent.MESSAGE_ADDED,
    "EXPUNGE": MailboxEvent.MESSAGE_REMOVED,
    "FETCH": MailboxEvent.FLAGS_CHANGED,
}


def parse_push(lines: Any) -> list[MailboxEvent]:
    """Map untagged IDLE responses (``* 3 EXISTS``) to mailbox events."""
    if isinstance(lines, (bytes, bytearray, str)):
        lines = [lines]
    events: list[MailboxEvent] = []
    for line in lines or ():
        if isinstance(line, (bytes, bytearray)):
            line = bytes(line).decode("utf-8", errors="replace")
        parts = str(line).lstrip("* ").split()
        if len(parts) >= 2 and parts[0].isdigit():
            event = _PUSH_EVENTS.get(parts[1].upper())
            if event is not None:
                events.append(event)
    return events


def _default_client(config: ImapConfig) -> Any:
    if config.use_ssl:
        return aioimaplib.IMAP4_SSL(host=config.host, port=config.port)
    return aioimaplib.IMAP4(host=config.host, port=config.port)


class MailboxWatcher:
    """One persistent IDLE session per service, restarted with backoff."""

    def __init__(
        self,
        imap_config: ImapConfig,
        config: WatcherConfig,
        coordinator: RefreshCoordinator,
        *,
        client_factory: Callable[[ImapConfig], Any] = _default_client,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._imap_config = imap_config
        self._config = config
        self._coordinator = coordinator
        self._client_factory = client_factory
        self._sleep = sleep

        self._events: asyncio.Queue[MailboxEvent] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []
        self._pending_refresh: asyncio.Task[None] | None = None
        self._stopping = False

        self.state = WatcherState.STOPPED
        self.sessions_started = 0
        self.refreshes_scheduled = 0

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Start the watcher. Returns False if disabled or already running."""
        if not self._config.enabled:
            logger.info("watcher_disabled")
            return False
        if self._tasks:
            logger.warning("watcher_already_started")
            return False

        self._stopping = False
        self._tasks = [
            asyncio.create_task(self._run_forever(), name="otp-relay-watcher"),
            asyncio.create_task(self._debounce_loop(), name="otp-relay-debounce"),
        ]
        logger.info("watcher_started", host=self._imap_config.host, mailbox=self._imap_config.mailbox)
        return True

    async def stop(self) -> None:
        """Cancel the session and debounce tasks and wait for teardown."""
        self._stopping = True
        tasks = list(self._tasks)
        if self._pending_refresh is not None:
            tasks.append(self._pending_refresh)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._pending_refresh = None
        self.state = WatcherState.STOPPED
        logger.info("watcher_stopped")

    # ------------------------------------------------------------------
    # Session loop with backoff
    # ------------------------------------------------------------------

    async def _run_forever(self) -> None:
        dropped: Exception | None = None
        while not self._stopping:
            session = await self._connect_with_backoff(dropped)
            if session is None:
                return
            client, idle = session
            try:
                await self._watch(client, idle)
                dropped = None
            except Exception as exc:
                dropped = exc
            finally:
                await self._logout(client)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(
                multiplier=self._config.backoff_initial_seconds,
                min=self._config.backoff_initial_seconds,
                max=self._config.backoff_max_seconds,
            ),
            retry=retry_if_exception_type(Exception),
            sleep=self._sleep,
            before_sleep=self._before_reconnect,
        )

    async def _connect_with_backoff(self, dropped: Exception | None) -> tuple[Any, Any] | None:
        """Open a session and park it in IDLE, retrying until it succeeds.

        Each call runs a fresh retry sequence, so the delay starts over
        at the initial value once a session has parked.  A *dropped*
        session error counts as the first failed attempt of the sequence.
        Returns None when the watcher is stopping.
        """
        async for attempt in self._retrying():
            if self._stopping:
                return None
            with attempt:
                if dropped is not None:
                    error, dropped = dropped, None
                    raise error
                return await self._open_session()
        return None

    def _before_reconnect(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is not None:
            log_protocol_error(logger, "watcher_session_failed", exc, host=self._imap_config.host)
        self.state = WatcherState.BACKOFF
        delay = retry_state.next_action.sleep if retry_state.next_action else None
        logger.info("watcher_reconnect_scheduled", delay=delay, attempt=retry_state.attempt_number)

    async def _open_session(self) -> tuple[Any, Any]:
        self.state = WatcherState.CONNECTING
        self.sessions_started += 1
        client = self._client_factory(self._imap_config)
        try:
            await client.wait_hello_from_server()
            self._check(
                await client.login(
                    self._imap_config.username,
                    self._imap_config.password.get_secret_value(),
                ),
                "login",
            )
            self._check(await client.select(self._imap_config.mailbox), "select")
            logger.info("watcher_connected", mailbox=self._imap_config.mailbox)
            self._events.put_nowait(MailboxEvent.CONNECTED)
            idle = await client.idle_start(timeout=self._config.idle_timeout_seconds)
        except BaseException:
            await self._logout(client)
            raise
        self._on_parked()
        return client, idle

    async def _watch(self, client: Any, idle: Any) -> None:
        """Relay pushes from a parked session, re-issuing IDLE as it ends."""
        while not self._stopping:
            await self._idle_once(client, idle)
            if self._stopping:
                break
            idle = await client.idle_start(timeout=self._config.idle_timeout_seconds)
            self._on_parked()

    async def _idle_once(self, client: Any, idle: Any) -> None:
        """Wait on one IDLE until the server ends it or the idle timeout fires."""
        while client.has_pending_idle():
            lines = await client.wait_server_push(timeout=self._config.push_timeout_seconds)
            if lines == aioimaplib.STOP_WAIT_SERVER_PUSH:
                client.idle_done()
                await asyncio.wait_for(idle, _IDLE_DONE_TIMEOUT_SECONDS)
                break
            for event in parse_push(lines):
                self._events.put_nowait(event)

    def _on_parked(self) -> None:
        if self.state is not WatcherState.IDLE:
            logger.debug("watcher_parked")
        self.state = WatcherState.IDLE

    @staticmethod
    def _check(response: Any, command: str) -> None:
        if getattr(response, "result", None) != "OK":
            raise ProtocolError(f"IMAP {command} failed: {getattr(response, 'lines', response)!r}")

    async def _logout(self, client: Any) -> None:
        try:
            await asyncio.wait_for(client.logout(), _LOGOUT_TIMEOUT_SECONDS)
        except Exception as exc:
            logger.debug("watcher_logout_failed", error=str(exc) or type(exc).__name__)

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------

    async def _debounce_loop(self) -> None:
        while True:
            event = await self._events.get()
            logger.debug("watcher_event", mailbox_event=event.value)
            self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        if self._pending_refresh is not None:
            return
        self.refreshes_scheduled += 1
        self._pending_refresh = asyncio.create_task(self._delayed_refresh())

    async def _delayed_refresh(self) -> None:
        try:
            await asyncio.sleep(self._config.debounce_seconds)
        finally:
            self._pending_refresh = None
        try:
            await self._coordinator.refresh()
        except Exception as exc:
            logger.warning("watcher_refresh_failed", error=str(exc) or type(exc).__name__)
