"""One fetch cycle: mailbox → parsed messages → verification codes."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from .config import ImapConfig, SenderFilterConfig
from .errors import ParseError, ProtocolError
from .extractor import extract_code
from .imap_client import AsyncImapClient
from .logging import log_protocol_error
from .models import UNKNOWN_RECIPIENT, VerificationCode
from .parser import MimeParser
from .recipients import resolve_recipients
from .senders import is_sender_allowed

logger = structlog.get_logger()


class FetchCycle:
    """Open an ephemeral mailbox session and collect every code in the
    lookback window.

    Each :meth:`run` uses a fresh client from *client_factory*.  Protocol
    failures are logged and re-raised; the caller decides on retry.
    """

    def __init__(
        self,
        imap_config: ImapConfig,
        sender_config: SenderFilterConfig,
        *,
        client_factory: Callable[[ImapConfig], AsyncImapClient] = AsyncImapClient,
        parser: MimeParser | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._imap_config = imap_config
        self._sender_config = sender_config
        self._client_factory = client_factory
        self._parser = parser or MimeParser()
        self._clock = clock
        self.cycles_run: int = 0

    async def run(self) -> list[VerificationCode]:
        """Return the codes found, newest first."""
        self.cycles_run += 1
        since = self._clock() - timedelta(hours=self._imap_config.since_hours)
        client = self._client_factory(self._imap_config)
        codes: list[VerificationCode] = []

        try:
            await client.connect()
            try:
                async with client.mailbox_lock(self._imap_config.mailbox):
                    uids = await client.search_since(since)
                    for uid in sorted(uids, key=int):
                        raw = await client.fetch_source(uid)
                        if raw is None:
                            continue
                        code = self._process(uid, raw, since)
                        if code is not None:
                            codes.append(code)
            finally:
                await client.logout()
        except ProtocolError as exc:
            log_protocol_error(logger, "fetch_cycle_failed", exc, host=self._imap_config.host)
            raise

        codes.sort(key=lambda c: c.date, reverse=True)
        logger.info("fetch_cycle_complete", count=len(codes), since=since.isoformat())
        return codes

    def _process(self, uid: str, raw: bytes, since: datetime) -> VerificationCode | None:
        try:
            message = self._parser.parse(raw)
        except ParseError as exc:
            logger.warning("message_parse_failed", uid=uid, error=str(exc))
            return None

        # IMAP SINCE only matches whole days
        if message.date < since:
            logger.debug("message_outside_window", uid=uid, date=message.date.isoformat())
            return None

        cfg = self._sender_config
        if not is_sender_allowed(
            message.from_address,
            cfg.allowed_senders,
            cfg.allowed_domains,
            allow_any=cfg.allow_any,
        ):
            logger.debug("message_sender_rejected", uid=uid, sender=message.from_address)
            return None

        code = extract_code(message.subject, message.body)
        if code is None:
            return None

        recipients = resolve_recipients(message)
        normalized = recipients[0] if recipients else None
        return VerificationCode(
            code=code,
            sender=message.from_address or "Unknown",
            recipient=normalized or UNKNOWN_RECIPIENT,
            normalized_recipient=normalized,
            subject=message.subject,
            date=message.date,
        )
