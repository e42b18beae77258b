"""MIME parser: raw RFC 822 bytes → :class:`ParsedMessage`.

Walks the message for the plain-text body (falling back to stripped
HTML), the bare sender address, and the recipient headers the
resolver needs.
"""

from __future__ import annotations

import email
import email.errors
import email.message
import email.policy
import email.utils
from datetime import UTC, datetime

from bs4 import BeautifulSoup

from .errors import ParseError
from .models import ParsedMessage

RECIPIENT_HEADERS = ("x-original-to", "delivered-to", "envelope-to", "to")


def html_to_text(markup: str) -> str:
    """Visible text of an HTML body; scripts and styles are dropped."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text(separator=" ", strip=True)


class MimeParser:
    """Stateless parser: raw RFC 822 bytes → ParsedMessage."""

    def parse(self, raw_bytes: bytes) -> ParsedMessage:
        try:
            msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)
            subject = str(msg.get("Subject", "") or "")
            body_text, body_html = self._extract_bodies(msg)
            headers = {
                name: [str(value) for value in msg.get_all(name, [])]
                for name in RECIPIENT_HEADERS
            }
            from_address = self._parse_from(msg.get("From"))
            to_addresses = self._parse_address_list(msg.get_all("To", []))
            date = self._parse_date(self._raw_header(msg, "Date"))
        except (LookupError, UnicodeError, ValueError, TypeError, email.errors.MessageError) as exc:
            raise ParseError(f"malformed message: {exc}") from exc

        if body_text is None and body_html is not None:
            body_text = html_to_text(body_html)

        return ParsedMessage(
            subject=subject,
            body=body_text or "",
            from_address=from_address,
            headers=headers,
            to_addresses=to_addresses,
            date=date,
        )

    def _extract_bodies(self, msg: email.message.Message) -> tuple[str | None, str | None]:
        """Walk MIME parts and return (plain_text, html_text)."""
        body_text: str | None = None
        body_html: str | None = None

        for part in msg.walk():
            # Skip multipart containers; they have no content of their own
            if part.get_content_maintype() == "multipart":
                continue
            if "attachment" in str(part.get("Content-Disposition", "")):
                continue

            content_type = part.get_content_type()
            if content_type not in ("text/plain", "text/html"):
                continue

            payload = part.get_content()
            if not isinstance(payload, str):
                continue
            if content_type == "text/plain" and body_text is None:
                body_text = payload
            elif content_type == "text/html" and body_html is None:
                body_html = payload

        return body_text, body_html

    def _parse_from(self, header_value: object) -> str:
        if not header_value:
            return ""
        _, addr = email.utils.parseaddr(str(header_value))
        return addr.strip().lower()

    def _parse_address_list(self, header_values: list[object]) -> list[str]:
        if not header_values:
            return []
        pairs = email.utils.getaddresses([str(value) for value in header_values])
        return [addr for _, addr in pairs if addr]

    def _raw_header(self, msg: email.message.Message, name: str) -> str | None:
        # Bypass the policy header factory; it chokes on some invalid dates
        for key, value in msg.raw_items():
            if key.lower() == name.lower():
                return str(value)
        return None

    def _parse_date(self, header_value: object) -> datetime:
        """Return a timezone-aware date; missing or bad dates become now."""
        if header_value:
            try:
                parsed = email.utils.parsedate_to_datetime(str(header_value))
            except (TypeError, ValueError, IndexError):
                parsed = None
            if parsed is not None:
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=UTC)
                return parsed
        return datetime.now(UTC)
