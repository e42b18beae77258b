"""Resolve the intended recipient of a message on a shared mailbox.

Forwarding and catch-all setups rewrite ``To``; the delivery headers
added by the receiving MTA are more trustworthy, so they are tried
first.
"""

from __future__ import annotations

import re

from .models import ParsedMessage

HEADER_PRIORITY = ("x-original-to", "delivered-to", "envelope-to", "to")

_ADDRESS_RE = re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", re.IGNORECASE)
_TOKEN_SPLIT_RE = re.compile(r"[,\s]+")


def addresses_in(value: str) -> list[str]:
    """Tokenize a header value and return the valid addresses, lowercased."""
    found: list[str] = []
    for token in _TOKEN_SPLIT_RE.split(value or ""):
        match = _ADDRESS_RE.search(token)
        if match:
            found.append(match.group(0).lower())
    return found


def resolve_recipients(message: ParsedMessage) -> list[str]:
    """Return the recipients from the first header that yields any.

    Order: X-Original-To, Delivered-To, Envelope-To, To, then the
    parsed To address list.  The result is deduplicated and keeps
    first-seen order; consumers treat element 0 as canonical.  An
    empty list means the message cannot be attributed.
    """
    sources = [message.headers.get(name, []) for name in HEADER_PRIORITY]
    sources.append(message.to_addresses)

    for values in sources:
        recipients: dict[str, None] = {}
        for value in values:
            for address in addresses_in(value):
                recipients.setdefault(address, None)
        if recipients:
            return list(recipients)
    return []
