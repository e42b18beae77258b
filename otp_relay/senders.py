"""Sender admission filter."""

from __future__ import annotations

from collections.abc import Iterable


def is_sender_allowed(
    sender: str,
    allowed_senders: Iterable[str] = (),
    allowed_domains: Iterable[str] = (),
    *,
    allow_any: bool = False,
) -> bool:
    """Decide whether mail from *sender* may produce codes.

    ``allow_any`` admits everything.  With both allow-lists empty no
    restriction is configured and every sender with an address is
    admitted.  Otherwise the sender must match an allowed address
    exactly or end with ``@<allowed domain>``.  Case-insensitive.
    """
    if allow_any:
        return True

    normalized = (sender or "").strip().lower()
    if not normalized:
        return False

    senders = {s.strip().lower() for s in allowed_senders if s.strip()}
    domains = [d.strip().lower().lstrip("@") for d in allowed_domains if d.strip()]
    if not senders and not domains:
        return True
    if normalized in senders:
        return True
    return any(normalized.endswith(f"@{domain}") for domain in domains)
