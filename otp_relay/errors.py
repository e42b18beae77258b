"""Exception hierarchy for the relay pipeline."""

from __future__ import annotations

_TRANSIENT_TLS_REASONS = ("DECRYPTION_FAILED_OR_BAD_RECORD_MAC", "BAD_RECORD_MAC")
_TRANSIENT_TLS_MESSAGES = ("bad record mac", "decryption failed")


class RelayError(Exception):
    """Base exception for all relay errors."""


class ProtocolError(RelayError):
    """Mailbox session failure. Fails the current fetch cycle."""


class TransientProtocolError(ProtocolError):
    """Recognized TLS/record-layer failure, recoverable by reconnecting."""


class ParseError(RelayError):
    """Malformed message or configuration data."""


class RefreshTimeoutError(RelayError, TimeoutError):
    """A bounded refresh exceeded its deadline. The refresh keeps running."""


def is_transient_tls_error(exc: BaseException | None) -> bool:
    """Return True if *exc* (or anything in its cause chain) is a known
    transient TLS record-layer failure."""
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if isinstance(exc, TransientProtocolError):
            return True

        reason = getattr(exc, "reason", None)
        if isinstance(reason, str):
            if reason.upper() in _TRANSIENT_TLS_REASONS:
                return True
            if any(marker in reason.lower() for marker in _TRANSIENT_TLS_MESSAGES):
                return True

        code = getattr(exc, "code", None)
        if isinstance(code, str) and code.upper().endswith("DECRYPTION_FAILED_OR_BAD_RECORD_MAC"):
            return True

        message = str(exc).lower()
        if any(marker in message for marker in _TRANSIENT_TLS_MESSAGES):
            return True

        exc = exc.__cause__ or exc.__context__
    return False


def to_protocol_error(exc: BaseException) -> ProtocolError:
    """Wrap a low-level imaplib/socket/TLS exception.

    Already-classified errors are returned unchanged.
    """
    if isinstance(exc, ProtocolError):
        return exc
    cls = TransientProtocolError if is_transient_tls_error(exc) else ProtocolError
    wrapped = cls(f"{type(exc).__name__}: {exc}")
    wrapped.__cause__ = exc
    return wrapped


__all__ = [
    "ParseError",
    "ProtocolError",
    "RefreshTimeoutError",
    "RelayError",
    "TransientProtocolError",
    "is_transient_tls_error",
    "to_protocol_error",
]
