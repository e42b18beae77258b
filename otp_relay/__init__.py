"""otp-relay: shared-mailbox verification code relay.

Public API re-exported here for convenience::

    from otp_relay import CodeService, RelayConfig, create_app
"""

from .api import create_app
from .cache import CacheStore
from .config import (
    CacheConfig,
    ImapConfig,
    RelayConfig,
    SenderFilterConfig,
    TenantDirectoryConfig,
    WatcherConfig,
)
from .errors import (
    ParseError,
    ProtocolError,
    RefreshTimeoutError,
    RelayError,
    TransientProtocolError,
)
from .extractor import extract_code
from .fetch import FetchCycle
from .imap_client import AsyncImapClient
from .logging import setup_logging
from .models import CacheEntry, CodesResponse, StreamEvent, TenantConfig, VerificationCode
from .parser import MimeParser
from .recipients import resolve_recipients
from .refresh import RefreshCoordinator
from .routing import group_codes_by_tenant
from .senders import is_sender_allowed
from .service import CodeService
from .tenants import TenantDirectory
from .watcher import MailboxWatcher

__all__ = [
    "AsyncImapClient",
    "CacheConfig",
    "CacheEntry",
    "CacheStore",
    "CodeService",
    "CodesResponse",
    "FetchCycle",
    "ImapConfig",
    "MailboxWatcher",
    "MimeParser",
    "ParseError",
    "ProtocolError",
    "RefreshCoordinator",
    "RefreshTimeoutError",
    "RelayConfig",
    "RelayError",
    "SenderFilterConfig",
    "StreamEvent",
    "TenantConfig",
    "TenantDirectory",
    "TenantDirectoryConfig",
    "TransientProtocolError",
    "VerificationCode",
    "WatcherConfig",
    "create_app",
    "extract_code",
    "group_codes_by_tenant",
    "is_sender_allowed",
    "resolve_recipients",
    "setup_logging",
]
