"""Read-only tenant directory backed by a JSON file or env var.

Records are validated into :class:`TenantConfig`; invalid records are
skipped.  The source is re-read whenever its signature changes, and a
failed reload keeps serving the last good tenant list.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from .config import TenantDirectoryConfig
from .errors import ParseError
from .models import TenantConfig

logger = structlog.get_logger()


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _strip_bom(value: str) -> str:
    return value[1:] if value.startswith("\ufeff") else value


class TenantDirectory:
    """Loads tenants on demand and caches them by source signature."""

    def __init__(self, config: TenantDirectoryConfig) -> None:
        self._config = config
        self._tenants: list[TenantConfig] | None = None
        self._signature: str | None = None
        self._warned: set[str] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_tenants(self) -> list[TenantConfig]:
        signature = self._source_signature()
        if self._tenants is not None and signature == self._signature:
            return self._tenants

        try:
            tenants = self._load()
        except ParseError as exc:
            if self._tenants is None:
                raise
            self._warn_once("reload_failed", "tenant_config_reload_failed", error=str(exc))
            return self._tenants

        self._tenants = tenants
        self._signature = signature
        self._warned.discard("reload_failed")
        logger.info("tenant_config_loaded", tenants=len(tenants))
        return tenants

    def list_enabled(self) -> list[TenantConfig]:
        return [tenant for tenant in self.list_tenants() if tenant.enabled]

    def list_enabled_tenant_ids(self) -> list[str]:
        return [tenant.id for tenant in self.list_enabled()]

    def get_tenant_by_id(self, tenant_id: str) -> TenantConfig | None:
        for tenant in self.list_enabled():
            if tenant.id == tenant_id:
                return tenant
        return None

    def get_tenant_by_access_key(self, access_key: str) -> TenantConfig | None:
        if not access_key or not access_key.strip():
            return None
        digest = sha256_hex(access_key.strip())
        for tenant in self.list_enabled():
            if hmac.compare_digest(tenant.access_key_hash, digest):
                return tenant
        return None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _config_path(self) -> Path | None:
        raw = (self._config.config_path or "").strip()
        if not raw:
            return None
        return Path(raw).expanduser().resolve()

    def _source_signature(self) -> str:
        path = self._config_path()
        if path is not None:
            try:
                stat = path.stat()
            except OSError:
                return f"path:{path}:missing"
            return f"path:{path}:{stat.st_mtime_ns}:{stat.st_size}"
        raw = self._config.config_json or ""
        return f"env:{sha256_hex(_strip_bom(raw))}:{len(raw)}"

    def _load(self) -> list[TenantConfig]:
        path = self._config_path()
        if path is not None:
            try:
                raw = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise ParseError(f"tenant config not readable: {path}") from exc
            return self._parse(raw, "TENANT_CONFIG_PATH")

        raw = self._config.config_json
        if not raw:
            return []
        self._warn_once("env_fallback", "tenant_config_env_fallback")
        return self._parse(raw, "TENANT_CONFIG_JSON")

    def _parse(self, raw: str, source: str) -> list[TenantConfig]:
        try:
            parsed = json.loads(_strip_bom(raw))
        except json.JSONDecodeError as exc:
            raise ParseError(f"{source} must be valid JSON") from exc
        if not isinstance(parsed, list):
            raise ParseError(f"{source} must be a JSON array")

        tenants: list[TenantConfig] = []
        seen: set[str] = set()
        for index, item in enumerate(parsed):
            tenant = self._parse_record(item, source)
            if tenant is None:
                logger.warning("tenant_record_skipped", source=source, index=index)
                continue
            if tenant.id in seen:
                # First record wins; a second claim on the id never routes codes
                logger.warning(
                    "tenant_record_skipped",
                    source=source,
                    index=index,
                    tenant_id=tenant.id,
                    reason="duplicate_id",
                )
                continue
            seen.add(tenant.id)
            tenants.append(tenant)
        return tenants

    def _parse_record(self, item: Any, source: str) -> TenantConfig | None:
        if not isinstance(item, dict):
            return None
        record = dict(item)
        if not record.get("accessKeyHash") and isinstance(record.get("accessKey"), str):
            plaintext = record["accessKey"].strip()
            if plaintext:
                self._warn_once("plaintext_key", "tenant_config_plaintext_access_key", source=source)
                record["accessKeyHash"] = sha256_hex(plaintext)
        if record.get("enabled") is not False:
            record["enabled"] = True
        try:
            return TenantConfig.model_validate(record)
        except ValidationError:
            return None

    def _warn_once(self, key: str, event: str, **context: object) -> None:
        if key in self._warned:
            return
        self._warned.add(key)
        logger.warning(event, **context)

