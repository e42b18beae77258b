"""Tenant router: partition codes by recipient, overlap allowed."""

from __future__ import annotations

from collections.abc import Iterable

from .models import TenantConfig, VerificationCode, normalize_email


def group_codes_by_tenant(
    codes: Iterable[VerificationCode],
    tenants: Iterable[TenantConfig],
) -> dict[str, list[VerificationCode]]:
    """Bucket *codes* for every enabled tenant.

    A code lands in each tenant whose recipient set contains its
    normalized recipient.  Codes without a recipient land nowhere.
    Input order is kept within each bucket.
    """
    enabled = [tenant for tenant in tenants if tenant.enabled]
    buckets: dict[str, list[VerificationCode]] = {tenant.id: [] for tenant in enabled}

    for code in codes:
        recipient = normalize_email(code.normalized_recipient or "")
        if not recipient:
            continue
        for tenant in enabled:
            if recipient in tenant.recipients:
                buckets[tenant.id].append(code)

    return buckets
