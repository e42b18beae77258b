"""Tests for otp_relay.routing."""

from __future__ import annotations

from otp_relay.models import TenantConfig
from otp_relay.routing import group_codes_by_tenant

from tests.conftest import make_code, make_tenant


class TestGroupCodesByTenant:
    def test_routes_by_normalized_recipient(self, alice: TenantConfig, bob: TenantConfig):
        codes = [make_code("111111", "alice@example.com"), make_code("222222", "bob@example.com")]
        buckets = group_codes_by_tenant(codes, [alice, bob])
        assert [c.code for c in buckets["alice"]] == ["111111"]
        assert [c.code for c in buckets["bob"]] == ["222222"]

    def test_every_enabled_tenant_gets_a_bucket(self, alice: TenantConfig, bob: TenantConfig):
        assert group_codes_by_tenant([], [alice, bob]) == {"alice": [], "bob": []}

    def test_overlapping_recipients_fan_out(self, bob: TenantConfig):
        ops = make_tenant("ops", ["shared@example.com"])
        buckets = group_codes_by_tenant([make_code("333333", "shared@example.com")], [bob, ops])
        assert [c.code for c in buckets["bob"]] == ["333333"]
        assert [c.code for c in buckets["ops"]] == ["333333"]

    def test_unresolved_codes_dropped(self, alice: TenantConfig):
        buckets = group_codes_by_tenant([make_code("444444", None)], [alice])
        assert buckets == {"alice": []}

    def test_disabled_tenants_excluded(self, alice: TenantConfig):
        off = make_tenant("off", ["alice@example.com"], enabled=False)
        buckets = group_codes_by_tenant([make_code()], [alice, off])
        assert set(buckets) == {"alice"}

    def test_order_preserved(self, alice: TenantConfig):
        codes = [make_code("555555", minute=5), make_code("666666", minute=1)]
        buckets = group_codes_by_tenant(codes, [alice])
        assert [c.code for c in buckets["alice"]] == ["555555", "666666"]
