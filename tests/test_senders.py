"""Tests for otp_relay.senders."""

from __future__ import annotations

from otp_relay.senders import is_sender_allowed


class TestIsSenderAllowed:
    def test_unconfigured_admits_everyone(self):
        assert is_sender_allowed("anyone@anywhere.com") is True

    def test_empty_sender_rejected_without_override(self):
        assert is_sender_allowed("") is False
        assert is_sender_allowed("", allow_any=True) is True

    def test_allow_any_overrides_lists(self):
        assert is_sender_allowed("x@evil.com", ["ok@good.com"], allow_any=True) is True

    def test_exact_sender_match(self):
        assert is_sender_allowed("OK@Good.com", ["ok@good.com"]) is True
        assert is_sender_allowed("other@good.com", ["ok@good.com"]) is False

    def test_domain_suffix_match(self):
        assert is_sender_allowed("noreply@tm.openai.com", [], ["tm.openai.com"]) is True
        assert is_sender_allowed("noreply@TM.OpenAI.com", [], ["tm.openai.com"]) is True

    def test_domain_requires_at_boundary(self):
        assert is_sender_allowed("x@evilopenai.com", [], ["openai.com"]) is False

    def test_leading_at_in_domain_tolerated(self):
        assert is_sender_allowed("x@openai.com", [], ["@openai.com"]) is True

    def test_no_match_rejected(self):
        assert is_sender_allowed("x@evil.com", ["ok@good.com"], ["good.org"]) is False
