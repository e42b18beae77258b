"""Tests for otp_relay.parser."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from otp_relay.errors import ParseError
from otp_relay.extractor import extract_code
from otp_relay.parser import MimeParser, html_to_text

from tests.conftest import _build_alternative_email, _build_html_email, _build_plain_email


@pytest.fixture
def parser() -> MimeParser:
    return MimeParser()


class TestMimeParserPlainText:
    def test_parse_plain_email(self, parser: MimeParser, plain_eml_bytes: bytes):
        result = parser.parse(plain_eml_bytes)
        assert result.subject == "Your verification code"
        assert result.from_address == "noreply@service.com"
        assert result.to_addresses == ["alice@example.com"]
        assert "551234" in result.body
        assert result.date == datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

    def test_recipient_headers_collected(self, parser: MimeParser):
        raw = _build_plain_email(
            extra_headers={"Delivered-To": "relay@test.com", "X-Original-To": "bob@example.com"},
        )
        result = parser.parse(raw)
        assert result.headers["x-original-to"] == ["bob@example.com"]
        assert result.headers["delivered-to"] == ["relay@test.com"]
        assert result.headers["envelope-to"] == []
        assert result.headers["to"] == ["alice@example.com"]

    def test_missing_date_defaults_to_now(self, parser: MimeParser):
        before = datetime.now(UTC)
        result = parser.parse(_build_plain_email(date=""))
        assert result.date >= before
        assert result.date.tzinfo is not None

    def test_garbage_date_defaults_to_now(self, parser: MimeParser):
        before = datetime.now(UTC)
        result = parser.parse(_build_plain_email(date="not a date"))
        assert result.date >= before


class TestMimeParserHtml:
    def test_html_only_body_is_stripped(self, parser: MimeParser):
        raw = _build_html_email(body_html="<p>Your code is <b>246810</b></p><style>p{}</style>")
        result = parser.parse(raw)
        assert "246810" in result.body
        assert "<b>" not in result.body
        assert "p{}" not in result.body

    def test_plain_part_preferred(self, parser: MimeParser):
        raw = _build_alternative_email(body_text="plain 111111", body_html="<p>html 222222</p>")
        result = parser.parse(raw)
        assert "111111" in result.body
        assert "222222" not in result.body

    def test_from_address_is_bare_and_lowercased(self, parser: MimeParser):
        raw = _build_alternative_email(body_text="x", body_html="<p>x</p>")
        assert parser.parse(raw).from_address == "noreply@service.com"


class TestHtmlToText:
    def test_entities_unescaped(self):
        assert html_to_text("<div>A&amp;B</div>") == "A&B"

    def test_block_boundaries_separate_words(self):
        assert html_to_text("one<br>two<p>three</p>") == "one two three"

    def test_attribute_values_are_not_text(self):
        markup = '<img alt="a>b" src="https://t.example/px?id=987654"><p>Welcome aboard</p>'
        assert html_to_text(markup) == "Welcome aboard"

    def test_tracking_pixel_digits_never_become_a_code(self, parser: MimeParser):
        raw = _build_html_email(
            body_html='<img alt="a>b" src="https://t.example/px?id=987654"><p>Welcome aboard</p>',
            subject="Welcome",
        )
        message = parser.parse(raw)
        assert extract_code(message.subject, message.body) is None


class TestMimeParserErrors:
    def test_unknown_charset_raises_parse_error(self, parser: MimeParser):
        raw = (
            b"Subject: hi\r\n"
            b"From: a@b.com\r\n"
            b"Content-Type: text/plain; charset=x-no-such-charset\r\n"
            b"\r\n"
            b"code 123456\r\n"
        )
        with pytest.raises(ParseError):
            parser.parse(raw)
