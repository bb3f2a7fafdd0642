"""Tests for the content precheck."""

import pytest

from context_memory.precheck import ContentPrecheck


@pytest.fixture
def precheck():
    return ContentPrecheck()


def test_clean_content_allowed(precheck):
    result = precheck.check("I prefer thin crust pizza")

    assert result.decision == "allow"
    assert result.redacted_content is None
    assert result.pii_types == []
    assert not result.blocked


def test_email_redacted(precheck):
    result = precheck.check("Reach me at jane@example.com tomorrow")

    assert result.decision == "redact"
    assert result.redacted_content == "Reach me at [REDACTED_EMAIL] tomorrow"
    assert result.pii_types == ["email"]


def test_phone_redacted(precheck):
    result = precheck.check("Call 555-123-4567 after lunch")

    assert result.decision == "redact"
    assert "[REDACTED_PHONE]" in result.redacted_content
    assert "555-123-4567" not in result.redacted_content


def test_ssn_blocks(precheck):
    result = precheck.check("My SSN is 123-45-6789")

    assert result.decision == "block"
    assert result.blocked
    assert "ssn" in result.pii_types
    assert result.redacted_content is None


def test_credit_card_blocks(precheck):
    result = precheck.check("Card 4111 1111 1111 1111 expires soon")

    assert result.decision == "block"
    assert "credit_card" in result.pii_types


def test_sensitive_keywords_flag_only(precheck):
    result = precheck.check("I forgot my password again")

    assert result.decision == "allow"
    assert "sensitive_keywords" in result.pii_types


def test_oversized_content_blocks():
    precheck = ContentPrecheck(max_content_length=100)

    result = precheck.check("a" * 101)

    assert result.decision == "block"
    assert "Content too long" in result.reasons


@pytest.mark.parametrize(
    "content",
    [
        "run eval(payload) now",
        "exec (cmd)",
        "<script>alert(1)</script>",
        "click javascript:void(0)",
    ],
)
def test_malicious_patterns_block(precheck, content):
    result = precheck.check(content)

    assert result.decision == "block"
    assert "Potentially malicious content detected" in result.reasons
