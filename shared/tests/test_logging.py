"""Tests for structured logging helpers."""

from shared.utils.logging import (
    REDACTED,
    add_correlation_id,
    get_correlation_id,
    redact_sensitive,
    set_correlation_id,
)


class TestCorrelationId:
    """Tests for correlation id context handling."""

    def test_set_uses_given_id(self):
        assert set_correlation_id("corr-1") == "corr-1"
        assert get_correlation_id() == "corr-1"

    def test_set_generates_id(self):
        generated = set_correlation_id()
        assert len(generated) == 36
        assert get_correlation_id() == generated

    def test_processor_adds_id(self):
        set_correlation_id("corr-2")
        event = add_correlation_id(None, "info", {"event": "x"})
        assert event["correlation_id"] == "corr-2"


class TestRedaction:
    """Tests for credential masking."""

    def test_masks_secret_keys(self):
        event = redact_sensitive(
            None,
            "info",
            {"event": "deposit_submitting", "password": "s3cret", "Authorization": "Basic abc"},
        )

        assert event["password"] == REDACTED
        assert event["Authorization"] == REDACTED
        assert event["event"] == "deposit_submitting"

    def test_leaves_empty_values(self):
        event = redact_sensitive(None, "info", {"token": None, "doi": "10.55555/x"})

        assert event["token"] is None
        assert event["doi"] == "10.55555/x"
