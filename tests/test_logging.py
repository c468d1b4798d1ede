"""
Tests for structured logging processors.
"""
import logging

import pytest

from checkout_reconciliation.monitoring.logging import (
    REDACTED,
    app_context_processor,
    redact_sensitive_fields,
    setup_logging,
)


class TestProcessors:
    @pytest.mark.unit
    def test_shopper_fields_are_redacted(self):
        event = redact_sensitive_fields(
            None,
            "info",
            {
                "event": "checkout_session_created",
                "shipping_address": {"line1": "12 Analytical Row"},
                "checkout_url": "https://checkout.stripe.com/c/pay/cs_test_a1?token=abc#frag",
                "session_id": "5f0c",
            },
        )

        assert event["shipping_address"] == REDACTED
        assert event["checkout_url"] == "https://checkout.stripe.com/c/pay/cs_test_a1"
        assert event["session_id"] == "5f0c"

    @pytest.mark.unit
    def test_app_context_does_not_override_bound_values(self, test_settings):
        add_app_context = app_context_processor(test_settings)

        event = add_app_context(None, "info", {"event": "x", "app_env": "override"})

        assert event["app_name"] == "checkout-reconciliation-test"
        assert event["app_env"] == "override"

    @pytest.mark.unit
    def test_setup_logging_is_repeatable(self, test_settings):
        setup_logging(test_settings)
        setup_logging(test_settings)

        assert len(logging.getLogger().handlers) == 1
        assert logging.getLogger().level == logging.DEBUG
