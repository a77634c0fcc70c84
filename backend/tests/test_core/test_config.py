"""
Tests for application settings and the per-gateway config models.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from zambezi.core.config import (
    AfterpayGatewayConfig,
    CodGatewayConfig,
    PayPalGatewayConfig,
    Settings,
    StripeGatewayConfig,
)


# ============================================================================
# Settings
# ============================================================================


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None, environment="development")

        assert settings.api_v1_prefix == "/api/v1"
        assert settings.cod_max_amount == Decimal("500.00")
        assert settings.afterpay_min_amount == Decimal("35.00")
        assert settings.afterpay_max_amount == Decimal("2000.00")
        assert settings.is_development is True
        assert settings.is_production is False

    def test_rejects_non_postgres_database_url(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, database_url="mysql://localhost/zambezi")

    def test_rejects_default_secret_key_in_production(self):
        with pytest.raises(ValidationError):
            Settings(
                _env_file=None,
                environment="production",
                secret_key="dev-secret-key-change-in-production",
            )

    def test_cors_origins_from_comma_separated_string(self):
        settings = Settings(
            _env_file=None,
            cors_origins="https://a.example.com, https://b.example.com",
        )
        assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]

    def test_production_requires_signed_webhooks(self):
        settings = Settings(
            _env_file=None,
            environment="production",
            secret_key="a-production-secret-key-of-enough-length",
        )

        assert settings.stripe_gateway().require_signed_webhooks is True
        assert settings.paypal_gateway().require_signed_webhooks is True

    def test_gateway_configs_carry_frontend_url(self):
        settings = Settings(_env_file=None, frontend_url="https://shop.example.com")

        assert settings.paypal_gateway().frontend_url == "https://shop.example.com"
        assert settings.afterpay_gateway().frontend_url == "https://shop.example.com"


# ============================================================================
# Gateway configs
# ============================================================================


class TestGatewayConfigs:
    def test_stripe_enabled_by_secret_key(self):
        assert StripeGatewayConfig().enabled is False
        assert StripeGatewayConfig(secret_key="sk_test_123").enabled is True

    def test_paypal_needs_flag_and_credentials(self):
        assert PayPalGatewayConfig(client_id="id", client_secret="secret").enabled is False
        assert PayPalGatewayConfig(enabled_flag=True).enabled is False
        assert (
            PayPalGatewayConfig(enabled_flag=True, client_id="id", client_secret="secret").enabled
            is True
        )

    def test_paypal_base_url_by_mode(self):
        assert PayPalGatewayConfig().base_url == "https://api-m.sandbox.paypal.com"
        assert PayPalGatewayConfig(mode="live").base_url == "https://api-m.paypal.com"

    def test_afterpay_base_url_by_sandbox(self):
        assert AfterpayGatewayConfig().base_url == "https://global-api-sandbox.afterpay.com"
        assert AfterpayGatewayConfig(sandbox=False).base_url == "https://global-api.afterpay.com"

    def test_afterpay_enabled_by_credentials(self):
        assert AfterpayGatewayConfig(merchant_id="m").enabled is False
        assert AfterpayGatewayConfig(merchant_id="m", secret_key="s").enabled is True

    def test_configs_are_frozen(self):
        config = CodGatewayConfig()
        with pytest.raises(ValidationError):
            config.enabled = False
