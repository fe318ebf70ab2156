"""Tests for configuration validation."""

from __future__ import annotations

import importlib.util

import pytest


@pytest.fixture(scope="module")
def real_config():
    """Load app/config.py directly; conftest replaces app.config in sys.modules."""
    spec = importlib.util.spec_from_file_location("real_app_config", "app/config.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)  # type: ignore[union-attr]
    return module


def _settings(real_config, **overrides):
    values = {
        "jwt_secret": "x" * 40,
        "payment_gateway_backend": "mercadopago",
        "mercadopago_access_token": "APP_USR-token",
        "mercadopago_webhook_secret": "secret",
        "database_url": "postgresql+psycopg://db.internal/billing",
    }
    values.update(overrides)
    return real_config.Settings(**values)


def test_complete_settings_have_no_warnings(real_config) -> None:
    assert real_config.validate_settings(_settings(real_config)) == []


def test_missing_jwt_secret(real_config) -> None:
    warnings = real_config.validate_settings(_settings(real_config, jwt_secret=""))
    assert any("JWT_SECRET is not set" in w for w in warnings)


def test_short_jwt_secret(real_config) -> None:
    warnings = real_config.validate_settings(_settings(real_config, jwt_secret="short"))
    assert any("shorter than 32" in w for w in warnings)


def test_missing_gateway_credentials(real_config) -> None:
    warnings = real_config.validate_settings(
        _settings(real_config, mercadopago_access_token="", mercadopago_webhook_secret="")
    )
    assert any("MERCADOPAGO_ACCESS_TOKEN" in w for w in warnings)
    assert any("MERCADOPAGO_WEBHOOK_SECRET" in w for w in warnings)


def test_stub_backend_warns(real_config) -> None:
    warnings = real_config.validate_settings(
        _settings(real_config, payment_gateway_backend="stub")
    )
    assert warnings == ["PAYMENT_GATEWAY_BACKEND=stub: no real charges will be made"]


def test_unknown_backend(real_config) -> None:
    warnings = real_config.validate_settings(
        _settings(real_config, payment_gateway_backend="paypal")
    )
    assert any("Unknown PAYMENT_GATEWAY_BACKEND" in w for w in warnings)


def test_workers_floor(real_config) -> None:
    warnings = real_config.validate_settings(_settings(real_config, invoice_cycle_workers=0))
    assert any("INVOICE_CYCLE_WORKERS" in w for w in warnings)


def test_localhost_database_in_production(real_config, monkeypatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "production")
    warnings = real_config.validate_settings(
        _settings(real_config, database_url="postgresql+psycopg://localhost/billing")
    )
    assert any("localhost" in w for w in warnings)
