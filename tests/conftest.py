"""Shared pytest fixtures for Devisly tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from devisly.infra.settings import Settings, set_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_settings():
    """Drop process settings installed by a test.

    get_settings() caches a module-level Settings; without this reset a test
    that installs strict-account or task-auth settings leaks into the next.
    """
    set_settings(None)
    yield
    set_settings(None)


@pytest.fixture
def settings():
    """Fully configured settings, installed as the process settings."""
    value = Settings(
        openai_api_key="sk-test",
        unipile_dsn="api1.unipile.com:13211",
        unipile_api_key="unipile-test-key",
        unipile_account_id="acc_123",
        whatsapp_business_number="+33700000000",
        tasks_backend="inline",
        app_base_url="https://app.devisly.test",
        web_link_secret="test-web-link-secret-at-least-32-bytes",
        stripe_secret_key="sk_test_123",
        stripe_subscription_price_id="price_123",
    )
    set_settings(value)
    return value
