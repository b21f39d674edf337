"""Tests for web access tokens, send_web_link and send_payment_link."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import jwt
import pytest
import stripe

from devisly.messaging.unipile_client import ApiError
from devisly.stripe.client import StripeConfigurationError
from devisly.tools.base import ToolContext
from devisly.tools.links import (
    generate_web_token,
    send_payment_link,
    send_web_link,
    verify_web_token,
    web_access_url,
)
from tests.helpers import FakeMessaging, make_user


@pytest.fixture(autouse=True)
def system_logs():
    with patch("devisly.tools.base.system_logs_repository") as repository:
        yield repository


class TestWebToken:
    def test_round_trip(self, settings):
        token = generate_web_token(settings, 7)

        check = verify_web_token(settings, token)

        assert check.status == "valid"
        assert check.user_id == 7

    def test_expired_still_names_user(self, settings):
        issued = datetime.now(timezone.utc) - timedelta(hours=2)
        token = generate_web_token(settings, 7, now=issued)

        check = verify_web_token(settings, token)

        assert check.status == "expired"
        assert check.user_id == 7

    def test_wrong_secret(self, settings):
        token = jwt.encode({"sub": "7", "purpose": "web_access"}, "another-secret-of-sufficient-length", algorithm="HS256")
        assert verify_web_token(settings, token).status == "invalid"

    def test_wrong_purpose(self, settings):
        token = jwt.encode({"sub": "7", "purpose": "reset"}, settings.web_link_secret, algorithm="HS256")
        assert verify_web_token(settings, token).status == "invalid"

    def test_garbage(self, settings):
        assert verify_web_token(settings, "not-a-token").status == "invalid"
        assert verify_web_token(settings, None).status == "invalid"

    def test_missing_secret(self, settings):
        with pytest.raises(RuntimeError, match="WEB_LINK_SECRET"):
            generate_web_token(replace(settings, web_link_secret=""), 7)

    def test_url(self, settings):
        assert web_access_url(settings, "abc") == "https://app.devisly.test/u/abc"


class TestSendWebLink:
    def test_link_sent(self, settings, system_logs):
        messaging = FakeMessaging()
        ctx = ToolContext(user=make_user(), settings=settings, messaging=messaging)

        result = send_web_link(ctx)

        assert result.success is True
        assert result.data["expiration_minutes"] == 30
        chat_id, text = messaging.sent[0]
        assert chat_id == "chat_abc"
        assert "https://app.devisly.test/u/" in text
        assert "valable 30 minutes" in text
        token = text.split("/u/")[1].split()[0]
        assert verify_web_token(settings, token).user_id == 7
        assert system_logs.record_event.call_args.kwargs["event"] == "tool_web_link_sent"

    def test_turkish_message(self, settings):
        messaging = FakeMessaging()
        ctx = ToolContext(user=make_user(preferred_language="tr"), settings=settings, messaging=messaging)

        send_web_link(ctx)

        assert messaging.sent[0][1].startswith("🔗 Güvenli erişim bağlantınız")

    def test_send_failure(self, settings):
        messaging = MagicMock()
        messaging.send_text.side_effect = ApiError("HTTP 502", status=502)
        ctx = ToolContext(user=make_user(), settings=settings, messaging=messaging)

        result = send_web_link(ctx)

        assert result.success is False
        assert result.error.startswith("Impossible d'envoyer le lien")


class TestSendPaymentLink:
    def _ctx(self, settings, user=None, stripe_client=None, messaging=None):
        return ToolContext(
            user=user or make_user(subscription_status="pending"),
            settings=settings,
            messaging=messaging or FakeMessaging(),
            stripe_factory=(lambda: stripe_client) if stripe_client is not None else None,
            today=lambda: date(2026, 3, 10),
        )

    def test_already_active(self, settings):
        stripe_client = MagicMock()

        result = send_payment_link(self._ctx(settings, user=make_user(), stripe_client=stripe_client))

        assert result.success is True
        assert result.data["already_active"] is True
        stripe_client.create_subscription_checkout.assert_not_called()

    def test_checkout_link_sent(self, settings):
        stripe_client = MagicMock()
        stripe_client.create_subscription_checkout.return_value = {
            "session_id": "cs_test_1",
            "url": "https://checkout.stripe.com/c/pay/cs_test_1",
            "status": "open",
        }
        messaging = FakeMessaging()

        result = send_payment_link(self._ctx(settings, stripe_client=stripe_client, messaging=messaging))

        assert result.success is True
        assert result.data["checkout_session_id"] == "cs_test_1"
        kwargs = stripe_client.create_subscription_checkout.call_args.kwargs
        assert kwargs["idempotency_key"] == "user:7:subscription_checkout:2026-03-10"
        assert kwargs["success_url"] == "https://app.devisly.test/payment/success?session_id={CHECKOUT_SESSION_ID}"
        assert kwargs["metadata"] == {"user_id": "7"}
        assert "https://checkout.stripe.com/c/pay/cs_test_1" in messaging.sent[0][1]

    def test_stripe_not_configured(self, settings):
        def factory():
            raise StripeConfigurationError("Missing Stripe config: STRIPE_SECRET_KEY")

        ctx = self._ctx(settings)
        ctx.stripe_factory = factory

        result = send_payment_link(ctx)

        assert result.success is False
        assert "pas configuré" in result.error

    def test_stripe_api_error(self, settings):
        stripe_client = MagicMock()
        stripe_client.create_subscription_checkout.side_effect = stripe.APIConnectionError("network down")

        result = send_payment_link(
            self._ctx(settings, user=make_user(subscription_status="canceled", preferred_language="tr"), stripe_client=stripe_client)
        )

        assert result.success is False
        assert result.error == "Ödeme bağlantısı oluşturulamadı."
