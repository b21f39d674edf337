"""Thin wrapper around Stripe SDK.

Purpose:
- Encapsulate Stripe API calls so tool code doesn't import stripe.* directly.
- Accept idempotency_key for safe retries.
- Never log full Stripe payloads (only IDs + correlation metadata).
"""

from __future__ import annotations

from typing import Any

import stripe

from devisly.infra.settings import ConfigurationError
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context

logger = get_logger(__name__)


class StripeConfigurationError(ConfigurationError):
    """Stripe key or subscription price not configured."""


class StripeClient:
    """Wrapper for Stripe subscription Checkout.

    Usage:
        client = StripeClient(api_key, price_id)
        session = client.create_subscription_checkout(
            idempotency_key="user:42:subscription_checkout:2026-10-17",
            success_url="https://app/payment/success?session_id={CHECKOUT_SESSION_ID}",
            cancel_url="https://app/payment/canceled",
            metadata={"user_id": "42"},
        )
        url = session["url"]
    """

    def __init__(self, api_key: str, price_id: str) -> None:
        """Initialize the Stripe client.

        Raises:
            StripeConfigurationError: If the key or the price id is missing.
        """
        if not api_key:
            raise StripeConfigurationError("Missing Stripe config: STRIPE_SECRET_KEY")
        if not price_id:
            raise StripeConfigurationError("Missing Stripe config: STRIPE_SUBSCRIPTION_PRICE_ID")
        self._api_key = api_key
        self._price_id = price_id

    def create_subscription_checkout(
        self,
        *,
        idempotency_key: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a subscription Checkout Session for the configured price.

        Args:
            idempotency_key: Idempotency key for safe retries.
            success_url: Redirect URL on success.
            cancel_url: Redirect URL on cancel.
            metadata: Copied on the session and on the subscription.
            correlation_id: Optional correlation ID for logging.

        Returns:
            Dict with session_id, url, and status.

        Raises:
            stripe.StripeError: On API failure.
        """
        client = stripe.StripeClient(self._api_key)

        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": self._price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if metadata:
            params["metadata"] = metadata
            params["subscription_data"] = {"metadata": metadata}

        session = client.v1.checkout.sessions.create(
            params=params,
            options={"idempotency_key": idempotency_key},
        )

        # Log only IDs, never full payload
        logger.info(
            "stripe checkout session created",
            extra={
                "extra_fields": safe_log_context(
                    session_id=session.id,
                    correlation_id=correlation_id,
                )
            },
        )

        return {
            "session_id": session.id,
            "url": session.url,
            "status": session.status,
        }
