"""Access and payment tools: send_web_link, send_payment_link.

Web access links carry a short-lived HS256 JWT; users have no password.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

import jwt
import stripe

from devisly.infra.settings import ConfigurationError, Settings
from devisly.messaging.unipile_client import UnipileError
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context
from devisly.stripe.client import StripeClient, StripeConfigurationError

from .base import ToolContext, ToolResult, log_execution, send_text

logger = get_logger(__name__)

WEB_TOKEN_ALGORITHM = "HS256"
WEB_TOKEN_PURPOSE = "web_access"

TokenStatus = Literal["valid", "expired", "invalid"]


@dataclass(frozen=True)
class WebTokenCheck:
    status: TokenStatus
    user_id: int | None = None


def generate_web_token(settings: Settings, user_id: int, now: datetime | None = None) -> str:
    """Signed token granting browser access to one user's documents.

    Raises:
        ConfigurationError: If WEB_LINK_SECRET is not configured.
    """
    if not settings.web_link_secret:
        raise ConfigurationError("Missing web link config: WEB_LINK_SECRET")
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "purpose": WEB_TOKEN_PURPOSE,
        "iat": issued,
        "exp": issued + timedelta(minutes=settings.web_link_expiration_minutes),
    }
    return jwt.encode(payload, settings.web_link_secret, algorithm=WEB_TOKEN_ALGORITHM)


def verify_web_token(settings: Settings, token: str | None) -> WebTokenCheck:
    """Check a web access token.

    An expired token still names its user, so a fresh link can be offered.
    """
    if not token or not settings.web_link_secret:
        return WebTokenCheck("invalid")
    try:
        claims = jwt.decode(token, settings.web_link_secret, algorithms=[WEB_TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        claims = jwt.decode(
            token,
            settings.web_link_secret,
            algorithms=[WEB_TOKEN_ALGORITHM],
            options={"verify_exp": False},
        )
        return WebTokenCheck("expired", _user_id(claims))
    except jwt.InvalidTokenError:
        return WebTokenCheck("invalid")

    user_id = _user_id(claims)
    if user_id is None or claims.get("purpose") != WEB_TOKEN_PURPOSE:
        return WebTokenCheck("invalid")
    return WebTokenCheck("valid", user_id)


def _user_id(claims: dict) -> int | None:
    try:
        return int(claims.get("sub"))
    except (TypeError, ValueError):
        return None


def web_access_url(settings: Settings, token: str) -> str:
    return f"{settings.app_base_url}/u/{token}"


def _web_link_message(is_turkish: bool, url: str, minutes: int) -> str:
    if is_turkish:
        return (
            "🔗 Güvenli erişim bağlantınız:\n\n"
            f"{url}\n\n"
            f"⏱️ Bu bağlantı {minutes} dakika geçerlidir.\n\n"
            "Tarayıcınızdan tekliflerinizi, faturalarınızı ve müşterilerinizi görüntüleyebilirsiniz."
        )
    return (
        "🔗 Voici votre lien d'accès sécurisé:\n\n"
        f"{url}\n\n"
        f"⏱️ Ce lien est valable {minutes} minutes.\n\n"
        "Vous pourrez consulter vos devis, factures et clients depuis votre navigateur."
    )


def send_web_link(ctx: ToolContext) -> ToolResult:
    minutes = ctx.settings.web_link_expiration_minutes
    url = web_access_url(ctx.settings, generate_web_token(ctx.settings, ctx.user.id))
    try:
        send_text(ctx, _web_link_message(ctx.user.is_turkish, url, minutes))
    except UnipileError as exc:
        return ToolResult.failure(f"Impossible d'envoyer le lien: {exc}")

    log_execution(ctx, "SendWebLink", "web_link_sent")
    return ToolResult.ok(
        url_sent=True,
        expiration_minutes=minutes,
        message="Lien d'accès envoyé avec succès",
    )


def _payment_message(is_turkish: bool, url: str) -> str:
    if is_turkish:
        return (
            "💳 BTP Assistant abonelik ödeme bağlantısı\n\n"
            "Hesabınızı etkinleştirmek için aşağıdaki bağlantıya tıklayın:\n"
            f"{url}\n\n"
            "Aylık abonelik: 29,90 € / ay\n\n"
            "Ödeme sonrasında sınırsız teklif ve fatura oluşturabilirsiniz."
        )
    return (
        "💳 Lien de paiement pour votre abonnement BTP Assistant\n\n"
        "Cliquez sur le lien ci-dessous pour activer votre compte :\n"
        f"{url}\n\n"
        "Abonnement mensuel : 29,90 € / mois\n\n"
        "Après paiement, vous pourrez créer des devis et factures illimités."
    )


def _stripe_client(ctx: ToolContext) -> StripeClient:
    if ctx.stripe_factory is not None:
        return ctx.stripe_factory()
    return StripeClient(ctx.settings.stripe_secret_key, ctx.settings.stripe_subscription_price_id)


def send_payment_link(ctx: ToolContext) -> ToolResult:
    user = ctx.user
    turkish = user.is_turkish
    if user.subscription_status == "active":
        return ToolResult.ok(
            already_active=True,
            message="Zaten aktif bir aboneliğiniz var." if turkish else "Vous avez déjà un abonnement actif.",
        )

    base_url = ctx.settings.app_base_url
    try:
        session = _stripe_client(ctx).create_subscription_checkout(
            # One checkout per user per day; a retried turn reuses it
            idempotency_key=f"user:{user.id}:subscription_checkout:{ctx.today().isoformat()}",
            success_url=f"{base_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/payment/canceled",
            metadata={"user_id": str(user.id)},
        )
    except StripeConfigurationError:
        logger.error("payment link unavailable: stripe not configured")
        return ToolResult.failure(
            "Ödeme sistemi yapılandırılmamış. Lütfen destekle iletişime geçin."
            if turkish
            else "Le système de paiement n'est pas configuré. Veuillez contacter le support."
        )
    except stripe.StripeError as exc:
        logger.error(
            "payment link stripe error",
            extra={"extra_fields": safe_log_context(error_type=type(exc).__name__)},
        )
        return ToolResult.failure(
            "Ödeme bağlantısı oluşturulamadı." if turkish else "Impossible de générer le lien de paiement."
        )

    try:
        send_text(ctx, _payment_message(turkish, session["url"]))
    except UnipileError as exc:
        return ToolResult.failure(f"Impossible d'envoyer le lien de paiement: {exc}")

    log_execution(ctx, "SendPaymentLink", "payment_link_sent", checkout_session_id=session["session_id"])
    return ToolResult.ok(
        checkout_session_id=session["session_id"],
        payment_url=session["url"],
        message="Ödeme bağlantısı gönderildi" if turkish else "Lien de paiement envoyé",
    )
