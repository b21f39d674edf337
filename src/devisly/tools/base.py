"""Shared pieces for business tool handlers.

A handler is a plain function `handler(ctx, **arguments) -> ToolResult`.
Handlers report domain failures as ToolResult.failure(); anything they raise
is converted by the executor.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Protocol

from devisly.domain.documents import format_currency
from devisly.domain.models import User
from devisly.infra.repositories import system_logs_repository
from devisly.infra.settings import Settings
from devisly.messaging.unipile_client import UnipileClient
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context
from devisly.stripe.client import StripeClient

logger = get_logger(__name__)

_SIRET_PATTERN = re.compile(r"^\d{14}$")
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PDF_CONTENT_TYPE = "application/pdf"


@dataclass(frozen=True)
class ToolResult:
    """Structured outcome fed back to the model as a tool-role message."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    field: str | None = None

    @classmethod
    def ok(cls, **data: Any) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, field: str | None = None) -> ToolResult:
        return cls(success=False, error=error, field=field)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        result: dict[str, Any] = {"success": False, "error": self.error}
        if self.field:
            result["field"] = self.field
        return result


class DocumentRenderer(Protocol):
    """Renders a quote or invoice to PDF bytes (external collaborator)."""

    def render(self, kind: str, document: dict[str, Any], user: User) -> bytes: ...


@dataclass
class ToolContext:
    """What a handler may touch besides the database.

    user is replaced when a handler changes the profile, so later tool calls
    in the same turn see fresh values.
    """

    user: User
    settings: Settings
    messaging: UnipileClient | None = None
    renderer: DocumentRenderer | None = None
    stripe_factory: Callable[[], StripeClient] | None = None
    today: Callable[[], date] = date.today

    @property
    def chat_id(self) -> str | None:
        return self.user.unipile_chat_id


def subscription_error(user: User) -> ToolResult | None:
    """Failure result when the user may not create documents, else None."""
    if user.can_create_documents:
        return None
    if user.subscription_status == "pending":
        return ToolResult.failure(
            "Vous devez avoir un abonnement actif pour créer des documents. "
            "Utilisez la fonction send_payment_link pour obtenir un lien de paiement."
        )
    return ToolResult.failure(
        "Votre abonnement a expiré. Utilisez la fonction send_payment_link pour réactiver votre compte."
    )


def clean_siret(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = re.sub(r"\s", "", str(value))
    return cleaned or None


def siret_error(siret: str | None) -> ToolResult | None:
    if not siret or _SIRET_PATTERN.match(siret):
        return None
    return ToolResult.failure("Le SIRET doit contenir exactement 14 chiffres", field="siret")


def email_error(email: str | None) -> ToolResult | None:
    if not email or _EMAIL_PATTERN.match(email):
        return None
    return ToolResult.failure("Format d'email invalide", field="email")


def strip_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def log_execution(ctx: ToolContext, tool: str, event: str, **metadata: Any) -> None:
    """Audit row tool_<event> in system_logs (best effort)."""
    system_logs_repository.record_event(
        log_type="info",
        event=f"tool_{event}",
        description=f"Tool {tool} executed",
        user_id=ctx.user.id,
        metadata={**metadata, "tool": tool},
    )


def send_text(ctx: ToolContext, text: str) -> str | None:
    """Send a message to the user's chat.

    Raises:
        RuntimeError: If no messaging client or chat id is available.
        UnipileError: On send failure.
    """
    if ctx.messaging is None:
        raise RuntimeError("Messaging client not configured")
    if not ctx.chat_id:
        raise RuntimeError("No chat ID available")
    return ctx.messaging.send_text(ctx.chat_id, text)


def pdf_caption(user: User, kind: str, number: str, total: Any) -> str:
    amount = format_currency(total)
    if kind == "quote":
        if user.is_turkish:
            return f"📄 Teklif {number}\n💰 Toplam: {amount}"
        return f"📄 Devis {number}\n💰 Total: {amount} TTC"
    if user.is_turkish:
        return f"📄 Fatura {number}\n💰 Toplam: {amount}"
    return f"📄 Facture {number}\n💰 Total: {amount} TTC"


def render_and_send_pdf(ctx: ToolContext, kind: str, document: dict[str, Any]) -> str | None:
    """Render a document and send it as an attachment.

    Returns:
        None on success, else a short error description.
    """
    if ctx.renderer is None:
        return "PDF rendering is not available"
    if ctx.messaging is None or not ctx.chat_id:
        return "No chat ID available"

    number = document["number"]
    try:
        data = ctx.renderer.render(kind, document, ctx.user)
        ctx.messaging.send_attachment(
            ctx.chat_id,
            data,
            f"{number}.pdf",
            PDF_CONTENT_TYPE,
            caption=pdf_caption(ctx.user, kind, number, document.get("total_amount")),
        )
    except Exception as exc:
        logger.error(
            "pdf send failed",
            extra={"extra_fields": safe_log_context(kind=kind, error_type=type(exc).__name__)},
        )
        return str(exc) or type(exc).__name__
    return None
