"""Client tools: search_clients, create_client."""

from __future__ import annotations

from typing import Any

from devisly.infra.db import txn
from devisly.infra.repositories import clients_repository

from .base import (
    ToolContext,
    ToolResult,
    clean_siret,
    email_error,
    log_execution,
    siret_error,
    strip_or_none,
)

MAX_SEARCH_RESULTS = 10


def _format_siret(siret: str | None) -> str | None:
    """123 456 789 00012 display grouping."""
    if not siret or len(siret) != 14:
        return siret
    return f"{siret[:3]} {siret[3:6]} {siret[6:9]} {siret[9:]}"


def _format_client(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "address": row.get("address"),
        "siret": row.get("siret"),
        "contact_phone": row.get("contact_phone"),
        "contact_email": row.get("contact_email"),
        "is_professional": bool(row.get("siret")),
        "total_quotes": int(row.get("total_quotes") or 0),
        "total_invoices": int(row.get("total_invoices") or 0),
    }


def search_clients(ctx: ToolContext, *, query: Any = None) -> ToolResult:
    text = str(query or "").strip()
    if not text:
        return ToolResult.failure("Query is required", field="query")

    # LIKE wildcards from the model are literal noise
    sanitized = text.replace("%", "").replace("_", "")
    with txn() as cur:
        rows = clients_repository.search_by_name(
            cur,
            user_id=ctx.user.id,
            query=sanitized,
            limit=MAX_SEARCH_RESULTS,
        )

    if not rows:
        return ToolResult.ok(count=0, clients=[], message=f"Aucun client trouvé pour '{text}'")
    return ToolResult.ok(count=len(rows), clients=[_format_client(row) for row in rows])


def create_client(
    ctx: ToolContext,
    *,
    name: Any = None,
    address: Any = None,
    siret: Any = None,
    contact_phone: Any = None,
    contact_email: Any = None,
) -> ToolResult:
    name = strip_or_none(name)
    address = strip_or_none(address)
    siret = clean_siret(siret)
    contact_phone = strip_or_none(contact_phone)
    contact_email = strip_or_none(contact_email)
    if contact_email:
        contact_email = contact_email.lower()

    if not name:
        return ToolResult.failure("Le nom du client est obligatoire", field="name")
    invalid = siret_error(siret) or email_error(contact_email)
    if invalid:
        return invalid

    with txn() as cur:
        existing = clients_repository.find_by_name(cur, user_id=ctx.user.id, name=name)
        if existing:
            return ToolResult.failure(
                f"Un client nommé '{existing['name']}' existe déjà (ID: {existing['id']})",
                field="name",
            )
        client = clients_repository.insert_client(
            cur,
            user_id=ctx.user.id,
            name=name,
            address=address,
            siret=siret,
            contact_phone=contact_phone,
            contact_email=contact_email,
        )

    log_execution(ctx, "CreateClient", "client_created", client_id=client["id"])
    return ToolResult.ok(
        client_id=client["id"],
        name=client["name"],
        address=client.get("address"),
        siret=_format_siret(client.get("siret")),
        contact_phone=client.get("contact_phone"),
        contact_email=client.get("contact_email"),
        message=f"Client '{client['name']}' créé avec succès",
    )
