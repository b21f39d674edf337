"""Quote and invoice tools.

Creation tools need an active subscription. Created documents go straight to
"sent": the PDF is pushed to the user's chat right after the commit, and a
failed PDF send only shows up as pdf_sent = false.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

from devisly.domain.documents import (
    DEFAULT_TERM_DAYS,
    DocumentValidationError,
    compute_totals,
    format_currency,
    format_rate,
    parse_line_items,
    parse_vat_rate,
)
from devisly.infra.db import txn
from devisly.infra.repositories import clients_repository, documents_repository
from devisly.infra.repositories.documents_repository import INVOICE, QUOTE, DocumentKind
from devisly.infra.time import format_fr_date

from .base import ToolContext, ToolResult, log_execution, render_and_send_pdf, subscription_error

DEFAULT_LIST_LIMIT = 5
MAX_LIST_LIMIT = 20

QUOTE_STATUS_LABELS = {
    "draft": "Brouillon",
    "sent": "Envoyé",
    "accepted": "Accepté",
    "rejected": "Refusé",
}

INVOICE_STATUS_LABELS = {
    "draft": "Brouillon",
    "sent": "Envoyée",
    "paid": "Payée",
    "overdue": "En retard",
    "canceled": "Annulée",
}


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip().lstrip("#"))
    except ValueError:
        return None


def _term_days(value: Any) -> int:
    days = _to_int(value)
    return days if days is not None and days >= 0 else DEFAULT_TERM_DAYS


def _list_limit(value: Any) -> int:
    limit = _to_int(value)
    if limit is None:
        return DEFAULT_LIST_LIMIT
    return max(1, min(limit, MAX_LIST_LIMIT))


def _kind_name(kind: DocumentKind) -> str:
    return "quote" if kind is QUOTE else "invoice"


def _create_document(
    ctx: ToolContext,
    kind: DocumentKind,
    *,
    client_id: Any,
    items: Any,
    vat_rate: Any,
    notes: Any,
    term_days: Any,
    quote_id: Any = None,
) -> tuple[dict[str, Any] | None, ToolResult | None]:
    """Validate and store a document. Returns (document, failure)."""
    denied = subscription_error(ctx.user)
    if denied:
        return None, denied

    if client_id is None or client_id == "":
        return None, ToolResult.failure("L'ID du client est obligatoire", field="client_id")

    today: date = ctx.today()
    with txn() as cur:
        client_pk = _to_int(client_id)
        client = (
            clients_repository.get_client(cur, user_id=ctx.user.id, client_id=client_pk)
            if client_pk is not None
            else None
        )
        if client is None:
            return None, ToolResult.failure(
                f"Client #{client_id} non trouvé. Utilisez search_clients pour trouver le bon client."
            )

        linked_quote_id = None
        if quote_id not in (None, ""):
            quote_pk = _to_int(quote_id)
            quote = (
                documents_repository.get_document(cur, QUOTE, user_id=ctx.user.id, document_id=quote_pk)
                if quote_pk is not None
                else None
            )
            if quote is None:
                return None, ToolResult.failure(f"Devis #{quote_id} non trouvé.")
            if quote["client_id"] != client["id"]:
                return None, ToolResult.failure(f"Le devis #{quote_id} appartient à un autre client.")
            linked_quote_id = quote["id"]

        try:
            line_items = parse_line_items(items)
            rate = parse_vat_rate(vat_rate)
        except DocumentValidationError as exc:
            return None, ToolResult.failure(str(exc), field=exc.field)

        totals = compute_totals(line_items, rate)
        number = documents_repository.next_number(cur, kind, user_id=ctx.user.id, year=today.year)
        document_id = documents_repository.insert_document(
            cur,
            kind,
            user_id=ctx.user.id,
            client_id=client["id"],
            number=number,
            issue_date=today,
            term_date=today + timedelta(days=_term_days(term_days)),
            status="sent",
            totals=totals,
            items=line_items,
            notes=str(notes).strip() if notes else None,
            quote_id=linked_quote_id,
        )
        document = documents_repository.get_document(
            cur, kind, user_id=ctx.user.id, document_id=document_id
        )
    if document is None:
        raise RuntimeError(f"{kind.table} row {document_id} missing after insert")
    return document, None


def _send_pdf(ctx: ToolContext, kind: DocumentKind, document: dict[str, Any]) -> str | None:
    error = render_and_send_pdf(ctx, _kind_name(kind), document)
    if error is None:
        with txn() as cur:
            documents_repository.mark_sent_via_whatsapp(cur, kind, document_id=document["id"])
    return error


def _document_summary(document: dict[str, Any]) -> dict[str, Any]:
    return {
        "client_name": document["client_name"],
        "issue_date": format_fr_date(document.get("issue_date")),
        "items_count": len(document.get("items") or []),
        "subtotal": format_currency(document.get("subtotal_amount")),
        "vat_rate": format_rate(document.get("vat_rate") or 0),
        "vat_amount": format_currency(document.get("vat_amount")),
        "total": format_currency(document.get("total_amount")),
    }


def create_quote(
    ctx: ToolContext,
    *,
    client_id: Any = None,
    items: Any = None,
    vat_rate: Any = None,
    notes: Any = None,
    validity_days: Any = None,
) -> ToolResult:
    document, failure = _create_document(
        ctx,
        QUOTE,
        client_id=client_id,
        items=items,
        vat_rate=vat_rate,
        notes=notes,
        term_days=validity_days,
    )
    if failure:
        return failure

    log_execution(
        ctx,
        "CreateQuote",
        "quote_created",
        quote_id=document["id"],
        quote_number=document["number"],
        total=str(document.get("total_amount")),
    )
    pdf_error = _send_pdf(ctx, QUOTE, document)
    total = format_currency(document.get("total_amount"))
    return ToolResult.ok(
        quote_id=document["id"],
        quote_number=document["number"],
        validity_date=format_fr_date(document.get("term_date")),
        pdf_sent=pdf_error is None,
        message=f"Devis {document['number']} créé pour {document['client_name']} - Total: {total}",
        **_document_summary(document),
    )


def create_invoice(
    ctx: ToolContext,
    *,
    client_id: Any = None,
    items: Any = None,
    quote_id: Any = None,
    vat_rate: Any = None,
    notes: Any = None,
    due_days: Any = None,
) -> ToolResult:
    document, failure = _create_document(
        ctx,
        INVOICE,
        client_id=client_id,
        items=items,
        vat_rate=vat_rate,
        notes=notes,
        term_days=due_days,
        quote_id=quote_id,
    )
    if failure:
        return failure

    log_execution(
        ctx,
        "CreateInvoice",
        "invoice_created",
        invoice_id=document["id"],
        invoice_number=document["number"],
        total=str(document.get("total_amount")),
        from_quote=document.get("quote_id"),
    )
    pdf_error = _send_pdf(ctx, INVOICE, document)
    total = format_currency(document.get("total_amount"))
    return ToolResult.ok(
        invoice_id=document["id"],
        invoice_number=document["number"],
        due_date=format_fr_date(document.get("term_date")),
        from_quote=document.get("quote_id"),
        pdf_sent=pdf_error is None,
        message=f"Facture {document['number']} créée pour {document['client_name']} - Total: {total}",
        **_document_summary(document),
    )


def _days_overdue(row: dict[str, Any], today: date) -> int:
    due = row.get("term_date")
    if row.get("status") not in ("sent", "overdue") or due is None:
        return 0
    if isinstance(due, datetime):
        due = due.date()
    return max((today - due).days, 0)


def list_recent_quotes(ctx: ToolContext, *, limit: Any = None, status: Any = None) -> ToolResult:
    status_filter = status if status in QUOTE.statuses else None
    with txn() as cur:
        rows = documents_repository.list_recent(
            cur, QUOTE, user_id=ctx.user.id, limit=_list_limit(limit), status=status_filter
        )
        total_quotes = documents_repository.count_documents(cur, QUOTE, user_id=ctx.user.id)

    quotes = [
        {
            "id": row["id"],
            "quote_number": row["number"],
            "client_name": row["client_name"],
            "client_id": row["client_id"],
            "issue_date": format_fr_date(row.get("issue_date")),
            "validity_date": format_fr_date(row.get("term_date")),
            "status": row["status"],
            "status_label": QUOTE_STATUS_LABELS.get(row["status"], row["status"]),
            "total": format_currency(row.get("total_amount")),
            "items_count": int(row.get("items_count") or 0),
        }
        for row in rows
    ]
    if not quotes:
        message = f"Aucun devis avec le statut '{status_filter}'" if status_filter else "Aucun devis trouvé"
        return ToolResult.ok(count=0, total_quotes=total_quotes, quotes=[], message=message)
    return ToolResult.ok(count=len(quotes), total_quotes=total_quotes, quotes=quotes)


def list_recent_invoices(ctx: ToolContext, *, limit: Any = None, status: Any = None) -> ToolResult:
    status_filter = status if status in INVOICE.statuses else None
    today = ctx.today()
    with txn() as cur:
        rows = documents_repository.list_recent(
            cur, INVOICE, user_id=ctx.user.id, limit=_list_limit(limit), status=status_filter
        )
        total_invoices = documents_repository.count_documents(cur, INVOICE, user_id=ctx.user.id)
        unpaid_count, unpaid_total = documents_repository.unpaid_invoices_summary(cur, user_id=ctx.user.id)

    invoices = [
        {
            "id": row["id"],
            "invoice_number": row["number"],
            "client_name": row["client_name"],
            "client_id": row["client_id"],
            "issue_date": format_fr_date(row.get("issue_date")),
            "due_date": format_fr_date(row.get("term_date")),
            "status": row["status"],
            "status_label": INVOICE_STATUS_LABELS.get(row["status"], row["status"]),
            "subtotal": format_currency(row.get("subtotal_amount")),
            "vat_rate": format_rate(row.get("vat_rate") or 0),
            "vat_amount": format_currency(row.get("vat_amount")),
            "total": format_currency(row.get("total_amount")),
            "items_count": int(row.get("items_count") or 0),
            "paid_at": format_fr_date(row.get("paid_at")) or None,
            "days_overdue": _days_overdue(row, today),
            "from_quote": row.get("quote_id") is not None,
        }
        for row in rows
    ]
    summary = {
        "total_invoices": total_invoices,
        "unpaid_count": unpaid_count,
        "unpaid_total": format_currency(unpaid_total),
    }
    if not invoices:
        message = f"Aucune facture avec le statut '{status_filter}'" if status_filter else "Aucune facture trouvée"
        return ToolResult.ok(count=0, invoices=[], message=message, **summary)
    return ToolResult.ok(count=len(invoices), invoices=invoices, **summary)


def send_quote_pdf(ctx: ToolContext, *, quote_id: Any = None) -> ToolResult:
    if quote_id is None or quote_id == "":
        return ToolResult.failure("L'ID du devis est obligatoire", field="quote_id")

    document = _load(ctx, QUOTE, quote_id)
    if document is None:
        return ToolResult.failure(
            f"Devis #{quote_id} non trouvé. Utilisez list_recent_quotes pour voir vos devis."
        )

    pdf_error = _send_pdf(ctx, QUOTE, document)
    if pdf_error:
        return ToolResult.failure(f"Impossible d'envoyer le devis: {pdf_error}")

    log_execution(ctx, "SendQuotePdf", "quote_pdf_sent", quote_id=document["id"], quote_number=document["number"])
    return ToolResult.ok(
        quote_id=document["id"],
        quote_number=document["number"],
        client_name=document["client_name"],
        total=format_currency(document.get("total_amount")),
        message=f"Devis {document['number']} envoyé",
    )


def send_invoice_pdf(ctx: ToolContext, *, invoice_id: Any = None) -> ToolResult:
    if invoice_id is None or invoice_id == "":
        return ToolResult.failure("L'ID de la facture est obligatoire", field="invoice_id")

    document = _load(ctx, INVOICE, invoice_id)
    if document is None:
        return ToolResult.failure(
            f"Facture #{invoice_id} non trouvée. Utilisez list_recent_invoices pour voir vos factures."
        )

    pdf_error = _send_pdf(ctx, INVOICE, document)
    if pdf_error:
        return ToolResult.failure(f"Impossible d'envoyer la facture: {pdf_error}")

    log_execution(
        ctx, "SendInvoicePdf", "invoice_pdf_sent", invoice_id=document["id"], invoice_number=document["number"]
    )
    return ToolResult.ok(
        invoice_id=document["id"],
        invoice_number=document["number"],
        client_name=document["client_name"],
        total=format_currency(document.get("total_amount")),
        message=f"Facture {document['number']} envoyée",
    )


def mark_invoice_paid(ctx: ToolContext, *, invoice_id: Any = None) -> ToolResult:
    if invoice_id is None or invoice_id == "":
        return ToolResult.failure("L'ID de la facture est obligatoire", field="invoice_id")

    with txn() as cur:
        invoice_pk = _to_int(invoice_id)
        invoice = (
            documents_repository.get_document(cur, INVOICE, user_id=ctx.user.id, document_id=invoice_pk)
            if invoice_pk is not None
            else None
        )
        if invoice is None:
            return ToolResult.failure(
                f"Facture #{invoice_id} non trouvée. Vérifiez l'ID ou utilisez "
                "list_recent_invoices pour voir vos factures."
            )

        status = invoice["status"]
        if status == "paid":
            return ToolResult.ok(
                already_paid=True,
                invoice_number=invoice["number"],
                paid_at=format_fr_date(invoice.get("paid_at")),
                message="Cette facture est déjà marquée comme payée",
            )
        if status == "canceled":
            return ToolResult.failure("Impossible de marquer comme payée une facture annulée")
        if status == "draft":
            return ToolResult.failure("Cette facture est en brouillon. Envoyez-la d'abord au client.")

        documents_repository.update_status(cur, INVOICE, document_id=invoice["id"], status="paid")

    log_execution(ctx, "MarkInvoicePaid", "invoice_marked_paid", invoice_id=invoice["id"], invoice_number=invoice["number"])
    return ToolResult.ok(
        invoice_id=invoice["id"],
        invoice_number=invoice["number"],
        client_name=invoice["client_name"],
        total=format_currency(invoice.get("total_amount")),
        paid_at=format_fr_date(ctx.today()),
        message=f"Facture {invoice['number']} marquée comme payée ✅",
    )


def _load(ctx: ToolContext, kind: DocumentKind, document_id: Any) -> dict[str, Any] | None:
    pk = _to_int(document_id)
    if pk is None:
        return None
    with txn() as cur:
        return documents_repository.get_document(cur, kind, user_id=ctx.user.id, document_id=pk)
