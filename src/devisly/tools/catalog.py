"""Tool catalog - function schemas offered to the model on every completion.

The order is stable. Adding a tool means one entry here and one handler
registration in tools.executor.HANDLERS; nothing else changes.
"""

from typing import Any


def _function(name: str, description: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


def _line_items(document: str) -> dict[str, Any]:
    return {
        "type": "array",
        "description": f"List of line items for the {document}",
        "items": {
            "type": "object",
            "properties": {
                "description": {"type": "string", "description": "Description of the work or product"},
                "quantity": {"type": "number", "description": "Quantity (default: 1)"},
                "unit": {
                    "type": "string",
                    "description": "Unit of measurement (e.g., 'm²', 'heure', 'unité', 'forfait')",
                },
                "unit_price": {
                    "type": "number",
                    "description": "Price per unit in euros (HT - excluding VAT)",
                },
            },
            "required": ["description", "unit_price"],
        },
    }


_VAT_RATE = {
    "type": "number",
    "description": "VAT rate as percentage (default: 20). Common values: 20, 10, 5.5",
}


TOOLS: tuple[dict[str, Any], ...] = (
    # Clients
    _function(
        "search_clients",
        "Search for existing clients by name. Use this before creating a quote or invoice to find "
        "the client, or to check if a client already exists before creating a new one.",
        {"query": {"type": "string", "description": "Client name or part of the name to search for"}},
        ["query"],
    ),
    _function(
        "create_client",
        "Create a new client. Use this when the user wants to create a quote or invoice for a client "
        "that doesn't exist yet. Collect at least the client name before calling.",
        {
            "name": {"type": "string", "description": "Full name of the client (person or company)"},
            "address": {"type": "string", "description": "Client's full address (street, city, postal code)"},
            "siret": {
                "type": "string",
                "description": "SIRET number (14 digits) if the client is a professional. Optional for individuals.",
            },
            "contact_phone": {"type": "string", "description": "Client's phone number"},
            "contact_email": {"type": "string", "description": "Client's email address"},
        },
        ["name"],
    ),
    # Quotes
    _function(
        "create_quote",
        "Create a new quote (devis) with line items. The quote is automatically sent as a PDF via "
        "WhatsApp after creation. You must have a valid client_id (use search_clients or "
        "create_client first).",
        {
            "client_id": {
                "type": "integer",
                "description": "The ID of the client for this quote (from search_clients or create_client)",
            },
            "items": _line_items("quote"),
            "vat_rate": _VAT_RATE,
            "notes": {"type": "string", "description": "Additional notes or comments for the quote"},
            "validity_days": {
                "type": "integer",
                "description": "Number of days the quote is valid (default: 30)",
            },
        },
        ["client_id", "items"],
    ),
    _function(
        "list_recent_quotes",
        "List the user's recent quotes. Useful to help the user find a quote they're looking for.",
        {
            "limit": {
                "type": "integer",
                "description": "Maximum number of quotes to return (default: 5, max: 20)",
            },
            "status": {
                "type": "string",
                "enum": ["draft", "sent", "accepted", "rejected"],
                "description": "Filter by quote status (optional)",
            },
        },
        [],
    ),
    _function(
        "send_quote_pdf",
        "Re-send a quote as PDF via WhatsApp. Use this when the user asks to receive a specific quote again.",
        {"quote_id": {"type": "integer", "description": "The ID of the quote to send"}},
        ["quote_id"],
    ),
    # Invoices
    _function(
        "create_invoice",
        "Create a new invoice (facture) with line items. The invoice is automatically sent as a PDF "
        "via WhatsApp after creation. You must have a valid client_id. Can optionally be linked to "
        "an existing quote.",
        {
            "client_id": {
                "type": "integer",
                "description": "The ID of the client for this invoice (from search_clients or create_client)",
            },
            "items": _line_items("invoice"),
            "quote_id": {
                "type": "integer",
                "description": "ID of the quote this invoice is based on (optional)",
            },
            "vat_rate": _VAT_RATE,
            "notes": {"type": "string", "description": "Additional notes or comments for the invoice"},
            "due_days": {
                "type": "integer",
                "description": "Number of days until payment is due (default: 30)",
            },
        },
        ["client_id", "items"],
    ),
    _function(
        "list_recent_invoices",
        "List the user's recent invoices. Useful to help the user find an invoice or check payment status.",
        {
            "limit": {
                "type": "integer",
                "description": "Maximum number of invoices to return (default: 5, max: 20)",
            },
            "status": {
                "type": "string",
                "enum": ["draft", "sent", "paid", "overdue", "canceled"],
                "description": "Filter by invoice status (optional)",
            },
        },
        [],
    ),
    _function(
        "send_invoice_pdf",
        "Re-send an invoice as PDF via WhatsApp. Use this when the user asks to receive a specific "
        "invoice again.",
        {"invoice_id": {"type": "integer", "description": "The ID of the invoice to send"}},
        ["invoice_id"],
    ),
    _function(
        "mark_invoice_paid",
        "Mark an invoice as paid. Use this when the user confirms they received payment for an invoice.",
        {"invoice_id": {"type": "integer", "description": "The ID of the invoice to mark as paid"}},
        ["invoice_id"],
    ),
    # Account
    _function(
        "get_user_info",
        "Get the current user's company information. Use this to check what information is already "
        "filled in or to answer questions about the user's account.",
        {},
        [],
    ),
    _function(
        "update_user_info",
        "Update the user's company information. Use this during onboarding or when the user wants to "
        "change their business details. All parameters are optional - only include fields to update.",
        {
            "company_name": {"type": "string", "description": "Company or business name"},
            "siret": {"type": "string", "description": "SIRET number (14 digits)"},
            "address": {"type": "string", "description": "Business address (street, city, postal code)"},
            "vat_number": {"type": "string", "description": "VAT/TVA number (e.g., FR12345678901)"},
            "preferred_language": {
                "type": "string",
                "enum": ["fr", "tr"],
                "description": "Preferred language for communication (fr=French, tr=Turkish)",
            },
        },
        [],
    ),
    # Access and payment
    _function(
        "send_web_link",
        "Send a secure link for web access. Use this when the user asks to view their documents in a "
        "browser, access their dashboard, or needs a web interface.",
        {},
        [],
    ),
    _function(
        "send_payment_link",
        "Send a Stripe payment link for subscription. Use this for new users who need to subscribe, "
        "or for users with canceled/pending subscriptions who want to reactivate.",
        {},
        [],
    ),
)


def tool_names() -> list[str]:
    """Names in catalog order."""
    return [tool["function"]["name"] for tool in TOOLS]


def find_tool(name: str) -> dict[str, Any] | None:
    for tool in TOOLS:
        if tool["function"]["name"] == name:
            return tool
    return None


def as_openai_tools() -> list[dict[str, Any]]:
    """Catalog as the list the chat completions API expects."""
    return list(TOOLS)
