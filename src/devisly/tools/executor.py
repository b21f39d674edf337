"""Tool executor - dispatch a model's function call to its handler.

Nothing a handler does can escape execute(): unknown names, malformed
arguments and handler exceptions all come back as ToolResult failures, which
the conversation engine feeds to the model as the tool-role message.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Mapping

from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context

from . import account, clients, documents, links
from .base import ToolContext, ToolResult
from .catalog import tool_names

logger = get_logger(__name__)

Handler = Callable[..., ToolResult]

HANDLERS: dict[str, Handler] = {
    "search_clients": clients.search_clients,
    "create_client": clients.create_client,
    "create_quote": documents.create_quote,
    "list_recent_quotes": documents.list_recent_quotes,
    "send_quote_pdf": documents.send_quote_pdf,
    "create_invoice": documents.create_invoice,
    "list_recent_invoices": documents.list_recent_invoices,
    "send_invoice_pdf": documents.send_invoice_pdf,
    "mark_invoice_paid": documents.mark_invoice_paid,
    "get_user_info": account.get_user_info,
    "update_user_info": account.update_user_info,
    "send_web_link": links.send_web_link,
    "send_payment_link": links.send_payment_link,
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def validate_registry(handlers: Mapping[str, Handler], catalog_names: list[str]) -> None:
    """Every catalog entry has a handler and every handler is in the catalog.

    Raises:
        RuntimeError: On any mismatch (startup failure).
    """
    missing = sorted(set(catalog_names) - set(handlers))
    extra = sorted(set(handlers) - set(catalog_names))
    if missing or extra:
        raise RuntimeError(f"Tool registry mismatch: missing={missing} extra={extra}")


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Accept a dict or a JSON object string. Anything else yields {}."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (str, bytes)):
        try:
            decoded = json.loads(raw)
        except ValueError as exc:
            logger.warning(
                "tool arguments not valid json",
                extra={"extra_fields": safe_log_context(size=len(raw), error_type=type(exc).__name__)},
            )
            return {}
        if isinstance(decoded, dict):
            return decoded
        logger.warning("tool arguments not an object", extra={"extra_fields": safe_log_context(kind=type(decoded).__name__)})
        return {}
    logger.warning("tool arguments of unexpected type", extra={"extra_fields": safe_log_context(kind=type(raw).__name__)})
    return {}


def to_snake_case(key: Any) -> str:
    text = str(key).strip()
    text = _CAMEL_BOUNDARY.sub("_", text)
    return re.sub(r"[\s\-]+", "_", text).lower()


def normalize_keys(value: Any) -> Any:
    """Recursively snake_case dict keys (nested items included)."""
    if isinstance(value, Mapping):
        return {to_snake_case(key): normalize_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [normalize_keys(item) for item in value]
    return value


class ToolExecutor:
    """Runs tool calls for one user turn.

    Usage:
        executor = ToolExecutor(context)
        result = executor.execute("search_clients", '{"query": "Dupont"}')
    """

    def __init__(
        self,
        context: ToolContext,
        handlers: Mapping[str, Handler] | None = None,
        catalog_names: list[str] | None = None,
    ) -> None:
        self.context = context
        self._handlers = dict(HANDLERS if handlers is None else handlers)
        validate_registry(self._handlers, tool_names() if catalog_names is None else catalog_names)

    def execute(self, tool_name: str, raw_arguments: Any = None) -> ToolResult:
        handler = self._handlers.get(tool_name)
        if handler is None:
            logger.warning("unknown tool requested", extra={"extra_fields": safe_log_context(tool=tool_name)})
            return ToolResult.failure(f"Unknown tool: {tool_name}")

        arguments = normalize_keys(parse_arguments(raw_arguments))
        # Parse-error markers from the LLM adapter are not handler parameters
        arguments.pop("_raw", None)
        arguments.pop("_parse_error", None)

        try:
            result = handler(self.context, **arguments)
        except TypeError as exc:
            result = ToolResult.failure(f"Invalid arguments: {exc}")
            self._log_failure(tool_name, exc)
        except Exception as exc:
            result = ToolResult.failure(f"Tool execution failed: {exc}")
            self._log_failure(tool_name, exc)

        logger.info(
            "tool executed",
            extra={
                "extra_fields": safe_log_context(
                    tool=tool_name,
                    success=result.success,
                    argument_keys=sorted(arguments),
                )
            },
        )
        return result

    def _log_failure(self, tool_name: str, exc: Exception) -> None:
        logger.error(
            "tool_failed",
            extra={"extra_fields": safe_log_context(tool=tool_name, error_type=type(exc).__name__)},
        )
