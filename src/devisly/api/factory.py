"""FastAPI application factory with role-based route mounting."""

from __future__ import annotations

from typing import Literal

from fastapi import FastAPI, Request, Response

from devisly.infra.settings import get_settings
from devisly.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from devisly.tools.catalog import tool_names
from devisly.tools.executor import HANDLERS, validate_registry

from .routers import public, worker
from .routes import tasks_messages, webhooks_unipile

AppRole = Literal["public", "worker"]


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, read from settings (APP_ROLE),
              "public" when unset.

    Raises:
        RuntimeError: If the tool catalog and the handler registry disagree.
    """
    if role is None:
        role = get_settings().app_role  # type: ignore[assignment]

    validate_registry(HANDLERS, tool_names())

    app = FastAPI(
        title="Devisly",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    # Public routes (always)
    app.include_router(public.router)
    app.include_router(webhooks_unipile.router)

    # Worker routes only for worker role
    if role == "worker":
        app.include_router(worker.router)
        app.include_router(tasks_messages.router)

    return app
