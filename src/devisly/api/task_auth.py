"""Authentication for worker task routes (Cloud Tasks OIDC).

Production accepts only Google-signed OIDC tokens. Local dev
(TASKS_OIDC_AUDIENCE == "devisly-tasks-local") also accepts the
X-Internal-Task-Secret header.
"""

from __future__ import annotations

import base64
import hmac
import json

from fastapi import Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from devisly.infra.settings import Settings, get_settings
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context

logger = get_logger(__name__)

LOCAL_DEV_AUDIENCE = "devisly-tasks-local"


def _extract_unverified_claim(token: str, claim: str) -> str | None:
    """Decode one claim of a JWT payload without verifying it.

    Diagnostic logging only, after verification has already failed.
    """
    try:
        payload_segment = token.split(".")[1]
        # Re-add base64 padding that JWT encoding strips
        padding = 4 - len(payload_segment) % 4
        if padding != 4:
            payload_segment += "=" * padding
        payload = json.loads(base64.urlsafe_b64decode(payload_segment))
    except (IndexError, ValueError):
        return None
    value = payload.get(claim) if isinstance(payload, dict) else None
    return str(value) if value is not None else None


def extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:]


def verify_task_oidc(token: str, settings: Settings | None = None) -> bool:
    """Verify a Cloud Tasks OIDC token.

    Fail closed: returns False when TASKS_OIDC_AUDIENCE is not configured.
    When TASKS_OIDC_SERVICE_ACCOUNT is set, the token email must match it.
    """
    if not token:
        return False

    settings = settings or get_settings()
    audience = settings.tasks_oidc_audience
    if not audience:
        logger.error(
            "TASKS_OIDC_AUDIENCE not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
        )
        return False

    try:
        claims = id_token.verify_oauth2_token(token, google_requests.Request(), audience=audience)
    except ValueError as e:
        logger.warning(
            "OIDC token verification failed",
            extra={
                "extra_fields": safe_log_context(
                    error=str(e),
                    expected_audience=audience,
                    received_audience=_extract_unverified_claim(token, "aud"),
                )
            },
        )
        return False

    expected_email = settings.tasks_oidc_service_account
    if expected_email and claims.get("email", "") != expected_email:
        logger.warning(
            "OIDC service account mismatch",
            extra={"extra_fields": safe_log_context(reason="service_account_mismatch")},
        )
        return False
    return True


def verify_task_auth(request: Request, settings: Settings | None = None) -> bool:
    """Verify task authentication via OIDC or internal secret (local dev only)."""
    settings = settings or get_settings()

    if settings.tasks_oidc_audience == LOCAL_DEV_AUDIENCE:
        internal_secret = settings.internal_task_secret
        request_secret = request.headers.get("X-Internal-Task-Secret", "")
        if internal_secret and hmac.compare_digest(request_secret, internal_secret):
            logger.info(
                "task auth via internal secret (local dev)",
                extra={"extra_fields": safe_log_context(auth_method="internal_secret")},
            )
            return True

    token = extract_bearer_token(request)
    if not token:
        logger.warning(
            "task auth failed: missing Bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False
    return verify_task_oidc(token, settings)
