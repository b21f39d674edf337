"""Unipile REST client - outbound WhatsApp messages and attachment downloads.

Every non-2xx response is mapped to an error class in _raise_for_status(),
so callers decide retry semantics from the exception type alone.

Security: NEVER log chat ids, message text or attachment bytes. Only hashes,
lengths and status codes.
"""

from __future__ import annotations

import re
from typing import Any

import requests

from devisly.infra.settings import Settings
from devisly.messaging.models import Attachment
from devisly.observability.logging import get_logger
from devisly.observability.redaction import hash_identifier, safe_log_context

logger = get_logger(__name__)

_FILENAME_PATTERN = re.compile(r'filename\*?=(?:UTF-8\'\')?"?([^";]+)"?', re.IGNORECASE)


class UnipileError(Exception):
    """Base class for Unipile failures."""

    def __init__(self, message: str, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status = status
        self.body = body


class ConfigurationError(UnipileError):
    """Missing DSN or API key. Not retryable."""


class ApiError(UnipileError):
    """Unexpected HTTP status or network failure. Retryable."""


class AuthenticationError(UnipileError):
    """401 from Unipile (bad API key)."""


class NotFoundError(UnipileError):
    """404 from Unipile."""


class RateLimitError(UnipileError):
    """429 from Unipile."""


def normalize_dsn(value: str) -> str:
    """Accept "api1.unipile.com:13211" or a full URL; always return an https?:// base."""
    dsn = value.strip().rstrip("/")
    if not re.match(r"^https?://", dsn):
        dsn = f"https://{dsn}"
    return dsn


def _raise_for_status(response: requests.Response) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return
    body = response.text[:500] if response.text else None
    if status == 401:
        raise AuthenticationError("Unipile authentication failed", status=status, body=body)
    if status == 404:
        raise NotFoundError("Unipile resource not found", status=status, body=body)
    if status == 429:
        raise RateLimitError("Unipile rate limit exceeded", status=status, body=body)
    raise ApiError(f"Unipile API error (HTTP {status})", status=status, body=body)


def _filename_from_headers(headers: Any) -> str | None:
    disposition = headers.get("Content-Disposition") or headers.get("content-disposition")
    if not disposition:
        return None
    match = _FILENAME_PATTERN.search(disposition)
    return match.group(1).strip() if match else None


class UnipileClient:
    """Thin wrapper around the Unipile v1 API.

    Usage:
        client = UnipileClient(settings)
        message_id = client.send_text("chat_123", "Bonjour !")
    """

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        """Initialize the client.

        Raises:
            ConfigurationError: If UNIPILE_DSN or UNIPILE_API_KEY is missing.
        """
        missing = [
            name
            for name, value in (
                ("UNIPILE_DSN", settings.unipile_dsn),
                ("UNIPILE_API_KEY", settings.unipile_api_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing Unipile config: {', '.join(missing)}")

        self._base_url = normalize_dsn(settings.unipile_dsn)
        self._api_key = settings.unipile_api_key
        self._account_id = settings.unipile_account_id
        self._timeout = settings.unipile_timeout
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, *, timeout: int | None = None, **kwargs: Any) -> requests.Response:
        headers = {"X-API-KEY": self._api_key, "Accept": "application/json"}
        headers.update(kwargs.pop("headers", {}) or {})
        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                timeout=timeout or self._timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise ApiError(f"Unipile request failed: {type(exc).__name__}") from exc
        _raise_for_status(response)
        return response

    def send_text(self, chat_id: str, text: str) -> str | None:
        """Send a text message to an existing chat.

        Returns:
            Provider message id, if the API returned one.
        """
        if not chat_id or not text:
            raise ValueError("chat_id and text are required")

        log_ctx = safe_log_context(chat_hash=hash_identifier(chat_id), text_len=len(text))
        logger.info("sending unipile text message", extra={"extra_fields": log_ctx})

        response = self._request(
            "POST",
            f"api/v1/chats/{chat_id}/messages",
            files={"text": (None, text)},
        )
        message_id = _message_id(response)
        logger.info(
            "unipile text message sent",
            extra={"extra_fields": {**log_ctx, "has_message_id": str(message_id is not None).lower()}},
        )
        return message_id

    def send_attachment(
        self,
        chat_id: str,
        data: bytes,
        filename: str,
        content_type: str,
        caption: str | None = None,
    ) -> str | None:
        """Send a file (e.g. a PDF) with an optional caption.

        Returns:
            Provider message id, if the API returned one.
        """
        if not chat_id or not data:
            raise ValueError("chat_id and data are required")

        files: list[tuple[str, tuple[Any, ...]]] = [
            ("attachments", (filename, data, content_type)),
        ]
        if caption:
            files.append(("text", (None, caption)))

        logger.info(
            "sending unipile attachment",
            extra={
                "extra_fields": safe_log_context(
                    chat_hash=hash_identifier(chat_id),
                    size=len(data),
                    content_type=content_type,
                )
            },
        )
        response = self._request(
            "POST",
            f"api/v1/chats/{chat_id}/messages",
            files=files,
            timeout=self._timeout * 2,
        )
        return _message_id(response)

    def download_attachment(self, attachment_id: str) -> Attachment:
        """Download an attachment by id."""
        response = self._request("GET", f"api/v1/attachments/{attachment_id}")
        return _to_attachment(response)

    def download_message_attachment(self, message_id: str, attachment_id: str) -> Attachment:
        """Download an attachment through the message-scoped endpoint.

        Some WhatsApp voice notes are only reachable this way.
        """
        response = self._request(
            "GET",
            f"api/v1/messages/{message_id}/attachments/{attachment_id}",
        )
        return _to_attachment(response)

    def get_account_info(self) -> dict[str, Any]:
        """Connected account details (used to check the connection)."""
        if not self._account_id:
            raise ConfigurationError("Missing Unipile config: UNIPILE_ACCOUNT_ID")
        response = self._request("GET", f"api/v1/accounts/{self._account_id}")
        return response.json()


def _message_id(response: requests.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    message_id = body.get("message_id") or body.get("id")
    return str(message_id) if message_id else None


def _to_attachment(response: requests.Response) -> Attachment:
    content_type = response.headers.get("Content-Type", "application/octet-stream")
    return Attachment(
        data=response.content,
        content_type=content_type.split(";")[0].strip(),
        filename=_filename_from_headers(response.headers),
    )
