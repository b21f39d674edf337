"""OpenAI adapter - chat completions with tool calling, and Whisper transcription.

SDK exceptions are translated in one place (_translate_error) into this
module's hierarchy, keyed on HTTP status:

    401 -> ConfigurationError   (bad key, discard)
    429 -> RateLimitError       (retry)
    400 -> InvalidRequestError
    other / network -> ApiError

Security: NEVER log message contents or transcripts, only sizes and usage.
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import openai
from openai import OpenAI

from devisly.infra.settings import Settings
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context

logger = get_logger(__name__)

WHISPER_MODEL = "whisper-1"
DEFAULT_TEMPERATURE = 0.7

_TURKISH_CHARS = re.compile(r"[ğüşıöçĞÜŞİÖÇ]")

# verbose_json reports the language name, not its code
_WHISPER_LANGUAGE_NAMES = {
    "french": "fr",
    "turkish": "tr",
    "english": "en",
}


class OpenAIError(Exception):
    """Base class for OpenAI adapter failures."""

    def __init__(self, message: str, status: int | None = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body


class ConfigurationError(OpenAIError):
    """Missing or rejected API key."""


class ApiError(OpenAIError):
    """Unexpected API failure (5xx, network, timeout)."""


class RateLimitError(ApiError):
    """429 from OpenAI."""


class InvalidRequestError(ApiError):
    """400 from OpenAI."""


@dataclass(frozen=True)
class ToolCall:
    """One function call requested by the model.

    arguments holds the decoded JSON object. When the model produced
    malformed JSON it is {"_raw": <text>, "_parse_error": <reason>}.
    """

    id: str
    name: str
    arguments: dict[str, Any]
    raw_arguments: str = ""

    def to_message(self) -> dict[str, Any]:
        """OpenAI wire shape of this call inside an assistant message."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments or json.dumps(self.arguments)},
        }


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True)
class CompletionResponse:
    content: str | None
    tool_calls: tuple[ToolCall, ...] = ()
    finish_reason: str | None = None
    usage: Usage = field(default_factory=Usage)
    duration_ms: int = 0
    model: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    language: str
    duration_ms: int


def parse_tool_arguments(raw: str | None) -> dict[str, Any]:
    """Decode function-call arguments; never raises."""
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except ValueError as exc:
        logger.warning(
            "tool arguments parse failed",
            extra={"extra_fields": safe_log_context(size=len(raw), error_type=type(exc).__name__)},
        )
        return {"_raw": raw, "_parse_error": str(exc)}
    return decoded if isinstance(decoded, dict) else {"_raw": raw, "_parse_error": "not an object"}


def detect_language_from_text(text: str | None) -> str:
    """Turkish if the text carries Turkish-specific letters, else French."""
    if text and _TURKISH_CHARS.search(text):
        return "tr"
    return "fr"


def _language_code(value: str | None) -> str | None:
    if not value:
        return None
    normalized = value.strip().lower()
    if len(normalized) == 2:
        return normalized
    return _WHISPER_LANGUAGE_NAMES.get(normalized)


def _translate_error(exc: openai.OpenAIError) -> OpenAIError:
    """Map an SDK exception to the adapter hierarchy."""
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        body = exc.body
        if status == 401:
            return ConfigurationError("OpenAI authentication failed - check API key", status=status, body=body)
        if status == 429:
            return RateLimitError("OpenAI rate limit exceeded", status=status, body=body)
        if status == 400:
            return InvalidRequestError("Invalid request to OpenAI", status=status, body=body)
        return ApiError(f"OpenAI API error (HTTP {status})", status=status, body=body)
    return ApiError(f"OpenAI request failed: {type(exc).__name__}")


class OpenAIClient:
    """Chat and transcription calls against the OpenAI API.

    Usage:
        client = OpenAIClient(settings)
        response = client.chat_with_tools(messages, tools=TOOLS)
    """

    def __init__(self, settings: Settings, sdk_client: OpenAI | None = None) -> None:
        """Initialize the client.

        Raises:
            ConfigurationError: If OPENAI_API_KEY is missing.
        """
        if not settings.openai_api_key:
            raise ConfigurationError("Missing OpenAI config: OPENAI_API_KEY")
        self.model = settings.openai_model
        # The task queue owns retries
        self._client = sdk_client or OpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout,
            max_retries=0,
        )

    def chat_with_tools(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> CompletionResponse:
        """Run one chat completion.

        Args:
            messages: Conversation history in OpenAI wire shape.
            tools: Tool catalog. When given, tool_choice is "auto".
            model: Override the configured model.
            temperature: Sampling temperature.

        Raises:
            OpenAIError: Translated API failure (see module docstring).
        """
        params: dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
        }
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"

        started = time.monotonic()
        try:
            response = self._client.chat.completions.create(**params)
        except openai.OpenAIError as exc:
            error = _translate_error(exc)
            logger.error(
                "openai chat completion failed",
                extra={
                    "extra_fields": safe_log_context(
                        status=error.status,
                        error_type=type(error).__name__,
                        message_count=len(messages),
                    )
                },
            )
            raise error from exc
        duration_ms = int((time.monotonic() - started) * 1000)

        return self._parse_chat_response(response, duration_ms)

    def _parse_chat_response(self, response: Any, duration_ms: int) -> CompletionResponse:
        raw = response.model_dump() if hasattr(response, "model_dump") else dict(response)
        choices = raw.get("choices") or []
        choice = choices[0] if choices else {}
        message = choice.get("message") or {}
        usage = raw.get("usage") or {}

        tool_calls = tuple(
            ToolCall(
                id=call.get("id") or "",
                name=(call.get("function") or {}).get("name") or "",
                arguments=parse_tool_arguments((call.get("function") or {}).get("arguments")),
                raw_arguments=(call.get("function") or {}).get("arguments") or "",
            )
            for call in (message.get("tool_calls") or [])
        )

        return CompletionResponse(
            content=message.get("content"),
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason"),
            usage=Usage(
                prompt_tokens=usage.get("prompt_tokens"),
                completion_tokens=usage.get("completion_tokens"),
                total_tokens=usage.get("total_tokens"),
            ),
            duration_ms=duration_ms,
            model=raw.get("model"),
            raw=raw,
        )

    def transcribe_audio(self, file_path: str | Path, language: str | None = None) -> TranscriptionResult:
        """Transcribe an audio file with Whisper (verbose_json for language detection).

        Raises:
            OpenAIError: If the file is missing/empty or the API call fails.
        """
        path = Path(file_path)
        if not path.is_file():
            raise OpenAIError("Audio file not found")
        if path.stat().st_size == 0:
            raise OpenAIError("Audio file is empty")

        params: dict[str, Any] = {"model": WHISPER_MODEL, "response_format": "verbose_json"}
        if language:
            params["language"] = language

        started = time.monotonic()
        try:
            with path.open("rb") as audio_file:
                response = self._client.audio.transcriptions.create(file=audio_file, **params)
        except openai.OpenAIError as exc:
            error = _translate_error(exc)
            logger.error(
                "openai transcription failed",
                extra={"extra_fields": safe_log_context(status=error.status, error_type=type(error).__name__)},
            )
            raise error from exc
        duration_ms = int((time.monotonic() - started) * 1000)

        text = getattr(response, "text", None) or ""
        detected = _language_code(getattr(response, "language", None))
        return TranscriptionResult(
            text=text,
            language=detected or language or detect_language_from_text(text),
            duration_ms=duration_ms,
        )
