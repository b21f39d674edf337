"""Conversation engine - the bounded tool-calling loop.

One user message goes in, one reply text comes out:

    system prompt + context window + user turn
        -> completion
        -> tool call? execute the FIRST one, append call + result, loop
        -> text?      reply

The loop runs at most MAX_TOOL_ITERATIONS completions. respond() never
raises: adapter failures become short localized replies.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Protocol

from devisly.domain.models import SUPPORTED_LANGUAGES, MessageRecord, User
from devisly.infra.db import txn
from devisly.infra.repositories import (
    llm_conversations_repository,
    messages_repository,
    prompts_repository,
    users_repository,
)
from devisly.infra.settings import Settings
from devisly.infra.time import utc_now
from devisly.llm import openai_client
from devisly.llm.openai_client import CompletionResponse, OpenAIClient, ToolCall
from devisly.messaging import unipile_client
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context
from devisly.tools.base import ToolResult
from devisly.tools.catalog import as_openai_tools
from devisly.tools.executor import ToolExecutor

from .context import select_window, to_history, window_start
from .prompts import fallback_reply, render_system_prompt

logger = get_logger(__name__)

MAX_TOOL_ITERATIONS = 5

_CONFIGURATION_ERRORS = (openai_client.ConfigurationError, unipile_client.ConfigurationError)


@dataclass(frozen=True)
class TurnLog:
    """One completion call, as stored in llm_conversations."""

    user_id: int
    messages: list[dict[str, Any]]
    response: CompletionResponse
    tool_call: ToolCall | None = None
    tool_result: ToolResult | None = None


@dataclass(frozen=True)
class LoopState:
    """Immutable loop state; each step returns a new one."""

    history: tuple[dict[str, Any], ...]
    iteration: int = 0
    last_tool_result: ToolResult | None = None

    def with_tool_exchange(self, call: ToolCall, result: ToolResult) -> LoopState:
        assistant_entry = {"role": "assistant", "content": None, "tool_calls": [call.to_message()]}
        tool_entry = {
            "role": "tool",
            "tool_call_id": call.id,
            "content": json.dumps(result.to_dict(), ensure_ascii=False, default=str),
        }
        return replace(
            self,
            history=self.history + (assistant_entry, tool_entry),
            last_tool_result=result,
        )

    def next_iteration(self) -> LoopState:
        return replace(self, iteration=self.iteration + 1)


class ConversationStore(Protocol):
    """Persistence the engine needs. PgConversationStore is the real one."""

    def recent_messages(
        self, user_id: int, since: datetime, limit: int, exclude_id: int | None
    ) -> list[MessageRecord]: ...

    def system_prompt_template(self) -> str | None: ...

    def update_language(self, user_id: int, language: str) -> None: ...

    def log_turn(self, turn: TurnLog) -> None: ...


class PgConversationStore:
    def recent_messages(
        self, user_id: int, since: datetime, limit: int, exclude_id: int | None
    ) -> list[MessageRecord]:
        with txn() as cur:
            return messages_repository.recent_for_user(
                cur, user_id=user_id, since=since, limit=limit, exclude_id=exclude_id
            )

    def system_prompt_template(self) -> str | None:
        with txn() as cur:
            return prompts_repository.get_active_prompt(cur)

    def update_language(self, user_id: int, language: str) -> None:
        with txn() as cur:
            users_repository.update_preferred_language(cur, user_id=user_id, language=language)

    def log_turn(self, turn: TurnLog) -> None:
        call = turn.tool_call
        usage = turn.response.usage
        with txn() as cur:
            llm_conversations_repository.insert_turn(
                cur,
                user_id=turn.user_id,
                messages_payload=turn.messages,
                response_payload=turn.response.raw,
                tool_name=call.name if call else None,
                tool_arguments=call.arguments if call else None,
                tool_result=turn.tool_result.to_dict() if turn.tool_result else None,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
                model=turn.response.model,
                duration_ms=turn.response.duration_ms,
            )


class ConversationEngine:
    """Turns a user message into a reply, running tools on the way.

    Args:
        llm: OpenAI adapter.
        executor_factory: Builds the tool executor for a given user.
        store: Context window, prompt override and turn log persistence.
        settings: Window size (messages/hours).
        clock: Current time (tests pin it).
    """

    def __init__(
        self,
        llm: OpenAIClient,
        executor_factory: Callable[[User], ToolExecutor],
        store: ConversationStore,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._llm = llm
        self._executor_factory = executor_factory
        self._store = store
        self._context_messages = settings.context_messages
        self._context_hours = settings.context_hours
        self._clock = clock
        self._tools = as_openai_tools()

    def respond(
        self,
        user: User,
        text: str,
        detected_language: str | None = None,
        exclude_record_id: int | None = None,
    ) -> str:
        """Reply to one user message. Never raises.

        Args:
            user: Owner of the conversation.
            text: The message (or voice-note transcript) to answer.
            detected_language: Language reported by transcription, if any.
            exclude_record_id: Record being answered, kept out of the context.
        """
        if not text or not text.strip():
            return fallback_reply("default", user)

        try:
            user = self._sync_language(user, detected_language)
            state = LoopState(history=tuple(self._build_messages(user, text.strip(), exclude_record_id)))
            return self._run_loop(user, state)
        except _CONFIGURATION_ERRORS as exc:
            self._log_error("conversation adapter not configured", user, exc)
            return fallback_reply("configuration", user)
        except openai_client.RateLimitError as exc:
            self._log_error("conversation rate limited", user, exc)
            return fallback_reply("rate_limit", user)
        except Exception as exc:
            self._log_error("conversation failed", user, exc)
            return fallback_reply("default", user)

    def _sync_language(self, user: User, detected_language: str | None) -> User:
        if detected_language not in SUPPORTED_LANGUAGES or detected_language == user.preferred_language:
            return user
        self._store.update_language(user.id, detected_language)
        logger.info(
            "preferred language updated",
            extra={"extra_fields": safe_log_context(user_id=user.id, language=detected_language)},
        )
        return replace(user, preferred_language=detected_language)

    def _build_messages(self, user: User, text: str, exclude_record_id: int | None) -> list[dict[str, Any]]:
        now = self._clock()
        records = self._store.recent_messages(
            user.id,
            window_start(now, self._context_hours),
            self._context_messages,
            exclude_record_id,
        )
        window = select_window(
            records,
            now=now,
            limit=self._context_messages,
            hours=self._context_hours,
            exclude_id=exclude_record_id,
        )
        system = {"role": "system", "content": render_system_prompt(user, self._store.system_prompt_template())}
        return [system, *to_history(window), {"role": "user", "content": text}]

    def _run_loop(self, user: User, state: LoopState) -> str:
        executor = self._executor_factory(user)

        while state.iteration < MAX_TOOL_ITERATIONS:
            state = state.next_iteration()
            sent = list(state.history)
            response = self._llm.chat_with_tools(sent, tools=self._tools)

            if not response.has_tool_calls:
                self._write_turn_log(TurnLog(user_id=user.id, messages=sent, response=response))
                logger.info(
                    "conversation reply ready",
                    extra={"extra_fields": safe_log_context(user_id=user.id, iterations=state.iteration)},
                )
                content = (response.content or "").strip()
                return content or fallback_reply("default", executor.context.user)

            # Single tool per turn; any further calls in this response are dropped
            call = response.tool_calls[0]
            result = executor.execute(call.name, call.arguments)
            self._write_turn_log(
                TurnLog(user_id=user.id, messages=sent, response=response, tool_call=call, tool_result=result)
            )
            state = state.with_tool_exchange(call, result)

        logger.warning(
            "conversation tool iteration limit reached",
            extra={"extra_fields": safe_log_context(user_id=user.id, iterations=state.iteration)},
        )
        return fallback_reply("too_complex", executor.context.user)

    def _write_turn_log(self, turn: TurnLog) -> None:
        try:
            self._store.log_turn(turn)
        except Exception as exc:
            logger.warning(
                "llm_turn_log_failed",
                extra={"extra_fields": safe_log_context(user_id=turn.user_id, error_type=type(exc).__name__)},
            )

    def _log_error(self, message: str, user: User, exc: Exception) -> None:
        logger.error(
            message,
            extra={"extra_fields": safe_log_context(user_id=user.id, error_type=type(exc).__name__)},
        )
