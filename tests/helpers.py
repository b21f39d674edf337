"""Shared test helpers for Devisly tests.

Factories and in-memory fakes that can be imported by both conftest.py and
individual test files. These are NOT fixtures - they are regular functions
and classes.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

from devisly.domain.models import MessageRecord, User
from devisly.llm.openai_client import CompletionResponse, ToolCall, Usage

NOW = datetime(2026, 3, 10, 14, 30, tzinfo=timezone.utc)


def make_user(**overrides: Any) -> User:
    """Active French user with a chat id, unless overridden."""
    defaults: dict[str, Any] = {
        "id": 7,
        "phone_number": "+33612345678",
        "preferred_language": "fr",
        "subscription_status": "active",
        "company_name": "Dupont Rénovation",
        "siret": "12345678900012",
        "address": "12 rue des Lilas, 75011 Paris",
        "onboarding_completed": True,
        "unipile_chat_id": "chat_abc",
        "created_at": datetime(2026, 1, 5, tzinfo=timezone.utc),
    }
    defaults.update(overrides)
    return User(**defaults)


def make_record(**overrides: Any) -> MessageRecord:
    """Unprocessed inbound text record, unless overridden."""
    defaults: dict[str, Any] = {
        "id": 42,
        "user_id": 7,
        "unipile_message_id": "msg_in_000001",
        "direction": "inbound",
        "message_type": "text",
        "unipile_chat_id": "chat_abc",
        "content": "Bonjour",
        "created_at": NOW,
    }
    defaults.update(overrides)
    return MessageRecord(**defaults)


def completion(content: str | None = None, tool_calls: tuple[ToolCall, ...] = ()) -> CompletionResponse:
    return CompletionResponse(
        content=content,
        tool_calls=tuple(tool_calls),
        finish_reason="tool_calls" if tool_calls else "stop",
        usage=Usage(prompt_tokens=120, completion_tokens=20, total_tokens=140),
        model="gpt-4o",
    )


def tool_call(name: str, arguments: dict[str, Any] | None = None, call_id: str = "call_1") -> ToolCall:
    arguments = arguments or {}
    return ToolCall(id=call_id, name=name, arguments=arguments, raw_arguments=json.dumps(arguments))


@contextmanager
def fake_txn():
    """Stand-in for infra.db.txn yielding a mock cursor."""
    yield MagicMock()


class FakeLLM:
    """Scripted chat_with_tools: returns (or raises) queued items in order.

    When the script runs out, the last item is repeated.
    """

    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.calls: list[list[dict[str, Any]]] = []

    def chat_with_tools(self, messages, tools=None, model=None, temperature=0.7):
        self.calls.append([dict(message) for message in messages])
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeConversationStore:
    def __init__(self, records: list[MessageRecord] | None = None, template: str | None = None) -> None:
        self.records = list(records or [])
        self.template = template
        self.language_updates: list[tuple[int, str]] = []
        self.turns: list[Any] = []
        self.window_queries: list[tuple[int, datetime, int, int | None]] = []
        self.fail_turn_log = False

    def recent_messages(self, user_id, since, limit, exclude_id):
        self.window_queries.append((user_id, since, limit, exclude_id))
        return list(self.records)

    def system_prompt_template(self):
        return self.template

    def update_language(self, user_id, language):
        self.language_updates.append((user_id, language))

    def log_turn(self, turn):
        if self.fail_turn_log:
            raise RuntimeError("llm_conversations insert failed")
        self.turns.append(turn)


class FakeMessageStore:
    """In-memory MessageStore recording every write."""

    def __init__(self, records: list[MessageRecord] = (), users: list[User] = ()) -> None:
        self.records = {record.id: record for record in records}
        self.users = {user.id: user for user in users}
        self.transcriptions: list[tuple[int, str, str | None]] = []
        self.errors: list[tuple[int, str]] = []
        self.contents: list[tuple[int, str]] = []
        self.completed: list[dict[str, Any]] = []
        self.events: list[dict[str, Any]] = []

    def get_message(self, record_id):
        return self.records.get(record_id)

    def get_user(self, user_id):
        return self.users.get(user_id)

    def store_transcription(self, record_id, transcript, language):
        self.transcriptions.append((record_id, transcript, language))

    def set_error(self, record_id, error):
        self.errors.append((record_id, error))

    def set_content(self, record_id, content):
        self.contents.append((record_id, content))

    def complete(self, record, reply, chat_id, outbound_message_id, sent_at):
        self.records[record.id] = replace(record, processed=True)
        self.completed.append(
            {
                "record_id": record.id,
                "reply": reply,
                "chat_id": chat_id,
                "outbound_message_id": outbound_message_id,
                "sent_at": sent_at,
            }
        )

    def log_event(self, log_type, event, description, user_id, metadata):
        self.events.append(
            {"log_type": log_type, "event": event, "user_id": user_id, "metadata": metadata}
        )


class FakeMessaging:
    """Records outgoing messages; send_text returns provider_id."""

    def __init__(self, provider_id: str | None = "msg_out_1") -> None:
        self.provider_id = provider_id
        self.sent: list[tuple[str, str]] = []
        self.attachments: list[dict[str, Any]] = []

    def send_text(self, chat_id, text):
        self.sent.append((chat_id, text))
        return self.provider_id

    def send_attachment(self, chat_id, data, filename, content_type, caption=None):
        self.attachments.append(
            {
                "chat_id": chat_id,
                "data": data,
                "filename": filename,
                "content_type": content_type,
                "caption": caption,
            }
        )
        return self.provider_id
