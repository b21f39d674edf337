"""Wires the worker's collaborators from settings."""

from __future__ import annotations

from devisly.conversation.engine import ConversationEngine, PgConversationStore
from devisly.domain.models import User
from devisly.infra.settings import Settings
from devisly.llm.openai_client import OpenAIClient
from devisly.messaging.unipile_client import UnipileClient
from devisly.speech.transcriber import AudioTranscriber
from devisly.tools.base import DocumentRenderer, ToolContext
from devisly.tools.executor import ToolExecutor

from .processor import MessageProcessor


def build_processor(settings: Settings, renderer: DocumentRenderer | None = None) -> MessageProcessor:
    """Build a MessageProcessor backed by Postgres and the real adapters.

    Raises:
        ConfigurationError: If Unipile or OpenAI credentials are missing.
    """
    messaging = UnipileClient(settings)
    llm = OpenAIClient(settings)

    def executor_for(user: User) -> ToolExecutor:
        return ToolExecutor(ToolContext(user=user, settings=settings, messaging=messaging, renderer=renderer))

    engine = ConversationEngine(llm, executor_for, PgConversationStore(), settings)
    return MessageProcessor(messaging, AudioTranscriber(messaging, llm), engine)
