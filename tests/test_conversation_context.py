"""Tests for the conversation context window and prompt rendering."""

from __future__ import annotations

from datetime import timedelta

from devisly.conversation.context import select_window, to_history, window_start
from devisly.conversation.prompts import DEFAULT_SYSTEM_PROMPT, fallback_reply, render_system_prompt
from tests.helpers import NOW, make_record, make_user


class TestSelectWindow:
    def test_keeps_only_messages_inside_window(self):
        recent = make_record(id=1, content="Devis pour Dupont", created_at=NOW - timedelta(minutes=10))
        older = make_record(id=2, content="Facture Martin", created_at=NOW - timedelta(minutes=90))
        stale = make_record(id=3, content="Hier", created_at=NOW - timedelta(hours=3))

        window = select_window([recent, older, stale], now=NOW, limit=15, hours=2)

        assert [message.id for message in window] == [2, 1]

    def test_limit_keeps_newest(self):
        records = [
            make_record(id=i, content=f"m{i}", created_at=NOW - timedelta(minutes=60 - i))
            for i in range(1, 21)
        ]

        window = select_window(records, now=NOW, limit=15, hours=2)

        assert len(window) == 15
        assert window[0].id == 6
        assert window[-1].id == 20

    def test_excludes_current_record(self):
        current = make_record(id=42, created_at=NOW - timedelta(seconds=5))
        previous = make_record(id=41, created_at=NOW - timedelta(minutes=1))

        window = select_window([current, previous], now=NOW, exclude_id=42)

        assert [message.id for message in window] == [41]

    def test_records_without_timestamp_dropped(self):
        assert select_window([make_record(created_at=None)], now=NOW) == []

    def test_zero_limit(self):
        assert select_window([make_record(created_at=NOW)], now=NOW, limit=0) == []

    def test_window_start(self):
        assert window_start(NOW, 2) == NOW - timedelta(hours=2)


class TestToHistory:
    def test_roles_by_direction(self):
        inbound = make_record(id=1, content="Bonjour")
        outbound = make_record(id=2, direction="outbound", content="Bonjour ! Comment puis-je vous aider ?")

        assert to_history([inbound, outbound]) == [
            {"role": "user", "content": "Bonjour"},
            {"role": "assistant", "content": "Bonjour ! Comment puis-je vous aider ?"},
        ]

    def test_audio_uses_transcript(self):
        voice = make_record(message_type="audio", content=None, audio_transcription=" Crée un devis ")
        assert to_history([voice]) == [{"role": "user", "content": "Crée un devis"}]

    def test_empty_content_skipped(self):
        failed_voice = make_record(message_type="audio", content=None, audio_transcription=None)
        blank = make_record(id=2, content="   ")
        assert to_history([failed_voice, blank]) == []


class TestPrompts:
    def test_default_prompt_filled_from_profile(self):
        prompt = render_system_prompt(make_user())

        assert "{{" not in prompt
        assert "Dupont Rénovation" in prompt
        assert "12345678900012" in prompt
        assert "Actif" in prompt

    def test_missing_profile_values(self):
        prompt = render_system_prompt(make_user(company_name=None, siret=None, address=None))

        assert "Entreprise: Non renseigné" in prompt
        assert "Adresse: Non renseignée" in prompt

    def test_stored_template_overrides_default(self):
        template = "Assistant de {{company_name}} ({{preferred_language}}), documents: {{can_create_documents}}"

        prompt = render_system_prompt(make_user(subscription_status="pending"), template)

        assert prompt == "Assistant de Dupont Rénovation (fr), documents: false"

    def test_default_used_for_empty_template(self):
        assert render_system_prompt(make_user(), "").startswith(DEFAULT_SYSTEM_PROMPT[:20])

    def test_fallbacks_localized(self):
        french = make_user()
        turkish = make_user(preferred_language="tr")

        assert fallback_reply("too_complex", french).startswith("Cette demande semble trop complexe")
        assert fallback_reply("too_complex", turkish).startswith("Bu işlem çok karmaşık")
        assert fallback_reply("rate_limit", french).startswith("Vous avez envoyé trop de messages")
        assert fallback_reply("configuration", turkish).startswith("Sistem şu anda kullanılamıyor")
