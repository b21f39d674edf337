"""Tests for observability utilities."""

import json
import logging

from devisly.observability.correlation import correlation_scope, get_correlation_id
from devisly.observability.logging import JsonFormatter, get_logger
from devisly.observability.redaction import (
    hash_identifier,
    id_prefix,
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    """Tests for redaction helpers."""

    def test_redact_phone_number(self):
        result = redact_string("Appelez-moi au +33 6 12 34 56 78")
        assert "12 34" not in result
        assert "[REDACTED]" in result

    def test_redact_email(self):
        result = redact_string("Email: jean@example.fr")
        assert "jean@example.fr" not in result
        assert "[REDACTED]" in result

    def test_redact_whatsapp_jid(self):
        result = redact_string("from 33612345678@s.whatsapp.net")
        assert "33612345678" not in result

    def test_redact_siret(self):
        result = redact_string("SIRET 123 456 789 00012")
        assert "00012" not in result

    def test_plain_text_untouched(self):
        assert redact_string("Devis DEVIS-2026-0001") == "Devis DEVIS-2026-0001"

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"siret": "12345678900012", "name": "Jean"})
        assert "Jean" not in result
        assert "siret" in result
        assert "name" in result

    def test_redact_value_list_only_len(self):
        result = redact_value(["a", "b", "c"])
        assert "len=3" in result

    def test_redact_value_scalars(self):
        assert redact_value(None) == "null"
        assert redact_value(True) == "true"
        assert redact_value(3.5) == "3.5"

    def test_safe_log_context(self):
        ctx = safe_log_context(phone="+33612345678", count=42)
        assert "[REDACTED]" in ctx["phone"]
        assert ctx["count"] == "42"


class TestIdentifiers:
    def test_hash_identifier_stable_and_short(self):
        assert hash_identifier("+33612345678") == hash_identifier("+33612345678")
        assert len(hash_identifier("+33612345678")) == 12
        assert "33612345678" not in hash_identifier("+33612345678")

    def test_id_prefix(self):
        assert id_prefix("msg_in_000001") == "msg_in_0"
        assert id_prefix("abc") == "abc"
        assert id_prefix(None) is None
        assert id_prefix("") is None


class TestCorrelation:
    def test_scope_binds_and_restores(self):
        assert get_correlation_id() == ""
        with correlation_scope("cid-1") as cid:
            assert cid == "cid-1"
            assert get_correlation_id() == "cid-1"
        assert get_correlation_id() == ""

    def test_scope_generates_id(self):
        with correlation_scope() as cid:
            assert len(cid) == 36


class TestJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("devisly.test", logging.INFO, __file__, 1, "message sent", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_fields_merged(self):
        line = JsonFormatter().format(self._record(extra_fields={"message_record_id": "42"}))
        data = json.loads(line)

        assert data["message"] == "message sent"
        assert data["level"] == "INFO"
        assert data["logger"] == "devisly.test"
        assert data["message_record_id"] == "42"
        assert "correlationId" not in data

    def test_correlation_id_included(self):
        with correlation_scope("cid-42"):
            data = json.loads(JsonFormatter().format(self._record()))
        assert data["correlationId"] == "cid-42"

    def test_get_logger_attaches_single_handler(self):
        logger = get_logger("devisly.test.single")
        get_logger("devisly.test.single")
        assert len(logger.handlers) == 1
        assert logger.propagate is False
