"""Tests for the Unipile webhook adapter (pure functions, no DB)."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from devisly.messaging.unipile_adapter import (
    InvalidPayloadError,
    UnprocessableInput,
    account_matches,
    business_number_from_account,
    classify_kind,
    extract_sender_phone,
    is_accepted_event,
    is_self_message,
    normalize,
    normalize_phone,
    require_sender_phone,
)


def _payload(**overrides):
    payload = {
        "event": "message_received",
        "account_id": "acc_123",
        "chat_id": "chat_abc",
        "message_id": "msg_000001",
        "message": "Bonjour",
        "timestamp": "2026-03-10T14:30:00.000Z",
        "sender": {
            "attendee_id": "att_1",
            "attendee_provider_id": "33612345678@s.whatsapp.net",
        },
    }
    payload.update(overrides)
    return payload


class TestNormalizePhone:
    def test_whatsapp_jid(self):
        assert normalize_phone("33612345678@s.whatsapp.net") == "+33612345678"

    def test_already_plus_prefixed(self):
        assert normalize_phone("+33 6 12 34 56 78") == "+33612345678"

    @pytest.mark.parametrize("value", [None, "", "   ", "@s.whatsapp.net", 33612345678])
    def test_unusable_values(self, value):
        assert normalize_phone(value) is None


class TestClassifyKind:
    def test_no_attachments_is_text(self):
        assert classify_kind(_payload()) == "text"

    def test_attachment_list_uses_first(self):
        payload = _payload(attachments=[{"type": "audio", "id": "att_a"}, {"type": "img"}])
        assert classify_kind(payload) == "audio"

    def test_single_attachment_object(self):
        assert classify_kind(_payload(attachments={"type": "img"})) == "image"

    def test_attachment_type_field(self):
        assert classify_kind(_payload(attachments=[{"attachment_type": "file"}])) == "document"

    def test_video(self):
        assert classify_kind(_payload(attachments=[{"type": "video"}])) == "video"

    def test_voice_note_flag(self):
        assert classify_kind(_payload(attachments=[{"type": "unknown", "voice_note": True}])) == "audio"

    def test_unknown_type_is_text(self):
        assert classify_kind(_payload(attachments=[{"type": "location"}])) == "text"

    def test_empty_list_is_text(self):
        assert classify_kind(_payload(attachments=[])) == "text"


class TestExtractSenderPhone:
    """Fallback order: attendee.identifier, attendee.attendee_provider_id,
    sender.attendee_provider_id, digits inside sender.attendee_id."""

    def test_attendee_identifier_first(self):
        payload = _payload(attendees=[{"identifier": "33611111111@s.whatsapp.net"}])
        assert extract_sender_phone(payload) == "+33611111111"

    def test_attendee_provider_id_second(self):
        payload = _payload(attendees=[{"attendee_provider_id": "33622222222@s.whatsapp.net"}])
        assert extract_sender_phone(payload) == "+33622222222"

    def test_sender_provider_id_third(self):
        assert extract_sender_phone(_payload()) == "+33612345678"

    def test_digits_in_attendee_id_last(self):
        payload = _payload(sender={"attendee_id": "wa-905321234567-x"})
        assert extract_sender_phone(payload) == "+905321234567"

    def test_nothing_derivable(self):
        assert extract_sender_phone(_payload(sender={"attendee_id": "att_1"})) is None


class TestFilters:
    def test_accepted_event(self):
        assert is_accepted_event(_payload()) is True

    def test_missing_event_is_legacy_payload(self):
        payload = _payload()
        del payload["event"]
        assert is_accepted_event(payload) is True

    def test_other_event_rejected(self):
        assert is_accepted_event(_payload(event="message_read")) is False

    def test_account_matches_when_unconfigured(self):
        assert account_matches(_payload(account_id="other"), "") is True

    def test_account_mismatch(self):
        assert account_matches(_payload(account_id="other"), "acc_123") is False

    def test_self_message_detected(self):
        payload = _payload(sender={"attendee_provider_id": "33700000000@s.whatsapp.net"})
        assert is_self_message(payload, "+33 7 00 00 00 00") is True

    def test_user_message_is_not_self(self):
        assert is_self_message(_payload(), "+33700000000") is False

    def test_self_check_disabled_without_business_number(self):
        assert is_self_message(_payload(), "") is False


class TestBusinessNumberFromAccount:
    def test_connection_phone_number(self):
        info = {"name": "Devisly", "connection_params": {"im": {"phone_number": "33700000000"}}}
        assert business_number_from_account(info) == "+33700000000"

    def test_falls_back_to_name(self):
        info = {"name": "33700000000@s.whatsapp.net", "connection_params": {"im": {}}}
        assert business_number_from_account(info) == "+33700000000"

    @pytest.mark.parametrize("info", [{}, {"name": "Devisly"}, None, ["33700000000"]])
    def test_no_number(self, info):
        assert business_number_from_account(info) is None


class TestNormalize:
    def test_text_message(self):
        message = normalize(_payload())

        assert message.message_id == "msg_000001"
        assert message.chat_id == "chat_abc"
        assert message.sender_phone == "+33612345678"
        assert message.attendee_id == "att_1"
        assert message.kind == "text"
        assert message.text == "Bonjour"
        assert message.received_at == datetime(2026, 3, 10, 14, 30, tzinfo=timezone.utc)

    def test_missing_message_id_raises(self):
        payload = _payload()
        del payload["message_id"]
        with pytest.raises(InvalidPayloadError):
            normalize(payload)

    def test_non_string_message_id_raises(self):
        with pytest.raises(InvalidPayloadError):
            normalize(_payload(message_id=123))

    def test_media_without_text(self):
        message = normalize(_payload(message=None, attachments=[{"type": "img"}]))
        assert message.kind == "image"
        assert message.text == ""

    def test_bad_timestamp_falls_back_to_now(self):
        message = normalize(_payload(timestamp="yesterday"))
        assert message.received_at.tzinfo is not None
        assert abs((datetime.now(timezone.utc) - message.received_at).total_seconds()) < 60

    def test_raw_payload_kept(self):
        payload = _payload()
        assert normalize(payload).raw is payload

    def test_require_sender_phone(self):
        message = normalize(_payload(sender={"attendee_id": "att_1"}))
        with pytest.raises(UnprocessableInput):
            require_sender_phone(message)
