"""Tests for POST /webhooks/unipile/messages.

DB access is patched at the route module; the tasks client runs the inline
backend so enqueued tasks can be inspected.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from devisly.api.routes import webhooks_unipile
from devisly.infra.settings import set_settings
from devisly.messaging.unipile_client import ApiError
from devisly.tasks.client import TasksClient
from devisly.tasks.contracts import ProcessMessageTask
from tests.helpers import fake_txn, make_user

ROUTE = "devisly.api.routes.webhooks_unipile"
URL = "/webhooks/unipile/messages"


def _payload(**overrides):
    payload = {
        "event": "message_received",
        "account_id": "acc_123",
        "chat_id": "chat_abc",
        "message_id": "msg_000001",
        "message": "Bonjour",
        "timestamp": "2026-03-10T14:30:00Z",
        "sender": {
            "attendee_id": "att_1",
            "attendee_provider_id": "33612345678@s.whatsapp.net",
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def tasks_client(settings):
    return TasksClient(settings)


@pytest.fixture
def repos():
    messages = MagicMock()
    messages.find_by_provider_id.return_value = None
    messages.insert_inbound.return_value = 101
    users = MagicMock()
    users.get_or_create_by_phone.return_value = (make_user(id=7), False)
    system_logs = MagicMock()
    return messages, users, system_logs


@pytest.fixture
def client(settings, tasks_client, repos):
    messages, users, system_logs = repos
    app = FastAPI()
    app.include_router(webhooks_unipile.router)
    with patch(f"{ROUTE}.txn", fake_txn), \
         patch(f"{ROUTE}.messages_repository", messages), \
         patch(f"{ROUTE}.users_repository", users), \
         patch(f"{ROUTE}.system_logs_repository", system_logs), \
         patch(f"{ROUTE}._get_tasks_client", return_value=tasks_client), \
         patch.dict(f"{ROUTE}._business_numbers", clear=True):
        yield TestClient(app)


class TestAccepted:
    def test_text_message_stored_and_enqueued(self, client, repos, tasks_client):
        messages, users, system_logs = repos

        response = client.post(URL, json=_payload())

        assert response.status_code == 200
        assert response.text == "ok"
        users.get_or_create_by_phone.assert_called_once()
        assert users.get_or_create_by_phone.call_args.kwargs["phone_number"] == "+33612345678"
        insert = messages.insert_inbound.call_args.kwargs
        assert insert["unipile_message_id"] == "msg_000001"
        assert insert["message_type"] == "text"
        assert insert["content"] == "Bonjour"
        assert insert["user_id"] == 7
        tasks = tasks_client.get_scheduled_tasks()
        assert len(tasks) == 1
        assert tasks[0]["url_path"] == "/tasks/messages/process"
        assert tasks[0]["payload"] == {"message_record_id": 101}
        assert system_logs.record_event.call_args.kwargs["event"] == "whatsapp_message_received"

    def test_task_payload_has_no_pii(self, client, tasks_client):
        client.post(URL, json=_payload())

        payload_text = str(tasks_client.get_scheduled_tasks()[0]["payload"])
        assert "33612345678" not in payload_text
        assert "Bonjour" not in payload_text
        assert "chat_abc" not in payload_text

    def test_voice_note_classified(self, client, repos):
        messages, _, _ = repos

        client.post(URL, json=_payload(message="", attachments=[{"id": "att_v", "type": "audio"}]))

        insert = messages.insert_inbound.call_args.kwargs
        assert insert["message_type"] == "audio"
        assert insert["content"] is None

    def test_chat_and_attendee_recorded_on_user(self, client, repos):
        _, users, _ = repos

        client.post(URL, json=_payload())

        touch = users.touch_activity.call_args.kwargs
        assert touch["chat_id"] == "chat_abc"
        assert touch["attendee_id"] == "att_1"


class TestDuplicates:
    def test_processed_message_id(self, client, repos, tasks_client):
        messages, users, _ = repos
        messages.find_by_provider_id.return_value = (101, True)

        response = client.post(URL, json=_payload())

        assert response.status_code == 200
        assert response.text == "duplicate"
        users.get_or_create_by_phone.assert_not_called()
        assert tasks_client.get_scheduled_tasks() == []

    def test_concurrent_insert_lost(self, client, repos, tasks_client):
        messages, _, _ = repos
        messages.insert_inbound.return_value = None

        response = client.post(URL, json=_payload())

        assert response.text == "duplicate"
        assert tasks_client.get_scheduled_tasks() == []

    def test_unprocessed_record_enqueued_again(self, client, repos, tasks_client):
        messages, users, system_logs = repos
        messages.find_by_provider_id.return_value = (101, False)

        response = client.post(URL, json=_payload())

        assert response.status_code == 200
        assert response.text == "duplicate"
        messages.insert_inbound.assert_not_called()
        users.get_or_create_by_phone.assert_not_called()
        assert [t["payload"] for t in tasks_client.get_scheduled_tasks()] == [{"message_record_id": 101}]
        system_logs.record_event.assert_not_called()

    def test_unprocessed_record_already_enqueued(self, client, repos, tasks_client):
        messages, _, _ = repos
        tasks_client.enqueue_message(ProcessMessageTask(message_record_id=101))
        messages.find_by_provider_id.return_value = (101, False)

        response = client.post(URL, json=_payload())

        assert response.text == "duplicate"
        assert len(tasks_client.get_scheduled_tasks()) == 1


class TestIgnored:
    def test_own_message_echo(self, client, repos):
        messages, _, _ = repos
        payload = _payload(sender={"attendee_provider_id": "33700000000@s.whatsapp.net"})

        response = client.post(URL, json=payload)

        assert response.status_code == 200
        assert response.text == "ignored"
        messages.find_by_provider_id.assert_not_called()

    def test_own_message_echo_from_account_number(self, client, repos, settings):
        messages, _, _ = repos
        set_settings(replace(settings, whatsapp_business_number=""))
        unipile = MagicMock()
        unipile.return_value.get_account_info.return_value = {
            "name": "Devisly",
            "connection_params": {"im": {"phone_number": "33700000000"}},
        }
        payload = _payload(sender={"attendee_provider_id": "33700000000@s.whatsapp.net"})

        with patch(f"{ROUTE}.UnipileClient", unipile):
            first = client.post(URL, json=payload)
            second = client.post(URL, json=_payload(message_id="msg_000002", sender=payload["sender"]))

        assert first.text == "ignored"
        assert second.text == "ignored"
        unipile.return_value.get_account_info.assert_called_once()
        messages.find_by_provider_id.assert_not_called()

    def test_account_lookup_failure_processes_message(self, client, settings, tasks_client):
        set_settings(replace(settings, whatsapp_business_number=""))
        unipile = MagicMock()
        unipile.return_value.get_account_info.side_effect = ApiError("HTTP 502", status=502)

        with patch(f"{ROUTE}.UnipileClient", unipile):
            response = client.post(URL, json=_payload())

        assert response.text == "ok"
        assert len(tasks_client.get_scheduled_tasks()) == 1

    def test_configured_number_skips_account_lookup(self, client):
        unipile = MagicMock()

        with patch(f"{ROUTE}.UnipileClient", unipile):
            client.post(URL, json=_payload())

        unipile.assert_not_called()

    def test_other_event(self, client, repos):
        messages, _, _ = repos

        response = client.post(URL, json=_payload(event="message_reaction"))

        assert response.text == "ignored"
        messages.insert_inbound.assert_not_called()

    def test_other_account_lenient(self, client):
        response = client.post(URL, json=_payload(account_id="acc_other"))

        assert response.status_code == 200
        assert response.text == "ignored"

    def test_other_account_strict(self, client, settings):
        set_settings(replace(settings, webhook_strict_account=True))

        response = client.post(URL, json=_payload(account_id="acc_other"))

        assert response.status_code == 401


class TestRejected:
    def test_invalid_json(self, client):
        response = client.post(URL, content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_non_object_body(self, client):
        response = client.post(URL, json=["message_id"])
        assert response.status_code == 400

    def test_missing_message_id(self, client):
        payload = _payload()
        del payload["message_id"]

        response = client.post(URL, json=payload)

        assert response.status_code == 422

    def test_missing_sender_phone(self, client, repos, tasks_client):
        messages, users, _ = repos

        response = client.post(URL, json=_payload(sender={"attendee_id": "att_1"}))

        assert response.status_code == 422
        users.get_or_create_by_phone.assert_not_called()
        messages.insert_inbound.assert_not_called()
        assert tasks_client.get_scheduled_tasks() == []


class TestFailures:
    def test_repository_error_returns_500(self, client, repos):
        messages, _, system_logs = repos
        messages.insert_inbound.side_effect = RuntimeError("connection lost")

        response = client.post(URL, json=_payload())

        assert response.status_code == 500
        system_logs.record_event.assert_not_called()

    def test_enqueue_refused_returns_500(self, client, tasks_client):
        # Already-seen task id makes the client refuse the enqueue
        tasks_client.enqueue_http("message:101", "/tasks/messages/process", {"message_record_id": 101})

        response = client.post(URL, json=_payload())

        assert response.status_code == 500

    def test_record_committed_before_enqueue(self, client, repos):
        _, _, system_logs = repos
        state = {"committed": False}
        committed_at_enqueue = []

        @contextmanager
        def committing_txn():
            yield MagicMock()
            state["committed"] = True

        def enqueue(task, correlation_id=None):
            committed_at_enqueue.append(state["committed"])
            return True

        tasks = MagicMock()
        tasks.was_executed.return_value = False
        tasks.enqueue_message.side_effect = enqueue

        with patch(f"{ROUTE}.txn", committing_txn), patch(f"{ROUTE}._get_tasks_client", return_value=tasks):
            response = client.post(URL, json=_payload())

        assert response.status_code == 200
        assert committed_at_enqueue == [True]
        system_logs.record_event.assert_called_once()

    def test_redelivery_after_enqueue_error(self, client, repos, tasks_client):
        messages, _, system_logs = repos
        failing = MagicMock()
        failing.enqueue_message.side_effect = RuntimeError("queue unavailable")

        with patch(f"{ROUTE}._get_tasks_client", return_value=failing):
            first = client.post(URL, json=_payload())

        assert first.status_code == 500
        messages.insert_inbound.assert_called_once()
        system_logs.record_event.assert_not_called()

        messages.find_by_provider_id.return_value = (101, False)
        second = client.post(URL, json=_payload())

        assert second.status_code == 200
        assert messages.insert_inbound.call_count == 1
        assert tasks_client.get_scheduled_tasks()[0]["payload"] == {"message_record_id": 101}
