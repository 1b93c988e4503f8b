"""
Tests for the /smssync endpoint and the service routes.

Tests cover:
- Inbound sms with auto reply and idempotency
- Send, sent, result polls driving the outbound lifecycle
- Invalid secret (401), validation errors (422), unknown tasks (400)
- Health and metrics routes
"""

import pytest
from fastapi.testclient import TestClient

from open311_smssync.main import create_app
from open311_smssync.schemas import Message, State

from conftest import TEST_SECRET


@pytest.fixture
def client(transport):
    """Test client on an app bound to the per-test transport."""
    with TestClient(create_app(transport)) as test_client:
        yield test_client


@pytest.fixture
def inbound_form() -> dict:
    return {
        "from": "+255700",
        "message": "help",
        "message_id": "m1",
        "sent_to": "+255999",
        "sent_timestamp": "1700000000000",
        "device_id": "1",
        "secret": TEST_SECRET,
    }


class TestReceive:

    def test_inbound_sms_returns_auto_reply(self, client, store, inbound_form):
        response = client.post("/smssync", data=inbound_form)

        assert response.status_code == 200
        [message] = store.find()
        assert message.state == State.RECEIVED
        assert message.to == ["+255999"]
        assert response.json() == {
            "payload": {
                "success": True,
                "error": None,
                "task": "send",
                "secret": TEST_SECRET,
                "messages": [
                    {"to": "+255700", "message": "Thank you for reporting", "uuid": f"{message.id}:+255700"}
                ],
            }
        }

    def test_retried_post_is_stored_once(self, client, store, inbound_form):
        first = client.post("/smssync", data=inbound_form)
        second = client.post("/smssync", data=inbound_form)

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json() == second.json()
        assert len(store.find()) == 1

    def test_different_message_ids_are_stored(self, client, store, inbound_form):
        client.post("/smssync", data=inbound_form)
        client.post("/smssync", data={**inbound_form, "message_id": "m2"})

        assert len(store.find()) == 2

    def test_device_hash_is_used(self, client, store, inbound_form):
        client.post("/smssync", data={**inbound_form, "hash": "h1"})

        assert store.find_by_hash("h1") is not None

    def test_json_body(self, client, store, inbound_form):
        response = client.post("/smssync", json=inbound_form)

        assert response.status_code == 200
        assert len(store.find()) == 1

    def test_no_reply_configured(self, settings, store, job_queue, inbound_form):
        from open311_smssync.transport import SmsSync

        transport = SmsSync(settings=settings.model_copy(update={"REPLY": None}), store=store, queue=job_queue)
        with TestClient(create_app(transport)) as client:
            response = client.post("/smssync", data=inbound_form)

        assert response.status_code == 200
        assert response.json()["payload"]["messages"] == []

    def test_invalid_secret(self, client, store, inbound_form):
        response = client.post("/smssync", data={**inbound_form, "secret": "wrong"})

        assert response.status_code == 401
        assert response.json() == {"detail": "invalid secret"}
        assert store.find() == []

    def test_missing_secret(self, client, inbound_form):
        del inbound_form["secret"]

        response = client.post("/smssync", data=inbound_form)

        assert response.status_code == 401

    def test_missing_sender_uses_default(self, client, store, settings, inbound_form):
        del inbound_form["from"]

        response = client.post("/smssync", data=inbound_form)

        assert response.status_code == 200
        [message] = store.find()
        assert message.from_msisdn == settings.FROM
        reply = response.json()["payload"]["messages"][0]
        assert reply["to"] == settings.FROM
        assert reply["uuid"] == f"{message.id}:{settings.FROM}"

    def test_missing_text(self, client, inbound_form):
        del inbound_form["message"]

        response = client.post("/smssync", data=inbound_form)

        assert response.status_code == 422

    def test_invalid_json(self, client):
        response = client.post(
            "/smssync",
            content="not valid json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 422


class TestOutbound:

    def test_send_lists_envelopes(self, client, outbound):
        message = outbound(["+255700", "+255701"], body="hi")

        response = client.get("/smssync", params={"task": "send", "secret": TEST_SECRET})

        assert response.status_code == 200
        payload = response.json()["payload"]
        assert payload["task"] == "send"
        assert payload["secret"] == TEST_SECRET
        assert payload["messages"] == [
            {"to": "+255700", "message": "hi", "uuid": f"{message.id}:+255700"},
            {"to": "+255701", "message": "hi", "uuid": f"{message.id}:+255701"},
        ]

    def test_send_requires_secret(self, client):
        response = client.get("/smssync", params={"task": "send"})

        assert response.status_code == 401

    def test_full_cycle(self, client, transport, store):
        transport.queue(Message.outbound(to=["+255700", "+255701"], body="hi"))

        send = client.get("/smssync", params={"task": "send", "secret": TEST_SECRET})
        uuids = [m["uuid"] for m in send.json()["payload"]["messages"]]
        assert len(uuids) == 2

        sent = client.post(
            "/smssync",
            params={"task": "sent", "secret": TEST_SECRET},
            json={"queued_messages": uuids},
        )
        assert sent.status_code == 200
        assert sent.json() == {"message_uuids": uuids}

        waiting = client.get("/smssync", params={"task": "result", "secret": TEST_SECRET})
        assert waiting.json() == {"message_uuids": uuids}

        again = client.get("/smssync", params={"task": "send", "secret": TEST_SECRET})
        assert again.json()["payload"]["messages"] == []

        delivered = client.post(
            "/smssync",
            params={"task": "result", "secret": TEST_SECRET},
            json={"message_result": [{"uuid": uuids[0], "sent_result_code": 0}]},
        )
        assert delivered.status_code == 200
        body = delivered.json()["payload"]
        assert body["success"] is True
        assert len(body["messages"]) == 1
        assert body["messages"][0]["state"] == State.DELIVERED.value
        assert body["messages"][0]["to"] == ["+255700", "+255701"]
        assert "from" in body["messages"][0]

        [message] = store.find()
        assert message.state == State.DELIVERED

    def test_secret_in_body(self, client, outbound):
        message = outbound(["+255700"])

        response = client.post(
            "/smssync",
            params={"task": "sent"},
            json={"queued_messages": [f"{message.id}:+255700"], "secret": TEST_SECRET},
        )

        assert response.status_code == 200

    def test_sent_with_malformed_uuids(self, client):
        response = client.post(
            "/smssync",
            params={"task": "sent", "secret": TEST_SECRET},
            json={"queued_messages": ["", "garbage"]},
        )

        assert response.status_code == 200
        assert response.json() == {"message_uuids": []}

    def test_delivered_with_missing_uuids(self, client):
        response = client.post(
            "/smssync",
            params={"task": "result", "secret": TEST_SECRET},
            json={"message_result": [{}, {"uuid": ""}]},
        )

        assert response.status_code == 200
        assert response.json()["payload"]["messages"] == []

    def test_sent_skips_non_string_uuids(self, client, store, outbound):
        message = outbound(["+255700"])
        uuid = f"{message.id}:+255700"

        response = client.post(
            "/smssync",
            params={"task": "sent", "secret": TEST_SECRET},
            json={"queued_messages": [uuid, None, 42]},
        )

        assert response.status_code == 200
        assert response.json() == {"message_uuids": [uuid]}
        assert store.get(message.id).state == State.QUEUED

    def test_delivered_skips_non_string_uuids(self, client, store, outbound):
        message = outbound(["+255700"], state=State.QUEUED)

        response = client.post(
            "/smssync",
            params={"task": "result", "secret": TEST_SECRET},
            json={"message_result": [{"uuid": f"{message.id}:+255700"}, {"uuid": 123}, {"uuid": None}]},
        )

        assert response.status_code == 200
        [updated] = response.json()["payload"]["messages"]
        assert updated["state"] == State.DELIVERED.value
        assert store.get(message.id).state == State.DELIVERED

    def test_unknown_tasks(self, client):
        poll = client.get("/smssync", params={"task": "dance", "secret": TEST_SECRET})
        post = client.post("/smssync", params={"task": "dance", "secret": TEST_SECRET}, json={})

        assert poll.status_code == 400
        assert post.status_code == 400


class TestServiceRoutes:

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_secret(self, settings, store, job_queue):
        from open311_smssync.transport import SmsSync

        transport = SmsSync(settings=settings.model_copy(update={"SECRET": ""}), store=store, queue=job_queue)
        with TestClient(create_app(transport)) as client:
            response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["reason"] == "SECRET not configured"

    def test_metrics(self, client, inbound_form):
        client.post("/smssync", data=inbound_form)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "smssync_requests_total" in response.text
        assert "message_transitions_total" in response.text

    def test_request_id_header(self, client):
        response = client.get("/health/live")

        assert "X-Request-ID" in response.headers
