"""
Integration tests for the WhatsApp webhook endpoints
"""
import json
from unittest.mock import MagicMock, patch

import pytest

from menu_sync.security.webhook_signature import compute_signature
from menu_sync.workers.dispatcher import WEBHOOK_ENTRY_EVENT
from tests.conftest import TEST_APP_SECRET, TEST_VERIFY_TOKEN

WEBHOOK_URL = "/api/v1/whatsapp/webhook"


def signature_for(body: bytes) -> str:
    return "sha256=" + compute_signature(body, TEST_APP_SECRET)


@pytest.fixture
def dispatcher():
    mock_dispatcher = MagicMock()
    mock_dispatcher.send.return_value = "task-1"
    with patch("menu_sync.services.webhook_guard.get_dispatcher", return_value=mock_dispatcher):
        yield mock_dispatcher


def delivery(phone_number_id="555000111"):
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "100200300",
            "changes": [{
                "field": "messages",
                "value": {
                    "metadata": {"phone_number_id": phone_number_id},
                    "messages": [{"id": "wamid.1", "type": "text", "text": {"body": "hola"}}],
                },
            }],
        }],
    }


class TestHandshake:
    """Test GET subscription verification"""

    def test_challenge_echoed(self, client):
        response = client.get(WEBHOOK_URL, params={
            "hub.mode": "subscribe",
            "hub.verify_token": TEST_VERIFY_TOKEN,
            "hub.challenge": "1158201444",
        })

        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_wrong_token_forbidden(self, client):
        response = client.get(WEBHOOK_URL, params={
            "hub.mode": "subscribe",
            "hub.verify_token": "guess",
            "hub.challenge": "1158201444",
        })

        assert response.status_code == 403
        assert "1158201444" not in response.text

    def test_missing_params_forbidden(self, client):
        assert client.get(WEBHOOK_URL).status_code == 403


class TestDelivery:
    """Test POST deliveries"""

    def test_signed_delivery_accepted(self, client, business, dispatcher):
        body = json.dumps(delivery()).encode()

        response = client.post(
            WEBHOOK_URL,
            content=body,
            headers={"Content-Type": "application/json", "X-Hub-Signature-256": signature_for(body)},
        )

        assert response.status_code == 200
        assert response.json() == {"type": "1", "message": "Webhook received", "data": {"queued": 1, "skipped": 0}}
        event, payload = dispatcher.send.call_args[0]
        assert event == WEBHOOK_ENTRY_EVENT
        assert payload["business_id"] == "biz-001"
        assert payload["sub_domain"] == "pizzeria"

    def test_missing_signature_forbidden(self, client, business, dispatcher):
        response = client.post(WEBHOOK_URL, content=json.dumps(delivery()).encode())

        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden", "message": "Request verification failed"}
        dispatcher.send.assert_not_called()

    def test_bad_signature_forbidden(self, client, business, dispatcher):
        body = json.dumps(delivery()).encode()

        response = client.post(WEBHOOK_URL, content=body, headers={"X-Hub-Signature-256": "sha256=" + "0" * 64})

        assert response.status_code == 403
        dispatcher.send.assert_not_called()

    def test_signature_checked_on_raw_bytes(self, client, business, dispatcher):
        original = json.dumps(delivery()).encode()
        reserialized = json.dumps(delivery(), separators=(",", ":")).encode()

        response = client.post(
            WEBHOOK_URL, content=reserialized, headers={"X-Hub-Signature-256": signature_for(original)}
        )

        assert response.status_code == 403

    def test_unattributed_delivery_still_200(self, client, dispatcher):
        body = json.dumps(delivery()).encode()

        response = client.post(WEBHOOK_URL, content=body, headers={"X-Hub-Signature-256": signature_for(body)})

        assert response.status_code == 200
        assert response.json()["data"] == {"queued": 0, "skipped": 1}

    def test_unparseable_body_still_200(self, client, dispatcher):
        body = b"not-json"

        response = client.post(WEBHOOK_URL, content=body, headers={"X-Hub-Signature-256": signature_for(body)})

        assert response.status_code == 200
        assert response.json()["type"] == "3"

    def test_missing_app_secret_forbidden(self, client, business, dispatcher):
        body = json.dumps(delivery()).encode()

        with patch("menu_sync.api.routes.webhooks.WebhookGuard") as guard_cls:
            from menu_sync.services.webhook_guard import WebhookGuard

            guard_cls.side_effect = lambda db: WebhookGuard(db, app_secret="")
            response = client.post(WEBHOOK_URL, content=body, headers={"X-Hub-Signature-256": signature_for(body)})

        assert response.status_code == 403
