"""
Unit tests for webhook authentication, redaction and attribution
"""
import json
from unittest.mock import MagicMock

import pytest

from menu_sync.security.webhook_signature import (
    compute_signature,
    verify_signature,
    verify_subscription,
)
from menu_sync.services.webhook_guard import (
    REDACTED,
    WebhookGuard,
    extract_account_ids,
    redact_payload,
)
from menu_sync.utils.exceptions import SignatureError
from menu_sync.workers.dispatcher import WEBHOOK_ENTRY_EVENT

SECRET = "shhh"


def signed(body: bytes, secret: str = SECRET) -> str:
    return "sha256=" + compute_signature(body, secret)


def message_payload(phone_number_id="555000111", entry_id="100200300"):
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": entry_id,
            "time": 1700000000,
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {
                        "display_phone_number": "+51 999 888 777",
                        "phone_number_id": phone_number_id,
                    },
                    "contacts": [{"profile": {"name": "Ana Pérez"}, "wa_id": "51999111222"}],
                    "messages": [{
                        "from": "51999111222",
                        "id": "wamid.ABC",
                        "timestamp": "1700000000",
                        "type": "text",
                        "text": {"body": "Quiero una pizza grande"},
                    }],
                    "statuses": [{
                        "id": "wamid.DEF",
                        "status": "delivered",
                        "timestamp": "1700000001",
                        "recipient_id": "51999111222",
                    }],
                },
            }],
        }],
    }


class TestSignature:
    """Test X-Hub-Signature-256 verification"""

    def test_valid_signature(self):
        body = b'{"object":"whatsapp_business_account"}'
        verify_signature(body, signed(body), SECRET)

    def test_signature_without_prefix(self):
        body = b"{}"
        verify_signature(body, compute_signature(body, SECRET), SECRET)

    @pytest.mark.parametrize("header,secret,reason", [
        ("sha256=" + "0" * 64, None, "missing_secret"),
        ("sha256=" + "0" * 64, "", "missing_secret"),
        (None, SECRET, "missing_header"),
        ("", SECRET, "missing_header"),
        ("sha256=abc", SECRET, "length_mismatch"),
        ("sha256=" + "0" * 64, SECRET, "mismatch"),
    ])
    def test_rejections(self, header, secret, reason):
        with pytest.raises(SignatureError) as exc_info:
            verify_signature(b"{}", header, secret)
        assert exc_info.value.reason == reason

    def test_signature_covers_raw_bytes(self):
        body = b'{"a": 1}'
        reformatted = b'{"a":1}'

        with pytest.raises(SignatureError):
            verify_signature(reformatted, signed(body), SECRET)

    def test_wrong_secret(self):
        body = b"{}"
        with pytest.raises(SignatureError):
            verify_signature(body, signed(body, "other-secret"), SECRET)


class TestSubscriptionHandshake:
    """Test GET hub.challenge handshake"""

    def test_echoes_challenge(self):
        assert verify_subscription("subscribe", "tok", "12345", "tok") == "12345"

    @pytest.mark.parametrize("mode,token,challenge,expected,reason", [
        ("unsubscribe", "tok", "1", "tok", "invalid_mode"),
        (None, "tok", "1", "tok", "invalid_mode"),
        ("subscribe", "wrong", "1", "tok", "token_mismatch"),
        ("subscribe", None, "1", "tok", "token_mismatch"),
        ("subscribe", "tok", "1", None, "missing_verify_token"),
        ("subscribe", "tok", None, "tok", "missing_challenge"),
    ])
    def test_rejections(self, mode, token, challenge, expected, reason):
        with pytest.raises(SignatureError) as exc_info:
            verify_subscription(mode, token, challenge, expected)
        assert exc_info.value.reason == reason


class TestRedaction:
    """Test allow-list redaction of payloads"""

    def test_sensitive_fields_never_survive(self):
        redacted = json.dumps(redact_payload(message_payload()))

        assert "Quiero una pizza grande" not in redacted
        assert "Ana Pérez" not in redacted
        assert "51999111222" not in redacted
        assert "+51 999 888 777" not in redacted
        assert "555000111" not in redacted
        assert "contacts" not in redacted
        assert "recipient_id" not in redacted

    def test_ids_types_and_statuses_kept(self):
        redacted = redact_payload(message_payload())
        value = redacted["entry"][0]["changes"][0]["value"]

        assert redacted["object"] == "whatsapp_business_account"
        assert redacted["entry"][0]["id"] == "100200300"
        assert value["messages"] == [{
            "id": "wamid.ABC", "type": "text", "timestamp": "1700000000", "from": REDACTED,
        }]
        assert value["statuses"] == [{
            "id": "wamid.DEF", "status": "delivered", "timestamp": "1700000001",
        }]
        assert value["metadata"]["phone_number_id"] == REDACTED

    def test_unknown_fields_dropped(self):
        payload = message_payload()
        payload["entry"][0]["changes"][0]["value"]["new_secret_field"] = "leak"
        payload["entry"][0]["extra"] = "leak"

        assert "leak" not in json.dumps(redact_payload(payload))

    def test_template_update_redacts_name(self):
        payload = {
            "object": "whatsapp_business_account",
            "entry": [{"id": "100200300", "changes": [{
                "field": "message_template_status_update",
                "value": {
                    "event": "APPROVED",
                    "message_template_id": 42,
                    "message_template_name": "promo_secret_sauce",
                    "message_template_language": "es",
                },
            }]}],
        }
        value = redact_payload(payload)["entry"][0]["changes"][0]["value"]

        assert value == {
            "message_template_id": 42,
            "message_template_name": REDACTED,
            "message_template_language": "es",
            "event": "APPROVED",
        }

    def test_malformed_payload(self):
        assert redact_payload(["not", "a", "dict"]) == {"object": None, "entry": []}
        assert redact_payload({"object": "x", "entry": "nope"}) == {"object": "x", "entry": []}


class TestAccountExtraction:
    """Test phone number / WABA id extraction"""

    def test_metadata_phone_and_entry_waba(self):
        assert extract_account_ids(message_payload()["entry"][0]) == ("555000111", "100200300")

    def test_combined_entry_id(self):
        entry = {"id": "100200300-555000111", "changes": []}
        assert extract_account_ids(entry) == ("555000111", "100200300")

    def test_metadata_wins_over_entry_id(self):
        entry = {"id": "111-222", "changes": [{"value": {"metadata": {"phone_number_id": "333"}}}]}
        assert extract_account_ids(entry) == ("333", "111")

    def test_nothing_found(self):
        assert extract_account_ids({}) == (None, None)


class TestWebhookGuard:
    """Test the full delivery pipeline"""

    @pytest.fixture
    def dispatcher(self):
        mock_dispatcher = MagicMock()
        mock_dispatcher.send.return_value = "task-1"
        return mock_dispatcher

    @pytest.fixture
    def guard(self, db_session, dispatcher):
        return WebhookGuard(db_session, dispatcher=dispatcher, app_secret=SECRET, verify_token="tok")

    def test_bad_signature_never_parses(self, guard, dispatcher):
        with pytest.raises(SignatureError):
            guard.handle_delivery(b"not even json", "sha256=" + "0" * 64)
        dispatcher.send.assert_not_called()

    def test_missing_secret_rejects(self, db_session, dispatcher):
        guard = WebhookGuard(db_session, dispatcher=dispatcher, app_secret="", verify_token="tok")
        body = b"{}"

        with pytest.raises(SignatureError) as exc_info:
            guard.handle_delivery(body, signed(body))
        assert exc_info.value.reason == "missing_secret"

    def test_attributed_entry_dispatched(self, guard, dispatcher, business):
        payload = message_payload()
        body = json.dumps(payload).encode()

        ack = guard.handle_delivery(body, signed(body))

        assert ack == {"type": "1", "message": "Webhook received", "data": {"queued": 1, "skipped": 0}}
        dispatcher.send.assert_called_once_with(WEBHOOK_ENTRY_EVENT, {
            "business_id": "biz-001",
            "entry": payload["entry"][0],
            "sub_domain": "pizzeria",
        })

    def test_attribution_by_waba_when_phone_unknown(self, guard, dispatcher, business):
        body = json.dumps(message_payload(phone_number_id="phone-unknown")).encode()

        ack = guard.handle_delivery(body, signed(body))

        assert ack["data"]["queued"] == 1
        assert dispatcher.send.call_args[0][1]["business_id"] == "biz-001"

    def test_phone_takes_priority_over_waba(self, guard, dispatcher, business, db_session):
        from menu_sync.database.models import Business

        other = Business(
            business_id="biz-002", subdomain="sushi", name="Sushi Bar",
            waba_id="100200399", phone_number_ids=["555000222"],
        )
        db_session.add(other)
        db_session.commit()

        body = json.dumps(message_payload(phone_number_id="555000222", entry_id="100200300")).encode()
        guard.handle_delivery(body, signed(body))

        assert dispatcher.send.call_args[0][1]["business_id"] == "biz-002"

    def test_unattributed_entry_skipped(self, guard, dispatcher, business):
        body = json.dumps(message_payload(phone_number_id="nope", entry_id="nope")).encode()

        ack = guard.handle_delivery(body, signed(body))

        assert ack["type"] == "1"
        assert ack["data"] == {"queued": 0, "skipped": 1}
        dispatcher.send.assert_not_called()

    def test_unknown_object_ignored(self, guard, dispatcher):
        body = json.dumps({"object": "page", "entry": [{"id": "1"}]}).encode()

        ack = guard.handle_delivery(body, signed(body))

        assert ack["data"] == {"queued": 0, "skipped": 0}
        dispatcher.send.assert_not_called()

    def test_invalid_json_still_acknowledged(self, guard):
        body = b"{broken"

        ack = guard.handle_delivery(body, signed(body))

        assert ack == {"type": "3", "message": "Error processing webhook", "data": None}

    def test_dispatch_failure_does_not_fail_delivery(self, guard, dispatcher, business):
        dispatcher.send.side_effect = RuntimeError("broker down")
        body = json.dumps(message_payload()).encode()

        ack = guard.handle_delivery(body, signed(body))

        assert ack["type"] == "1"
        assert ack["data"] == {"queued": 0, "skipped": 1}

    def test_verify_subscription(self, guard):
        assert guard.verify_subscription("subscribe", "tok", "abc") == "abc"
        with pytest.raises(SignatureError):
            guard.verify_subscription("subscribe", "bad", "abc")
