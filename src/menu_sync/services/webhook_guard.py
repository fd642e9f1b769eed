"""
Webhook guard for inbound WhatsApp Business callbacks.

Pipeline per delivery:
1. Verify the HMAC signature over the raw body (reject with 403 on failure)
2. Parse and log an allow-list redacted copy of the payload
3. Attribute each entry to a tenant and queue it for background processing
4. Acknowledge with 200 regardless of downstream outcome
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from menu_sync.database.models import Business
from menu_sync.monitoring.metrics import get_metrics
from menu_sync.security.webhook_signature import verify_signature, verify_subscription
from menu_sync.services.tenant_resolver import TenantResolver
from menu_sync.utils.config import get_config
from menu_sync.utils.exceptions import SignatureError
from menu_sync.utils.logger import get_logger
from menu_sync.workers.dispatcher import WEBHOOK_ENTRY_EVENT, TaskDispatcher, get_dispatcher

logger = get_logger(__name__)

REDACTED = "[REDACTED]"
WHATSAPP_OBJECT = "whatsapp_business_account"


def _redacted_if_present(value: Any) -> Optional[str]:
    return REDACTED if value else None


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def redact_change(change: Dict[str, Any]) -> Dict[str, Any]:
    """Rebuild one change event keeping only ids, types, statuses and timestamps."""
    change = _as_dict(change)
    value = _as_dict(change.get("value"))
    redacted_value: Dict[str, Any] = {}

    metadata = _as_dict(value.get("metadata"))
    if metadata:
        redacted_value["metadata"] = _compact({
            "phone_number_id": _redacted_if_present(metadata.get("phone_number_id")),
            "display_phone_number": _redacted_if_present(metadata.get("display_phone_number")),
        })

    if "messages" in value:
        redacted_value["messages"] = [
            _compact({
                "id": msg.get("id"),
                "type": msg.get("type"),
                "timestamp": msg.get("timestamp"),
                "from": _redacted_if_present(msg.get("from")),
            })
            for msg in map(_as_dict, _as_list(value.get("messages")))
        ]

    if "statuses" in value:
        redacted_value["statuses"] = [
            _compact({
                "id": status.get("id"),
                "status": status.get("status"),
                "timestamp": status.get("timestamp"),
            })
            for status in map(_as_dict, _as_list(value.get("statuses")))
        ]

    if value.get("message_template_id"):
        redacted_value["message_template_id"] = value["message_template_id"]
    if value.get("message_template_name"):
        redacted_value["message_template_name"] = REDACTED
    if value.get("message_template_language"):
        redacted_value["message_template_language"] = value["message_template_language"]
    if value.get("event"):
        redacted_value["event"] = value["event"]

    return {"field": change.get("field"), "value": redacted_value}


def redact_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
    """Rebuild one entry from its id, time and redacted changes."""
    entry = _as_dict(entry)
    redacted = _compact({"id": entry.get("id"), "time": entry.get("time")})
    if "changes" in entry:
        redacted["changes"] = [redact_change(c) for c in _as_list(entry.get("changes"))]
    return redacted


def redact_payload(body: Any) -> Dict[str, Any]:
    """
    Build a log-safe copy of a webhook payload.

    The copy is assembled from an allow-list; fields not listed never reach
    the result, including message bodies, media, contacts and recipient ids.
    """
    body = _as_dict(body)
    return {
        "object": body.get("object"),
        "entry": [redact_entry(e) for e in _as_list(body.get("entry"))],
    }


def extract_account_ids(entry: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """
    Find the phone number id and WABA id an entry belongs to.

    Metadata of the first change wins. Entry ids shaped ``WABA-PHONE`` carry
    both; a plain entry id is the WABA id.
    """
    entry = _as_dict(entry)
    changes = _as_list(entry.get("changes"))
    first_value = _as_dict(_as_dict(changes[0]).get("value")) if changes else {}
    metadata = _as_dict(first_value.get("metadata"))

    phone_number_id = metadata.get("phone_number_id")
    waba_id = metadata.get("waba_id")

    entry_id = entry.get("id")
    if entry_id is not None:
        entry_id = str(entry_id)
        if "-" in entry_id:
            waba_part, phone_part = entry_id.split("-", 1)
            waba_id = waba_id or waba_part
            phone_number_id = phone_number_id or phone_part
        else:
            waba_id = waba_id or entry_id

    return phone_number_id, waba_id


class WebhookGuard:
    """Authenticates, redacts and routes WhatsApp webhook deliveries."""

    def __init__(self, db: Session, dispatcher: Optional[TaskDispatcher] = None,
                 resolver: Optional[TenantResolver] = None,
                 app_secret: Optional[str] = None, verify_token: Optional[str] = None):
        """
        Initialize guard.

        Args:
            db: Database session used for tenant attribution
            dispatcher: Event dispatcher (defaults to the Celery-backed one)
            resolver: Tenant resolver
            app_secret: Shared secret for signatures (defaults to FACEBOOK_APP_SECRET)
            verify_token: Handshake token (defaults to WHATSAPP_WEBHOOK_VERIFY_TOKEN)
        """
        security = get_config().security
        self.db = db
        self._dispatcher = dispatcher
        self.resolver = resolver or TenantResolver(db)
        self.app_secret = app_secret if app_secret is not None else security.app_secret
        self.verify_token = verify_token if verify_token is not None else security.webhook_verify_token
        self.metrics = get_metrics()

    @property
    def dispatcher(self) -> TaskDispatcher:
        if self._dispatcher is None:
            self._dispatcher = get_dispatcher()
        return self._dispatcher

    def verify_subscription(self, mode: Optional[str], token: Optional[str],
                            challenge: Optional[str]) -> str:
        """Check the GET handshake and return the challenge to echo."""
        try:
            return verify_subscription(mode, token, challenge, self.verify_token)
        except SignatureError:
            self.metrics.track_webhook("handshake_rejected")
            raise

    def handle_delivery(self, raw_body: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify and process one POST delivery.

        Args:
            raw_body: Request body exactly as received
            signature_header: X-Hub-Signature-256 header value

        Returns:
            Acknowledgement body; always sent with status 200

        Raises:
            SignatureError: if the signature does not verify; the body is not parsed
        """
        try:
            verify_signature(raw_body, signature_header, self.app_secret)
        except SignatureError:
            self.metrics.track_webhook("rejected")
            raise

        logger.info("Webhook signature verified")

        try:
            summary = self._process(raw_body)
        except Exception as e:
            logger.error(f"Error processing verified webhook: {e}", exc_info=True)
            self.metrics.track_webhook("error")
            return {"type": "3", "message": "Error processing webhook", "data": None}

        self.metrics.track_webhook("accepted")
        return {"type": "1", "message": "Webhook received", "data": summary}

    def _process(self, raw_body: bytes) -> Dict[str, int]:
        body = json.loads(raw_body)

        redacted = redact_payload(body)
        logger.info(
            f"Received webhook object={redacted['object']} entries={len(redacted['entry'])} "
            f"payload={json.dumps(redacted)}"
        )

        summary = {"queued": 0, "skipped": 0}

        if redacted["object"] != WHATSAPP_OBJECT:
            logger.warning(f"Ignoring webhook for unknown object type: {redacted['object']}")
            return summary

        for entry in _as_list(body.get("entry")):
            if self._dispatch_entry(entry):
                summary["queued"] += 1
            else:
                summary["skipped"] += 1

        return summary

    def attribute_entry(self, entry: Dict[str, Any]) -> Optional[Business]:
        """Resolve the tenant an entry belongs to, or None."""
        phone_number_id, waba_id = extract_account_ids(entry)
        return self.resolver.find_by_account(phone_number_id=phone_number_id, waba_id=waba_id)

    def _dispatch_entry(self, entry: Dict[str, Any]) -> bool:
        entry_id = _as_dict(entry).get("id")
        try:
            business = self.attribute_entry(entry)
            if business is None:
                logger.warning(f"Could not identify business for webhook entry {entry_id}")
                return False

            self.dispatcher.send(WEBHOOK_ENTRY_EVENT, {
                "business_id": business.business_id,
                "entry": entry,
                "sub_domain": business.subdomain,
            })
            logger.info(f"Webhook entry {entry_id} queued for {business.subdomain}")
            return True

        except Exception as e:
            logger.error(f"Error queueing webhook entry {entry_id}: {e}", exc_info=True)
            return False
