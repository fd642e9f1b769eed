"""
WhatsApp Business webhook endpoints.

GET answers the subscription handshake; POST receives signed deliveries.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from menu_sync.database.connection import get_db
from menu_sync.services.webhook_guard import WebhookGuard
from menu_sync.utils.exceptions import SignatureError
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

FORBIDDEN_BODY = {"error": "Forbidden", "message": "Request verification failed"}


def get_webhook_guard(db: Session = Depends(get_db)) -> WebhookGuard:
    return WebhookGuard(db)


@router.get("/webhook")
async def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    guard: WebhookGuard = Depends(get_webhook_guard),
):
    """Echo the challenge when the handshake token matches."""
    try:
        echoed = guard.verify_subscription(mode, token, challenge)
    except SignatureError as e:
        logger.warning(f"Webhook handshake rejected: {e.reason}")
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=FORBIDDEN_BODY)

    logger.info("Webhook subscription verified")
    return PlainTextResponse(echoed)


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(None),
    guard: WebhookGuard = Depends(get_webhook_guard),
):
    """
    Receive a webhook delivery.

    The signature is checked against the body bytes exactly as received,
    before anything is parsed. Verified deliveries are always acknowledged
    with 200.
    """
    raw_body = await request.body()

    try:
        ack = guard.handle_delivery(raw_body, x_hub_signature_256)
    except SignatureError as e:
        logger.warning(f"Webhook signature rejected: {e.reason}")
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=FORBIDDEN_BODY)

    return JSONResponse(status_code=status.HTTP_200_OK, content=ack)
