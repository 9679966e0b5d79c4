"""
WhatsApp webhooks: Meta verification, inbound messages and status callbacks
"""
import json
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from salescoach.api.deps import get_provider, get_tenant
from salescoach.config import get_settings
from salescoach.connectors.whatsapp import BaseMessagingProvider, MetaWhatsAppConnector
from salescoach.models.base import get_db
from salescoach.services.chat_service import ChatService
from salescoach.services.delivery_service import apply_status_callback
from salescoach.utils.logger import log

settings = get_settings()

router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.get("/whatsapp", response_class=PlainTextResponse)
async def verify_webhook(
    mode: str = Query(None, alias="hub.mode"),
    verify_token: str = Query(None, alias="hub.verify_token"),
    challenge: str = Query("", alias="hub.challenge"),
):
    """Meta subscription handshake"""
    if mode == "subscribe" and settings.meta_verify_token and verify_token == settings.meta_verify_token:
        log.info("Webhook verified successfully")
        return challenge
    raise HTTPException(status_code=403, detail="Webhook verification failed")


@router.post("/whatsapp/{tenant_id}")
async def receive_webhook(
    tenant_id: str,
    request: Request,
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
    provider: BaseMessagingProvider = Depends(get_provider),
):
    """Inbound texts get an answer; status callbacks correct the delivery log"""
    raw = await request.body()

    if isinstance(provider, MetaWhatsAppConnector):
        signature = request.headers.get("X-Hub-Signature-256", "")
        try:
            payload = json.loads(raw or b"{}")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        signed = raw
    else:
        signature = request.headers.get("X-Twilio-Signature", "")
        payload = dict(parse_qsl(raw.decode("utf-8", errors="replace"), keep_blank_values=True))
        signed = payload

    if settings.webhook_validate_signature and not provider.validate_webhook(signature, signed, url=str(request.url)):
        log.warning(f"Webhook signature rejected | tenant={tenant_id} | provider={provider.provider_name}")
        raise HTTPException(status_code=403, detail="Invalid webhook signature")

    chat = ChatService(db, provider)
    replies, statuses = 0, 0
    for event in provider.parse_webhook(payload):
        if event.kind == "message":
            await chat.handle_inbound(tenant_id, event.from_address, event.body, event.external_id)
            replies += 1
        elif event.kind == "status":
            statuses += apply_status_callback(
                db, event.external_id, event.status, event.error_message, tenant_id=tenant_id
            )

    return {"success": True, "messages": replies, "status_updates": statuses}
