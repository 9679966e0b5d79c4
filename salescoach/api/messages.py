"""
Message generation, delivery and log endpoints
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from salescoach.api.deps import get_optional_provider, get_provider, get_tenant
from salescoach.connectors.whatsapp import BaseMessagingProvider
from salescoach.models.base import get_db
from salescoach.models.messaging import Moment, DeliveryStatus
from salescoach.services.delivery_service import (
    DeliveryOrchestrator,
    get_conversation,
    list_delivery_logs,
    log_entry_to_dict,
)
from salescoach.services.message_generation_service import build_generation_service, review_required
from salescoach.services.sales_data_source import normalize_phone
from salescoach.utils.errors import ConfigurationError
from salescoach.utils.logger import log

router = APIRouter(prefix="/tenants/{tenant_id}/messages", tags=["messages"])


def _moment(value: str) -> Moment:
    try:
        return Moment.parse(value)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/generate")
async def generate_messages(
    tenant_id: str,
    moment: str = Query(..., description="morning, midday or evening"),
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
    provider: Optional[BaseMessagingProvider] = Depends(get_optional_provider),
):
    """Generate drafts for the moment; auto-approved drafts are delivered immediately"""
    moment = _moment(moment)
    if provider is None and not review_required(tenant):
        raise HTTPException(status_code=400, detail="Messaging provider not configured")
    try:
        generation = await asyncio.to_thread(
            build_generation_service(db).generate_scheduled_messages, moment, tenant_id
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    response = generation.to_dict()
    if generation.auto_approved:
        delivery = await DeliveryOrchestrator(db, provider).send_approved_messages(
            tenant_id, moment, generation.drafts
        )
        response["delivery"] = delivery.to_dict()
    return response


@router.post("/send-approved")
async def send_approved(
    tenant_id: str,
    moment: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
    provider: BaseMessagingProvider = Depends(get_provider),
):
    """Deliver approved review items that have not been sent yet"""
    selected = _moment(moment) if moment else None
    result = await DeliveryOrchestrator(db, provider).send_approved_messages(tenant_id, selected)
    log.info(f"Send-approved via API | tenant={tenant_id} | sent={result.messages_sent} | failed={result.messages_failed}")
    return result.to_dict()


@router.get("/logs")
async def get_logs(
    tenant_id: str,
    status: Optional[str] = Query(None),
    direction: Optional[str] = Query(None),
    limit: int = Query(100, le=1000),
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    """Delivery log, newest first"""
    entries = list_delivery_logs(db, tenant_id, status=status, direction=direction, limit=limit)
    return {"logs": [log_entry_to_dict(e) for e in entries], "count": len(entries)}


@router.get("/failed")
async def get_failed(
    tenant_id: str,
    limit: int = Query(100, le=1000),
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    """Failed outbound messages, newest first"""
    entries = list_delivery_logs(db, tenant_id, status=DeliveryStatus.FAILED.value, limit=limit)
    return {"logs": [log_entry_to_dict(e) for e in entries], "count": len(entries)}


@router.get("/conversation/{phone}")
async def conversation(
    tenant_id: str,
    phone: str,
    limit: int = Query(50, le=500),
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    """Messages exchanged with one phone number, oldest first"""
    phone = normalize_phone(phone)
    entries = get_conversation(db, tenant_id, phone, limit=limit)
    return {"phone": phone, "messages": [log_entry_to_dict(e) for e in entries], "count": len(entries)}
