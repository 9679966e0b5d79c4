"""
Tenant registration
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel

from salescoach.models.base import get_db
from salescoach.models.tenant import Tenant
from salescoach.services.schedule_service import ScheduleService
from salescoach.utils.logger import log

router = APIRouter(prefix="/tenants", tags=["tenants"])


class TenantCreate(BaseModel):
    code: str
    name: str
    timezone: Optional[str] = None
    review_required: Optional[bool] = None
    send_on_approve: Optional[bool] = None


def tenant_to_dict(tenant: Tenant) -> dict:
    return {
        "id": tenant.id,
        "code": tenant.code,
        "name": tenant.name,
        "timezone": tenant.timezone,
        "review_required": tenant.review_required,
        "send_on_approve": tenant.send_on_approve,
        "is_active": tenant.is_active,
    }


@router.get("")
async def list_tenants(db: Session = Depends(get_db)):
    tenants = db.query(Tenant).order_by(Tenant.code).all()
    return {"tenants": [tenant_to_dict(t) for t in tenants], "count": len(tenants)}


@router.post("")
async def create_tenant(request: TenantCreate, db: Session = Depends(get_db)):
    """Register a tenant with the default message schedules"""
    if db.query(Tenant).filter(Tenant.code == request.code).first():
        raise HTTPException(status_code=409, detail=f"Tenant code already exists: {request.code}")

    tenant = Tenant(
        code=request.code,
        name=request.name,
        timezone=request.timezone,
        review_required=request.review_required,
        send_on_approve=request.send_on_approve,
    )
    db.add(tenant)
    db.commit()
    ScheduleService(db).seed_defaults(tenant.id)
    log.info(f"Tenant created | code={tenant.code} | id={tenant.id}")
    return tenant_to_dict(tenant)
