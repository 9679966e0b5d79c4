"""
Message schedule management
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel

from salescoach.api.deps import get_tenant
from salescoach.models.base import get_db
from salescoach.scheduler import reload_schedules, scheduler
from salescoach.services.schedule_service import ScheduleService, schedule_to_dict
from salescoach.utils.errors import ConfigurationError

router = APIRouter(prefix="/tenants/{tenant_id}/schedules", tags=["schedules"])


class ScheduleUpdate(BaseModel):
    cron_expression: Optional[str] = None
    enabled: Optional[bool] = None


@router.get("")
async def list_schedules(tenant_id: str, db: Session = Depends(get_db), tenant=Depends(get_tenant)):
    schedules = ScheduleService(db).list_schedules(tenant_id)
    return {"schedules": [schedule_to_dict(s) for s in schedules], "count": len(schedules)}


@router.put("/{moment}")
async def update_schedule(
    tenant_id: str,
    moment: str,
    request: ScheduleUpdate,
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    """Create or change the cron of one moment; running jobs are reloaded"""
    try:
        schedule = ScheduleService(db).upsert_schedule(
            tenant_id, moment, cron_expression=request.cron_expression, enabled=request.enabled
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if scheduler.running:
        reload_schedules()
    return schedule_to_dict(schedule)
