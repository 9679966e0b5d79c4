"""
Training endpoints

Insight training status, manual (re)training and staleness marking.
"""
import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel

from salescoach.api.deps import get_tenant
from salescoach.models.base import get_db
from salescoach.services.training_service import (
    ModelTrainingService,
    TrainingCheck,
    TrainingStatusTracker,
)
from salescoach.utils.logger import log

router = APIRouter(prefix="/tenants/{tenant_id}/training", tags=["training"])

CHECK_MESSAGES = {
    TrainingCheck.NO_DATA: "No data imported yet",
    TrainingCheck.NEEDED: "Data changed or insights are stale, training recommended",
    TrainingCheck.UP_TO_DATE: "Insights are up to date",
}


class TrainRequest(BaseModel):
    force: bool = False


@router.post("/train")
async def train(tenant_id: str, request: TrainRequest, db: Session = Depends(get_db), tenant=Depends(get_tenant)):
    """Train insights; skipped when the imported data hasn't changed unless forced"""
    log.info(f"Training requested | tenant={tenant_id} | force={request.force}")
    result = await asyncio.to_thread(ModelTrainingService(db).train, tenant_id, request.force)
    return result.to_dict()


@router.post("/retrain")
async def retrain(
    tenant_id: str,
    force: bool = Query(True, description="Retrain even if data hasn't changed"),
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    """Force a retrain (default force=true)"""
    result = await asyncio.to_thread(ModelTrainingService(db).train, tenant_id, force)
    return result.to_dict()


@router.get("/status")
async def training_status(tenant_id: str, db: Session = Depends(get_db), tenant=Depends(get_tenant)):
    """Dataset and training hashes for the tenant"""
    status = TrainingStatusTracker(db).get_training_status(tenant_id)
    if status is None:
        raise HTTPException(status_code=404, detail="No data imported yet")
    return status.to_dict()


@router.get("/check")
async def training_check(tenant_id: str, db: Session = Depends(get_db), tenant=Depends(get_tenant)):
    """Whether training is needed"""
    check = TrainingStatusTracker(db).is_training_needed(tenant_id)
    return {
        "training_needed": check == TrainingCheck.NEEDED,
        "state": check.value,
        "message": CHECK_MESSAGES[check],
    }


@router.post("/stale")
async def mark_stale(tenant_id: str, db: Session = Depends(get_db), tenant=Depends(get_tenant)):
    """Force the next training run by marking the tenant's insights stale"""
    if not TrainingStatusTracker(db).mark_stale(tenant_id):
        raise HTTPException(status_code=404, detail="No data imported yet")
    return {"success": True, "training_needed": True}
