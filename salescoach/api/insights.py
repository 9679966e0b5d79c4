"""
Insights and data import endpoints
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel

from salescoach.api.deps import get_tenant
from salescoach.models.base import get_db
from salescoach.services.import_service import DataImportService
from salescoach.services.insights_service import InsightsService
from salescoach.services.training_service import get_latest_snapshot, snapshot_to_dict
from salescoach.utils.cache import get_cached, set_cached, tenant_key, _MISS
from salescoach.utils.logger import log

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["insights"])


class ImportRequest(BaseModel):
    sellers: List[dict] = []
    sales: List[dict] = []
    goals: List[dict] = []


@router.get("/insights")
async def get_insights(
    tenant_id: str,
    store_id: Optional[str] = Query(None),
    seller_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    """Latest trained snapshot for the tenant, a store or a seller"""
    key = tenant_key(tenant_id, "snapshot", store_id, seller_id)
    cached = get_cached(key)
    if cached is not _MISS:
        return cached

    snapshot = get_latest_snapshot(db, tenant_id, store_id=store_id, seller_id=seller_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No trained insights yet, run training first")

    result = {"success": True, "data": snapshot_to_dict(snapshot)}
    set_cached(key, result, 300)
    return result


@router.get("/insights/live")
async def get_live_insights(
    tenant_id: str,
    store_id: Optional[str] = Query(None),
    seller_id: Optional[str] = Query(None),
    as_of: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    """Compute insights from the raw data, bypassing the snapshot cache"""
    result = InsightsService(db).calculate_insights(
        tenant_id, store_id=store_id, seller_id=seller_id, as_of=as_of
    )
    return {"success": True, "data": result.to_dict()}


@router.post("/data/import")
async def import_data(
    tenant_id: str,
    request: ImportRequest,
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    """Import sellers, sales and goals records"""
    try:
        result = DataImportService(db).import_records(
            tenant_id, sellers=request.sellers, sales=request.sales, goals=request.goals
        )
    except Exception as e:
        db.rollback()
        log.error(f"Import error | tenant={tenant_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return result.to_dict()
