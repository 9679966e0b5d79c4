"""
Manual trigger of scheduled message runs
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from salescoach.api.deps import get_tenant
from salescoach.scheduler import run_job_now

router = APIRouter(prefix="/tenants/{tenant_id}/cron", tags=["cron"])


@router.post("/run-now")
async def run_now(
    tenant_id: str,
    moment: str = Query(..., description="morning, midday or evening"),
    tenant=Depends(get_tenant),
):
    """Run the (tenant, moment) job now, the same way the scheduler would"""
    report = await run_job_now(moment, tenant_id)
    if not report.get("success") and report.get("error") and "generation" not in report:
        raise HTTPException(status_code=400, detail=report["error"])
    return report
