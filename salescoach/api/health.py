"""
Health check and status endpoints
"""
from fastapi import APIRouter, HTTPException
from datetime import datetime
from salescoach.config import get_settings
from salescoach.scheduler import get_scheduled_jobs, pause_job, resume_job, scheduler
from salescoach import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "features": {
            "review_required": settings.hitl_review_required,
            "send_on_approve": settings.hitl_send_on_approve,
            "llm_messages": settings.enable_llm_messages,
            "scheduler": settings.enable_scheduler,
            "whatsapp_provider": settings.whatsapp_provider
        },
        "scheduler_running": scheduler.running,
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/scheduler/jobs")
async def list_jobs():
    """List scheduled jobs with their next run time"""
    jobs = get_scheduled_jobs()
    return {"jobs": jobs, "count": len(jobs), "running": scheduler.running}


@router.post("/scheduler/jobs/{job_id}/pause")
async def pause_scheduled_job(job_id: str):
    """Pause a job until it is resumed"""
    if not pause_job(job_id):
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return {"success": True, "job_id": job_id, "paused": True}


@router.post("/scheduler/jobs/{job_id}/resume")
async def resume_scheduled_job(job_id: str):
    """Resume a paused job from its next fire time"""
    if not resume_job(job_id):
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return {"success": True, "job_id": job_id, "paused": False}
