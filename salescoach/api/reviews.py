"""
Review queue (HITL) endpoints

Invalid transitions answer 409 and leave the item untouched.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel

from salescoach.api.deps import get_optional_provider, get_tenant
from salescoach.models.base import get_db
from salescoach.models.messaging import ReviewStatus
from salescoach.models.tenant import Tenant
from salescoach.services.delivery_service import DeliveryOrchestrator
from salescoach.services.review_service import ReviewService, review_to_dict, send_on_approve_enabled
from salescoach.utils.errors import ConfigurationError

router = APIRouter(prefix="/tenants/{tenant_id}/reviews", tags=["reviews"])


class ReviewerRequest(BaseModel):
    reviewer: str = "operator"


class EditRequest(BaseModel):
    text: str
    reviewer: str = "operator"


class RejectRequest(BaseModel):
    reviewer: str = "operator"
    reason: Optional[str] = None


def _service(db: Session, tenant: Tenant, provider) -> ReviewService:
    if send_on_approve_enabled(tenant):
        if provider is None:
            raise HTTPException(status_code=400, detail="Messaging provider not configured")
        return ReviewService(db, DeliveryOrchestrator(db, provider))
    return ReviewService(db)


def _owned(service: ReviewService, tenant_id: str, review_id: str):
    item = service.get_review(review_id)
    if item is None or item.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail=f"Review not found: {review_id}")
    return item


def _invalid(item) -> HTTPException:
    return HTTPException(status_code=409, detail=f"Invalid transition from status '{item.status}'")


@router.get("")
async def list_reviews(
    tenant_id: str,
    status: Optional[str] = Query(None),
    moment: Optional[str] = Query(None),
    limit: int = Query(100, le=1000),
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    """Review items, newest first"""
    if status and status.lower() not in {s.value for s in ReviewStatus}:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")
    try:
        items = ReviewService(db).list_reviews(tenant_id, status=status, moment=moment, limit=limit)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"reviews": [review_to_dict(i) for i in items], "count": len(items)}


@router.get("/{review_id}")
async def get_review(tenant_id: str, review_id: str, db: Session = Depends(get_db), tenant=Depends(get_tenant)):
    return review_to_dict(_owned(ReviewService(db), tenant_id, review_id))


@router.post("/{review_id}/approve")
async def approve(
    tenant_id: str,
    review_id: str,
    request: ReviewerRequest,
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
    provider=Depends(get_optional_provider),
):
    service = _service(db, tenant, provider)
    item = _owned(service, tenant_id, review_id)
    if item.status != ReviewStatus.PENDING.value:
        raise _invalid(item)
    success = await service.approve_and_send(review_id, request.reviewer)
    return {"success": success, "review": review_to_dict(service.get_review(review_id))}


@router.post("/{review_id}/edit")
async def edit_and_approve(
    tenant_id: str,
    review_id: str,
    request: EditRequest,
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
    provider=Depends(get_optional_provider),
):
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Edited text cannot be empty")
    service = _service(db, tenant, provider)
    item = _owned(service, tenant_id, review_id)
    if item.status != ReviewStatus.PENDING.value:
        raise _invalid(item)
    success = await service.edit_and_approve(review_id, request.text, request.reviewer)
    return {"success": success, "review": review_to_dict(service.get_review(review_id))}


@router.post("/{review_id}/reject")
async def reject(
    tenant_id: str,
    review_id: str,
    request: RejectRequest,
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    service = ReviewService(db)
    item = _owned(service, tenant_id, review_id)
    if not service.reject(review_id, request.reviewer, request.reason):
        raise _invalid(item)
    return {"success": True, "review": review_to_dict(service.get_review(review_id))}


@router.post("/{review_id}/retry")
async def retry(
    tenant_id: str,
    review_id: str,
    request: ReviewerRequest,
    db: Session = Depends(get_db),
    tenant=Depends(get_tenant),
):
    """Requeue a failed item as a new pending review"""
    service = ReviewService(db)
    item = _owned(service, tenant_id, review_id)
    copy = service.retry_failed(review_id, request.reviewer)
    if copy is None:
        raise _invalid(item)
    return {"success": True, "review": review_to_dict(copy)}
