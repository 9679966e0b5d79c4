"""
Review Service - human-in-the-loop approval of outbound messages

    pending ──approve──> approved ──deliver──> sent
       │                    └──────deliver──> failed
       ├──reject───> rejected
       └──deliver──> failed

Transitions from a wrong source state (or for an unknown id) return False
and change nothing. A failed item is never reopened; retry_failed queues a
fresh pending copy instead.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from salescoach.config import get_settings
from salescoach.models.messaging import (
    Moment,
    ReviewStatus,
    ReviewItem,
    ALLOWED_TRANSITIONS,
)
from salescoach.models.tenant import Tenant
from salescoach.services.delivery_service import DeliveryOrchestrator
from salescoach.utils.logger import log

settings = get_settings()


def send_on_approve_enabled(tenant: Optional[Tenant]) -> bool:
    if tenant is not None and tenant.send_on_approve is not None:
        return tenant.send_on_approve
    return settings.hitl_send_on_approve


class ReviewService:
    def __init__(self, db: Session, delivery: Optional[DeliveryOrchestrator] = None):
        self.db = db
        self.delivery = delivery

    # ─────────────────────────────────────────────
    # QUEUE
    # ─────────────────────────────────────────────

    def create_review(self, tenant_id: str, draft) -> ReviewItem:
        """Queue a draft as pending. Persistence errors roll back and propagate."""
        item = ReviewItem(
            tenant_id=tenant_id,
            moment=Moment.parse(draft.moment).value,
            recipient_address=draft.recipient_address,
            recipient_name=draft.recipient_name,
            draft_text=draft.body_text,
            status=ReviewStatus.PENDING.value,
        )
        try:
            self.db.add(item)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        log.debug(f"Review queued | id={item.id} | to={item.recipient_address} | moment={item.moment}")
        return item

    def get_review(self, review_id: str) -> Optional[ReviewItem]:
        return self.db.query(ReviewItem).filter(ReviewItem.id == review_id).first()

    def list_reviews(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        moment: Optional[str] = None,
        limit: int = 100,
    ) -> List[ReviewItem]:
        query = self.db.query(ReviewItem).filter(ReviewItem.tenant_id == tenant_id)
        if status:
            query = query.filter(ReviewItem.status == ReviewStatus(status.lower()).value)
        if moment:
            query = query.filter(ReviewItem.moment == Moment.parse(moment).value)
        return query.order_by(ReviewItem.created_at.desc()).limit(limit).all()

    def get_pending_reviews(self, tenant_id: str) -> List[ReviewItem]:
        return (
            self.db.query(ReviewItem)
            .filter(ReviewItem.tenant_id == tenant_id, ReviewItem.status == ReviewStatus.PENDING.value)
            .order_by(ReviewItem.created_at)
            .all()
        )

    # ─────────────────────────────────────────────
    # TRANSITIONS
    # ─────────────────────────────────────────────

    async def approve_and_send(self, review_id: str, reviewer: str) -> bool:
        """
        Approve a pending item. When the tenant sends on approve, the item is
        delivered right away and the result reflects the delivery.
        """
        item = self._pending(review_id, ReviewStatus.APPROVED)
        if item is None:
            return False
        return await self._approve(item, reviewer)

    async def edit_and_approve(self, review_id: str, new_text: str, reviewer: str) -> bool:
        """Store the reviewer's text and approve; the edited text is what gets sent."""
        if not new_text or not new_text.strip():
            log.warning(f"Empty edit rejected for review {review_id}")
            return False
        item = self._pending(review_id, ReviewStatus.APPROVED)
        if item is None:
            return False
        item.edited_text = new_text.strip()
        return await self._approve(item, reviewer)

    def reject(self, review_id: str, reviewer: str, reason: Optional[str] = None) -> bool:
        item = self._pending(review_id, ReviewStatus.REJECTED)
        if item is None:
            return False
        item.status = ReviewStatus.REJECTED.value
        item.reviewed_at = datetime.utcnow()
        item.reviewed_by = reviewer
        item.error_message = reason
        self.db.commit()
        log.info(f"Review rejected | id={review_id} | by={reviewer}")
        return True

    def retry_failed(self, review_id: str, reviewer: str) -> Optional[ReviewItem]:
        """Queue a new pending copy of a failed item; the failed one stays as is."""
        item = self.get_review(review_id)
        if item is None or item.status != ReviewStatus.FAILED.value:
            log.warning(f"Retry refused for review {review_id}: not a failed item")
            return None

        copy = ReviewItem(
            tenant_id=item.tenant_id,
            moment=item.moment,
            recipient_address=item.recipient_address,
            recipient_name=item.recipient_name,
            draft_text=item.effective_text,
            status=ReviewStatus.PENDING.value,
        )
        try:
            self.db.add(copy)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        log.info(f"Failed review {review_id} requeued as {copy.id} by {reviewer}")
        return copy

    def _pending(self, review_id: str, target: ReviewStatus) -> Optional[ReviewItem]:
        item = self.get_review(review_id)
        if item is None:
            log.warning(f"Review not found: {review_id}")
            return None
        current = ReviewStatus(item.status)
        if current != ReviewStatus.PENDING or target not in ALLOWED_TRANSITIONS[current]:
            log.warning(f"Invalid transition {item.status} -> {target.value} for review {review_id}")
            return None
        return item

    async def _approve(self, item: ReviewItem, reviewer: str) -> bool:
        item.status = ReviewStatus.APPROVED.value
        item.reviewed_at = datetime.utcnow()
        item.reviewed_by = reviewer
        self.db.commit()
        log.info(f"Review approved | id={item.id} | by={reviewer}")

        tenant = self.db.query(Tenant).filter(Tenant.id == item.tenant_id).first()
        if not send_on_approve_enabled(tenant) or self.delivery is None:
            return True
        return await self.delivery.deliver_review(item)


def review_to_dict(item: ReviewItem) -> dict:
    return {
        "id": item.id,
        "tenant_id": item.tenant_id,
        "moment": item.moment,
        "recipient_address": item.recipient_address,
        "recipient_name": item.recipient_name,
        "draft_text": item.draft_text,
        "edited_text": item.edited_text,
        "status": item.status,
        "reviewed_at": item.reviewed_at.isoformat() if item.reviewed_at else None,
        "reviewed_by": item.reviewed_by,
        "sent_at": item.sent_at.isoformat() if item.sent_at else None,
        "external_id": item.external_id,
        "error_message": item.error_message,
        "created_at": item.created_at.isoformat() if item.created_at else None,
    }
