"""
Delivery Orchestrator

Sends approved review items (and auto-approved drafts) through the messaging
provider. Every message is its own unit: it gets a delivery log row, its
review item is moved to sent or failed, and the session is committed before
the next message is touched. One failure never stops the rest.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from salescoach.config import get_settings
from salescoach.connectors.whatsapp import BaseMessagingProvider, SendResult
from salescoach.models.messaging import (
    Moment,
    ReviewStatus,
    MessageDirection,
    DeliveryStatus,
    ReviewItem,
    DeliveryLogEntry,
    can_transition,
)
from salescoach.utils.logger import log

settings = get_settings()


@dataclass
class DeliveryResult:
    tenant_id: str
    moment: Optional[str] = None
    messages_sent: int = 0
    messages_failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.messages_failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "tenant_id": self.tenant_id,
            "moment": self.moment,
            "messages_sent": self.messages_sent,
            "messages_failed": self.messages_failed,
            "errors": list(self.errors),
        }


class DeliveryOrchestrator:
    def __init__(self, db: Session, provider: BaseMessagingProvider, delay_ms: Optional[int] = None):
        self.db = db
        self.provider = provider
        self.delay_ms = settings.delivery_delay_ms if delay_ms is None else delay_ms

    def get_approved_items(self, tenant_id: str, moment: Optional[Moment] = None) -> List[ReviewItem]:
        query = self.db.query(ReviewItem).filter(
            ReviewItem.tenant_id == tenant_id,
            ReviewItem.status == ReviewStatus.APPROVED.value,
            ReviewItem.sent_at.is_(None),
        )
        if moment is not None:
            query = query.filter(ReviewItem.moment == Moment.parse(moment).value)
        return query.order_by(ReviewItem.created_at).all()

    async def send_approved_messages(
        self,
        tenant_id: str,
        moment: Optional[Moment] = None,
        drafts: Iterable = (),
    ) -> DeliveryResult:
        """
        Deliver every approved, unsent item of the tenant (optionally one
        moment), oldest first, then each auto-approved draft.

        Counts of completed units survive a cancellation: each unit is
        committed before the next one starts.
        """
        result = DeliveryResult(tenant_id=tenant_id, moment=Moment.parse(moment).value if moment else None)
        items = self.get_approved_items(tenant_id, moment)
        drafts = list(drafts)
        log.info(
            f"Sending approved messages | tenant={tenant_id} | moment={result.moment} | "
            f"queued={len(items)} | auto_approved={len(drafts)}"
        )

        first = True
        for item in items:
            if not first:
                await self._pause()
            first = False
            ok = await self.deliver_review(item)
            self._count(result, ok, item.recipient_address, item.error_message)

        for draft in drafts:
            if not first:
                await self._pause()
            first = False
            ok, error = await self.deliver_draft(tenant_id, draft)
            self._count(result, ok, draft.recipient_address, error)

        log.info(
            f"Delivery finished | tenant={tenant_id} | sent={result.messages_sent} | "
            f"failed={result.messages_failed}"
        )
        return result

    async def deliver_review(self, item: ReviewItem) -> bool:
        """Send one review item and move it to sent or failed."""
        outcome = await self._send(item.tenant_id, item.recipient_address, item.effective_text)
        now = datetime.utcnow()

        try:
            self._append_log(item.tenant_id, item.recipient_address, item.effective_text, outcome, review_item_id=item.id)
            if outcome.success:
                if can_transition(item.status, ReviewStatus.SENT):
                    item.status = ReviewStatus.SENT.value
                item.sent_at = now
                item.external_id = outcome.external_id
                item.error_message = None
            else:
                if can_transition(item.status, ReviewStatus.FAILED):
                    item.status = ReviewStatus.FAILED.value
                item.error_message = outcome.error_message
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            log.error(f"Failed to record delivery of review {item.id}: {str(e)}")
            return False

        if outcome.success:
            log.info(f"Message sent | review={item.id} | to={item.recipient_address} | external_id={outcome.external_id}")
        else:
            log.warning(f"Message failed | review={item.id} | to={item.recipient_address} | {outcome.error_message}")
        return outcome.success

    async def deliver_draft(self, tenant_id: str, draft) -> tuple:
        """Send an auto-approved draft. Only the delivery log records it."""
        outcome = await self._send(tenant_id, draft.recipient_address, draft.body_text)
        try:
            self._append_log(tenant_id, draft.recipient_address, draft.body_text, outcome)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            log.error(f"Failed to record delivery to {draft.recipient_address}: {str(e)}")
            return False, str(e)

        if not outcome.success:
            log.warning(f"Message failed | to={draft.recipient_address} | {outcome.error_message}")
        return outcome.success, outcome.error_message

    async def _send(self, tenant_id: str, to_address: str, body: str) -> SendResult:
        try:
            return await self.provider.send(to_address, body, tenant_id)
        except Exception as e:
            log.error(f"Provider {self.provider.provider_name} raised while sending to {to_address}: {str(e)}")
            return SendResult(success=False, error_message=str(e))

    def _append_log(
        self,
        tenant_id: str,
        to_address: str,
        body: str,
        outcome: SendResult,
        review_item_id: Optional[str] = None,
    ) -> DeliveryLogEntry:
        entry = DeliveryLogEntry(
            tenant_id=tenant_id,
            direction=MessageDirection.OUTBOUND.value,
            from_address=self.provider.sender_address,
            to_address=to_address,
            body_text=body,
            provider_name=self.provider.provider_name,
            external_id=outcome.external_id,
            status=DeliveryStatus.SENT.value if outcome.success else DeliveryStatus.FAILED.value,
            sent_at=datetime.utcnow(),
            error_message=outcome.error_message,
            review_item_id=review_item_id,
        )
        self.db.add(entry)
        return entry

    def _count(self, result: DeliveryResult, ok: bool, to_address: str, error: Optional[str]):
        if ok:
            result.messages_sent += 1
        else:
            result.messages_failed += 1
            result.errors.append(f"{to_address}: {error or 'unknown error'}")

    async def _pause(self):
        if self.delay_ms > 0:
            await asyncio.sleep(self.delay_ms / 1000)


def apply_status_callback(
    db: Session,
    external_id: str,
    status: str,
    error_message: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> int:
    """
    Correct the status of logged outbound messages from a provider callback.

    Only the delivery log changes; review items stay in their terminal state.
    Returns the number of log rows updated.
    """
    if not external_id or status not in {s.value for s in DeliveryStatus}:
        return 0
    query = db.query(DeliveryLogEntry).filter(
        DeliveryLogEntry.external_id == external_id,
        DeliveryLogEntry.direction == MessageDirection.OUTBOUND.value,
    )
    if tenant_id:
        query = query.filter(DeliveryLogEntry.tenant_id == tenant_id)
    entries = query.all()
    for entry in entries:
        entry.status = status
        if error_message:
            entry.error_message = error_message
    db.commit()
    if entries:
        log.debug(f"Delivery status {status} applied to {len(entries)} log row(s) | external_id={external_id}")
    return len(entries)


def list_delivery_logs(
    db: Session,
    tenant_id: str,
    status: Optional[str] = None,
    direction: Optional[str] = None,
    limit: int = 100,
) -> List[DeliveryLogEntry]:
    query = db.query(DeliveryLogEntry).filter(DeliveryLogEntry.tenant_id == tenant_id)
    if status:
        query = query.filter(DeliveryLogEntry.status == status)
    if direction:
        query = query.filter(DeliveryLogEntry.direction == direction)
    return query.order_by(DeliveryLogEntry.sent_at.desc()).limit(limit).all()


def get_conversation(db: Session, tenant_id: str, phone: str, limit: int = 50) -> List[DeliveryLogEntry]:
    """Messages to and from one phone, oldest first."""
    rows = (
        db.query(DeliveryLogEntry)
        .filter(
            DeliveryLogEntry.tenant_id == tenant_id,
            (DeliveryLogEntry.from_address == phone) | (DeliveryLogEntry.to_address == phone),
        )
        .order_by(DeliveryLogEntry.sent_at.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


def log_entry_to_dict(entry: DeliveryLogEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "direction": entry.direction,
        "from_address": entry.from_address,
        "to_address": entry.to_address,
        "body_text": entry.body_text,
        "provider_name": entry.provider_name,
        "external_id": entry.external_id,
        "status": entry.status,
        "sent_at": entry.sent_at.isoformat() if entry.sent_at else None,
        "error_message": entry.error_message,
        "review_item_id": entry.review_item_id,
    }
