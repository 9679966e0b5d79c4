"""
Outbound message models: review queue, delivery log and schedules
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index, UniqueConstraint
)

from salescoach.models.base import Base, new_id, utcnow
from salescoach.utils.errors import ConfigurationError


class Moment(str, Enum):
    """Time-of-day slot driving template selection"""
    MORNING = "morning"
    MIDDAY = "midday"
    EVENING = "evening"

    @classmethod
    def parse(cls, value) -> "Moment":
        """Case-insensitive parse. Unknown values are a configuration error, never defaulted."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ConfigurationError(f"Invalid moment type: {value!r}. Valid options: {valid}")


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"
    FAILED = "failed"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class DeliveryStatus(str, Enum):
    RECEIVED = "received"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


# Review queue state machine. sent, rejected and failed are terminal.
ALLOWED_TRANSITIONS = {
    ReviewStatus.PENDING: {ReviewStatus.APPROVED, ReviewStatus.REJECTED, ReviewStatus.FAILED},
    ReviewStatus.APPROVED: {ReviewStatus.SENT, ReviewStatus.FAILED},
    ReviewStatus.REJECTED: set(),
    ReviewStatus.SENT: set(),
    ReviewStatus.FAILED: set(),
}


def can_transition(current, target) -> bool:
    try:
        current, target = ReviewStatus(current), ReviewStatus(target)
    except ValueError:
        return False
    return target in ALLOWED_TRANSITIONS[current]


class ReviewItem(Base):
    """A generated draft waiting for (or past) human approval"""
    __tablename__ = "review_items"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    moment = Column(String, nullable=False)

    recipient_address = Column(String, nullable=False)
    recipient_name = Column(String, nullable=False)
    draft_text = Column(Text, nullable=False)
    edited_text = Column(Text, nullable=True)

    status = Column(String, default=ReviewStatus.PENDING.value, nullable=False)
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(String, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    external_id = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_review_items_tenant_status', 'tenant_id', 'status'),
    )

    @property
    def effective_text(self) -> str:
        """Text to deliver: the reviewer's edit when present, else the draft"""
        if self.edited_text and self.edited_text.strip():
            return self.edited_text
        return self.draft_text


class DeliveryLogEntry(Base):
    """Append-only audit trail of every inbound and outbound message"""
    __tablename__ = "delivery_log"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    direction = Column(String, nullable=False)

    from_address = Column(String, nullable=False)
    to_address = Column(String, nullable=False)
    body_text = Column(Text, nullable=False)

    provider_name = Column(String, nullable=False)
    external_id = Column(String, index=True, nullable=True)
    status = Column(String, index=True, nullable=False)
    sent_at = Column(DateTime, default=utcnow, nullable=False)
    error_message = Column(Text, nullable=True)

    # Soft reference, no foreign key: the log outlives pruned review rows
    review_item_id = Column(String(36), nullable=True)

    __table_args__ = (
        Index('ix_delivery_log_tenant_sent', 'tenant_id', 'sent_at'),
    )


class MessageSchedule(Base):
    """Cron expression per (tenant, moment), loaded by the scheduler at startup"""
    __tablename__ = "message_schedules"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    moment = Column(String, nullable=False)
    cron_expression = Column(String, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'moment', name='uq_schedule_tenant_moment'),
    )
