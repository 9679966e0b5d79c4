"""
Training status and insight snapshot models

TrainingStatus tracks the dataset hash per tenant so the insights cache can
be invalidated when new data is imported. InsightSnapshot rows are the cache:
written only by the training orchestrator, superseded by newer rows on the
next run.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Date, DateTime, JSON, ForeignKey, Index
)

from salescoach.models.base import Base, new_id, utcnow


class TrainingStatus(Base):
    """One row per tenant: imported dataset hash vs last trained hash"""
    __tablename__ = "training_status"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), unique=True, index=True, nullable=False)

    current_data_hash = Column(String(64), nullable=False)
    imported_at = Column(DateTime, default=utcnow, nullable=False)

    last_trained_hash = Column(String(64), nullable=True)
    last_trained_at = Column(DateTime, nullable=True)
    is_stale = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def training_needed(self) -> bool:
        return self.current_data_hash != self.last_trained_hash or bool(self.is_stale)


class InsightSnapshot(Base):
    """Cached insights for a tenant, a store or a seller as of a date"""
    __tablename__ = "insight_snapshots"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    store_id = Column(String(36), nullable=True)
    seller_id = Column(String(36), nullable=True)
    as_of_date = Column(Date, nullable=False)

    total_sales = Column(Numeric(14, 2), nullable=False)
    transaction_count = Column(Integer, default=0, nullable=False)
    avg_ticket = Column(Numeric(14, 2), nullable=False)
    goal_target = Column(Numeric(14, 2), nullable=False)
    goal_gap = Column(Numeric(14, 2), nullable=False)
    goal_progress = Column(Numeric(8, 2), nullable=False)
    projected_monthly = Column(Numeric(14, 2), nullable=False)

    rankings = Column(JSON, nullable=True)
    focus_areas = Column(JSON, nullable=True)
    suggestions = Column(JSON, nullable=True)

    data_hash = Column(String(64), nullable=True)
    generated_at = Column(DateTime, default=utcnow, index=True, nullable=False)

    __table_args__ = (
        Index('ix_insight_snapshot_key', 'tenant_id', 'store_id', 'seller_id', 'as_of_date'),
    )
