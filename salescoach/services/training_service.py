"""
Model Training Service

Training recalculates the insight snapshots for every active seller, each
store and the tenant as a whole, then marks the imported dataset as trained.
The staleness predicate lives on TrainingStatus:

    training_needed = current_data_hash != last_trained_hash OR is_stale
"""
import calendar
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from salescoach.config import get_settings
from salescoach.models.training import TrainingStatus, InsightSnapshot
from salescoach.services.insights_service import InsightsService, InsightsResult
from salescoach.services.sales_data_source import SalesDataSource
from salescoach.utils.cache import clear_for_tenant
from salescoach.utils.logger import log

settings = get_settings()

# Process-local guard: one training run per tenant at a time
_locks_guard = threading.Lock()
_tenant_locks: Dict[str, threading.Lock] = {}


def _tenant_lock(tenant_id: str) -> threading.Lock:
    with _locks_guard:
        return _tenant_locks.setdefault(tenant_id, threading.Lock())


def months_before(day: date, months: int) -> date:
    """Same day `months` months earlier, clamped to the month's length."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


class TrainingCheck(str, Enum):
    NO_DATA = "no_data"
    NEEDED = "needed"
    UP_TO_DATE = "up_to_date"


@dataclass
class TrainingStatusView:
    tenant_id: str
    current_hash: str
    imported_at: Optional[datetime]
    last_trained_hash: Optional[str]
    last_trained_at: Optional[datetime]
    is_stale: bool
    training_needed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "current_hash": self.current_hash,
            "imported_at": self.imported_at.isoformat() if self.imported_at else None,
            "last_trained_hash": self.last_trained_hash,
            "last_trained_at": self.last_trained_at.isoformat() if self.last_trained_at else None,
            "is_stale": self.is_stale,
            "training_needed": self.training_needed,
            "status": "Training needed" if self.training_needed else "Up to date",
        }


@dataclass
class TrainingResult:
    tenant_id: str
    success: bool = False
    skipped: bool = False
    message: str = ""
    data_hash: Optional[str] = None
    trained_at: datetime = field(default_factory=datetime.utcnow)
    sellers_processed: int = 0
    insights_generated: int = 0
    cache_entries_created: int = 0
    duration_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "message": self.message,
            "tenant_id": self.tenant_id,
            "data_hash": self.data_hash,
            "trained_at": self.trained_at.isoformat(),
            "sellers_processed": self.sellers_processed,
            "insights_generated": self.insights_generated,
            "cache_entries_created": self.cache_entries_created,
            "duration_seconds": round(self.duration_seconds, 3),
            "errors": list(self.errors),
        }


class TrainingStatusTracker:
    """Per-tenant dataset hash and training bookkeeping"""

    def __init__(self, db: Session):
        self.db = db

    def _get(self, tenant_id: str) -> Optional[TrainingStatus]:
        return self.db.query(TrainingStatus).filter(TrainingStatus.tenant_id == tenant_id).first()

    def record_import(self, tenant_id: str, data_hash: str) -> TrainingStatus:
        """Upsert by tenant: a new import replaces the current dataset hash."""
        status = self._get(tenant_id)
        if status is None:
            status = TrainingStatus(tenant_id=tenant_id, current_data_hash=data_hash)
            self.db.add(status)
        status.current_data_hash = data_hash
        status.imported_at = datetime.utcnow()
        self.db.flush()
        log.info(f"Import recorded | tenant={tenant_id} | hash={data_hash[:12]}")
        return status

    def get_training_status(self, tenant_id: str) -> Optional[TrainingStatusView]:
        status = self._get(tenant_id)
        if status is None:
            return None
        return TrainingStatusView(
            tenant_id=status.tenant_id,
            current_hash=status.current_data_hash,
            imported_at=status.imported_at,
            last_trained_hash=status.last_trained_hash,
            last_trained_at=status.last_trained_at,
            is_stale=bool(status.is_stale),
            training_needed=status.training_needed,
        )

    def is_training_needed(self, tenant_id: str) -> TrainingCheck:
        status = self._get(tenant_id)
        if status is None:
            log.debug(f"Training check | tenant={tenant_id} | no data imported")
            return TrainingCheck.NO_DATA

        needed = status.training_needed
        log.debug(
            f"Training check | tenant={tenant_id} | needed={needed} | stale={status.is_stale} | "
            f"current={status.current_data_hash} | last={status.last_trained_hash}"
        )
        return TrainingCheck.NEEDED if needed else TrainingCheck.UP_TO_DATE

    def mark_trained(self, tenant_id: str, data_hash: str, trained_at: Optional[datetime] = None):
        status = self._get(tenant_id)
        if status is None:
            return
        status.last_trained_hash = data_hash
        status.last_trained_at = trained_at or datetime.utcnow()
        status.is_stale = False
        self.db.flush()

    def mark_stale(self, tenant_id: str) -> bool:
        status = self._get(tenant_id)
        if status is None:
            return False
        status.is_stale = True
        self.db.commit()
        log.info(f"Insights marked stale | tenant={tenant_id}")
        return True

    def sweep_stale(self, max_age_hours: int, now: Optional[datetime] = None) -> int:
        """
        Flag tenants whose last training is older than `max_age_hours`.

        Returns the number of tenants newly marked stale.
        """
        if max_age_hours <= 0:
            return 0
        cutoff = (now or datetime.utcnow()) - timedelta(hours=max_age_hours)
        rows = (
            self.db.query(TrainingStatus)
            .filter(
                TrainingStatus.is_stale.is_(False),
                TrainingStatus.last_trained_at.isnot(None),
                TrainingStatus.last_trained_at < cutoff,
            )
            .all()
        )
        for status in rows:
            status.is_stale = True
        self.db.commit()
        if rows:
            log.info(f"Staleness sweep marked {len(rows)} tenant(s) stale (older than {max_age_hours}h)")
        return len(rows)


class ModelTrainingService:
    """Drives the insights engine over a tenant and writes the snapshot cache"""

    def __init__(
        self,
        db: Session,
        insights_service: Optional[InsightsService] = None,
        data_source: Optional[SalesDataSource] = None,
        tracker: Optional[TrainingStatusTracker] = None,
    ):
        self.db = db
        self.data_source = data_source or SalesDataSource(db)
        self.insights = insights_service or InsightsService(db, self.data_source)
        self.tracker = tracker or TrainingStatusTracker(db)

    # ─────────────────────────────────────────────
    # TRAINING
    # ─────────────────────────────────────────────

    def train(
        self,
        tenant_id: str,
        force: bool = False,
        should_cancel: Optional[Callable[[], bool]] = None,
        as_of: Optional[date] = None,
    ) -> TrainingResult:
        """
        Train insights for a tenant.

        Per-seller failures are collected into `errors` and never stop the
        loop. `success` is True only when no errors were collected.
        """
        lock = _tenant_lock(tenant_id)
        if not lock.acquire(blocking=False):
            log.warning(f"Training already running | tenant={tenant_id}")
            return TrainingResult(
                tenant_id=tenant_id,
                success=False,
                message="Training already running",
                errors=["Another training run for this tenant is in progress"],
            )
        try:
            return self._train(tenant_id, force, should_cancel, as_of or date.today())
        finally:
            lock.release()

    def _train(
        self,
        tenant_id: str,
        force: bool,
        should_cancel: Optional[Callable[[], bool]],
        as_of: date,
    ) -> TrainingResult:
        start = time.time()
        result = TrainingResult(tenant_id=tenant_id)
        should_cancel = should_cancel or (lambda: False)

        try:
            log.info(f"Starting model training | tenant={tenant_id} | force={force}")

            check = self.tracker.is_training_needed(tenant_id)
            if check == TrainingCheck.NO_DATA:
                result.message = "No import data found for tenant"
                result.errors.append("Tenant has not imported any data yet")
                result.duration_seconds = time.time() - start
                log.warning(f"Training aborted, no import data | tenant={tenant_id}")
                return result

            if not force and check == TrainingCheck.UP_TO_DATE:
                result.success = True
                result.skipped = True
                result.message = "Training skipped - data hasn't changed since last training"
                result.duration_seconds = time.time() - start
                log.info(f"Training skipped (no changes) | tenant={tenant_id}")
                return result

            status = self.tracker.get_training_status(tenant_id)
            result.data_hash = status.current_hash

            since = months_before(as_of, settings.training_lookback_months)
            seller_ids = self.data_source.get_active_seller_ids(tenant_id, since)
            log.info(f"Found {len(seller_ids)} sellers to process | tenant={tenant_id}")

            for seller_id in seller_ids:
                if should_cancel():
                    return self._cancelled(result, start)
                try:
                    with self.db.begin_nested():
                        insights = self.insights.calculate_insights(
                            tenant_id, seller_id=seller_id, as_of=as_of
                        )
                        self._write_snapshot(tenant_id, insights, result.data_hash, seller_id=seller_id)
                    result.sellers_processed += 1
                    result.insights_generated += 1
                    result.cache_entries_created += 1
                    log.debug(
                        f"Insights calculated | seller={seller_id} | sales={insights.total_sales} | "
                        f"progress={insights.goal_progress}%"
                    )
                except Exception as e:
                    log.error(f"Error calculating insights for seller {seller_id}: {str(e)}")
                    result.errors.append(f"Failed to process seller {seller_id}: {str(e)}")

            for store_id in self.data_source.get_active_store_ids(tenant_id, since):
                if should_cancel():
                    return self._cancelled(result, start)
                try:
                    with self.db.begin_nested():
                        insights = self.insights.calculate_insights(
                            tenant_id, store_id=store_id, as_of=as_of
                        )
                        self._write_snapshot(tenant_id, insights, result.data_hash, store_id=store_id)
                    result.insights_generated += 1
                    result.cache_entries_created += 1
                except Exception as e:
                    log.error(f"Error calculating insights for store {store_id}: {str(e)}")
                    result.errors.append(f"Failed to process store {store_id}: {str(e)}")

            if should_cancel():
                return self._cancelled(result, start)

            try:
                with self.db.begin_nested():
                    tenant_insights = self.insights.calculate_insights(tenant_id, as_of=as_of)
                    self._write_snapshot(tenant_id, tenant_insights, result.data_hash)
                result.insights_generated += 1
                result.cache_entries_created += 1
                log.info(
                    f"Tenant insights | total_sales={tenant_insights.total_sales} | "
                    f"progress={tenant_insights.goal_progress}%"
                )
            except Exception as e:
                log.error(f"Error calculating tenant insights | tenant={tenant_id}: {str(e)}")
                result.errors.append(f"Failed to process tenant insights: {str(e)}")

            result.trained_at = datetime.utcnow()
            self.tracker.mark_trained(tenant_id, result.data_hash, result.trained_at)
            pruned = self.prune_snapshots(tenant_id)
            self.db.commit()
            clear_for_tenant(tenant_id)

            result.duration_seconds = time.time() - start
            result.success = not result.errors
            result.message = (
                f"Training completed successfully in {result.duration_seconds:.2f}s"
                if result.success
                else f"Training completed with {len(result.errors)} errors"
            )
            log.info(
                f"Training completed | tenant={tenant_id} | sellers={result.sellers_processed} | "
                f"insights={result.insights_generated} | pruned={pruned} | "
                f"duration={result.duration_seconds:.2f}s | errors={len(result.errors)}"
            )
            return result

        except Exception as e:
            self.db.rollback()
            result.success = False
            result.message = f"Training failed: {str(e)}"
            result.errors.append(str(e))
            result.duration_seconds = time.time() - start
            log.error(f"Critical error during training | tenant={tenant_id}: {str(e)}")
            return result

    def _cancelled(self, result: TrainingResult, start: float) -> TrainingResult:
        # Snapshots already written stay; the dataset is not marked trained
        self.db.commit()
        result.success = False
        result.message = "Training cancelled"
        result.duration_seconds = time.time() - start
        log.warning(f"Training cancelled | tenant={result.tenant_id} | sellers={result.sellers_processed}")
        return result

    def _write_snapshot(
        self,
        tenant_id: str,
        insights: InsightsResult,
        data_hash: Optional[str],
        store_id: Optional[str] = None,
        seller_id: Optional[str] = None,
    ) -> InsightSnapshot:
        snapshot = InsightSnapshot(
            tenant_id=tenant_id,
            store_id=store_id,
            seller_id=seller_id,
            as_of_date=insights.as_of,
            total_sales=insights.total_sales,
            transaction_count=insights.transaction_count,
            avg_ticket=insights.avg_ticket,
            goal_target=insights.goal_target,
            goal_gap=insights.goal_gap,
            goal_progress=insights.goal_progress,
            projected_monthly=insights.projected_monthly,
            rankings=[r.to_dict() for r in insights.rankings],
            focus_areas=list(insights.focus_areas),
            suggestions=list(insights.suggestions),
            data_hash=data_hash,
            generated_at=insights.calculated_at,
        )
        self.db.add(snapshot)
        self.db.flush()
        return snapshot

    def prune_snapshots(self, tenant_id: str) -> int:
        """Delete snapshots older than the retention window."""
        if settings.insight_retention_days <= 0:
            return 0
        cutoff = datetime.utcnow() - timedelta(days=settings.insight_retention_days)
        return (
            self.db.query(InsightSnapshot)
            .filter(InsightSnapshot.tenant_id == tenant_id, InsightSnapshot.generated_at < cutoff)
            .delete(synchronize_session=False)
        )

    # ─────────────────────────────────────────────
    # CACHE READS
    # ─────────────────────────────────────────────

    def get_latest_snapshot(
        self,
        tenant_id: str,
        store_id: Optional[str] = None,
        seller_id: Optional[str] = None,
    ) -> Optional[InsightSnapshot]:
        return get_latest_snapshot(self.db, tenant_id, store_id=store_id, seller_id=seller_id)


def get_latest_snapshot(
    db: Session,
    tenant_id: str,
    store_id: Optional[str] = None,
    seller_id: Optional[str] = None,
) -> Optional[InsightSnapshot]:
    """Most recent cached snapshot for the exact (tenant, store, seller) key."""
    query = db.query(InsightSnapshot).filter(InsightSnapshot.tenant_id == tenant_id)
    query = query.filter(
        InsightSnapshot.store_id == store_id if store_id else InsightSnapshot.store_id.is_(None)
    )
    query = query.filter(
        InsightSnapshot.seller_id == seller_id if seller_id else InsightSnapshot.seller_id.is_(None)
    )
    return query.order_by(InsightSnapshot.generated_at.desc()).first()


def snapshot_in_month(snapshot: Optional[InsightSnapshot], as_of: Optional[date] = None) -> bool:
    """True when the snapshot covers the month of `as_of` (today by default)."""
    if snapshot is None:
        return False
    as_of = as_of or date.today()
    return (snapshot.as_of_date.year, snapshot.as_of_date.month) == (as_of.year, as_of.month)


def snapshot_to_dict(snapshot: InsightSnapshot) -> Dict[str, Any]:
    return {
        "id": snapshot.id,
        "tenant_id": snapshot.tenant_id,
        "store_id": snapshot.store_id,
        "seller_id": snapshot.seller_id,
        "as_of": snapshot.as_of_date.isoformat(),
        "total_sales": float(snapshot.total_sales),
        "transaction_count": snapshot.transaction_count,
        "avg_ticket": float(snapshot.avg_ticket),
        "goal_target": float(snapshot.goal_target),
        "goal_gap": float(snapshot.goal_gap),
        "goal_progress": float(snapshot.goal_progress),
        "projected_monthly": float(snapshot.projected_monthly),
        "rankings": snapshot.rankings or [],
        "focus_areas": snapshot.focus_areas or [],
        "suggestions": snapshot.suggestions or [],
        "data_hash": snapshot.data_hash,
        "generated_at": snapshot.generated_at.isoformat(),
    }
