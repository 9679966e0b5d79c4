"""Database models for the Sales Coach platform"""

from salescoach.models.tenant import Tenant, Store, Seller

from salescoach.models.sales import Sale, Goal

from salescoach.models.training import TrainingStatus, InsightSnapshot

from salescoach.models.messaging import (
    Moment,
    ReviewStatus,
    MessageDirection,
    DeliveryStatus,
    ReviewItem,
    DeliveryLogEntry,
    MessageSchedule
)
