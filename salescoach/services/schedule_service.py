"""
Message schedules: one crontab per (tenant, moment)
"""
from typing import Dict, List, Optional

from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from salescoach.config import get_settings
from salescoach.models.messaging import Moment, MessageSchedule
from salescoach.utils.errors import ConfigurationError
from salescoach.utils.logger import log

settings = get_settings()


def default_crons() -> Dict[Moment, str]:
    return {
        Moment.MORNING: settings.morning_schedule,
        Moment.MIDDAY: settings.midday_schedule,
        Moment.EVENING: settings.evening_schedule,
    }


def validate_cron(expression: str) -> str:
    """5-field crontab check; raises ConfigurationError."""
    expression = (expression or "").strip()
    try:
        CronTrigger.from_crontab(expression)
    except ValueError as e:
        raise ConfigurationError(f"Invalid cron expression {expression!r}: {str(e)}")
    return expression


class ScheduleService:
    def __init__(self, db: Session):
        self.db = db

    def list_schedules(self, tenant_id: str) -> List[MessageSchedule]:
        return (
            self.db.query(MessageSchedule)
            .filter(MessageSchedule.tenant_id == tenant_id)
            .order_by(MessageSchedule.id)
            .all()
        )

    def get_schedule(self, tenant_id: str, moment) -> Optional[MessageSchedule]:
        moment = Moment.parse(moment)
        return (
            self.db.query(MessageSchedule)
            .filter(MessageSchedule.tenant_id == tenant_id, MessageSchedule.moment == moment.value)
            .first()
        )

    def upsert_schedule(
        self,
        tenant_id: str,
        moment,
        cron_expression: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> MessageSchedule:
        moment = Moment.parse(moment)
        schedule = self.get_schedule(tenant_id, moment)
        if schedule is None:
            schedule = MessageSchedule(
                tenant_id=tenant_id,
                moment=moment.value,
                cron_expression=validate_cron(cron_expression or default_crons()[moment]),
                enabled=True if enabled is None else enabled,
            )
            self.db.add(schedule)
        else:
            if cron_expression is not None:
                schedule.cron_expression = validate_cron(cron_expression)
            if enabled is not None:
                schedule.enabled = enabled
        self.db.commit()
        log.info(
            f"Schedule saved | tenant={tenant_id} | moment={moment.value} | "
            f"cron='{schedule.cron_expression}' | enabled={schedule.enabled}"
        )
        return schedule

    def seed_defaults(self, tenant_id: str) -> List[MessageSchedule]:
        """Create the default schedules for a tenant that has none."""
        existing = self.list_schedules(tenant_id)
        if existing:
            return existing
        for moment, expression in default_crons().items():
            self.db.add(MessageSchedule(
                tenant_id=tenant_id,
                moment=moment.value,
                cron_expression=expression,
                enabled=True,
            ))
        self.db.commit()
        log.info(f"Default message schedules created | tenant={tenant_id}")
        return self.list_schedules(tenant_id)


def schedule_to_dict(schedule: MessageSchedule) -> Dict:
    return {
        "id": schedule.id,
        "tenant_id": schedule.tenant_id,
        "moment": schedule.moment,
        "cron_expression": schedule.cron_expression,
        "enabled": schedule.enabled,
        "updated_at": schedule.updated_at.isoformat() if schedule.updated_at else None,
    }
