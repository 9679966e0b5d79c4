"""
Scheduler for coaching messages and insight training

Uses APScheduler to fire one job per (tenant, moment) from the
message_schedules table, plus the nightly training and the optional
staleness sweep.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from zoneinfo import ZoneInfo
import asyncio
from typing import Callable, Optional

from salescoach.connectors.whatsapp import BaseMessagingProvider, get_messaging_provider
from salescoach.models.base import SessionLocal
from salescoach.models.messaging import Moment
from salescoach.models.tenant import Tenant
from salescoach.services.delivery_service import DeliveryOrchestrator
from salescoach.services.message_generation_service import build_generation_service
from salescoach.services.sales_data_source import SalesDataSource
from salescoach.services.schedule_service import ScheduleService
from salescoach.services.training_service import (
    ModelTrainingService,
    TrainingCheck,
    TrainingStatusTracker,
)
from salescoach.config import get_settings
from salescoach.utils.errors import ConfigurationError
from salescoach.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()

MESSAGE_JOB_PREFIX = "messages_"

# (tenant_id, moment) pairs currently generating or sending in this process
_in_flight: set = set()


def message_job_id(tenant_id: str, moment: Moment) -> str:
    return f"{MESSAGE_JOB_PREFIX}{tenant_id}_{moment.value}"


def _tenant_tz(tenant: Optional[Tenant]) -> ZoneInfo:
    try:
        return ZoneInfo((tenant.timezone if tenant else None) or settings.scheduler_timezone)
    except Exception:
        log.warning(f"Unknown timezone for tenant {tenant.id if tenant else '-'}, using {settings.scheduler_timezone}")
        return ZoneInfo(settings.scheduler_timezone)


# Job Functions

def _generate_messages(moment: Moment, tenant_id: str, session_factory: Callable = SessionLocal):
    """Build and queue drafts in a worker thread; LLM rendering blocks"""
    db = session_factory()
    try:
        return build_generation_service(db).generate_scheduled_messages(moment, tenant_id)
    finally:
        db.close()


async def run_scheduled_messages(
    moment,
    tenant_id: str,
    provider: Optional[BaseMessagingProvider] = None,
    session_factory: Callable = SessionLocal,
) -> dict:
    """
    Generate the moment's messages for a tenant and, when they come back
    auto-approved, deliver them right away.

    Configuration problems (unknown moment or tenant, missing provider
    credentials) abort the run and are logged; they never fall back to a
    default.
    """
    try:
        moment = Moment.parse(moment)
    except ConfigurationError as e:
        log.error(f"Scheduled run aborted | tenant={tenant_id}: {str(e)}")
        return {"success": False, "error": str(e)}

    key = (tenant_id, moment.value)
    if key in _in_flight:
        log.warning(f"Run already in progress | tenant={tenant_id} | moment={moment.value}")
        return {"success": False, "error": f"A {moment.value} run for this tenant is already in progress"}

    _in_flight.add(key)
    try:
        log.info(f"Starting scheduled {moment.value} messages | tenant={tenant_id}")
        generation = await asyncio.to_thread(_generate_messages, moment, tenant_id, session_factory)

        report = {
            "success": generation.success,
            "generation": generation.to_dict(),
            "delivery": None,
        }
        if generation.auto_approved:
            db = session_factory()
            try:
                orchestrator = DeliveryOrchestrator(db, provider or get_messaging_provider())
                delivery = await orchestrator.send_approved_messages(tenant_id, moment, generation.drafts)
            finally:
                db.close()
            report["delivery"] = delivery.to_dict()
            report["success"] = generation.success and delivery.success

        log.info(
            f"Scheduled {moment.value} run finished | tenant={tenant_id} | "
            f"generated={generation.messages_generated} | queued={generation.messages_queued} | "
            f"auto_approved={generation.auto_approved}"
        )
        return report

    except ConfigurationError as e:
        log.error(f"Scheduled run aborted | tenant={tenant_id} | moment={moment.value}: {str(e)}")
        return {"success": False, "error": str(e)}
    except Exception as e:
        log.error(f"Scheduled run error | tenant={tenant_id} | moment={moment.value}: {str(e)}")
        return {"success": False, "error": str(e)}
    finally:
        _in_flight.discard(key)


def _train_tenant(tenant_id: str, session_factory: Callable = SessionLocal) -> dict:
    db = session_factory()
    try:
        return ModelTrainingService(db).train(tenant_id).to_dict()
    finally:
        db.close()


async def run_training(session_factory: Callable = SessionLocal) -> dict:
    """Train every active tenant whose data changed or went stale (nightly)"""
    db = session_factory()
    try:
        tenant_ids = SalesDataSource(db).get_active_tenant_ids()
        tracker = TrainingStatusTracker(db)
        due = [t for t in tenant_ids if tracker.is_training_needed(t) == TrainingCheck.NEEDED]
    finally:
        db.close()

    log.info(f"Nightly training: {len(due)} of {len(tenant_ids)} tenants need training")
    results = {}
    for tenant_id in due:
        try:
            results[tenant_id] = await asyncio.to_thread(_train_tenant, tenant_id, session_factory)
        except Exception as e:
            log.error(f"Training job error | tenant={tenant_id}: {str(e)}")
            results[tenant_id] = {"success": False, "message": str(e)}
    return results


async def run_stale_sweep(session_factory: Callable = SessionLocal) -> int:
    """Flag tenants whose insights are older than training_stale_after_hours"""
    db = session_factory()
    try:
        return TrainingStatusTracker(db).sweep_stale(settings.training_stale_after_hours)
    except Exception as e:
        log.error(f"Staleness sweep error: {str(e)}")
        return 0
    finally:
        db.close()


# Setup

def _register_message_jobs(db) -> int:
    """Add one cron job per enabled schedule of every active tenant"""
    count = 0
    schedules = ScheduleService(db)
    tenants = db.query(Tenant).filter(Tenant.is_active.is_(True)).order_by(Tenant.code).all()

    for tenant in tenants:
        tz = _tenant_tz(tenant)
        for schedule in schedules.seed_defaults(tenant.id):
            if not schedule.enabled:
                continue
            try:
                moment = Moment.parse(schedule.moment)
                trigger = CronTrigger.from_crontab(schedule.cron_expression, timezone=tz)
            except (ConfigurationError, ValueError) as e:
                log.error(f"Skipping schedule {schedule.id} of tenant {tenant.code}: {str(e)}")
                continue

            scheduler.add_job(
                run_scheduled_messages,
                trigger=trigger,
                args=[moment.value, tenant.id],
                id=message_job_id(tenant.id, moment),
                name=f"{tenant.name} {moment.value} messages",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            count += 1
    return count


def setup_scheduler(session_factory: Callable = SessionLocal):
    """
    Configure the scheduler.

    - Messages:       per tenant and moment, from message_schedules
                      (defaults 07:00 / 12:00 / 18:00 in the tenant timezone)
    - Training:       nightly, tenants whose data changed or went stale
    - Staleness sweep: hourly, only when training_stale_after_hours > 0
    """
    db = session_factory()
    try:
        count = _register_message_jobs(db)
    finally:
        db.close()

    scheduler.add_job(
        run_training,
        trigger=CronTrigger.from_crontab(settings.training_schedule, timezone=ZoneInfo(settings.scheduler_timezone)),
        id='training_nightly',
        name='Nightly Insights Training',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    if settings.training_stale_after_hours > 0:
        scheduler.add_job(
            run_stale_sweep,
            trigger=IntervalTrigger(hours=1),
            id='training_stale_sweep',
            name='Insights Staleness Sweep',
            replace_existing=True,
            max_instances=1,
        )

    log.info(f"Scheduler configured with {count} message jobs (default timezone: {settings.scheduler_timezone})")


def reload_schedules(session_factory: Callable = SessionLocal) -> int:
    """Replace the message jobs after schedules changed"""
    for job in scheduler.get_jobs():
        if job.id.startswith(MESSAGE_JOB_PREFIX):
            scheduler.remove_job(job.id)

    db = session_factory()
    try:
        count = _register_message_jobs(db)
    finally:
        db.close()
    log.info(f"Message schedules reloaded: {count} jobs")
    return count


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
    log.info("Scheduler stopped")


async def run_job_now(moment, tenant_id: str, provider: Optional[BaseMessagingProvider] = None) -> dict:
    """Manually trigger a (tenant, moment) run; refused while one is in flight"""
    log.info(f"Manually triggering {moment} messages | tenant={tenant_id}")
    return await run_scheduled_messages(moment, tenant_id, provider=provider)


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs

    Returns:
        List of job info dicts
    """
    jobs = []

    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)

        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs


def pause_job(job_id: str) -> bool:
    """Pause a scheduled job"""
    try:
        scheduler.pause_job(job_id)
        log.info(f"Paused job: {job_id}")
        return True

    except Exception as e:
        log.error(f"Error pausing job {job_id}: {str(e)}")
        return False


def resume_job(job_id: str) -> bool:
    """Resume a paused job"""
    try:
        scheduler.resume_job(job_id)
        log.info(f"Resumed job: {job_id}")
        return True

    except Exception as e:
        log.error(f"Error resuming job {job_id}: {str(e)}")
        return False
