"""
Jobs programados de la aplicacion (APScheduler).

- airtable_sync_all: sync de todas las entidades, diario a las
  SYNC_SCHEDULE_HOUR_UTC (UTC)
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from app.core.config import Settings
from app.infrastructure.external.airtable_sync.sync_service import SyncContainer
from app.shared.exceptions.sync import SyncConfigError


SYNC_ALL_JOB_ID = "airtable_sync_all"


async def run_scheduled_sync_all(container: SyncContainer) -> None:
    """Job: corre sync-all con triggered_by='scheduler'."""
    try:
        service = container.require_service()
    except SyncConfigError as e:
        logger.error(f"Sync programado omitido: {e.message}")
        return
    summary = await service.run_all("scheduler")
    statuses = {entity: result.get("status") for entity, result in summary.items()}
    logger.info(f"Sync programado completado: {statuses}")


def build_scheduler(container: SyncContainer, settings: Settings) -> AsyncIOScheduler:
    """
    Crea el scheduler con el job de sync diario (sin iniciarlo).

    Args:
        container: Recursos del sync
        settings: Configuracion de la aplicacion

    Returns:
        AsyncIOScheduler: Scheduler configurado
    """
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_scheduled_sync_all,
        trigger=CronTrigger(hour=settings.SYNC_SCHEDULE_HOUR_UTC, minute=0, timezone="UTC"),
        args=[container],
        id=SYNC_ALL_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Job '{SYNC_ALL_JOB_ID}' programado diario a las {settings.SYNC_SCHEDULE_HOUR_UTC:02d}:00 UTC")
    return scheduler
