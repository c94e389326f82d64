"""
Tareas Celery de la agenda de vacunación.
Barrido de citas perdidas y recálculo nocturno de calendarios.
"""

import asyncio
import logging

from vaxstock.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    name="vaccinations.sweep_missed",
)
def sweep_missed_appointments_task(self):
    """
    Task periódico (cron): marca como perdidas las citas vencidas y
    devuelve sus dosis retenidas al stock del centro.
    """

    async def _process():
        from vaxstock.database import async_session_factory
        from vaxstock.services.scheduling_service import sweep_missed

        async with async_session_factory() as db:
            return await sweep_missed(db)

    try:
        missed = asyncio.run(_process())
    except Exception as exc:
        logger.error(f"Error en barrido de citas perdidas: {exc}")
        raise self.retry(exc=exc)

    return {"missed": missed}


@celery_app.task(name="vaccinations.rebuild_timelines")
def rebuild_timelines_task():
    """
    Task periódico (cron): recalcula las dosis DUE/LATE de todos los niños.
    Un niño que falla se registra y no detiene el resto.
    """

    async def _process():
        from sqlalchemy import select

        from vaxstock.database import async_session_factory, unit_of_work
        from vaxstock.models.child import Child
        from vaxstock.services.timeline_service import rebuild_child_buckets

        async with async_session_factory() as db:
            result = await db.execute(select(Child.id))
            child_ids = list(result.scalars().all())

            rebuilt = 0
            for child_id in child_ids:
                try:
                    async with unit_of_work(db):
                        await rebuild_child_buckets(db, child_id)
                    rebuilt += 1
                except Exception as exc:
                    logger.error(f"No se pudo recalcular el calendario del niño {child_id}: {exc}")
            return rebuilt

    rebuilt = asyncio.run(_process())
    logger.info(f"Calendarios recalculados: {rebuilt}")
    return {"rebuilt": rebuilt}
