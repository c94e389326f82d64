"""
Tareas Celery de stock.
Avisos diarios de lotes próximos a vencer.
"""

import asyncio
import logging

from vaxstock.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    name="stock.expiration_warnings",
)
def send_expiration_warnings_task(self):
    """
    Task periódico (cron): revisa los lotes con saldo y avisa cada umbral
    de vencimiento cruzado. Programado con Celery Beat a las 06:00.
    """

    async def _process():
        from vaxstock.database import async_session_factory
        from vaxstock.services.expiration_service import send_expiration_warnings

        async with async_session_factory() as db:
            return await send_expiration_warnings(db)

    try:
        sent = asyncio.run(_process())
    except Exception as exc:
        logger.error(f"Error en avisos de vencimiento: {exc}")
        raise self.retry(exc=exc)

    logger.info(f"Avisos de vencimiento procesados: {sent}")
    return {"sent": sent}
