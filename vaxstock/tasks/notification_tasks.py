"""
Tareas Celery de notificación.

El motor de stock solo publica eventos ya confirmados en la base; la
entrega (correo, SMS, push) la resuelve el colaborador de notificaciones.
Esta tarea es el punto de entrada de ese colaborador y solo registra el
evento recibido.
"""

import logging

from vaxstock.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="notifications.dispatch_event")
def dispatch_event(event: str, payload: dict):
    """Registra un evento de dominio para su entrega."""
    logger.info(f"Evento {event}: {payload}")
    return {"event": event, "delivered": True}
