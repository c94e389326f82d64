"""
Publicación de eventos hacia el colaborador de notificaciones.

Se invoca siempre después del commit de la transacción dueña del cambio.
Un fallo al publicar se registra y se descarta: nunca revierte ni
interrumpe la operación que lo originó.
"""

import enum
import logging
from datetime import date, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.config import get_settings
from vaxstock.models.vaccine import Vaccine
from vaxstock.services.hierarchy_service import Scope, scope_name
from vaxstock.services.stock_view import allocatable_total
from vaxstock.tasks.notification_tasks import dispatch_event

logger = logging.getLogger(__name__)


class Event(str, enum.Enum):
    DOSE_SCHEDULED = "dose.scheduled"
    DOSE_RESCHEDULED = "dose.rescheduled"
    DOSE_CANCELLED = "dose.cancelled"
    DOSE_COMPLETED = "dose.completed"
    DOSE_MISSED = "dose.missed"
    REQUEST_CREATED = "vaccine_request.created"
    TRANSFER_SENT = "transfer.sent"
    TRANSFER_CONFIRMED = "transfer.confirmed"
    TRANSFER_REJECTED = "transfer.rejected"
    TRANSFER_CANCELLED = "transfer.cancelled"
    STOCK_CRITICAL = "stock.critical"
    STOCK_EXPIRING = "stock.expiring"


def _sanitize_for_json(data: dict) -> dict:
    """Convierte tipos no serializables (date, datetime, UUID, Enum) a strings."""
    sanitized = {}
    for key, value in data.items():
        if isinstance(value, (date, datetime)):
            sanitized[key] = value.isoformat()
        elif isinstance(value, UUID):
            sanitized[key] = str(value)
        elif isinstance(value, enum.Enum):
            sanitized[key] = value.value
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_for_json(value)
        else:
            sanitized[key] = value
    return sanitized


def dispatch(event: Event, payload: dict) -> bool:
    """Encola el evento; devuelve False si no se pudo publicar."""
    try:
        dispatch_event.delay(event.value, _sanitize_for_json(payload))
    except Exception as exc:
        logger.error(f"No se pudo publicar el evento {event.value}: {exc}")
        return False
    return True


async def check_stock_level(db: AsyncSession, vaccine_id: UUID, scope: Scope) -> None:
    """Publica "stock crítico" si el total asignable quedó bajo el umbral."""
    settings = get_settings()
    try:
        total = await allocatable_total(db, vaccine_id, scope)
        if total >= settings.STOCK_CRITICAL_THRESHOLD:
            return
        vaccine = await db.get(Vaccine, vaccine_id)
        dispatch(Event.STOCK_CRITICAL, {
            "vaccine_id": vaccine_id,
            "vaccine_name": vaccine.name if vaccine else None,
            "scope_kind": scope.kind,
            "scope_id": scope.scope_id,
            "scope_name": await scope_name(db, scope),
            "remaining": total,
            "threshold": settings.STOCK_CRITICAL_THRESHOLD,
        })
    except Exception as exc:
        logger.error(f"No se pudo evaluar el nivel de stock de {vaccine_id} en {scope}: {exc}")
