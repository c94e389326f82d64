"""
Avisos de vencimiento de lotes.

Un lote con saldo dispara un aviso al cruzar cada umbral de días
configurado. Cada par (lote, umbral) se avisa una sola vez.
"""

import logging
from collections.abc import Iterable
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.config import get_settings
from vaxstock.core.dates import today
from vaxstock.database import unit_of_work
from vaxstock.models.stock import StockExpirationNotice, StockLot
from vaxstock.models.vaccine import Vaccine
from vaxstock.services import notification_service
from vaxstock.services.hierarchy_service import Scope, scope_name
from vaxstock.services.notification_service import Event

logger = logging.getLogger(__name__)


def find_threshold(days_left: int, thresholds: Iterable[int]) -> int | None:
    """
    Umbral más cercano ya cruzado por el lote.

    >>> find_threshold(10, [30, 14, 7, 2, 0])
    14
    >>> find_threshold(0, [30, 14, 7, 2, 0])
    0
    >>> find_threshold(45, [30, 14, 7, 2, 0]) is None
    True
    """
    if days_left < 0:
        return None
    crossed = [t for t in thresholds if t >= days_left]
    return min(crossed) if crossed else None


async def send_expiration_warnings(db: AsyncSession, reference: date | None = None) -> int:
    """Registra y publica los avisos pendientes; devuelve cuántos se enviaron."""
    settings = get_settings()
    thresholds = settings.STOCK_EXPIRATION_WARNING_DAYS
    if not thresholds:
        return 0
    reference = reference or today()
    horizon = reference + timedelta(days=max(thresholds))

    pending: list[tuple[StockLot, int, int]] = []
    async with unit_of_work(db):
        result = await db.execute(
            select(StockLot)
            .where(
                StockLot.expiration_date >= reference,
                StockLot.expiration_date <= horizon,
                (StockLot.remaining_quantity + StockLot.held_quantity) > 0,
            )
            .order_by(StockLot.expiration_date.asc())
        )
        lots = result.scalars().all()

        for lot in lots:
            days_left = (lot.expiration_date - reference).days
            threshold = find_threshold(days_left, thresholds)
            if threshold is None:
                continue
            existing = await db.execute(
                select(StockExpirationNotice.id).where(
                    StockExpirationNotice.lot_id == lot.id,
                    StockExpirationNotice.threshold_days == threshold,
                )
            )
            if existing.scalar_one_or_none():
                continue
            db.add(StockExpirationNotice(lot_id=lot.id, threshold_days=threshold))
            pending.append((lot, threshold, days_left))
        await db.flush()

    for lot, threshold, days_left in pending:
        vaccine = await db.get(Vaccine, lot.vaccine_id)
        scope = Scope(lot.scope_kind, lot.scope_id)
        notification_service.dispatch(Event.STOCK_EXPIRING, {
            "lot_id": lot.id,
            "vaccine_id": lot.vaccine_id,
            "vaccine_name": vaccine.name if vaccine else None,
            "scope_kind": lot.scope_kind,
            "scope_id": lot.scope_id,
            "scope_name": await scope_name(db, scope),
            "expiration_date": lot.expiration_date,
            "days_left": days_left,
            "threshold_days": threshold,
            "remaining": lot.remaining_quantity,
            "held": lot.held_quantity,
        })

    if pending:
        logger.info(f"{len(pending)} avisos de vencimiento enviados")
    return len(pending)
