"""
Helpers de test: lotes, citas y fechas relativas.
"""

from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.core.dates import today, utcnow
from vaxstock.models.stock import StockLot
from vaxstock.models.vaccination import ScheduledVaccination
from vaxstock.models.vaccine import Vaccine
from vaxstock.services import lot_ledger
from vaxstock.services.hierarchy_service import Scope


async def add_lot(
    db: AsyncSession, vaccine: Vaccine, scope: Scope, quantity: int, expires_in_days: int
) -> StockLot:
    """Registra un lote fresco y confirma la transacción."""
    lot = await lot_ledger.add_fresh(
        db, vaccine.id, scope, quantity, today() + timedelta(days=expires_in_days)
    )
    await db.commit()
    return lot


async def reload_lot(db: AsyncSession, lot_id) -> StockLot:
    return await lot_ledger.get_lot(db, lot_id)


def in_days(days: int, hour: int = 10) -> datetime:
    """Fecha/hora UTC de una cita dentro de `days` días."""
    moment = utcnow() + timedelta(days=days)
    return moment.replace(hour=hour, minute=0, second=0, microsecond=0)


async def move_appointment_to_past(db: AsyncSession, scheduled_id, hours: int = 1) -> None:
    """Simula que la cita ya llegó (o pasó) sin esperar al reloj."""
    await db.execute(
        update(ScheduledVaccination)
        .where(ScheduledVaccination.id == scheduled_id)
        .values(scheduled_for=utcnow() - timedelta(hours=hours))
    )
    await db.commit()
