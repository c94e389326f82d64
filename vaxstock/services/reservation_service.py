"""
Gestor de reservas — asignación FEFO de dosis sobre el libro de lotes.

Planifica contra los lotes asignables (primero en vencer, primero en salir)
y retiene cada parte con un UPDATE condicional. Si una retención pierde la
carrera contra otra transacción, se deshacen las retenciones ya hechas en
este intento y se replanifica, hasta STOCK_HOLD_MAX_RETRIES veces.
"""

import logging
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.config import get_settings
from vaxstock.core.dates import today
from vaxstock.core.exceptions import (
    ConcurrentModificationException,
    InsufficientStockException,
    ValidationException,
)
from vaxstock.models.stock import StockLot, StockReservation
from vaxstock.services import lot_ledger
from vaxstock.services.hierarchy_service import Scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    lot_id: UUID
    quantity: int


# ── Planificación ─────────────────────────────────────


def plan_fefo(lots: list[StockLot], quantity: int) -> list[Allocation] | None:
    """
    Toma min(restante, faltante) de cada lote en el orden recibido.
    Devuelve None si la suma de los lotes no cubre la cantidad.
    """
    allocations = []
    needed = quantity
    for lot in lots:
        if needed == 0:
            break
        take = min(lot.remaining_quantity, needed)
        if take <= 0:
            continue
        allocations.append(Allocation(lot.id, take))
        needed -= take
    if needed > 0:
        return None
    return allocations


async def _shortage_message(
    db: AsyncSession,
    vaccine_id: UUID,
    scope: Scope,
    quantity: int,
    not_before: date,
) -> str:
    result = await db.execute(
        select(StockLot).where(
            StockLot.vaccine_id == vaccine_id,
            *lot_ledger.scope_filter(scope),
            StockLot.remaining_quantity > 0,
        )
    )
    lots = list(result.scalars().all())
    if not lots:
        return "No hay lotes disponibles para esta vacuna"

    current = today()
    valid = [lot for lot in lots if lot.expiration_date >= current]
    if not valid:
        return "Todos los lotes disponibles están vencidos"

    eligible = [lot for lot in valid if lot.expiration_date > not_before]
    if not eligible:
        return "El stock disponible vence antes de la fecha de la cita"

    available = sum(lot.remaining_quantity for lot in eligible)
    return f"Stock insuficiente: se requieren {quantity} dosis y hay {available} disponibles"


# ── Asignación ────────────────────────────────────────


async def allocate_fefo(
    db: AsyncSession,
    vaccine_id: UUID,
    scope: Scope,
    quantity: int,
    not_before: date,
) -> list[Allocation]:
    """
    Retiene `quantity` dosis del ámbito en orden FEFO.

    Sin stock suficiente falla con InsufficientStockException antes de
    escribir; si se agotan los reintentos por carreras perdidas, con
    ConcurrentModificationException.
    """
    settings = get_settings()
    attempts = settings.STOCK_HOLD_MAX_RETRIES + 1

    for attempt in range(1, attempts + 1):
        lots = await lot_ledger.list_allocatable(
            db, vaccine_id, scope, not_before, lock=True
        )
        plan = plan_fefo(lots, quantity)
        if plan is None:
            raise InsufficientStockException(
                await _shortage_message(db, vaccine_id, scope, quantity, not_before)
            )

        applied: list[Allocation] = []
        try:
            for allocation in plan:
                await lot_ledger.hold(db, allocation.lot_id, allocation.quantity)
                applied.append(allocation)
        except InsufficientStockException:
            for allocation in applied:
                await lot_ledger.release(db, allocation.lot_id, allocation.quantity)
            logger.warning(
                f"Retención perdida en {scope} para vacuna {vaccine_id} "
                f"(intento {attempt}/{attempts}), replanificando"
            )
            continue

        return plan

    raise ConcurrentModificationException()


async def reserve_dose(
    db: AsyncSession,
    vaccine_id: UUID,
    scope: Scope,
    quantity: int,
    appointment_date: date,
) -> list[Allocation]:
    """Reserva dosis para una cita: solo lotes que vencen después de la cita."""
    if quantity <= 0:
        raise ValidationException("La cantidad a reservar debe ser positiva")
    allocations = await allocate_fefo(db, vaccine_id, scope, quantity, appointment_date)
    logger.info(
        f"Reservadas {quantity} dosis de {vaccine_id} en {scope} para {appointment_date}: "
        f"{[(str(a.lot_id), a.quantity) for a in allocations]}"
    )
    return allocations


async def attach_reservations(
    db: AsyncSession, scheduled_vaccination_id: UUID, allocations: list[Allocation]
) -> list[StockReservation]:
    reservations = [
        StockReservation(
            scheduled_vaccination_id=scheduled_vaccination_id,
            lot_id=allocation.lot_id,
            quantity=allocation.quantity,
        )
        for allocation in allocations
    ]
    db.add_all(reservations)
    await db.flush()
    return reservations


async def get_reservations(
    db: AsyncSession, scheduled_vaccination_id: UUID
) -> list[StockReservation]:
    result = await db.execute(
        select(StockReservation)
        .where(StockReservation.scheduled_vaccination_id == scheduled_vaccination_id)
        .order_by(StockReservation.created_at)
    )
    return list(result.scalars().all())


async def _settle_reservations(
    db: AsyncSession, scheduled_vaccination_id: UUID, consume: bool
) -> int:
    """
    Borra cada fila de reserva y luego mueve su cantidad en el lote.
    Una fila que ya no existe la liquidó otra transacción: se omite.
    """
    settled = 0
    for reservation in await get_reservations(db, scheduled_vaccination_id):
        result = await db.execute(
            delete(StockReservation)
            .where(StockReservation.id == reservation.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            continue
        if consume:
            await lot_ledger.consume(db, reservation.lot_id, reservation.quantity)
        else:
            await lot_ledger.release(db, reservation.lot_id, reservation.quantity)
        db.expunge(reservation)
        settled += reservation.quantity
    return settled


async def release_reservations(db: AsyncSession, scheduled_vaccination_id: UUID) -> int:
    """Devuelve al lote las dosis retenidas de una cita. Idempotente."""
    released = await _settle_reservations(db, scheduled_vaccination_id, consume=False)
    if released:
        logger.info(f"Liberadas {released} dosis de la cita {scheduled_vaccination_id}")
    return released


async def consume_reservations(db: AsyncSession, scheduled_vaccination_id: UUID) -> int:
    """Convierte en distribuidas las dosis retenidas de una cita aplicada."""
    consumed = await _settle_reservations(db, scheduled_vaccination_id, consume=True)
    if consumed:
        logger.info(f"Consumidas {consumed} dosis de la cita {scheduled_vaccination_id}")
    return consumed
