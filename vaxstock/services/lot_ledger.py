"""
Libro de lotes — dueño de los contadores de cada lote de stock.

Cada movimiento (retener, liberar, consumir, dividir) es un UPDATE
condicional que revalida el contador de origen en el momento de escribir:
si otra transacción ganó la carrera, el UPDATE no afecta filas y la
operación falla limpiamente sin sobre-asignar.
"""

import logging
import math
from datetime import date
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.core.dates import today
from vaxstock.core.exceptions import (
    ConcurrentModificationException,
    ConflictException,
    InsufficientStockException,
    NotFoundException,
    ValidationException,
)
from vaxstock.models.stock import (
    LotStatus,
    StockExpirationNotice,
    StockLot,
    StockTransferLot,
)
from vaxstock.models.vaccine import Vaccine
from vaxstock.schemas.stock import LotListResponse, LotResponse
from vaxstock.services.hierarchy_service import Scope, ensure_scope_exists

logger = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────


def _ensure_positive(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationException("La cantidad debe ser un entero positivo")


def scope_filter(scope: Scope) -> list:
    """Cláusulas WHERE que seleccionan los lotes de un ámbito."""
    clauses = [StockLot.scope_kind == scope.kind]
    if scope.scope_id is None:
        clauses.append(StockLot.scope_id.is_(None))
    else:
        clauses.append(StockLot.scope_id == scope.scope_id)
    return clauses


def lot_to_response(
    lot: StockLot, reference: date | None = None, vaccine_name: str | None = None
) -> LotResponse:
    return LotResponse(
        id=lot.id,
        vaccine_id=lot.vaccine_id,
        vaccine_name=vaccine_name,
        scope_kind=lot.scope_kind,
        scope_id=lot.scope_id,
        original_quantity=lot.original_quantity,
        remaining_quantity=lot.remaining_quantity,
        held_quantity=lot.held_quantity,
        distributed_quantity=lot.distributed_quantity,
        expiration_date=lot.expiration_date,
        status=lot.status_on(reference or today()),
        source_lot_id=lot.source_lot_id,
        derived_count=lot.derived_count,
        created_at=lot.created_at,
    )


async def _apply(db: AsyncSession, lot_id: UUID, guard, **values) -> bool:
    """UPDATE condicional sobre un lote; True si afectó exactamente una fila."""
    result = await db.execute(
        update(StockLot)
        .where(StockLot.id == lot_id, guard)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def get_lot(db: AsyncSession, lot_id: UUID) -> StockLot:
    """Lote con sus contadores leídos de la base (no del identity map)."""
    lot = await db.get(StockLot, lot_id, populate_existing=True)
    if lot is None:
        raise NotFoundException("Lote")
    return lot


# ── Consultas ─────────────────────────────────────────


async def list_allocatable(
    db: AsyncSession,
    vaccine_id: UUID,
    scope: Scope,
    not_before: date,
    *,
    lock: bool = False,
) -> list[StockLot]:
    """
    Lotes vigentes del ámbito con saldo y que vencen después de `not_before`,
    en orden FEFO: vencimiento ascendente y, a igual vencimiento, el lote
    más antiguo primero.
    """
    query = (
        select(StockLot)
        .where(
            StockLot.vaccine_id == vaccine_id,
            *scope_filter(scope),
            StockLot.remaining_quantity > 0,
            StockLot.expiration_date > not_before,
            StockLot.expiration_date >= today(),
        )
        .order_by(
            StockLot.expiration_date.asc(),
            StockLot.created_at.asc(),
            StockLot.id.asc(),
        )
        .execution_options(populate_existing=True)
    )
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    return list(result.scalars().all())


async def list_lots(
    db: AsyncSession,
    scope: Scope,
    vaccine_id: UUID | None = None,
    page: int = 1,
    size: int = 50,
) -> LotListResponse:
    """Lotes de un ámbito (incluye vencidos y agotados) para reportes."""
    filters = scope_filter(scope)
    if vaccine_id:
        filters.append(StockLot.vaccine_id == vaccine_id)

    total_result = await db.execute(
        select(func.count()).select_from(StockLot).where(*filters)
    )
    total = total_result.scalar() or 0

    result = await db.execute(
        select(StockLot, Vaccine.name)
        .join(Vaccine, Vaccine.id == StockLot.vaccine_id)
        .where(*filters)
        .order_by(StockLot.expiration_date.asc(), StockLot.created_at.asc())
        .offset((page - 1) * size)
        .limit(size)
    )
    reference = today()
    items = []
    for lot, vaccine_name in result.all():
        items.append(lot_to_response(lot, reference, vaccine_name))

    return LotListResponse(
        items=items,
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total else 0,
    )


# ── Movimientos ───────────────────────────────────────


async def hold(db: AsyncSession, lot_id: UUID, quantity: int) -> StockLot:
    """Mueve `quantity` de restante a retenido."""
    _ensure_positive(quantity)
    ok = await _apply(
        db,
        lot_id,
        StockLot.remaining_quantity >= quantity,
        remaining_quantity=StockLot.remaining_quantity - quantity,
        held_quantity=StockLot.held_quantity + quantity,
    )
    lot = await get_lot(db, lot_id)
    if not ok:
        raise InsufficientStockException(
            f"El lote {lot_id} solo tiene {lot.remaining_quantity} dosis disponibles"
        )
    return lot


async def release(db: AsyncSession, lot_id: UUID, quantity: int) -> StockLot:
    """Devuelve `quantity` de retenido a restante."""
    _ensure_positive(quantity)
    ok = await _apply(
        db,
        lot_id,
        StockLot.held_quantity >= quantity,
        remaining_quantity=StockLot.remaining_quantity + quantity,
        held_quantity=StockLot.held_quantity - quantity,
    )
    lot = await get_lot(db, lot_id)
    if not ok:
        raise ConcurrentModificationException(
            f"El lote {lot_id} no tiene {quantity} dosis retenidas para liberar"
        )
    return lot


async def consume(db: AsyncSession, lot_id: UUID, quantity: int) -> StockLot:
    """Convierte `quantity` retenido en distribuido (dosis aplicada)."""
    _ensure_positive(quantity)
    ok = await _apply(
        db,
        lot_id,
        StockLot.held_quantity >= quantity,
        held_quantity=StockLot.held_quantity - quantity,
        distributed_quantity=StockLot.distributed_quantity + quantity,
    )
    lot = await get_lot(db, lot_id)
    if not ok:
        raise ConcurrentModificationException(
            f"El lote {lot_id} no tiene {quantity} dosis retenidas para consumir"
        )
    return lot


async def add_fresh(
    db: AsyncSession,
    vaccine_id: UUID,
    scope: Scope,
    quantity: int,
    expiration_date: date,
) -> StockLot:
    """Ingreso directo de stock: crea un lote sin linaje."""
    _ensure_positive(quantity)
    if expiration_date < today():
        raise ValidationException("No se puede registrar un lote ya vencido")

    vaccine = await db.get(Vaccine, vaccine_id)
    if vaccine is None:
        raise NotFoundException("Vacuna", "Vacuna no encontrada")
    await ensure_scope_exists(db, scope)

    lot = StockLot(
        vaccine_id=vaccine_id,
        scope_kind=scope.kind,
        scope_id=scope.scope_id,
        original_quantity=quantity,
        remaining_quantity=quantity,
        held_quantity=0,
        distributed_quantity=0,
        expiration_date=expiration_date,
        derived_count=0,
    )
    db.add(lot)
    await db.flush()
    logger.info(
        f"Lote {lot.id} creado: {quantity} dosis de {vaccine.name} en {scope}, "
        f"vence {expiration_date}"
    )
    return lot


async def split(
    db: AsyncSession,
    source_lot_id: UUID,
    quantity: int,
    destination: Scope,
    *,
    from_held: bool = True,
) -> StockLot:
    """
    Separa `quantity` del lote origen hacia un lote nuevo en `destination`.

    En el origen la cantidad sale de retenido (transferencia ya reservada) o
    de restante, y pasa a distribuido; su derived_count aumenta en uno.
    El lote derivado conserva vacuna y vencimiento, con source_lot_id.
    """
    _ensure_positive(quantity)
    if from_held:
        ok = await _apply(
            db,
            source_lot_id,
            StockLot.held_quantity >= quantity,
            held_quantity=StockLot.held_quantity - quantity,
            distributed_quantity=StockLot.distributed_quantity + quantity,
            derived_count=StockLot.derived_count + 1,
        )
    else:
        ok = await _apply(
            db,
            source_lot_id,
            StockLot.remaining_quantity >= quantity,
            remaining_quantity=StockLot.remaining_quantity - quantity,
            distributed_quantity=StockLot.distributed_quantity + quantity,
            derived_count=StockLot.derived_count + 1,
        )
    source = await get_lot(db, source_lot_id)
    if not ok:
        if from_held:
            raise ConcurrentModificationException(
                f"El lote {source_lot_id} no tiene {quantity} dosis retenidas para transferir"
            )
        raise InsufficientStockException(
            f"El lote {source_lot_id} solo tiene {source.remaining_quantity} dosis disponibles"
        )

    derived = StockLot(
        vaccine_id=source.vaccine_id,
        scope_kind=destination.kind,
        scope_id=destination.scope_id,
        original_quantity=quantity,
        remaining_quantity=quantity,
        held_quantity=0,
        distributed_quantity=0,
        expiration_date=source.expiration_date,
        source_lot_id=source.id,
        derived_count=0,
    )
    db.add(derived)
    await db.flush()
    logger.info(
        f"Lote {source.id} dividido: {quantity} dosis hacia {destination} (lote {derived.id})"
    )
    return derived


async def remove_lot(db: AsyncSession, lot_id: UUID) -> None:
    """
    Baja de un lote por el operador. Solo se permite sin dosis retenidas y
    cuando está agotado o vencido; los lotes derivados conservan su saldo
    y pierden el puntero al origen.
    """
    lot = await get_lot(db, lot_id)
    if lot.held_quantity > 0:
        raise ConflictException(
            f"El lote tiene {lot.held_quantity} dosis retenidas y no puede eliminarse"
        )
    if lot.remaining_quantity > 0 and lot.status_on(today()) == LotStatus.VALID:
        raise ConflictException(
            "Solo se pueden eliminar lotes agotados o vencidos"
        )

    await db.execute(
        update(StockLot)
        .where(StockLot.source_lot_id == lot_id)
        .values(source_lot_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(StockTransferLot)
        .where(StockTransferLot.lot_id == lot_id)
        .values(lot_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(StockTransferLot)
        .where(StockTransferLot.derived_lot_id == lot_id)
        .values(derived_lot_id=None)
        .execution_options(synchronize_session=False)
    )
    notices = await db.execute(
        select(StockExpirationNotice).where(StockExpirationNotice.lot_id == lot_id)
    )
    for notice in notices.scalars().all():
        await db.delete(notice)

    await db.delete(lot)
    await db.flush()
    logger.info(
        f"Lote {lot_id} eliminado ({lot.remaining_quantity} dosis dadas de baja)"
    )
