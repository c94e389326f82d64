"""
Flujo de transferencias de stock entre niveles de la jerarquía.

PENDING → CONFIRMED | CANCELLED (ambos terminales).
Al crear, la cantidad se retiene FEFO en el emisor; al confirmar, cada
asignación se divide hacia un lote nuevo del receptor con linaje; al
cancelar o rechazar, se libera en el emisor.
"""

import logging
import math
from uuid import UUID

from sqlalchemy import func, or_, and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.core.dates import today, utcnow
from vaxstock.core.exceptions import (
    AlreadyProcessedException,
    ForbiddenException,
    InvalidTransferScopeException,
    NotFoundException,
)
from vaxstock.database import unit_of_work
from vaxstock.models.hierarchy import ScopeKind
from vaxstock.models.stock import (
    StockTransfer,
    StockTransferLot,
    TransferCancelReason,
    TransferStatus,
)
from vaxstock.models.vaccine import Vaccine
from vaxstock.schemas.transfer import (
    TransferAllocationResponse,
    TransferCreate,
    TransferListResponse,
    TransferResponse,
)
from vaxstock.services import lot_ledger, notification_service, reservation_service
from vaxstock.services.hierarchy_service import (
    Scope,
    ensure_scope_exists,
    scope_name,
    validate_transfer_scopes,
)
from vaxstock.services.notification_service import Event

logger = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────


def _from_scope(transfer: StockTransfer) -> Scope:
    return Scope(transfer.from_kind, transfer.from_id)


def _to_scope(transfer: StockTransfer) -> Scope:
    return Scope(transfer.to_kind, transfer.to_id)


def _scope_clause(kind_column, id_column, scope: Scope):
    if scope.scope_id is None:
        return and_(kind_column == scope.kind, id_column.is_(None))
    return and_(kind_column == scope.kind, id_column == scope.scope_id)


async def _transfer_to_response(
    db: AsyncSession, transfer: StockTransfer
) -> TransferResponse:
    return TransferResponse(
        id=transfer.id,
        vaccine_id=transfer.vaccine_id,
        vaccine_name=transfer.vaccine.name if transfer.vaccine else None,
        from_kind=transfer.from_kind,
        from_id=transfer.from_id,
        from_name=await scope_name(db, _from_scope(transfer)),
        to_kind=transfer.to_kind,
        to_id=transfer.to_id,
        to_name=await scope_name(db, _to_scope(transfer)),
        quantity=transfer.quantity,
        status=transfer.status,
        allocations=[
            TransferAllocationResponse.model_validate(a) for a in transfer.allocations
        ],
        created_by=transfer.created_by,
        created_at=transfer.created_at,
        confirmed_at=transfer.confirmed_at,
        confirmed_by=transfer.confirmed_by,
        cancelled_at=transfer.cancelled_at,
        cancelled_by=transfer.cancelled_by,
        cancel_reason=transfer.cancel_reason,
    )


async def _load_transfer(
    db: AsyncSession, transfer_id: UUID, lock: bool = False
) -> StockTransfer:
    query = (
        select(StockTransfer)
        .where(StockTransfer.id == transfer_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        query = query.with_for_update(of=StockTransfer)
    result = await db.execute(query)
    transfer = result.unique().scalar_one_or_none()
    if not transfer:
        raise NotFoundException("Transferencia", "Transferencia no encontrada")
    return transfer


def _event_payload(transfer: StockTransfer, from_name: str, to_name: str) -> dict:
    return {
        "transfer_id": transfer.id,
        "vaccine_id": transfer.vaccine_id,
        "vaccine_name": transfer.vaccine.name if transfer.vaccine else None,
        "quantity": transfer.quantity,
        "from_kind": transfer.from_kind,
        "from_name": from_name,
        "to_kind": transfer.to_kind,
        "to_name": to_name,
        "status": transfer.status,
    }


async def _notify(db: AsyncSession, event: Event, transfer: StockTransfer) -> None:
    try:
        from_name = await scope_name(db, _from_scope(transfer))
        to_name = await scope_name(db, _to_scope(transfer))
    except Exception as exc:
        logger.error(f"No se pudieron resolver los nombres de la transferencia {transfer.id}: {exc}")
        from_name, to_name = str(_from_scope(transfer)), str(_to_scope(transfer))
    notification_service.dispatch(event, _event_payload(transfer, from_name, to_name))


# ── Crear ─────────────────────────────────────────────


async def create_transfer(
    db: AsyncSession, data: TransferCreate, created_by: UUID | None = None
) -> TransferResponse:
    """
    Crea una transferencia PENDING reteniendo la cantidad en el emisor.
    Cantidad y adyacencia se validan antes de tocar cualquier lote.
    """
    from_scope = Scope(data.from_scope.kind, data.from_scope.id)
    to_scope = Scope(data.to_scope.kind, data.to_scope.id)

    if data.quantity <= 0:
        raise InvalidTransferScopeException("La cantidad a transferir debe ser positiva")
    if to_scope.kind == ScopeKind.NATIONAL:
        raise InvalidTransferScopeException("El nivel nacional no puede recibir transferencias")
    await ensure_scope_exists(db, from_scope)
    await ensure_scope_exists(db, to_scope)
    await validate_transfer_scopes(db, from_scope, to_scope)

    vaccine = await db.get(Vaccine, data.vaccine_id)
    if not vaccine:
        raise NotFoundException("Vacuna", "Vacuna no encontrada")

    async with unit_of_work(db):
        allocations = await reservation_service.allocate_fefo(
            db, vaccine.id, from_scope, data.quantity, today()
        )
        transfer = StockTransfer(
            vaccine_id=vaccine.id,
            from_kind=from_scope.kind,
            from_id=from_scope.scope_id,
            to_kind=to_scope.kind,
            to_id=to_scope.scope_id,
            quantity=data.quantity,
            status=TransferStatus.PENDING,
            created_by=created_by,
        )
        db.add(transfer)
        await db.flush()
        db.add_all([
            StockTransferLot(
                transfer_id=transfer.id,
                position=position,
                lot_id=allocation.lot_id,
                quantity=allocation.quantity,
            )
            for position, allocation in enumerate(allocations)
        ])
        await db.flush()

    transfer = await _load_transfer(db, transfer.id)
    logger.info(
        f"Transferencia {transfer.id} creada: {data.quantity} dosis de {vaccine.name} "
        f"de {from_scope} a {to_scope}"
    )
    await _notify(db, Event.TRANSFER_SENT, transfer)
    await notification_service.check_stock_level(db, vaccine.id, from_scope)
    return await _transfer_to_response(db, transfer)


# ── Confirmar ─────────────────────────────────────────


async def confirm_transfer(
    db: AsyncSession,
    transfer_id: UUID,
    confirmed_by: UUID | None = None,
    acting_scope: Scope | None = None,
) -> TransferResponse:
    """El receptor acepta: cada asignación se divide hacia un lote propio."""
    async with unit_of_work(db):
        transfer = await _load_transfer(db, transfer_id, lock=True)
        if acting_scope is not None and acting_scope != _to_scope(transfer):
            raise ForbiddenException("Solo el destinatario puede confirmar la transferencia")
        if transfer.status != TransferStatus.PENDING:
            raise AlreadyProcessedException(
                f"La transferencia ya fue {'confirmada' if transfer.status == TransferStatus.CONFIRMED else 'cancelada'}"
            )

        destination = _to_scope(transfer)
        for allocation in transfer.allocations:
            derived = await lot_ledger.split(
                db, allocation.lot_id, allocation.quantity, destination, from_held=True
            )
            allocation.derived_lot_id = derived.id

        transfer.status = TransferStatus.CONFIRMED
        transfer.confirmed_at = utcnow()
        transfer.confirmed_by = confirmed_by
        await db.flush()

    logger.info(f"Transferencia {transfer_id} confirmada por {confirmed_by}")
    await _notify(db, Event.TRANSFER_CONFIRMED, transfer)
    return await _transfer_to_response(db, transfer)


# ── Cancelar / Rechazar ───────────────────────────────


async def cancel_transfer(
    db: AsyncSession,
    transfer_id: UUID,
    cancelled_by: UUID | None = None,
    reason: TransferCancelReason = TransferCancelReason.CANCELLED_BY_SENDER,
    acting_scope: Scope | None = None,
) -> TransferResponse:
    """
    Libera en el emisor todo lo retenido y deja la transferencia CANCELLED.
    Repetir la cancelación es un no-op; cancelar una confirmada es un error.
    """
    async with unit_of_work(db):
        transfer = await _load_transfer(db, transfer_id, lock=True)
        if acting_scope is not None:
            expected = (
                _to_scope(transfer)
                if reason == TransferCancelReason.REJECTED_BY_RECEIVER
                else _from_scope(transfer)
            )
            if acting_scope != expected:
                raise ForbiddenException("No puede anular una transferencia de otro ámbito")

        if transfer.status == TransferStatus.CANCELLED:
            logger.info(f"Transferencia {transfer_id} ya estaba cancelada")
            return await _transfer_to_response(db, transfer)
        if transfer.status == TransferStatus.CONFIRMED:
            raise AlreadyProcessedException("La transferencia ya fue confirmada")

        for allocation in transfer.allocations:
            await lot_ledger.release(db, allocation.lot_id, allocation.quantity)

        transfer.status = TransferStatus.CANCELLED
        transfer.cancelled_at = utcnow()
        transfer.cancelled_by = cancelled_by
        transfer.cancel_reason = reason
        await db.flush()

    logger.info(f"Transferencia {transfer_id} anulada ({reason.value})")
    event = (
        Event.TRANSFER_REJECTED
        if reason == TransferCancelReason.REJECTED_BY_RECEIVER
        else Event.TRANSFER_CANCELLED
    )
    await _notify(db, event, transfer)
    return await _transfer_to_response(db, transfer)


async def reject_transfer(
    db: AsyncSession,
    transfer_id: UUID,
    rejected_by: UUID | None = None,
    acting_scope: Scope | None = None,
) -> TransferResponse:
    """El receptor rechaza: mismo efecto que cancelar, con otro motivo."""
    return await cancel_transfer(
        db,
        transfer_id,
        cancelled_by=rejected_by,
        reason=TransferCancelReason.REJECTED_BY_RECEIVER,
        acting_scope=acting_scope,
    )


# ── Consultas ─────────────────────────────────────────


async def get_transfer(db: AsyncSession, transfer_id: UUID) -> TransferResponse:
    transfer = await _load_transfer(db, transfer_id)
    return await _transfer_to_response(db, transfer)


async def _list(
    db: AsyncSession, filters: list, page: int, size: int
) -> TransferListResponse:
    total_result = await db.execute(
        select(func.count()).select_from(StockTransfer).where(*filters)
    )
    total = total_result.scalar() or 0

    result = await db.execute(
        select(StockTransfer)
        .where(*filters)
        .order_by(StockTransfer.created_at.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    transfers = result.unique().scalars().all()

    return TransferListResponse(
        items=[await _transfer_to_response(db, t) for t in transfers],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total else 0,
    )


async def list_pending_for_receiver(
    db: AsyncSession, scope: Scope, page: int = 1, size: int = 20
) -> TransferListResponse:
    """Transferencias que el ámbito debe confirmar o rechazar."""
    return await _list(db, [
        _scope_clause(StockTransfer.to_kind, StockTransfer.to_id, scope),
        StockTransfer.status == TransferStatus.PENDING,
    ], page, size)


async def list_pending_for_sender(
    db: AsyncSession, scope: Scope, page: int = 1, size: int = 20
) -> TransferListResponse:
    """Transferencias enviadas por el ámbito aún sin respuesta."""
    return await _list(db, [
        _scope_clause(StockTransfer.from_kind, StockTransfer.from_id, scope),
        StockTransfer.status == TransferStatus.PENDING,
    ], page, size)


async def list_transfer_history(
    db: AsyncSession,
    scope: Scope,
    page: int = 1,
    size: int = 20,
    status: TransferStatus | None = None,
) -> TransferListResponse:
    """Historial de transferencias enviadas o recibidas por el ámbito."""
    filters = [
        or_(
            _scope_clause(StockTransfer.from_kind, StockTransfer.from_id, scope),
            _scope_clause(StockTransfer.to_kind, StockTransfer.to_id, scope),
        )
    ]
    if status:
        filters.append(StockTransfer.status == status)
    return await _list(db, filters, page, size)
