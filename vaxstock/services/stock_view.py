"""
Vista agregada de stock por (vacuna, ámbito).

Se calcula siempre a partir de los lotes; no existe un contador de stock
persistido que pueda desincronizarse. Es solo para mostrar: ninguna
decisión de retención consulta estos totales.
"""

from collections import defaultdict
from datetime import date
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.core.dates import today
from vaxstock.models.stock import LotStatus, StockLot
from vaxstock.models.vaccine import Vaccine
from vaxstock.schemas.stock import ScopeStockSummary, StockSummaryResponse
from vaxstock.services import lot_ledger
from vaxstock.services.hierarchy_service import Scope, child_scopes, scope_name


def summarize_lots(
    lots: list[StockLot],
    vaccine_id: UUID,
    scope: Scope,
    reference: date,
    vaccine_name: str | None = None,
) -> StockSummaryResponse:
    """
    Agrega los lotes de una vacuna en un ámbito.

    - total_remaining: restante de lotes vigentes.
    - lot_count: lotes con dosis restantes o retenidas.
    - expired_*: lotes vencidos que aún tienen dosis restantes.
    - nearest_expiration_date: vencimiento más próximo entre lotes vigentes con saldo.
    """
    summary = StockSummaryResponse(
        vaccine_id=vaccine_id,
        vaccine_name=vaccine_name,
        scope_kind=scope.kind,
        scope_id=scope.scope_id,
    )
    for lot in lots:
        if lot.remaining_quantity + lot.held_quantity > 0:
            summary.lot_count += 1
        summary.held_total += lot.held_quantity

        if lot.status_on(reference) == LotStatus.EXPIRED:
            if lot.remaining_quantity > 0:
                summary.expired_lot_count += 1
                summary.expired_quantity += lot.remaining_quantity
            continue

        summary.total_remaining += lot.remaining_quantity
        if lot.remaining_quantity > 0 and (
            summary.nearest_expiration_date is None
            or lot.expiration_date < summary.nearest_expiration_date
        ):
            summary.nearest_expiration_date = lot.expiration_date
    return summary


async def _load_scope_lots(
    db: AsyncSession, scope: Scope, vaccine_id: UUID | None = None
) -> list[tuple[StockLot, str]]:
    filters = [
        *lot_ledger.scope_filter(scope),
        or_(StockLot.remaining_quantity > 0, StockLot.held_quantity > 0),
    ]
    if vaccine_id:
        filters.append(StockLot.vaccine_id == vaccine_id)
    result = await db.execute(
        select(StockLot, Vaccine.name)
        .join(Vaccine, Vaccine.id == StockLot.vaccine_id)
        .where(*filters)
        .order_by(Vaccine.name, StockLot.expiration_date)
    )
    return list(result.all())


async def get_stock_summary(
    db: AsyncSession, vaccine_id: UUID, scope: Scope
) -> StockSummaryResponse:
    rows = await _load_scope_lots(db, scope, vaccine_id)
    vaccine = await db.get(Vaccine, vaccine_id)
    return summarize_lots(
        [lot for lot, _ in rows],
        vaccine_id,
        scope,
        today(),
        vaccine.name if vaccine else None,
    )


async def list_stock_summaries(
    db: AsyncSession, scope: Scope
) -> list[StockSummaryResponse]:
    """Un resumen por cada vacuna con stock en el ámbito."""
    rows = await _load_scope_lots(db, scope)
    by_vaccine: dict[UUID, list[StockLot]] = defaultdict(list)
    names: dict[UUID, str] = {}
    for lot, vaccine_name in rows:
        by_vaccine[lot.vaccine_id].append(lot)
        names[lot.vaccine_id] = vaccine_name

    reference = today()
    return [
        summarize_lots(lots, vaccine_id, scope, reference, names[vaccine_id])
        for vaccine_id, lots in by_vaccine.items()
    ]


async def summaries_for_children(
    db: AsyncSession, parent: Scope
) -> list[ScopeStockSummary]:
    """Resúmenes de cada hijo directo del ámbito (vista del nivel superior)."""
    items = []
    for child in await child_scopes(db, parent):
        items.append(ScopeStockSummary(
            scope_kind=child.kind,
            scope_id=child.scope_id,
            scope_name=await scope_name(db, child),
            summaries=await list_stock_summaries(db, child),
        ))
    return items


async def allocatable_total(
    db: AsyncSession, vaccine_id: UUID, scope: Scope, not_before: date | None = None
) -> int:
    """Total asignable para mostrar o alertar; nunca decide una retención."""
    lots = await lot_ledger.list_allocatable(
        db, vaccine_id, scope, not_before or today()
    )
    return sum(lot.remaining_quantity for lot in lots)
