"""
Endpoints de stock: lotes por ámbito y vista agregada.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.auth.dependencies import Principal, ensure_scope_access, require_role
from vaxstock.auth.rbac import roles_for
from vaxstock.core.exceptions import ValidationException
from vaxstock.database import get_db
from vaxstock.models.hierarchy import ScopeKind
from vaxstock.models.vaccine import Vaccine
from vaxstock.schemas.stock import (
    LotCreate,
    LotListResponse,
    LotResponse,
    ScopeStockSummary,
    StockSummaryResponse,
)
from vaxstock.services import lot_ledger, stock_view
from vaxstock.services.hierarchy_service import Scope

router = APIRouter()


def _requested_scope(
    principal: Principal, kind: ScopeKind | None, scope_id: UUID | None
) -> Scope:
    """Ámbito de la consulta; por defecto el del usuario."""
    if kind is None:
        return principal.scope
    if kind != ScopeKind.NATIONAL and scope_id is None:
        raise ValidationException(f"El nivel {kind.value} requiere scope_id")
    scope = Scope(kind, None if kind == ScopeKind.NATIONAL else scope_id)
    ensure_scope_access(principal, scope)
    return scope


# ── Lotes ──────────────────────────────────────────────

@router.post("/lots", response_model=LotResponse, status_code=201)
async def add_lot(
    data: LotCreate,
    principal: Principal = Depends(require_role(*roles_for("stock_lot", "create"))),
    db: AsyncSession = Depends(get_db),
):
    """Ingreso de stock nuevo (sin linaje) en un ámbito."""
    scope = Scope(data.scope.kind, data.scope.id)
    ensure_scope_access(principal, scope)
    lot = await lot_ledger.add_fresh(
        db, data.vaccine_id, scope, data.quantity, data.expiration_date
    )
    vaccine = await db.get(Vaccine, lot.vaccine_id)
    return lot_ledger.lot_to_response(lot, vaccine_name=vaccine.name if vaccine else None)


@router.get("/lots", response_model=LotListResponse)
async def list_lots(
    scope_kind: ScopeKind | None = Query(None),
    scope_id: UUID | None = Query(None),
    vaccine_id: UUID | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(require_role(*roles_for("stock_lot", "read"))),
    db: AsyncSession = Depends(get_db),
):
    """Lotes del ámbito, incluidos agotados y vencidos, con su linaje."""
    scope = _requested_scope(principal, scope_kind, scope_id)
    return await lot_ledger.list_lots(db, scope, vaccine_id=vaccine_id, page=page, size=size)


@router.delete("/lots/{lot_id}", status_code=204)
async def remove_lot(
    lot_id: UUID,
    principal: Principal = Depends(require_role(*roles_for("stock_lot", "delete"))),
    db: AsyncSession = Depends(get_db),
):
    """Da de baja un lote agotado o vencido sin dosis retenidas."""
    lot = await lot_ledger.get_lot(db, lot_id)
    ensure_scope_access(principal, Scope(lot.scope_kind, lot.scope_id))
    await lot_ledger.remove_lot(db, lot_id)


# ── Vista agregada ────────────────────────────────────

@router.get("/summary", response_model=list[StockSummaryResponse])
async def stock_summary(
    scope_kind: ScopeKind | None = Query(None),
    scope_id: UUID | None = Query(None),
    vaccine_id: UUID | None = Query(None),
    principal: Principal = Depends(require_role(*roles_for("stock_lot", "read"))),
    db: AsyncSession = Depends(get_db),
):
    """Resumen por vacuna del ámbito (solo informativo)."""
    scope = _requested_scope(principal, scope_kind, scope_id)
    if vaccine_id:
        return [await stock_view.get_stock_summary(db, vaccine_id, scope)]
    return await stock_view.list_stock_summaries(db, scope)


@router.get("/summary/children", response_model=list[ScopeStockSummary])
async def children_summary(
    principal: Principal = Depends(require_role(*roles_for("stock_lot", "read"))),
    db: AsyncSession = Depends(get_db),
):
    """Resumen de stock de cada hijo directo del ámbito del usuario."""
    return await stock_view.summaries_for_children(db, principal.scope)
