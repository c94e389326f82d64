"""
Endpoints del flujo de transferencias entre niveles.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.auth.dependencies import (
    Principal,
    acting_scope,
    ensure_scope_access,
    require_role,
)
from vaxstock.auth.rbac import roles_for
from vaxstock.database import get_db
from vaxstock.models.stock import TransferStatus
from vaxstock.schemas.transfer import (
    TransferCreate,
    TransferListResponse,
    TransferResponse,
)
from vaxstock.services import transfer_service
from vaxstock.services.hierarchy_service import Scope

router = APIRouter()


@router.post("", response_model=TransferResponse, status_code=201)
async def create_transfer(
    data: TransferCreate,
    principal: Principal = Depends(require_role(*roles_for("transfer", "create"))),
    db: AsyncSession = Depends(get_db),
):
    """Envía stock a un hijo directo; la cantidad queda retenida hasta confirmar."""
    ensure_scope_access(principal, Scope(data.from_scope.kind, data.from_scope.id))
    return await transfer_service.create_transfer(db, data, created_by=principal.user_id)


# ── Bandejas ──────────────────────────────────────────

@router.get("/incoming", response_model=TransferListResponse)
async def list_incoming(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_role(*roles_for("transfer", "read"))),
    db: AsyncSession = Depends(get_db),
):
    """Transferencias pendientes de confirmar por el ámbito del usuario."""
    return await transfer_service.list_pending_for_receiver(
        db, principal.scope, page=page, size=size
    )


@router.get("/outgoing", response_model=TransferListResponse)
async def list_outgoing(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_role(*roles_for("transfer", "read"))),
    db: AsyncSession = Depends(get_db),
):
    """Transferencias enviadas aún sin respuesta."""
    return await transfer_service.list_pending_for_sender(
        db, principal.scope, page=page, size=size
    )


@router.get("/history", response_model=TransferListResponse)
async def list_history(
    status: TransferStatus | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_role(*roles_for("transfer", "read"))),
    db: AsyncSession = Depends(get_db),
):
    return await transfer_service.list_transfer_history(
        db, principal.scope, page=page, size=size, status=status
    )


@router.get("/{transfer_id}", response_model=TransferResponse)
async def get_transfer(
    transfer_id: UUID,
    principal: Principal = Depends(require_role(*roles_for("transfer", "read"))),
    db: AsyncSession = Depends(get_db),
):
    return await transfer_service.get_transfer(db, transfer_id)


# ── Transiciones ──────────────────────────────────────

@router.post("/{transfer_id}/confirm", response_model=TransferResponse)
async def confirm_transfer(
    transfer_id: UUID,
    principal: Principal = Depends(require_role(*roles_for("transfer", "confirm"))),
    db: AsyncSession = Depends(get_db),
):
    """El receptor acepta la transferencia; se crean sus lotes derivados."""
    return await transfer_service.confirm_transfer(
        db, transfer_id, confirmed_by=principal.user_id, acting_scope=acting_scope(principal)
    )


@router.post("/{transfer_id}/reject", response_model=TransferResponse)
async def reject_transfer(
    transfer_id: UUID,
    principal: Principal = Depends(require_role(*roles_for("transfer", "confirm"))),
    db: AsyncSession = Depends(get_db),
):
    """El receptor rechaza; el stock vuelve al emisor."""
    return await transfer_service.reject_transfer(
        db, transfer_id, rejected_by=principal.user_id, acting_scope=acting_scope(principal)
    )


@router.post("/{transfer_id}/cancel", response_model=TransferResponse)
async def cancel_transfer(
    transfer_id: UUID,
    principal: Principal = Depends(require_role(*roles_for("transfer", "create"))),
    db: AsyncSession = Depends(get_db),
):
    """El emisor anula una transferencia pendiente."""
    return await transfer_service.cancel_transfer(
        db, transfer_id, cancelled_by=principal.user_id, acting_scope=acting_scope(principal)
    )
