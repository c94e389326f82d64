"""
Endpoints de solicitudes de vacunación de los padres.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.auth.dependencies import Principal, require_role
from vaxstock.auth.rbac import Role, roles_for
from vaxstock.database import get_db
from vaxstock.models.vaccination import RequestStatus
from vaxstock.schemas.vaccine_request import (
    VaccineRequestCreate,
    VaccineRequestListResponse,
    VaccineRequestResponse,
    VaccineRequestSchedule,
)
from vaxstock.services import vaccine_request_service

router = APIRouter()


@router.post("/children/{child_id}", response_model=VaccineRequestResponse, status_code=201)
async def create_request(
    child_id: UUID,
    data: VaccineRequestCreate,
    principal: Principal = Depends(require_role(*roles_for("vaccine_request", "create"))),
    db: AsyncSession = Depends(get_db),
):
    """Registra una solicitud PENDING; no reserva stock."""
    return await vaccine_request_service.create_request(
        db, child_id, data, requested_by=principal.user_id
    )


@router.get("", response_model=VaccineRequestListResponse)
async def list_requests(
    status: RequestStatus | None = Query(None),
    child_id: UUID | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_role(*roles_for("vaccine_request", "read"))),
    db: AsyncSession = Depends(get_db),
):
    """Solicitudes del centro del agente (todas para SUPERADMIN)."""
    health_center_id = principal.scope_id if principal.role == Role.AGENT else None
    return await vaccine_request_service.list_requests(
        db,
        health_center_id=health_center_id,
        child_id=child_id,
        status=status,
        page=page,
        size=size,
    )


@router.post("/{request_id}/schedule", response_model=VaccineRequestResponse)
async def schedule_request(
    request_id: UUID,
    data: VaccineRequestSchedule,
    principal: Principal = Depends(require_role(*roles_for("vaccine_request", "schedule"))),
    db: AsyncSession = Depends(get_db),
):
    """Convierte la solicitud en cita con reserva de stock."""
    return await vaccine_request_service.schedule_request(
        db, request_id, data, scheduled_by=principal.user_id
    )


@router.delete("/{request_id}", response_model=VaccineRequestResponse)
async def cancel_request(
    request_id: UUID,
    principal: Principal = Depends(require_role(*roles_for("vaccine_request", "schedule"))),
    db: AsyncSession = Depends(get_db),
):
    return await vaccine_request_service.cancel_request(
        db, request_id, cancelled_by=principal.user_id
    )
