"""
Endpoints de la agenda de vacunación.
Citas con reserva de stock, dosis aplicadas y línea de tiempo del niño.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.auth.dependencies import Principal, require_role
from vaxstock.auth.rbac import Role, roles_for
from vaxstock.core.exceptions import ForbiddenException
from vaxstock.database import get_db, unit_of_work
from vaxstock.models.vaccination import ScheduledVaccination
from vaxstock.schemas.vaccination import (
    ChildTimelineResponse,
    CompletedVaccinationResponse,
    CompleteVaccinationRequest,
    ScheduledVaccinationCreate,
    ScheduledVaccinationResponse,
    ScheduledVaccinationUpdate,
)
from vaxstock.services import scheduling_service, timeline_service

router = APIRouter()


async def _ensure_child_access(db: AsyncSession, principal: Principal, child_id: UUID) -> None:
    """Un agente solo opera sobre niños de su propio centro de salud."""
    if principal.role != Role.AGENT:
        return
    child = await scheduling_service.get_child(db, child_id)
    if child.health_center_id != principal.scope_id:
        raise ForbiddenException("El niño pertenece a otro centro de salud")


async def _ensure_scheduled_access(
    db: AsyncSession, principal: Principal, scheduled_id: UUID
) -> None:
    """Misma regla para operar sobre una cita existente."""
    if principal.role != Role.AGENT:
        return
    scheduled = await db.get(ScheduledVaccination, scheduled_id)
    if scheduled is not None:
        await _ensure_child_access(db, principal, scheduled.child_id)


# ── Citas ──────────────────────────────────────────────

@router.post("/scheduled", response_model=ScheduledVaccinationResponse, status_code=201)
async def schedule_vaccination(
    data: ScheduledVaccinationCreate,
    principal: Principal = Depends(require_role(*roles_for("vaccination", "create"))),
    db: AsyncSession = Depends(get_db),
):
    """Programa una dosis reservando stock del centro del niño."""
    await _ensure_child_access(db, principal, data.child_id)
    return await scheduling_service.schedule_vaccination(db, data, planner_id=principal.user_id)


@router.patch("/scheduled/{scheduled_id}", response_model=ScheduledVaccinationResponse)
async def reschedule_vaccination(
    scheduled_id: UUID,
    data: ScheduledVaccinationUpdate,
    principal: Principal = Depends(require_role(*roles_for("vaccination", "update"))),
    db: AsyncSession = Depends(get_db),
):
    """Cambia la fecha o la vacuna de una cita; la reserva se vuelve a tomar."""
    await _ensure_scheduled_access(db, principal, scheduled_id)
    return await scheduling_service.reschedule_vaccination(
        db, scheduled_id, data, planner_id=principal.user_id
    )


@router.delete("/scheduled/{scheduled_id}", status_code=204)
async def cancel_scheduled_vaccination(
    scheduled_id: UUID,
    principal: Principal = Depends(require_role(*roles_for("vaccination", "update"))),
    db: AsyncSession = Depends(get_db),
):
    """Cancela la cita y libera su reserva. Repetir la llamada no tiene efecto."""
    await _ensure_scheduled_access(db, principal, scheduled_id)
    await scheduling_service.cancel_scheduled_vaccination(db, scheduled_id)


@router.post(
    "/scheduled/{scheduled_id}/complete",
    response_model=CompletedVaccinationResponse,
    status_code=201,
)
async def complete_vaccination(
    scheduled_id: UUID,
    data: CompleteVaccinationRequest,
    principal: Principal = Depends(require_role(*roles_for("vaccination", "update"))),
    db: AsyncSession = Depends(get_db),
):
    """Registra la dosis aplicada y consume la reserva."""
    await _ensure_scheduled_access(db, principal, scheduled_id)
    return await scheduling_service.complete_vaccination(
        db, scheduled_id, administered_by=principal.user_id, notes=data.notes
    )


@router.post("/scheduled/{scheduled_id}/miss", status_code=204)
async def mark_missed(
    scheduled_id: UUID,
    principal: Principal = Depends(require_role(*roles_for("vaccination", "update"))),
    db: AsyncSession = Depends(get_db),
):
    """Marca la cita como perdida: la dosis pasa a OVERDUE."""
    await _ensure_scheduled_access(db, principal, scheduled_id)
    await scheduling_service.mark_missed(db, scheduled_id)


# ── Línea de tiempo ───────────────────────────────────

@router.get("/children/{child_id}/timeline", response_model=ChildTimelineResponse)
async def get_child_timeline(
    child_id: UUID,
    principal: Principal = Depends(require_role(*roles_for("vaccination", "read"))),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_child_access(db, principal, child_id)
    return await timeline_service.get_child_timeline(db, child_id)


@router.post("/children/{child_id}/timeline/rebuild", response_model=ChildTimelineResponse)
async def rebuild_child_timeline(
    child_id: UUID,
    principal: Principal = Depends(require_role(*roles_for("vaccination", "update"))),
    db: AsyncSession = Depends(get_db),
):
    """Recalcula las dosis DUE/LATE del niño a partir del calendario."""
    await _ensure_child_access(db, principal, child_id)
    async with unit_of_work(db):
        await timeline_service.rebuild_child_buckets(db, child_id)
    return await timeline_service.get_child_timeline(db, child_id)
