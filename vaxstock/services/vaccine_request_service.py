"""
Servicio de solicitudes de vacunación iniciadas por los padres.

PENDING → SCHEDULED | CANCELLED. La solicitud no reserva stock; la reserva
se toma al programarla, dentro de la misma transacción que la cita.
"""

import logging
import math
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.core.dates import as_utc
from vaxstock.core.exceptions import AlreadyProcessedException, NotFoundException
from vaxstock.database import unit_of_work
from vaxstock.models.child import Child
from vaxstock.models.vaccination import RequestStatus, VaccineRequest
from vaxstock.schemas.vaccine_request import (
    VaccineRequestCreate,
    VaccineRequestListResponse,
    VaccineRequestResponse,
    VaccineRequestSchedule,
)
from vaxstock.services import notification_service, scheduling_service
from vaxstock.services.dose_resolver import ensure_gender_compatible, resolve_dose
from vaxstock.services.notification_service import Event

logger = logging.getLogger(__name__)


def _request_to_response(request: VaccineRequest) -> VaccineRequestResponse:
    return VaccineRequestResponse(
        id=request.id,
        child_id=request.child_id,
        child_name=request.child.full_name if request.child else None,
        vaccine_id=request.vaccine_id,
        vaccine_name=request.vaccine.name if request.vaccine else None,
        vaccine_calendar_id=request.vaccine_calendar_id,
        dose=request.dose,
        status=request.status,
        requested_by=request.requested_by,
        requested_at=as_utc(request.requested_at),
        scheduled_for=as_utc(request.scheduled_for) if request.scheduled_for else None,
        scheduled_by=request.scheduled_by,
        scheduled_vaccination_id=request.scheduled_vaccination_id,
        notes=request.notes,
    )


async def _load_request(
    db: AsyncSession, request_id: UUID, lock: bool = False
) -> VaccineRequest:
    query = (
        select(VaccineRequest)
        .where(VaccineRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        query = query.with_for_update(of=VaccineRequest)
    result = await db.execute(query)
    request = result.unique().scalar_one_or_none()
    if not request:
        raise NotFoundException("Solicitud", "Solicitud de vacunación no encontrada")
    return request


def _ensure_pending(request: VaccineRequest) -> None:
    if request.status != RequestStatus.PENDING:
        raise AlreadyProcessedException(
            f"La solicitud ya está en estado {request.status.value}"
        )


# ── Crear ─────────────────────────────────────────────


async def create_request(
    db: AsyncSession,
    child_id: UUID,
    data: VaccineRequestCreate,
    requested_by: UUID | None = None,
) -> VaccineRequestResponse:
    """
    Registra una solicitud PENDING. La dosis se resuelve igual que al
    programar, pero aquí no se aplica el tope de dosis requeridas: se
    rechazan en cambio las solicitudes duplicadas para la misma dosis.
    """
    async with unit_of_work(db):
        child = await scheduling_service.get_child(db, child_id)
        vaccine = await scheduling_service.get_vaccine(db, data.vaccine_id)
        ensure_gender_compatible(vaccine, child)
        resolution = await resolve_dose(
            db,
            child.id,
            vaccine,
            data.vaccine_calendar_id,
            data.dose,
            enforce_cap=False,
            reject_duplicates=True,
        )
        request = VaccineRequest(
            child_id=child.id,
            vaccine_id=vaccine.id,
            vaccine_calendar_id=data.vaccine_calendar_id,
            dose=resolution.dose,
            status=RequestStatus.PENDING,
            requested_by=requested_by,
            notes=data.notes,
        )
        db.add(request)
        await db.flush()

    request = await _load_request(db, request.id)
    logger.info(
        f"Solicitud {request.id} creada: niño {child.id}, {vaccine.name} dosis {request.dose}"
    )
    notification_service.dispatch(Event.REQUEST_CREATED, {
        "request_id": request.id,
        "child_id": child.id,
        "child_name": child.full_name,
        "health_center_id": child.health_center_id,
        "vaccine_id": vaccine.id,
        "vaccine_name": vaccine.name,
        "dose": request.dose,
    })
    return _request_to_response(request)


# ── Programar ─────────────────────────────────────────


async def schedule_request(
    db: AsyncSession,
    request_id: UUID,
    data: VaccineRequestSchedule,
    scheduled_by: UUID | None = None,
) -> VaccineRequestResponse:
    """
    Convierte una solicitud PENDING en cita con reserva de stock. Si falla
    cualquier paso la solicitud sigue PENDING y no queda nada retenido.
    """
    async with unit_of_work(db):
        request = await _load_request(db, request_id, lock=True)
        _ensure_pending(request)
        child = await db.get(Child, request.child_id)
        vaccine = await scheduling_service.get_vaccine(db, request.vaccine_id)

        scheduled = await scheduling_service.schedule_in_session(
            db,
            child,
            vaccine,
            data.scheduled_for,
            planner_id=scheduled_by,
            calendar_id=request.vaccine_calendar_id,
            requested_dose=request.dose,
            notes=data.notes if data.notes is not None else request.notes,
        )
        request.status = RequestStatus.SCHEDULED
        request.scheduled_for = scheduled.scheduled_for
        request.scheduled_by = scheduled_by
        request.scheduled_vaccination_id = scheduled.id
        if data.notes is not None:
            request.notes = data.notes
        await db.flush()

    logger.info(f"Solicitud {request_id} programada como cita {scheduled.id}")
    notification_service.dispatch(Event.DOSE_SCHEDULED, {
        "request_id": request.id,
        "child_id": child.id,
        "child_name": child.full_name,
        "vaccine_id": vaccine.id,
        "vaccine_name": vaccine.name,
        "dose": scheduled.dose,
        "scheduled_for": as_utc(scheduled.scheduled_for),
    })
    await notification_service.check_stock_level(
        db, vaccine.id, scheduling_service.health_center_scope(child)
    )
    request = await _load_request(db, request_id)
    return _request_to_response(request)


# ── Cancelar ──────────────────────────────────────────


async def cancel_request(
    db: AsyncSession, request_id: UUID, cancelled_by: UUID | None = None
) -> VaccineRequestResponse:
    async with unit_of_work(db):
        request = await _load_request(db, request_id, lock=True)
        _ensure_pending(request)
        request.status = RequestStatus.CANCELLED
        await db.flush()

    logger.info(f"Solicitud {request_id} cancelada por {cancelled_by}")
    return _request_to_response(request)


# ── Consultas ─────────────────────────────────────────


async def list_requests(
    db: AsyncSession,
    health_center_id: UUID | None = None,
    child_id: UUID | None = None,
    status: RequestStatus | None = None,
    page: int = 1,
    size: int = 20,
) -> VaccineRequestListResponse:
    filters = []
    if health_center_id:
        filters.append(VaccineRequest.child_id.in_(
            select(Child.id).where(Child.health_center_id == health_center_id)
        ))
    if child_id:
        filters.append(VaccineRequest.child_id == child_id)
    if status:
        filters.append(VaccineRequest.status == status)

    total_result = await db.execute(
        select(func.count()).select_from(VaccineRequest).where(*filters)
    )
    total = total_result.scalar() or 0

    result = await db.execute(
        select(VaccineRequest)
        .where(*filters)
        .order_by(VaccineRequest.requested_at.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    requests = result.unique().scalars().all()

    return VaccineRequestListResponse(
        items=[_request_to_response(r) for r in requests],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total else 0,
    )
