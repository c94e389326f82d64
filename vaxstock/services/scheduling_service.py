"""
Servicio de agenda de vacunación.

Cada operación es una unidad atómica: reserva de stock, cita, filas de
reserva, renumeración de dosis y puntero de próxima cita se confirman
juntos o no se confirma nada. Las notificaciones salen después del commit.
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.config import get_settings
from vaxstock.core.dates import as_utc, today, utcnow
from vaxstock.core.exceptions import (
    InvalidDoseException,
    NotFoundException,
    ValidationException,
)
from vaxstock.database import unit_of_work
from vaxstock.models.child import Child
from vaxstock.models.hierarchy import ScopeKind
from vaxstock.models.vaccination import (
    BucketKind,
    ChildVaccineBucket,
    CompletedVaccination,
    ScheduledVaccination,
    VaccineRequest,
)
from vaxstock.models.vaccine import Vaccine
from vaxstock.schemas.vaccination import (
    CompletedVaccinationResponse,
    ReservationResponse,
    ScheduledVaccinationCreate,
    ScheduledVaccinationResponse,
    ScheduledVaccinationUpdate,
)
from vaxstock.services import (
    dose_sequencer,
    notification_service,
    reservation_service,
    timeline_service,
)
from vaxstock.services.dose_resolver import ensure_gender_compatible, resolve_dose
from vaxstock.services.hierarchy_service import Scope, scope_name
from vaxstock.services.notification_service import Event

logger = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────


def health_center_scope(child: Child) -> Scope:
    return Scope(ScopeKind.HEALTH_CENTER, child.health_center_id)


async def get_child(db: AsyncSession, child_id: UUID) -> Child:
    child = await db.get(Child, child_id)
    if not child:
        raise NotFoundException("Niño", "Niño no encontrado")
    return child


async def get_vaccine(db: AsyncSession, vaccine_id: UUID) -> Vaccine:
    vaccine = await db.get(Vaccine, vaccine_id)
    if not vaccine:
        raise NotFoundException("Vacuna", "Vacuna no encontrada")
    return vaccine


async def _get_scheduled(
    db: AsyncSession, scheduled_id: UUID, lock: bool = False
) -> ScheduledVaccination | None:
    query = (
        select(ScheduledVaccination)
        .where(ScheduledVaccination.id == scheduled_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        query = query.with_for_update(of=ScheduledVaccination)
    result = await db.execute(query)
    return result.unique().scalar_one_or_none()


async def _scheduled_to_response(
    db: AsyncSession, scheduled: ScheduledVaccination
) -> ScheduledVaccinationResponse:
    vaccine = await db.get(Vaccine, scheduled.vaccine_id)
    reservations = await reservation_service.get_reservations(db, scheduled.id)
    return ScheduledVaccinationResponse(
        id=scheduled.id,
        child_id=scheduled.child_id,
        vaccine_id=scheduled.vaccine_id,
        vaccine_name=vaccine.name if vaccine else None,
        vaccine_calendar_id=scheduled.vaccine_calendar_id,
        health_center_id=scheduled.health_center_id,
        scheduled_for=as_utc(scheduled.scheduled_for),
        dose=scheduled.dose,
        planner_id=scheduled.planner_id,
        notes=scheduled.notes,
        reservations=[ReservationResponse.model_validate(r) for r in reservations],
    )


def _completed_to_response(
    completed: CompletedVaccination, vaccine: Vaccine
) -> CompletedVaccinationResponse:
    return CompletedVaccinationResponse(
        id=completed.id,
        child_id=completed.child_id,
        vaccine_id=completed.vaccine_id,
        vaccine_name=vaccine.name,
        vaccine_calendar_id=completed.vaccine_calendar_id,
        dose=completed.dose,
        administered_at=as_utc(completed.administered_at),
        administered_by=completed.administered_by,
        notes=completed.notes,
    )


async def _notify(
    db: AsyncSession,
    event: Event,
    child: Child,
    vaccine: Vaccine,
    dose: int,
    scheduled_for: datetime,
) -> None:
    try:
        center = await scope_name(db, health_center_scope(child))
    except Exception as exc:
        logger.error(f"No se pudo resolver el centro del niño {child.id}: {exc}")
        center = None
    notification_service.dispatch(event, {
        "child_id": child.id,
        "child_name": child.full_name,
        "vaccine_id": vaccine.id,
        "vaccine_name": vaccine.name,
        "dose": dose,
        "scheduled_for": as_utc(scheduled_for),
        "health_center_name": center,
    })


def _ensure_future(scheduled_for: datetime) -> datetime:
    scheduled_for = as_utc(scheduled_for)
    if scheduled_for < utcnow():
        raise ValidationException("La fecha de la cita no puede estar en el pasado")
    return scheduled_for


async def refresh_next_appointment(db: AsyncSession, child: Child) -> None:
    """Apunta la caché del niño a su cita programada más temprana."""
    result = await db.execute(
        select(ScheduledVaccination)
        .where(ScheduledVaccination.child_id == child.id)
        .order_by(ScheduledVaccination.scheduled_for.asc())
        .limit(1)
    )
    upcoming = result.unique().scalar_one_or_none()
    child.next_appointment_at = upcoming.scheduled_for if upcoming else None
    child.next_vaccine_id = upcoming.vaccine_id if upcoming else None
    child.next_planner_id = upcoming.planner_id if upcoming else None
    await db.flush()


async def _reserve_for(
    db: AsyncSession, scheduled: ScheduledVaccination, child: Child
) -> None:
    allocations = await reservation_service.reserve_dose(
        db,
        scheduled.vaccine_id,
        health_center_scope(child),
        1,
        as_utc(scheduled.scheduled_for).date(),
    )
    await reservation_service.attach_reservations(db, scheduled.id, allocations)


async def _remove_scheduled(
    db: AsyncSession, scheduled: ScheduledVaccination, consume: bool
) -> None:
    """Liquida la reserva, borra la cita y renumera las restantes."""
    if consume:
        await reservation_service.consume_reservations(db, scheduled.id)
    else:
        await reservation_service.release_reservations(db, scheduled.id)

    await db.execute(
        update(VaccineRequest)
        .where(VaccineRequest.scheduled_vaccination_id == scheduled.id)
        .values(scheduled_vaccination_id=None)
    )
    child_id, vaccine_id = scheduled.child_id, scheduled.vaccine_id
    await db.delete(scheduled)
    await db.flush()
    await dose_sequencer.resequence(db, child_id, vaccine_id)


# ── Programar ─────────────────────────────────────────


async def _ensure_within_required_doses(
    db: AsyncSession, child_id: UUID, vaccine: Vaccine
) -> None:
    """La renumeración no puede dejar una cita por encima de las dosis requeridas."""
    result = await db.execute(
        select(func.max(ScheduledVaccination.dose)).where(
            ScheduledVaccination.child_id == child_id,
            ScheduledVaccination.vaccine_id == vaccine.id,
        )
    )
    highest = result.scalar()
    if highest is not None and highest > vaccine.required_dose_count:
        raise InvalidDoseException(
            f"Todas las dosis de {vaccine.name} ya fueron aplicadas o programadas "
            f"(dosis {highest} de {vaccine.required_dose_count})"
        )


async def schedule_in_session(
    db: AsyncSession,
    child: Child,
    vaccine: Vaccine,
    scheduled_for: datetime,
    planner_id: UUID | None = None,
    calendar_id: UUID | None = None,
    requested_dose: int | None = None,
    notes: str | None = None,
) -> ScheduledVaccination:
    """
    Pasos de la programación dentro de la transacción del llamador:
    sexo, dosis, reserva FEFO en el centro del niño, cita, filas de reserva,
    renumeración y próxima cita.
    """
    ensure_gender_compatible(vaccine, child)
    scheduled_for = _ensure_future(scheduled_for)
    resolution = await resolve_dose(
        db, child.id, vaccine, calendar_id, requested_dose, enforce_cap=True
    )

    allocations = await reservation_service.reserve_dose(
        db, vaccine.id, health_center_scope(child), 1, scheduled_for.date()
    )
    scheduled = ScheduledVaccination(
        child_id=child.id,
        vaccine_id=vaccine.id,
        vaccine_calendar_id=calendar_id,
        health_center_id=child.health_center_id,
        scheduled_for=scheduled_for,
        dose=resolution.dose,
        planner_id=planner_id,
        notes=notes,
    )
    db.add(scheduled)
    await db.flush()
    await reservation_service.attach_reservations(db, scheduled.id, allocations)
    await dose_sequencer.resequence(db, child.id, vaccine.id)
    await _ensure_within_required_doses(db, child.id, vaccine)
    await refresh_next_appointment(db, child)
    return scheduled


async def schedule_vaccination(
    db: AsyncSession,
    data: ScheduledVaccinationCreate,
    planner_id: UUID | None = None,
) -> ScheduledVaccinationResponse:
    """Programa una dosis con su reserva de stock."""
    async with unit_of_work(db):
        child = await get_child(db, data.child_id)
        vaccine = await get_vaccine(db, data.vaccine_id)
        scheduled = await schedule_in_session(
            db,
            child,
            vaccine,
            data.scheduled_for,
            planner_id=planner_id,
            calendar_id=data.vaccine_calendar_id,
            requested_dose=data.dose,
            notes=data.notes,
        )
        response = await _scheduled_to_response(db, scheduled)

    logger.info(
        f"Cita {scheduled.id} programada: niño {child.id}, {vaccine.name} dosis {scheduled.dose}"
    )
    await _notify(db, Event.DOSE_SCHEDULED, child, vaccine, scheduled.dose, scheduled.scheduled_for)
    await notification_service.check_stock_level(db, vaccine.id, health_center_scope(child))
    return response


async def reschedule_vaccination(
    db: AsyncSession,
    scheduled_id: UUID,
    data: ScheduledVaccinationUpdate,
    planner_id: UUID | None = None,
) -> ScheduledVaccinationResponse:
    """
    Cambia fecha y/o vacuna de una cita. La reserva se libera y se vuelve a
    tomar contra la nueva fecha o vacuna; luego se renumera.
    """
    async with unit_of_work(db):
        scheduled = await _get_scheduled(db, scheduled_id, lock=True)
        if not scheduled:
            raise NotFoundException("Cita", "Cita programada no encontrada")
        child = await get_child(db, scheduled.child_id)

        old_vaccine_id = scheduled.vaccine_id
        current_date = as_utc(scheduled.scheduled_for)
        new_date = _ensure_future(data.scheduled_for) if data.scheduled_for else current_date
        vaccine_changed = data.vaccine_id is not None and data.vaccine_id != old_vaccine_id
        date_changed = new_date != current_date

        if vaccine_changed:
            vaccine = await get_vaccine(db, data.vaccine_id)
            ensure_gender_compatible(vaccine, child)
            resolution = await resolve_dose(
                db, child.id, vaccine, data.vaccine_calendar_id, enforce_cap=True
            )
            await reservation_service.release_reservations(db, scheduled.id)
            scheduled.vaccine_id = vaccine.id
            scheduled.vaccine_calendar_id = data.vaccine_calendar_id
            scheduled.dose = resolution.dose
            scheduled.scheduled_for = new_date
            await db.flush()
            await _reserve_for(db, scheduled, child)
            await dose_sequencer.resequence(db, child.id, old_vaccine_id)
            await dose_sequencer.resequence(db, child.id, vaccine.id)
            await _ensure_within_required_doses(db, child.id, vaccine)
        else:
            vaccine = await get_vaccine(db, old_vaccine_id)
            if date_changed:
                await reservation_service.release_reservations(db, scheduled.id)
                scheduled.scheduled_for = new_date
                await db.flush()
                await _reserve_for(db, scheduled, child)
                await dose_sequencer.resequence(db, child.id, vaccine.id)

        if data.notes is not None:
            scheduled.notes = data.notes
        if planner_id is not None:
            scheduled.planner_id = planner_id
        await db.flush()
        await refresh_next_appointment(db, child)
        response = await _scheduled_to_response(db, scheduled)

    logger.info(f"Cita {scheduled_id} reprogramada para {new_date}")
    if vaccine_changed or date_changed:
        await _notify(db, Event.DOSE_RESCHEDULED, child, vaccine, scheduled.dose, new_date)
    return response


# ── Cancelar ──────────────────────────────────────────


async def cancel_scheduled_vaccination(db: AsyncSession, scheduled_id: UUID) -> bool:
    """
    Cancela una cita liberando su reserva. Si la cita ya no existe no hace
    nada y devuelve False.
    """
    async with unit_of_work(db):
        scheduled = await _get_scheduled(db, scheduled_id, lock=True)
        if not scheduled:
            logger.info(f"Cita {scheduled_id} ya no existe, nada que cancelar")
            return False
        child = await get_child(db, scheduled.child_id)
        vaccine = await get_vaccine(db, scheduled.vaccine_id)
        dose, scheduled_for = scheduled.dose, scheduled.scheduled_for
        await _remove_scheduled(db, scheduled, consume=False)
        await refresh_next_appointment(db, child)

    logger.info(f"Cita {scheduled_id} cancelada")
    await _notify(db, Event.DOSE_CANCELLED, child, vaccine, dose, scheduled_for)
    return True


# ── Completar ─────────────────────────────────────────


async def complete_vaccination(
    db: AsyncSession,
    scheduled_id: UUID,
    administered_by: UUID | None = None,
    notes: str | None = None,
) -> CompletedVaccinationResponse:
    """Registra la dosis aplicada y consume su reserva."""
    async with unit_of_work(db):
        scheduled = await _get_scheduled(db, scheduled_id, lock=True)
        if not scheduled:
            raise NotFoundException("Cita", "Cita programada no encontrada")
        if as_utc(scheduled.scheduled_for).date() > today():
            raise ValidationException("No se puede registrar una dosis antes de la fecha de la cita")

        child = await get_child(db, scheduled.child_id)
        vaccine = await get_vaccine(db, scheduled.vaccine_id)
        completed = CompletedVaccination(
            child_id=child.id,
            vaccine_id=vaccine.id,
            vaccine_calendar_id=scheduled.vaccine_calendar_id,
            dose=scheduled.dose,
            administered_at=utcnow(),
            administered_by=administered_by,
            notes=notes if notes is not None else scheduled.notes,
        )
        db.add(completed)
        scheduled_for = scheduled.scheduled_for
        await _remove_scheduled(db, scheduled, consume=True)
        await timeline_service.clear_buckets_for_completed_dose(
            db, child.id, vaccine, completed.dose
        )
        await refresh_next_appointment(db, child)
        await timeline_service.refresh_child_status(db, child)
        response = _completed_to_response(completed, vaccine)

    logger.info(f"Dosis {completed.dose} de {vaccine.name} aplicada al niño {child.id}")
    await _notify(db, Event.DOSE_COMPLETED, child, vaccine, completed.dose, scheduled_for)
    return response


# ── Citas perdidas ────────────────────────────────────


async def mark_missed(db: AsyncSession, scheduled_id: UUID) -> None:
    """Pasa la cita a OVERDUE y devuelve su dosis al stock del centro."""
    async with unit_of_work(db):
        scheduled = await _get_scheduled(db, scheduled_id, lock=True)
        if not scheduled:
            raise NotFoundException("Cita", "Cita programada no encontrada")
        child = await get_child(db, scheduled.child_id)
        vaccine = await get_vaccine(db, scheduled.vaccine_id)
        dose, scheduled_for = scheduled.dose, scheduled.scheduled_for

        existing = await db.execute(
            select(ChildVaccineBucket).where(
                ChildVaccineBucket.child_id == child.id,
                ChildVaccineBucket.vaccine_id == vaccine.id,
                ChildVaccineBucket.dose == dose,
                ChildVaccineBucket.kind == BucketKind.OVERDUE,
            )
        )
        bucket = existing.scalars().first()
        if bucket is None:
            bucket = ChildVaccineBucket(
                child_id=child.id,
                vaccine_id=vaccine.id,
                kind=BucketKind.OVERDUE,
                dose=dose,
            )
            db.add(bucket)
        bucket.vaccine_calendar_id = scheduled.vaccine_calendar_id
        bucket.due_date = as_utc(scheduled_for).date()

        await _remove_scheduled(db, scheduled, consume=False)
        await refresh_next_appointment(db, child)
        await timeline_service.refresh_child_status(db, child)

    logger.info(f"Cita {scheduled_id} marcada como perdida (dosis {dose})")
    await _notify(db, Event.DOSE_MISSED, child, vaccine, dose, scheduled_for)


async def sweep_missed(db: AsyncSession, now: datetime | None = None) -> int:
    """Marca como perdidas las citas vencidas hace más del margen configurado."""
    settings = get_settings()
    cutoff = as_utc(now or utcnow()) - timedelta(hours=settings.MISSED_APPOINTMENT_GRACE_HOURS)
    result = await db.execute(
        select(ScheduledVaccination.id)
        .where(ScheduledVaccination.scheduled_for < cutoff)
        .order_by(ScheduledVaccination.scheduled_for)
    )
    scheduled_ids = list(result.scalars().all())

    missed = 0
    for scheduled_id in scheduled_ids:
        try:
            await mark_missed(db, scheduled_id)
        except NotFoundException:
            continue
        missed += 1
    if missed:
        logger.info(f"{missed} citas marcadas como perdidas")
    return missed
