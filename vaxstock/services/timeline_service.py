"""
Línea de tiempo de vacunación de un niño.

Unifica en un solo tipo de entrada las dosis pendientes del calendario
(DUE, LATE, OVERDUE), las citas programadas (SCHEDULED) y las dosis
aplicadas (COMPLETED). El resolvedor de dosis carga la línea una sola vez
y filtra en memoria según su orden de prioridad.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.core.dates import as_utc, today
from vaxstock.core.exceptions import NotFoundException
from vaxstock.models.child import Child, ChildStatus, Gender
from vaxstock.models.vaccination import (
    BucketKind,
    ChildVaccineBucket,
    CompletedVaccination,
    ScheduledVaccination,
)
from vaxstock.models.vaccine import (
    AgeUnit,
    GenderRestriction,
    Vaccine,
    VaccineCalendar,
)
from vaxstock.schemas.vaccination import ChildTimelineResponse, TimelineEntryResponse

logger = logging.getLogger(__name__)


class TimelineKind(str, enum.Enum):
    DUE = "due"
    LATE = "late"
    OVERDUE = "overdue"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TimelineEntry:
    kind: TimelineKind
    vaccine_id: UUID
    vaccine_calendar_id: UUID | None
    dose: int
    entry_date: date | None


# ── Carga ─────────────────────────────────────────────


async def load_timeline(
    db: AsyncSession,
    child_id: UUID,
    vaccine_id: UUID | None = None,
    calendar_id: UUID | None = None,
) -> list[TimelineEntry]:
    """Todas las entradas del niño, opcionalmente filtradas por vacuna y calendario."""

    def _filtered(query, model):
        query = query.where(model.child_id == child_id)
        if vaccine_id is not None:
            query = query.where(model.vaccine_id == vaccine_id)
        if calendar_id is not None:
            query = query.where(model.vaccine_calendar_id == calendar_id)
        return query

    entries: list[TimelineEntry] = []

    buckets = await db.execute(_filtered(select(ChildVaccineBucket), ChildVaccineBucket))
    for bucket in buckets.scalars().all():
        entries.append(TimelineEntry(
            kind=TimelineKind(bucket.kind.value),
            vaccine_id=bucket.vaccine_id,
            vaccine_calendar_id=bucket.vaccine_calendar_id,
            dose=bucket.dose,
            entry_date=bucket.due_date,
        ))

    scheduled = await db.execute(
        _filtered(select(ScheduledVaccination), ScheduledVaccination)
    )
    for row in scheduled.unique().scalars().all():
        entries.append(TimelineEntry(
            kind=TimelineKind.SCHEDULED,
            vaccine_id=row.vaccine_id,
            vaccine_calendar_id=row.vaccine_calendar_id,
            dose=row.dose,
            entry_date=as_utc(row.scheduled_for).date(),
        ))

    completed = await db.execute(
        _filtered(select(CompletedVaccination), CompletedVaccination)
    )
    for row in completed.unique().scalars().all():
        entries.append(TimelineEntry(
            kind=TimelineKind.COMPLETED,
            vaccine_id=row.vaccine_id,
            vaccine_calendar_id=row.vaccine_calendar_id,
            dose=row.dose,
            entry_date=as_utc(row.administered_at).date(),
        ))

    entries.sort(key=lambda e: (e.entry_date or date.min, e.dose))
    return entries


def first_bucket_dose(
    entries: list[TimelineEntry], priority: tuple[TimelineKind, ...]
) -> int | None:
    """Menor dosis del primer tipo, en orden de prioridad, que tenga entradas."""
    for kind in priority:
        doses = [entry.dose for entry in entries if entry.kind == kind]
        if doses:
            return min(doses)
    return None


# ── Calendario ────────────────────────────────────────


def gender_allows(restriction: GenderRestriction, gender: Gender) -> bool:
    if restriction == GenderRestriction.NONE:
        return True
    return restriction.value == gender.value


def _age_offset(unit: AgeUnit, amount: int) -> relativedelta:
    return relativedelta(**{unit.value: amount})


def calendar_window(calendar: VaccineCalendar, birth_date: date) -> tuple[date, date] | None:
    """Fechas [inicio, fin] en las que el calendario espera la dosis."""
    start_age = calendar.specific_age if calendar.specific_age is not None else calendar.min_age
    if start_age is None:
        return None
    end_age = calendar.max_age if calendar.max_age is not None else start_age
    start = birth_date + _age_offset(calendar.age_unit, start_age)
    end = birth_date + _age_offset(calendar.age_unit, max(end_age, start_age))
    return start, end


async def refresh_child_status(db: AsyncSession, child: Child) -> ChildStatus:
    """BEHIND si el niño tiene dosis atrasadas o citas perdidas."""
    result = await db.execute(
        select(ChildVaccineBucket.id).where(
            ChildVaccineBucket.child_id == child.id,
            ChildVaccineBucket.kind.in_([BucketKind.LATE, BucketKind.OVERDUE]),
        ).limit(1)
    )
    child.status = (
        ChildStatus.BEHIND if result.scalar_one_or_none() else ChildStatus.UP_TO_DATE
    )
    await db.flush()
    return child.status


async def rebuild_child_buckets(
    db: AsyncSession, child_id: UUID, reference: date | None = None
) -> list[TimelineEntry]:
    """
    Recalcula las entradas DUE y LATE del niño a partir del calendario.

    Una dosis está DUE si la edad del niño cae en la ventana del calendario
    y LATE si la ventana ya pasó. Se omiten dosis ya aplicadas, programadas
    o marcadas como OVERDUE, y vacunas restringidas al otro sexo.
    """
    reference = reference or today()
    child = await db.get(Child, child_id)
    if not child:
        raise NotFoundException("Niño", "Niño no encontrado")

    existing = await load_timeline(db, child_id)
    occupied = {
        (entry.vaccine_id, entry.dose)
        for entry in existing
        if entry.kind in (TimelineKind.COMPLETED, TimelineKind.SCHEDULED, TimelineKind.OVERDUE)
    }

    await db.execute(
        delete(ChildVaccineBucket)
        .where(
            ChildVaccineBucket.child_id == child_id,
            ChildVaccineBucket.kind.in_([BucketKind.DUE, BucketKind.LATE]),
        )
        .execution_options(synchronize_session=False)
    )

    calendars = await db.execute(
        select(VaccineCalendar).execution_options(populate_existing=True)
    )
    created: list[ChildVaccineBucket] = []
    for calendar in calendars.scalars().all():
        window = calendar_window(calendar, child.birth_date)
        if window is None:
            continue
        start, end = window
        if reference < start:
            continue
        kind = BucketKind.DUE if reference <= end else BucketKind.LATE

        for assignment in calendar.doses:
            vaccine: Vaccine = assignment.vaccine
            if not gender_allows(vaccine.gender_restriction, child.gender):
                continue
            if (vaccine.id, assignment.dose) in occupied:
                continue
            created.append(ChildVaccineBucket(
                child_id=child_id,
                vaccine_id=vaccine.id,
                vaccine_calendar_id=calendar.id,
                kind=kind,
                dose=assignment.dose,
                due_date=start if kind == BucketKind.DUE else end,
            ))

    db.add_all(created)
    await db.flush()
    await refresh_child_status(db, child)
    logger.info(
        f"Calendario del niño {child_id} recalculado: {len(created)} dosis pendientes"
    )
    return await load_timeline(db, child_id)


async def clear_buckets_for_completed_dose(
    db: AsyncSession, child_id: UUID, vaccine: Vaccine, dose: int
) -> None:
    """
    Quita las entradas DUE/LATE/OVERDUE de la dosis aplicada; si el niño ya
    completó todas las dosis requeridas, quita todas las de la vacuna.
    """
    completed = await db.execute(
        select(CompletedVaccination.dose).where(
            CompletedVaccination.child_id == child_id,
            CompletedVaccination.vaccine_id == vaccine.id,
        )
    )
    completed_count = len(set(completed.scalars().all()))

    query = delete(ChildVaccineBucket).where(
        ChildVaccineBucket.child_id == child_id,
        ChildVaccineBucket.vaccine_id == vaccine.id,
    )
    if completed_count < vaccine.required_dose_count:
        query = query.where(ChildVaccineBucket.dose == dose)
    await db.execute(query.execution_options(synchronize_session=False))


async def get_child_timeline(db: AsyncSession, child_id: UUID) -> ChildTimelineResponse:
    child = await db.get(Child, child_id)
    if not child:
        raise NotFoundException("Niño", "Niño no encontrado")
    entries = await load_timeline(db, child_id)
    return ChildTimelineResponse(
        child_id=child.id,
        status=child.status,
        next_appointment_at=as_utc(child.next_appointment_at) if child.next_appointment_at else None,
        next_vaccine_id=child.next_vaccine_id,
        entries=[
            TimelineEntryResponse(
                kind=entry.kind.value,
                vaccine_id=entry.vaccine_id,
                vaccine_calendar_id=entry.vaccine_calendar_id,
                dose=entry.dose,
                entry_date=entry.entry_date,
            )
            for entry in entries
        ],
    )
