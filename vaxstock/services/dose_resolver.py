"""
Resolvedor de la próxima dosis.

Decide qué número de dosis corresponde a una nueva solicitud o cita cuando
no se indica uno. Cada paso es una función independiente y el orden de
prioridad es fijo:

1. Dosis solicitada explícitamente.
2. Con calendario: primera entrada DUE, LATE, OVERDUE o SCHEDULED.
3. Máximo entre aplicadas, programadas y solicitudes pendientes, más uno.

Luego se valida el tope de dosis requeridas y, para solicitudes, que no
exista otra PENDING para la misma dosis.
"""

import enum
import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vaxstock.core.exceptions import (
    DuplicateRequestException,
    InvalidDoseException,
    VaccineGenderMismatchException,
)
from vaxstock.models.child import Child
from vaxstock.models.vaccination import (
    CompletedVaccination,
    RequestStatus,
    ScheduledVaccination,
    VaccineRequest,
)
from vaxstock.models.vaccine import Vaccine
from vaxstock.services.timeline_service import (
    TimelineKind,
    first_bucket_dose,
    gender_allows,
    load_timeline,
)

logger = logging.getLogger(__name__)

BUCKET_PRIORITY: tuple[TimelineKind, ...] = (
    TimelineKind.DUE,
    TimelineKind.LATE,
    TimelineKind.OVERDUE,
    TimelineKind.SCHEDULED,
)


class DoseSource(str, enum.Enum):
    REQUESTED = "requested"
    BUCKET = "bucket"
    HISTORY = "history"


@dataclass(frozen=True)
class DoseResolution:
    dose: int
    source: DoseSource


def ensure_gender_compatible(vaccine: Vaccine, child: Child) -> None:
    if not gender_allows(vaccine.gender_restriction, child.gender):
        raise VaccineGenderMismatchException(
            f"La vacuna {vaccine.name} no se aplica a niños de sexo {child.gender.value}"
        )


# ── Pasos ─────────────────────────────────────────────


def _from_request(requested_dose: int | None) -> DoseResolution | None:
    if requested_dose is None:
        return None
    if requested_dose <= 0:
        raise InvalidDoseException("La dosis debe ser un entero positivo")
    return DoseResolution(requested_dose, DoseSource.REQUESTED)


async def _from_buckets(
    db: AsyncSession, child_id: UUID, vaccine_id: UUID, calendar_id: UUID | None
) -> DoseResolution | None:
    if calendar_id is None:
        return None
    timeline = await load_timeline(db, child_id, vaccine_id, calendar_id)
    dose = first_bucket_dose(timeline, BUCKET_PRIORITY)
    if dose is None:
        return None
    return DoseResolution(dose, DoseSource.BUCKET)


async def _from_history(
    db: AsyncSession, child_id: UUID, vaccine_id: UUID, calendar_id: UUID | None
) -> DoseResolution:
    highest = 0
    for model, extra in (
        (CompletedVaccination, None),
        (ScheduledVaccination, None),
        (VaccineRequest, VaccineRequest.status == RequestStatus.PENDING),
    ):
        query = select(func.max(model.dose)).where(
            model.child_id == child_id,
            model.vaccine_id == vaccine_id,
        )
        if calendar_id is not None:
            query = query.where(model.vaccine_calendar_id == calendar_id)
        if extra is not None:
            query = query.where(extra)
        result = await db.execute(query)
        highest = max(highest, result.scalar() or 0)
    return DoseResolution(highest + 1, DoseSource.HISTORY)


async def _ensure_not_duplicate(
    db: AsyncSession,
    child_id: UUID,
    vaccine_id: UUID,
    calendar_id: UUID | None,
    dose: int,
) -> None:
    query = select(VaccineRequest.id).where(
        VaccineRequest.child_id == child_id,
        VaccineRequest.vaccine_id == vaccine_id,
        VaccineRequest.dose == dose,
        VaccineRequest.status == RequestStatus.PENDING,
    )
    if calendar_id is None:
        query = query.where(VaccineRequest.vaccine_calendar_id.is_(None))
    else:
        query = query.where(VaccineRequest.vaccine_calendar_id == calendar_id)
    result = await db.execute(query.limit(1))
    if result.scalar_one_or_none():
        raise DuplicateRequestException(
            f"Ya existe una solicitud pendiente para la dosis {dose}"
        )


# ── Resolución ────────────────────────────────────────


async def resolve_dose(
    db: AsyncSession,
    child_id: UUID,
    vaccine: Vaccine,
    calendar_id: UUID | None = None,
    requested_dose: int | None = None,
    *,
    enforce_cap: bool = True,
    reject_duplicates: bool = False,
) -> DoseResolution:
    resolution = _from_request(requested_dose)
    if resolution is None:
        resolution = await _from_buckets(db, child_id, vaccine.id, calendar_id)
    if resolution is None:
        resolution = await _from_history(db, child_id, vaccine.id, calendar_id)

    if enforce_cap and resolution.dose > vaccine.required_dose_count:
        raise InvalidDoseException(
            f"Todas las dosis de {vaccine.name} ya fueron aplicadas o programadas "
            f"(dosis {resolution.dose} de {vaccine.required_dose_count})"
        )
    if reject_duplicates:
        await _ensure_not_duplicate(db, child_id, vaccine.id, calendar_id, resolution.dose)

    logger.debug(
        f"Dosis resuelta para niño {child_id}, vacuna {vaccine.id}: "
        f"{resolution.dose} ({resolution.source.value})"
    )
    return resolution
