"""
Tests del resolvedor de la próxima dosis: prioridad, tope, duplicados y sexo.
"""

from datetime import timedelta

import pytest

from vaxstock.core.dates import today, utcnow
from vaxstock.core.exceptions import (
    DuplicateRequestException,
    InvalidDoseException,
    VaccineGenderMismatchException,
)
from vaxstock.models.child import Gender
from vaxstock.models.vaccination import (
    BucketKind,
    ChildVaccineBucket,
    CompletedVaccination,
    RequestStatus,
    ScheduledVaccination,
    VaccineRequest,
)
from vaxstock.services.dose_resolver import (
    DoseSource,
    ensure_gender_compatible,
    resolve_dose,
)
from tests.helpers import in_days


def bucket(child, vaccine, calendar, kind: BucketKind, dose: int) -> ChildVaccineBucket:
    return ChildVaccineBucket(
        child_id=child.id,
        vaccine_id=vaccine.id,
        vaccine_calendar_id=calendar.id,
        kind=kind,
        dose=dose,
        due_date=today() - timedelta(days=dose),
    )


# ── Dosis solicitada ──────────────────────────────────


@pytest.mark.asyncio
async def test_requested_dose_wins(db_session, child, vaccine, calendar):
    db_session.add(bucket(child, vaccine, calendar, BucketKind.DUE, 1))
    await db_session.commit()

    resolution = await resolve_dose(db_session, child.id, vaccine, calendar.id, requested_dose=3)

    assert (resolution.dose, resolution.source) == (3, DoseSource.REQUESTED)


@pytest.mark.asyncio
@pytest.mark.parametrize("requested", [0, -1])
async def test_non_positive_requested_dose(db_session, child, vaccine, requested):
    with pytest.raises(InvalidDoseException):
        await resolve_dose(db_session, child.id, vaccine, requested_dose=requested)


# ── Calendario ────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "present, expected",
    [
        ([(BucketKind.OVERDUE, 1), (BucketKind.DUE, 3), (BucketKind.LATE, 2)], 3),
        ([(BucketKind.OVERDUE, 1), (BucketKind.LATE, 2)], 2),
        ([(BucketKind.OVERDUE, 2), (BucketKind.OVERDUE, 1)], 1),
    ],
)
async def test_bucket_priority(db_session, child, vaccine, calendar, present, expected):
    for kind, dose in present:
        db_session.add(bucket(child, vaccine, calendar, kind, dose))
    await db_session.commit()

    resolution = await resolve_dose(db_session, child.id, vaccine, calendar.id)

    assert (resolution.dose, resolution.source) == (expected, DoseSource.BUCKET)


@pytest.mark.asyncio
async def test_scheduled_entry_is_last_bucket(db_session, child, vaccine, calendar, health_center):
    db_session.add(ScheduledVaccination(
        child_id=child.id,
        vaccine_id=vaccine.id,
        vaccine_calendar_id=calendar.id,
        health_center_id=health_center.id,
        scheduled_for=in_days(7),
        dose=2,
    ))
    await db_session.commit()

    resolution = await resolve_dose(db_session, child.id, vaccine, calendar.id)

    assert (resolution.dose, resolution.source) == (2, DoseSource.BUCKET)


@pytest.mark.asyncio
async def test_buckets_ignored_without_calendar(db_session, child, vaccine, calendar):
    db_session.add(bucket(child, vaccine, calendar, BucketKind.DUE, 2))
    await db_session.commit()

    resolution = await resolve_dose(db_session, child.id, vaccine)

    assert (resolution.dose, resolution.source) == (1, DoseSource.HISTORY)


# ── Historial ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_history_uses_highest_known_dose(db_session, child, vaccine):
    db_session.add_all([
        CompletedVaccination(
            child_id=child.id, vaccine_id=vaccine.id, dose=1, administered_at=utcnow()
        ),
        VaccineRequest(
            child_id=child.id, vaccine_id=vaccine.id, dose=2, status=RequestStatus.PENDING
        ),
        VaccineRequest(
            child_id=child.id, vaccine_id=vaccine.id, dose=3, status=RequestStatus.CANCELLED
        ),
    ])
    await db_session.commit()

    resolution = await resolve_dose(db_session, child.id, vaccine)

    assert (resolution.dose, resolution.source) == (3, DoseSource.HISTORY)


@pytest.mark.asyncio
async def test_cap_applies_only_when_enforced(db_session, child, vaccine):
    db_session.add_all([
        CompletedVaccination(
            child_id=child.id, vaccine_id=vaccine.id, dose=dose, administered_at=utcnow()
        )
        for dose in (1, 2, 3)
    ])
    await db_session.commit()

    with pytest.raises(InvalidDoseException):
        await resolve_dose(db_session, child.id, vaccine)

    resolution = await resolve_dose(db_session, child.id, vaccine, enforce_cap=False)
    assert resolution.dose == 4


@pytest.mark.asyncio
async def test_requested_dose_above_cap(db_session, child, vaccine):
    with pytest.raises(InvalidDoseException):
        await resolve_dose(db_session, child.id, vaccine, requested_dose=4)


# ── Duplicados ────────────────────────────────────────


@pytest.mark.asyncio
async def test_duplicate_pending_request(db_session, child, vaccine):
    db_session.add(VaccineRequest(
        child_id=child.id, vaccine_id=vaccine.id, dose=1, status=RequestStatus.PENDING
    ))
    await db_session.commit()

    with pytest.raises(DuplicateRequestException):
        await resolve_dose(
            db_session, child.id, vaccine, requested_dose=1, reject_duplicates=True
        )
    # Sin la bandera la misma dosis se resuelve
    resolution = await resolve_dose(db_session, child.id, vaccine, requested_dose=1)
    assert resolution.dose == 1


# ── Sexo ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_gender_restriction(child, hpv_vaccine, vaccine):
    with pytest.raises(VaccineGenderMismatchException):
        ensure_gender_compatible(hpv_vaccine, child)

    ensure_gender_compatible(vaccine, child)
    child.gender = Gender.FEMALE
    ensure_gender_compatible(hpv_vaccine, child)
