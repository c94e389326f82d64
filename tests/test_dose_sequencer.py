"""
Tests del secuenciador de dosis.
"""

from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import select

from vaxstock.core.dates import utcnow
from vaxstock.models.vaccination import CompletedVaccination, ScheduledVaccination
from vaxstock.models.vaccine import Vaccine
from vaxstock.schemas.vaccination import ScheduledVaccinationCreate
from vaxstock.services import dose_sequencer, scheduling_service
from vaxstock.services.dose_sequencer import assign_doses
from tests.helpers import add_lot, in_days


@pytest_asyncio.fixture
async def pcv_vaccine(db_session) -> Vaccine:
    vaccine = Vaccine(id=uuid4(), name="Neumococo", required_dose_count=4)
    db_session.add(vaccine)
    await db_session.commit()
    return vaccine


async def doses_by_date(db, child_id, vaccine_id) -> list[int]:
    result = await db.execute(
        select(ScheduledVaccination.dose)
        .where(
            ScheduledVaccination.child_id == child_id,
            ScheduledVaccination.vaccine_id == vaccine_id,
        )
        .order_by(ScheduledVaccination.scheduled_for)
    )
    return list(result.scalars().all())


@pytest.mark.parametrize(
    "count, completed, expected",
    [
        (0, {1}, []),
        (2, set(), [1, 2]),
        (3, {1}, [2, 3, 4]),
        (2, {1, 2, 3}, [4, 5]),
        (3, {2}, [1, 3, 4]),
    ],
)
def test_assign_doses_skips_completed_numbers(count, completed, expected):
    assert assign_doses(count, completed) == expected


@pytest.mark.asyncio
async def test_earlier_appointment_takes_next_dose(
    db_session, child, pcv_vaccine, center_scope
):
    await add_lot(db_session, pcv_vaccine, center_scope, 10, 120)
    db_session.add(CompletedVaccination(
        child_id=child.id,
        vaccine_id=pcv_vaccine.id,
        dose=1,
        administered_at=utcnow(),
    ))
    await db_session.commit()

    for days in (20, 40):
        await scheduling_service.schedule_vaccination(
            db_session,
            ScheduledVaccinationCreate(
                child_id=child.id, vaccine_id=pcv_vaccine.id, scheduled_for=in_days(days)
            ),
        )
    assert await doses_by_date(db_session, child.id, pcv_vaccine.id) == [2, 3]

    created = await scheduling_service.schedule_vaccination(
        db_session,
        ScheduledVaccinationCreate(
            child_id=child.id, vaccine_id=pcv_vaccine.id, scheduled_for=in_days(10)
        ),
    )

    assert created.dose == 2
    assert await doses_by_date(db_session, child.id, pcv_vaccine.id) == [2, 3, 4]


@pytest.mark.asyncio
async def test_resequence_only_touches_changed_rows(
    db_session, child, health_center, pcv_vaccine
):
    for days, dose in ((5, 1), (15, 3), (25, 2)):
        db_session.add(ScheduledVaccination(
            child_id=child.id,
            vaccine_id=pcv_vaccine.id,
            health_center_id=health_center.id,
            scheduled_for=in_days(days),
            dose=dose,
        ))
    await db_session.commit()

    changed = await dose_sequencer.resequence(db_session, child.id, pcv_vaccine.id)
    await db_session.commit()

    assert changed == 2
    assert await doses_by_date(db_session, child.id, pcv_vaccine.id) == [1, 2, 3]
    assert await dose_sequencer.resequence(db_session, child.id, pcv_vaccine.id) == 0


@pytest.mark.asyncio
async def test_resequence_without_appointments(db_session, child, pcv_vaccine):
    assert await dose_sequencer.resequence(db_session, child.id, pcv_vaccine.id) == 0
