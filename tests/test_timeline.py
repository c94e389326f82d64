"""
Tests de la línea de tiempo del niño y del recálculo de calendario.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from vaxstock.core.dates import today
from vaxstock.core.exceptions import NotFoundException
from vaxstock.models.child import ChildStatus
from vaxstock.models.vaccine import AgeUnit, VaccineCalendar, VaccineCalendarDose
from vaxstock.schemas.vaccination import ScheduledVaccinationCreate
from vaxstock.services import scheduling_service, timeline_service
from vaxstock.services.timeline_service import TimelineKind, calendar_window
from tests.helpers import add_lot, in_days


def test_calendar_window_prefers_specific_age():
    birth = today() - timedelta(days=400)
    ranged = VaccineCalendar(age_unit=AgeUnit.MONTHS, min_age=2, max_age=6)
    exact = VaccineCalendar(age_unit=AgeUnit.MONTHS, min_age=2, max_age=6, specific_age=12)
    open_ended = VaccineCalendar(age_unit=AgeUnit.WEEKS)

    start, end = calendar_window(ranged, birth)
    assert start < end
    assert calendar_window(exact, birth)[0] == calendar_window(exact, birth)[1]
    assert calendar_window(open_ended, birth) is None


@pytest.mark.asyncio
async def test_rebuild_marks_doses_in_window_as_due(db_session, child, vaccine, calendar):
    entries = await timeline_service.rebuild_child_buckets(db_session, child.id)
    await db_session.commit()

    assert [(e.kind, e.dose) for e in entries] == [
        (TimelineKind.DUE, 1),
        (TimelineKind.DUE, 2),
    ]
    assert child.status == ChildStatus.UP_TO_DATE


@pytest.mark.asyncio
async def test_rebuild_marks_past_window_as_late(db_session, child, vaccine, hpv_vaccine):
    newborn = VaccineCalendar(
        id=uuid4(), description="Recién nacido", age_unit=AgeUnit.DAYS, min_age=0, max_age=30
    )
    db_session.add(newborn)
    await db_session.flush()
    db_session.add_all([
        VaccineCalendarDose(calendar_id=newborn.id, vaccine_id=vaccine.id, dose=1),
        VaccineCalendarDose(calendar_id=newborn.id, vaccine_id=hpv_vaccine.id, dose=1),
    ])
    await db_session.commit()

    entries = await timeline_service.rebuild_child_buckets(db_session, child.id)
    await db_session.commit()

    # La vacuna restringida a niñas no aparece
    assert [(e.kind, e.vaccine_id, e.dose) for e in entries] == [
        (TimelineKind.LATE, vaccine.id, 1),
    ]
    assert child.status == ChildStatus.BEHIND


@pytest.mark.asyncio
async def test_rebuild_skips_scheduled_doses_and_is_repeatable(
    db_session, child, vaccine, calendar, center_scope
):
    await add_lot(db_session, vaccine, center_scope, 5, 90)
    await scheduling_service.schedule_vaccination(
        db_session,
        ScheduledVaccinationCreate(
            child_id=child.id,
            vaccine_id=vaccine.id,
            vaccine_calendar_id=calendar.id,
            scheduled_for=in_days(3),
            dose=1,
        ),
    )

    await timeline_service.rebuild_child_buckets(db_session, child.id)
    entries = await timeline_service.rebuild_child_buckets(db_session, child.id)
    await db_session.commit()

    assert sorted((e.kind.value, e.dose) for e in entries) == [
        (TimelineKind.DUE.value, 2),
        (TimelineKind.SCHEDULED.value, 1),
    ]


@pytest.mark.asyncio
async def test_calendar_resolution_follows_rebuilt_buckets(
    db_session, child, vaccine, calendar, center_scope
):
    await add_lot(db_session, vaccine, center_scope, 5, 90)
    await timeline_service.rebuild_child_buckets(db_session, child.id)
    await db_session.commit()

    first = await scheduling_service.schedule_vaccination(
        db_session,
        ScheduledVaccinationCreate(
            child_id=child.id,
            vaccine_id=vaccine.id,
            vaccine_calendar_id=calendar.id,
            scheduled_for=in_days(3),
        ),
    )

    assert first.dose == 1
    assert first.vaccine_calendar_id == calendar.id


@pytest.mark.asyncio
async def test_get_child_timeline(db_session, child, vaccine, calendar, center_scope):
    await add_lot(db_session, vaccine, center_scope, 5, 90)
    await timeline_service.rebuild_child_buckets(db_session, child.id)
    scheduled = await scheduling_service.schedule_vaccination(
        db_session,
        ScheduledVaccinationCreate(
            child_id=child.id, vaccine_id=vaccine.id, scheduled_for=in_days(3)
        ),
    )

    timeline = await timeline_service.get_child_timeline(db_session, child.id)

    assert timeline.child_id == child.id
    assert timeline.next_appointment_at == scheduled.scheduled_for
    assert timeline.next_vaccine_id == vaccine.id
    kinds = [(e.kind, e.dose) for e in timeline.entries]
    assert ("scheduled", 1) in kinds
    assert ("due", 1) in kinds


@pytest.mark.asyncio
async def test_timeline_for_unknown_child(db_session):
    with pytest.raises(NotFoundException):
        await timeline_service.get_child_timeline(db_session, uuid4())
