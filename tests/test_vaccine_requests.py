"""
Tests de solicitudes de vacunación: alta, programación y cancelación.
"""

from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from vaxstock.core.exceptions import (
    AlreadyProcessedException,
    DuplicateRequestException,
    InsufficientStockException,
    VaccineGenderMismatchException,
)
from vaxstock.models.stock import StockReservation
from vaxstock.models.vaccination import CompletedVaccination, RequestStatus, ScheduledVaccination
from vaxstock.schemas.vaccine_request import VaccineRequestCreate, VaccineRequestSchedule
from vaxstock.services import scheduling_service, vaccine_request_service
from vaxstock.services.notification_service import Event
from tests.helpers import add_lot, in_days, reload_lot


@pytest_asyncio.fixture
async def center_lot(db_session, vaccine, center_scope):
    return await add_lot(db_session, vaccine, center_scope, 10, 90)


async def request_for(db, child, vaccine, **kwargs):
    return await vaccine_request_service.create_request(
        db, child.id, VaccineRequestCreate(vaccine_id=vaccine.id, **kwargs), requested_by=uuid4()
    )


# ── Alta ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_resolves_next_dose(db_session, child, vaccine, events):
    first = await request_for(db_session, child, vaccine)
    second = await request_for(db_session, child, vaccine)

    assert (first.dose, second.dose) == (1, 2)
    assert first.status == RequestStatus.PENDING
    assert first.child_name == "Mateo Quispe"
    assert first.vaccine_name == "Pentavalente"
    assert [e for e, _ in events] == [Event.REQUEST_CREATED, Event.REQUEST_CREATED]


@pytest.mark.asyncio
async def test_create_rejects_duplicate_pending_dose(db_session, child, vaccine):
    await request_for(db_session, child, vaccine, dose=2)

    with pytest.raises(DuplicateRequestException):
        await request_for(db_session, child, vaccine, dose=2)


@pytest.mark.asyncio
async def test_create_does_not_cap_doses(db_session, child, vaccine):
    db_session.add_all([
        CompletedVaccination(child_id=child.id, vaccine_id=vaccine.id, dose=dose)
        for dose in (1, 2, 3)
    ])
    await db_session.commit()

    request = await request_for(db_session, child, vaccine)

    assert request.dose == 4


@pytest.mark.asyncio
async def test_create_rejects_gender_mismatch(db_session, child, hpv_vaccine):
    with pytest.raises(VaccineGenderMismatchException):
        await request_for(db_session, child, hpv_vaccine)


# ── Programar ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_schedule_request_creates_appointment(
    db_session, child, vaccine, center_lot, events
):
    request = await request_for(db_session, child, vaccine)
    events.clear()

    scheduled = await vaccine_request_service.schedule_request(
        db_session, request.id, VaccineRequestSchedule(scheduled_for=in_days(7))
    )

    assert scheduled.status == RequestStatus.SCHEDULED
    assert scheduled.scheduled_vaccination_id is not None
    assert scheduled.scheduled_for == in_days(7)
    appointment = await db_session.get(ScheduledVaccination, scheduled.scheduled_vaccination_id)
    assert appointment.dose == request.dose
    lot = await reload_lot(db_session, center_lot.id)
    assert lot.held_quantity == 1
    assert events[0][0] == Event.DOSE_SCHEDULED


@pytest.mark.asyncio
async def test_schedule_request_failure_keeps_it_pending(db_session, child, vaccine):
    request = await request_for(db_session, child, vaccine)

    with pytest.raises(InsufficientStockException):
        await vaccine_request_service.schedule_request(
            db_session, request.id, VaccineRequestSchedule(scheduled_for=in_days(7))
        )

    listing = await vaccine_request_service.list_requests(db_session, status=RequestStatus.PENDING)
    assert [r.id for r in listing.items] == [request.id]
    result = await db_session.execute(select(func.count()).select_from(StockReservation))
    assert result.scalar() == 0


@pytest.mark.asyncio
async def test_schedule_request_twice(db_session, child, vaccine, center_lot):
    request = await request_for(db_session, child, vaccine)
    await vaccine_request_service.schedule_request(
        db_session, request.id, VaccineRequestSchedule(scheduled_for=in_days(7))
    )

    with pytest.raises(AlreadyProcessedException):
        await vaccine_request_service.schedule_request(
            db_session, request.id, VaccineRequestSchedule(scheduled_for=in_days(9))
        )


@pytest.mark.asyncio
async def test_cancelled_appointment_detaches_from_request(
    db_session, child, vaccine, center_lot
):
    request = await request_for(db_session, child, vaccine)
    scheduled = await vaccine_request_service.schedule_request(
        db_session, request.id, VaccineRequestSchedule(scheduled_for=in_days(7))
    )

    await scheduling_service.cancel_scheduled_vaccination(
        db_session, scheduled.scheduled_vaccination_id
    )

    listing = await vaccine_request_service.list_requests(db_session, child_id=child.id)
    assert listing.items[0].status == RequestStatus.SCHEDULED
    assert listing.items[0].scheduled_vaccination_id is None


# ── Cancelar y listar ─────────────────────────────────


@pytest.mark.asyncio
async def test_cancel_request(db_session, child, vaccine):
    request = await request_for(db_session, child, vaccine)

    cancelled = await vaccine_request_service.cancel_request(db_session, request.id)
    assert cancelled.status == RequestStatus.CANCELLED

    with pytest.raises(AlreadyProcessedException):
        await vaccine_request_service.cancel_request(db_session, request.id)

    # El rollback expira los objetos de la sesión
    await db_session.refresh(child)
    await db_session.refresh(vaccine)

    # La dosis liberada vuelve a estar disponible para una nueva solicitud
    again = await request_for(db_session, child, vaccine)
    assert again.dose == 1


@pytest.mark.asyncio
async def test_list_requests_by_health_center(db_session, child, vaccine, health_center):
    await request_for(db_session, child, vaccine)
    await request_for(db_session, child, vaccine)

    listing = await vaccine_request_service.list_requests(
        db_session, health_center_id=health_center.id, size=1
    )
    assert listing.total == 2
    assert listing.pages == 2
    assert len(listing.items) == 1

    empty = await vaccine_request_service.list_requests(db_session, health_center_id=uuid4())
    assert empty.total == 0
