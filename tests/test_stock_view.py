"""
Tests de la vista agregada de stock y de la alerta de stock crítico.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from vaxstock.core.dates import today
from vaxstock.models.hierarchy import ScopeKind
from vaxstock.models.stock import StockLot
from vaxstock.services import lot_ledger, notification_service, stock_view
from vaxstock.services.notification_service import Event
from tests.helpers import add_lot


@pytest.mark.asyncio
async def test_summary_is_derived_from_lots(db_session, vaccine, national_scope):
    await add_lot(db_session, vaccine, national_scope, 10, 30)
    soon = await add_lot(db_session, vaccine, national_scope, 5, 10)
    await lot_ledger.hold(db_session, soon.id, 2)
    db_session.add(StockLot(
        vaccine_id=vaccine.id,
        scope_kind=ScopeKind.NATIONAL,
        scope_id=None,
        original_quantity=4,
        remaining_quantity=4,
        held_quantity=0,
        distributed_quantity=0,
        expiration_date=today() - timedelta(days=1),
        derived_count=0,
    ))
    await db_session.commit()

    summary = await stock_view.get_stock_summary(db_session, vaccine.id, national_scope)

    assert summary.vaccine_name == "Pentavalente"
    assert summary.total_remaining == 13
    assert summary.held_total == 2
    assert summary.lot_count == 3
    assert summary.expired_lot_count == 1
    assert summary.expired_quantity == 4
    assert summary.nearest_expiration_date == today() + timedelta(days=10)


@pytest.mark.asyncio
async def test_summary_for_empty_scope(db_session, vaccine, region_scope):
    summary = await stock_view.get_stock_summary(db_session, vaccine.id, region_scope)

    assert summary.total_remaining == 0
    assert summary.lot_count == 0
    assert summary.nearest_expiration_date is None


@pytest.mark.asyncio
async def test_list_summaries_groups_by_vaccine(
    db_session, vaccine, hpv_vaccine, national_scope
):
    await add_lot(db_session, vaccine, national_scope, 10, 30)
    await add_lot(db_session, vaccine, national_scope, 7, 60)
    await add_lot(db_session, hpv_vaccine, national_scope, 3, 30)

    summaries = await stock_view.list_stock_summaries(db_session, national_scope)
    totals = {s.vaccine_name: s.total_remaining for s in summaries}

    assert totals == {"Pentavalente": 17, "VPH": 3}


@pytest.mark.asyncio
async def test_summaries_for_children_lists_each_direct_child(
    db_session, vaccine, national_scope, region_scope, district_scope
):
    await add_lot(db_session, vaccine, region_scope, 12, 30)
    await add_lot(db_session, vaccine, district_scope, 4, 30)

    items = await stock_view.summaries_for_children(db_session, national_scope)

    assert len(items) == 1
    assert items[0].scope_kind == ScopeKind.REGIONAL
    assert items[0].scope_name == "Región Norte"
    assert items[0].summaries[0].total_remaining == 12

    items = await stock_view.summaries_for_children(db_session, region_scope)
    assert items[0].scope_name == "Distrito Centro"
    assert items[0].summaries[0].total_remaining == 4


@pytest.mark.asyncio
async def test_critical_stock_event(db_session, vaccine, national_scope, events):
    await add_lot(db_session, vaccine, national_scope, 10, 30)

    await notification_service.check_stock_level(db_session, vaccine.id, national_scope)

    assert len(events) == 1
    event, payload = events[0]
    assert event == Event.STOCK_CRITICAL
    assert payload["remaining"] == 10
    assert payload["scope_name"] == "Nivel nacional"


@pytest.mark.asyncio
async def test_no_critical_event_above_threshold(db_session, vaccine, national_scope, events):
    await add_lot(db_session, vaccine, national_scope, 500, 30)

    await notification_service.check_stock_level(db_session, vaccine.id, national_scope)

    assert events == []


def test_dispatch_failure_is_reported_not_raised(monkeypatch):
    def broken_delay(*args, **kwargs):
        raise ConnectionError("broker caído")

    monkeypatch.setattr(notification_service.dispatch_event, "delay", broken_delay)

    assert notification_service.dispatch(Event.TRANSFER_SENT, {"quantity": 1}) is False


def test_dispatch_sends_serializable_payload(monkeypatch):
    sent = []
    monkeypatch.setattr(
        notification_service.dispatch_event, "delay", lambda event, payload: sent.append(payload)
    )

    lot_id = uuid4()
    assert notification_service.dispatch(
        Event.STOCK_EXPIRING,
        {"lot_id": lot_id, "expiration_date": today(), "scope_kind": ScopeKind.NATIONAL},
    )
    assert sent == [{
        "lot_id": str(lot_id),
        "expiration_date": today().isoformat(),
        "scope_kind": "national",
    }]


def test_dispatch_event_task_runs_eagerly():
    result = notification_service.dispatch_event.delay(Event.DOSE_SCHEDULED.value, {"dose": 1})
    assert result.get() == {"event": "dose.scheduled", "delivered": True}
