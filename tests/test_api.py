"""
Tests de la API HTTP: autenticación, permisos por rol y envoltorio de errores.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from scripts.generate_keys import build_key_pair
from vaxstock.auth.jwt import create_access_token
from vaxstock.auth.rbac import Role
from vaxstock.config import get_settings
from vaxstock.core.dates import today
from vaxstock.models.hierarchy import ScopeKind
from vaxstock.services.hierarchy_service import Scope
from vaxstock.services.notification_service import Event
from tests.helpers import add_lot, in_days, reload_lot

API = "/api/v1"


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


# ── Autenticación ─────────────────────────────────────


@pytest.mark.asyncio
async def test_rs256_token_is_accepted(
    client, db_session, tmp_path, monkeypatch, vaccine, national_scope
):
    private_pem, public_pem = build_key_pair()
    public_path = tmp_path / "public.pem"
    public_path.write_bytes(public_pem)
    monkeypatch.setattr(get_settings(), "JWT_PUBLIC_KEY_PATH", str(public_path))
    await add_lot(db_session, vaccine, national_scope, 40, 60)

    token = create_access_token(
        uuid4(), Role.NATIONAL.value, "national", private_key=private_pem.decode()
    )
    response = await client.get(
        f"{API}/stock/summary", headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 200
    [summary] = response.json()
    assert summary["vaccine_name"] == "Pentavalente"
    assert summary["total_remaining"] == 40


@pytest.mark.asyncio
async def test_token_signed_with_other_key_is_rejected(client, tmp_path, monkeypatch):
    _, public_pem = build_key_pair()
    other_private, _ = build_key_pair()
    public_path = tmp_path / "public.pem"
    public_path.write_bytes(public_pem)
    monkeypatch.setattr(get_settings(), "JWT_PUBLIC_KEY_PATH", str(public_path))

    token = create_access_token(
        uuid4(), Role.NATIONAL.value, "national", private_key=other_private.decode()
    )
    response = await client.get(
        f"{API}/stock/summary", headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_missing_credentials(client):
    response = await client.get(f"{API}/stock/summary")
    assert response.status_code in (401, 403)


# ── Permisos ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_add_lot(client, login_as, vaccine, national_scope):
    login_as(Role.NATIONAL, national_scope)
    expiration = today() + timedelta(days=365)

    response = await client.post(
        f"{API}/stock/lots",
        json={
            "vaccine_id": str(vaccine.id),
            "scope": {"kind": "national"},
            "quantity": 100,
            "expiration_date": expiration.isoformat(),
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["remaining_quantity"] == 100
    assert body["held_quantity"] == 0
    assert body["vaccine_name"] == "Pentavalente"
    assert body["source_lot_id"] is None


@pytest.mark.asyncio
async def test_add_lot_requires_national_role(client, login_as, vaccine, region_scope, region):
    login_as(Role.REGIONAL, region_scope)

    response = await client.post(
        f"{API}/stock/lots",
        json={
            "vaccine_id": str(vaccine.id),
            "scope": {"kind": "regional", "id": str(region.id)},
            "quantity": 10,
            "expiration_date": today().isoformat(),
        },
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_summary_of_other_scope_is_forbidden(
    client, login_as, district_scope, region
):
    login_as(Role.DISTRICT, district_scope)

    response = await client.get(
        f"{API}/stock/summary", params={"scope_kind": "regional", "scope_id": str(region.id)}
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_children_summary(client, db_session, login_as, vaccine, national_scope, region_scope):
    await add_lot(db_session, vaccine, region_scope, 12, 60)
    login_as(Role.NATIONAL, national_scope)

    response = await client.get(f"{API}/stock/summary/children")

    assert response.status_code == 200
    [region_summary] = response.json()
    assert region_summary["scope_name"] == "Región Norte"
    assert region_summary["summaries"][0]["total_remaining"] == 12


# ── Transferencias ────────────────────────────────────


@pytest.mark.asyncio
async def test_domain_error_envelope(client, login_as, vaccine, national_scope, region):
    login_as(Role.NATIONAL, national_scope)

    response = await client.post(
        f"{API}/transfers",
        json={
            "vaccine_id": str(vaccine.id),
            "from_scope": {"kind": "national"},
            "to_scope": {"kind": "regional", "id": str(region.id)},
            "quantity": 20,
        },
    )

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "INSUFFICIENT_STOCK"
    assert body["retryable"] is False
    assert body["detail"]


@pytest.mark.asyncio
async def test_transfer_confirmed_by_receiver(
    client, db_session, login_as, vaccine, national_scope, region_scope, region, events
):
    lot_id = (await add_lot(db_session, vaccine, national_scope, 30, 90)).id
    login_as(Role.NATIONAL, national_scope)

    created = await client.post(
        f"{API}/transfers",
        json={
            "vaccine_id": str(vaccine.id),
            "from_scope": {"kind": "national"},
            "to_scope": {"kind": "regional", "id": str(region.id)},
            "quantity": 10,
        },
    )
    assert created.status_code == 201
    transfer_id = created.json()["id"]

    # El emisor no puede confirmar su propio envío
    forbidden = await client.post(f"{API}/transfers/{transfer_id}/confirm")
    assert forbidden.status_code == 403

    login_as(Role.REGIONAL, region_scope)
    incoming = await client.get(f"{API}/transfers/incoming")
    assert [t["id"] for t in incoming.json()["items"]] == [transfer_id]

    confirmed = await client.post(f"{API}/transfers/{transfer_id}/confirm")
    assert confirmed.status_code == 200
    body = confirmed.json()
    assert body["status"] == "confirmed"
    assert body["allocations"][0]["derived_lot_id"] is not None

    source = await reload_lot(db_session, lot_id)
    assert (source.remaining_quantity, source.held_quantity) == (20, 0)
    assert Event.TRANSFER_CONFIRMED in [e for e, _ in events]

    again = await client.post(f"{API}/transfers/{transfer_id}/confirm")
    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_PROCESSED"


# ── Vacunación ────────────────────────────────────────


@pytest.mark.asyncio
async def test_schedule_vaccination(
    client, db_session, login_as, vaccine, child, center_scope, events
):
    await add_lot(db_session, vaccine, center_scope, 10, 90)
    login_as(Role.AGENT, center_scope)

    response = await client.post(
        f"{API}/vaccinations/scheduled",
        json={
            "child_id": str(child.id),
            "vaccine_id": str(vaccine.id),
            "scheduled_for": in_days(5).isoformat(),
        },
    )

    assert response.status_code == 201
    assert response.json()["dose"] == 1

    timeline = await client.get(f"{API}/vaccinations/children/{child.id}/timeline")
    assert timeline.status_code == 200
    assert timeline.json()["next_vaccine_id"] == str(vaccine.id)


@pytest.mark.asyncio
async def test_agent_cannot_schedule_for_other_center(client, login_as, vaccine, child):
    login_as(Role.AGENT, Scope(ScopeKind.HEALTH_CENTER, uuid4()))

    response = await client.post(
        f"{API}/vaccinations/scheduled",
        json={
            "child_id": str(child.id),
            "vaccine_id": str(vaccine.id),
            "scheduled_for": in_days(5).isoformat(),
        },
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_agent_cannot_change_other_center_appointments(
    client, db_session, login_as, vaccine, child, center_scope
):
    lot_id = (await add_lot(db_session, vaccine, center_scope, 10, 90)).id
    login_as(Role.AGENT, center_scope)
    created = await client.post(
        f"{API}/vaccinations/scheduled",
        json={
            "child_id": str(child.id),
            "vaccine_id": str(vaccine.id),
            "scheduled_for": in_days(5).isoformat(),
        },
    )
    scheduled_id = created.json()["id"]

    login_as(Role.AGENT, Scope(ScopeKind.HEALTH_CENTER, uuid4()))
    responses = [
        await client.patch(
            f"{API}/vaccinations/scheduled/{scheduled_id}",
            json={"scheduled_for": in_days(9).isoformat()},
        ),
        await client.delete(f"{API}/vaccinations/scheduled/{scheduled_id}"),
        await client.post(f"{API}/vaccinations/scheduled/{scheduled_id}/complete", json={}),
        await client.post(f"{API}/vaccinations/scheduled/{scheduled_id}/miss"),
    ]

    assert [r.status_code for r in responses] == [403, 403, 403, 403]
    lot = await reload_lot(db_session, lot_id)
    assert lot.held_quantity == 1


@pytest.mark.asyncio
async def test_vaccine_request_flow(client, db_session, login_as, vaccine, child, center_scope):
    await add_lot(db_session, vaccine, center_scope, 10, 90)
    login_as(Role.AGENT, center_scope)

    created = await client.post(
        f"{API}/vaccine-requests/children/{child.id}", json={"vaccine_id": str(vaccine.id)}
    )
    assert created.status_code == 201
    assert created.json()["status"] == "pending"

    listing = await client.get(f"{API}/vaccine-requests", params={"status": "pending"})
    assert listing.json()["total"] == 1

    scheduled = await client.post(
        f"{API}/vaccine-requests/{created.json()['id']}/schedule",
        json={"scheduled_for": in_days(4).isoformat()},
    )
    assert scheduled.status_code == 200
    assert scheduled.json()["status"] == "scheduled"
