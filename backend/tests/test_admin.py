"""Tests for admin settlement and withdrawal endpoints."""
from datetime import datetime

import pytest
from sqlalchemy import select

from app.models.play import Play
from app.models.settlement import EducatorEarning, MonthlySettlement, SETTLEMENT_FINALIZED
from app.models.withdrawal import WithdrawalRequest, WITHDRAWAL_APPROVED, WITHDRAWAL_PENDING
from conftest import auth_headers, add_plan, add_payment

MARCH = datetime(2025, 3, 1)
APRIL = datetime(2025, 4, 1)


@pytest.fixture
async def march_activity(test_db, educator, learner):
    """1000 of March revenue and ten full plays of the educator's media."""
    plan = await add_plan(test_db, learner, 1000.0, MARCH, APRIL)
    await add_payment(test_db, plan, 1000.0, MARCH, APRIL)
    test_db.add_all([
        Play(
            user_id=learner.uuid, educator_id=educator.uuid, media_id=f"media-{i}",
            duration_watched=600, media_duration=600, watch_ratio=1.0,
            created_at=datetime(2025, 3, 20, 18, 0),
        )
        for i in range(10)
    ])
    await test_db.commit()


async def add_request(db, educator_id, amount, status=WITHDRAWAL_PENDING):
    db.add(MonthlySettlement(
        month=MARCH, status=SETTLEMENT_FINALIZED, educator_earnings=[
            EducatorEarning(user_id=educator_id, points=1.0, earnings=100.0, available_balance=100.0, withdrawn=0.0)
        ],
    ))
    request = WithdrawalRequest(user_id=educator_id, amount=amount, status=status)
    db.add(request)
    await db.commit()
    return request.uuid


@pytest.mark.asyncio
@pytest.mark.parametrize("method,path", [
    ("post", "/api/admin/settlements/run"),
    ("get", "/api/admin/settlements"),
    ("get", "/api/admin/settlements/preview"),
    ("get", "/api/admin/withdrawal-requests"),
])
async def test_admin_endpoints_require_admin(client, educator, method, path):
    kwargs = {"headers": auth_headers(educator)}
    if method == "post":
        kwargs["json"] = {}
    response = await getattr(client, method)(path, **kwargs)

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_run_settlement(client, admin_user, march_activity):
    response = await client.post(
        "/api/admin/settlements/run", json={"month": "2025-03"}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 200
    data = response.json()
    assert data["month"] == "2025-03-01T00:00:00"
    assert data["status"] == "DRAFT"
    assert data["total_revenue"] == 1000.0
    assert data["distributable_revenue"] == 700.0
    assert data["total_points"] == 2.0
    assert data["point_value"] == 350.0
    assert data["total_earnings"] == 700.0
    assert data["average_subscription_value"] == 1000.0


@pytest.mark.asyncio
async def test_run_defaults_to_previous_month(client, admin_user, march_activity):
    response = await client.post("/api/admin/settlements/run", json={}, headers=auth_headers(admin_user))

    assert response.status_code == 200
    assert response.json()["month"] == "2025-03-01T00:00:00"


@pytest.mark.asyncio
async def test_run_invalid_month(client, admin_user):
    response = await client.post(
        "/api/admin/settlements/run", json={"month": "2025-13"}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_preview_settlement(client, test_db, admin_user, educator, march_activity):
    response = await client.get("/api/admin/settlements/preview?month=2025-03", headers=auth_headers(admin_user))

    assert response.status_code == 200
    data = response.json()
    assert data["breakdown"]["media_plays"] == {"count": 10, "points": 2.0}
    assert data["breakdown"]["offline_downloads"] == {"count": 0, "points": 0.0}
    assert data["earnings"] == [
        {"user_id": educator.uuid, "points": 2.0, "earnings": 700.0, "percentage_of_total": 100.0}
    ]
    assert (await test_db.execute(select(MonthlySettlement))).scalars().all() == []


@pytest.mark.asyncio
async def test_finalize_then_rerun_conflicts(client, admin_user, march_activity):
    headers = auth_headers(admin_user)
    await client.post("/api/admin/settlements/run", json={"month": "2025-03"}, headers=headers)

    finalized = await client.post("/api/admin/settlements/2025-03/finalize", headers=headers)
    assert finalized.status_code == 200
    assert finalized.json()["status"] == "FINALIZED"
    assert finalized.json()["finalized_at"] is not None

    rerun = await client.post("/api/admin/settlements/run", json={"month": "2025-03"}, headers=headers)
    assert rerun.status_code == 409

    again = await client.post("/api/admin/settlements/2025-03/finalize", headers=headers)
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_finalize_missing_settlement(client, admin_user):
    response = await client.post("/api/admin/settlements/2025-02/finalize", headers=auth_headers(admin_user))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_settlement_detail_and_list(client, admin_user, educator, march_activity):
    headers = auth_headers(admin_user)
    educator_id = educator.uuid
    await client.post("/api/admin/settlements/run", json={"month": "2025-03", "finalize": True}, headers=headers)

    detail = await client.get("/api/admin/settlements/2025-03", headers=headers)
    assert detail.status_code == 200
    data = detail.json()
    assert data["status"] == "FINALIZED"
    assert data["revenue_source"] == "payments"
    assert data["media_play_points"] == 2.0
    assert data["total_earnings"] == 700.0
    assert data["educator_earnings"] == [{
        "user_id": educator_id,
        "name": "Educator",
        "email": "educator@example.com",
        "points": 2.0,
        "percentage_of_total": 100.0,
        "earnings": 700.0,
        "available_balance": 700.0,
        "withdrawn": 0.0,
    }]

    listed = await client.get("/api/admin/settlements", headers=headers)
    assert listed.status_code == 200
    assert listed.json()["total"] == 1
    assert listed.json()["items"][0]["educator_earnings"][0]["user_id"] == educator_id

    missing = await client.get("/api/admin/settlements/2024-01", headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_withdrawal_lifecycle(client, test_db, admin_user, educator):
    headers = auth_headers(admin_user)
    request_id = await add_request(test_db, educator.uuid, 60.0)

    pending = await client.get("/api/admin/withdrawal-requests?status=PENDING", headers=headers)
    assert [r["uuid"] for r in pending.json()["items"]] == [request_id]

    approved = await client.patch(
        f"/api/admin/withdrawal-requests/{request_id}", json={"status": "APPROVED"}, headers=headers
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"

    processed = await client.patch(
        f"/api/admin/withdrawal-requests/{request_id}",
        json={"status": "PROCESSED", "note": "Bank transfer 7781"},
        headers=headers,
    )
    assert processed.status_code == 200
    assert processed.json()["status"] == "PROCESSED"
    assert processed.json()["note"] == "Bank transfer 7781"

    earning = (await test_db.execute(select(EducatorEarning))).scalar_one()
    assert earning.available_balance == 40.0
    assert earning.withdrawn == 60.0

    rejected = await client.patch(
        f"/api/admin/withdrawal-requests/{request_id}", json={"status": "REJECTED"}, headers=headers
    )
    assert rejected.status_code == 409


@pytest.mark.asyncio
async def test_process_without_funds(client, test_db, admin_user, educator):
    request_id = await add_request(test_db, educator.uuid, 150.0, status=WITHDRAWAL_APPROVED)

    response = await client.patch(
        f"/api/admin/withdrawal-requests/{request_id}", json={"status": "PROCESSED"}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 400
    request = (await test_db.execute(
        select(WithdrawalRequest).where(WithdrawalRequest.uuid == request_id)
    )).scalar_one()
    assert request.status == WITHDRAWAL_APPROVED


@pytest.mark.asyncio
async def test_unknown_withdrawal_request(client, admin_user):
    response = await client.patch(
        "/api/admin/withdrawal-requests/missing", json={"status": "APPROVED"}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_withdrawal_status_is_validated(client, admin_user):
    response = await client.patch(
        "/api/admin/withdrawal-requests/any", json={"status": "PENDING"}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 422
