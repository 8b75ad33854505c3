"""Tests for the subscription lifecycle and its endpoints."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.models.subscription import (
    PLAN_LIFETIME, PLAN_MONTHLY, PLAN_YEARLY,
    STATUS_ACTIVE, STATUS_CANCELLED, STATUS_EXPIRED, STATUS_GRACE_PERIOD, STATUS_TRIAL,
    ACTION_CANCELLED, ACTION_CREATED, ACTION_EXPIRED, ACTION_GRACE_PERIOD_STARTED, ACTION_RENEWED,
)
from app.models.subscription_payment import SubscriptionPayment
from app.services.subscriptions import (
    LIFETIME_EXPIRY, OUTCOME_EXISTS, OUTCOME_NOT_FOUND, OUTCOME_NOT_RENEWABLE,
    RenewalCharge, extend_expiry, monthly_equivalent,
)
from conftest import auth_headers


@pytest.fixture
def service(container):
    return container.subscriptions


@pytest.mark.parametrize("amount,plan_type,months,expected", [
    (1000.0, PLAN_MONTHLY, 1, 1000.0),
    (900.0, PLAN_MONTHLY, 3, 300.0),
    (1200.0, PLAN_YEARLY, 1, 100.0),
    (5000.0, PLAN_LIFETIME, 1, 5000.0),
])
def test_monthly_equivalent(amount, plan_type, months, expected):
    assert monthly_equivalent(amount, plan_type, months) == expected


def test_extend_expiry():
    start = datetime(2025, 1, 31, 8, 0)
    assert extend_expiry(start, PLAN_MONTHLY, 1) == datetime(2025, 2, 28, 8, 0)
    assert extend_expiry(start, PLAN_YEARLY, 1) == datetime(2026, 1, 31, 8, 0)
    assert extend_expiry(start, PLAN_LIFETIME, 1) == LIFETIME_EXPIRY


@pytest.mark.asyncio
async def test_create_paid_subscription(test_db, service, clock, learner):
    outcome = await service.create_subscription_plan(
        test_db, learner.uuid, price=1000.0, payment_method="card", payment_reference="ref-1"
    )
    await test_db.commit()

    assert outcome.ok
    assert outcome.plan.status == STATUS_ACTIVE
    assert outcome.plan.expires_at == datetime(2025, 5, 15, 12, 0)
    assert outcome.payment.amount == 1000.0
    assert outcome.payment.monthly_amount == 1000.0
    assert outcome.payment.is_renewal is False
    assert outcome.payment.payment_date == clock.now
    assert outcome.payment.expiration_after == outcome.plan.expires_at

    history = await service.get_history(test_db, learner.uuid)
    assert [h.action for h in history] == [ACTION_CREATED]
    assert history[0].new_status == STATUS_ACTIVE


@pytest.mark.asyncio
async def test_create_trial_records_no_payment(test_db, service, clock, learner):
    outcome = await service.create_subscription_plan(test_db, learner.uuid, price=1000.0, trial_days=14)
    await test_db.commit()

    assert outcome.plan.status == STATUS_TRIAL
    assert outcome.plan.trial_ends_at == clock.now + timedelta(days=14)
    assert outcome.plan.expires_at == outcome.plan.trial_ends_at
    assert outcome.payment is None
    assert await service.get_payment_history(test_db, learner.uuid) == []
    assert service.has_access(outcome.plan)


@pytest.mark.asyncio
async def test_one_plan_per_user(test_db, service, learner):
    await service.create_subscription_plan(test_db, learner.uuid, price=10.0)
    await test_db.commit()

    outcome = await service.create_subscription_plan(test_db, learner.uuid, price=10.0)

    assert outcome.status == OUTCOME_EXISTS
    assert not outcome.ok


@pytest.mark.asyncio
async def test_lifetime_plan(test_db, service, learner):
    outcome = await service.create_subscription_plan(test_db, learner.uuid, plan_type=PLAN_LIFETIME, price=5000.0)
    await test_db.commit()

    assert outcome.plan.expires_at == LIFETIME_EXPIRY
    assert outcome.payment.expiration_after is None
    assert outcome.plan.monthly_price == 0.0

    renewal = await service.renew_subscription(test_db, learner.uuid, amount=5000.0, payment_method="card")
    assert renewal.status == OUTCOME_NOT_RENEWABLE


@pytest.mark.asyncio
async def test_renew_extends_from_expiry(test_db, service, clock, learner):
    created = await service.create_subscription_plan(test_db, learner.uuid, price=1000.0)
    await test_db.commit()
    first_expiry = created.plan.expires_at

    clock.advance(days=20)
    outcome = await service.renew_subscription(
        test_db, learner.uuid, amount=1000.0, payment_method="card", payment_reference="ref-2"
    )
    await test_db.commit()

    assert outcome.ok
    assert outcome.plan.expires_at == datetime(2025, 6, 15, 12, 0)
    assert outcome.plan.last_renewal_date == clock.now
    assert outcome.payment.is_renewal is True
    assert outcome.payment.expiration_before == first_expiry
    assert outcome.payment.expiration_after == outcome.plan.expires_at

    history = await service.get_history(test_db, learner.uuid)
    assert [h.action for h in history] == [ACTION_CREATED, ACTION_RENEWED]
    assert history[1].old_expires_at == first_expiry


@pytest.mark.asyncio
async def test_renew_lapsed_plan_extends_from_now(test_db, service, clock, learner):
    await service.create_subscription_plan(test_db, learner.uuid, price=1000.0)
    await test_db.commit()

    clock.advance(days=45)
    outcome = await service.renew_subscription(test_db, learner.uuid, amount=1000.0, payment_method="card")

    assert outcome.plan.expires_at == datetime(2025, 6, 30, 12, 0)


@pytest.mark.asyncio
async def test_renew_without_plan(test_db, service, learner):
    outcome = await service.renew_subscription(test_db, learner.uuid, amount=10.0, payment_method="card")

    assert outcome.status == OUTCOME_NOT_FOUND
    assert outcome.plan is None


@pytest.mark.asyncio
async def test_cancel_keeps_access_until_expiry(test_db, service, clock, learner):
    await service.create_subscription_plan(test_db, learner.uuid, price=1000.0)

    outcome = await service.cancel_subscription(test_db, learner.uuid, reason="Too expensive")
    await test_db.commit()

    assert outcome.plan.status == STATUS_ACTIVE
    assert outcome.plan.auto_renew is False
    assert outcome.plan.cancelled_at == clock.now
    assert outcome.plan.cancellation_reason == "Too expensive"
    assert service.has_access(outcome.plan)


@pytest.mark.asyncio
async def test_immediate_cancel(test_db, service, clock, learner):
    await service.create_subscription_plan(test_db, learner.uuid, price=1000.0)
    clock.advance(minutes=1)

    outcome = await service.cancel_subscription(test_db, learner.uuid, immediate=True)
    await test_db.commit()

    assert outcome.plan.status == STATUS_CANCELLED
    assert outcome.plan.expires_at == clock.now
    assert not service.has_access(outcome.plan)

    history = await service.get_history(test_db, learner.uuid)
    assert [h.action for h in history] == [ACTION_CREATED, ACTION_CANCELLED]


@pytest.mark.asyncio
async def test_expiry_sweep_grace_then_expired(test_db, service, clock, learner):
    await service.create_subscription_plan(test_db, learner.uuid, price=1000.0)
    await test_db.commit()

    clock.advance(days=31)
    sweep = await service.process_expired_subscriptions(test_db)
    await test_db.commit()
    plan = await service.get_plan(test_db, learner.uuid)

    assert (sweep.renewed, sweep.grace_started, sweep.expired) == (0, 1, 0)
    assert plan.status == STATUS_GRACE_PERIOD
    assert plan.grace_period_ends == clock.now + timedelta(days=7)
    assert service.has_access(plan)

    clock.advance(days=8)
    sweep = await service.process_expired_subscriptions(test_db)
    await test_db.commit()

    assert sweep.expired == 1
    assert plan.status == STATUS_EXPIRED
    assert not service.has_access(plan)

    history = await service.get_history(test_db, learner.uuid)
    assert [h.action for h in history] == [ACTION_CREATED, ACTION_GRACE_PERIOD_STARTED, ACTION_EXPIRED]


@pytest.mark.asyncio
async def test_expiry_sweep_leaves_current_plans_alone(test_db, service, clock, learner):
    await service.create_subscription_plan(test_db, learner.uuid, price=1000.0)
    await test_db.commit()

    clock.advance(days=10)
    sweep = await service.process_expired_subscriptions(test_db)

    assert (sweep.renewed, sweep.grace_started, sweep.expired) == (0, 0, 0)


@pytest.mark.asyncio
async def test_expiry_sweep_auto_renews(test_db, service, clock, learner):
    await service.create_subscription_plan(test_db, learner.uuid, price=1000.0)
    await test_db.commit()

    charged = []

    async def charge(plan):
        charged.append(plan.user_id)
        return RenewalCharge(amount=plan.price, payment_method="card", payment_reference="auto-1")

    clock.advance(days=31)
    sweep = await service.process_expired_subscriptions(test_db, charge_renewal=charge)
    await test_db.commit()
    plan = await service.get_plan(test_db, learner.uuid)

    assert sweep.renewed == 1
    assert charged == [learner.uuid]
    assert plan.status == STATUS_ACTIVE
    assert plan.expires_at == datetime(2025, 6, 16, 12, 0)
    assert len(await service.get_payment_history(test_db, learner.uuid)) == 2


@pytest.mark.asyncio
async def test_failed_charge_starts_grace_period(test_db, service, clock, learner):
    await service.create_subscription_plan(test_db, learner.uuid, price=1000.0)
    await test_db.commit()

    async def declined(plan):
        raise RuntimeError("card declined")

    clock.advance(days=31)
    sweep = await service.process_expired_subscriptions(test_db, charge_renewal=declined)

    assert sweep.renewed == 0
    assert sweep.grace_started == 1


@pytest.mark.asyncio
async def test_trial_lapses_into_grace(test_db, service, clock, learner):
    await service.create_subscription_plan(test_db, learner.uuid, price=1000.0, trial_days=7)
    await test_db.commit()

    clock.advance(days=8)
    sweep = await service.process_expired_subscriptions(test_db)

    assert sweep.grace_started == 1


@pytest.mark.asyncio
async def test_subscription_endpoints(client, test_db, learner):
    headers = auth_headers(learner)

    response = await client.get("/api/subscriptions/me", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"has_subscription": False, "has_access": False, "subscription": None}

    response = await client.post(
        "/api/subscriptions/me",
        json={"plan_type": "MONTHLY", "price": 1000.0, "payment_method": "card", "payment_reference": "ref-1"},
        headers=headers,
    )
    assert response.status_code == 201
    assert response.json()["status"] == STATUS_ACTIVE

    response = await client.post("/api/subscriptions/me", json={"price": 1000.0}, headers=headers)
    assert response.status_code == 409

    response = await client.post(
        "/api/subscriptions/me/renew",
        json={"amount": 1000.0, "payment_method": "card", "payment_reference": "ref-2"},
        headers=headers,
    )
    assert response.status_code == 200

    response = await client.get("/api/subscriptions/me/payments", headers=headers)
    assert response.status_code == 200
    assert response.json()["total"] == 2

    response = await client.post("/api/subscriptions/me/cancel", json={"immediate": True}, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == STATUS_CANCELLED

    response = await client.get("/api/subscriptions/me", headers=headers)
    assert response.json()["has_subscription"] is True
    assert response.json()["has_access"] is False


@pytest.mark.asyncio
async def test_renew_endpoint_without_plan(client, learner):
    response = await client.post(
        "/api/subscriptions/me/renew",
        json={"amount": 10.0, "payment_method": "card"},
        headers=auth_headers(learner),
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_reused_payment_reference(client, test_db, learner, educator):
    await client.post(
        "/api/subscriptions/me",
        json={"price": 10.0, "payment_reference": "dup-ref"},
        headers=auth_headers(learner),
    )

    response = await client.post(
        "/api/subscriptions/me",
        json={"price": 10.0, "payment_reference": "dup-ref"},
        headers=auth_headers(educator),
    )

    assert response.status_code == 409
    payments = (await test_db.execute(select(SubscriptionPayment))).scalars().all()
    assert len(payments) == 1


@pytest.mark.asyncio
async def test_subscription_requires_auth(client):
    response = await client.get("/api/subscriptions/me")

    assert response.status_code == 401
