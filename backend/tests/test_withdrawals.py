"""Tests for the withdrawal ledger and request lifecycle."""
from datetime import datetime

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from app.models.settlement import (
    EducatorEarning, MonthlySettlement, SETTLEMENT_DRAFT, SETTLEMENT_FINALIZED,
)
from app.models.withdrawal import (
    WithdrawalRequest, WITHDRAWAL_APPROVED, WITHDRAWAL_PENDING, WITHDRAWAL_PROCESSED, WITHDRAWAL_REJECTED,
)
from app.services.errors import (
    InsufficientBalanceError, InvalidWithdrawalTransitionError,
    PendingWithdrawalExistsError, WithdrawalNotFoundError,
)

JANUARY = datetime(2025, 1, 1)
FEBRUARY = datetime(2025, 2, 1)
MARCH = datetime(2025, 3, 1)


async def add_earning(db, user_id, month, amount, status=SETTLEMENT_FINALIZED):
    settlement = MonthlySettlement(month=month, status=status, point_value=1.0, educator_earnings=[])
    settlement.educator_earnings.append(EducatorEarning(
        user_id=user_id,
        points=amount,
        earnings=amount,
        available_balance=amount,
        withdrawn=0.0,
    ))
    db.add(settlement)
    await db.commit()
    return settlement.educator_earnings[0]


async def earnings_by_month(db, user_id):
    result = await db.execute(
        select(MonthlySettlement.month, EducatorEarning.available_balance, EducatorEarning.withdrawn)
        .join(MonthlySettlement, EducatorEarning.settlement_id == MonthlySettlement.uuid)
        .where(EducatorEarning.user_id == user_id)
        .order_by(MonthlySettlement.month)
    )
    return [tuple(row) for row in result.all()]


@pytest.fixture
def ledger(container):
    return container.withdrawals


@pytest.mark.asyncio
async def test_available_balance_ignores_drafts(test_db, ledger, educator):
    await add_earning(test_db, educator.uuid, FEBRUARY, 100.0)
    await add_earning(test_db, educator.uuid, MARCH, 40.0, status=SETTLEMENT_DRAFT)

    assert await ledger.get_available_balance(test_db, educator.uuid) == 100.0


@pytest.mark.asyncio
async def test_insufficient_balance_changes_nothing(test_db, ledger, educator):
    """Withdrawing 60 from a balance of 50 fails and the balance stays 50."""
    await add_earning(test_db, educator.uuid, FEBRUARY, 50.0)

    assert await ledger.process_withdrawal(test_db, educator.uuid, 60.0) is False
    await test_db.commit()

    assert await ledger.get_available_balance(test_db, educator.uuid) == 50.0
    assert await earnings_by_month(test_db, educator.uuid) == [(FEBRUARY, 50.0, 0.0)]


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0.0, -10.0])
async def test_non_positive_amount_refused(test_db, ledger, educator, amount):
    await add_earning(test_db, educator.uuid, FEBRUARY, 50.0)

    assert await ledger.process_withdrawal(test_db, educator.uuid, amount) is False


@pytest.mark.asyncio
async def test_debits_oldest_month_first(test_db, ledger, educator):
    await add_earning(test_db, educator.uuid, MARCH, 100.0)
    await add_earning(test_db, educator.uuid, JANUARY, 30.0)
    await add_earning(test_db, educator.uuid, FEBRUARY, 50.0)

    assert await ledger.process_withdrawal(test_db, educator.uuid, 100.0) is True
    await test_db.commit()

    assert await earnings_by_month(test_db, educator.uuid) == [
        (JANUARY, 0.0, 30.0),
        (FEBRUARY, 0.0, 50.0),
        (MARCH, 80.0, 20.0),
    ]
    assert await ledger.get_available_balance(test_db, educator.uuid) == 80.0


@pytest.mark.asyncio
async def test_exact_balance_can_be_withdrawn(test_db, ledger, educator):
    await add_earning(test_db, educator.uuid, FEBRUARY, 10.1)
    await add_earning(test_db, educator.uuid, MARCH, 0.2)

    assert await ledger.process_withdrawal(test_db, educator.uuid, 10.3) is True
    await test_db.commit()

    assert await ledger.get_available_balance(test_db, educator.uuid) == 0.0


@pytest.mark.asyncio
async def test_draft_earnings_not_withdrawable(test_db, ledger, educator):
    await add_earning(test_db, educator.uuid, MARCH, 500.0, status=SETTLEMENT_DRAFT)

    assert await ledger.process_withdrawal(test_db, educator.uuid, 10.0) is False


@pytest.mark.asyncio
async def test_create_request(test_db, ledger, clock, educator):
    await add_earning(test_db, educator.uuid, FEBRUARY, 100.0)

    request = await ledger.create_withdrawal_request(test_db, educator.uuid, 75.555, note="March payout")
    await test_db.commit()

    assert request.status == WITHDRAWAL_PENDING
    assert request.amount == 75.56
    assert request.requested_at == clock.now
    # Requesting does not debit anything
    assert await ledger.get_available_balance(test_db, educator.uuid) == 100.0


@pytest.mark.asyncio
async def test_create_request_over_balance(test_db, ledger, educator):
    await add_earning(test_db, educator.uuid, FEBRUARY, 100.0)

    with pytest.raises(InsufficientBalanceError):
        await ledger.create_withdrawal_request(test_db, educator.uuid, 100.01)


@pytest.mark.asyncio
async def test_one_pending_request_at_a_time(test_db, ledger, educator):
    await add_earning(test_db, educator.uuid, FEBRUARY, 100.0)
    await ledger.create_withdrawal_request(test_db, educator.uuid, 10.0)
    await test_db.commit()

    with pytest.raises(PendingWithdrawalExistsError):
        await ledger.create_withdrawal_request(test_db, educator.uuid, 10.0)


@pytest.mark.asyncio
async def test_create_request_locks_user_row(test_db, ledger, educator, monkeypatch):
    """Opening a request takes the same row lock as a debit, so two requests cannot both pass the pending check."""
    await add_earning(test_db, educator.uuid, FEBRUARY, 100.0)
    statements = []
    execute = test_db.execute

    async def recording_execute(statement, *args, **kwargs):
        statements.append(statement)
        return await execute(statement, *args, **kwargs)

    monkeypatch.setattr(test_db, "execute", recording_execute)

    await ledger.create_withdrawal_request(test_db, educator.uuid, 10.0)

    # sqlite drops FOR UPDATE, so check the SQL Postgres would receive
    first = str(statements[0].compile(dialect=postgresql.dialect()))
    assert "FROM users" in first
    assert first.rstrip().endswith("FOR UPDATE")


@pytest.mark.asyncio
async def test_approve_then_process(test_db, ledger, clock, educator):
    await add_earning(test_db, educator.uuid, FEBRUARY, 100.0)
    request = await ledger.create_withdrawal_request(test_db, educator.uuid, 60.0)
    await test_db.commit()

    approved = await ledger.update_withdrawal_status(test_db, request.uuid, WITHDRAWAL_APPROVED)
    assert approved.status == WITHDRAWAL_APPROVED
    assert approved.processed_at is None

    processed = await ledger.update_withdrawal_status(test_db, request.uuid, WITHDRAWAL_PROCESSED, note="Paid")
    assert processed.status == WITHDRAWAL_PROCESSED
    assert processed.processed_at == clock.now
    assert processed.note == "Paid"
    assert await ledger.get_available_balance(test_db, educator.uuid) == 40.0


@pytest.mark.asyncio
async def test_reject_pending(test_db, ledger, educator):
    await add_earning(test_db, educator.uuid, FEBRUARY, 100.0)
    request = await ledger.create_withdrawal_request(test_db, educator.uuid, 60.0)
    await test_db.commit()

    rejected = await ledger.update_withdrawal_status(test_db, request.uuid, WITHDRAWAL_REJECTED)

    assert rejected.status == WITHDRAWAL_REJECTED
    assert rejected.processed_at is not None
    assert await ledger.get_available_balance(test_db, educator.uuid) == 100.0


@pytest.mark.asyncio
@pytest.mark.parametrize("start,target", [
    (WITHDRAWAL_PENDING, WITHDRAWAL_PROCESSED),
    (WITHDRAWAL_PENDING, WITHDRAWAL_PENDING),
    (WITHDRAWAL_REJECTED, WITHDRAWAL_APPROVED),
    (WITHDRAWAL_PROCESSED, WITHDRAWAL_REJECTED),
    (WITHDRAWAL_APPROVED, WITHDRAWAL_PENDING),
])
async def test_invalid_transitions(test_db, ledger, educator, start, target):
    request = WithdrawalRequest(user_id=educator.uuid, amount=10.0, status=start)
    test_db.add(request)
    await test_db.commit()

    with pytest.raises(InvalidWithdrawalTransitionError):
        await ledger.update_withdrawal_status(test_db, request.uuid, target)


@pytest.mark.asyncio
async def test_unknown_request(test_db, ledger):
    with pytest.raises(WithdrawalNotFoundError):
        await ledger.update_withdrawal_status(test_db, "missing", WITHDRAWAL_APPROVED)


@pytest.mark.asyncio
async def test_processing_without_funds_stays_approved(test_db, ledger, educator):
    """If the balance shrank after approval, processing fails and the request remains APPROVED."""
    earning = await add_earning(test_db, educator.uuid, FEBRUARY, 100.0)
    request = await ledger.create_withdrawal_request(test_db, educator.uuid, 80.0)
    await test_db.commit()
    request_id = request.uuid
    await ledger.update_withdrawal_status(test_db, request_id, WITHDRAWAL_APPROVED)

    earning.available_balance = 50.0
    earning.withdrawn = 50.0
    await test_db.commit()

    with pytest.raises(InsufficientBalanceError):
        await ledger.update_withdrawal_status(test_db, request_id, WITHDRAWAL_PROCESSED)

    stored = (await test_db.execute(
        select(WithdrawalRequest).where(WithdrawalRequest.uuid == request_id)
    )).scalar_one()
    assert stored.status == WITHDRAWAL_APPROVED
    assert stored.processed_at is None
    assert await ledger.get_available_balance(test_db, educator.uuid) == 50.0


@pytest.mark.asyncio
async def test_list_requests(test_db, ledger, clock, educator):
    other = WithdrawalRequest(user_id=educator.uuid, amount=5.0, status=WITHDRAWAL_REJECTED,
                              requested_at=datetime(2025, 4, 1))
    test_db.add(other)
    await add_earning(test_db, educator.uuid, FEBRUARY, 100.0)
    await ledger.create_withdrawal_request(test_db, educator.uuid, 10.0)
    await test_db.commit()

    mine = await ledger.list_user_withdrawal_requests(test_db, educator.uuid)
    assert [r.status for r in mine] == [WITHDRAWAL_PENDING, WITHDRAWAL_REJECTED]

    pending = await ledger.list_withdrawal_requests(test_db, status=WITHDRAWAL_PENDING)
    assert len(pending) == 1
    assert pending[0].amount == 10.0
