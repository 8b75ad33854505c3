"""Educator withdrawals: request lifecycle and atomic balance debits."""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.settlement import EducatorEarning, MonthlySettlement, SETTLEMENT_FINALIZED
from app.models.user import User
from app.models.withdrawal import (
    WithdrawalRequest, WITHDRAWAL_APPROVED, WITHDRAWAL_PENDING,
    WITHDRAWAL_PROCESSED, WITHDRAWAL_REJECTED,
)
from app.services.errors import (
    InsufficientBalanceError, InvalidWithdrawalTransitionError,
    PendingWithdrawalExistsError, WithdrawalNotFoundError,
)
from app.services.rules import round_money

logger = logging.getLogger(__name__)

# Allowed admin transitions; PROCESSED and REJECTED are terminal
TRANSITIONS = {
    WITHDRAWAL_PENDING: {WITHDRAWAL_APPROVED, WITHDRAWAL_REJECTED},
    WITHDRAWAL_APPROVED: {WITHDRAWAL_REJECTED, WITHDRAWAL_PROCESSED},
}


class WithdrawalLedger:
    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self.clock = clock

    async def get_available_balance(self, db: AsyncSession, user_id: str) -> float:
        """Sum of what is left on the educator's finalized earnings."""
        result = await db.execute(
            select(func.coalesce(func.sum(EducatorEarning.available_balance), 0.0))
            .join(MonthlySettlement, EducatorEarning.settlement_id == MonthlySettlement.uuid)
            .where(
                EducatorEarning.user_id == user_id,
                MonthlySettlement.status == SETTLEMENT_FINALIZED,
            )
        )
        return round_money(result.scalar() or 0.0)

    async def process_withdrawal(self, db: AsyncSession, user_id: str, amount: float) -> bool:
        """
        Debit ``amount`` from the educator's finalized earnings, oldest month first.

        Returns False, changing nothing, when the balance cannot cover the
        amount. Uses SELECT FOR UPDATE on the user row so concurrent
        withdrawals for the same educator are serialized.
        """
        if amount <= 0:
            return False

        # Lock the user row for the rest of the transaction
        await db.execute(select(User.uuid).where(User.uuid == user_id).with_for_update())

        result = await db.execute(
            select(EducatorEarning)
            .join(MonthlySettlement, EducatorEarning.settlement_id == MonthlySettlement.uuid)
            .where(
                EducatorEarning.user_id == user_id,
                MonthlySettlement.status == SETTLEMENT_FINALIZED,
                EducatorEarning.available_balance > 0,
            )
            .order_by(MonthlySettlement.month.asc())
            .with_for_update()
        )
        earnings = list(result.scalars().all())

        available = round_money(sum(e.available_balance for e in earnings))
        if available < round_money(amount):
            logger.info(f"Withdrawal of {amount:.2f} for {user_id} refused: available {available:.2f}")
            return False

        remaining = round_money(amount)
        for earning in earnings:
            if remaining <= 0:
                break
            debit = min(earning.available_balance, remaining)
            earning.available_balance = round_money(earning.available_balance - debit)
            earning.withdrawn = round_money(earning.withdrawn + debit)
            remaining = round_money(remaining - debit)

        await db.flush()
        logger.info(f"Debited {amount:.2f} from {user_id} across {len(earnings)} settlement(s)")
        return True

    async def create_withdrawal_request(
        self, db: AsyncSession, user_id: str, amount: float, note: Optional[str] = None
    ) -> WithdrawalRequest:
        """Open a PENDING request. One pending request per educator at a time."""
        # Serializes concurrent requests for the same educator until commit
        await db.execute(select(User.uuid).where(User.uuid == user_id).with_for_update())

        pending = await db.execute(
            select(func.count(WithdrawalRequest.uuid)).where(
                WithdrawalRequest.user_id == user_id,
                WithdrawalRequest.status == WITHDRAWAL_PENDING,
            )
        )
        if pending.scalar() > 0:
            raise PendingWithdrawalExistsError("You already have a pending withdrawal request")

        available = await self.get_available_balance(db, user_id)
        if round_money(amount) > available:
            raise InsufficientBalanceError(f"Requested {amount:.2f} exceeds available balance {available:.2f}")

        request = WithdrawalRequest(
            user_id=user_id,
            amount=round_money(amount),
            status=WITHDRAWAL_PENDING,
            note=note,
            requested_at=self.clock(),
        )
        db.add(request)
        await db.flush()
        return request

    async def list_user_withdrawal_requests(self, db: AsyncSession, user_id: str) -> List[WithdrawalRequest]:
        result = await db.execute(
            select(WithdrawalRequest)
            .where(WithdrawalRequest.user_id == user_id)
            .order_by(WithdrawalRequest.requested_at.desc())
        )
        return list(result.scalars().all())

    async def list_withdrawal_requests(
        self, db: AsyncSession, status: Optional[str] = None, limit: int = 100
    ) -> List[WithdrawalRequest]:
        query = select(WithdrawalRequest).order_by(WithdrawalRequest.requested_at.desc()).limit(limit)
        if status:
            query = query.where(WithdrawalRequest.status == status)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def update_withdrawal_status(
        self, db: AsyncSession, request_id: str, new_status: str, note: Optional[str] = None
    ) -> WithdrawalRequest:
        """
        Move a request to ``new_status`` and commit.

        PROCESSED debits the ledger. If the balance no longer covers the
        amount, the request is put back to APPROVED, that is committed, and
        InsufficientBalanceError is raised.
        """
        result = await db.execute(
            select(WithdrawalRequest).where(WithdrawalRequest.uuid == request_id).with_for_update()
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise WithdrawalNotFoundError(f"Withdrawal request {request_id} not found")

        if new_status not in TRANSITIONS.get(request.status, set()):
            raise InvalidWithdrawalTransitionError(f"Cannot move a {request.status} request to {new_status}")

        previous = request.status
        request.status = new_status
        if note is not None:
            request.note = note

        if new_status == WITHDRAWAL_PROCESSED:
            if not await self.process_withdrawal(db, request.user_id, request.amount):
                request.status = previous
                await db.commit()
                raise InsufficientBalanceError(
                    f"Insufficient balance to process withdrawal of {request.amount:.2f}"
                )
            request.processed_at = self.clock()
        elif new_status == WITHDRAWAL_REJECTED:
            request.processed_at = self.clock()

        await db.commit()
        logger.info(f"Withdrawal {request_id}: {previous} -> {new_status}")
        return request
