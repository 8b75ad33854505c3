"""Monthly settlement: turns a month of revenue and engagement into educator earnings.

A run, in order:

1. gross revenue for the month and the distributable pool (educators' share),
2. total points earned system-wide,
3. ``point_value = pool / total_points`` (0 when nobody earned points),
4. each educator's points and ``earnings = points * point_value``,
5. one transaction that upserts the month's ``MonthlySettlement`` and replaces
   its ``EducatorEarning`` rows.

A settlement is DRAFT until finalized. Drafts can be recomputed at will;
finalized settlements are immutable and asking to recompute one raises
``SettlementFinalizedError``. Runs for the same month are serialized with a
per-month lock.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.settlement import (
    EducatorEarning, MonthlySettlement, SETTLEMENT_DRAFT, SETTLEMENT_FINALIZED,
)
from app.models.user import User, ROLE_EDUCATOR
from app.services.errors import (
    SettlementError, SettlementFinalizedError, SettlementInProgressError,
    SettlementNotFoundError, SettlementTimeoutError,
)
from app.services.locks import LockManager
from app.services.periods import month_label, month_start, parse_month_identifier
from app.services.points import PointsCalculator, PointsResult
from app.services.revenue import RevenueCalculator
from app.services.rules import SettlementRules, round_money

logger = logging.getLogger(__name__)


def calculate_point_value(distributable_revenue: float, total_points: float) -> float:
    """Currency per point for the month; 0 when no points were earned."""
    if total_points <= 0:
        return 0.0
    return round_money(distributable_revenue / total_points)


@dataclass
class StagedEarning:
    user_id: str
    points: float
    earnings: float
    percentage_of_total: float


@dataclass
class SettlementComputation:
    """Everything a settlement run would write, computed without writing it."""
    month: datetime
    total_revenue: float
    distributable_revenue: float
    revenue_source: str
    subscriber_count: int
    points: PointsResult
    point_value: float
    earnings: List[StagedEarning] = field(default_factory=list)

    @property
    def total_points(self) -> float:
        return self.points.total_points

    @property
    def total_earnings(self) -> float:
        return round_money(sum(e.earnings for e in self.earnings))


@dataclass
class SettlementSummary:
    id: str
    month: datetime
    status: str
    total_subscribers: int
    total_revenue: float
    distributable_revenue: float
    total_points: float
    point_value: float
    educator_count: int
    total_earnings: float
    finalized_at: Optional[datetime] = None

    @property
    def average_subscription_value(self) -> float:
        if self.total_subscribers <= 0:
            return 0.0
        return round_money(self.total_revenue / self.total_subscribers)

    @classmethod
    def from_settlement(cls, settlement: MonthlySettlement, total_earnings: float) -> "SettlementSummary":
        return cls(
            id=settlement.uuid,
            month=settlement.month,
            status=settlement.status,
            total_subscribers=settlement.total_subscribers,
            total_revenue=settlement.total_revenue,
            distributable_revenue=settlement.distributable_revenue,
            total_points=settlement.total_points,
            point_value=settlement.point_value,
            educator_count=settlement.educator_count,
            total_earnings=total_earnings,
            finalized_at=settlement.finalized_at,
        )


@dataclass
class MonthlyEarningLine:
    month: datetime
    status: str
    points: float
    earnings: float
    withdrawn: float
    available_balance: float
    point_value: float


@dataclass
class CurrentMonthEstimate:
    points: float = 0.0
    earnings: float = 0.0
    point_value: float = 0.0
    total_points: float = 0.0
    total_subscribers: int = 0
    note: str = ""


@dataclass
class EducatorBalance:
    finalized_balance: float
    total_withdrawn: float
    current_month: CurrentMonthEstimate
    monthly_breakdown: List[MonthlyEarningLine]

    @property
    def total_balance(self) -> float:
        return round_money(self.finalized_balance + self.current_month.earnings)


class SettlementService:
    """Computes, persists and finalizes monthly settlements."""

    def __init__(
        self,
        rules: SettlementRules,
        revenue: RevenueCalculator,
        points: PointsCalculator,
        locks: LockManager,
        clock: Callable[[], datetime] = datetime.utcnow,
        lock_timeout: int = 900,
    ):
        self.rules = rules
        self.revenue = revenue
        self.points = points
        self.locks = locks
        self.clock = clock
        self.lock_timeout = lock_timeout

    async def preview_monthly_settlement(self, db: AsyncSession, month: datetime) -> SettlementComputation:
        """Compute the month's settlement without persisting anything."""
        start = month_start(month)

        revenue = await self.revenue.calculate_monthly_revenue(db, start)
        distributable = self.revenue.calculate_distributable_revenue(revenue.total_revenue)

        points = await self.points.calculate_total_points_for_month(db, start)
        point_value = calculate_point_value(distributable, points.total_points)

        staged = []
        if points.total_points > 0:
            for educator_id in await self._educator_ids(db):
                educator_points = await self.points.calculate_educator_points_for_month(db, educator_id, start)
                if educator_points.total_points <= 0:
                    continue
                staged.append(StagedEarning(
                    user_id=educator_id,
                    points=educator_points.total_points,
                    earnings=round_money(educator_points.total_points * point_value),
                    percentage_of_total=round(educator_points.total_points / points.total_points * 100, 2),
                ))

        # Python's sort is stable, so equal earnings keep sign-up order
        staged.sort(key=lambda e: e.earnings, reverse=True)
        self._conserve_pool(staged, distributable, start)

        logger.info(
            f"Settlement {month_label(start)}: revenue {revenue.total_revenue:.2f}, "
            f"distributable {distributable:.2f}, points {points.total_points}, "
            f"point value {point_value:.2f}, {len(staged)} educators"
        )
        return SettlementComputation(
            month=start,
            total_revenue=revenue.total_revenue,
            distributable_revenue=distributable,
            revenue_source=revenue.source,
            subscriber_count=revenue.subscriber_count,
            points=points,
            point_value=point_value,
            earnings=staged,
        )

    async def calculate_monthly_settlement(
        self, db: AsyncSession, month: datetime, finalize: bool = False
    ) -> SettlementSummary:
        """Compute and persist the month's settlement as a single transaction.

        Raises:
            SettlementInProgressError: another run for the month holds the lock.
            SettlementFinalizedError: the month is already finalized.
        """
        start = month_start(month)
        label = month_label(start)

        async with self.locks.hold(f"settlement:{label}", timeout=self.lock_timeout) as acquired:
            if not acquired:
                raise SettlementInProgressError(f"Settlement for {label} is already running")

            try:
                existing = await self._get_settlement(db, start)
                if existing is not None and existing.is_finalized:
                    raise SettlementFinalizedError(f"Settlement for {label} is finalized")

                computation = await self.preview_monthly_settlement(db, start)
                settlement = await self._write(db, existing, computation, finalize)
                await db.commit()
            except SettlementError:
                await db.rollback()
                raise
            except Exception:
                await db.rollback()
                logger.exception(f"Settlement for {label} failed, nothing was written")
                raise

        logger.info(f"Settlement {label} saved as {settlement.status} with {settlement.educator_count} educators")
        return SettlementSummary.from_settlement(settlement, computation.total_earnings)

    async def finalize_settlement(self, db: AsyncSession, month: datetime) -> SettlementSummary:
        """Move a DRAFT settlement to FINALIZED, making its earnings withdrawable."""
        start = month_start(month)
        label = month_label(start)

        async with self.locks.hold(f"settlement:{label}", timeout=self.lock_timeout) as acquired:
            if not acquired:
                raise SettlementInProgressError(f"Settlement for {label} is already running")

            settlement = await self._get_settlement(db, start)
            if settlement is None:
                raise SettlementNotFoundError(f"No settlement for {label}")
            if settlement.is_finalized:
                raise SettlementFinalizedError(f"Settlement for {label} is finalized")

            settlement.status = SETTLEMENT_FINALIZED
            settlement.finalized_at = self.clock()
            await db.commit()

        logger.info(f"Settlement {label} finalized")
        total = round_money(sum(e.earnings for e in settlement.educator_earnings))
        return SettlementSummary.from_settlement(settlement, total)

    async def get_settlement_details(self, db: AsyncSession, month: datetime) -> MonthlySettlement:
        settlement = await self._get_settlement(db, month_start(month), with_users=True)
        if settlement is None:
            raise SettlementNotFoundError(f"No settlement for {month_label(month)}")
        return settlement

    async def list_settlements(self, db: AsyncSession, limit: int = 12) -> List[MonthlySettlement]:
        """Most recent settlements with their earnings and educator identities."""
        result = await db.execute(
            select(MonthlySettlement)
            .options(selectinload(MonthlySettlement.educator_earnings).selectinload(EducatorEarning.user))
            .order_by(MonthlySettlement.month.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_educator_balance(self, db: AsyncSession, user_id: str) -> EducatorBalance:
        """Finalized (withdrawable) balance, per-month history and a current-month estimate."""
        result = await db.execute(
            select(EducatorEarning, MonthlySettlement)
            .join(MonthlySettlement, EducatorEarning.settlement_id == MonthlySettlement.uuid)
            .where(EducatorEarning.user_id == user_id)
            .order_by(MonthlySettlement.month.desc())
        )
        rows = result.all()

        breakdown = [
            MonthlyEarningLine(
                month=settlement.month,
                status=settlement.status,
                points=earning.points,
                earnings=earning.earnings,
                withdrawn=earning.withdrawn,
                available_balance=earning.available_balance,
                point_value=settlement.point_value,
            )
            for earning, settlement in rows
        ]
        finalized = [line for line in breakdown if line.status == SETTLEMENT_FINALIZED]

        return EducatorBalance(
            finalized_balance=round_money(sum(line.available_balance for line in finalized)),
            total_withdrawn=round_money(sum(line.withdrawn for line in finalized)),
            current_month=await self.estimate_current_month(db, user_id),
            monthly_breakdown=breakdown,
        )

    async def estimate_current_month(self, db: AsyncSession, user_id: str) -> CurrentMonthEstimate:
        """What the educator would earn if the month closed now."""
        start = month_start(self.clock())

        revenue = await self.revenue.calculate_monthly_revenue(db, start)
        distributable = self.revenue.calculate_distributable_revenue(revenue.total_revenue)
        total = await self.points.calculate_total_points_for_month(db, start)
        mine = await self.points.calculate_educator_points_for_month(db, user_id, start)
        point_value = calculate_point_value(distributable, total.total_points)

        if revenue.subscriber_count == 0:
            note = "No paid subscribers yet - earnings will be 0"
        else:
            note = "Estimate - will be finalized at month end"
        return CurrentMonthEstimate(
            points=mine.total_points,
            earnings=round_money(mine.total_points * point_value),
            point_value=point_value,
            total_points=total.total_points,
            total_subscribers=revenue.subscriber_count,
            note=note,
        )

    async def _educator_ids(self, db: AsyncSession) -> List[str]:
        result = await db.execute(
            select(User.uuid).where(User.user_role == ROLE_EDUCATOR).order_by(User.created_at, User.uuid)
        )
        return list(result.scalars().all())

    async def _get_settlement(
        self, db: AsyncSession, start: datetime, with_users: bool = False
    ) -> Optional[MonthlySettlement]:
        earnings = selectinload(MonthlySettlement.educator_earnings)
        if with_users:
            earnings = earnings.selectinload(EducatorEarning.user)
        query = select(MonthlySettlement).options(earnings).where(MonthlySettlement.month == start)
        if with_users:
            # Reload an already-loaded earnings collection so the users come with it
            query = query.execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def _write(
        self,
        db: AsyncSession,
        existing: Optional[MonthlySettlement],
        computation: SettlementComputation,
        finalize: bool,
    ) -> MonthlySettlement:
        now = self.clock()
        settlement = existing
        if settlement is None:
            settlement = MonthlySettlement(month=computation.month, educator_earnings=[])
            db.add(settlement)
        else:
            # Old draft rows go first: (settlement, educator) is unique
            settlement.educator_earnings.clear()
            await db.flush()

        breakdown = computation.points.breakdown
        settlement.total_revenue = computation.total_revenue
        settlement.distributable_revenue = computation.distributable_revenue
        settlement.revenue_source = computation.revenue_source
        settlement.total_subscribers = computation.subscriber_count
        settlement.total_points = computation.total_points
        settlement.media_play_points = breakdown.media_plays.points
        settlement.offline_download_points = breakdown.offline_downloads.points
        settlement.live_class_points = breakdown.live_class_attendance.points
        settlement.point_value = computation.point_value
        settlement.educator_count = len(computation.earnings)
        settlement.calculated_at = now
        settlement.status = SETTLEMENT_FINALIZED if finalize else SETTLEMENT_DRAFT
        settlement.finalized_at = now if finalize else None

        for staged in computation.earnings:
            settlement.educator_earnings.append(EducatorEarning(
                user_id=staged.user_id,
                points=staged.points,
                percentage_of_total=staged.percentage_of_total,
                earnings=staged.earnings,
                available_balance=staged.earnings,
                withdrawn=0.0,
            ))
        await db.flush()
        return settlement

    @staticmethod
    def _conserve_pool(staged: List[StagedEarning], pool: float, start: datetime) -> None:
        """Never pay out more than the pool.

        Rounding the point value and each educator's earnings half-up can push
        the sum a few cents over the distributable pool. Those cents are taken
        back one at a time from the largest earners.
        """
        excess = round(sum(e.earnings for e in staged) * 100) - round(pool * 100)
        if excess <= 0:
            return
        logger.warning(f"Settlement {month_label(start)}: trimming {excess} cents of rounding overshoot")
        index = 0
        while excess > 0:
            earning = staged[index % len(staged)]
            if earning.earnings >= 0.01:
                earning.earnings = round_money(earning.earnings - 0.01)
                excess -= 1
            index += 1


async def run_monthly_settlement(
    service: SettlementService,
    db: AsyncSession,
    month_identifier: Optional[str] = None,
    finalize: bool = False,
    timeout: Optional[float] = None,
) -> SettlementSummary:
    """Trigger entry point shared by the scheduler, the cron endpoint and admins.

    ``month_identifier`` accepts ``YYYY-MM``, ``YYYY-MM-DD`` or an ISO
    timestamp and defaults to the previous calendar month. A run that exceeds
    ``timeout`` seconds is cancelled, rolled back and reported as
    ``SettlementTimeoutError``; it can simply be retried.
    """
    target = parse_month_identifier(month_identifier, service.clock())
    try:
        return await asyncio.wait_for(
            service.calculate_monthly_settlement(db, target, finalize=finalize),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        await db.rollback()
        raise SettlementTimeoutError(f"Settlement for {month_label(target)} timed out after {timeout}s") from e
