"""Monthly subscription revenue with day-based proration.

Revenue for a month is attributed from realized payments: each completed
payment pays for a window (from the later of its payment date and the previous
expiry, up to the new expiry) and contributes its monthly-equivalent amount
scaled by the share of the month's days that window covers.

When a month has no realized payments at all, the calculator falls back to the
subscription plans whose lifetime overlaps the month, priced at their face
value. That fallback is an approximation (it cannot see discounts, failed
renewals or refunds) and is reported as such through ``RevenueResult.source``.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import SubscriptionPlan, STATUS_ACTIVE, STATUS_GRACE_PERIOD
from app.models.subscription_payment import SubscriptionPayment, PAYMENT_COMPLETED
from app.services.periods import days_in_month, month_bounds, month_label, overlap_days
from app.services.rules import SettlementRules, round_money

logger = logging.getLogger(__name__)

SOURCE_PAYMENTS = "payments"
SOURCE_SUBSCRIPTIONS = "subscriptions"
SOURCE_NONE = "none"

# Plans that are still being paid for; trials never generate revenue
REVENUE_STATUSES = (STATUS_ACTIVE, STATUS_GRACE_PERIOD)


@dataclass
class RevenueContribution:
    user_id: str
    window_start: datetime
    window_end: datetime
    active_days: int
    monthly_amount: float
    revenue: float


@dataclass
class RevenueResult:
    month: datetime
    total_revenue: float = 0.0
    subscriber_count: int = 0
    source: str = SOURCE_NONE
    contributions: List[RevenueContribution] = field(default_factory=list)


class RevenueCalculator:
    """Computes gross revenue attributable to a month and the educators' share of it."""

    def __init__(self, rules: SettlementRules):
        self.rules = rules

    async def calculate_monthly_revenue(self, db: AsyncSession, target_month: datetime) -> RevenueResult:
        start, end = month_bounds(target_month)
        total_days = days_in_month(start)

        contributions = await self._payment_contributions(db, start, end, total_days)
        source = SOURCE_PAYMENTS
        if not contributions:
            contributions = await self._subscription_contributions(db, start, end, total_days)
            source = SOURCE_SUBSCRIPTIONS
            if contributions:
                logger.info(
                    f"No realized payments for {month_label(start)}, "
                    f"using face value of {len(contributions)} active subscriptions"
                )

        contributions = self._cap_user_days(contributions, total_days)

        if not contributions:
            logger.info(f"No subscription revenue for {month_label(start)}")
            return RevenueResult(month=start)

        per_user = defaultdict(float)
        for contribution in contributions:
            per_user[contribution.user_id] += contribution.revenue

        total = round_money(sum(per_user.values()))
        subscribers = sum(1 for amount in per_user.values() if amount > 0)

        logger.info(
            f"Revenue for {month_label(start)}: {total:.2f} from {subscribers} subscribers "
            f"({source}, {total_days} days)"
        )
        return RevenueResult(
            month=start,
            total_revenue=total,
            subscriber_count=subscribers,
            source=source,
            contributions=contributions,
        )

    def calculate_distributable_revenue(self, total_revenue: float) -> float:
        """The educators' share of gross revenue."""
        return round_money(total_revenue * self.rules.educator_revenue_share)

    def is_subscription_active_for_month(
        self, subscription_start: datetime, subscription_end: datetime, target_month: datetime
    ) -> bool:
        """Whether any part of ``[subscription_start, subscription_end]`` falls in the month."""
        start, end = month_bounds(target_month)
        return subscription_start <= end and subscription_end >= start

    async def get_subscribers_for_month(self, db: AsyncSession, target_month: datetime) -> List[str]:
        """Distinct users whose paid-for plan overlaps the month."""
        start, end = month_bounds(target_month)
        result = await db.execute(
            select(SubscriptionPlan.user_id)
            .where(
                SubscriptionPlan.status.in_(REVENUE_STATUSES),
                SubscriptionPlan.created_at <= end,
                SubscriptionPlan.expires_at >= start,
            )
            .distinct()
        )
        return list(result.scalars().all())

    async def _payment_contributions(
        self, db: AsyncSession, start: datetime, end: datetime, total_days: int
    ) -> List[RevenueContribution]:
        result = await db.execute(
            select(SubscriptionPayment).where(
                SubscriptionPayment.payment_status == PAYMENT_COMPLETED,
                SubscriptionPayment.payment_date <= end,
                or_(
                    SubscriptionPayment.expiration_after >= start,
                    and_(
                        SubscriptionPayment.expiration_after.is_(None),
                        SubscriptionPayment.payment_date >= start,
                    ),
                ),
            )
        )

        contributions = []
        for payment in result.scalars().all():
            window_start = payment.payment_date
            if payment.expiration_before is not None and payment.expiration_before > window_start:
                # Early renewal: the new period starts when the old one ends
                window_start = payment.expiration_before
            # Payments without an expiry (lifetime) pay for the month they were made in
            window_end = payment.expiration_after or end

            contribution = self._prorate(
                payment.user_id, window_start, window_end, payment.monthly_amount, start, end, total_days
            )
            if contribution is not None:
                contributions.append(contribution)
        return contributions

    async def _subscription_contributions(
        self, db: AsyncSession, start: datetime, end: datetime, total_days: int
    ) -> List[RevenueContribution]:
        result = await db.execute(
            select(SubscriptionPlan).where(
                SubscriptionPlan.status.in_(REVENUE_STATUSES),
                SubscriptionPlan.created_at <= end,
                SubscriptionPlan.expires_at >= start,
            )
        )

        contributions = []
        for plan in result.scalars().all():
            contribution = self._prorate(
                plan.user_id, plan.created_at, plan.expires_at, plan.monthly_price, start, end, total_days
            )
            if contribution is not None:
                contributions.append(contribution)
        return contributions

    @staticmethod
    def _prorate(
        user_id: str,
        window_start: datetime,
        window_end: datetime,
        monthly_amount: float,
        month_start: datetime,
        month_end: datetime,
        total_days: int,
    ):
        days = min(overlap_days(window_start, window_end, month_start, month_end), total_days)
        if days <= 0 or monthly_amount <= 0:
            return None
        return RevenueContribution(
            user_id=user_id,
            window_start=max(window_start, month_start),
            window_end=min(window_end, month_end),
            active_days=days,
            monthly_amount=monthly_amount,
            revenue=monthly_amount * days / total_days,
        )

    @staticmethod
    def _cap_user_days(contributions: List[RevenueContribution], total_days: int) -> List[RevenueContribution]:
        """Trim overlapping windows so no user is billed for more days than the month has."""
        by_user = defaultdict(list)
        for contribution in contributions:
            by_user[contribution.user_id].append(contribution)

        capped = []
        for user_id, windows in by_user.items():
            remaining = total_days
            for contribution in sorted(windows, key=lambda c: c.window_start):
                days = min(contribution.active_days, remaining)
                if days <= 0:
                    logger.warning(f"Dropped overlapping payment window for {user_id} starting {contribution.window_start}")
                    continue
                if days < contribution.active_days:
                    contribution.active_days = days
                    contribution.revenue = contribution.monthly_amount * days / total_days
                remaining -= days
                capped.append(contribution)
        return capped
