"""Subscription lifecycle: purchase, renewal, cancellation and the expiry sweep.

Status moves through TRIAL / ACTIVE -> GRACE_PERIOD -> EXPIRED when a plan
lapses, back to ACTIVE on a successful renewal, and to CANCELLED on an
immediate cancellation. Every change appends a SubscriptionHistory row and
every payment appends a SubscriptionPayment row; neither table is updated
afterwards.

Methods flush but do not commit; callers own the transaction.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import (
    SubscriptionHistory, SubscriptionPlan,
    PLAN_LIFETIME, PLAN_MONTHLY, PLAN_YEARLY,
    STATUS_ACTIVE, STATUS_CANCELLED, STATUS_EXPIRED, STATUS_GRACE_PERIOD, STATUS_TRIAL,
    ACTION_CANCELLED, ACTION_CREATED, ACTION_EXPIRED, ACTION_GRACE_PERIOD_STARTED, ACTION_RENEWED,
)
from app.models.subscription_payment import SubscriptionPayment, PAYMENT_COMPLETED
from app.services.periods import add_months
from app.services.rules import SettlementRules, round_money

logger = logging.getLogger(__name__)

OUTCOME_OK = "ok"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_EXISTS = "exists"
OUTCOME_NOT_RENEWABLE = "not_renewable"

# Statuses that still grant access
ACCESS_STATUSES = (STATUS_TRIAL, STATUS_ACTIVE, STATUS_GRACE_PERIOD)

# Far enough out that a lifetime plan never reaches the expiry sweep
LIFETIME_EXPIRY = datetime(9999, 12, 31)


@dataclass
class SubscriptionOutcome:
    """Result of a subscription operation. Missing plans are an outcome, not an error."""
    status: str
    plan: Optional[SubscriptionPlan] = None
    payment: Optional[SubscriptionPayment] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OUTCOME_OK


@dataclass
class RenewalCharge:
    amount: float
    payment_method: str
    payment_reference: Optional[str] = None


@dataclass
class ExpirySweepResult:
    renewed: int = 0
    grace_started: int = 0
    expired: int = 0


# Called by the sweep for auto-renewing plans; returns None when the charge fails
ChargeRenewal = Callable[[SubscriptionPlan], Awaitable[Optional[RenewalCharge]]]


def monthly_equivalent(amount: float, plan_type: str, months: int) -> float:
    """Spread a payment over the calendar months it pays for."""
    periods = months or 1
    if plan_type == PLAN_YEARLY:
        return round_money(amount / (12 * periods))
    if plan_type == PLAN_LIFETIME:
        return round_money(amount)
    return round_money(amount / periods)


def extend_expiry(start: datetime, plan_type: str, months: int) -> datetime:
    periods = months or 1
    if plan_type == PLAN_YEARLY:
        return add_months(start, 12 * periods)
    if plan_type == PLAN_LIFETIME:
        return LIFETIME_EXPIRY
    return add_months(start, periods)


class SubscriptionService:
    def __init__(self, rules: SettlementRules, clock: Callable[[], datetime] = datetime.utcnow):
        self.rules = rules
        self.clock = clock

    async def get_plan(self, db: AsyncSession, user_id: str) -> Optional[SubscriptionPlan]:
        result = await db.execute(select(SubscriptionPlan).where(SubscriptionPlan.user_id == user_id))
        return result.scalar_one_or_none()

    async def create_subscription_plan(
        self,
        db: AsyncSession,
        user_id: str,
        plan_type: str = PLAN_MONTHLY,
        price: float = 0.0,
        months: int = 1,
        name: str = "Premium",
        trial_days: Optional[int] = None,
        payment_method: Optional[str] = None,
        payment_reference: Optional[str] = None,
    ) -> SubscriptionOutcome:
        """
        Start a subscription.

        A trial starts in TRIAL and expires when the trial ends, with no
        payment. Otherwise the plan starts ACTIVE and the purchase is recorded
        as a completed payment.
        """
        if await self.get_plan(db, user_id) is not None:
            return SubscriptionOutcome(status=OUTCOME_EXISTS, message="User already has a subscription plan")

        now = self.clock()
        plan = SubscriptionPlan(
            user_id=user_id,
            name=name,
            plan_type=plan_type,
            price=price,
            months=months,
            created_at=now,
        )
        if trial_days:
            plan.status = STATUS_TRIAL
            plan.trial_ends_at = now + timedelta(days=trial_days)
            plan.expires_at = plan.trial_ends_at
        else:
            plan.status = STATUS_ACTIVE
            plan.expires_at = extend_expiry(now, plan_type, months)
        db.add(plan)
        await db.flush()

        payment = None
        if not trial_days:
            payment = self._record_payment(
                db, plan, price, payment_method, payment_reference,
                is_renewal=False, expiration_before=None, now=now,
            )
        self._log_action(
            db, plan, ACTION_CREATED, None, plan.status, None, plan.expires_at, "Subscription plan created"
        )
        await db.flush()

        logger.info(f"Created {plan.plan_type} subscription for {user_id} ({plan.status})")
        return SubscriptionOutcome(status=OUTCOME_OK, plan=plan, payment=payment)

    async def renew_subscription(
        self,
        db: AsyncSession,
        user_id: str,
        amount: float,
        payment_method: str,
        payment_reference: Optional[str] = None,
    ) -> SubscriptionOutcome:
        """Extend the plan by one billing period from its expiry (or now, if already lapsed)."""
        plan = await self.get_plan(db, user_id)
        if plan is None:
            return SubscriptionOutcome(status=OUTCOME_NOT_FOUND, message="No subscription found for user")
        if plan.plan_type == PLAN_LIFETIME and plan.status == STATUS_ACTIVE:
            return SubscriptionOutcome(
                status=OUTCOME_NOT_RENEWABLE, plan=plan, message="Lifetime plans do not renew"
            )

        payment = self._renew(db, plan, amount, payment_method, payment_reference)
        await db.flush()
        return SubscriptionOutcome(status=OUTCOME_OK, plan=plan, payment=payment)

    async def cancel_subscription(
        self, db: AsyncSession, user_id: str, reason: Optional[str] = None, immediate: bool = False
    ) -> SubscriptionOutcome:
        """Stop auto-renewal; with ``immediate`` also end access now."""
        plan = await self.get_plan(db, user_id)
        if plan is None:
            return SubscriptionOutcome(status=OUTCOME_NOT_FOUND, message="No subscription found for user")

        now = self.clock()
        old_status, old_expiry = plan.status, plan.expires_at
        plan.auto_renew = False
        plan.cancelled_at = now
        plan.cancellation_reason = reason
        if immediate:
            plan.status = STATUS_CANCELLED
            plan.expires_at = now

        self._log_action(
            db, plan, ACTION_CANCELLED, old_status, plan.status, old_expiry, plan.expires_at,
            reason or "User cancelled subscription",
        )
        await db.flush()
        logger.info(f"Cancelled subscription for {user_id} (immediate={immediate})")
        return SubscriptionOutcome(status=OUTCOME_OK, plan=plan)

    async def process_expired_subscriptions(
        self, db: AsyncSession, charge_renewal: Optional[ChargeRenewal] = None
    ) -> ExpirySweepResult:
        """
        Move lapsed plans along the state machine.

        TRIAL/ACTIVE plans past expiry are auto-renewed when they opt in and
        ``charge_renewal`` succeeds; otherwise they enter the grace period.
        GRACE_PERIOD plans past the grace window become EXPIRED.
        """
        now = self.clock()
        sweep = ExpirySweepResult()

        result = await db.execute(
            select(SubscriptionPlan).where(
                SubscriptionPlan.status.in_((STATUS_ACTIVE, STATUS_TRIAL)),
                SubscriptionPlan.expires_at <= now,
            )
        )
        for plan in result.scalars().all():
            charge = None
            if plan.auto_renew and plan.status == STATUS_ACTIVE and charge_renewal is not None:
                charge = await self._attempt_charge(plan, charge_renewal)
            if charge is not None:
                self._renew(db, plan, charge.amount, charge.payment_method, charge.payment_reference)
                sweep.renewed += 1
                continue

            old_status = plan.status
            plan.status = STATUS_GRACE_PERIOD
            plan.grace_period_ends = now + self.rules.grace_period
            reason = "Auto-renewal failed, grace period started" if plan.auto_renew else "Subscription lapsed"
            self._log_action(
                db, plan, ACTION_GRACE_PERIOD_STARTED, old_status, STATUS_GRACE_PERIOD,
                plan.expires_at, plan.grace_period_ends, reason,
            )
            sweep.grace_started += 1

        result = await db.execute(
            select(SubscriptionPlan).where(
                SubscriptionPlan.status == STATUS_GRACE_PERIOD,
                SubscriptionPlan.grace_period_ends <= now,
            )
        )
        for plan in result.scalars().all():
            plan.status = STATUS_EXPIRED
            self._log_action(
                db, plan, ACTION_EXPIRED, STATUS_GRACE_PERIOD, STATUS_EXPIRED,
                plan.grace_period_ends, plan.grace_period_ends, "Grace period expired",
            )
            sweep.expired += 1

        await db.flush()
        if sweep.renewed or sweep.grace_started or sweep.expired:
            logger.info(
                f"Subscription sweep: {sweep.renewed} renewed, "
                f"{sweep.grace_started} entered grace period, {sweep.expired} expired"
            )
        return sweep

    async def get_user_subscription_status(self, db: AsyncSession, user_id: str) -> SubscriptionOutcome:
        plan = await self.get_plan(db, user_id)
        if plan is None:
            return SubscriptionOutcome(status=OUTCOME_NOT_FOUND, message="No subscription found for user")
        return SubscriptionOutcome(status=OUTCOME_OK, plan=plan)

    async def get_payment_history(self, db: AsyncSession, user_id: str, limit: int = 20) -> List[SubscriptionPayment]:
        result = await db.execute(
            select(SubscriptionPayment)
            .where(SubscriptionPayment.user_id == user_id)
            .order_by(SubscriptionPayment.payment_date.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_history(self, db: AsyncSession, user_id: str) -> List[SubscriptionHistory]:
        result = await db.execute(
            select(SubscriptionHistory)
            .where(SubscriptionHistory.user_id == user_id)
            .order_by(SubscriptionHistory.created_at, SubscriptionHistory.uuid)
        )
        return list(result.scalars().all())

    def has_access(self, plan: Optional[SubscriptionPlan]) -> bool:
        return plan is not None and plan.status in ACCESS_STATUSES

    def _renew(
        self,
        db: AsyncSession,
        plan: SubscriptionPlan,
        amount: float,
        payment_method: Optional[str],
        payment_reference: Optional[str],
    ) -> SubscriptionPayment:
        now = self.clock()
        old_status, old_expiry = plan.status, plan.expires_at
        new_expiry = extend_expiry(max(old_expiry, now), plan.plan_type, plan.months)

        plan.status = STATUS_ACTIVE
        plan.expires_at = new_expiry
        plan.last_renewal_date = now
        plan.grace_period_ends = None
        plan.trial_ends_at = None

        payment = self._record_payment(
            db, plan, amount, payment_method, payment_reference,
            is_renewal=True, expiration_before=old_expiry, now=now,
        )
        self._log_action(
            db, plan, ACTION_RENEWED, old_status, STATUS_ACTIVE, old_expiry, new_expiry,
            "Subscription renewed successfully",
        )
        logger.info(f"Renewed subscription for {plan.user_id} until {new_expiry:%Y-%m-%d}")
        return payment

    def _record_payment(
        self,
        db: AsyncSession,
        plan: SubscriptionPlan,
        amount: float,
        payment_method: Optional[str],
        payment_reference: Optional[str],
        is_renewal: bool,
        expiration_before: Optional[datetime],
        now: datetime,
    ) -> SubscriptionPayment:
        payment = SubscriptionPayment(
            user_id=plan.user_id,
            subscription_id=plan.uuid,
            amount=amount,
            monthly_amount=monthly_equivalent(amount, plan.plan_type, plan.months),
            months=plan.months,
            plan_type=plan.plan_type,
            payment_status=PAYMENT_COMPLETED,
            payment_method=payment_method,
            payment_reference=payment_reference,
            is_renewal=is_renewal,
            expiration_before=expiration_before,
            # Lifetime payments carry no expiry; they count for the month they were made in
            expiration_after=None if plan.plan_type == PLAN_LIFETIME else plan.expires_at,
            payment_date=now,
        )
        db.add(payment)
        return payment

    def _log_action(
        self,
        db: AsyncSession,
        plan: SubscriptionPlan,
        action: str,
        old_status: Optional[str],
        new_status: str,
        old_expires_at: Optional[datetime],
        new_expires_at: Optional[datetime],
        reason: Optional[str],
    ) -> None:
        db.add(SubscriptionHistory(
            user_id=plan.user_id,
            subscription_id=plan.uuid,
            action=action,
            old_status=old_status,
            new_status=new_status,
            old_expires_at=old_expires_at,
            new_expires_at=new_expires_at,
            reason=reason,
            created_at=self.clock(),
        ))

    @staticmethod
    async def _attempt_charge(plan: SubscriptionPlan, charge_renewal: ChargeRenewal) -> Optional[RenewalCharge]:
        try:
            return await charge_renewal(plan)
        except Exception as e:
            # A failed charge moves the plan to the grace period instead of aborting the sweep
            logger.error(f"Auto-renewal charge failed for {plan.user_id}: {e}")
            return None
