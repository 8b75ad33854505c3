"""Subscriptions router: the current user's platform subscription."""
from typing import Awaitable

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_active_user
from app.container import ServiceContainer, get_container
from app.database import get_db
from app.models.user import User
from app.schemas.subscriptions import (
    SubscriptionCreateRequest, SubscriptionRenewRequest, SubscriptionCancelRequest,
    SubscriptionResponse, SubscriptionStatusResponse, PaymentListResponse,
)
from app.services.subscriptions import (
    SubscriptionOutcome, OUTCOME_EXISTS, OUTCOME_NOT_FOUND, OUTCOME_NOT_RENEWABLE,
)

router = APIRouter()

OUTCOME_STATUS_CODES = {
    OUTCOME_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    OUTCOME_EXISTS: status.HTTP_409_CONFLICT,
    OUTCOME_NOT_RENEWABLE: status.HTTP_400_BAD_REQUEST,
}


def _raise_for_outcome(outcome: SubscriptionOutcome) -> None:
    if not outcome.ok:
        raise HTTPException(
            status_code=OUTCOME_STATUS_CODES.get(outcome.status, status.HTTP_400_BAD_REQUEST),
            detail=outcome.message,
        )


async def _record_purchase(db: AsyncSession, purchase: Awaitable[SubscriptionOutcome]) -> SubscriptionOutcome:
    """Run a purchase or renewal and commit it; a reused payment reference is a 409."""
    try:
        outcome = await purchase
        _raise_for_outcome(outcome)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Payment reference already used"
        )
    return outcome


@router.post("/api/subscriptions/me", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    subscription_data: SubscriptionCreateRequest,
    current_user: User = Depends(get_current_active_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """
    Start a subscription for the current user.

    - With ``trial_days`` the plan starts in TRIAL and no payment is recorded
    - Otherwise the purchase is recorded as a completed payment
    """
    outcome = await _record_purchase(db, container.subscriptions.create_subscription_plan(
        db,
        current_user.uuid,
        plan_type=subscription_data.plan_type,
        price=subscription_data.price,
        months=subscription_data.months,
        name=subscription_data.name,
        trial_days=subscription_data.trial_days,
        payment_method=subscription_data.payment_method,
        payment_reference=subscription_data.payment_reference,
    ))
    return outcome.plan


@router.post("/api/subscriptions/me/renew", response_model=SubscriptionResponse)
async def renew_subscription(
    renew_data: SubscriptionRenewRequest,
    current_user: User = Depends(get_current_active_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    outcome = await _record_purchase(db, container.subscriptions.renew_subscription(
        db,
        current_user.uuid,
        amount=renew_data.amount,
        payment_method=renew_data.payment_method,
        payment_reference=renew_data.payment_reference,
    ))
    return outcome.plan


@router.post("/api/subscriptions/me/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    cancel_data: SubscriptionCancelRequest,
    current_user: User = Depends(get_current_active_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    outcome = await container.subscriptions.cancel_subscription(
        db, current_user.uuid, reason=cancel_data.reason, immediate=cancel_data.immediate
    )
    _raise_for_outcome(outcome)
    await db.commit()
    return outcome.plan


@router.get("/api/subscriptions/me", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    current_user: User = Depends(get_current_active_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Current plan, if any. A user without a plan gets ``has_subscription=false``, not a 404."""
    outcome = await container.subscriptions.get_user_subscription_status(db, current_user.uuid)
    return {
        "has_subscription": outcome.ok,
        "has_access": container.subscriptions.has_access(outcome.plan),
        "subscription": outcome.plan,
    }


@router.get("/api/subscriptions/me/payments", response_model=PaymentListResponse)
async def list_payments(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_active_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    payments = await container.subscriptions.get_payment_history(db, current_user.uuid, limit=limit)
    return {"items": payments, "total": len(payments)}
