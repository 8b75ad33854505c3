"""Admin endpoints for settlements and withdrawal requests."""
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import admin_required
from app.container import ServiceContainer, get_container
from app.database import get_db
from app.models.settlement import MonthlySettlement
from app.models.user import User
from app.schemas.settlements import (
    SettlementRunRequest, SettlementSummaryResponse, SettlementPreviewResponse,
    SettlementDetailResponse, SettlementListResponse,
)
from app.schemas.withdrawals import WithdrawalStatusUpdate, WithdrawalResponse, WithdrawalListResponse
from app.services.errors import (
    SettlementError, SettlementFinalizedError, SettlementInProgressError,
    SettlementNotFoundError, SettlementTimeoutError,
    WithdrawalError, WithdrawalNotFoundError, InvalidWithdrawalTransitionError, InsufficientBalanceError,
)
from app.services.periods import parse_month_identifier
from app.services.rules import round_money
from app.services.settlement import SettlementSummary, run_monthly_settlement

logger = logging.getLogger(__name__)

router = APIRouter()

SETTLEMENT_ERROR_STATUS = {
    SettlementFinalizedError: status.HTTP_409_CONFLICT,
    SettlementInProgressError: status.HTTP_409_CONFLICT,
    SettlementNotFoundError: status.HTTP_404_NOT_FOUND,
    SettlementTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
}

WITHDRAWAL_ERROR_STATUS = {
    WithdrawalNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidWithdrawalTransitionError: status.HTTP_409_CONFLICT,
    InsufficientBalanceError: status.HTTP_400_BAD_REQUEST,
}


def settlement_http_error(e: SettlementError) -> HTTPException:
    return HTTPException(
        status_code=SETTLEMENT_ERROR_STATUS.get(type(e), status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=str(e),
    )


def parse_month_or_400(value, container: ServiceContainer):
    try:
        return parse_month_identifier(value, container.settlements.clock())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid month {value!r}, expected YYYY-MM or YYYY-MM-DD"
        )


def summary_response(summary: SettlementSummary) -> dict:
    return {
        **asdict(summary),
        "average_subscription_value": summary.average_subscription_value,
    }


def settlement_detail(settlement: MonthlySettlement) -> dict:
    earnings = settlement.educator_earnings
    total_earnings = round_money(sum(e.earnings for e in earnings))
    return {
        "id": settlement.uuid,
        "month": settlement.month,
        "status": settlement.status,
        "revenue_source": settlement.revenue_source,
        "total_subscribers": settlement.total_subscribers,
        "total_revenue": settlement.total_revenue,
        "distributable_revenue": settlement.distributable_revenue,
        "total_points": settlement.total_points,
        "media_play_points": settlement.media_play_points,
        "offline_download_points": settlement.offline_download_points,
        "live_class_points": settlement.live_class_points,
        "point_value": settlement.point_value,
        "educator_count": settlement.educator_count,
        "total_earnings": total_earnings,
        "average_earnings": round_money(total_earnings / len(earnings)) if earnings else 0.0,
        "calculated_at": settlement.calculated_at,
        "finalized_at": settlement.finalized_at,
        "educator_earnings": [
            {
                "user_id": e.user_id,
                "name": e.user.name if e.user else None,
                "email": e.user.email if e.user else None,
                "points": e.points,
                "percentage_of_total": e.percentage_of_total,
                "earnings": e.earnings,
                "available_balance": e.available_balance,
                "withdrawn": e.withdrawn,
            }
            for e in earnings
        ],
    }


@router.post("/settlements/run", response_model=SettlementSummaryResponse)
async def run_settlement(
    run_data: SettlementRunRequest,
    current_user: User = Depends(admin_required),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """
    Compute and store a month's settlement.

    - ``month`` defaults to the previous calendar month
    - Without ``finalize`` the result is a DRAFT that can be recomputed
    - A finalized month is never recomputed (409)
    """
    parse_month_or_400(run_data.month, container)
    logger.info(f"Admin {current_user.email} triggered settlement for {run_data.month or 'previous month'}")
    try:
        summary = await run_monthly_settlement(
            container.settlements,
            db,
            month_identifier=run_data.month,
            finalize=run_data.finalize,
            timeout=container.settings.SETTLEMENT_TIMEOUT_SECONDS,
        )
    except SettlementError as e:
        raise settlement_http_error(e)
    return summary_response(summary)


@router.get("/settlements/preview", response_model=SettlementPreviewResponse)
async def preview_settlement(
    month: str = Query(None, description="YYYY-MM; defaults to the previous month"),
    current_user: User = Depends(admin_required),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """What a settlement run would produce for the month. Nothing is written."""
    target = parse_month_or_400(month, container)
    computation = await container.settlements.preview_monthly_settlement(db, target)
    breakdown = computation.points.breakdown
    return {
        "month": computation.month,
        "total_revenue": computation.total_revenue,
        "distributable_revenue": computation.distributable_revenue,
        "revenue_source": computation.revenue_source,
        "total_subscribers": computation.subscriber_count,
        "total_points": computation.total_points,
        "point_value": computation.point_value,
        "total_earnings": computation.total_earnings,
        "breakdown": {
            "media_plays": asdict(breakdown.media_plays),
            "offline_downloads": asdict(breakdown.offline_downloads),
            "live_class_attendance": asdict(breakdown.live_class_attendance),
        },
        "earnings": [asdict(e) for e in computation.earnings],
    }


@router.post("/settlements/{month}/finalize", response_model=SettlementSummaryResponse)
async def finalize_settlement(
    month: str,
    current_user: User = Depends(admin_required),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Finalize a DRAFT settlement; its earnings become withdrawable."""
    target = parse_month_or_400(month, container)
    try:
        summary = await container.settlements.finalize_settlement(db, target)
    except SettlementError as e:
        raise settlement_http_error(e)
    logger.info(f"Admin {current_user.email} finalized settlement {month}")
    return summary_response(summary)


@router.get("/settlements", response_model=SettlementListResponse)
async def list_settlements(
    limit: int = Query(12, ge=1, le=60),
    current_user: User = Depends(admin_required),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """Recent settlements, newest first, with per-educator earnings."""
    settlements = await container.settlements.list_settlements(db, limit=limit)
    return {
        "items": [settlement_detail(s) for s in settlements],
        "total": len(settlements),
    }


@router.get("/settlements/{month}", response_model=SettlementDetailResponse)
async def get_settlement(
    month: str,
    current_user: User = Depends(admin_required),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    target = parse_month_or_400(month, container)
    try:
        settlement = await container.settlements.get_settlement_details(db, target)
    except SettlementError as e:
        raise settlement_http_error(e)
    return settlement_detail(settlement)


@router.get("/withdrawal-requests", response_model=WithdrawalListResponse)
async def list_withdrawal_requests(
    status_filter: str = Query(None, alias="status", pattern="^(PENDING|APPROVED|REJECTED|PROCESSED)$"),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(admin_required),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    requests = await container.withdrawals.list_withdrawal_requests(db, status=status_filter, limit=limit)
    return {"items": requests, "total": len(requests)}


@router.patch("/withdrawal-requests/{request_id}", response_model=WithdrawalResponse)
async def update_withdrawal_request(
    request_id: str,
    update_data: WithdrawalStatusUpdate,
    current_user: User = Depends(admin_required),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """
    Move a withdrawal request through its lifecycle.

    PROCESSED debits the educator's balance; if the balance no longer covers
    the amount the request stays APPROVED and a 400 is returned.
    """
    try:
        request = await container.withdrawals.update_withdrawal_status(
            db, request_id, update_data.status, note=update_data.note
        )
    except WithdrawalError as e:
        raise HTTPException(
            status_code=WITHDRAWAL_ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST),
            detail=str(e),
        )
    logger.info(f"Admin {current_user.email} set withdrawal {request_id} to {update_data.status}")
    return request
