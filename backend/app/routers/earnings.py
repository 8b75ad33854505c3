"""Educator earnings dashboard and withdrawal requests."""
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import educator_required
from app.container import ServiceContainer, get_container
from app.database import get_db
from app.models.user import User
from app.schemas.settlements import EarningsResponse
from app.schemas.withdrawals import WithdrawalCreateRequest, WithdrawalResponse, WithdrawalListResponse
from app.services.errors import InsufficientBalanceError, PendingWithdrawalExistsError

router = APIRouter()


@router.get("/api/users/me/earnings", response_model=EarningsResponse)
async def get_my_earnings(
    current_user: User = Depends(educator_required),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """
    Earnings dashboard for the current educator.

    - ``available_balance``: finalized earnings not yet withdrawn
    - ``current_month``: live estimate, settled at month end
    - ``monthly_breakdown``: one line per settled month, newest first
    """
    balance = await container.settlements.get_educator_balance(db, current_user.uuid)
    return {
        "available_balance": balance.finalized_balance,
        "total_withdrawn": balance.total_withdrawn,
        "total_balance": balance.total_balance,
        "current_month": asdict(balance.current_month),
        "monthly_breakdown": [asdict(line) for line in balance.monthly_breakdown],
    }


@router.post("/api/users/me/withdrawals", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(
    withdrawal_data: WithdrawalCreateRequest,
    current_user: User = Depends(educator_required),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    try:
        request = await container.withdrawals.create_withdrawal_request(
            db, current_user.uuid, withdrawal_data.amount, note=withdrawal_data.note
        )
    except PendingWithdrawalExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InsufficientBalanceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await db.commit()
    return request


@router.get("/api/users/me/withdrawals", response_model=WithdrawalListResponse)
async def list_my_withdrawals(
    current_user: User = Depends(educator_required),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    requests = await container.withdrawals.list_user_withdrawal_requests(db, current_user.uuid)
    return {"items": requests, "total": len(requests)}
