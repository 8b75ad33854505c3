"""Endpoints for an external scheduler, authenticated with the shared CRON_SECRET."""
import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, status, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.container import ServiceContainer, get_container
from app.database import get_db
from app.services.errors import SettlementError, SettlementFinalizedError, SettlementTimeoutError
from app.services.settlement import run_monthly_settlement

logger = logging.getLogger(__name__)

router = APIRouter()

bearer = HTTPBearer(auto_error=False)


async def cron_secret_required(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    container: ServiceContainer = Depends(get_container),
) -> None:
    expected = container.settings.CRON_SECRET
    supplied = credentials.credentials if credentials else ""
    # An unset secret disables the endpoint
    if not expected or not secrets.compare_digest(supplied, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


@router.post("/api/cron/monthly-settlement", dependencies=[Depends(cron_secret_required)])
async def monthly_settlement(
    month: str = Query(None, description="YYYY-MM, YYYY-MM-DD or ISO timestamp; defaults to the previous month"),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """
    Settle a month on behalf of an external cron.

    Re-running an already finalized month is a no-op reported as ``skipped``.
    """
    try:
        summary = await run_monthly_settlement(
            container.settlements,
            db,
            month_identifier=month,
            finalize=container.settings.SETTLEMENT_AUTO_FINALIZE,
            timeout=container.settings.SETTLEMENT_TIMEOUT_SECONDS,
        )
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid month {month!r}")
    except SettlementFinalizedError as e:
        logger.info(f"Cron settlement skipped: {e}")
        return {"success": True, "skipped": True, "message": str(e)}
    except SettlementTimeoutError as e:
        logger.error(f"Cron settlement timed out: {e}")
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(e))
    except SettlementError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"Cron settlement failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process monthly settlement"
        )

    return {
        "success": True,
        "skipped": False,
        "month": f"{summary.month:%Y-%m}",
        "status": summary.status,
        "total_revenue": summary.total_revenue,
        "distributable_revenue": summary.distributable_revenue,
        "total_points": summary.total_points,
        "point_value": summary.point_value,
        "educator_count": summary.educator_count,
        "total_earnings": summary.total_earnings,
    }
