"""Learner activity ingestion: media plays, offline downloads and live-class attendance."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_active_user, educator_required
from app.container import ServiceContainer, get_container
from app.database import get_db
from app.models.live_class import LiveClass, LiveClassAttendee
from app.models.offline_download import OfflineDownload
from app.models.user import User, ROLE_EDUCATOR
from app.schemas.activity import (
    PlayCreateRequest, PlayResponse, DownloadCreateRequest, DownloadResponse,
    LiveClassCreateRequest, LiveClassResponse, AttendanceResponse,
)
from app.services.play_tracking import PlayEvent

logger = logging.getLogger(__name__)

router = APIRouter()


def client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For when behind a proxy, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@router.post("/api/plays", response_model=PlayResponse)
async def track_play(
    play_data: PlayCreateRequest,
    request: Request,
    current_user: User = Depends(get_current_active_user),
    container: ServiceContainer = Depends(get_container),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a media play.

    Rejected plays (self-play, duplicates, caps, short watches) are a normal
    200 response with ``success=false`` and the reason.
    """
    event = PlayEvent(
        user_id=current_user.uuid,
        media_id=play_data.media_id,
        educator_id=play_data.educator_id,
        duration_watched=play_data.duration_watched,
        media_duration=play_data.media_duration,
        session_id=play_data.session_id,
        user_agent=request.headers.get("user-agent"),
        ip_address=client_ip(request),
    )
    try:
        result = await container.plays.track_play(db, event)
    except Exception as e:
        await db.rollback()
        logger.error(f"Failed to track play for {event.user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process media play"
        )

    return PlayResponse(
        success=result.success,
        points=result.points,
        reason=result.reason,
        code=result.code.value if result.code else None,
        play_id=result.play_id,
    )


@router.post("/api/downloads", response_model=DownloadResponse, status_code=status.HTTP_201_CREATED)
async def record_download(
    download_data: DownloadCreateRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """Record an offline download. Downloads of one's own media are stored but earn nothing."""
    owner = await db.execute(
        select(User.uuid).where(User.uuid == download_data.educator_id, User.user_role == ROLE_EDUCATOR)
    )
    if owner.scalar_one_or_none() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Educator not found"
        )

    download = OfflineDownload(
        user_id=current_user.uuid,
        educator_id=download_data.educator_id,
        media_id=download_data.media_id,
    )
    db.add(download)
    await db.commit()
    await db.refresh(download)
    return download


@router.post("/api/live-classes", response_model=LiveClassResponse, status_code=status.HTTP_201_CREATED)
async def create_live_class(
    class_data: LiveClassCreateRequest,
    current_user: User = Depends(educator_required),
    db: AsyncSession = Depends(get_db)
):
    live_class = LiveClass(
        user_id=current_user.uuid,
        title=class_data.title,
        scheduled_at=class_data.scheduled_at,
    )
    db.add(live_class)
    await db.commit()
    await db.refresh(live_class)
    return live_class


@router.post(
    "/api/live-classes/{class_id}/attendance",
    response_model=AttendanceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def join_live_class(
    class_id: str,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """Record that the current user joined a live class. Each user counts once per class."""
    result = await db.execute(select(LiveClass).where(LiveClass.uuid == class_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Live class not found"
        )

    attendee = LiveClassAttendee(live_class_id=class_id, user_id=current_user.uuid)
    db.add(attendee)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Already joined this live class"
        )
    await db.refresh(attendee)
    return attendee
