"""Pydantic schemas for learner activity endpoints."""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class PlayCreateRequest(BaseModel):
    """A media play reported by the player when playback stops."""
    media_id: str = Field(..., min_length=1, max_length=36)
    educator_id: str = Field(..., min_length=1, max_length=36)
    duration_watched: float = Field(..., ge=0, allow_inf_nan=False)   # seconds
    media_duration: float = Field(..., allow_inf_nan=False)          # seconds; validated by the play tracker
    session_id: Optional[str] = Field(None, max_length=100)


class PlayResponse(BaseModel):
    success: bool
    points: Optional[float] = None
    reason: Optional[str] = None
    code: Optional[str] = None
    play_id: Optional[str] = None


class DownloadCreateRequest(BaseModel):
    media_id: str = Field(..., min_length=1, max_length=36)
    educator_id: str = Field(..., min_length=1, max_length=36)


class DownloadResponse(BaseModel):
    uuid: str
    user_id: str
    educator_id: str
    media_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class LiveClassCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    scheduled_at: Optional[datetime] = None


class LiveClassResponse(BaseModel):
    uuid: str
    user_id: str
    title: str
    scheduled_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AttendanceResponse(BaseModel):
    uuid: str
    live_class_id: str
    user_id: str
    joined_at: datetime

    class Config:
        from_attributes = True
