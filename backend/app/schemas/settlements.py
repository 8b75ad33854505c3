"""Pydantic schemas for settlement and earnings endpoints."""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class SettlementRunRequest(BaseModel):
    """Month as YYYY-MM, YYYY-MM-DD or ISO timestamp; omitted means the previous month."""
    month: Optional[str] = Field(None, max_length=40)
    finalize: bool = False


class SettlementSummaryResponse(BaseModel):
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
    average_subscription_value: float
    finalized_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ActivityPointsResponse(BaseModel):
    count: int
    points: float


class PointsBreakdownResponse(BaseModel):
    media_plays: ActivityPointsResponse
    offline_downloads: ActivityPointsResponse
    live_class_attendance: ActivityPointsResponse


class StagedEarningResponse(BaseModel):
    user_id: str
    points: float
    earnings: float
    percentage_of_total: float


class SettlementPreviewResponse(BaseModel):
    """What a run would write for the month; nothing is persisted."""
    month: datetime
    total_revenue: float
    distributable_revenue: float
    revenue_source: str
    total_subscribers: int
    total_points: float
    point_value: float
    total_earnings: float
    breakdown: PointsBreakdownResponse
    earnings: list[StagedEarningResponse]


class EducatorEarningResponse(BaseModel):
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    points: float
    percentage_of_total: float
    earnings: float
    available_balance: float
    withdrawn: float


class SettlementDetailResponse(BaseModel):
    id: str
    month: datetime
    status: str
    revenue_source: str
    total_subscribers: int
    total_revenue: float
    distributable_revenue: float
    total_points: float
    media_play_points: float
    offline_download_points: float
    live_class_points: float
    point_value: float
    educator_count: int
    total_earnings: float
    average_earnings: float
    calculated_at: datetime
    finalized_at: Optional[datetime] = None
    educator_earnings: list[EducatorEarningResponse]


class SettlementListResponse(BaseModel):
    items: list[SettlementDetailResponse]
    total: int


class MonthlyEarningResponse(BaseModel):
    month: datetime
    status: str
    points: float
    earnings: float
    withdrawn: float
    available_balance: float
    point_value: float


class CurrentMonthEstimateResponse(BaseModel):
    points: float
    earnings: float
    point_value: float
    total_points: float
    total_subscribers: int
    note: str


class EarningsResponse(BaseModel):
    """Educator earnings dashboard."""
    available_balance: float    # finalized and withdrawable
    total_withdrawn: float
    total_balance: float        # available plus the current-month estimate
    current_month: CurrentMonthEstimateResponse
    monthly_breakdown: list[MonthlyEarningResponse]
