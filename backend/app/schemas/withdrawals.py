"""Pydantic schemas for withdrawal endpoints."""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class WithdrawalCreateRequest(BaseModel):
    amount: float = Field(..., gt=0)
    note: Optional[str] = Field(None, max_length=1000)


class WithdrawalStatusUpdate(BaseModel):
    status: str = Field(..., pattern="^(APPROVED|REJECTED|PROCESSED)$")
    note: Optional[str] = Field(None, max_length=1000)


class WithdrawalResponse(BaseModel):
    uuid: str
    user_id: str
    amount: float
    status: str
    note: Optional[str] = None
    requested_at: datetime
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WithdrawalListResponse(BaseModel):
    items: list[WithdrawalResponse]
    total: int
