"""Pydantic schemas for subscription endpoints."""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class SubscriptionCreateRequest(BaseModel):
    """Schema for starting a subscription (paid purchase or free trial)."""
    plan_type: str = Field("MONTHLY", pattern="^(MONTHLY|YEARLY|LIFETIME)$")
    price: float = Field(..., ge=0)
    months: int = Field(1, ge=1, le=36)
    name: str = Field("Premium", min_length=1, max_length=100)
    trial_days: Optional[int] = Field(None, ge=1, le=90)
    payment_method: Optional[str] = Field(None, max_length=50)
    payment_reference: Optional[str] = Field(None, max_length=255)


class SubscriptionRenewRequest(BaseModel):
    amount: float = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=50)
    payment_reference: Optional[str] = Field(None, max_length=255)


class SubscriptionCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
    immediate: bool = False


class SubscriptionResponse(BaseModel):
    """Schema for subscription detail response."""
    uuid: str
    user_id: str
    name: str
    plan_type: str
    price: float
    months: int
    status: str
    auto_renew: bool
    created_at: datetime
    expires_at: datetime
    trial_ends_at: Optional[datetime] = None
    grace_period_ends: Optional[datetime] = None
    last_renewal_date: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SubscriptionStatusResponse(BaseModel):
    has_subscription: bool
    has_access: bool
    subscription: Optional[SubscriptionResponse] = None


class PaymentResponse(BaseModel):
    uuid: str
    amount: float
    monthly_amount: float
    months: int
    plan_type: str
    payment_status: str
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    is_renewal: bool
    expiration_before: Optional[datetime] = None
    expiration_after: Optional[datetime] = None
    payment_date: datetime

    class Config:
        from_attributes = True


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]
    total: int
