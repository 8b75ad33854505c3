"""Database models for EduSettle."""
from app.models.user import User
from app.models.subscription import SubscriptionPlan, SubscriptionHistory
from app.models.subscription_payment import SubscriptionPayment
from app.models.play import Play
from app.models.offline_download import OfflineDownload
from app.models.live_class import LiveClass, LiveClassAttendee
from app.models.settlement import MonthlySettlement, EducatorEarning
from app.models.withdrawal import WithdrawalRequest

__all__ = [
    "User",
    "SubscriptionPlan",
    "SubscriptionHistory",
    "SubscriptionPayment",
    "Play",
    "OfflineDownload",
    "LiveClass",
    "LiveClassAttendee",
    "MonthlySettlement",
    "EducatorEarning",
    "WithdrawalRequest",
]
