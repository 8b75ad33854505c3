"""Settlement rules: every weight, share and threshold the engine uses.

The values come from ``Settings`` once, at composition time, and the resulting
frozen ``SettlementRules`` is handed to each calculator. Nothing else in the
codebase declares these numbers.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from app.config import Settings

_CENT = Decimal("0.01")


def round_money(value: float) -> float:
    """Round to 2 decimal places, half-up.

    Goes through ``str`` so binary float artefacts (``1.005`` stored as
    ``1.00499999...``) still round the way a person would expect.
    """
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class SettlementRules:
    educator_revenue_share: float = 0.7

    media_play_points: float = 0.2
    offline_download_points: float = 3.0
    live_class_attendance_points: float = 5.0

    min_reward_watch_ratio: float = 0.3
    max_watch_ratio: float = 1.1
    min_watch_seconds: float = 10.0
    duplicate_window: timedelta = timedelta(minutes=5)
    daily_play_limit: int = 50
    ip_burst_window: timedelta = timedelta(minutes=1)
    ip_burst_limit: int = 3

    grace_period: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SettlementRules":
        return cls(
            educator_revenue_share=settings.EDUCATOR_REVENUE_SHARE,
            media_play_points=settings.POINTS_MEDIA_PLAY,
            offline_download_points=settings.POINTS_OFFLINE_DOWNLOAD,
            live_class_attendance_points=settings.POINTS_LIVE_CLASS_ATTENDANCE,
            min_reward_watch_ratio=settings.MIN_REWARD_WATCH_RATIO,
            max_watch_ratio=settings.MAX_WATCH_RATIO,
            min_watch_seconds=settings.MIN_WATCH_SECONDS,
            duplicate_window=timedelta(minutes=settings.DUPLICATE_WINDOW_MINUTES),
            daily_play_limit=settings.DAILY_PLAY_LIMIT,
            ip_burst_window=timedelta(minutes=settings.IP_BURST_WINDOW_MINUTES),
            ip_burst_limit=settings.IP_BURST_LIMIT,
            grace_period=timedelta(days=settings.GRACE_PERIOD_DAYS),
        )

    def play_points(self, watch_ratio: float) -> float:
        """Points one play is worth: proportional to the ratio, capped at a full play."""
        return min(self.media_play_points * watch_ratio, self.media_play_points)
