"""Engagement points per month, system-wide and per educator.

Three kinds of learner activity earn points for the educator who owns the
content:

- media plays with a watch ratio at or above the reward threshold earn
  ``media_play_points * min(watch_ratio, 1)`` each,
- offline downloads earn a flat ``offline_download_points``,
- live-class attendance earns a flat ``live_class_attendance_points``.

Activity by the educator on their own content never counts.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.live_class import LiveClass, LiveClassAttendee
from app.models.offline_download import OfflineDownload
from app.models.play import Play
from app.models.user import User, ROLE_EDUCATOR
from app.services.periods import month_bounds, month_label
from app.services.rules import SettlementRules, round_money

logger = logging.getLogger(__name__)


@dataclass
class ActivityPoints:
    count: int = 0
    points: float = 0.0


@dataclass
class PointsBreakdown:
    media_plays: ActivityPoints = field(default_factory=ActivityPoints)
    offline_downloads: ActivityPoints = field(default_factory=ActivityPoints)
    live_class_attendance: ActivityPoints = field(default_factory=ActivityPoints)


@dataclass
class PointsResult:
    total_points: float = 0.0
    breakdown: PointsBreakdown = field(default_factory=PointsBreakdown)


class PointsCalculator:
    """Aggregates persisted activity events into points."""

    def __init__(self, rules: SettlementRules):
        self.rules = rules

    async def calculate_total_points_for_month(self, db: AsyncSession, target_month: datetime) -> PointsResult:
        """Points earned by all educators in the month: the point-value denominator."""
        result = await self._calculate(db, target_month, educator_id=None)
        breakdown = result.breakdown
        logger.info(
            f"Points for {month_label(month_bounds(target_month)[0])}: "
            f"plays {breakdown.media_plays.count} = {breakdown.media_plays.points}, "
            f"downloads {breakdown.offline_downloads.count} = {breakdown.offline_downloads.points}, "
            f"live classes {breakdown.live_class_attendance.count} = {breakdown.live_class_attendance.points}, "
            f"total {result.total_points}"
        )
        return result

    async def calculate_educator_points_for_month(
        self, db: AsyncSession, educator_id: str, target_month: datetime
    ) -> PointsResult:
        return await self._calculate(db, target_month, educator_id=educator_id)

    async def get_active_educators_for_month(self, db: AsyncSession, target_month: datetime) -> List[str]:
        """Educators with at least one point-earning event in the month, in sign-up order."""
        start, end = month_bounds(target_month)

        play_owners = select(Play.educator_id).where(
            Play.created_at.between(start, end),
            Play.watch_ratio >= self.rules.min_reward_watch_ratio,
            Play.user_id != Play.educator_id,
        )
        download_owners = select(OfflineDownload.educator_id).where(
            OfflineDownload.created_at.between(start, end),
            OfflineDownload.user_id != OfflineDownload.educator_id,
        )
        class_owners = (
            select(LiveClass.user_id)
            .join(LiveClassAttendee, LiveClassAttendee.live_class_id == LiveClass.uuid)
            .where(
                LiveClassAttendee.joined_at.between(start, end),
                LiveClassAttendee.user_id != LiveClass.user_id,
            )
        )

        result = await db.execute(
            select(User.uuid)
            .where(
                User.user_role == ROLE_EDUCATOR,
                User.uuid.in_(play_owners.union(download_owners, class_owners)),
            )
            .order_by(User.created_at, User.uuid)
        )
        return list(result.scalars().all())

    async def _calculate(self, db: AsyncSession, target_month: datetime, educator_id: Optional[str]) -> PointsResult:
        start, end = month_bounds(target_month)

        # Media plays: a full watch is worth one play's points; re-watch overshoot is not
        capped_ratio = case((Play.watch_ratio > 1.0, 1.0), else_=Play.watch_ratio)
        # Only events owned by educator accounts count
        plays_query = (
            select(func.count(Play.uuid), func.coalesce(func.sum(capped_ratio), 0.0))
            .select_from(Play)
            .join(User, User.uuid == Play.educator_id)
            .where(
                User.user_role == ROLE_EDUCATOR,
                Play.created_at.between(start, end),
                Play.watch_ratio >= self.rules.min_reward_watch_ratio,
                Play.user_id != Play.educator_id,
            )
        )
        if educator_id is not None:
            plays_query = plays_query.where(Play.educator_id == educator_id)
        play_count, ratio_sum = (await db.execute(plays_query)).one()

        downloads_query = (
            select(func.count(OfflineDownload.uuid))
            .select_from(OfflineDownload)
            .join(User, User.uuid == OfflineDownload.educator_id)
            .where(
                User.user_role == ROLE_EDUCATOR,
                OfflineDownload.created_at.between(start, end),
                OfflineDownload.user_id != OfflineDownload.educator_id,
            )
        )
        if educator_id is not None:
            downloads_query = downloads_query.where(OfflineDownload.educator_id == educator_id)
        download_count = (await db.execute(downloads_query)).scalar() or 0

        attendance_query = (
            select(func.count(LiveClassAttendee.uuid))
            .select_from(LiveClassAttendee)
            .join(LiveClass, LiveClassAttendee.live_class_id == LiveClass.uuid)
            .join(User, User.uuid == LiveClass.user_id)
            .where(
                User.user_role == ROLE_EDUCATOR,
                LiveClassAttendee.joined_at.between(start, end),
                LiveClassAttendee.user_id != LiveClass.user_id,
            )
        )
        if educator_id is not None:
            attendance_query = attendance_query.where(LiveClass.user_id == educator_id)
        attendance_count = (await db.execute(attendance_query)).scalar() or 0

        breakdown = PointsBreakdown(
            media_plays=ActivityPoints(
                count=play_count or 0,
                points=round_money(self.rules.media_play_points * float(ratio_sum or 0.0)),
            ),
            offline_downloads=ActivityPoints(
                count=download_count,
                points=round_money(download_count * self.rules.offline_download_points),
            ),
            live_class_attendance=ActivityPoints(
                count=attendance_count,
                points=round_money(attendance_count * self.rules.live_class_attendance_points),
            ),
        )
        total = round_money(
            breakdown.media_plays.points
            + breakdown.offline_downloads.points
            + breakdown.live_class_attendance.points
        )
        return PointsResult(total_points=total, breakdown=breakdown)
