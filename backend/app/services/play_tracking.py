"""Media-play ingestion with anti-gaming checks.

Every inbound play runs through an ordered list of checks; the first failing
check decides the outcome and nothing is written. A play that passes every
check is stored once and reported with the points it is worth.

The tracker keeps no state of its own between calls. Duplicate windows, daily
caps and IP bursts are all answered from the stored play log, and the
check-then-insert sequence runs under per-(user, media) and per-IP locks so two
concurrent requests cannot both slip through a window check.
"""
import enum
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.play import Play
from app.models.user import User, ROLE_EDUCATOR
from app.services.locks import LockManager
from app.services.rules import SettlementRules

logger = logging.getLogger(__name__)


class PlayRejection(str, enum.Enum):
    SELF_PLAY = "self_play"
    UNKNOWN_EDUCATOR = "unknown_educator"
    INVALID_RATIO = "invalid_ratio"
    MIN_DURATION = "min_duration"
    DUPLICATE = "duplicate"
    DAILY_LIMIT = "daily_limit"
    IP_BURST = "ip_burst"
    LOW_WATCH_RATIO = "low_watch_ratio"
    BUSY = "busy"


REJECTION_MESSAGES = {
    PlayRejection.SELF_PLAY: "Educators cannot earn points from watching their own content",
    PlayRejection.UNKNOWN_EDUCATOR: "Media owner is not a registered educator",
    PlayRejection.INVALID_RATIO: "Invalid watch ratio detected",
    PlayRejection.MIN_DURATION: "Minimum watch time not met",
    PlayRejection.DUPLICATE: "Duplicate play detected within time window",
    PlayRejection.DAILY_LIMIT: "Daily play limit exceeded",
    PlayRejection.IP_BURST: "Too many plays from same IP address",
    PlayRejection.LOW_WATCH_RATIO: "Insufficient watch time (minimum 30% required)",
    PlayRejection.BUSY: "Another play for this media is being recorded, try again",
}


@dataclass
class PlayEvent:
    user_id: str
    media_id: str
    educator_id: str
    duration_watched: float
    media_duration: float
    session_id: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None

    @property
    def watch_ratio(self) -> Optional[float]:
        if not self.media_duration or not math.isfinite(self.media_duration) or self.media_duration <= 0:
            return None
        ratio = self.duration_watched / self.media_duration
        return ratio if math.isfinite(ratio) else None


@dataclass
class PlayResult:
    success: bool
    points: Optional[float] = None
    reason: Optional[str] = None
    code: Optional[PlayRejection] = None
    play_id: Optional[str] = None

    @classmethod
    def rejected(cls, code: PlayRejection) -> "PlayResult":
        return cls(success=False, reason=REJECTION_MESSAGES[code], code=code)


class PlayTracker:
    """Validates and records media plays."""

    LOCK_TIMEOUT = 30  # seconds; a crashed request must not block a key for long
    LOCK_WAIT = 5.0

    def __init__(
        self,
        rules: SettlementRules,
        locks: LockManager,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.rules = rules
        self.locks = locks
        self.clock = clock

    async def track_play(self, db: AsyncSession, event: PlayEvent) -> PlayResult:
        """Validate ``event`` and store it if every check passes."""
        # Checks that need no history run before taking any lock
        rejection = self._check_event(event)
        if rejection is not None:
            return self._reject(event, rejection)
        if not await self._is_educator(db, event.educator_id):
            return self._reject(event, PlayRejection.UNKNOWN_EDUCATOR)

        lock_names = [f"play:{event.user_id}:{event.media_id}"]
        if event.ip_address:
            lock_names.append(f"play-ip:{event.ip_address}")

        async with self.locks.hold_many(lock_names, timeout=self.LOCK_TIMEOUT, wait=self.LOCK_WAIT) as acquired:
            if not acquired:
                return self._reject(event, PlayRejection.BUSY)

            now = self.clock()
            rejection = await self._check_history(db, event, now)
            if rejection is None and event.watch_ratio < self.rules.min_reward_watch_ratio:
                rejection = PlayRejection.LOW_WATCH_RATIO
            if rejection is not None:
                return self._reject(event, rejection)

            play = Play(
                user_id=event.user_id,
                media_id=event.media_id,
                educator_id=event.educator_id,
                duration_watched=event.duration_watched,
                media_duration=event.media_duration,
                watch_ratio=event.watch_ratio,
                session_id=event.session_id,
                user_agent=event.user_agent,
                ip_address=event.ip_address,
                created_at=now,
            )
            db.add(play)
            # Committed while the locks are held so checks in other sessions see this row
            await db.commit()

        points = round(self.rules.play_points(event.watch_ratio), 4)
        logger.debug(f"Recorded play {play.uuid} by {event.user_id} on {event.media_id}: {points} points")
        return PlayResult(success=True, points=points, play_id=play.uuid)

    def _check_event(self, event: PlayEvent) -> Optional[PlayRejection]:
        if event.user_id == event.educator_id:
            return PlayRejection.SELF_PLAY

        ratio = event.watch_ratio
        if ratio is None or ratio < 0 or ratio > self.rules.max_watch_ratio:
            return PlayRejection.INVALID_RATIO

        if event.duration_watched < self.rules.min_watch_seconds:
            return PlayRejection.MIN_DURATION
        return None

    async def _check_history(self, db: AsyncSession, event: PlayEvent, now: datetime) -> Optional[PlayRejection]:
        duplicate_cutoff = now - self.rules.duplicate_window
        duplicates = await db.execute(
            select(func.count(Play.uuid)).where(
                Play.user_id == event.user_id,
                Play.media_id == event.media_id,
                Play.created_at >= duplicate_cutoff,
            )
        )
        if duplicates.scalar() > 0:
            return PlayRejection.DUPLICATE

        start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        today = await db.execute(
            select(func.count(Play.uuid)).where(
                Play.user_id == event.user_id,
                Play.created_at >= start_of_today,
            )
        )
        if today.scalar() >= self.rules.daily_play_limit:
            return PlayRejection.DAILY_LIMIT

        if event.ip_address:
            ip_cutoff = now - self.rules.ip_burst_window
            ip_plays = await db.execute(
                select(func.count(Play.uuid)).where(
                    Play.ip_address == event.ip_address,
                    Play.created_at >= ip_cutoff,
                )
            )
            if ip_plays.scalar() >= self.rules.ip_burst_limit:
                return PlayRejection.IP_BURST
        return None

    async def _is_educator(self, db: AsyncSession, user_id: str) -> bool:
        result = await db.execute(
            select(User.uuid).where(User.uuid == user_id, User.user_role == ROLE_EDUCATOR)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    def _reject(event: PlayEvent, code: PlayRejection) -> PlayResult:
        # Rejections are routine user-facing outcomes, not errors
        logger.info(f"Rejected play by {event.user_id} on {event.media_id}: {code.value}")
        return PlayResult.rejected(code)
