"""Composition root: builds every service once per process.

``main.py`` builds the container at startup and stores it on
``app.state.container``; routers get it through ``get_container`` and the
scheduler receives it directly.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from fastapi import Request

from app.config import Settings
from app.services.locks import LocalLockManager, LockManager, RedisLockManager
from app.services.play_tracking import PlayTracker
from app.services.points import PointsCalculator
from app.services.revenue import RevenueCalculator
from app.services.rules import SettlementRules
from app.services.settlement import SettlementService
from app.services.subscriptions import SubscriptionService
from app.services.withdrawals import WithdrawalLedger

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    rules: SettlementRules
    locks: LockManager
    revenue: RevenueCalculator
    points: PointsCalculator
    plays: PlayTracker
    settlements: SettlementService
    subscriptions: SubscriptionService
    withdrawals: WithdrawalLedger

    async def close(self) -> None:
        if isinstance(self.locks, RedisLockManager):
            await self.locks.close()


def build_locks(settings: Settings) -> LockManager:
    if settings.LOCK_BACKEND == "local":
        return LocalLockManager()
    if settings.LOCK_BACKEND == "redis":
        return RedisLockManager(settings.REDIS_URL)
    raise ValueError(f"Unknown LOCK_BACKEND {settings.LOCK_BACKEND!r}, expected 'redis' or 'local'")


def build_container(
    settings: Settings,
    locks: LockManager = None,
    clock: Callable[[], datetime] = datetime.utcnow,
) -> ServiceContainer:
    rules = SettlementRules.from_settings(settings)
    locks = locks or build_locks(settings)
    revenue = RevenueCalculator(rules)
    points = PointsCalculator(rules)

    logger.info(
        f"Services ready: {type(locks).__name__}, educator share {rules.educator_revenue_share:.0%}"
    )
    return ServiceContainer(
        settings=settings,
        rules=rules,
        locks=locks,
        revenue=revenue,
        points=points,
        plays=PlayTracker(rules, locks, clock=clock),
        settlements=SettlementService(
            rules, revenue, points, locks,
            clock=clock,
            lock_timeout=settings.SETTLEMENT_LOCK_TIMEOUT_SECONDS,
        ),
        subscriptions=SubscriptionService(rules, clock=clock),
        withdrawals=WithdrawalLedger(clock=clock),
    )


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the process-wide container."""
    return request.app.state.container
