"""Unit tests for settings normalization and the settlement rules built from them.

These protect against a DATABASE_URL without the async driver reaching the
engine, and against a setting silently not reaching the calculators.
"""
from datetime import timedelta

import pytest

from app.config import Settings
from app.services.rules import SettlementRules, round_money


def test_database_url_gets_async_driver():
    s = Settings(DATABASE_URL="postgresql://u:p@db:5432/edusettle_db?sslmode=require")

    assert s.DATABASE_URL == "postgresql+asyncpg://u:p@db:5432/edusettle_db?ssl=require"


def test_database_url_with_driver_is_unchanged():
    url = "postgresql+asyncpg://u:p@db:5432/edusettle_db"

    assert Settings(DATABASE_URL=url).DATABASE_URL == url


def test_rules_from_default_settings():
    rules = SettlementRules.from_settings(Settings())

    assert rules.educator_revenue_share == pytest.approx(0.7)
    assert rules.media_play_points == pytest.approx(0.2)
    assert rules.offline_download_points == pytest.approx(3.0)
    assert rules.live_class_attendance_points == pytest.approx(5.0)
    assert rules.min_reward_watch_ratio == pytest.approx(0.3)
    assert rules.max_watch_ratio == pytest.approx(1.1)
    assert rules.duplicate_window == timedelta(minutes=5)
    assert rules.daily_play_limit == 50
    assert rules.ip_burst_window == timedelta(minutes=1)
    assert rules.ip_burst_limit == 3
    assert rules.grace_period == timedelta(days=7)


def test_rules_follow_overridden_settings():
    rules = SettlementRules.from_settings(Settings(EDUCATOR_REVENUE_SHARE=0.5, DAILY_PLAY_LIMIT=10))

    assert rules.educator_revenue_share == pytest.approx(0.5)
    assert rules.daily_play_limit == 10


def test_rules_are_immutable():
    rules = SettlementRules()

    with pytest.raises(Exception):
        rules.educator_revenue_share = 0.9


@pytest.mark.parametrize("value,expected", [
    (1.005, 1.01),
    (2.675, 2.68),
    (0.004, 0.0),
    (349.995, 350.0),
    (0, 0.0),
])
def test_round_money_is_half_up(value, expected):
    assert round_money(value) == expected


def test_play_points_capped_at_one_full_play():
    rules = SettlementRules()

    assert rules.play_points(0.5) == pytest.approx(0.1)
    assert rules.play_points(1.0) == pytest.approx(0.2)
    assert rules.play_points(1.1) == pytest.approx(0.2)
