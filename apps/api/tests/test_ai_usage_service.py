from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.main  # noqa: F401
from app.business.ai_usage.quota import add_one_month, check_usage_alert, evaluate_request
from app.business.ai_usage.schemas import QuotaLimitsUpdate
from app.business.ai_usage.service import AIUsageService
from app.core.database import Base
from app.models.audit import AuditLog
from app.services.best_effort import BestEffortDispatcher


NOW = datetime.now(timezone.utc)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def service() -> AIUsageService:
    return AIUsageService(side_effects=BestEffortDispatcher(mode="inline"))


def test_alert_levels() -> None:
    assert check_usage_alert(740, Decimal("1"), 1000, Decimal("100")) is None
    warning = check_usage_alert(750, Decimal("1"), 1000, Decimal("100"))
    assert warning is not None
    assert warning.level == "warning"
    critical = check_usage_alert(10, Decimal("95"), 1000, Decimal("100"))
    assert critical is not None
    assert critical.level == "critical"
    assert critical.cost_percentage == 95.0


def test_request_evaluation() -> None:
    assert evaluate_request(900, Decimal("1"), 1000, Decimal("10"), 100).allowed is True
    assert evaluate_request(900, Decimal("1"), 1000, Decimal("10"), 101).reason == "Monthly token limit exceeded"
    assert evaluate_request(0, Decimal("10"), 1000, Decimal("10")).reason == "Monthly cost limit exceeded"


def test_add_one_month_clamps_day() -> None:
    assert add_one_month(datetime(2026, 1, 31, tzinfo=timezone.utc)) == datetime(2026, 2, 28, tzinfo=timezone.utc)
    assert add_one_month(datetime(2026, 12, 15, tzinfo=timezone.utc)) == datetime(2027, 1, 15, tzinfo=timezone.utc)


def test_quota_created_with_defaults(service: AIUsageService, db_session: Session) -> None:
    quota = service.get_quota(db_session, "user-1")
    assert quota.monthly_limit == 1_000_000
    assert quota.current_usage == 0
    assert quota.cost_limit == Decimal("100")


def test_tracking_raises_alerts_as_usage_grows(service: AIUsageService, db_session: Session) -> None:
    first = service.track_usage(db_session, "user-1", "openai", "search", 500_000, Decimal("1.5"), now=NOW)
    assert first.alert is None
    assert first.quota.current_usage == 500_000

    second = service.track_usage(db_session, "user-1", "claude", "content_creation", 300_000, Decimal("2"), now=NOW)
    assert second.alert is not None
    assert second.alert.level == "warning"
    assert second.alert.usage_percentage == 80.0

    third = service.track_usage(db_session, "user-1", "claude", "content_creation", 100_000, Decimal("0.5"), now=NOW)
    assert third.alert is not None
    assert third.alert.level == "critical"

    alerts = db_session.scalars(select(AuditLog).where(AuditLog.action == "ai_usage_alert")).all()
    assert [entry.new_value["alert_level"] for entry in alerts] == ["warning", "critical"]

    decision = service.can_use_ai(db_session, "user-1", estimated_tokens=200_000)
    assert decision.allowed is False
    assert decision.reason == "Monthly token limit exceeded"

    approaching = service.get_users_approaching_limits(db_session)
    assert [quota.user_id for quota in approaching] == ["user-1"]


def test_cost_limit_blocks_usage(service: AIUsageService, db_session: Session) -> None:
    service.track_usage(db_session, "user-1", "gemini", "search", 10, Decimal("6"), now=NOW)

    updated = service.update_quota_limits(db_session, "user-1", QuotaLimitsUpdate(cost_limit=Decimal("5")))
    assert updated.cost_limit == Decimal("5")

    decision = service.can_use_ai(db_session, "user-1")
    assert decision.allowed is False
    assert decision.reason == "Monthly cost limit exceeded"


def test_usage_stats_group_by_service_operation_and_day(service: AIUsageService, db_session: Session) -> None:
    service.track_usage(db_session, "user-1", "openai", "search", 100, Decimal("0.1"), now=NOW - timedelta(days=1))
    service.track_usage(db_session, "user-1", "openai", "ai_architect", 200, Decimal("0.2"), now=NOW)
    service.track_usage(db_session, "user-1", "gemini", "search", 300, Decimal("0.3"), now=NOW)
    service.track_usage(db_session, "user-1", "gemini", "search", 999, Decimal("9"), now=NOW - timedelta(days=45))
    service.track_usage(db_session, "user-2", "gemini", "search", 50, Decimal("0.05"), now=NOW)

    stats = service.get_usage_stats(db_session, "user-1", days=30, now=NOW)

    assert stats.total_tokens == 600
    assert stats.total_cost == Decimal("0.6")
    assert stats.by_service["openai"].tokens == 300
    assert stats.by_operation["search"].tokens == 400
    assert [entry.day for entry in stats.daily_usage] == [(NOW - timedelta(days=1)).date(), NOW.date()]


def test_quota_resets_after_period_ends(service: AIUsageService, db_session: Session) -> None:
    service.track_usage(db_session, "user-1", "openai", "search", 1000, Decimal("1"), now=NOW)
    db_session.commit()

    quota = service.get_or_create_quota(db_session, "user-1", now=NOW + timedelta(days=40))

    assert quota.current_usage == 0
    assert quota.current_cost == Decimal("0")
