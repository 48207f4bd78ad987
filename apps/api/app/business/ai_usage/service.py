from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.business.ai_usage.models import AIQuota, AIUsageRecord
from app.business.ai_usage.quota import (
    add_one_month,
    check_usage_alert,
    evaluate_request,
    is_approaching_limit,
)
from app.business.ai_usage.schemas import (
    CanUseRead,
    DailyUsage,
    QuotaLimitsUpdate,
    QuotaRead,
    TrackUsageRead,
    UsageAlertRead,
    UsageBucket,
    UsageStatsRead,
)
from app.core.config import get_settings
from app.metrics import observe_ai_quota_alert
from app.services.best_effort import BestEffortDispatcher, dispatcher


logger = logging.getLogger("app.ai_usage")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class AIUsageService:
    side_effects: BestEffortDispatcher = dispatcher

    def get_or_create_quota(self, session: Session, user_id: str, *, now: datetime | None = None) -> AIQuota:
        """Loads the user's quota, creating it with defaults or resetting it when the period ended.

        Changes are flushed, not committed.
        """
        current = now or utcnow()
        quota = session.get(AIQuota, user_id)
        if quota is None:
            settings = get_settings()
            quota = AIQuota(
                user_id=user_id,
                monthly_limit=settings.ai_default_monthly_token_limit,
                current_usage=0,
                cost_limit=Decimal(settings.ai_default_monthly_cost_limit),
                current_cost=Decimal("0"),
                reset_date=add_one_month(current),
            )
            session.add(quota)
            session.flush()
        elif _as_utc(quota.reset_date) < current:
            quota.current_usage = 0
            quota.current_cost = Decimal("0")
            quota.reset_date = add_one_month(current)
            session.flush()
        return quota

    def get_quota(self, session: Session, user_id: str) -> QuotaRead:
        quota = self.get_or_create_quota(session, user_id)
        session.commit()
        return QuotaRead.model_validate(quota)

    def track_usage(
        self,
        session: Session,
        user_id: str,
        service: str,
        operation: str,
        tokens_used: int,
        cost: Decimal,
        *,
        now: datetime | None = None,
    ) -> TrackUsageRead:
        current = now or utcnow()
        session.add(
            AIUsageRecord(
                user_id=user_id,
                service=service,
                operation=operation,
                tokens_used=tokens_used,
                cost=cost,
                created_at=current,
            )
        )
        quota = self.get_or_create_quota(session, user_id, now=current)
        quota.current_usage = quota.current_usage + tokens_used
        quota.current_cost = Decimal(quota.current_cost) + Decimal(cost)
        session.commit()
        session.refresh(quota)
        quota_read = QuotaRead.model_validate(quota)

        alert = check_usage_alert(
            quota_read.current_usage,
            quota_read.current_cost,
            quota_read.monthly_limit,
            quota_read.cost_limit,
        )
        if alert is not None:
            observe_ai_quota_alert(alert.level)
            logger.warning("ai.quota_alert", extra={"user_id": user_id, "outcome": alert.level})
            self.side_effects.audit(
                session,
                "ai_usage_alert",
                "ai_quota",
                user_id,
                None,
                {"alert_level": alert.level, "usage_percentage": alert.usage_percentage},
            )
        return TrackUsageRead(
            success=True,
            alert=UsageAlertRead.model_validate(asdict(alert)) if alert is not None else None,
            quota=quota_read,
        )

    def can_use_ai(self, session: Session, user_id: str, estimated_tokens: int = 0) -> CanUseRead:
        quota = self.get_or_create_quota(session, user_id)
        session.commit()
        decision = evaluate_request(
            quota.current_usage,
            Decimal(quota.current_cost),
            quota.monthly_limit,
            Decimal(quota.cost_limit),
            estimated_tokens,
        )
        return CanUseRead(allowed=decision.allowed, reason=decision.reason, quota=QuotaRead.model_validate(quota))

    def get_usage_stats(self, session: Session, user_id: str, days: int = 30, *, now: datetime | None = None) -> UsageStatsRead:
        since = (now or utcnow()) - timedelta(days=days)
        records = [
            record
            for record in session.scalars(
                select(AIUsageRecord).where(AIUsageRecord.user_id == user_id).order_by(AIUsageRecord.created_at.asc())
            ).all()
            if _as_utc(record.created_at) >= since
        ]

        by_service: dict[str, UsageBucket] = {}
        by_operation: dict[str, UsageBucket] = {}
        daily: dict[str, DailyUsage] = {}
        total_tokens = 0
        total_cost = Decimal("0")
        for record in records:
            cost = Decimal(record.cost)
            total_tokens += record.tokens_used
            total_cost += cost
            for bucket in (
                by_service.setdefault(record.service, UsageBucket()),
                by_operation.setdefault(record.operation, UsageBucket()),
            ):
                bucket.tokens += record.tokens_used
                bucket.cost += cost
            day = _as_utc(record.created_at).date()
            entry = daily.setdefault(day.isoformat(), DailyUsage(day=day, tokens=0, cost=Decimal("0")))
            entry.tokens += record.tokens_used
            entry.cost += cost

        return UsageStatsRead(
            total_tokens=total_tokens,
            total_cost=total_cost,
            by_service=by_service,
            by_operation=by_operation,
            daily_usage=list(daily.values()),
        )

    def update_quota_limits(self, session: Session, user_id: str, payload: QuotaLimitsUpdate) -> QuotaRead:
        quota = self.get_or_create_quota(session, user_id)
        changes: dict[str, float | int] = {}
        if payload.monthly_limit is not None:
            quota.monthly_limit = payload.monthly_limit
            changes["monthly_limit"] = payload.monthly_limit
        if payload.cost_limit is not None:
            quota.cost_limit = payload.cost_limit
            changes["cost_limit"] = float(payload.cost_limit)
        session.commit()
        session.refresh(quota)

        self.side_effects.audit(session, "ai_quota_updated", "ai_quota", user_id, None, changes)
        return QuotaRead.model_validate(quota)

    def get_users_approaching_limits(self, session: Session) -> list[QuotaRead]:
        quotas = session.scalars(select(AIQuota).order_by(AIQuota.user_id.asc())).all()
        return [
            QuotaRead.model_validate(quota)
            for quota in quotas
            if is_approaching_limit(
                quota.current_usage,
                Decimal(quota.current_cost),
                quota.monthly_limit,
                Decimal(quota.cost_limit),
            )
        ]


ai_usage_service = AIUsageService()
