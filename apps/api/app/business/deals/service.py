from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app import events
from app.business.deals.models import Deal
from app.business.deals.probability import (
    CLOSED_STAGES,
    STAGE_PROBABILITIES,
    ProbabilityFactors,
    base_probability,
    calculate_probability,
    weighted_value,
)
from app.business.deals.schemas import (
    AutoUpdateRead,
    DealCreate,
    DealCycleRead,
    DealRead,
    DealStageChange,
    ProbabilityFactorsIn,
    ProbabilityUpdateRead,
    SalesForecastRead,
    StageForecast,
    WinRateRead,
)
from app.otel import operation_span
from app.services.best_effort import BestEffortDispatcher, dispatcher


logger = logging.getLogger("app.deals")

AT_RISK_PROBABILITY = Decimal("50")
AT_RISK_MIN_VALUE = Decimal("10000")
HOT_PROBABILITY = Decimal("70")
HOT_WINDOW_DAYS = 30
CYCLE_SAMPLE_SIZE = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _open_deals():  # type: ignore[no-untyped-def]
    return select(Deal).where(Deal.stage.not_in(CLOSED_STAGES))


@dataclass
class DealService:
    side_effects: BestEffortDispatcher = dispatcher

    def create_deal(self, session: Session, payload: DealCreate) -> DealRead:
        deal = Deal(**payload.model_dump(mode="python"), probability=base_probability(payload.stage))
        if payload.stage in CLOSED_STAGES:
            deal.closed_at = utcnow()
        session.add(deal)
        session.commit()
        session.refresh(deal)
        return DealRead.model_validate(deal)

    def get_deal(self, session: Session, deal_id: uuid.UUID) -> DealRead:
        return DealRead.model_validate(self._get(session, deal_id))

    def change_stage(self, session: Session, deal_id: uuid.UUID, payload: DealStageChange) -> DealRead:
        deal = self._get(session, deal_id)
        if deal.stage == payload.stage:
            return DealRead.model_validate(deal)

        old_stage = deal.stage
        now = utcnow()
        expected = payload.row_version if payload.row_version is not None else deal.row_version
        result = session.execute(
            update(Deal)
            .where(Deal.id == deal_id, Deal.row_version == expected)
            .values(
                stage=payload.stage,
                probability=base_probability(payload.stage),
                stage_entered_at=now,
                closed_at=now if payload.stage in CLOSED_STAGES else None,
                updated_at=now,
                row_version=Deal.row_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")
        session.commit()
        session.refresh(deal)

        self.side_effects.audit(session, "deal_stage_changed", "deal", str(deal_id), {"stage": old_stage}, {"stage": payload.stage})
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": "deal.stage_changed",
                "occurred_at": now.isoformat(),
                "payload": {"deal_id": str(deal_id), "from_stage": old_stage, "to_stage": payload.stage},
            }
        )
        return DealRead.model_validate(deal)

    def update_deal_probability(
        self,
        session: Session,
        deal_id: uuid.UUID,
        factors: ProbabilityFactorsIn | ProbabilityFactors,
    ) -> ProbabilityUpdateRead:
        deal = self._get(session, deal_id)
        if isinstance(factors, ProbabilityFactorsIn):
            factors = ProbabilityFactors(**factors.model_dump())

        previous = Decimal(deal.probability)
        probability = calculate_probability(deal.stage, factors)
        deal.probability = probability
        deal.updated_at = utcnow()
        session.commit()

        logger.info("deal.probability_updated", extra={"deal_id": str(deal_id)})
        self.side_effects.audit(
            session,
            "deal_probability_updated",
            "deal",
            str(deal_id),
            {"probability": float(previous)},
            {"probability": float(probability), "factors": asdict(factors)},
        )
        return ProbabilityUpdateRead(deal_id=deal_id, previous_probability=previous, probability=probability)

    def get_sales_forecast(self, session: Session, start: date | None = None, end: date | None = None) -> SalesForecastRead:
        stmt = _open_deals()
        if start is not None:
            stmt = stmt.where(Deal.expected_close_date >= start)
        if end is not None:
            stmt = stmt.where(Deal.expected_close_date <= end)
        deals = session.scalars(stmt.order_by(Deal.expected_close_date.asc(), Deal.id.asc())).all()

        total = Decimal("0")
        weighted = Decimal("0")
        by_stage: dict[str, StageForecast] = {}
        for deal in deals:
            value = Decimal(deal.value)
            total += value
            weighted += weighted_value(value, Decimal(deal.probability))
            bucket = by_stage.setdefault(
                deal.stage,
                StageForecast(count=0, value=Decimal("0"), probability=STAGE_PROBABILITIES.get(deal.stage, 0)),
            )
            bucket.count += 1
            bucket.value += value

        return SalesForecastRead(
            total_pipeline_value=total,
            weighted_pipeline_value=weighted,
            expected_revenue=weighted,
            deals=[DealRead.model_validate(deal) for deal in deals],
            by_stage=by_stage,
        )

    def get_deals_by_probability(self, session: Session, minimum: Decimal, maximum: Decimal) -> list[DealRead]:
        deals = session.scalars(
            select(Deal)
            .where(Deal.probability >= minimum, Deal.probability <= maximum)
            .order_by(Deal.probability.desc(), Deal.id.asc())
        ).all()
        return [DealRead.model_validate(deal) for deal in deals]

    def get_at_risk_deals(self, session: Session) -> list[DealRead]:
        deals = session.scalars(
            _open_deals()
            .where(Deal.probability < AT_RISK_PROBABILITY, Deal.value >= AT_RISK_MIN_VALUE)
            .order_by(Deal.value.desc(), Deal.id.asc())
        ).all()
        return [DealRead.model_validate(deal) for deal in deals]

    def get_hot_deals(self, session: Session, *, today: date | None = None) -> list[DealRead]:
        horizon = (today or utcnow().date()) + timedelta(days=HOT_WINDOW_DAYS)
        deals = session.scalars(
            _open_deals()
            .where(
                Deal.probability >= HOT_PROBABILITY,
                Deal.expected_close_date.is_not(None),
                Deal.expected_close_date <= horizon,
            )
            .order_by(Deal.expected_close_date.asc(), Deal.id.asc())
        ).all()
        return [DealRead.model_validate(deal) for deal in deals]

    def calculate_win_rate(self, session: Session, start: datetime | None = None, end: datetime | None = None) -> WinRateRead:
        closed = session.scalars(select(Deal).where(Deal.stage.in_(CLOSED_STAGES))).all()
        if start is not None or end is not None:
            closed = [
                deal
                for deal in closed
                if deal.closed_at is not None
                and (start is None or _as_utc(deal.closed_at) >= _as_utc(start))
                and (end is None or _as_utc(deal.closed_at) <= _as_utc(end))
            ]
        if not closed:
            return WinRateRead(win_rate=0.0, closed_deals=0)
        won = sum(1 for deal in closed if deal.stage == "closed_won")
        return WinRateRead(win_rate=round(won / len(closed) * 100, 2), closed_deals=len(closed))

    def get_average_deal_cycle(self, session: Session) -> DealCycleRead:
        rows = session.execute(
            select(Deal.created_at, Deal.closed_at)
            .where(Deal.stage == "closed_won", Deal.closed_at.is_not(None))
            .order_by(Deal.closed_at.desc())
            .limit(CYCLE_SAMPLE_SIZE)
        ).all()
        if not rows:
            return DealCycleRead(average_days=0)
        days = [(_as_utc(closed_at) - _as_utc(created_at)).total_seconds() / 86400 for created_at, closed_at in rows]
        return DealCycleRead(average_days=round(sum(days) / len(days)))

    def auto_update_probabilities(self, session: Session, *, now: datetime | None = None) -> AutoUpdateRead:
        current = now or utcnow()
        deal_ids = [
            (deal.id, (current - _as_utc(deal.stage_entered_at)).total_seconds() / 86400)
            for deal in session.scalars(_open_deals()).all()
        ]
        with operation_span("deals.auto_update_probabilities", deals=len(deal_ids)):
            for deal_id, days_in_stage in deal_ids:
                self.update_deal_probability(session, deal_id, ProbabilityFactors(days_in_stage=days_in_stage))
        return AutoUpdateRead(updated=len(deal_ids))

    def _get(self, session: Session, deal_id: uuid.UUID) -> Deal:
        deal = session.get(Deal, deal_id)
        if deal is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
        return deal


deal_service = DealService()
