from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app import events
from app.business.leads.assignment import (
    OPEN_LEAD_STATUSES,
    STRATEGIES,
    SlaPolicy,
    as_utc,
    assignment_message,
    evaluate_sla,
    is_contact_overdue,
    pick_load_balanced,
    pick_round_robin,
)
from app.business.leads.models import Lead, LeadAssignmentCursor, SalesRep
from app.business.leads.schemas import (
    AssignmentRead,
    EscalationRead,
    LeadCreate,
    LeadRead,
    RoutingStatsRead,
    SalesRepRead,
    SalesRepUpsert,
    SlaRead,
)
from app.core.config import get_settings
from app.metrics import observe_lead_assignment
from app.otel import operation_span
from app.services.best_effort import BestEffortDispatcher, dispatcher


logger = logging.getLogger("app.leads")

ROUND_ROBIN_CURSOR = "default"
AVERAGE_SAMPLE_SIZE = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _policy() -> SlaPolicy:
    settings = get_settings()
    return SlaPolicy(
        response_minutes=settings.lead_sla_response_minutes,
        contact_hours=settings.lead_sla_contact_hours,
    )


@dataclass
class LeadAssignmentService:
    side_effects: BestEffortDispatcher = dispatcher

    def create_lead(self, session: Session, payload: LeadCreate) -> LeadRead:
        lead = Lead(**payload.model_dump(mode="python"), status="new")
        session.add(lead)
        session.commit()
        session.refresh(lead)
        return LeadRead.model_validate(lead)

    def list_leads(
        self,
        session: Session,
        *,
        status_filter: str | None = None,
        assigned_to: str | None = None,
        limit: int = 100,
    ) -> list[LeadRead]:
        stmt = select(Lead)
        if status_filter is not None:
            stmt = stmt.where(Lead.status == status_filter)
        if assigned_to is not None:
            stmt = stmt.where(Lead.assigned_to == assigned_to)
        stmt = stmt.order_by(Lead.created_at.desc(), Lead.id.asc()).limit(limit)
        return [LeadRead.model_validate(lead) for lead in session.scalars(stmt).all()]

    def upsert_sales_rep(self, session: Session, payload: SalesRepUpsert) -> SalesRepRead:
        rep = session.get(SalesRep, payload.user_id)
        if rep is None:
            rep = SalesRep(user_id=payload.user_id)
            session.add(rep)
        rep.display_name = payload.display_name
        rep.role = payload.role
        rep.active = payload.active
        session.commit()
        session.refresh(rep)
        return SalesRepRead.model_validate(rep)

    def list_sales_reps(self, session: Session) -> list[SalesRepRead]:
        reps = session.scalars(select(SalesRep).order_by(SalesRep.user_id.asc())).all()
        return [SalesRepRead.model_validate(rep) for rep in reps]

    def auto_assign_lead(self, session: Session, lead_id: uuid.UUID, strategy: str | None = None) -> AssignmentRead:
        strategy = strategy or get_settings().lead_assignment_strategy
        with operation_span("leads.auto_assign", lead_id=str(lead_id), strategy=strategy) as span:
            result = self._assign(session, lead_id, strategy)
            span.set_attribute("assigned_to", result.assigned_to)
        return result

    def _assign(self, session: Session, lead_id: uuid.UUID, strategy: str) -> AssignmentRead:
        if strategy not in STRATEGIES:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown assignment strategy: {strategy}")

        lead = session.scalar(select(Lead).where(Lead.id == lead_id).with_for_update())
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
        if lead.assigned_to:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Lead already assigned")

        reps = self._available_reps(session)
        if not reps:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No available sales reps")

        if strategy == "load_balanced":
            assigned_to = pick_load_balanced(reps, self._open_lead_counts(session, reps))
        else:
            assigned_to = self._next_round_robin(session, reps)

        lead.assigned_to = assigned_to
        lead.assigned_at = utcnow()
        lead.status = "contacted"
        session.commit()
        session.refresh(lead)
        lead_read = LeadRead.model_validate(lead)

        observe_lead_assignment(strategy)
        logger.info("lead.assigned", extra={"lead_id": str(lead.id), "user_id": assigned_to, "strategy": strategy})

        self.side_effects.audit(
            session,
            "lead_auto_assigned",
            "lead",
            str(lead_read.id),
            None,
            {"assigned_to": assigned_to, "assignment_type": strategy},
        )
        notified = self.side_effects.notify(
            session,
            assigned_to,
            assignment_message(lead_read.name, lead_read.company, _policy()),
            "high",
        )
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": "lead.assigned",
                "occurred_at": utcnow().isoformat(),
                "payload": {"lead_id": str(lead_read.id), "assigned_to": assigned_to, "strategy": strategy},
            }
        )
        return AssignmentRead(assigned_to=assigned_to, strategy=strategy, notified=notified, lead=lead_read)  # type: ignore[arg-type]

    def track_sla(self, session: Session, lead_id: uuid.UUID, *, now: datetime | None = None) -> SlaRead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
        report = evaluate_sla(lead.created_at, lead.assigned_at, lead.contacted_at, now or utcnow(), _policy())
        return SlaRead(
            lead_id=lead.id,
            compliant=report.compliant,
            response_minutes=round(report.response_minutes, 2),
            contact_hours=round(report.contact_hours, 2),
        )

    def get_sla_violations(self, session: Session, *, now: datetime | None = None) -> list[LeadRead]:
        policy = _policy()
        current = now or utcnow()
        candidates = session.scalars(
            select(Lead)
            .where(Lead.contacted_at.is_(None), Lead.status.in_(("new", "contacted")))
            .order_by(Lead.created_at.asc(), Lead.id.asc())
        ).all()
        return [
            LeadRead.model_validate(lead)
            for lead in candidates
            if is_contact_overdue(lead.created_at, lead.contacted_at, current, policy)
        ]

    def escalate_uncontacted_leads(self, session: Session, *, now: datetime | None = None) -> EscalationRead:
        violations = self.get_sla_violations(session, now=now)
        admins = session.scalars(
            select(SalesRep.user_id)
            .where(SalesRep.role == "admin", SalesRep.active.is_(True))
            .order_by(SalesRep.user_id.asc())
        ).all()
        hours = _policy().contact_hours
        sent = 0
        for lead in violations:
            logger.warning("lead.sla_violation", extra={"lead_id": str(lead.id)})
            for admin_id in admins:
                text = f'SLA Violation: Lead "{lead.name}" has not been contacted within {hours} hours.'
                if self.side_effects.notify(session, admin_id, text, "urgent"):
                    sent += 1
        return EscalationRead(escalated=len(violations), notifications_sent=sent)

    def get_routing_stats(self, session: Session, *, now: datetime | None = None) -> RoutingStatsRead:
        total = session.scalar(select(func.count()).select_from(Lead)) or 0
        assigned = session.scalar(select(func.count()).select_from(Lead).where(Lead.assigned_to.is_not(None))) or 0

        sample = session.execute(
            select(Lead.created_at, Lead.assigned_at)
            .where(Lead.assigned_at.is_not(None))
            .order_by(Lead.assigned_at.desc())
            .limit(AVERAGE_SAMPLE_SIZE)
        ).all()
        average = 0.0
        if sample:
            minutes = [(as_utc(assigned_at) - as_utc(created_at)).total_seconds() / 60 for created_at, assigned_at in sample]
            average = sum(minutes) / len(minutes)

        violations = len(self.get_sla_violations(session, now=now))
        compliance = ((total - violations) / total) * 100 if total else 100.0
        return RoutingStatsRead(
            total_leads=total,
            assigned_leads=assigned,
            unassigned_leads=total - assigned,
            average_assignment_minutes=round(average, 2),
            sla_compliance=round(compliance, 2),
        )

    def _available_reps(self, session: Session) -> list[str]:
        return list(
            session.scalars(
                select(SalesRep.user_id)
                .where(SalesRep.role == "sales", SalesRep.active.is_(True))
                .order_by(SalesRep.user_id.asc())
            ).all()
        )

    def _open_lead_counts(self, session: Session, reps: list[str]) -> dict[str, int]:
        rows = session.execute(
            select(Lead.assigned_to, func.count(Lead.id))
            .where(Lead.assigned_to.in_(reps), Lead.status.in_(OPEN_LEAD_STATUSES))
            .group_by(Lead.assigned_to)
        ).all()
        return {assigned_to: count for assigned_to, count in rows}

    def _next_round_robin(self, session: Session, reps: list[str]) -> str:
        cursor = session.scalar(
            select(LeadAssignmentCursor).where(LeadAssignmentCursor.name == ROUND_ROBIN_CURSOR).with_for_update()
        )
        if cursor is None:
            cursor = LeadAssignmentCursor(name=ROUND_ROBIN_CURSOR, position=0)
            session.add(cursor)
        chosen, cursor.position = pick_round_robin(reps, cursor.position or 0)
        return chosen


lead_assignment_service = LeadAssignmentService()
