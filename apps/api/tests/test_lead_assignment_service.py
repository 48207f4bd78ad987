from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.main  # noqa: F401
from app import events
from app.business.leads.assignment import SlaPolicy, evaluate_sla, pick_load_balanced, pick_round_robin
from app.business.leads.models import Lead, LeadAssignmentCursor
from app.business.leads.schemas import LeadCreate, SalesRepUpsert
from app.business.leads.service import LeadAssignmentService
from app.core.database import Base
from app.models.audit import AuditLog
from app.models.notification import NotificationMessage
from app.services.best_effort import BestEffortDispatcher


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


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


@pytest.fixture(autouse=True)
def clear_events() -> Generator[None, None, None]:
    events.published_events.clear()
    yield
    events.published_events.clear()


@pytest.fixture()
def service() -> LeadAssignmentService:
    return LeadAssignmentService(side_effects=BestEffortDispatcher(mode="inline"))


def _reps(service: LeadAssignmentService, session: Session, *user_ids: str, role: str = "sales") -> None:
    for user_id in user_ids:
        service.upsert_sales_rep(session, SalesRepUpsert(user_id=user_id, role=role))  # type: ignore[arg-type]


def _lead(service: LeadAssignmentService, session: Session, name: str = "Jane", company: str | None = "Acme"):  # type: ignore[no-untyped-def]
    return service.create_lead(session, LeadCreate(name=name, email=f"{name.lower()}@example.com", company=company))


def test_round_robin_cycles_through_reps_and_persists_cursor(service: LeadAssignmentService, db_session: Session) -> None:
    _reps(service, db_session, "rep-a", "rep-b")

    assigned = [
        service.auto_assign_lead(db_session, _lead(service, db_session, name=f"Lead{index}").id, "round_robin").assigned_to
        for index in range(3)
    ]

    assert assigned == ["rep-a", "rep-b", "rep-a"]
    cursor = db_session.get(LeadAssignmentCursor, "default")
    assert cursor is not None
    assert cursor.position == 1


def test_assignment_updates_lead_and_fans_out(service: LeadAssignmentService, db_session: Session) -> None:
    _reps(service, db_session, "rep-a")
    lead = _lead(service, db_session)

    result = service.auto_assign_lead(db_session, lead.id, "round_robin")

    assert result.notified is True
    assert result.lead.status == "contacted"
    assert result.lead.assigned_to == "rep-a"
    assert result.lead.assigned_at is not None

    message = db_session.scalar(select(NotificationMessage).where(NotificationMessage.recipient_id == "rep-a"))
    assert message is not None
    assert message.text == "New lead assigned: Jane from Acme. Contact within 24 hours."
    assert message.priority == "high"

    entry = db_session.scalar(select(AuditLog).where(AuditLog.action == "lead_auto_assigned"))
    assert entry is not None
    assert entry.new_value == {"assigned_to": "rep-a", "assignment_type": "round_robin"}
    assert [event["event_type"] for event in events.published_events] == ["lead.assigned"]


def test_load_balanced_prefers_rep_with_fewest_open_leads(service: LeadAssignmentService, db_session: Session) -> None:
    _reps(service, db_session, "rep-a", "rep-b")
    first = _lead(service, db_session, name="First")
    service.auto_assign_lead(db_session, first.id, "round_robin")

    second = _lead(service, db_session, name="Second")
    result = service.auto_assign_lead(db_session, second.id, "load_balanced")

    assert result.assigned_to == "rep-b"


def test_admins_and_inactive_reps_are_not_assigned(service: LeadAssignmentService, db_session: Session) -> None:
    _reps(service, db_session, "boss", role="admin")
    service.upsert_sales_rep(db_session, SalesRepUpsert(user_id="away", active=False))
    lead = _lead(service, db_session)

    with pytest.raises(HTTPException) as exc_info:
        service.auto_assign_lead(db_session, lead.id, "round_robin")
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "No available sales reps"


def test_assigned_lead_cannot_be_reassigned(service: LeadAssignmentService, db_session: Session) -> None:
    _reps(service, db_session, "rep-a")
    lead = _lead(service, db_session)
    service.auto_assign_lead(db_session, lead.id, "round_robin")

    with pytest.raises(HTTPException) as exc_info:
        service.auto_assign_lead(db_session, lead.id, "round_robin")
    assert exc_info.value.status_code == 409


def test_unknown_strategy_is_rejected(service: LeadAssignmentService, db_session: Session) -> None:
    lead = _lead(service, db_session)
    with pytest.raises(HTTPException) as exc_info:
        service.auto_assign_lead(db_session, lead.id, "random")
    assert exc_info.value.status_code == 422


def test_sla_violations_and_escalation(service: LeadAssignmentService, db_session: Session) -> None:
    _reps(service, db_session, "boss", role="admin")
    stale = Lead(name="Stale", email="stale@example.com", status="new", created_at=NOW - timedelta(hours=30))
    fresh = Lead(name="Fresh", email="fresh@example.com", status="new", created_at=NOW - timedelta(hours=2))
    contacted = Lead(
        name="Done",
        email="done@example.com",
        status="contacted",
        created_at=NOW - timedelta(hours=40),
        contacted_at=NOW - timedelta(hours=39),
    )
    db_session.add_all([stale, fresh, contacted])
    db_session.commit()

    violations = service.get_sla_violations(db_session, now=NOW)
    assert [lead.name for lead in violations] == ["Stale"]

    result = service.escalate_uncontacted_leads(db_session, now=NOW)
    assert (result.escalated, result.notifications_sent) == (1, 1)
    message = db_session.scalar(select(NotificationMessage).where(NotificationMessage.recipient_id == "boss"))
    assert message is not None
    assert message.priority == "urgent"
    assert message.text == 'SLA Violation: Lead "Stale" has not been contacted within 24 hours.'

    stats = service.get_routing_stats(db_session, now=NOW)
    assert stats.total_leads == 3
    assert stats.unassigned_leads == 3
    assert stats.sla_compliance == 66.67


def test_track_sla_reports_compliance(service: LeadAssignmentService, db_session: Session) -> None:
    lead = Lead(
        name="Quick",
        email="quick@example.com",
        created_at=NOW - timedelta(minutes=30),
        assigned_at=NOW - timedelta(minutes=20),
    )
    db_session.add(lead)
    db_session.commit()

    report = service.track_sla(db_session, lead.id, now=NOW)

    assert report.compliant is True
    assert report.response_minutes == 10.0
    assert report.contact_hours == 0.5


def test_pure_assignment_helpers() -> None:
    assert pick_round_robin(["a", "b", "c"], 4) == ("b", 2)
    assert pick_load_balanced(["a", "b"], {"a": 2, "b": 2}) == "a"
    assert pick_load_balanced(["a", "b"], {"a": 3}) == "b"

    report = evaluate_sla(NOW - timedelta(minutes=20), NOW, None, NOW, SlaPolicy())
    assert report.compliant is False
    assert report.response_minutes == 20.0
