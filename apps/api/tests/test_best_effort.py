from __future__ import annotations

from collections.abc import Generator
from typing import Any

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.main  # noqa: F401
from app.core import celery_app as celery_module
from app.core.database import Base
from app.models.audit import AuditLog
from app.models.notification import NotificationMessage
from app.services.best_effort import BestEffortDispatcher


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


def test_inline_notify_and_audit_commit_their_rows(db_session: Session) -> None:
    dispatcher = BestEffortDispatcher(mode="inline")

    assert dispatcher.notify(db_session, "user-1", "hello", "high") is True
    assert dispatcher.audit(db_session, "thing_done", "thing", "t-1", None, {"ok": True}, actor_id="user-2") is True

    message = db_session.scalar(select(NotificationMessage))
    assert message is not None
    assert (message.recipient_id, message.text, message.priority) == ("user-1", "hello", "high")

    entry = db_session.scalar(select(AuditLog))
    assert entry is not None
    assert (entry.action, entry.actor_id, entry.new_value) == ("thing_done", "user-2", {"ok": True})


def test_failures_are_swallowed_and_rolled_back(db_session: Session, caplog: pytest.LogCaptureFixture) -> None:
    dispatcher = BestEffortDispatcher(mode="inline")

    def explode(session: Session) -> None:
        session.add(NotificationMessage(recipient_id="user-1", text="partial"))
        session.flush()
        raise RuntimeError("downstream unavailable")

    assert dispatcher.run("notification", db_session, explode) is False
    assert db_session.scalar(select(NotificationMessage)) is None
    assert any(
        record.name == "app.side_effects" and getattr(record, "side_effect", None) == "notification"
        for record in caplog.records
    )


def test_empty_recipient_is_dropped(db_session: Session) -> None:
    assert BestEffortDispatcher(mode="inline").notify(db_session, "", "nobody") is False
    assert db_session.scalar(select(NotificationMessage)) is None


def test_celery_mode_enqueues_named_task(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list[tuple[str, dict[str, Any]]] = []
    monkeypatch.setattr(celery_module.celery_app, "send_task", lambda name, kwargs: sent.append((name, kwargs)))

    dispatcher = BestEffortDispatcher(mode="celery")
    assert dispatcher.notify(db_session, "user-1", "queued") is True

    assert sent == [
        ("app.tasks.send_notification", {"recipient_id": "user-1", "text": "queued", "priority": "normal"})
    ]
    assert db_session.scalar(select(NotificationMessage)) is None


def test_celery_broker_failure_is_swallowed(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(name: str, kwargs: dict[str, Any]) -> None:
        raise ConnectionError("broker down")

    monkeypatch.setattr(celery_module.celery_app, "send_task", refuse)

    assert BestEffortDispatcher(mode="celery").audit(db_session, "x", "thing", "t-1", None, None) is False
