from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.context import get_actor_id, get_correlation_id
from app.models.audit import AuditLog


class AuditLogger(Protocol):
    def log_action(
        self,
        session: Session,
        action: str,
        entity_type: str,
        entity_id: str,
        old_value: dict[str, Any] | None,
        new_value: dict[str, Any] | None,
        *,
        actor_id: str | None = None,
    ) -> AuditLog: ...


class DbAuditLogger:
    """Append-only audit trail stored in ``audit_logs``.

    Entries are added and flushed but not committed: the caller decides whether the
    entry shares the transaction of the change it describes or is committed on its own.
    """

    def log_action(
        self,
        session: Session,
        action: str,
        entity_type: str,
        entity_id: str,
        old_value: dict[str, Any] | None,
        new_value: dict[str, Any] | None,
        *,
        actor_id: str | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_id=actor_id or get_actor_id(),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_value=old_value,
            new_value=new_value,
            correlation_id=get_correlation_id(),
        )
        session.add(entry)
        session.flush()
        return entry

    def list_for_entity(self, session: Session, entity_type: str, entity_id: str, *, limit: int = 100) -> list[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
            .limit(limit)
        )
        return list(session.scalars(stmt).all())


audit_logger = DbAuditLogger()
