from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from app.core.celery_app import celery_app
from app.core.config import get_settings
from app.metrics import observe_best_effort_failure
from app.services.audit import AuditLogger, audit_logger
from app.services.notifications import Notifier, Priority, notifier


logger = logging.getLogger("app.side_effects")

SideEffect = Callable[[Session], Any]


class BestEffortDispatcher:
    """Runs side effects that must never fail the operation that triggered them.

    Callers invoke :meth:`run` only after their primary change is committed. In
    ``inline`` mode the effect runs on the caller's session and is committed on its
    own; in ``celery`` mode the named task is enqueued instead. Any failure is
    logged, counted and dropped.
    """

    def __init__(self, mode: str | None = None) -> None:
        self._mode = mode

    @property
    def mode(self) -> str:
        return (self._mode or get_settings().side_effects_mode).lower()

    def run(
        self,
        name: str,
        session: Session,
        effect: SideEffect,
        *,
        task: str | None = None,
        task_kwargs: dict[str, Any] | None = None,
    ) -> bool:
        try:
            if self.mode == "celery" and task is not None:
                celery_app.send_task(task, kwargs=task_kwargs or {})
            else:
                effect(session)
                session.commit()
        except Exception as exc:
            session.rollback()
            observe_best_effort_failure(name)
            logger.exception("best_effort_failed", extra={"side_effect": name, "error": str(exc)[:500]})
            return False
        return True

    def notify(
        self,
        session: Session,
        recipient_id: str,
        text: str,
        priority: Priority = "normal",
        *,
        via: Notifier | None = None,
    ) -> bool:
        target = via or notifier
        return self.run(
            "notification",
            session,
            lambda s: target.send(s, recipient_id, text, priority),
            task="app.tasks.send_notification",
            task_kwargs={"recipient_id": recipient_id, "text": text, "priority": priority},
        )

    def audit(
        self,
        session: Session,
        action: str,
        entity_type: str,
        entity_id: str,
        old_value: dict[str, Any] | None,
        new_value: dict[str, Any] | None,
        *,
        actor_id: str | None = None,
        via: AuditLogger | None = None,
    ) -> bool:
        target = via or audit_logger
        return self.run(
            "audit",
            session,
            lambda s: target.log_action(s, action, entity_type, entity_id, old_value, new_value, actor_id=actor_id),
            task="app.tasks.log_audit_action",
            task_kwargs={
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "old_value": old_value,
                "new_value": new_value,
                "actor_id": actor_id,
            },
        )


dispatcher = BestEffortDispatcher()
