from typing import Any

from celery import Celery

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.services.audit import audit_logger
from app.services.notifications import notifier

settings = get_settings()

celery_app = Celery("opsdesk_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.task_acks_late = False
celery_app.conf.task_default_retry_delay = 5


@celery_app.task(name="app.tasks.send_notification", ignore_result=True)
def send_notification_task(recipient_id: str, text: str, priority: str = "normal") -> None:
    session = SessionLocal()
    try:
        notifier.send(session, recipient_id, text, priority)  # type: ignore[arg-type]
        session.commit()
    finally:
        session.close()


@celery_app.task(name="app.tasks.log_audit_action", ignore_result=True)
def log_audit_action_task(
    action: str,
    entity_type: str,
    entity_id: str,
    old_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
    actor_id: str | None = None,
) -> None:
    session = SessionLocal()
    try:
        audit_logger.log_action(session, action, entity_type, entity_id, old_value, new_value, actor_id=actor_id)
        session.commit()
    finally:
        session.close()
