from __future__ import annotations

from typing import Literal, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.notification import NotificationMessage


Priority = Literal["low", "normal", "high", "urgent"]


class Notifier(Protocol):
    def send(self, session: Session, recipient_id: str, text: str, priority: Priority = "normal") -> NotificationMessage: ...


class DbNotifier:
    """Writes in-app messages; email and push fan-out read from the same table."""

    sender_id = "system"

    def send(self, session: Session, recipient_id: str, text: str, priority: Priority = "normal") -> NotificationMessage:
        if not recipient_id:
            raise ValueError("recipient_id is required")
        message = NotificationMessage(
            sender_id=self.sender_id,
            recipient_id=recipient_id,
            text=text,
            priority=priority,
        )
        session.add(message)
        session.flush()
        return message

    def list_for_recipient(
        self,
        session: Session,
        recipient_id: str,
        *,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[NotificationMessage]:
        stmt = select(NotificationMessage).where(NotificationMessage.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(NotificationMessage.read.is_(False))
        stmt = stmt.order_by(NotificationMessage.created_at.desc()).limit(limit)
        return list(session.scalars(stmt).all())


notifier = DbNotifier()
