from __future__ import annotations

import uuid
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.business.projects.models import Project, utcnow


class ProjectStore(Protocol):
    def get(self, session: Session, project_id: uuid.UUID) -> Project | None: ...

    def update_stage(self, session: Session, project_id: uuid.UUID, stage: str, expected_row_version: int) -> bool: ...


class ProjectRepository:
    def get(self, session: Session, project_id: uuid.UUID) -> Project | None:
        return session.scalar(select(Project).where(Project.id == project_id))

    def list(self, session: Session, *, owner_id: str | None = None, stage: str | None = None, limit: int = 100) -> list[Project]:
        stmt = select(Project)
        if owner_id is not None:
            stmt = stmt.where(Project.owner_id == owner_id)
        if stage is not None:
            stmt = stmt.where(Project.current_stage == stage)
        stmt = stmt.order_by(Project.created_at.desc(), Project.id.asc()).limit(limit)
        return list(session.scalars(stmt).all())

    def update_stage(self, session: Session, project_id: uuid.UUID, stage: str, expected_row_version: int) -> bool:
        """Compare-and-set on ``row_version``; returns False when another writer won."""
        result = session.execute(
            update(Project)
            .where(Project.id == project_id, Project.row_version == expected_row_version)
            .values(current_stage=stage, updated_at=utcnow(), row_version=Project.row_version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
