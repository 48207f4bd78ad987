from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.business.projects.models import Project
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter


ALL_PERMISSIONS = [
    "projects.read",
    "projects.write",
    "projects.change_stage",
    "notifications.read",
]


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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("SIDE_EFFECTS_MODE", "inline")
    monkeypatch.setenv("AUDIT_STRICT", "false")
    get_settings.cache_clear()
    reset_rate_limiter()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    events.published_events.clear()


@pytest.fixture()
def current_user() -> AuthUser:
    return AuthUser(sub="pm-1", roles=list(ALL_PERMISSIONS))


@pytest.fixture()
def client(db_session: Session, current_user: AuthUser) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_project(client: TestClient, **fields) -> dict:  # type: ignore[no-untyped-def]
    payload = {"name": "Website", "description": "Marketing site"}
    payload.update(fields)
    response = client.post("/api/projects", json=payload)
    assert response.status_code == 201
    return response.json()


def test_create_project_starts_at_entry_stage(client: TestClient) -> None:
    project = _create_project(client)
    assert project["current_stage"] == "Discovery"
    assert project["owner_id"] == "pm-1"
    assert project["row_version"] == 1

    listed = client.get("/api/projects", params={"stage": "Discovery"})
    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()] == [project["id"]]


def test_stage_change_rejected_with_missing_fields(client: TestClient) -> None:
    project = _create_project(client)

    response = client.post(f"/api/projects/{project['id']}/stage", json={"target_stage": "Planning"})

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "project_stage_validation"
    assert body["message"] == "Missing required fields: timeline"
    assert body["details"]["missing_fields"] == ["timeline"]
    assert body["correlation_id"]


def test_stage_change_after_update(client: TestClient) -> None:
    project = _create_project(client)

    updated = client.patch(
        f"/api/projects/{project['id']}",
        json={"timeline": "Q1", "row_version": project["row_version"]},
    )
    assert updated.status_code == 200
    assert updated.json()["row_version"] == 2

    response = client.post(
        f"/api/projects/{project['id']}/stage",
        json={"target_stage": "Planning", "reason": "scope agreed", "row_version": 2},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["project"]["current_stage"] == "Planning"
    assert body["transition"]["from_stage"] == "Discovery"

    progress = client.get(f"/api/projects/{project['id']}/progress")
    assert progress.json() == {"current_stage": "Planning", "progress": 33}

    notifications = client.get("/api/notifications")
    assert notifications.status_code == 200
    assert notifications.json()[0]["text"] == 'Your project "Website" has moved from Discovery to Planning.'

    audit = client.get(f"/api/projects/{project['id']}/audit")
    assert [entry["action"] for entry in audit.json()] == [
        "project_created",
        "project_updated",
        "project_stage_updated",
    ]


def test_stale_update_is_rejected(client: TestClient) -> None:
    project = _create_project(client)

    response = client.patch(f"/api/projects/{project['id']}", json={"timeline": "Q1", "row_version": 9})

    assert response.status_code == 409
    assert response.json()["code"] == "project_update_failed"


def test_backward_move_requires_confirmation(client: TestClient) -> None:
    project = _create_project(client, timeline="Q1")
    forward = client.post(f"/api/projects/{project['id']}/stage", json={"target_stage": "Planning"})
    assert forward.status_code == 200

    backward = client.post(f"/api/projects/{project['id']}/stage", json={"target_stage": "Discovery"})
    assert backward.status_code == 409
    assert backward.json()["code"] == "project_stage_confirmation_required"
    assert backward.json()["details"]["requires_confirmation"] is True

    forced = client.post(
        f"/api/projects/{project['id']}/stage",
        json={"target_stage": "Discovery", "force_override": True},
    )
    assert forced.status_code == 200
    assert forced.json()["project"]["current_stage"] == "Discovery"


def test_unknown_project_returns_not_found(client: TestClient) -> None:
    missing = uuid.uuid4()

    read = client.get(f"/api/projects/{missing}")
    assert read.status_code == 404
    assert read.json()["code"] == "project_read_failed"

    stage = client.post(f"/api/projects/{missing}/stage", json={"target_stage": "Planning"})
    assert stage.status_code == 404
    assert stage.json()["code"] == "project_stage_not_found"


def test_stage_queries(client: TestClient) -> None:
    project = _create_project(client)

    stages = client.get("/api/projects/stages")
    assert stages.status_code == 200
    assert [stage["name"] for stage in stages.json()][:2] == ["Discovery", "Planning"]

    checklist = client.get("/api/projects/stages/Planning/checklist")
    assert checklist.json() == {"stage": "Planning", "required_fields": ["description", "name", "timeline"]}

    available = client.get(f"/api/projects/{project['id']}/available-stages")
    assert available.json() == {"current_stage": "Discovery", "available_stages": ["On Hold"]}

    completion = client.get(f"/api/projects/{project['id']}/completion")
    assert completion.json() == {"can_complete": False, "missing_fields": ["completion_date", "timeline"]}

    validate = client.post(
        "/api/projects/stages/validate",
        json={"current_stage": "Discovery", "target_stage": "Deployment", "project": {}},
    )
    assert validate.status_code == 200
    assert validate.json()["allowed"] is False
    assert validate.json()["reason"] == "Cannot move from Discovery to Deployment. Allowed stages: Planning, On Hold"


def test_missing_permission_uses_error_envelope(client: TestClient, current_user: AuthUser) -> None:
    current_user.roles = ["projects.read"]

    response = client.post("/api/projects", json={"name": "Website"})

    assert response.status_code == 403
    assert response.json()["code"] == "project_create_failed"
    assert response.json()["message"] == "Missing permission: projects.write"


def test_admin_role_grants_every_permission(client: TestClient, current_user: AuthUser) -> None:
    current_user.roles = ["admin"]
    project = _create_project(client)
    assert project["owner_id"] == "pm-1"


def test_progress_endpoint_caps_completed_projects_at_100(client: TestClient, db_session: Session) -> None:
    project = Project(owner_id="pm-1", name="Website", description="Marketing site", current_stage="Completed")
    db_session.add(project)
    db_session.commit()

    response = client.get(f"/api/projects/{project.id}/progress")

    assert response.status_code == 200
    assert response.json() == {"current_stage": "Completed", "progress": 100}
