from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter


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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("SIDE_EFFECTS_MODE", "inline")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def current_user() -> AuthUser:
    return AuthUser(
        sub="metrics-admin",
        roles=["system.metrics.read", "projects.read", "projects.write", "projects.change_stage"],
    )


@pytest.fixture()
def client(db_session: Session, current_user: AuthUser) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: current_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_stage_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    project = client.post("/api/projects", json={"name": "Metrics Project", "description": "x", "timeline": "Q3"})
    assert project.status_code == 201

    stage = client.post(f"/api/projects/{project.json()['id']}/stage", json={"target_stage": "Planning"})
    assert stage.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "project_stage_transitions_total" in body
    assert "project_stage_update_duration_seconds" in body

    assert 'path="/health"' in body
    assert 'outcome="success"' in body


def test_metrics_require_permission(client: TestClient, current_user: AuthUser) -> None:
    current_user.roles = ["projects.read"]
    response = client.get("/metrics")
    assert response.status_code == 403


def test_metrics_disabled_returns_not_found(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()
    response = client.get("/metrics")
    assert response.status_code == 404
