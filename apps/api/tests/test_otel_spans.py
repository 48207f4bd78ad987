from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.otel import operation_span, setup_inmemory_otel


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
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: AuthUser(
        sub="user-1",
        roles=["projects.read", "projects.write", "projects.change_stage"],
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post(
        "/api/projects",
        json={"name": "Traced Project"},
        headers={"X-Correlation-Id": "otel-corr-1"},
    )
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_stage_update_span_carries_transition_attributes(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    project = client.post("/api/projects", json={"name": "Traced", "description": "x", "timeline": "Q1"}).json()

    response = client.post(
        f"/api/projects/{project['id']}/stage",
        json={"target_stage": "Planning"},
        headers={"X-Correlation-Id": "otel-stage-1"},
    )
    assert response.status_code == 200

    stage_spans = [span for span in span_exporter.get_finished_spans() if span.name == "projects.stage_update"]
    assert stage_spans
    assert any(
        span.attributes.get("project_id") == project["id"]
        and span.attributes.get("to_stage") == "Planning"
        and span.attributes.get("outcome") == "success"
        and span.attributes.get("correlation_id") == "otel-stage-1"
        for span in stage_spans
    )


def test_operation_span_skips_empty_attributes(span_exporter: InMemorySpanExporter) -> None:
    with operation_span("leads.auto_assign", lead_id="lead-1", strategy=None) as span:
        span.set_attribute("assigned_to", "rep-a")

    finished = [span for span in span_exporter.get_finished_spans() if span.name == "leads.auto_assign"]
    assert len(finished) == 1
    assert finished[0].attributes.get("lead_id") == "lead-1"
    assert finished[0].attributes.get("assigned_to") == "rep-a"
    assert "strategy" not in finished[0].attributes
