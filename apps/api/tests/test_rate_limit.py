from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import AuthUser, get_current_user
from app.core.config import Settings, get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import Budget, TokenBucketLimiter, reset_rate_limiter, resolve_budget


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
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "3")
    monkeypatch.setenv("RATE_LIMIT_STAGE_CHANGES_PER_MINUTE", "2")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: AuthUser(sub="user-1", roles=["projects.read", "projects.write"])
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_mutating_endpoints_are_rate_limited(client: TestClient) -> None:
    responses = [client.post("/api/projects", json={"name": f"Rate Limit Project {index}"}) for index in range(5)]

    limited = [response for response in responses if response.status_code == 429]
    assert limited

    first_limited = limited[0]
    body = first_limited.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["message"] == "Too many requests"
    assert body["correlation_id"] is not None
    assert body["details"] == {"budget": "projects", "limit_per_minute": 3}
    assert first_limited.headers.get("Retry-After") is not None


def test_get_endpoints_are_not_rate_limited(client: TestClient) -> None:
    create = client.post("/api/projects", json={"name": "Readable Project"})
    assert create.status_code == 201

    responses = [client.get("/api/projects") for _ in range(10)]
    assert all(response.status_code != 429 for response in responses)


def test_stage_changes_draw_from_their_own_budget(client: TestClient) -> None:
    project = client.post("/api/projects", json={"name": "Staged Project"}).json()

    moves = [client.post(f"/api/projects/{project['id']}/stage", json={"target_stage": "Planning"}) for _ in range(3)]

    assert [response.status_code == 429 for response in moves] == [False, False, True]
    assert moves[2].json()["details"] == {"budget": "projects.stage_changes", "limit_per_minute": 2}

    assert client.post("/api/projects", json={"name": "Still Writable"}).status_code == 201


def test_stage_dry_runs_are_never_limited(client: TestClient) -> None:
    payload = {"current_stage": "Discovery", "target_stage": "Planning", "project": {}}

    responses = [client.post("/api/projects/stages/validate", json=payload) for _ in range(10)]

    assert all(response.status_code == 200 for response in responses)


def test_resolve_budget_groups_routes_by_module_and_kind() -> None:
    settings = Settings(
        rate_limit_mutations_per_minute=30,
        rate_limit_stage_changes_per_minute=5,
        rate_limit_batch_jobs_per_minute=1,
    )

    assert resolve_budget("/api/projects/abc/stage", settings) == Budget("projects.stage_changes", 5)
    assert resolve_budget("/api/deals/abc/stage", settings) == Budget("deals.stage_changes", 5)
    assert resolve_budget("/api/contracts/auto-renewals", settings) == Budget("contracts.batch_jobs", 1)
    assert resolve_budget("/api/leads/sla/escalations", settings) == Budget("leads.batch_jobs", 1)
    assert resolve_budget("/api/projects/abc", settings) == Budget("projects", 30)
    assert resolve_budget("/api/projects/stages/validate", settings) is None
    assert resolve_budget("/metrics", settings) is None


def test_limiter_refuses_spends_beyond_capacity() -> None:
    limiter = TokenBucketLimiter()
    budget = Budget("projects.stage_changes", 2)

    assert limiter.take("user-1", budget) == (True, 0)
    assert limiter.take("user-1", budget) == (True, 0)
    allowed, retry_after = limiter.take("user-1", budget)
    assert allowed is False
    assert retry_after >= 1
    assert limiter.take("user-2", budget) == (True, 0)
    assert limiter.take("user-1", Budget("projects", 2)) == (True, 0)
    assert limiter.take("user-1", Budget("projects", 0)) == (False, 60)
