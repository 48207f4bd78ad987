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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("SIDE_EFFECTS_MODE", "inline")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def current_user() -> AuthUser:
    return AuthUser(sub="writer-1", roles=["ai.usage.read", "ai.usage.write"])


@pytest.fixture()
def client(db_session: Session, current_user: AuthUser) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_track_usage_for_current_user(client: TestClient) -> None:
    response = client.post(
        "/api/ai/usage",
        json={"service": "claude", "operation": "contract_generation", "tokens_used": 1200, "cost": "0.25"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["alert"] is None
    assert body["quota"]["user_id"] == "writer-1"
    assert body["quota"]["current_usage"] == 1200

    check = client.get("/api/ai/quota/check", params={"estimated_tokens": 500})
    assert check.json()["allowed"] is True

    stats = client.get("/api/ai/usage/stats")
    assert stats.json()["total_tokens"] == 1200
    assert stats.json()["by_service"]["claude"]["tokens"] == 1200


def test_other_users_require_quota_management(client: TestClient, current_user: AuthUser) -> None:
    response = client.get("/api/ai/quota", params={"user_id": "someone-else"})
    assert response.status_code == 403
    assert response.json()["code"] == "ai_quota_read_failed"

    current_user.roles = ["ai.usage.read", "ai.quota.manage"]
    updated = client.put("/api/ai/quotas/someone-else", json={"monthly_limit": 5000})
    assert updated.status_code == 200
    assert updated.json()["monthly_limit"] == 5000

    read = client.get("/api/ai/quota", params={"user_id": "someone-else"})
    assert read.json()["monthly_limit"] == 5000


def test_unknown_service_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/api/ai/usage",
        json={"service": "mystery", "operation": "search", "tokens_used": 1, "cost": "0"},
    )
    assert response.status_code == 422


def test_quota_update_requires_a_limit(client: TestClient, current_user: AuthUser) -> None:
    current_user.roles = ["ai.quota.manage"]
    response = client.put("/api/ai/quotas/writer-1", json={})
    assert response.status_code == 422
