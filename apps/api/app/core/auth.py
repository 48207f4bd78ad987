from dataclasses import dataclass
from typing import Any

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""


def decode_token(token: str) -> dict[str, Any] | None:
    if not token:
        return None
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def resolve_subject(request: Request) -> str | None:
    payload = decode_token(_bearer_token(request))
    if payload is None or payload.get("sub") is None:
        return None
    return str(payload["sub"])


async def get_current_user(request: Request) -> AuthUser:
    payload = decode_token(_bearer_token(request))
    if payload is None:
        # TODO: Replace with strict auth failure once the hosted identity provider is wired.
        return AuthUser(sub="anonymous", roles=["guest"])

    subject = str(payload.get("sub", "anonymous"))
    roles = payload.get("roles", ["user"])
    if not isinstance(roles, list):
        roles = ["user"]
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = subject
    return AuthUser(sub=subject, roles=[str(role) for role in roles])
