from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import reset_actor_id, set_actor_id
from app.core.auth import resolve_subject


@dataclass
class RequestContext:
    request_id: str
    correlation_id: str
    user_id: str | None


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None)
        user_id = resolve_subject(request)
        request.state.context = RequestContext(
            request_id=correlation_id or "",
            correlation_id=correlation_id or "",
            user_id=user_id,
        )
        token = set_actor_id(user_id)
        try:
            response = await call_next(request)
        finally:
            reset_actor_id(token)
        response.headers["x-request-id"] = request.state.context.request_id
        return response
