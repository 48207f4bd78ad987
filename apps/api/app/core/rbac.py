from fastapi import HTTPException, status

from app.core.auth import AuthUser


ADMIN_ROLES = {"admin", "system.admin"}


def is_admin(user: AuthUser) -> bool:
    return bool({str(role).lower() for role in user.roles} & ADMIN_ROLES)


def has_permission(user: AuthUser, permission: str) -> bool:
    return permission in user.roles or is_admin(user)


def require_permission(user: AuthUser, permission: str) -> None:
    if not has_permission(user, permission):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")
