"""Bearer token verification and admin authorization.

Sign-in and sessions belong to the hosted auth service. This module only
verifies the JWTs it issues: ``sub`` is the user id and ``role`` decides
whether the caller may act as an administrator.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.core.exceptions import forbidden, unauthorized
from marketplace.db.models.admin import AdminAuditLog

bearer_scheme = HTTPBearer()


def issue_token(subject: UUID, role: str, ttl: Optional[timedelta] = None, **claims: Any) -> str:
    """Sign a token shaped like the auth service's (local runs and tests)."""
    expires = datetime.now(timezone.utc) + (ttl or timedelta(hours=settings.jwt_expiration_hours))
    payload = {"sub": str(subject), "role": role, "exp": expires, **claims}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise unauthorized("Invalid or expired token") from e


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> dict[str, Any]:
    return verify_token(credentials.credentials)


async def get_current_user_id(
    payload: dict[str, Any] = Depends(get_token_payload),
) -> UUID:
    """User id carried in the token subject."""
    try:
        return UUID(str(payload["sub"]))
    except (KeyError, ValueError) as e:
        raise unauthorized("Token has no valid subject") from e


async def require_admin(
    payload: dict[str, Any] = Depends(get_token_payload),
) -> dict:
    """Admit only tokens carrying an administrator role."""
    role = payload.get("role")
    if role not in settings.admin_roles:
        raise forbidden("Administrator role required")
    return {
        "id": str(payload.get("sub")),
        "email": payload.get("email"),
        "role": role,
    }


async def log_admin_action(
    session: AsyncSession,
    admin_id: str,
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    details: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> AdminAuditLog:
    """Write an audit entry inside the caller's transaction."""
    entry = AdminAuditLog(
        admin_id=admin_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
        ip_address=ip_address,
    )
    session.add(entry)
    await session.flush()
    return entry


def get_client_ip(request: Request) -> str:
    """Originating client address, honouring proxy headers."""
    for header in ("x-forwarded-for", "x-real-ip"):
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
