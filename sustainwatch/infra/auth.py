from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))

REQUIRED_CLAIMS = ["exp", "sub", "tenant_id"]


def create_access_token(
    *,
    user_id: str,
    tenant_id: str,
    permissions: list[str] | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Mint a bearer token; production tokens come from the identity provider."""
    issued_at = datetime.now(UTC)
    expires_at = issued_at + timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    claims: dict[str, Any] = {
        "sub": user_id,
        "tenant_id": tenant_id,
        "permissions": sorted(set(permissions or [])),
        "iat": issued_at,
        "exp": expires_at,
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    claims = jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        options={"require": REQUIRED_CLAIMS},
    )
    tenant_id = claims.get("tenant_id")
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise jwt.InvalidTokenError("token carries no tenant")
    if not isinstance(claims.get("permissions", []), list):
        raise jwt.InvalidTokenError("permissions claim must be a list")
    return claims
