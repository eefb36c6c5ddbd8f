from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "dev-refresh-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))
JWT_REFRESH_EXPIRES_MIN = int(os.getenv("JWT_REFRESH_EXPIRES_MIN", "2880"))

TOKEN_ACCESS = "access"
TOKEN_REFRESH = "refresh"
REQUIRED_CLAIMS = ("sub", "tenant_id", "typ", "iat", "exp")


def _encode(user_id: str, tenant_id: str, token_type: str, secret: str, lifetime: timedelta) -> str:
    issued_at = datetime.now(UTC)
    return jwt.encode(
        {
            "sub": user_id,
            "tenant_id": tenant_id,
            "typ": token_type,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + lifetime).timestamp()),
        },
        secret,
        algorithm=JWT_ALGORITHM,
    )


def _decode(token: str, token_type: str, secret: str) -> dict[str, Any]:
    claims: dict[str, Any] = jwt.decode(
        token,
        secret,
        algorithms=[JWT_ALGORITHM],
        options={"require": list(REQUIRED_CLAIMS)},
    )
    if claims["typ"] != token_type:
        raise jwt.InvalidTokenError(f"expected a {token_type} token")
    return claims


def create_access_token(
    *,
    user_id: str,
    tenant_id: str,
    expires_minutes: int | None = None,
) -> str:
    """Identity only; roles and permissions are looked up on each request."""
    lifetime = timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    return _encode(user_id, tenant_id, TOKEN_ACCESS, JWT_SECRET, lifetime)


def create_refresh_token(*, user_id: str, tenant_id: str) -> str:
    return _encode(user_id, tenant_id, TOKEN_REFRESH, JWT_REFRESH_SECRET, timedelta(minutes=JWT_REFRESH_EXPIRES_MIN))


def decode_access_token(token: str) -> dict[str, Any]:
    return _decode(token, TOKEN_ACCESS, JWT_SECRET)


def decode_refresh_token(token: str) -> dict[str, Any]:
    return _decode(token, TOKEN_REFRESH, JWT_REFRESH_SECRET)
