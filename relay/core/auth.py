"""Request authentication for the direct query API and admin routes."""

from __future__ import annotations

import hmac
import os
from typing import TypedDict, cast

import jwt
from fastapi import HTTPException, Request, status
from jwt import ExpiredSignatureError, InvalidTokenError

from ..config import get_settings

__all__ = [
    "TenantTokenConfigurationError",
    "TenantTokenPayload",
    "TenantTokenValidationError",
    "decode_tenant_token",
    "get_tenant_context",
    "require_internal_auth",
]


class TenantTokenConfigurationError(RuntimeError):
    """Raised when tenant token configuration is invalid."""


class TenantTokenValidationError(ValueError):
    """Raised when the provided tenant token cannot be validated."""


class _TenantTokenRequiredClaims(TypedDict):
    tenant_id: str
    user_id: str


class TenantTokenPayload(_TenantTokenRequiredClaims, total=False):
    """Decoded JWT payload for tenant-scoped API calls."""

    aud: str | list[str]
    exp: int
    iat: int
    iss: str
    roles: list[str]
    type: str


def _get_env(name: str, *, required: bool = True, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if required and (value is None or not value.strip()):
        raise TenantTokenConfigurationError(
            f"Environment variable '{name}' must be set for tenant token validation.",
        )
    if value is None:
        return ""
    return value.strip()


def decode_tenant_token(token: str) -> TenantTokenPayload:
    """Decode and validate a tenant access token.

    Args:
        token: Encoded JWT from the ``Authorization`` header.

    Returns:
        TenantTokenPayload: Parsed payload carrying ``tenant_id`` and ``user_id``.

    Raises:
        TenantTokenConfigurationError: If TENANT_TOKEN_SECRET, TENANT_TOKEN_AUDIENCE
            or TENANT_TOKEN_ISSUER is missing.
        TenantTokenValidationError: If the signature, claims or expiry are invalid.
    """

    secret_key = _get_env("TENANT_TOKEN_SECRET")
    audience = _get_env("TENANT_TOKEN_AUDIENCE")
    issuer = _get_env("TENANT_TOKEN_ISSUER")
    algorithm = _get_env("TENANT_TOKEN_ALGORITHM", required=False, default="HS256")

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "aud", "iss"]},
        )
    except ExpiredSignatureError as exc:
        raise TenantTokenValidationError("Tenant token has expired.") from exc
    except InvalidTokenError as exc:
        raise TenantTokenValidationError("Tenant token is invalid.") from exc

    if "tenant_id" not in payload or "user_id" not in payload:
        raise TenantTokenValidationError(
            "Tenant token payload must include 'tenant_id' and 'user_id'.",
        )
    type_claim = payload.get("type")
    if type_claim and type_claim != "access":
        raise TenantTokenValidationError("Tenant token must be an access token.")

    return cast(TenantTokenPayload, payload)


async def get_tenant_context(request: Request) -> TenantTokenPayload:
    """FastAPI dependency returning the validated bearer token payload.

    Responds ``401`` for a missing or invalid token and ``500`` when token
    validation is not configured.
    """

    authorization = request.headers.get("Authorization")
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
        )

    scheme, _, credentials = authorization.partition(" ")
    if not credentials or scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
        )

    try:
        return decode_tenant_token(credentials)
    except TenantTokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except TenantTokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


async def require_internal_auth(request: Request) -> str:
    """Check the shared ``X-Internal-Auth`` secret used by admin routes."""

    expected = get_settings().internal_auth_secret
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="INTERNAL_AUTH_SECRET not configured",
        )
    provided = request.headers.get("X-Internal-Auth", "")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal auth",
        )
    return request.headers.get("X-Actor-Id") or "admin"
