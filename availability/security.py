from __future__ import annotations

import os
from typing import Annotated, Optional

import jwt
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

bearer = HTTPBearer(auto_error=False)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"

MANAGE_ROLES = ("staff", "admin")
BOOKING_ROLES = ("guest", "agent", "staff", "admin")


def issue_token(sub: str, role: str, tenant: str | None = None) -> str:
    claims: dict = {"sub": sub, "role": role}
    if tenant:
        claims["tenant"] = tenant
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.PyJWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}")


def get_principal(
    creds: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer)],
    x_tenant_id: Annotated[str | None, Header()] = None,
) -> dict:
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    principal = decode_token(creds.credentials)
    # Tokens scoped to a tenant may only act on that tenant.
    scoped = principal.get("tenant")
    if scoped and x_tenant_id and scoped != x_tenant_id:
        raise HTTPException(status_code=403, detail="Token is not valid for this tenant")
    return principal


def require_roles(*allowed_roles: str):
    allowed = set(allowed_roles)

    def _dep(principal: Annotated[dict, Depends(get_principal)]) -> dict:
        if principal.get("role") not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal

    return _dep
