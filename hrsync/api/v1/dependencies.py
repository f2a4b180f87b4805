"""Request-scoped dependencies shared by the v1 routers."""

from typing import Optional

from fastapi import Header, HTTPException, Request


IDENTITY_HEADER = "X-Identity"


def get_identity(x_identity: Optional[str] = Header(None, alias=IDENTITY_HEADER)) -> str:
    """Dependency to get the caller's identity, set by the authenticating proxy."""
    if not x_identity or not x_identity.strip():
        raise HTTPException(status_code=401, detail=f"Missing {IDENTITY_HEADER} header")
    return x_identity.strip()


def get_client_ip(request: Request) -> Optional[str]:
    """Dependency to get the client IP, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
