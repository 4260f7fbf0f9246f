"""
Internal caller authentication for the Azure DevOps Write-Back Agent.

TRUST BOUNDARY: only services holding INTERNAL_SERVICE_KEY may trigger
execute runs. The Azure DevOps credential itself is passed through from the
caller's Authorization header; X-Tenant-ID / X-User-ID are informational and
end up in logs only.
"""
import hmac
import logging
import os
from typing import Optional

from fastapi import HTTPException, Request
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SERVICE_KEY_HEADER = "X-Internal-Service-Key"


class InternalCaller(BaseModel):
    """Authenticated internal caller of an execute endpoint."""

    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    access_token: Optional[str] = Field(None, repr=False, description="Azure DevOps bearer token, if forwarded")


def _configured_key() -> str:
    # Read per request so a .env loaded by main.py is picked up
    return os.getenv("INTERNAL_SERVICE_KEY", "").strip()


def _reject(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


async def require_internal_caller(request: Request) -> InternalCaller:
    """
    FastAPI dependency guarding execute endpoints.

    Args:
        request: Incoming request

    Returns:
        InternalCaller with tenant/user ids and the forwarded bearer token

    Raises:
        HTTPException(401): If the key is not configured, missing or wrong
    """
    expected = _configured_key()
    if not expected:
        logger.error(f"Rejecting {request.url.path}: INTERNAL_SERVICE_KEY is not configured")
        raise _reject("Internal service authentication not configured")

    provided = (request.headers.get(SERVICE_KEY_HEADER) or "").strip()
    if not provided:
        logger.warning(f"Rejecting {request.url.path}: no {SERVICE_KEY_HEADER} header")
        raise _reject(f"{SERVICE_KEY_HEADER} header required")
    if not hmac.compare_digest(provided, expected):
        logger.warning(f"Rejecting {request.url.path}: {SERVICE_KEY_HEADER} does not match")
        raise _reject("Invalid internal service key")

    caller = InternalCaller(
        tenant_id=request.headers.get("X-Tenant-ID"),
        user_id=request.headers.get("X-User-ID"),
        access_token=bearer_token(request.headers.get("Authorization"))
    )
    logger.info(
        f"Internal caller accepted (tenant={caller.tenant_id}, user={caller.user_id}, "
        f"forwarded_token={'yes' if caller.access_token else 'no'})"
    )
    return caller


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token part of a "Bearer <token>" header value, or None."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
