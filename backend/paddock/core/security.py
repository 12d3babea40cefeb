"""Security dependencies for operator endpoints"""
import hmac
from typing import Optional

from fastapi import Header, HTTPException, Request

from paddock.core.config import settings
from paddock.core.logging import security_logger


def require_admin_token(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> None:
    """Dependency: Require ``Authorization: Bearer <ADMIN_API_TOKEN>``.

    The reconciliation endpoints can replay money-moving events, so they stay
    closed (503) until a token is configured instead of falling open.
    """
    if not settings.ADMIN_API_TOKEN:
        raise HTTPException(503, "Operator API disabled: ADMIN_API_TOKEN not configured")

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Unauthorized")

    token = authorization.split(" ", 1)[1].strip()
    if not hmac.compare_digest(token, settings.ADMIN_API_TOKEN):
        security_logger.warning(
            f"Rejected operator token - IP: {request.client.host if request.client else 'unknown'}, "
            f"Path: {request.url.path}"
        )
        raise HTTPException(401, "Unauthorized")
