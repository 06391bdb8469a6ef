"""
Shared-secret authentication for server-to-server routes.

Callers send the X-Admin-Key header. The expected key comes from
settings.ADMIN_KEY; when it is unset every request is refused.
"""
import hmac
import logging
from typing import Optional

from fastapi import Header, Request

from stripe_sync.core.config import settings
from stripe_sync.core.errors import AdminAuthError


logger = logging.getLogger("stripe_sync.auth")


def verify_admin_key(request: Request, x_admin_key: Optional[str] = Header(None)) -> str:
    """FastAPI dependency: reject the request unless X-Admin-Key matches ADMIN_KEY."""
    cfg = getattr(request.app.state, "settings", settings)
    admin_key = cfg.ADMIN_KEY
    if not admin_key or not x_admin_key or not hmac.compare_digest(x_admin_key, admin_key):
        logger.warning("invalid admin key attempt on %s", request.url.path)
        raise AdminAuthError("Invalid or missing X-Admin-Key header")
    return x_admin_key
