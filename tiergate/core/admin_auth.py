"""
Admin authentication for support tooling (tier switcher, course token grants).

Requests carry the shared secret in X-Admin-Key; it is compared against
settings.ADMIN_KEY. With no ADMIN_KEY configured every admin request is
rejected.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from tiergate.core.config import settings
from tiergate.core.errors import PermissionError


logger = logging.getLogger("tiergate.admin")


@dataclass
class AdminActor:
    """Authenticated admin identity, recorded on audit events."""
    actor_id: str
    auth_mechanism: str = "x_admin_key"


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    expected_key = settings.ADMIN_KEY
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"admin_key:{key_hash}")


def require_admin_auth(request: Request) -> AdminActor:
    """
    FastAPI dependency for admin routes.

    Raises:
        PermissionError: missing or invalid X-Admin-Key
    """
    actor = verify_admin_key(request)
    if actor is None:
        logger.warning("[admin] rejected admin request", extra={"path": request.url.path})
        raise PermissionError("Invalid or missing X-Admin-Key header")
    return actor
