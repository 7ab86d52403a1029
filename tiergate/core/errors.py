"""Error normalization and handlers."""

import logging
import builtins
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from tiergate.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def details(self) -> Optional[Dict[str, Any]]:
        """Extra payload rendered next to the error envelope."""
        return None


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class ConfigurationError(AppError):
    """Tier catalog or settings are incomplete. Raised at startup only."""
    code = "configuration_error"
    status_code = 500


class StorageError(AppError):
    """Ledger state could not be read or written. Callers must fail closed."""
    code = "storage_error"
    status_code = 503


class ConcurrencyConflictError(AppError):
    """A conditional ledger write lost a race; re-evaluate before retrying."""
    code = "concurrency_conflict"
    status_code = 409


class QuotaExceededError(AppError):
    """Expected, user-facing denial. Carries the quota decision for rendering."""
    code = "quota_exceeded"
    status_code = 403

    def __init__(self, message: str, *, decision=None, **kwargs):
        super().__init__(message, **kwargs)
        self.decision = decision

    def details(self) -> Optional[Dict[str, Any]]:
        if self.decision is None:
            return None
        d = self.decision
        return {
            "feature": d.feature.value,
            "currentTier": d.tier.value,
            "limit": d.limit,
            "used": d.used,
            "remaining": d.remaining,
            "upgradeUrl": d.upgrade_url,
            "canPurchase": d.can_purchase,
            "purchasePrice": str(d.purchase_price) if d.purchase_price is not None else None,
        }


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, details: Optional[Dict[str, Any]] = None) -> dict:
    payload = {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }
    if details:
        payload["quota"] = details
    return payload


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, exc.details())
    logger = logging.getLogger("tiergate")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("tiergate")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("tiergate")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
