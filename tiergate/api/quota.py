"""
Quota API: feature checks, usage commits and usage summaries.

The caller is identified by the X-User-Id header set by the upstream
authentication layer.
"""

from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Header
from pydantic import BaseModel

from tiergate.features.consumption.service import commit
from tiergate.features.quota.service import evaluate, summarize_usage

router = APIRouter(prefix="/v1/quota", tags=["quota"])


class CommitRequest(BaseModel):
    metadata: Optional[Dict[str, Any]] = None


@router.get("")
def get_usage_summary(user_id: Annotated[str, Header(alias="X-User-Id")]) -> dict:
    """Per-feature decisions plus days until the weekly and monthly resets."""
    return summarize_usage(user_id).model_dump(mode="json")


@router.get("/{feature}")
def get_quota(feature: str, user_id: Annotated[str, Header(alias="X-User-Id")]) -> dict:
    """Check a feature without consuming it."""
    return evaluate(user_id, feature).model_dump(mode="json")


@router.post("/{feature}/commit")
def commit_usage(
    feature: str,
    user_id: Annotated[str, Header(alias="X-User-Id")],
    body: Optional[CommitRequest] = None,
) -> dict:
    """
    Record one completed use of a feature.

    **Errors:**
    - 403 quota_exceeded: nothing left to debit (payload includes `quota`)
    - 409 concurrency_conflict: re-check quota and retry
    """
    metadata = body.metadata if body else None
    return commit(user_id, feature, metadata).model_dump(mode="json")
