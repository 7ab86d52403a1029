"""
Generation API: lets clients find an in-flight or just-finished plan
generation instead of starting another one.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Header, Query

from tiergate.features.generation.service import check_recent_generation

router = APIRouter(prefix="/v1/generations", tags=["generations"])


@router.get("/recent")
def get_recent_generation(
    user_id: Annotated[str, Header(alias="X-User-Id")],
    window_seconds: Optional[int] = Query(None, ge=1, description="Dedup window (defaults to server setting)"),
) -> Optional[dict]:
    record = check_recent_generation(user_id, window_seconds=window_seconds)
    return record.model_dump(mode="json") if record else None
