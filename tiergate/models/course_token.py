"""
tiergate/models/course_token.py

CourseToken: one prepaid unlock granted by a course purchase.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class CourseToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    token_type: str
    course_purchase_id: Optional[str] = None
    used: bool = False
    used_at: Optional[datetime] = None
    created_at: datetime
