"""
tiergate/models/usage_event.py

UsageEvent: immutable audit record of one grant, reset or consumption.
"""

from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict


class UsageEvent(BaseModel):
    """
    UsageEvent is one append-only audit row.

    Event types:
    - <feature>_used: one consumption (metadata.source names the debited source)
    - starter_ai_credits_reset: weekly credit rollover
    - monthly_period_created: new usage period row
    - course_token_granted: token added by the course purchase flow
    - tier_changed: tier switched by billing or support
    - usage_commit_failed: commit aborted after the gated work ran

    For trial-scoped features the count of <feature>_used events since the
    trial started is the usage counter.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    user_id: str
    event_type: str
    occurred_at: datetime
    metadata: Optional[Dict[str, Any]] = None
