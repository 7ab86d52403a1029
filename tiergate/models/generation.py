"""
tiergate/models/generation.py

Plan generation attempts tracked by the dedup guard.

State machine:
    requested -> duplicate (short-circuit to the existing record)
    requested -> in_progress -> succeeded | failed
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from tiergate.models.quota import ConsumptionReceipt


class GenerationStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class GenerationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    idempotency_key: Optional[str] = None
    status: GenerationStatus
    result_ref: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class GenerationClaim(BaseModel):
    """Result of begin_generation(): either a fresh marker or an existing record."""
    model_config = ConfigDict(frozen=True)

    record: GenerationRecord
    duplicate: bool


class GenerationOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    record: GenerationRecord
    duplicate: bool
    receipt: Optional[ConsumptionReceipt] = None
