"""
tiergate/features/generation/service.py

Plan generation dedup guard.

A second plan generation for the same user while one is in flight (or just
finished) returns the existing attempt instead of starting, and charging
for, a new one.

Handles:
- Keyed dedup via UNIQUE(user_id, idempotency_key), stale keyed claims re-opened
- Per-user dedup inside a short time window, keyed or not
- run_generation(): claim -> quota -> work -> commit -> succeeded
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import uuid4

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tiergate.core.clock import as_utc, normalize_now
from tiergate.core.config import settings
from tiergate.core.database import generation_records, get_db_session
from tiergate.core.errors import NotFoundError, QuotaExceededError
from tiergate.core.locks import user_lock
from tiergate.features.consumption.service import commit
from tiergate.features.profiles.service import get_or_create_profile
from tiergate.features.quota.service import require_quota
from tiergate.models.generation import (
    GenerationClaim,
    GenerationOutcome,
    GenerationRecord,
    GenerationStatus,
)
from tiergate.models.tier import Feature


logger = logging.getLogger(__name__)

# Work callback: returns (result_ref, result payload)
GenerateFn = Callable[[], Tuple[str, Optional[Dict[str, Any]]]]


def _row_to_record(row) -> GenerationRecord:
    return GenerationRecord(
        id=row.id,
        user_id=row.user_id,
        idempotency_key=row.idempotency_key,
        status=GenerationStatus(row.status),
        result_ref=row.result_ref,
        result=row.result,
        error=row.error,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _window(window_seconds: Optional[int]) -> int:
    if window_seconds is None:
        return settings.GENERATION_DEDUP_WINDOW_SECONDS
    return window_seconds


def _find_by_key(session: Session, user_id: str, idempotency_key: str) -> Optional[GenerationRecord]:
    row = session.execute(
        select(generation_records)
        .where(generation_records.c.user_id == user_id)
        .where(generation_records.c.idempotency_key == idempotency_key)
    ).first()
    return _row_to_record(row) if row else None


def _find_recent(session: Session, user_id: str, since: datetime) -> Optional[GenerationRecord]:
    row = session.execute(
        select(generation_records)
        .where(generation_records.c.user_id == user_id)
        .where(generation_records.c.status.in_([GenerationStatus.IN_PROGRESS.value, GenerationStatus.SUCCEEDED.value]))
        .where(generation_records.c.created_at >= since)
        .order_by(generation_records.c.created_at.desc())
        .limit(1)
    ).first()
    return _row_to_record(row) if row else None


def _is_live(record: GenerationRecord, since: datetime) -> bool:
    """Succeeded, or in progress and started inside the window."""
    if record.status == GenerationStatus.SUCCEEDED:
        return True
    return record.status == GenerationStatus.IN_PROGRESS and record.created_at >= since


def _reopen(session: Session, record: GenerationRecord, now: datetime) -> GenerationRecord:
    # A reopened attempt restarts the window
    session.execute(
        update(generation_records)
        .where(generation_records.c.id == record.id)
        .values(status=GenerationStatus.IN_PROGRESS.value, error=None, created_at=now, updated_at=now)
    )
    logger.info(
        "[generation] reopened",
        extra={"user_id": record.user_id, "generation_id": record.id, "previous_status": record.status.value},
    )
    return record.model_copy(
        update={"status": GenerationStatus.IN_PROGRESS, "error": None, "created_at": now, "updated_at": now}
    )


def get_generation(record_id: str) -> Optional[GenerationRecord]:
    with get_db_session() as session:
        row = session.execute(
            select(generation_records).where(generation_records.c.id == record_id)
        ).first()
        return _row_to_record(row) if row else None


def check_recent_generation(
    user_id: str,
    window_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[GenerationRecord]:
    """
    Most recent in-progress or succeeded generation inside the window.

    Failed attempts are ignored so a user can retry right away.
    """
    now = normalize_now(now)
    since = now - timedelta(seconds=_window(window_seconds))
    with get_db_session() as session:
        return _find_recent(session, user_id, since)


def begin_generation(
    user_id: str,
    idempotency_key: Optional[str] = None,
    window_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> GenerationClaim:
    """
    Claim a generation slot for the user.

    A succeeded attempt under the same idempotency key, or a keyed attempt
    still in progress inside the window, is returned as a duplicate. Any
    other in-progress or succeeded attempt for the user inside the window is
    returned as a duplicate too, keyed or not. A failed or stale keyed
    attempt is re-opened. Otherwise a new in_progress marker is written.
    """
    now = normalize_now(now)
    since = now - timedelta(seconds=_window(window_seconds))
    get_or_create_profile(user_id, now=now)

    with user_lock(user_id):
        try:
            with get_db_session() as session:
                existing = _find_by_key(session, user_id, idempotency_key) if idempotency_key else None
                if existing and _is_live(existing, since):
                    return GenerationClaim(record=existing, duplicate=True)

                recent = _find_recent(session, user_id, since)
                if recent:
                    return GenerationClaim(record=recent, duplicate=True)

                if existing:
                    return GenerationClaim(record=_reopen(session, existing, now), duplicate=False)

                record_id = str(uuid4())
                session.execute(
                    insert(generation_records).values(
                        id=record_id,
                        user_id=user_id,
                        idempotency_key=idempotency_key,
                        status=GenerationStatus.IN_PROGRESS.value,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError:
            # Same key claimed by another process between our read and insert
            if not idempotency_key:
                raise
            with get_db_session() as session:
                existing = _find_by_key(session, user_id, idempotency_key)
            if existing is None:
                raise
            return GenerationClaim(record=existing, duplicate=True)

    logger.info(
        "[generation] started",
        extra={"user_id": user_id, "generation_id": record_id, "idempotency_key": idempotency_key},
    )
    record = GenerationRecord(
        id=record_id,
        user_id=user_id,
        idempotency_key=idempotency_key,
        status=GenerationStatus.IN_PROGRESS,
        created_at=now,
        updated_at=now,
    )
    return GenerationClaim(record=record, duplicate=False)


def _finish(record_id: str, values: Dict[str, Any]) -> GenerationRecord:
    with get_db_session() as session:
        result = session.execute(
            update(generation_records).where(generation_records.c.id == record_id).values(**values)
        )
        if result.rowcount != 1:
            raise NotFoundError(f"Generation {record_id} not found")
        row = session.execute(
            select(generation_records).where(generation_records.c.id == record_id)
        ).first()
        return _row_to_record(row)


def complete_generation(
    record_id: str,
    result_ref: str,
    result: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> GenerationRecord:
    record = _finish(
        record_id,
        {
            "status": GenerationStatus.SUCCEEDED.value,
            "result_ref": result_ref,
            "result": result,
            "error": None,
            "updated_at": normalize_now(now),
        },
    )
    logger.info("[generation] succeeded", extra={"user_id": record.user_id, "generation_id": record_id})
    return record


def fail_generation(record_id: str, error: str, now: Optional[datetime] = None) -> GenerationRecord:
    record = _finish(
        record_id,
        {"status": GenerationStatus.FAILED.value, "error": error, "updated_at": normalize_now(now)},
    )
    logger.warning(
        "[generation] failed",
        extra={"user_id": record.user_id, "generation_id": record_id, "error_message": error},
    )
    return record


def run_generation(
    user_id: str,
    generate: GenerateFn,
    *,
    feature: Feature = Feature.LIFEPLAN_REGEN,
    idempotency_key: Optional[str] = None,
    charge: bool = True,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> GenerationOutcome:
    """
    Run one deduplicated, metered plan generation.

    Args:
        user_id: User requesting the generation
        generate: Work callback returning (result_ref, result)
        feature: Feature debited on success
        idempotency_key: Optional client-supplied key
        charge: False for the always-allowed initial plan
        metadata: Extra audit context for the usage event

    Returns:
        GenerationOutcome; duplicate=True means no work ran and nothing was debited

    Raises:
        QuotaExceededError: the user has no allowance left (the attempt is marked failed)
    """
    now = normalize_now(now)
    claim = begin_generation(user_id, idempotency_key=idempotency_key, now=now)
    if claim.duplicate:
        logger.info(
            "[generation] duplicate",
            extra={"user_id": user_id, "generation_id": claim.record.id, "status": claim.record.status.value},
        )
        return GenerationOutcome(record=claim.record, duplicate=True)

    record_id = claim.record.id

    if charge:
        try:
            require_quota(user_id, feature, now)
        except QuotaExceededError as exc:
            fail_generation(record_id, exc.message)
            raise

    try:
        result_ref, result = generate()
    except Exception as exc:
        fail_generation(record_id, f"{exc.__class__.__name__}: {exc}")
        raise

    receipt = None
    if charge:
        try:
            receipt = commit(user_id, feature, {**(metadata or {}), "generation_id": record_id}, now)
        except Exception as exc:
            fail_generation(record_id, f"{exc.__class__.__name__}: {exc}")
            raise

    record = complete_generation(record_id, result_ref, result)
    return GenerationOutcome(record=record, duplicate=False, receipt=receipt)
