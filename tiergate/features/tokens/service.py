"""
tiergate/features/tokens/service.py

Course token ledger.

Course purchases grant prepaid unlock tokens. Tokens are spent oldest first
and are never deleted, only marked used.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.orm import Session

from tiergate.core.clock import as_utc, normalize_now
from tiergate.core.database import course_tokens, get_db_session
from tiergate.core.errors import ValidationError
from tiergate.features.profiles.service import get_or_create_profile
from tiergate.features.usage.service import append_usage_event
from tiergate.models.course_token import CourseToken


logger = logging.getLogger(__name__)

TOKEN_TYPES = ("resume", "application_assist", "interview_prep")


def _row_to_token(row) -> CourseToken:
    return CourseToken(
        id=row.id,
        user_id=row.user_id,
        token_type=row.token_type,
        course_purchase_id=row.course_purchase_id,
        used=bool(row.used),
        used_at=as_utc(row.used_at),
        created_at=as_utc(row.created_at),
    )


def grant_course_token(
    user_id: str,
    token_type: str,
    course_purchase_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CourseToken:
    """
    Grant one unused token of `token_type` and audit it as course_token_granted.

    Raises:
        ValidationError: unknown token type
    """
    if token_type not in TOKEN_TYPES:
        raise ValidationError(f"Unknown token type: {token_type}")

    now = normalize_now(now)
    get_or_create_profile(user_id, now=now)

    with get_db_session() as session:
        result = session.execute(
            insert(course_tokens).values(
                user_id=user_id,
                token_type=token_type,
                course_purchase_id=course_purchase_id,
                used=False,
                created_at=now,
            )
        )
        token_id = result.inserted_primary_key[0]
        append_usage_event(
            session,
            user_id,
            "course_token_granted",
            {"token_id": token_id, "token_type": token_type, "course_purchase_id": course_purchase_id},
            now,
        )

    logger.info(
        "[tokens] granted",
        extra={"user_id": user_id, "token_type": token_type, "token_id": token_id},
    )
    return CourseToken(
        id=token_id,
        user_id=user_id,
        token_type=token_type,
        course_purchase_id=course_purchase_id,
        used=False,
        created_at=now,
    )


def count_unused_tokens(session: Session, user_id: str, token_type: str) -> int:
    return session.execute(
        select(func.count())
        .select_from(course_tokens)
        .where(course_tokens.c.user_id == user_id)
        .where(course_tokens.c.token_type == token_type)
        .where(course_tokens.c.used.is_(False))
    ).scalar_one()


def oldest_unused_token(
    session: Session,
    user_id: str,
    token_type: str,
    *,
    for_update: bool = False,
) -> Optional[CourseToken]:
    """Next token to spend: earliest created_at, id as tie-break."""
    query = (
        select(course_tokens)
        .where(course_tokens.c.user_id == user_id)
        .where(course_tokens.c.token_type == token_type)
        .where(course_tokens.c.used.is_(False))
        .order_by(course_tokens.c.created_at, course_tokens.c.id)
        .limit(1)
    )
    if for_update:
        query = query.with_for_update()
    row = session.execute(query).first()
    return _row_to_token(row) if row else None


def mark_token_used(session: Session, token_id: int, now: datetime) -> bool:
    """Mark a token used. False if another writer spent it first."""
    result = session.execute(
        update(course_tokens)
        .where(course_tokens.c.id == token_id)
        .where(course_tokens.c.used.is_(False))
        .values(used=True, used_at=now)
    )
    return result.rowcount == 1


def list_tokens(user_id: str, token_type: Optional[str] = None) -> List[CourseToken]:
    """All tokens for a user (used and unused), oldest first."""
    with get_db_session() as session:
        query = select(course_tokens).where(course_tokens.c.user_id == user_id)
        if token_type:
            query = query.where(course_tokens.c.token_type == token_type)
        rows = session.execute(
            query.order_by(course_tokens.c.created_at, course_tokens.c.id)
        ).all()
        return [_row_to_token(row) for row in rows]
