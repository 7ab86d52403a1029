"""
tiergate/features/usage/service.py

Usage ledger: audit events and monthly usage periods.

Handles:
- Append-only usage event emission (no update or delete exists)
- Event queries and "count since" for trial-scoped features
- Usage period rows and conditional counter increments
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.orm import Session

from tiergate.core.clock import as_utc, normalize_now
from tiergate.core.database import get_db_session, usage_events, usage_periods
from tiergate.features.catalog.service import USAGE_PERIOD_COLUMNS
from tiergate.models.tier import Feature
from tiergate.models.usage_event import UsageEvent
from tiergate.models.usage_period import UsagePeriod


def _row_to_event(row) -> UsageEvent:
    return UsageEvent(
        id=row.id,
        user_id=row.user_id,
        event_type=row.event_type,
        occurred_at=as_utc(row.occurred_at),
        metadata=row._mapping["metadata"],
    )


def _row_to_period(row) -> UsagePeriod:
    mapping = row._mapping
    return UsagePeriod(
        id=row.id,
        user_id=row.user_id,
        period_start=as_utc(row.period_start),
        period_end=as_utc(row.period_end),
        counts={feature: mapping[column] for feature, column in USAGE_PERIOD_COLUMNS.items()},
    )


def append_usage_event(
    session: Session,
    user_id: str,
    event_type: str,
    metadata: Optional[Dict[str, Any]] = None,
    occurred_at: Optional[datetime] = None,
) -> UsageEvent:
    """Append an audit event inside the caller's transaction."""
    occurred_at = normalize_now(occurred_at)
    result = session.execute(
        insert(usage_events).values(
            user_id=user_id,
            event_type=event_type,
            metadata=metadata,
            occurred_at=occurred_at,
        )
    )
    return UsageEvent(
        id=result.inserted_primary_key[0],
        user_id=user_id,
        event_type=event_type,
        occurred_at=occurred_at,
        metadata=metadata,
    )


def emit_usage_event(
    user_id: str,
    event_type: str,
    metadata: Optional[Dict[str, Any]] = None,
    occurred_at: Optional[datetime] = None,
) -> UsageEvent:
    """
    Emit a standalone usage event in its own transaction.

    Args:
        user_id: User the event belongs to
        event_type: Event type (ai_message_used, tier_changed, etc.)
        metadata: Optional structured context
        occurred_at: Timestamp of the event (defaults to now)

    Returns:
        UsageEvent instance
    """
    with get_db_session() as session:
        return append_usage_event(session, user_id, event_type, metadata, occurred_at)


def get_usage_events(
    user_id: str,
    event_type: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
) -> List[UsageEvent]:
    """
    Get usage events for a user, oldest first.

    Args:
        user_id: User to query
        event_type: Optional filter by event type
        start_time: Optional start of time window (inclusive)
        end_time: Optional end of time window (inclusive)
    """
    with get_db_session() as session:
        query = select(usage_events).where(usage_events.c.user_id == user_id)

        if event_type:
            query = query.where(usage_events.c.event_type == event_type)

        if start_time:
            query = query.where(usage_events.c.occurred_at >= as_utc(start_time))

        if end_time:
            query = query.where(usage_events.c.occurred_at <= as_utc(end_time))

        rows = session.execute(
            query.order_by(usage_events.c.occurred_at, usage_events.c.id)
        ).all()
        return [_row_to_event(row) for row in rows]


def count_events_since(session: Session, user_id: str, event_type: str, since: datetime) -> int:
    """Count events of one type with occurred_at >= since."""
    return session.execute(
        select(func.count())
        .select_from(usage_events)
        .where(usage_events.c.user_id == user_id)
        .where(usage_events.c.event_type == event_type)
        .where(usage_events.c.occurred_at >= as_utc(since))
    ).scalar_one()


def load_current_period(
    session: Session,
    user_id: str,
    now: datetime,
    *,
    for_update: bool = False,
) -> Optional[UsagePeriod]:
    """The usage period whose [period_start, period_end] contains now."""
    now = as_utc(now)
    query = (
        select(usage_periods)
        .where(usage_periods.c.user_id == user_id)
        .where(and_(usage_periods.c.period_start <= now, usage_periods.c.period_end >= now))
    )
    if for_update:
        query = query.with_for_update()
    row = session.execute(query).first()
    return _row_to_period(row) if row else None


def insert_period(
    session: Session,
    user_id: str,
    period_start: datetime,
    period_end: datetime,
    now: datetime,
) -> int:
    """Insert a zeroed period row. Raises IntegrityError if the month already exists."""
    values = {column: 0 for column in USAGE_PERIOD_COLUMNS.values()}
    result = session.execute(
        insert(usage_periods).values(
            user_id=user_id,
            period_start=period_start,
            period_end=period_end,
            created_at=now,
            updated_at=now,
            **values,
        )
    )
    return result.inserted_primary_key[0]


def increment_period_counter(
    session: Session,
    period_id: int,
    feature: Feature,
    now: datetime,
    *,
    limit: Optional[int] = None,
) -> bool:
    """
    Add one use to a period counter as a single conditional statement.

    With a limit the row only matches while the counter is below it, so two
    racing commits cannot both take the last unit.

    Returns:
        True if the counter was incremented
    """
    column = usage_periods.c[USAGE_PERIOD_COLUMNS[feature]]
    stmt = (
        update(usage_periods)
        .where(usage_periods.c.id == period_id)
        .values({column: column + 1, usage_periods.c.updated_at: now})
    )
    if limit is not None:
        stmt = stmt.where(column < limit)
    result = session.execute(stmt)
    return result.rowcount == 1


def count_periods_ending_before(session: Session, cutoff: datetime) -> int:
    return session.execute(
        select(func.count())
        .select_from(usage_periods)
        .where(usage_periods.c.period_end < as_utc(cutoff))
    ).scalar_one()
