"""
Persistence for the week aggregate.

A week is read and written as a single row. Writes go through
transactional_update, which re-reads the row, applies a mutation, and
writes it back with a compare-and-swap on revision. A lost race rolls the
whole transaction back and retries from a fresh read.
"""

import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.database.models import BoxWeekRecord
from boxleague.models.box_league import BoxWeek
from boxleague.services.exceptions import WeekNotFoundError, WeekConflictError
from boxleague.utils.constants import MAX_TRANSACTION_RETRIES
from boxleague.utils.datetime_utils import utcnow, ensure_utc

logger = logging.getLogger(__name__)

Mutation = Callable[[BoxWeek], Union[Optional[BoxWeek], Awaitable[Optional[BoxWeek]]]]
WriteHook = Callable[[AsyncSession, BoxWeek, BoxWeek], Awaitable[None]]


# ============================================================================
# Row <-> aggregate
# ============================================================================


def record_to_week(record: BoxWeekRecord) -> BoxWeek:
    return BoxWeek(
        id=record.id,
        league_id=record.league_id,
        season_id=record.season_id,
        week_number=record.week_number,
        state=record.state,
        scheduled_date=record.scheduled_date,
        box_assignments=record.box_assignments or [],
        absences=record.absences or [],
        court_assignments=record.court_assignments or [],
        rules_snapshot=record.rules_snapshot or {},
        attendance=record.attendance or {},
        attendance_locked=record.attendance_locked,
        frozen_boxes=record.frozen_boxes or [],
        rotation_version=record.rotation_version,
        revision=record.revision,
        updated_at=ensure_utc(record.updated_at),
        standings_snapshot=record.standings_snapshot,
        movements=record.movements or [],
        stats_applied=record.stats_applied,
    )


def week_to_values(week: BoxWeek) -> dict:
    """Column values for a week, JSON payloads already serialized."""
    data = week.model_dump(mode="json")
    return {
        "league_id": week.league_id,
        "season_id": week.season_id,
        "week_number": week.week_number,
        "state": week.state.value,
        "scheduled_date": week.scheduled_date,
        "box_assignments": data["box_assignments"],
        "absences": data["absences"],
        "court_assignments": data["court_assignments"],
        "rules_snapshot": data["rules_snapshot"],
        "attendance": data["attendance"],
        "attendance_locked": week.attendance_locked,
        "frozen_boxes": data["frozen_boxes"],
        "rotation_version": week.rotation_version,
        "standings_snapshot": data["standings_snapshot"],
        "movements": data["movements"],
        "stats_applied": week.stats_applied,
    }


# ============================================================================
# Reads
# ============================================================================


async def get(session: AsyncSession, season_id: int, week_number: int) -> Tuple[Optional[BoxWeek], bool]:
    """
    Read a week fresh from the database.

    Returns:
        (week, exists). week is None when exists is False.
    """
    result = await session.execute(
        select(BoxWeekRecord)
        .where(
            BoxWeekRecord.season_id == season_id,
            BoxWeekRecord.week_number == week_number,
        )
        .execution_options(populate_existing=True)
    )
    record = result.scalar_one_or_none()
    if record is None:
        return None, False
    return record_to_week(record), True


async def get_or_raise(session: AsyncSession, season_id: int, week_number: int) -> BoxWeek:
    week, exists = await get(session, season_id, week_number)
    if not exists:
        raise WeekNotFoundError(f"Week {week_number} not found for season {season_id}")
    return week


async def list_for_season(session: AsyncSession, season_id: int) -> List[BoxWeek]:
    result = await session.execute(
        select(BoxWeekRecord)
        .where(BoxWeekRecord.season_id == season_id)
        .order_by(BoxWeekRecord.week_number)
        .execution_options(populate_existing=True)
    )
    return [record_to_week(r) for r in result.scalars().all()]


# ============================================================================
# Writes
# ============================================================================


async def insert(session: AsyncSession, week: BoxWeek) -> BoxWeek:
    """
    Insert a new week row at revision 0 and commit.

    Callers check for an existing week first; the unique constraint on
    (season_id, week_number) is the backstop.
    """
    now = utcnow()
    record = BoxWeekRecord(**week_to_values(week), revision=0, updated_at=now)
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record_to_week(record)


async def transactional_update(
    session: AsyncSession,
    season_id: int,
    week_number: int,
    mutate: Mutation,
    on_write: Optional[WriteHook] = None,
    max_retries: int = MAX_TRANSACTION_RETRIES,
) -> BoxWeek:
    """
    Atomically read-modify-write one week.

    Args:
        session: Database session. Must not hold unrelated pending changes;
            the transaction is committed or rolled back here.
        season_id: Season of the week
        week_number: Week to update
        mutate: Receives a private copy of the current week and returns the
            next week (sync or async). Returning None means "nothing to do"
            and nothing is written. Exceptions abort without writing.
        on_write: Optional async hook run inside the same transaction just
            before the row is written, e.g. to insert matches or stats rows.
            Its writes are rolled back if the compare-and-swap loses.
        max_retries: Attempts before giving up with WeekConflictError

    Returns:
        The week as written (revision already incremented)
    """
    for attempt in range(1, max_retries + 1):
        try:
            current = await get_or_raise(session, season_id, week_number)

            next_week = mutate(current.model_copy(deep=True))
            if inspect.isawaitable(next_week):
                next_week = await next_week

            if next_week is None:
                await session.commit()
                return current

            if on_write is not None:
                await on_write(session, current, next_week)

            now = utcnow()
            values = week_to_values(next_week)
            values["revision"] = current.revision + 1
            values["updated_at"] = now

            result = await session.execute(
                update(BoxWeekRecord)
                .where(
                    BoxWeekRecord.id == current.id,
                    BoxWeekRecord.revision == current.revision,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                await session.commit()
                return next_week.model_copy(
                    update={"id": current.id, "revision": current.revision + 1, "updated_at": now}
                )

            await session.rollback()
            logger.warning(
                f"Week {week_number} of season {season_id} changed under us "
                f"(revision {current.revision}), retrying ({attempt}/{max_retries})"
            )
        except Exception:
            await session.rollback()
            raise

    raise WeekConflictError(season_id, week_number, max_retries)
