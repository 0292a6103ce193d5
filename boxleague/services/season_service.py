"""
Season setup and lifecycle: setup -> active -> completed (or cancelled).

A season holds the rules template copied into each week and the week
schedule. Activating a season packs the roster into week 1.
"""

import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.database.models import Season, SeasonState, ScheduledWeekStatus
from boxleague.models.box_league import WeekRulesSnapshot, WeekState
from boxleague.services import league_service, promotion_service, season_stats_service, week_service
from boxleague.services.exceptions import (
    InvalidTransitionError,
    SeasonNotFoundError,
    SeasonValidationError,
)
from boxleague.utils.datetime_utils import ensure_utc

logger = logging.getLogger(__name__)

DateLike = Union[date, str]


def _to_date(value: DateLike) -> date:
    if isinstance(value, str):
        return datetime.fromisoformat(value).date()
    return value


def season_to_dict(season: Season) -> Dict:
    return {
        "id": season.id,
        "league_id": season.league_id,
        "name": season.name,
        "start_date": season.start_date.isoformat() if season.start_date else None,
        "end_date": season.end_date.isoformat() if season.end_date else None,
        "total_weeks": season.total_weeks,
        "state": season.state,
        "rules": season.rules,
        "week_schedule": season.week_schedule,
        "court_labels": season.court_labels,
        "created_at": ensure_utc(season.created_at).isoformat() if season.created_at else None,
    }


async def get_season(session: AsyncSession, season_id: int) -> Season:
    season = await session.get(Season, season_id, populate_existing=True)
    if season is None:
        raise SeasonNotFoundError(f"Season {season_id} not found")
    return season


async def list_seasons(session: AsyncSession, league_id: int) -> List[Dict]:
    result = await session.execute(
        select(Season).where(Season.league_id == league_id).order_by(Season.start_date.desc())
    )
    return [season_to_dict(s) for s in result.scalars().all()]


async def create_season(
    session: AsyncSession,
    league_id: int,
    name: Optional[str],
    start_date: DateLike,
    end_date: DateLike,
    total_weeks: int,
    week_dates: List[DateLike],
    rules: Optional[Dict] = None,
    court_labels: Optional[List[str]] = None,
) -> Dict:
    """
    Create a season in setup.

    Raises:
        SeasonValidationError: Bad dates, week count mismatch or invalid rules
    """
    await league_service.get_league(session, league_id)

    start = _to_date(start_date)
    end = _to_date(end_date)
    if start >= end:
        raise SeasonValidationError("Season start date must be before its end date")
    if total_weeks < 1:
        raise SeasonValidationError("A season needs at least one week")
    if len(week_dates) != total_weeks:
        raise SeasonValidationError(
            f"Expected {total_weeks} week dates, got {len(week_dates)}"
        )

    try:
        snapshot = WeekRulesSnapshot.model_validate(rules or {})
    except ValidationError as e:
        raise SeasonValidationError(f"Invalid season rules: {e}")

    schedule = [
        {
            "week_number": i + 1,
            "scheduled_date": _to_date(d).isoformat(),
            "status": ScheduledWeekStatus.SCHEDULED.value,
            "rescheduled_to": None,
        }
        for i, d in enumerate(week_dates)
    ]

    season = Season(
        league_id=league_id,
        name=name,
        start_date=start,
        end_date=end,
        total_weeks=total_weeks,
        state=SeasonState.SETUP.value,
        rules=snapshot.model_dump(mode="json"),
        week_schedule=schedule,
        court_labels=list(court_labels) if court_labels else None,
    )
    session.add(season)
    await session.commit()
    await session.refresh(season)
    logger.info(f"Created season {season.id} for league {league_id} with {total_weeks} weeks")
    return season_to_dict(season)


async def activate_season(session: AsyncSession, season_id: int) -> Dict:
    """
    Start a season: pack the roster into week 1 and open its draft.

    Only one season per league can be active at a time.
    """
    season = await get_season(session, season_id)
    if season.state != SeasonState.SETUP.value:
        raise InvalidTransitionError(f"Season {season_id} is {season.state}, only setup seasons can be activated")

    result = await session.execute(
        select(Season.id).where(
            Season.league_id == season.league_id,
            Season.state == SeasonState.ACTIVE.value,
            Season.id != season_id,
        )
    )
    if result.first() is not None:
        raise SeasonValidationError(f"League {season.league_id} already has an active season")

    assignments = await league_service.build_assignments_from_roster(session, season.league_id)

    season.state = SeasonState.ACTIVE.value
    await league_service.reset_subs_used(session, season.league_id)
    for box in assignments:
        for player_id in box.player_ids:
            if await season_stats_service.get_player_stats(session, season_id, player_id) is None:
                await season_stats_service.initialize_player_stats(
                    session, season_id, player_id, box.box_number
                )
    await session.commit()

    week = await week_service.create_week_draft(session, season_id, 1, assignments)
    logger.info(f"Activated season {season_id} with {len(assignments)} boxes")
    season = await get_season(session, season_id)
    return {"season": season_to_dict(season), "week": week}


def _unfinished_weeks(season: Season) -> List[int]:
    done = {ScheduledWeekStatus.COMPLETED.value, ScheduledWeekStatus.CANCELLED.value}
    return [
        entry["week_number"]
        for entry in season.week_schedule or []
        if entry.get("status") not in done
    ]


async def complete_season(session: AsyncSession, season_id: int) -> Dict:
    """Close an active season once every week is completed or cancelled."""
    season = await get_season(session, season_id)
    if season.state != SeasonState.ACTIVE.value:
        raise InvalidTransitionError(f"Season {season_id} is {season.state}, only active seasons can be completed")

    pending = _unfinished_weeks(season)
    if pending:
        raise SeasonValidationError(
            f"Weeks not yet completed or cancelled: {', '.join(str(n) for n in pending)}"
        )

    # Positions in the lineup the last finalized week produced, so promoted
    # players rank below the players they joined
    last_positions = {}
    finalized = [w for w in await week_service.list_weeks(session, season_id) if w.state == WeekState.FINALIZED]
    if finalized and finalized[-1].standings_snapshot is not None:
        last = finalized[-1]
        lineup = promotion_service.generate_next_week_assignments(last.standings_snapshot.boxes, last.movements)
        for box in lineup:
            for index, player_id in enumerate(box.player_ids):
                last_positions[player_id] = index + 1

    standings = await season_stats_service.calculate_final_standings(session, season_id, last_positions)
    season.state = SeasonState.COMPLETED.value
    await session.commit()
    logger.info(f"Completed season {season_id}")
    return {"season": season_to_dict(season), "final_standings": standings}


async def cancel_season(session: AsyncSession, season_id: int) -> Dict:
    season = await get_season(session, season_id)
    if season.state in (SeasonState.COMPLETED.value, SeasonState.CANCELLED.value):
        raise InvalidTransitionError(f"Season {season_id} is already {season.state}")
    season.state = SeasonState.CANCELLED.value
    await session.commit()
    logger.info(f"Cancelled season {season_id}")
    return season_to_dict(season)


def _update_schedule_entry(season: Season, week_number: int, **changes) -> None:
    schedule = [dict(entry) for entry in season.week_schedule or []]
    for entry in schedule:
        if entry.get("week_number") == week_number:
            if entry.get("status") in (ScheduledWeekStatus.COMPLETED.value, ScheduledWeekStatus.ACTIVE.value):
                raise InvalidTransitionError(
                    f"Week {week_number} is {entry['status']} and cannot be rescheduled or cancelled"
                )
            entry.update(changes)
            season.week_schedule = schedule
            return
    raise SeasonValidationError(f"Week {week_number} is not in the season schedule")


async def reschedule_week(session: AsyncSession, season_id: int, week_number: int, new_date: DateLike) -> Dict:
    """Postpone a scheduled week to a new date."""
    season = await get_season(session, season_id)
    _update_schedule_entry(
        season,
        week_number,
        status=ScheduledWeekStatus.POSTPONED.value,
        rescheduled_to=_to_date(new_date).isoformat(),
    )
    await session.commit()
    logger.info(f"Week {week_number} of season {season_id} rescheduled to {new_date}")
    return season_to_dict(season)


async def cancel_scheduled_week(session: AsyncSession, season_id: int, week_number: int) -> Dict:
    season = await get_season(session, season_id)
    _update_schedule_entry(season, week_number, status=ScheduledWeekStatus.CANCELLED.value)
    await session.commit()
    logger.info(f"Week {week_number} of season {season_id} cancelled")
    return season_to_dict(season)


async def get_season_progress(session: AsyncSession, season_id: int) -> Dict:
    season = await get_season(session, season_id)
    schedule = season.week_schedule or []
    counts = {}
    for entry in schedule:
        counts[entry.get("status")] = counts.get(entry.get("status"), 0) + 1

    completed = counts.get(ScheduledWeekStatus.COMPLETED.value, 0)
    cancelled = counts.get(ScheduledWeekStatus.CANCELLED.value, 0)
    playable = season.total_weeks - cancelled
    current = await week_service.get_current_week(session, season_id)
    return {
        "season_id": season.id,
        "state": season.state,
        "total_weeks": season.total_weeks,
        "completed_weeks": completed,
        "cancelled_weeks": cancelled,
        "postponed_weeks": counts.get(ScheduledWeekStatus.POSTPONED.value, 0),
        "current_week": current.week_number if current else None,
        "percent_complete": round(completed / playable * 100) if playable > 0 else 100,
    }
