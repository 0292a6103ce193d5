"""Season lifecycle and season stats route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.api.routes import service_error
from boxleague.database.db import get_db_session
from boxleague.models.schemas import CreateSeasonRequest, RescheduleWeekRequest
from boxleague.services import season_service, season_stats_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/leagues/{league_id}/seasons")
async def create_season(
    league_id: int,
    payload: CreateSeasonRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Create a season in setup.
    Body: {
        name?: str,
        start_date: ISO,
        end_date: ISO,
        total_weeks: int,
        week_dates: [ISO, ...] (one per week),
        rules?: {points_to, win_by, promotion_count, absence_policy, ...},
        court_labels?: [str, ...]
    }
    """
    try:
        return await season_service.create_season(
            session,
            league_id,
            payload.name,
            payload.start_date,
            payload.end_date,
            payload.total_weeks,
            payload.week_dates,
            rules=payload.rules,
            court_labels=payload.court_labels,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "creating season")


@router.get("/api/leagues/{league_id}/seasons")
async def list_seasons(league_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await season_service.list_seasons(session, league_id)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "listing seasons")


@router.get("/api/seasons/{season_id}")
async def get_season(season_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        season = await season_service.get_season(session, season_id)
        return season_service.season_to_dict(season)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting season")


@router.post("/api/seasons/{season_id}/activate")
async def activate_season(season_id: int, session: AsyncSession = Depends(get_db_session)):
    """Pack the roster into week 1 and start the season."""
    try:
        return await season_service.activate_season(session, season_id)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "activating season")


@router.post("/api/seasons/{season_id}/complete")
async def complete_season(season_id: int, session: AsyncSession = Depends(get_db_session)):
    """Close the season and write final standings."""
    try:
        return await season_service.complete_season(session, season_id)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "completing season")


@router.post("/api/seasons/{season_id}/cancel")
async def cancel_season(season_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await season_service.cancel_season(session, season_id)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "cancelling season")


@router.get("/api/seasons/{season_id}/progress")
async def get_season_progress(season_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await season_service.get_season_progress(session, season_id)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting season progress")


@router.post("/api/seasons/{season_id}/schedule/{week_number}/reschedule")
async def reschedule_week(
    season_id: int,
    week_number: int,
    payload: RescheduleWeekRequest,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await season_service.reschedule_week(session, season_id, week_number, payload.new_date)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "rescheduling week")


@router.post("/api/seasons/{season_id}/schedule/{week_number}/cancel")
async def cancel_scheduled_week(
    season_id: int, week_number: int, session: AsyncSession = Depends(get_db_session)
):
    try:
        return await season_service.cancel_scheduled_week(session, season_id, week_number)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "cancelling scheduled week")


# ---------------------------------------------------------------------------
# Stats endpoints
# ---------------------------------------------------------------------------


@router.get("/api/seasons/{season_id}/leaderboard")
async def get_leaderboard(
    season_id: int,
    limit: Optional[int] = None,
    session: AsyncSession = Depends(get_db_session),
):
    """Players ranked by current box, then win percentage."""
    try:
        await season_service.get_season(session, season_id)
        return await season_stats_service.get_season_leaderboard(session, season_id, limit)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting leaderboard")


@router.get("/api/seasons/{season_id}/top-performers")
async def get_top_performers(season_id: int, limit: int = 5, session: AsyncSession = Depends(get_db_session)):
    try:
        await season_service.get_season(session, season_id)
        return await season_stats_service.get_top_performers(session, season_id, limit)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting top performers")


@router.get("/api/seasons/{season_id}/most-improved")
async def get_most_improved(season_id: int, limit: int = 5, session: AsyncSession = Depends(get_db_session)):
    try:
        await season_service.get_season(session, season_id)
        return await season_stats_service.get_most_improved(session, season_id, limit)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting most improved players")
