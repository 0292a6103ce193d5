"""Week lifecycle, absences, standings and match result route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.api.routes import limiter, service_error
from boxleague.database.db import get_db_session
from boxleague.models.schemas import (
    AssignSubstituteRequest,
    AttendanceLockRequest,
    CancelAbsenceRequest,
    CheckInRequest,
    DeclareAbsenceRequest,
    FreezeBoxRequest,
    RecordMatchResultRequest,
    RecordNoShowRequest,
    UpdateBoxAssignmentsRequest,
    UpdateCourtAssignmentsRequest,
)
from boxleague.services import (
    absence_service,
    match_service,
    standings_service,
    week_service,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Weeks
# ---------------------------------------------------------------------------


@router.get("/api/seasons/{season_id}/weeks")
async def list_weeks(season_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await week_service.list_weeks(session, season_id)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "listing weeks")


@router.get("/api/seasons/{season_id}/weeks/current")
async def get_current_week(season_id: int, session: AsyncSession = Depends(get_db_session)):
    """The earliest week that is not finalized (or the last week once all are)."""
    try:
        week = await week_service.get_current_week(session, season_id)
        if week is None:
            raise HTTPException(status_code=404, detail="Season has no weeks yet")
        return week
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting current week")


@router.get("/api/seasons/{season_id}/weeks/{week_number}")
async def get_week(season_id: int, week_number: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await week_service.get_week(session, season_id, week_number)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting week")


@router.put("/api/seasons/{season_id}/weeks/{week_number}/boxes")
async def update_box_assignments(
    season_id: int,
    week_number: int,
    payload: UpdateBoxAssignmentsRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Replace the draft lineup. Box sizes are checked on activation."""
    try:
        return await week_service.update_box_assignments(
            session, season_id, week_number, payload.box_assignments
        )
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "updating box assignments")


@router.put("/api/seasons/{season_id}/weeks/{week_number}/courts")
async def update_court_assignments(
    season_id: int,
    week_number: int,
    payload: UpdateCourtAssignmentsRequest,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await week_service.update_court_assignments(
            session, season_id, week_number, payload.court_assignments
        )
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "updating court assignments")


@router.post("/api/seasons/{season_id}/weeks/{week_number}/boxes/{box_number}/freeze")
async def freeze_box_movement(
    season_id: int,
    week_number: int,
    box_number: int,
    payload: FreezeBoxRequest,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await week_service.freeze_box_movement(
            session, season_id, week_number, box_number, payload.frozen
        )
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "freezing box movement")


@router.post("/api/seasons/{season_id}/weeks/{week_number}/reset")
async def reset_to_draft(season_id: int, week_number: int, session: AsyncSession = Depends(get_db_session)):
    """Rebuild a draft week's boxes from the current roster."""
    try:
        return await week_service.reset_to_draft(session, season_id, week_number)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "resetting week")


@router.post("/api/seasons/{season_id}/weeks/{week_number}/activate")
async def activate_week(season_id: int, week_number: int, session: AsyncSession = Depends(get_db_session)):
    """
    Start play for a week and generate its matches.

    Fails with a 400 listing every box outside 4-6 players.
    """
    try:
        return await week_service.activate_week(session, season_id, week_number)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "activating week")


@router.post("/api/seasons/{season_id}/weeks/{week_number}/close")
async def start_closing_week(season_id: int, week_number: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await week_service.start_closing_week(session, season_id, week_number)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "closing week")


@router.post("/api/seasons/{season_id}/weeks/{week_number}/finalize")
async def finalize_week(season_id: int, week_number: int, session: AsyncSession = Depends(get_db_session)):
    """Compute standings and movements, update season stats and draft the next week."""
    try:
        return await week_service.finalize_week(session, season_id, week_number)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "finalizing week")


@router.get("/api/seasons/{season_id}/weeks/{week_number}/standings")
async def get_week_standings(season_id: int, week_number: int, session: AsyncSession = Depends(get_db_session)):
    try:
        week = await week_service.get_week(session, season_id, week_number)
        return await standings_service.get_week_standings(session, week)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting standings")


@router.get("/api/seasons/{season_id}/weeks/{week_number}/matches")
async def get_week_matches(
    season_id: int,
    week_number: int,
    box_number: Optional[int] = None,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await week_service.get_week(session, season_id, week_number)
        matches = await match_service.get_week_matches(session, season_id, week_number, box_number)
        return [match_service.match_to_dict(m) for m in matches]
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting matches")


# ---------------------------------------------------------------------------
# Absences and substitutes
# ---------------------------------------------------------------------------


@router.post("/api/seasons/{season_id}/weeks/{week_number}/absences")
async def declare_absence(
    season_id: int,
    week_number: int,
    payload: DeclareAbsenceRequest,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await absence_service.declare_absence(
            session,
            season_id,
            week_number,
            payload.player_id,
            declared_by=payload.declared_by,
            reason=payload.reason,
            policy=payload.policy,
            reason_text=payload.reason_text,
            player_name=payload.player_name,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "declaring absence")


@router.post("/api/seasons/{season_id}/weeks/{week_number}/no-shows")
async def record_no_show(
    season_id: int,
    week_number: int,
    payload: RecordNoShowRequest,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await absence_service.record_no_show(
            session,
            season_id,
            week_number,
            payload.player_id,
            marked_by=payload.marked_by,
            policy=payload.policy,
            reason_text=payload.reason_text,
            player_name=payload.player_name,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "recording no-show")


@router.get("/api/seasons/{season_id}/weeks/{week_number}/absences/summary")
async def get_absence_summary(season_id: int, week_number: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await absence_service.get_absence_summary(session, season_id, week_number)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting absence summary")


@router.delete("/api/seasons/{season_id}/weeks/{week_number}/absences/{player_id}")
async def cancel_absence(
    season_id: int,
    week_number: int,
    player_id: str,
    is_organizer: bool = False,
    session: AsyncSession = Depends(get_db_session),
):
    """Put an absent player back into their box."""
    try:
        return await absence_service.cancel_absence(
            session, season_id, week_number, player_id, is_organizer=is_organizer
        )
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "cancelling absence")


@router.get("/api/seasons/{season_id}/weeks/{week_number}/absences/{player_id}/substitutes")
async def find_eligible_substitutes(
    season_id: int, week_number: int, player_id: str, session: AsyncSession = Depends(get_db_session)
):
    try:
        return await absence_service.find_eligible_substitutes(session, season_id, week_number, player_id)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "finding substitutes")


@router.post("/api/seasons/{season_id}/weeks/{week_number}/absences/{player_id}/substitute")
async def assign_substitute(
    season_id: int,
    week_number: int,
    player_id: str,
    payload: AssignSubstituteRequest,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await absence_service.assign_substitute(
            session,
            season_id,
            week_number,
            player_id,
            payload.substitute_id,
            substitute_name=payload.substitute_name,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "assigning substitute")


@router.delete("/api/seasons/{season_id}/weeks/{week_number}/absences/{player_id}/substitute")
async def remove_substitute(
    season_id: int, week_number: int, player_id: str, session: AsyncSession = Depends(get_db_session)
):
    try:
        return await absence_service.remove_substitute(session, season_id, week_number, player_id)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "removing substitute")


# ---------------------------------------------------------------------------
# Attendance
# ---------------------------------------------------------------------------


@router.post("/api/seasons/{season_id}/weeks/{week_number}/check-ins")
@limiter.limit("30/minute")
async def check_in_player(
    request: Request,
    season_id: int,
    week_number: int,
    payload: CheckInRequest,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await absence_service.check_in_player(
            session, season_id, week_number, payload.player_id, by_organizer=payload.by_organizer
        )
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "checking in player")


@router.post("/api/seasons/{season_id}/weeks/{week_number}/excused/{player_id}")
async def mark_excused(
    season_id: int, week_number: int, player_id: str, session: AsyncSession = Depends(get_db_session)
):
    try:
        return await absence_service.mark_excused(session, season_id, week_number, player_id)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "marking player excused")


@router.put("/api/seasons/{season_id}/weeks/{week_number}/attendance-lock")
async def set_attendance_lock(
    season_id: int,
    week_number: int,
    payload: AttendanceLockRequest,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await absence_service.set_attendance_lock(session, season_id, week_number, payload.locked)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "updating attendance lock")


# ---------------------------------------------------------------------------
# Match results
# ---------------------------------------------------------------------------


@router.post("/api/matches/{match_id}/result")
@limiter.limit("30/minute")
async def record_match_result(
    request: Request,
    match_id: str,
    payload: RecordMatchResultRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Store final game scores for a box match."""
    try:
        return await match_service.record_match_result(session, match_id, payload.games, payload.status)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "recording match result")
