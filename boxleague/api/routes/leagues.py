"""League, roster and box packing route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.api.routes import service_error
from boxleague.database.db import get_db_session
from boxleague.models.schemas import (
    AddMemberRequest,
    CreateLeagueRequest,
    UpdateMemberStatusRequest,
)
from boxleague.services import box_packing, league_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/leagues")
async def create_league(payload: CreateLeagueRequest, session: AsyncSession = Depends(get_db_session)):
    """Create a box league."""
    try:
        return await league_service.create_league(session, payload.name, payload.description)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "creating league")


@router.post("/api/leagues/{league_id}/members")
async def add_member(
    league_id: int,
    payload: AddMemberRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Add a player to the league roster (reactivates withdrawn members)."""
    try:
        return await league_service.add_member(
            session,
            league_id,
            payload.player_id,
            payload.display_name,
            rating=payload.rating,
            role=payload.role,
            external_rating_id=payload.external_rating_id,
            rating_consent=payload.rating_consent,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "adding member")


@router.get("/api/leagues/{league_id}/members")
async def list_members(league_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        await league_service.get_league(session, league_id)
        members = await league_service.list_members(session, league_id)
        return [league_service.member_to_dict(m) for m in members]
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "listing members")


@router.put("/api/leagues/{league_id}/members/{player_id}/status")
async def update_member_status(
    league_id: int,
    player_id: str,
    payload: UpdateMemberStatusRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Set a member to active, withdrawn or suspended."""
    try:
        return await league_service.update_member_status(session, league_id, player_id, payload.status)
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "updating member status")


@router.get("/api/leagues/{league_id}/roster")
async def get_roster(league_id: int, session: AsyncSession = Depends(get_db_session)):
    """
    Active roster in seeding order, with the box layout it would pack into.
    """
    try:
        await league_service.get_league(session, league_id)
        roster = await league_service.get_roster(session, league_id)
        packing = box_packing.pack_players_into_boxes(len(roster))
        adjustment = box_packing.suggest_player_adjustment(len(roster))
        return {
            "players": roster,
            "packing": packing.model_dump(),
            "display": box_packing.format_packing_for_display(packing) if packing.success else None,
            "adjustment": adjustment.model_dump() if adjustment else None,
        }
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "getting roster")


@router.get("/api/box-packing/{player_count}")
async def preview_box_packing(player_count: int):
    """Box sizes for a player count, or how to adjust the count if it cannot be packed."""
    try:
        packing = box_packing.pack_players_into_boxes(player_count)
        adjustment = box_packing.suggest_player_adjustment(player_count)
        return {
            "packing": packing.model_dump(),
            "display": box_packing.format_packing_for_display(packing) if packing.success else None,
            "adjustment": adjustment.model_dump() if adjustment else None,
        }
    except HTTPException:
        raise
    except Exception as e:
        raise service_error(e, "packing players")
