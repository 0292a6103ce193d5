"""
League and roster operations.

The roster is the ordered input to box packing: active members sorted by
rating, highest first, so box 1 gets the strongest players.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.database.models import League, LeagueMember, MemberStatus, MemberRole
from boxleague.models.box_league import BoxAssignment, SubstituteCandidate
from boxleague.services.box_packing import (
    pack_players_into_boxes,
    distribute_players_to_boxes,
    suggest_player_adjustment,
)
from boxleague.services.exceptions import (
    LeagueNotFoundError,
    MemberNotFoundError,
    SeasonValidationError,
)

logger = logging.getLogger(__name__)


def _league_to_dict(league: League) -> Dict:
    return {
        "id": league.id,
        "name": league.name,
        "description": league.description,
        "created_at": league.created_at.isoformat() if league.created_at else None,
    }


def member_to_dict(member: LeagueMember) -> Dict:
    return {
        "id": member.id,
        "league_id": member.league_id,
        "player_id": member.player_id,
        "display_name": member.display_name,
        "rating": member.rating,
        "status": member.status,
        "role": member.role,
        "external_rating_id": member.external_rating_id,
        "rating_consent": member.rating_consent,
        "subs_used_this_season": member.subs_used_this_season,
    }


async def create_league(session: AsyncSession, name: str, description: Optional[str] = None) -> Dict:
    """Create a new league."""
    league = League(name=name, description=description)
    session.add(league)
    await session.commit()
    await session.refresh(league)
    logger.info(f"Created league {league.id} ({name})")
    return _league_to_dict(league)


async def get_league(session: AsyncSession, league_id: int) -> League:
    league = await session.get(League, league_id)
    if league is None:
        raise LeagueNotFoundError(f"League {league_id} not found")
    return league


async def add_member(
    session: AsyncSession,
    league_id: int,
    player_id: str,
    display_name: str,
    rating: Optional[float] = None,
    role: str = MemberRole.MEMBER.value,
    external_rating_id: Optional[str] = None,
    rating_consent: bool = False,
) -> Dict:
    """
    Add a player to a league roster.

    Re-adding a withdrawn member reactivates them with the new details.
    """
    await get_league(session, league_id)

    member = await get_member(session, league_id, player_id)
    if member is None:
        member = LeagueMember(league_id=league_id, player_id=player_id)
        session.add(member)
    member.display_name = display_name
    member.rating = rating
    member.role = role
    member.status = MemberStatus.ACTIVE.value
    member.external_rating_id = external_rating_id
    member.rating_consent = rating_consent

    await session.commit()
    await session.refresh(member)
    return member_to_dict(member)


async def get_member(session: AsyncSession, league_id: int, player_id: str) -> Optional[LeagueMember]:
    result = await session.execute(
        select(LeagueMember).where(
            LeagueMember.league_id == league_id,
            LeagueMember.player_id == player_id,
        )
    )
    return result.scalar_one_or_none()


async def update_member_status(session: AsyncSession, league_id: int, player_id: str, status: str) -> Dict:
    """Set a member's status (active, withdrawn, suspended)."""
    valid = {s.value for s in MemberStatus}
    if status not in valid:
        raise ValueError(f"Invalid member status '{status}'. Must be one of: {', '.join(sorted(valid))}")

    member = await get_member(session, league_id, player_id)
    if member is None:
        raise MemberNotFoundError(f"Player {player_id} is not a member of league {league_id}")
    member.status = status
    await session.commit()
    await session.refresh(member)
    return member_to_dict(member)


async def list_members(session: AsyncSession, league_id: int) -> List[LeagueMember]:
    result = await session.execute(
        select(LeagueMember).where(LeagueMember.league_id == league_id).order_by(LeagueMember.id)
    )
    return list(result.scalars().all())


async def get_roster(session: AsyncSession, league_id: int) -> List[Dict]:
    """
    Active members sorted by rating (highest first).

    Unrated members sort after rated ones; ties keep join order.
    """
    members = [m for m in await list_members(session, league_id) if m.status == MemberStatus.ACTIVE.value]
    members.sort(key=lambda m: (m.rating is None, -(m.rating or 0.0)))
    return [
        {"player_id": m.player_id, "display_name": m.display_name, "rating": m.rating}
        for m in members
    ]


async def build_assignments_from_roster(session: AsyncSession, league_id: int) -> List[BoxAssignment]:
    """
    Pack the current roster into boxes.

    Raises:
        SeasonValidationError: If the roster size cannot be packed
    """
    roster = await get_roster(session, league_id)
    packing = pack_players_into_boxes(len(roster))
    if not packing.success:
        message = packing.error
        adjustment = suggest_player_adjustment(len(roster))
        if adjustment is not None:
            message = f"{message} {adjustment.message}"
        raise SeasonValidationError(message)

    distributions = distribute_players_to_boxes([r["player_id"] for r in roster], packing)
    logger.info(f"Packed {len(roster)} players into boxes {packing.box_sizes} for league {league_id}")
    return [BoxAssignment(box_number=d.box_number, player_ids=d.player_ids) for d in distributions]


async def get_substitute_candidate(
    session: AsyncSession, league_id: int, player_id: str, box_number: Optional[int] = None
) -> SubstituteCandidate:
    """Eligibility data for a potential substitute (members and non-members)."""
    member = await get_member(session, league_id, player_id)
    if member is None:
        return SubstituteCandidate(player_id=player_id, is_member=False, box_number=box_number)
    return SubstituteCandidate(
        player_id=player_id,
        is_member=member.status == MemberStatus.ACTIVE.value,
        box_number=box_number,
        rating=member.rating,
        external_rating_id=member.external_rating_id,
        rating_consent=member.rating_consent,
    )


async def increment_subs_used(session: AsyncSession, league_id: int, player_id: str) -> None:
    """Bump a member's season substitute counter. Commits on its own."""
    await session.execute(
        update(LeagueMember)
        .where(LeagueMember.league_id == league_id, LeagueMember.player_id == player_id)
        .values(subs_used_this_season=LeagueMember.subs_used_this_season + 1)
    )
    await session.commit()


async def reset_subs_used(session: AsyncSession, league_id: int) -> None:
    """Zero every member's substitute counter (new season)."""
    await session.execute(
        update(LeagueMember)
        .where(LeagueMember.league_id == league_id)
        .values(subs_used_this_season=0)
    )
