"""
Round endpoints - round listings and round replay reports.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from datetime import datetime
from typing import List, Optional
import logging

from roundtracker.database import get_db
from roundtracker.schemas import DetectionStrategy, RoundFilters, RoundPage, RoundReport
from roundtracker.services.exceptions import InvalidRoundQueryError, RoundDataAccessError
from roundtracker.services.round_service import RoundService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=RoundPage)
async def list_rounds(
    page: int = Query(1, description="1-based page number"),
    page_size: Optional[int] = Query(None, description="Items per page"),
    sort_by: str = Query("start_time", description="Round attribute to sort by"),
    sort_order: str = Query("desc", description="'asc' or 'desc'"),
    strategy: Optional[DetectionStrategy] = Query(None, description="Round detection strategy"),
    server_name: Optional[str] = None,
    server_guid: Optional[str] = None,
    map_name: Optional[str] = None,
    game_type: Optional[str] = None,
    game_id: Optional[str] = None,
    start_time_from: Optional[datetime] = None,
    start_time_to: Optional[datetime] = None,
    end_time_from: Optional[datetime] = None,
    end_time_to: Optional[datetime] = None,
    min_duration: Optional[int] = None,
    max_duration: Optional[int] = None,
    min_participants: Optional[int] = None,
    max_participants: Optional[int] = None,
    is_active: Optional[bool] = None,
    player_names: Optional[List[str]] = Query(None, description="Rounds must include ALL of these players"),
    include_players: bool = True,
    only_specified_players: bool = False,
    db: Session = Depends(get_db)
):
    """
    List rounds reconstructed from player sessions.

    - Filters apply to aggregated rounds, never to individual sessions
    - **player_names**: repeat the parameter to require several players
    - **only_specified_players**: attach only the requested players' sessions
    """
    filters = RoundFilters(
        server_name=server_name.strip() if server_name else None,
        server_guid=server_guid,
        map_name=map_name,
        game_type=game_type,
        game_id=game_id,
        start_time_from=start_time_from,
        start_time_to=start_time_to,
        end_time_from=end_time_from,
        end_time_to=end_time_to,
        min_duration=min_duration,
        max_duration=max_duration,
        min_participants=min_participants,
        max_participants=max_participants,
        is_active=is_active,
        player_names=player_names,
    )

    try:
        return RoundService.list_rounds(
            db,
            filters=filters,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            page_size=page_size,
            strategy=strategy,
            include_players=include_players,
            only_specified_players=only_specified_players,
        )

    except InvalidRoundQueryError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    except RoundDataAccessError as e:
        logger.error(f"Failed to list rounds: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal server error occurred while retrieving rounds"
        )


@router.get("/report", response_model=RoundReport)
async def get_round_report(
    server_guid: str = Query(..., description="Server of the round"),
    map_name: str = Query(..., description="Map of the round"),
    reference_time: datetime = Query(..., description="Round start or any time within the round"),
    db: Session = Depends(get_db)
):
    """
    Get a round report located by server, map and a time within the round.

    - Round span is refined from the neighboring map sessions on the server
    - Includes a minute-by-minute leaderboard replay
    """
    try:
        report = RoundService.get_round_report(db, server_guid, map_name, reference_time)

    except RoundDataAccessError as e:
        logger.error(f"Failed to build round report for {server_guid}/{map_name} at {reference_time}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error retrieving round report"
        )

    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Round on '{map_name}' at {reference_time.isoformat()} not found"
        )

    return report


@router.get("/{round_id}/report", response_model=RoundReport)
async def get_round_report_by_id(
    round_id: str,
    db: Session = Depends(get_db)
):
    """
    Get a round report by round id.

    - Round ids are resolved through the round index kept by the backfill task
    """
    if not round_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Round ID is required"
        )

    try:
        report = RoundService.get_round_report_by_id(db, round_id)

    except RoundDataAccessError as e:
        logger.error(f"Failed to build round report for round {round_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error retrieving round report"
        )

    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Round '{round_id}' not found"
        )

    return report
