"""
Service exposing round listings and round reports.
"""
from datetime import datetime
from typing import Dict, List, Optional
import logging
import math

from sqlalchemy.orm import Session

from roundtracker.config import settings
from roundtracker.schemas import (
    DetectionStrategy,
    RoundFilters,
    RoundKey,
    RoundPage,
    RoundReport,
    RoundWithPlayers,
)
from roundtracker.services.exceptions import InvalidRoundQueryError
from roundtracker.services.replay_service import ReplayService
from roundtracker.services.round_detection import RoundDetector
from roundtracker.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class RoundService:
    """Service for listing reconstructed rounds and building round reports."""

    SORT_ASC = "asc"
    SORT_DESC = "desc"

    # Normalized sort name -> Round attribute
    SORT_FIELDS = {
        "roundid": "round_id",
        "servername": "server_name",
        "mapname": "map_name",
        "gametype": "game_type",
        "starttime": "start_time",
        "endtime": "end_time",
        "durationminutes": "duration_minutes",
        "participantcount": "participant_count",
        "totalsessions": "total_sessions",
        "isactive": "is_active",
    }

    @staticmethod
    def resolve_sort_field(sort_by: str) -> str:
        """
        Map a sort name to a Round attribute.

        Accepts snake_case ('start_time') and PascalCase ('StartTime') spellings.

        Raises:
            InvalidRoundQueryError: If the field is not sortable
        """
        normalized = (sort_by or "").replace("_", "").lower()
        field = RoundService.SORT_FIELDS.get(normalized)
        if field is None:
            raise InvalidRoundQueryError(
                f"Invalid sort field '{sort_by}'. Valid options: {', '.join(RoundService.SORT_FIELDS.values())}"
            )
        return field

    @staticmethod
    def validate_query(
        filters: RoundFilters,
        sort_by: str,
        sort_order: str,
        page: int,
        page_size: int,
    ) -> str:
        """
        Reject malformed listing requests before any data is read.

        Returns:
            The resolved sort attribute

        Raises:
            InvalidRoundQueryError: On bad sorting, paging or filter bounds
        """
        field = RoundService.resolve_sort_field(sort_by)

        if (sort_order or "").lower() not in (RoundService.SORT_ASC, RoundService.SORT_DESC):
            raise InvalidRoundQueryError("Sort order must be 'asc' or 'desc'")

        if page < 1:
            raise InvalidRoundQueryError("Page number must be at least 1")

        if page_size < 1 or page_size > settings.MAX_PAGE_SIZE:
            raise InvalidRoundQueryError(f"Page size must be between 1 and {settings.MAX_PAGE_SIZE}")

        for name, low, high in (
            ("duration", filters.min_duration, filters.max_duration),
            ("participants", filters.min_participants, filters.max_participants),
        ):
            if low is not None and low < 0:
                raise InvalidRoundQueryError(f"Minimum {name} cannot be negative")
            if high is not None and high < 0:
                raise InvalidRoundQueryError(f"Maximum {name} cannot be negative")
            if low is not None and high is not None and low > high:
                raise InvalidRoundQueryError(f"Minimum {name} cannot be greater than maximum {name}")

        if filters.start_time_from and filters.start_time_to and filters.start_time_from > filters.start_time_to:
            raise InvalidRoundQueryError("start_time_from cannot be greater than start_time_to")

        if filters.end_time_from and filters.end_time_to and filters.end_time_from > filters.end_time_to:
            raise InvalidRoundQueryError("end_time_from cannot be greater than end_time_to")

        return field

    @staticmethod
    def normalize_player_names(player_names: Optional[List[str]]) -> List[str]:
        """Trim names, drop blanks and duplicates, keep first-seen order."""
        names: List[str] = []
        for name in player_names or []:
            name = (name or "").strip()
            if name and name not in names:
                names.append(name)
        return names

    @staticmethod
    def matches_filters(
        round_: RoundWithPlayers,
        filters: RoundFilters,
        game_ids: Dict[str, str],
        player_names: List[str],
    ) -> bool:
        """Check an aggregated round against every filter."""
        if filters.server_name and filters.server_name.lower() not in round_.server_name.lower():
            return False
        if filters.server_guid and round_.server_guid != filters.server_guid:
            return False
        if filters.map_name and filters.map_name.lower() not in round_.map_name.lower():
            return False
        if filters.game_type and round_.game_type != filters.game_type:
            return False
        if filters.game_id and game_ids.get(round_.server_guid) != filters.game_id:
            return False
        if filters.start_time_from and round_.start_time < filters.start_time_from:
            return False
        if filters.start_time_to and round_.start_time > filters.start_time_to:
            return False
        if filters.end_time_from and round_.end_time < filters.end_time_from:
            return False
        if filters.end_time_to and round_.end_time > filters.end_time_to:
            return False
        if filters.min_duration is not None and round_.duration_minutes < filters.min_duration:
            return False
        if filters.max_duration is not None and round_.duration_minutes > filters.max_duration:
            return False
        if filters.min_participants is not None and round_.participant_count < filters.min_participants:
            return False
        if filters.max_participants is not None and round_.participant_count > filters.max_participants:
            return False
        if filters.is_active is not None and round_.is_active != filters.is_active:
            return False

        # All requested players must have played in the round
        if player_names:
            present = {p.player_name for p in round_.players}
            if not all(name in present for name in player_names):
                return False

        return True

    @staticmethod
    def list_rounds(
        db: Session,
        filters: Optional[RoundFilters] = None,
        sort_by: str = "start_time",
        sort_order: str = "desc",
        page: int = 1,
        page_size: Optional[int] = None,
        strategy: Optional[DetectionStrategy] = None,
        include_players: bool = True,
        only_specified_players: bool = False,
        now: Optional[datetime] = None,
    ) -> RoundPage:
        """
        List rounds reconstructed from player sessions.

        Grouping and aggregation run on the full session set of the requested
        server(s); filters only see finished aggregates.

        Args:
            db: Database session
            filters: Post-aggregation filters
            sort_by: Round attribute to sort by
            sort_order: 'asc' or 'desc'
            page: 1-based page number
            page_size: Items per page (defaults to settings.DEFAULT_PAGE_SIZE)
            strategy: Detection strategy (defaults to settings.ROUND_DETECTION_STRATEGY)
            include_players: Attach member sessions to each round
            only_specified_players: Restrict attached sessions to filters.player_names
            now: Evaluation time for active rounds

        Returns:
            RoundPage

        Raises:
            InvalidRoundQueryError: If the query is malformed (raised before any read)
            RoundDataAccessError: If reading sessions fails
        """
        filters = filters or RoundFilters()
        page_size = page_size if page_size is not None else settings.DEFAULT_PAGE_SIZE
        sort_field = RoundService.validate_query(filters, sort_by, sort_order, page, page_size)

        try:
            strategy = DetectionStrategy(strategy or settings.ROUND_DETECTION_STRATEGY)
        except ValueError:
            raise InvalidRoundQueryError(f"Invalid detection strategy: {strategy}")

        if now is None:
            now = datetime.utcnow()

        player_names = RoundService.normalize_player_names(filters.player_names)
        if player_names:
            logger.info(f"Filtering rounds by ALL player names: {', '.join(player_names)}")

        # The server is a partition key of both strategies, so it is safe to push down
        sessions = SessionStore(db).read_sessions(server_guid=filters.server_guid)
        game_ids = {s.server_guid: s.game_id for s in sessions}

        rounds = RoundDetector.detect_rounds(sessions, strategy, now)
        rounds = [r for r in rounds if RoundService.matches_filters(r, filters, game_ids, player_names)]

        # Stable sorts: round_id breaks ties of the requested field
        rounds.sort(key=lambda r: r.round_id)
        rounds.sort(
            key=lambda r: (getattr(r, sort_field) is not None, getattr(r, sort_field)),
            reverse=sort_order.lower() == RoundService.SORT_DESC,
        )

        total_items = len(rounds)
        offset = (page - 1) * page_size
        items = rounds[offset:offset + page_size]

        for round_ in items:
            if not include_players:
                round_.players = []
            elif only_specified_players and player_names:
                round_.players = [p for p in round_.players if p.player_name in player_names]

        logger.info(
            f"Listed rounds page {page} ({len(items)} of {total_items}), "
            f"sort={sort_field} {sort_order.lower()}, strategy={strategy.value}"
        )

        return RoundPage(
            items=items,
            page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=math.ceil(total_items / page_size),
        )

    @staticmethod
    def get_round_report(
        db: Session,
        server_guid: str,
        map_name: str,
        reference_time: datetime,
    ) -> Optional[RoundReport]:
        """
        Build the report of the round on server+map around reference_time.

        Returns:
            RoundReport, or None if no session matches the round

        Raises:
            RoundDataAccessError: If any read fails
        """
        return ReplayService.build_report(SessionStore(db), server_guid, map_name, reference_time)

    @staticmethod
    def find_round_key(store: SessionStore, round_id: str) -> Optional[RoundKey]:
        """
        Regroup all sessions with every strategy and return the key whose id matches.

        Covers ids of rounds the backfill has not indexed yet and ids of
        time-bucket listings, which the backfill never writes.
        """
        sessions = store.read_sessions()
        for strategy in DetectionStrategy:
            for key, _ in RoundDetector.group_sessions(sessions, strategy):
                if key.round_id == round_id:
                    return key
        return None

    @staticmethod
    def get_round_report_by_id(db: Session, round_id: str) -> Optional[RoundReport]:
        """
        Build the report of a round identified by a listed round id.

        The persisted round index is consulted first; ids missing from it are
        resolved by regrouping the sessions.

        Returns:
            RoundReport, or None if no round has this id or it has no sessions
        """
        store = SessionStore(db)
        record = store.get_round_record(round_id)
        if record is not None:
            return ReplayService.build_report(store, record.server_guid, record.map_name, record.start_time)

        logger.info(f"Round {round_id} not in round index, regrouping sessions")
        key = RoundService.find_round_key(store, round_id)
        if key is None:
            logger.info(f"Round {round_id} not found")
            return None

        return ReplayService.build_report(store, key.server_guid, key.map_name, key.start_time)
