"""
Service maintaining the persisted round index from player sessions.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roundtracker.models import PlayerSession, RoundRecord
from roundtracker.schemas import PlayerSessionRecord, RoundWithPlayers
from roundtracker.services.round_detection import RoundDetector
from roundtracker.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class RoundBackfillService:
    """Rebuilds rounds with the gap strategy and upserts them into the round index."""

    # Widen the read window so rounds straddling its edges are not cut
    GUARD_BAND = timedelta(seconds=600)

    ROUND_BATCH_SIZE = 200

    @staticmethod
    def intersects(round_: RoundWithPlayers, start: Optional[datetime], end: Optional[datetime]) -> bool:
        """Check whether a round overlaps the [start, end] window (open ends allowed)."""
        return (start is None or round_.end_time >= start) and (end is None or round_.start_time <= end)

    @staticmethod
    def complete_partitions(
        store: SessionStore, sessions: Sequence[PlayerSessionRecord]
    ) -> List[PlayerSessionRecord]:
        """
        Reload every (server, map) partition touched by a windowed read in full.

        A window read keeps only sessions still seen inside the window, which
        can drop short sessions that chain a long round together. Each
        partition is widened backwards and forwards while another session
        starts within IDLE_THRESHOLD of the current edge, then every session
        starting inside the widened range is read.
        """
        edges: Dict[Tuple[str, str], Tuple[datetime, datetime]] = {}
        for session in sessions:
            key = (session.server_guid, session.map_name)
            if key in edges:
                first, last = edges[key]
                edges[key] = (min(first, session.start_time), max(last, session.start_time))
            else:
                edges[key] = (session.start_time, session.start_time)

        threshold = RoundDetector.IDLE_THRESHOLD
        completed: List[PlayerSessionRecord] = []
        for (server_guid, map_name), (first, last) in edges.items():
            while True:
                earlier = store.earliest_start_between(server_guid, map_name, first - threshold, first)
                if earlier is None:
                    break
                first = earlier

            while True:
                later = store.latest_start_between(server_guid, map_name, last, last + threshold)
                if later is None:
                    break
                last = later

            completed.extend(store.read_sessions(
                server_guid=server_guid,
                map_name=map_name,
                started_from=first,
                overlaps_to=last,
            ))

        return completed

    @staticmethod
    def upsert_round(db: Session, round_: RoundWithPlayers) -> RoundRecord:
        """Create or update the index row of a round and tag its sessions."""
        record = db.get(RoundRecord, round_.round_id)
        if record is None:
            record = RoundRecord(round_id=round_.round_id)
            db.add(record)

        record.server_guid = round_.server_guid
        record.server_name = round_.server_name
        record.map_name = round_.map_name
        record.game_type = round_.game_type or ""
        record.start_time = round_.start_time
        # Active rounds have no fixed end yet
        record.end_time = None if round_.is_active else round_.end_time
        record.is_active = round_.is_active
        record.duration_minutes = round_.duration_minutes
        record.participant_count = round_.participant_count
        record.total_sessions = round_.total_sessions
        record.team1_label = round_.team1_label
        record.team2_label = round_.team2_label
        record.updated_at = datetime.utcnow()

        # The round row must exist before sessions reference it
        db.flush()

        session_ids = [p.session_id for p in round_.players]
        db.query(PlayerSession).filter(PlayerSession.session_id.in_(session_ids)).update(
            {PlayerSession.round_id: round_.round_id},
            synchronize_session=False,
        )

        return record

    @staticmethod
    def backfill_rounds(
        db: Session,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        server_guid: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Regroup sessions overlapping a window and upsert the resulting rounds.

        Args:
            db: Database session
            start_time: Window start (None = unbounded)
            end_time: Window end (None = unbounded)
            server_guid: Limit to one server
            now: Evaluation time for active rounds

        Returns:
            Number of rounds created or updated

        Raises:
            RoundDataAccessError: If reading sessions fails
            SQLAlchemyError: If writing a batch fails (the batch is rolled back)
        """
        if now is None:
            now = datetime.utcnow()

        logger.info(f"Backfilling rounds: start={start_time}, end={end_time}, server={server_guid or 'ALL'}")

        store = SessionStore(db)
        sessions = store.read_sessions(
            server_guid=server_guid,
            overlaps_from=start_time - RoundBackfillService.GUARD_BAND if start_time else None,
            overlaps_to=end_time + RoundBackfillService.GUARD_BAND if end_time else None,
        )
        if start_time is not None or end_time is not None:
            sessions = RoundBackfillService.complete_partitions(store, sessions)

        rounds: List[RoundWithPlayers] = []
        for key, members in RoundDetector.group_by_gap(sessions):
            round_ = RoundDetector.materialize(key, members, now)
            if RoundBackfillService.intersects(round_, start_time, end_time):
                rounds.append(round_)

        logger.info(f"Backfill: collected {len(rounds)} rounds from {len(sessions)} sessions")

        batch_size = RoundBackfillService.ROUND_BATCH_SIZE
        total_batches = (len(rounds) + batch_size - 1) // batch_size
        for offset in range(0, len(rounds), batch_size):
            batch = rounds[offset:offset + batch_size]
            batch_number = offset // batch_size + 1

            try:
                for round_ in batch:
                    RoundBackfillService.upsert_round(db, round_)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Backfill: batch {batch_number}/{total_batches} failed, rolled back: {e}")
                raise

            logger.info(f"Backfill: committed batch {batch_number}/{total_batches} ({len(batch)} rounds)")

        return len(rounds)
