"""
Read access to player sessions and observations written by the ingestion poller.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, List, Optional
import logging

from sqlalchemy import and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roundtracker.models import GameServer, PlayerSession, PlayerObservation, RoundRecord
from roundtracker.schemas import PlayerSessionRecord, ObservationRecord
from roundtracker.services.exceptions import RoundDataAccessError

logger = logging.getLogger(__name__)


@contextmanager
def _reading(what: str):
    """Translate database failures into RoundDataAccessError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Failed to read {what}: {e}")
        raise RoundDataAccessError(f"Failed to read {what}") from e


class SessionStore:
    """Session Store and Observation Store reader backed by SQLAlchemy."""

    # Keep IN clauses below common bind parameter limits
    OBSERVATION_BATCH_SIZE = 500

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_record(session: PlayerSession, server: Optional[GameServer]) -> PlayerSessionRecord:
        return PlayerSessionRecord(
            session_id=session.session_id,
            player_name=session.player_name,
            server_guid=session.server_guid,
            server_name=server.name if server else "",
            game_id=server.game_id if server else "",
            server_ip=server.ip if server else None,
            server_port=server.port if server else None,
            map_name=session.map_name or "",
            game_type=session.game_type or "",
            start_time=session.start_time,
            last_seen_time=session.last_seen_time,
            is_active=bool(session.is_active),
            total_score=session.total_score or 0,
            total_kills=session.total_kills or 0,
            total_deaths=session.total_deaths or 0,
            current_team=session.current_team or 0,
            current_team_label=session.current_team_label or "",
        )

    def _session_query(self):
        return self.db.query(PlayerSession, GameServer).outerjoin(
            GameServer, PlayerSession.server_guid == GameServer.guid
        )

    def read_sessions(
        self,
        server_guid: Optional[str] = None,
        map_name: Optional[str] = None,
        game_type: Optional[str] = None,
        overlaps_from: Optional[datetime] = None,
        overlaps_to: Optional[datetime] = None,
        started_from: Optional[datetime] = None,
        is_active: Optional[bool] = None,
        player_names: Optional[Iterable[str]] = None,
    ) -> List[PlayerSessionRecord]:
        """
        Read sessions ordered by start time ascending.

        Args:
            server_guid: Only sessions on this server
            map_name: Only sessions on this exact map
            game_type: Only sessions with this game type
            overlaps_from: Only sessions last seen at or after this time
            overlaps_to: Only sessions started at or before this time
            started_from: Only sessions started at or after this time
            is_active: Only active (True) or finished (False) sessions
            player_names: Only sessions of these players

        Returns:
            List of PlayerSessionRecord ordered by (start_time, session_id)
        """
        conditions = []
        if server_guid:
            conditions.append(PlayerSession.server_guid == server_guid)
        if map_name is not None:
            conditions.append(PlayerSession.map_name == map_name)
        if game_type:
            conditions.append(PlayerSession.game_type == game_type)
        if overlaps_from is not None:
            conditions.append(PlayerSession.last_seen_time >= overlaps_from)
        if overlaps_to is not None:
            conditions.append(PlayerSession.start_time <= overlaps_to)
        if started_from is not None:
            conditions.append(PlayerSession.start_time >= started_from)
        if is_active is not None:
            conditions.append(PlayerSession.is_active == is_active)
        if player_names is not None:
            conditions.append(PlayerSession.player_name.in_(list(player_names)))

        with _reading("sessions"):
            query = self._session_query()
            if conditions:
                query = query.filter(and_(*conditions))
            rows = query.order_by(PlayerSession.start_time.asc(), PlayerSession.session_id.asc()).all()

        return [self._to_record(session, server) for session, server in rows]

    def read_observations(
        self,
        session_ids: Iterable[int],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ObservationRecord]:
        """
        Read observations of the given sessions ordered by timestamp ascending.

        Args:
            session_ids: Owning session ids
            start: Only observations at or after this time
            end: Only observations at or before this time
        """
        ids = sorted(set(session_ids))
        records: List[ObservationRecord] = []

        with _reading("observations"):
            for offset in range(0, len(ids), self.OBSERVATION_BATCH_SIZE):
                batch = ids[offset:offset + self.OBSERVATION_BATCH_SIZE]
                query = self.db.query(PlayerObservation, PlayerSession.player_name).join(
                    PlayerSession, PlayerObservation.session_id == PlayerSession.session_id
                ).filter(PlayerObservation.session_id.in_(batch))

                if start is not None:
                    query = query.filter(PlayerObservation.timestamp >= start)
                if end is not None:
                    query = query.filter(PlayerObservation.timestamp <= end)

                for observation, player_name in query.all():
                    records.append(ObservationRecord(
                        observation_id=observation.observation_id,
                        session_id=observation.session_id,
                        player_name=player_name,
                        timestamp=observation.timestamp,
                        score=observation.score or 0,
                        kills=observation.kills or 0,
                        deaths=observation.deaths or 0,
                        ping=observation.ping or 0,
                        team=observation.team or 0,
                        team_label=observation.team_label or "",
                    ))

        records.sort(key=lambda o: (o.timestamp, o.observation_id))
        return records

    def find_previous_map_session(
        self, server_guid: str, map_name: str, before: datetime
    ) -> Optional[PlayerSessionRecord]:
        """Most recent session on the server with a different map that started before the given time."""
        with _reading("previous map session"):
            row = self._session_query().filter(
                and_(
                    PlayerSession.server_guid == server_guid,
                    PlayerSession.map_name != map_name,
                    PlayerSession.start_time < before,
                )
            ).order_by(PlayerSession.start_time.desc(), PlayerSession.session_id.desc()).first()

        return self._to_record(*row) if row else None

    def find_next_map_session(
        self, server_guid: str, map_name: str, after: datetime
    ) -> Optional[PlayerSessionRecord]:
        """Earliest session on the server with a different map that started after the given time."""
        with _reading("next map session"):
            row = self._session_query().filter(
                and_(
                    PlayerSession.server_guid == server_guid,
                    PlayerSession.map_name != map_name,
                    PlayerSession.start_time > after,
                )
            ).order_by(PlayerSession.start_time.asc(), PlayerSession.session_id.asc()).first()

        return self._to_record(*row) if row else None

    def earliest_start_between(
        self, server_guid: str, map_name: str, start: datetime, before: datetime
    ) -> Optional[datetime]:
        """Earliest session start on the server+map in [start, before)."""
        with _reading("session starts"):
            return self.db.query(func.min(PlayerSession.start_time)).filter(
                and_(
                    PlayerSession.server_guid == server_guid,
                    PlayerSession.map_name == map_name,
                    PlayerSession.start_time >= start,
                    PlayerSession.start_time < before,
                )
            ).scalar()

    def latest_start_between(
        self, server_guid: str, map_name: str, after: datetime, end: datetime
    ) -> Optional[datetime]:
        """Latest session start on the server+map in (after, end]."""
        with _reading("session starts"):
            return self.db.query(func.max(PlayerSession.start_time)).filter(
                and_(
                    PlayerSession.server_guid == server_guid,
                    PlayerSession.map_name == map_name,
                    PlayerSession.start_time > after,
                    PlayerSession.start_time <= end,
                )
            ).scalar()

    def find_round_sessions(
        self, server_guid: str, map_name: str, start: datetime, end: datetime
    ) -> List[PlayerSessionRecord]:
        """Sessions on the server+map whose [start, last seen] overlaps [start, end]."""
        with _reading("round sessions"):
            rows = self._session_query().filter(
                and_(
                    PlayerSession.server_guid == server_guid,
                    PlayerSession.map_name == map_name,
                    PlayerSession.start_time <= end,
                    PlayerSession.last_seen_time >= start,
                )
            ).order_by(PlayerSession.start_time.asc(), PlayerSession.session_id.asc()).all()

        return [self._to_record(session, server) for session, server in rows]

    def find_representative_session(
        self, server_guid: str, map_name: str, at: datetime
    ) -> Optional[PlayerSessionRecord]:
        """First session on the server+map covering the given time."""
        with _reading("representative session"):
            row = self._session_query().filter(
                and_(
                    PlayerSession.server_guid == server_guid,
                    PlayerSession.map_name == map_name,
                    PlayerSession.start_time <= at,
                    PlayerSession.last_seen_time >= at,
                )
            ).order_by(PlayerSession.start_time.asc(), PlayerSession.session_id.asc()).first()

        return self._to_record(*row) if row else None

    def get_round_record(self, round_id: str) -> Optional[RoundRecord]:
        """Look up a round in the persisted round index."""
        with _reading("round index"):
            return self.db.query(RoundRecord).filter(RoundRecord.round_id == round_id).first()
