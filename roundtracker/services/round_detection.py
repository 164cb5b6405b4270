"""
Round boundary detection: groups player sessions into rounds and summarizes each group.
"""
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from roundtracker.schemas import (
    DetectionStrategy,
    PlayerSessionRecord,
    RoundKey,
    RoundWithPlayers,
    SessionListItem,
)

logger = logging.getLogger(__name__)

SessionGroup = Tuple[RoundKey, List[PlayerSessionRecord]]


class RoundDetector:
    """Boundary detector and round materializer."""

    # A start-to-start gap above this splits two sessions on the same map into separate rounds
    IDLE_THRESHOLD = timedelta(seconds=600)

    # Coarse bucket width of the time-bucket strategy
    TIME_BUCKET_HOURS = 2

    @staticmethod
    def _ordered(sessions: Sequence[PlayerSessionRecord]) -> List[PlayerSessionRecord]:
        return sorted(sessions, key=lambda s: (s.start_time, s.session_id))

    @staticmethod
    def bucket_start(start_time: datetime) -> datetime:
        """Floor a timestamp to its 2-hour bucket."""
        hour = start_time.hour // RoundDetector.TIME_BUCKET_HOURS * RoundDetector.TIME_BUCKET_HOURS
        return start_time.replace(hour=hour, minute=0, second=0, microsecond=0)

    @staticmethod
    def group_by_gap(sessions: Sequence[PlayerSessionRecord]) -> List[SessionGroup]:
        """
        Gap-detection grouping.

        Sessions are partitioned by (server, map) and ordered by start time. A
        session opens a new group when it is the first of its partition or
        when it started more than IDLE_THRESHOLD after the previous session.
        The running count of those boundaries is the group sequence number.

        Args:
            sessions: Sessions for one or more servers

        Returns:
            List of (RoundKey, member sessions) in partition order
        """
        partitions: Dict[Tuple[str, str], List[PlayerSessionRecord]] = defaultdict(list)
        for session in RoundDetector._ordered(sessions):
            partitions[(session.server_guid, session.map_name)].append(session)

        groups: List[SessionGroup] = []
        for (server_guid, map_name), members in partitions.items():
            sequence = 0
            previous_start: Optional[datetime] = None
            current: List[PlayerSessionRecord] = []

            for session in members:
                is_boundary = (
                    previous_start is None
                    or session.start_time - previous_start > RoundDetector.IDLE_THRESHOLD
                )
                if is_boundary:
                    if current:
                        groups.append((
                            RoundKey(
                                strategy=DetectionStrategy.GAP,
                                server_guid=server_guid,
                                map_name=map_name,
                                discriminator=sequence,
                                start_time=current[0].start_time,
                            ),
                            current,
                        ))
                    sequence += 1
                    current = []

                current.append(session)
                previous_start = session.start_time

            if current:
                groups.append((
                    RoundKey(
                        strategy=DetectionStrategy.GAP,
                        server_guid=server_guid,
                        map_name=map_name,
                        discriminator=sequence,
                        start_time=current[0].start_time,
                    ),
                    current,
                ))

        return groups

    @staticmethod
    def group_by_time_bucket(sessions: Sequence[PlayerSessionRecord]) -> List[SessionGroup]:
        """
        Time-bucket grouping.

        Sessions are keyed by (map, game type, 2-hour bucket of start time).
        Walking each server's sessions in start order, a new group opens
        whenever the map or the key changes. Two rounds of the same map within
        one bucket and without an intervening map change are merged.
        """
        by_server: Dict[str, List[PlayerSessionRecord]] = defaultdict(list)
        for session in RoundDetector._ordered(sessions):
            by_server[session.server_guid].append(session)

        groups: List[SessionGroup] = []
        for server_guid, members in by_server.items():
            previous_map: Optional[str] = None
            current_key = None
            current: List[PlayerSessionRecord] = []

            for session in members:
                bucket = RoundDetector.bucket_start(session.start_time)
                key = (session.map_name, session.game_type, bucket)

                if previous_map is None or session.map_name != previous_map or key != current_key:
                    if current:
                        groups.append(RoundDetector._bucket_group(server_guid, current_key, current))
                    current = []
                    current_key = key

                current.append(session)
                previous_map = session.map_name

            if current:
                groups.append(RoundDetector._bucket_group(server_guid, current_key, current))

        return groups

    @staticmethod
    def _bucket_group(server_guid: str, key, members: List[PlayerSessionRecord]) -> SessionGroup:
        map_name, _, bucket = key
        return (
            RoundKey(
                strategy=DetectionStrategy.TIME_BUCKET,
                server_guid=server_guid,
                map_name=map_name,
                discriminator=bucket,
                start_time=members[0].start_time,
            ),
            members,
        )

    @staticmethod
    def materialize(
        key: RoundKey,
        members: Sequence[PlayerSessionRecord],
        now: Optional[datetime] = None,
    ) -> RoundWithPlayers:
        """
        Summarize one session group into a round.

        Args:
            key: Identity of the group
            members: Sessions in the group (at least one)
            now: Evaluation time used as end time of active rounds (defaults to utcnow)

        Returns:
            RoundWithPlayers with member sessions ordered by player name
        """
        if now is None:
            now = datetime.utcnow()

        start_time = min(s.start_time for s in members)
        is_active = any(s.is_active for s in members)

        if is_active:
            # Active rounds track the evaluation clock, never earlier than their start
            end_time = max(now, start_time)
        else:
            end_time = max(s.last_seen_time for s in members)

        duration_minutes = max(0, int((end_time - start_time).total_seconds() // 60))

        game_type = None
        server_name = ""
        team_labels: Dict[int, str] = {}
        for session in members:
            if session.game_type:
                game_type = session.game_type
            if session.server_name and not server_name:
                server_name = session.server_name
            if session.current_team in (1, 2) and session.current_team_label:
                team_labels[session.current_team] = session.current_team_label

        round_id = key.round_id
        players = [
            SessionListItem(
                session_id=s.session_id,
                round_id=round_id,
                player_name=s.player_name,
                start_time=s.start_time,
                end_time=s.last_seen_time,
                duration_minutes=max(0, int((s.last_seen_time - s.start_time).total_seconds() // 60)),
                score=s.total_score,
                kills=s.total_kills,
                deaths=s.total_deaths,
                is_active=s.is_active,
            )
            for s in sorted(members, key=lambda s: (s.player_name, s.start_time, s.session_id))
        ]

        return RoundWithPlayers(
            round_id=round_id,
            server_guid=key.server_guid,
            server_name=server_name,
            map_name=key.map_name,
            game_type=game_type,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=duration_minutes,
            participant_count=len({s.player_name for s in members}),
            total_sessions=len(members),
            is_active=is_active,
            team1_label=team_labels.get(1),
            team2_label=team_labels.get(2),
            players=players,
        )

    @staticmethod
    def group_sessions(
        sessions: Sequence[PlayerSessionRecord],
        strategy: DetectionStrategy = DetectionStrategy.GAP,
    ) -> List[SessionGroup]:
        """Group sessions with one strategy. Raises ValueError for unknown strategies."""
        strategy = DetectionStrategy(strategy)
        if strategy == DetectionStrategy.GAP:
            return RoundDetector.group_by_gap(sessions)
        return RoundDetector.group_by_time_bucket(sessions)

    @staticmethod
    def detect_rounds(
        sessions: Sequence[PlayerSessionRecord],
        strategy: DetectionStrategy = DetectionStrategy.GAP,
        now: Optional[datetime] = None,
    ) -> List[RoundWithPlayers]:
        """
        Group sessions with a single strategy and materialize every group.

        Args:
            sessions: Sessions ordered by start time
            strategy: Detection strategy; strategies are never mixed in one call
            now: Evaluation time for active rounds
        """
        if now is None:
            now = datetime.utcnow()

        strategy = DetectionStrategy(strategy)
        groups = RoundDetector.group_sessions(sessions, strategy)

        rounds = [RoundDetector.materialize(key, members, now) for key, members in groups]

        logger.info(f"Detected {len(rounds)} rounds from {len(sessions)} sessions using {strategy.value} strategy")

        return rounds
