"""
Round report builder: refines a round's boundaries from neighboring map sessions
and replays its leaderboard minute by minute from observation samples.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from roundtracker.schemas import (
    LeaderboardEntry,
    LeaderboardSnapshot,
    ObservationRecord,
    PlayerSessionRecord,
    RoundParticipant,
    RoundReport,
    RoundReportInfo,
    SessionInfo,
)
from roundtracker.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class ReplayService:
    """Round boundary refiner and replay snapshotter."""

    # Both constants assume the poller samples well under once a minute
    SNAPSHOT_INTERVAL = timedelta(minutes=1)
    STALENESS_WINDOW = timedelta(seconds=60)

    # Used when no neighboring map session bounds the round
    FALLBACK_SPAN = timedelta(minutes=30)

    @staticmethod
    def refine_boundaries(
        reference_time: datetime,
        previous_map_session: Optional[PlayerSessionRecord],
        next_map_session: Optional[PlayerSessionRecord],
    ) -> Tuple[datetime, datetime]:
        """
        Tighten a round's span using the sessions around it on the same server.

        The round starts when the previous map's session was last seen and ends
        when the next map's session started. Missing neighbors fall back to
        reference_time -/+ 30 minutes.

        Returns:
            Tuple of (round_start, round_end)
        """
        if previous_map_session is not None:
            round_start = previous_map_session.last_seen_time
        else:
            round_start = reference_time - ReplayService.FALLBACK_SPAN

        if next_map_session is not None:
            round_end = next_map_session.start_time
        else:
            round_end = reference_time + ReplayService.FALLBACK_SPAN

        return round_start, round_end

    @staticmethod
    def rank_entries(observations: Sequence[ObservationRecord]) -> List[LeaderboardEntry]:
        """
        Rank one observation per player by score.

        Equal scores are ordered by kills (descending), then player name.
        """
        ordered = sorted(observations, key=lambda o: (-o.score, -o.kills, o.player_name))

        return [
            LeaderboardEntry(
                rank=index + 1,
                player_name=o.player_name,
                score=o.score,
                kills=o.kills,
                deaths=o.deaths,
                ping=o.ping,
                team=o.team,
                team_label=o.team_label,
            )
            for index, o in enumerate(ordered)
        ]

    @staticmethod
    def build_snapshots(
        observations: Sequence[ObservationRecord],
        round_start: datetime,
        round_end: datetime,
    ) -> List[LeaderboardSnapshot]:
        """
        Reconstruct the leaderboard at every minute from round_start to round_end inclusive.

        At each tick every player contributes their latest observation at or
        before the tick, unless it is more than 60 seconds old. Ticks with no
        remaining players are dropped.

        Args:
            observations: Samples of all round sessions (any order)
            round_start: First tick
            round_end: Last possible tick

        Returns:
            Snapshots in ascending timestamp order
        """
        ordered = sorted(observations, key=lambda o: (o.timestamp, o.observation_id))
        latest: Dict[str, ObservationRecord] = {}
        snapshots: List[LeaderboardSnapshot] = []

        position = 0
        tick = round_start
        while tick <= round_end:
            while position < len(ordered) and ordered[position].timestamp <= tick:
                observation = ordered[position]
                latest[observation.player_name] = observation
                position += 1

            # Stale players cannot become fresh again without a newer sample
            for player_name in [name for name, o in latest.items() if tick - o.timestamp > ReplayService.STALENESS_WINDOW]:
                del latest[player_name]

            if latest:
                snapshots.append(LeaderboardSnapshot(
                    timestamp=tick,
                    entries=ReplayService.rank_entries(list(latest.values())),
                ))

            tick += ReplayService.SNAPSHOT_INTERVAL

        return snapshots

    @staticmethod
    def build_participants(sessions: Sequence[PlayerSessionRecord]) -> List[RoundParticipant]:
        """Collapse a round's sessions into one row per player, best score first."""
        by_player: Dict[str, List[PlayerSessionRecord]] = {}
        for session in sessions:
            by_player.setdefault(session.player_name, []).append(session)

        participants = []
        for player_name, player_sessions in by_player.items():
            join_time = min(s.start_time for s in player_sessions)
            leave_time = max(s.last_seen_time for s in player_sessions)
            final = max(player_sessions, key=lambda s: (s.last_seen_time, s.session_id))

            participants.append(RoundParticipant(
                player_name=player_name,
                join_time=join_time,
                leave_time=leave_time,
                duration_minutes=max(0, int((leave_time - join_time).total_seconds() // 60)),
                score=final.total_score,
                kills=final.total_kills,
                deaths=final.total_deaths,
            ))

        participants.sort(key=lambda p: (-p.score, p.player_name))
        return participants

    @staticmethod
    def build_report(
        store: SessionStore,
        server_guid: str,
        map_name: str,
        reference_time: datetime,
    ) -> Optional[RoundReport]:
        """
        Build the report of the round played on server+map around reference_time.

        Args:
            store: Session and observation reader
            server_guid: Server of the round
            map_name: Map of the round
            reference_time: Round start or any time within the round

        Returns:
            RoundReport, or None when no session on server+map overlaps the refined span

        Raises:
            RoundDataAccessError: If any read fails
        """
        previous_map_session = store.find_previous_map_session(server_guid, map_name, reference_time)
        next_map_session = store.find_next_map_session(server_guid, map_name, reference_time)

        round_start, round_end = ReplayService.refine_boundaries(
            reference_time, previous_map_session, next_map_session
        )
        if round_end < round_start:
            logger.warning(
                f"Refined span of {server_guid}/{map_name} at {reference_time} is inverted: "
                f"{round_start} > {round_end}"
            )

        round_sessions = store.find_round_sessions(server_guid, map_name, round_start, round_end)
        if not round_sessions:
            logger.info(f"No sessions for round {server_guid}/{map_name} at {reference_time}")
            return None

        representative = store.find_representative_session(server_guid, map_name, reference_time)
        if representative is None:
            representative = round_sessions[0]

        # Samples older than the staleness window cannot appear in the first tick
        observations = store.read_observations(
            [s.session_id for s in round_sessions],
            start=round_start - ReplayService.STALENESS_WINDOW,
            end=round_end,
        )

        snapshots = ReplayService.build_snapshots(observations, round_start, round_end)

        team_labels: Dict[int, str] = {}
        for session in round_sessions:
            if session.current_team in (1, 2) and session.current_team_label:
                team_labels[session.current_team] = session.current_team_label

        logger.info(
            f"Built round report for {server_guid}/{map_name}: "
            f"{len(round_sessions)} sessions, {len(observations)} observations, {len(snapshots)} snapshots"
        )

        return RoundReport(
            session=SessionInfo(
                session_id=representative.session_id,
                player_name=representative.player_name,
                server_name=representative.server_name,
                server_guid=representative.server_guid,
                game_id=representative.game_id,
                kills=representative.total_kills,
                deaths=representative.total_deaths,
                score=representative.total_score,
                server_ip=representative.server_ip,
                server_port=representative.server_port,
            ),
            round=RoundReportInfo(
                map_name=map_name,
                game_type=representative.game_type,
                server_name=representative.server_name,
                start_time=round_start,
                end_time=round_end,
                duration_minutes=max(0, int((round_end - round_start).total_seconds() // 60)),
                total_participants=len({s.player_name for s in round_sessions}),
                total_sessions=len(round_sessions),
                is_active=any(s.is_active for s in round_sessions),
                team1_label=team_labels.get(1),
                team2_label=team_labels.get(2),
            ),
            participants=ReplayService.build_participants(round_sessions),
            leaderboard_snapshots=snapshots,
        )
