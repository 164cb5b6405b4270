"""
Pydantic schemas for rounds, round listings and round reports.
"""
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union
import hashlib
import json

from .session import SessionListItem


class DetectionStrategy(str, Enum):
    """Round boundary detection strategies."""
    GAP = "gap"
    TIME_BUCKET = "time_bucket"


class RoundKey(BaseModel):
    """
    Explicit identity of a reconstructed round.

    The discriminator is the partition group sequence number for the gap
    strategy, or the start of the 2-hour bucket for the time-bucket strategy.
    ``round_id`` is an opaque digest of the key and is never parsed back.
    """
    strategy: DetectionStrategy
    server_guid: str
    map_name: str
    discriminator: Union[int, datetime]
    start_time: datetime

    model_config = ConfigDict(frozen=True)

    @property
    def round_id(self) -> str:
        payload = [
            self.strategy.value,
            self.server_guid,
            self.map_name,
            self.start_time.replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ"),
        ]
        # Sequence numbers depend on the scanned window, so only bucket starts are hashed
        if isinstance(self.discriminator, datetime):
            payload.append(self.discriminator.strftime("%Y-%m-%dT%H:%M:%SZ"))

        digest = hashlib.sha256(json.dumps(payload).encode("utf-8")).hexdigest()
        return digest[:20]


class Round(BaseModel):
    """A reconstructed gameplay round."""
    round_id: str
    server_guid: str
    server_name: str = ""
    map_name: str
    game_type: Optional[str] = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    participant_count: int
    total_sessions: int
    is_active: bool
    team1_label: Optional[str] = None
    team2_label: Optional[str] = None


class RoundWithPlayers(Round):
    """Round with its member sessions."""
    players: List[SessionListItem] = Field(default_factory=list)


class RoundFilters(BaseModel):
    """Filters applied to rounds after grouping and aggregation."""
    server_name: Optional[str] = None
    server_guid: Optional[str] = None
    map_name: Optional[str] = None
    game_type: Optional[str] = None
    game_id: Optional[str] = None
    start_time_from: Optional[datetime] = None
    start_time_to: Optional[datetime] = None
    end_time_from: Optional[datetime] = None
    end_time_to: Optional[datetime] = None
    min_duration: Optional[int] = None
    max_duration: Optional[int] = None
    min_participants: Optional[int] = None
    max_participants: Optional[int] = None
    is_active: Optional[bool] = None
    player_names: Optional[List[str]] = None


class RoundPage(BaseModel):
    """Schema for paginated round list."""
    items: List[RoundWithPlayers]
    page: int
    page_size: int
    total_items: int
    total_pages: int


class LeaderboardEntry(BaseModel):
    """Single ranked row in a replay snapshot."""
    rank: int
    player_name: str
    score: int
    kills: int
    deaths: int
    ping: int
    team: int
    team_label: str


class LeaderboardSnapshot(BaseModel):
    """Reconstructed leaderboard at one minute tick."""
    timestamp: datetime
    entries: List[LeaderboardEntry]


class SessionInfo(BaseModel):
    """Identity of the representative session of a round report."""
    session_id: int
    player_name: str
    server_name: str
    server_guid: str
    game_id: str
    kills: int
    deaths: int
    score: int
    server_ip: Optional[str] = None
    server_port: Optional[int] = None


class RoundReportInfo(BaseModel):
    """Refined span and summary of the reported round."""
    map_name: str
    game_type: str
    server_name: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    total_participants: int
    total_sessions: int
    is_active: bool
    team1_label: Optional[str] = None
    team2_label: Optional[str] = None


class RoundParticipant(BaseModel):
    """A player's presence across the reported round."""
    player_name: str
    join_time: datetime
    leave_time: datetime
    duration_minutes: int
    score: int
    kills: int
    deaths: int


class RoundReport(BaseModel):
    """Round report with a minute-by-minute leaderboard replay."""
    session: SessionInfo
    round: RoundReportInfo
    participants: List[RoundParticipant] = Field(default_factory=list)
    leaderboard_snapshots: List[LeaderboardSnapshot] = Field(default_factory=list)
