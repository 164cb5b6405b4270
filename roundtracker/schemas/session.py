"""
Pydantic schemas for raw session and observation rows.
"""
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional


class PlayerSessionRecord(BaseModel):
    """Read-only view of a PlayerSession row, joined with its server."""
    session_id: int
    player_name: str
    server_guid: str
    server_name: str = ""
    game_id: str = ""
    server_ip: Optional[str] = None
    server_port: Optional[int] = None
    map_name: str
    game_type: str = ""
    start_time: datetime
    last_seen_time: datetime
    is_active: bool = False
    total_score: int = 0
    total_kills: int = 0
    total_deaths: int = 0
    current_team: int = 1
    current_team_label: str = ""

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ObservationRecord(BaseModel):
    """Read-only view of a PlayerObservation row with its owning player name."""
    observation_id: int
    session_id: int
    player_name: str
    timestamp: datetime
    score: int = 0
    kills: int = 0
    deaths: int = 0
    ping: int = 0
    team: int = 1
    team_label: str = ""

    model_config = ConfigDict(from_attributes=True, frozen=True)


class SessionListItem(BaseModel):
    """Session summary attached to a listed round."""
    session_id: int
    round_id: str
    player_name: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    score: int
    kills: int
    deaths: int
    is_active: bool
