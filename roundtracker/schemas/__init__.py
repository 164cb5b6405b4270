"""
Pydantic schemas for request/response validation.
"""
from .session import (
    PlayerSessionRecord,
    ObservationRecord,
    SessionListItem,
)
from .round import (
    DetectionStrategy,
    RoundKey,
    Round,
    RoundWithPlayers,
    RoundFilters,
    RoundPage,
    LeaderboardEntry,
    LeaderboardSnapshot,
    SessionInfo,
    RoundReportInfo,
    RoundParticipant,
    RoundReport,
)

__all__ = [
    # Session schemas
    "PlayerSessionRecord",
    "ObservationRecord",
    "SessionListItem",
    # Round schemas
    "DetectionStrategy",
    "RoundKey",
    "Round",
    "RoundWithPlayers",
    "RoundFilters",
    "RoundPage",
    # Round report schemas
    "LeaderboardEntry",
    "LeaderboardSnapshot",
    "SessionInfo",
    "RoundReportInfo",
    "RoundParticipant",
    "RoundReport",
]
