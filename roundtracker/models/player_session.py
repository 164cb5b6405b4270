"""
PlayerSession and PlayerObservation models - raw presence data written by the poller.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Float, ForeignKey, Index
from sqlalchemy.orm import relationship
from roundtracker.database import Base


class PlayerSession(Base):
    """One contiguous observed presence of a player on a server+map."""
    __tablename__ = "player_sessions"

    session_id = Column(Integer, primary_key=True, autoincrement=True)
    player_name = Column(String(255), nullable=False, index=True)
    server_guid = Column(String(64), ForeignKey("game_servers.guid", ondelete="CASCADE"), nullable=False)

    map_name = Column(String(255), nullable=False, default="")
    game_type = Column(String(100), nullable=False, default="")

    start_time = Column(DateTime, nullable=False)
    last_seen_time = Column(DateTime, nullable=False)
    # True only for the most recent open session per player+server
    is_active = Column(Boolean, nullable=False, default=False)

    observation_count = Column(Integer, nullable=False, default=0)
    total_score = Column(Integer, nullable=False, default=0)
    total_kills = Column(Integer, nullable=False, default=0)
    total_deaths = Column(Integer, nullable=False, default=0)

    # Live state mirrored from the latest observation
    current_ping = Column(Integer, nullable=False, default=0)
    current_team = Column(Integer, nullable=False, default=1)
    current_team_label = Column(String(100), nullable=False, default="")
    average_ping = Column(Float, nullable=True)

    # Assigned by the round backfill
    round_id = Column(String(64), ForeignKey("rounds.round_id", ondelete="SET NULL"), nullable=True, index=True)

    # Relationships
    server = relationship("GameServer", back_populates="sessions")
    observations = relationship("PlayerObservation", back_populates="session", cascade="all, delete-orphan")

    __table_args__ = (
        # Round grouping and boundary refinement scan by server then start time
        Index('idx_sessions_server_start', 'server_guid', 'start_time'),
        Index('idx_sessions_server_map_start', 'server_guid', 'map_name', 'start_time'),
    )

    def __repr__(self):
        return (
            f"<PlayerSession(session_id={self.session_id}, player={self.player_name}, "
            f"server={self.server_guid}, map={self.map_name})>"
        )


class PlayerObservation(Base):
    """A single timestamped sample of a player's in-round state."""
    __tablename__ = "player_observations"

    observation_id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("player_sessions.session_id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime, nullable=False)

    score = Column(Integer, nullable=False, default=0)
    kills = Column(Integer, nullable=False, default=0)
    deaths = Column(Integer, nullable=False, default=0)
    ping = Column(Integer, nullable=False, default=0)
    team = Column(Integer, nullable=False, default=1)
    team_label = Column(String(100), nullable=False, default="")

    # Relationships
    session = relationship("PlayerSession", back_populates="observations")

    __table_args__ = (
        Index('idx_observations_session_timestamp', 'session_id', 'timestamp'),
    )

    def __repr__(self):
        return f"<PlayerObservation(session_id={self.session_id}, timestamp={self.timestamp}, score={self.score})>"
