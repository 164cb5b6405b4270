"""
RoundRecord model - persisted round index maintained by the round backfill.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Index
from roundtracker.database import Base
from datetime import datetime


class RoundRecord(Base):
    """Materialized round, used to resolve opaque round ids back to server/map/start."""
    __tablename__ = "rounds"

    round_id = Column(String(64), primary_key=True)
    server_guid = Column(String(64), nullable=False, index=True)
    server_name = Column(String(255), nullable=False, default="")
    map_name = Column(String(255), nullable=False)
    game_type = Column(String(100), nullable=False, default="")

    start_time = Column(DateTime, nullable=False)
    # NULL while the round is still being played
    end_time = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)

    duration_minutes = Column(Integer, nullable=True)
    participant_count = Column(Integer, nullable=True)
    total_sessions = Column(Integer, nullable=True)

    team1_label = Column(String(100), nullable=True)
    team2_label = Column(String(100), nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_rounds_server_map_start', 'server_guid', 'map_name', 'start_time'),
    )

    def __repr__(self):
        return f"<RoundRecord(round_id={self.round_id}, server={self.server_guid}, map={self.map_name})>"
