"""
GameServer model - servers known to the ingestion poller.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime
from sqlalchemy.orm import relationship
from roundtracker.database import Base
from datetime import datetime


class GameServer(Base):
    """Game server model; supplies display names for rounds and reports."""
    __tablename__ = "game_servers"

    guid = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    ip = Column(String(64), nullable=False, default="")
    port = Column(Integer, nullable=False, default=0)
    game_id = Column(String(50), nullable=False, default="", index=True)

    is_online = Column(Boolean, nullable=False, default=True)
    last_seen_time = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    sessions = relationship("PlayerSession", back_populates="server")

    def __repr__(self):
        return f"<GameServer(guid={self.guid}, name={self.name})>"
