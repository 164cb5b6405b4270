"""
SQLAlchemy database models.
"""
from .server import GameServer
from .player_session import PlayerSession, PlayerObservation
from .round import RoundRecord

__all__ = ["GameServer", "PlayerSession", "PlayerObservation", "RoundRecord"]
