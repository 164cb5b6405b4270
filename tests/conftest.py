"""Shared fixtures: in-memory database and row builders."""

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from roundtracker.database import Base, init_db
from roundtracker.models import GameServer, PlayerObservation, PlayerSession
from roundtracker.schemas import ObservationRecord, PlayerSessionRecord


def at(hour, minute=0, second=0):
    """Naive UTC timestamp on a fixed test day."""
    return datetime(2024, 5, 1, hour, minute, second)


def make_session(
    session_id,
    player_name,
    start_time,
    last_seen_time,
    server_guid="srv-1",
    map_name="Wake Island",
    game_type="conquest",
    is_active=False,
    **extra,
):
    """Build an in-memory PlayerSessionRecord."""
    return PlayerSessionRecord(
        session_id=session_id,
        player_name=player_name,
        server_guid=server_guid,
        server_name=extra.pop("server_name", "Test Server"),
        map_name=map_name,
        game_type=game_type,
        start_time=start_time,
        last_seen_time=last_seen_time,
        is_active=is_active,
        **extra,
    )


def make_observation(observation_id, player_name, timestamp, score, kills=0, deaths=0, **extra):
    """Build an in-memory ObservationRecord."""
    return ObservationRecord(
        observation_id=observation_id,
        session_id=extra.pop("session_id", 1),
        player_name=player_name,
        timestamp=timestamp,
        score=score,
        kills=kills,
        deaths=deaths,
        ping=extra.pop("ping", 50),
        team=extra.pop("team", 1),
        team_label=extra.pop("team_label", "Allies"),
    )


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database shared across connections."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class RowBuilder:
    """Inserts servers, sessions and observations."""

    def __init__(self, db):
        self.db = db

    def server(self, guid="srv-1", name="Test Server", game_id="bf1942", ip="10.0.0.1", port=14567):
        server = GameServer(guid=guid, name=name, game_id=game_id, ip=ip, port=port)
        self.db.add(server)
        self.db.commit()
        return server

    def session(
        self,
        player_name,
        start_time,
        last_seen_time,
        server_guid="srv-1",
        map_name="Wake Island",
        game_type="conquest",
        is_active=False,
        **extra,
    ):
        session = PlayerSession(
            player_name=player_name,
            server_guid=server_guid,
            map_name=map_name,
            game_type=game_type,
            start_time=start_time,
            last_seen_time=last_seen_time,
            is_active=is_active,
            **extra,
        )
        self.db.add(session)
        self.db.commit()
        return session

    def observation(self, session, timestamp, score, kills=0, deaths=0, ping=50, team=1, team_label="Allies"):
        observation = PlayerObservation(
            session_id=session.session_id,
            timestamp=timestamp,
            score=score,
            kills=kills,
            deaths=deaths,
            ping=ping,
            team=team,
            team_label=team_label,
        )
        self.db.add(observation)
        self.db.commit()
        return observation


@pytest.fixture
def rows(db):
    return RowBuilder(db)
