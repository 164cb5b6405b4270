"""Tests for round listings and round reports."""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from conftest import at
from roundtracker.schemas import RoundFilters
from roundtracker.services.exceptions import InvalidRoundQueryError, RoundDataAccessError
from roundtracker.services.round_backfill_service import RoundBackfillService
from roundtracker.services.round_service import RoundService


@pytest.fixture
def played(rows):
    """Three finished rounds on two servers."""
    rows.server(guid="srv-1", name="Battlegroup 42", game_id="bf1942")
    rows.server(guid="srv-2", name="Vietnam Nights", game_id="bfvietnam")

    rows.session("Alpha", at(10, 0), at(10, 20), total_score=40)
    rows.session("Bravo", at(10, 5), at(10, 20), total_score=25)
    rows.session("Charlie", at(10, 6), at(10, 18), total_score=10)

    rows.session("Alpha", at(11, 0), at(11, 45), map_name="El Alamein", game_type="ctf")

    rows.session("Delta", at(10, 30), at(10, 40), server_guid="srv-2", map_name="Hue")
    rows.session("Bravo", at(10, 31), at(10, 40), server_guid="srv-2", map_name="Hue")


class TestListRounds:
    """Tests for RoundService.list_rounds."""

    def test_lists_all_rounds_newest_first(self, db, played):
        page = RoundService.list_rounds(db, now=at(12))

        assert page.total_items == 3
        assert page.total_pages == 1
        assert [r.start_time for r in page.items] == [at(11, 0), at(10, 30), at(10, 0)]

    def test_server_name_and_game_id_filters(self, db, played):
        by_name = RoundService.list_rounds(db, RoundFilters(server_name="vietnam"), now=at(12))
        by_game = RoundService.list_rounds(db, RoundFilters(game_id="bf1942"), now=at(12))

        assert [r.map_name for r in by_name.items] == ["Hue"]
        assert {r.server_guid for r in by_game.items} == {"srv-1"}
        assert by_game.total_items == 2

    def test_filters_apply_to_aggregated_rounds(self, db, played):
        """Participant counts include players outside the player filter."""
        page = RoundService.list_rounds(
            db, RoundFilters(player_names=["Charlie"], min_participants=3), now=at(12)
        )

        assert page.total_items == 1
        assert page.items[0].participant_count == 3
        assert {p.player_name for p in page.items[0].players} == {"Alpha", "Bravo", "Charlie"}

    def test_player_names_require_all(self, db, played):
        both = RoundService.list_rounds(db, RoundFilters(player_names=["Alpha", "Bravo"]), now=at(12))
        missing = RoundService.list_rounds(db, RoundFilters(player_names=["Alpha", "Delta"]), now=at(12))

        assert [r.map_name for r in both.items] == ["Wake Island"]
        assert missing.total_items == 0
        assert missing.items == []

    def test_only_specified_players(self, db, played):
        page = RoundService.list_rounds(
            db,
            RoundFilters(player_names=[" Bravo ", "Bravo", ""]),
            only_specified_players=True,
            now=at(12),
        )

        assert page.total_items == 2
        for round_ in page.items:
            assert [p.player_name for p in round_.players] == ["Bravo"]

    def test_players_can_be_omitted(self, db, played):
        page = RoundService.list_rounds(db, include_players=False, now=at(12))

        assert all(r.players == [] for r in page.items)
        assert page.items[-1].participant_count == 3

    def test_duration_and_time_filters(self, db, played):
        long_rounds = RoundService.list_rounds(db, RoundFilters(min_duration=30), now=at(12))
        early = RoundService.list_rounds(db, RoundFilters(start_time_to=at(10, 15)), now=at(12))

        assert [r.duration_minutes for r in long_rounds.items] == [45]
        assert [r.map_name for r in early.items] == ["Wake Island"]

    def test_pascal_case_sort_field(self, db, played):
        page = RoundService.list_rounds(db, sort_by="ParticipantCount", sort_order="asc", now=at(12))

        assert [r.participant_count for r in page.items] == [1, 2, 3]

    def test_paging(self, db, played):
        page = RoundService.list_rounds(db, sort_order="asc", page=2, page_size=2, now=at(12))

        assert page.total_items == 3
        assert page.total_pages == 2
        assert [r.start_time for r in page.items] == [at(11, 0)]

    def test_page_past_the_end_is_empty(self, db, played):
        page = RoundService.list_rounds(db, page=5, page_size=2, now=at(12))

        assert page.items == []
        assert page.total_items == 3

    def test_empty_store_gives_empty_page(self, db):
        page = RoundService.list_rounds(db, now=at(12))

        assert page.items == []
        assert page.total_items == 0
        assert page.total_pages == 0

    def test_time_bucket_strategy(self, db, rows):
        """An idle gap on the same map splits gap rounds but not bucket rounds."""
        rows.server()
        rows.session("A", at(10, 0), at(10, 10))
        rows.session("B", at(10, 40), at(10, 50))

        gap = RoundService.list_rounds(db, strategy="gap", now=at(12))
        bucket = RoundService.list_rounds(db, strategy="time_bucket", now=at(12))

        assert gap.total_items == 2
        assert bucket.total_items == 1
        assert bucket.items[0].participant_count == 2

    def test_round_ids_survive_narrower_reads(self, db, played):
        everything = RoundService.list_rounds(db, now=at(12))
        one_server = RoundService.list_rounds(db, RoundFilters(server_guid="srv-1"), now=at(12))

        ids = {r.round_id for r in everything.items}
        assert {r.round_id for r in one_server.items} <= ids


class TestQueryValidation:
    """Malformed listings are rejected before any read."""

    @pytest.mark.parametrize("kwargs", [
        {"sort_by": "player_name"},
        {"sort_order": "sideways"},
        {"page": 0},
        {"page_size": 0},
        {"page_size": 10_000},
        {"filters": RoundFilters(min_duration=-1)},
        {"filters": RoundFilters(min_participants=5, max_participants=2)},
        {"filters": RoundFilters(start_time_from=at(12), start_time_to=at(10))},
        {"filters": RoundFilters(end_time_from=at(12), end_time_to=at(10))},
        {"strategy": "hourly"},
    ])
    def test_invalid_query_never_reads(self, kwargs):
        db = MagicMock()

        with pytest.raises(InvalidRoundQueryError):
            RoundService.list_rounds(db, **kwargs)

        db.query.assert_not_called()

    def test_sort_names_are_normalized(self):
        assert RoundService.resolve_sort_field("StartTime") == "start_time"
        assert RoundService.resolve_sort_field("duration_minutes") == "duration_minutes"

    def test_read_failure_propagates(self, db):
        with patch.object(db, "query", side_effect=OperationalError("SELECT", {}, Exception("down"))):
            with pytest.raises(RoundDataAccessError):
                RoundService.list_rounds(db, now=at(12))


class TestRoundReport:
    """Tests for report building over the database."""

    @pytest.fixture
    def map_rotation(self, rows):
        """El Alamein, then Wake Island, then Midway on one server."""
        rows.server()
        rows.session("Old", at(9, 30), at(9, 55), map_name="El Alamein")

        alpha = rows.session("Alpha", at(9, 56), at(10, 28), total_score=30, total_kills=6, current_team_label="Axis")
        bravo = rows.session(
            "Bravo", at(10, 2), at(10, 29), total_score=45, current_team=2, current_team_label="Allies"
        )
        rows.observation(alpha, at(9, 56, 20), score=0)
        rows.observation(alpha, at(10, 0, 30), score=10, kills=2)
        rows.observation(bravo, at(10, 2, 10), score=5)
        rows.observation(alpha, at(10, 27, 50), score=30, kills=6)
        rows.observation(bravo, at(10, 27, 55), score=45)

        rows.session("Next", at(10, 30), at(10, 55), map_name="Midway")
        return alpha, bravo

    def test_span_refined_from_neighbor_maps(self, db, map_rotation):
        report = RoundService.get_round_report(db, "srv-1", "Wake Island", at(10, 0))

        assert report.round.start_time == at(9, 55)
        assert report.round.end_time == at(10, 30)
        assert report.round.duration_minutes == 35
        assert report.round.total_participants == 2
        assert report.round.team1_label == "Axis"
        assert report.round.team2_label == "Allies"

    def test_report_contents(self, db, map_rotation):
        report = RoundService.get_round_report(db, "srv-1", "Wake Island", at(10, 0))

        assert report.session.player_name == "Alpha"
        assert report.session.game_id == "bf1942"
        assert [p.player_name for p in report.participants] == ["Bravo", "Alpha"]

        snapshots = report.leaderboard_snapshots
        assert snapshots[0].timestamp == at(9, 57)
        assert all(at(9, 55) <= s.timestamp <= at(10, 30) for s in snapshots)
        by_time = {s.timestamp: s for s in snapshots}
        assert [e.player_name for e in by_time[at(10, 28)].entries] == ["Bravo", "Alpha"]
        assert [e.score for e in by_time[at(10, 1)].entries] == [10]

    def test_unknown_round_is_none(self, db, rows):
        rows.server()

        assert RoundService.get_round_report(db, "srv-1", "Wake Island", at(10, 0)) is None

    def test_report_read_failure(self, db):
        with patch.object(db, "query", side_effect=OperationalError("SELECT", {}, Exception("down"))):
            with pytest.raises(RoundDataAccessError):
                RoundService.get_round_report(db, "srv-1", "Wake Island", at(10, 0))

    def test_report_by_round_id(self, db, map_rotation):
        RoundBackfillService.backfill_rounds(db, now=at(12))
        round_ = next(
            r for r in RoundService.list_rounds(db, now=at(12)).items if r.map_name == "Wake Island"
        )

        report = RoundService.get_round_report_by_id(db, round_.round_id)

        assert report.round.map_name == "Wake Island"
        assert report.round.start_time == at(9, 55)
        assert report.session.player_name == "Alpha"

    def test_listed_round_id_resolves_without_backfill(self, db, map_rotation):
        """Ids from a listing resolve even when the round index is empty."""
        round_ = next(
            r for r in RoundService.list_rounds(db, now=at(12)).items if r.map_name == "Wake Island"
        )

        report = RoundService.get_round_report_by_id(db, round_.round_id)

        assert report is not None
        assert report.round.start_time == at(9, 55)
        assert report.round.end_time == at(10, 30)
        assert report.round.total_participants == 2

    def test_time_bucket_round_id_resolves(self, db, map_rotation):
        """Time-bucket ids are never indexed by the backfill but still resolve."""
        RoundBackfillService.backfill_rounds(db, now=at(12))
        round_ = next(
            r for r in RoundService.list_rounds(db, strategy="time_bucket", now=at(12)).items
            if r.map_name == "Wake Island" and r.start_time == at(9, 56)
        )

        report = RoundService.get_round_report_by_id(db, round_.round_id)

        assert report is not None
        assert report.round.map_name == "Wake Island"
        assert report.round.start_time == at(9, 55)
        assert [p.player_name for p in report.participants] == ["Bravo", "Alpha"]

    def test_unknown_round_id_is_none(self, db):
        assert RoundService.get_round_report_by_id(db, "0" * 20) is None

    def test_unknown_round_id_with_sessions_is_none(self, db, map_rotation):
        assert RoundService.get_round_report_by_id(db, "f" * 20) is None

    def test_report_is_idempotent(self, db, map_rotation):
        first = RoundService.get_round_report(db, "srv-1", "Wake Island", at(10, 0))
        second = RoundService.get_round_report(db, "srv-1", "Wake Island", at(10, 0))

        assert first == second
