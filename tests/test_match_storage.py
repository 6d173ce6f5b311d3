from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError
from conftest import FakeTable, make_match, make_tournament

from fightrise import Event, Match, MatchState, MatchStorage, TournamentState, models
from fightrise.models import isoformat_utc, parse_iso
from fightrise.storage import build_update_expression, player_path


def test_ensure_table_raises_when_missing():
    storage = MatchStorage(None)
    with pytest.raises(RuntimeError):
        storage.ensure_table()


def test_update_expression_uses_placeholders_for_nested_paths():
    expression, names, values = build_update_expression(
        {"state": "called", player_path(2, "is_winner"): True},
        remove=[player_path(1, "is_winner")],
    )
    assert expression == "SET #u0 = :u0, #u1[1].#u2 = :u1 REMOVE #u1[0].#u2"
    assert names == {"#u0": "state", "#u1": "players", "#u2": "is_winner"}
    assert values == {":u0": "called", ":u1": True}


def test_update_expression_requires_a_clause():
    with pytest.raises(ValueError):
        build_update_expression()


def test_tournament_round_trip_and_pollable_filter(storage):
    storage.save_tournament(make_tournament("t1"))
    storage.save_tournament(make_tournament("t2", state=TournamentState.COMPLETED))

    restored = storage.get_tournament("t1")
    assert restored == make_tournament("t1")
    assert [t.tournament_id for t in storage.list_pollable_tournaments()] == ["t1"]


def test_record_poll_updates_timestamp_interval_and_state(storage):
    storage.save_tournament(make_tournament("t1", state=TournamentState.CREATED))

    storage.record_poll(
        "t1",
        polled_at="2024-05-01T12:00:00.000000Z",
        interval_ms=15_000,
        state=TournamentState.IN_PROGRESS.value,
    )

    restored = storage.get_tournament("t1")
    assert restored.last_polled_at == "2024-05-01T12:00:00.000000Z"
    assert restored.poll_interval_ms == 15_000
    assert restored.state is TournamentState.IN_PROGRESS


def test_record_poll_for_unknown_tournament_is_ignored(storage, table, caplog):
    storage.record_poll("missing", polled_at="2024-05-01T12:00:00.000000Z", interval_ms=1)
    assert table.items == {}
    assert [record.name for record in caplog.records] == ["match-storage"]


def test_events_are_upserted_by_external_id(storage):
    storage.save_event(Event("t1", "ev-1", "Street Fighter 6", 32))
    storage.save_event(Event("t1", "ev-1", "Street Fighter 6", 48))

    events = storage.list_events("t1")
    assert len(events) == 1
    assert events[0].num_entrants == 48
    assert events[0].event_id == Event("t1", "ev-1", "x").event_id


def test_account_links_load_in_one_query(storage, table):
    storage.save_account_link("u1", 101)
    storage.save_account_link("u2", 202)

    assert storage.get_account_links() == {"u1": 101, "u2": 202}
    assert len(table.queries()) == 1


def test_create_match_is_unique_per_set(storage):
    match = make_match("7001")
    assert storage.create_match(match) is True
    assert storage.create_match(make_match("7001")) is False
    assert storage.get_match(match.match_id) == match


def test_match_ids_are_deterministic_hex():
    match_id = Match.id_for_set("7001")
    assert match_id == Match.id_for_set("7001")
    assert match_id != Match.id_for_set("7002")
    assert len(match_id) == 32 and int(match_id, 16) >= 0


def test_list_matches_follows_pagination():
    table = FakeTable(page_size=2)
    storage = MatchStorage(table)
    for set_id in ("1", "2", "3", "4", "5"):
        storage.create_match(make_match(set_id))
    storage.create_match(make_match("6", tournament_id="other"))

    matches = storage.list_matches_for_tournament("t1")

    assert sorted(m.external_set_id for m in matches) == ["1", "2", "3", "4", "5"]
    assert len(table.queries("gsi1")) == 3


def test_conditional_update_returns_none_when_guard_fails(storage):
    match = make_match()
    storage.create_match(match)

    blocked = storage.transition(match.match_id, [MatchState.CALLED], MatchState.CHECKED_IN)
    assert blocked is None

    moved = storage.transition(
        match.match_id,
        [MatchState.NOT_STARTED],
        MatchState.CALLED,
        condition=Attr("thread_ref").not_exists(),
        set_values={"thread_ref": "999"},
    )
    assert moved.state is MatchState.CALLED
    assert moved.thread_ref == "999"


def test_conditional_update_on_missing_match_returns_none(storage):
    assert (
        storage.transition("0" * 32, [MatchState.NOT_STARTED], MatchState.CALLED)
        is None
    )


def test_other_client_errors_propagate(storage):
    class BrokenTable(FakeTable):
        def update_item(self, **kwargs):
            raise ClientError(
                {"Error": {"Code": "ProvisionedThroughputExceededException"}},
                "UpdateItem",
            )

    storage = MatchStorage(BrokenTable())
    with pytest.raises(ClientError):
        storage.transition("0" * 32, [MatchState.NOT_STARTED], MatchState.CALLED)


def test_from_item_accepts_dynamodb_decimals():
    item = make_match().to_item()
    item["round"] = Decimal("3")
    item["players"][0]["reported_score"] = Decimal("2")
    item["players"][0]["discord_id"] = "101"

    restored = Match.from_item(item)

    assert restored.round == 3
    assert restored.player(1).reported_score == 2
    assert restored.player(1).discord_id == 101


def test_timestamps_are_stored_as_utc_strings():
    local = datetime(2024, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

    stamp = isoformat_utc(local)

    assert stamp == "2024-05-01T12:00:00.000000Z"
    assert parse_iso(stamp) == local
    assert parse_iso(None) is None
    assert [name for name in models.__all__ if name.startswith("utc_")] == ["utc_now"]
