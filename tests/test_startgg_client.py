import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests

from startgg_api import (
    AuthError,
    GraphQLError,
    RateLimitError,
    ResponseCache,
    SetState,
    StartGGClient,
    StartGGError,
)


def response(status=200, payload=None, headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.json.return_value = payload if payload is not None else {}
    return resp


def sets_payload(*nodes, total_pages=1):
    return {
        "data": {
            "event": {
                "sets": {
                    "pageInfo": {"total": len(nodes), "totalPages": total_pages},
                    "nodes": list(nodes),
                }
            }
        }
    }


SET_NODE = {
    "id": "7001",
    "state": 6,
    "fullRoundText": "Winners Round 1",
    "identifier": "A",
    "round": 1,
    "slots": [
        {
            "entrant": {
                "id": "e1",
                "name": "Daigo",
                "participants": [{"user": {"id": "u1", "slug": "user/daigo"}}],
            },
            "standing": None,
        },
        {
            "entrant": {"id": "e2", "name": "Justin", "participants": []},
            "standing": {"stats": {"score": {"value": 1}}},
        },
    ],
}


def build_client(session, **kwargs):
    kwargs.setdefault("sleep", AsyncMock())
    return StartGGClient("secret", session=session, **kwargs)


def test_requires_api_key():
    with pytest.raises(ValueError):
        StartGGClient("")


def test_bearer_header_is_installed():
    session = MagicMock()
    session.headers = {}
    build_client(session)
    assert session.headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_get_event_sets_parses_page():
    session = MagicMock()
    session.post.return_value = response(payload=sets_payload(SET_NODE))
    client = build_client(session)

    page = await client.get_event_sets("42")

    assert page.total == 1
    bracket_set = page.nodes[0]
    assert bracket_set.state is SetState.READY
    assert bracket_set.is_playable
    first, second = bracket_set.entrants()
    assert first.user_ids == ["u1"]
    assert second.name == "Justin"
    body = session.post.call_args.kwargs["json"]
    assert body["variables"] == {"eventId": "42", "page": 1, "perPage": 50}


@pytest.mark.asyncio
async def test_missing_tournament_returns_none():
    session = MagicMock()
    session.post.return_value = response(payload={"data": {"tournament": None}})
    client = build_client(session)

    assert await client.get_tournament("tournament/nope") is None


@pytest.mark.asyncio
async def test_http_429_is_retried_then_succeeds():
    session = MagicMock()
    session.post.side_effect = [
        response(status=429, headers={"Retry-After": "1"}),
        response(status=429),
        response(payload=sets_payload(SET_NODE)),
    ]
    sleep = AsyncMock()
    client = build_client(session, sleep=sleep)

    page = await client.get_event_sets("42")

    assert len(page.nodes) == 1
    assert session.post.call_count == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_rate_limit_exhaustion_surfaces_rate_limit_error():
    session = MagicMock()
    session.post.return_value = response(status=429)
    client = build_client(session, max_retries=1)

    with pytest.raises(RateLimitError):
        await client.get_event_sets("42")
    assert session.post.call_count == 2


@pytest.mark.asyncio
async def test_graphql_rate_limit_message_is_retried():
    session = MagicMock()
    session.post.side_effect = [
        response(payload={"errors": [{"message": "Rate limit exceeded - api-token"}]}),
        response(payload={"data": {"tournament": {"id": 1, "name": "Evo"}}}),
    ]
    client = build_client(session)

    tournament = await client.get_tournament("tournament/evo")

    assert tournament is not None and tournament.name == "Evo"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_auth_failures_are_not_retried(status):
    session = MagicMock()
    session.post.return_value = response(status=status)
    client = build_client(session)

    with pytest.raises(AuthError):
        await client.get_tournament("tournament/evo")
    assert session.post.call_count == 1


@pytest.mark.asyncio
async def test_graphql_errors_raise_without_retry():
    session = MagicMock()
    session.post.return_value = response(payload={"errors": [{"message": "bad id"}]})
    client = build_client(session)

    with pytest.raises(GraphQLError) as excinfo:
        await client.get_event_sets("42")
    assert excinfo.value.errors == [{"message": "bad id"}]
    assert session.post.call_count == 1


@pytest.mark.asyncio
async def test_timeout_maps_to_start_gg_error():
    session = MagicMock()
    session.post.side_effect = requests.Timeout()
    client = build_client(session)

    with pytest.raises(StartGGError) as excinfo:
        await client.get_tournament("tournament/evo")
    assert excinfo.value.code == "TIMEOUT"


@pytest.mark.asyncio
async def test_reads_are_cached_and_mutation_invalidates_sets():
    session = MagicMock()
    session.post.side_effect = [
        response(payload=sets_payload(SET_NODE)),
        response(
            payload={"data": {"reportBracketSet": [{"id": "7001", "state": 3}]}}
        ),
        response(payload=sets_payload(SET_NODE)),
    ]
    client = build_client(session, cache=ResponseCache(ttl_seconds=60))

    await client.get_event_sets("42")
    await client.get_event_sets("42")
    assert session.post.call_count == 1

    ack = await client.report_result("7001", "e1")
    assert ack.set_id == "7001"
    assert ack.state is SetState.COMPLETED
    assert client.cache_size == 0

    await client.get_event_sets("42")
    assert session.post.call_count == 3


@pytest.mark.asyncio
async def test_concurrent_identical_reads_share_one_request():
    session = MagicMock()
    session.post.return_value = response(payload=sets_payload(SET_NODE))
    client = build_client(session)

    pages = await asyncio.gather(*(client.get_event_sets("42") for _ in range(5)))

    assert all(len(page.nodes) == 1 for page in pages)
    assert session.post.call_count == 1


@pytest.mark.asyncio
async def test_closed_client_refuses_calls():
    session = MagicMock()
    async with build_client(session) as client:
        pass
    # Injected sessions belong to the caller.
    session.close.assert_not_called()
    with pytest.raises(StartGGError):
        await client.get_tournament("tournament/evo")


@pytest.mark.asyncio
async def test_tournaments_by_owner_page():
    session = MagicMock()
    session.post.return_value = response(
        payload={
            "data": {
                "currentUser": {
                    "tournaments": {
                        "pageInfo": {"total": 1, "totalPages": 1},
                        "nodes": [
                            {
                                "id": 9001,
                                "name": "Evo Local",
                                "slug": "tournament/evo-local",
                                "state": 2,
                                "events": [{"id": 42, "name": "SF6", "numEntrants": 32}],
                            }
                        ],
                    }
                }
            }
        }
    )
    client = build_client(session)

    page = await client.get_tournaments_by_owner(page=2, per_page=10)

    assert page.total_pages == 1
    tournament = page.nodes[0]
    assert tournament.id == "9001"
    assert tournament.events[0].num_entrants == 32
    body = session.post.call_args.kwargs["json"]
    assert body["variables"] == {"page": 2, "perPage": 10}


@pytest.mark.asyncio
async def test_cache_invalidation_by_method():
    session = MagicMock()
    session.post.side_effect = [
        response(payload=sets_payload(SET_NODE)),
        response(payload={"data": {"tournament": {"id": 1, "name": "Evo"}}}),
        response(payload=sets_payload(SET_NODE)),
    ]
    client = build_client(session, cache=ResponseCache(ttl_seconds=60))

    await client.get_event_sets("42")
    await client.get_tournament("tournament/evo")
    assert client.cache_size == 2

    client.invalidate_cache("getEventSets")
    assert client.cache_size == 1
    await client.get_event_sets("42")
    assert session.post.call_count == 3

    client.clear_cache()
    assert client.cache_size == 0
