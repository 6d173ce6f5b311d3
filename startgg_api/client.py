from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Final

import requests

from . import queries
from .cache import ResponseCache
from .errors import AuthError, GraphQLError, RateLimitError, StartGGError
from .retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_DELAY,
    DEFAULT_MAX_RETRIES,
    with_retry,
)
from .types import (
    BracketSet,
    Entrant,
    Page,
    RemoteTournament,
    ReportAck,
    SetState,
)

log: Final = logging.getLogger("startgg-client")

STARTGG_API_URL: Final = "https://api.start.gg/gql/alpha"
DEFAULT_TIMEOUT_SECONDS: Final = 30.0
DEFAULT_PAGE_SIZE: Final = 50


class StartGGClient:
    """Async facade over the start.gg GraphQL API.

    HTTP runs on a ``requests.Session`` in a worker thread so slow calls
    never block the event loop. Rate-limited calls are retried with
    exponential backoff, reads are memoized in a :class:`ResponseCache`,
    and concurrent identical reads share a single in-flight request.

    The client owns its session; call :meth:`close` (or use it as an async
    context manager) at shutdown.
    """

    def __init__(
        self,
        api_key: str,
        *,
        cache: ResponseCache | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        url: str = STARTGG_API_URL,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("A start.gg API key is required")
        self._url = url
        self._timeout = timeout
        self._cache = cache if cache is not None else ResponseCache(enabled=False)
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep
        self._owns_session = session is None
        self._session = session if session is not None else requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._closed = False

    async def __aenter__(self) -> StartGGClient:
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_session:
            self._session.close()

    # ----- Transport -----
    def _post(self, query: str, variables: Mapping[str, object]) -> dict[str, Any]:
        try:
            response = self._session.post(
                self._url,
                json={"query": query, "variables": dict(variables)},
                timeout=self._timeout,
            )
        except requests.Timeout as exc:
            raise StartGGError(
                "Request to start.gg timed out. Please try again later.", "TIMEOUT"
            ) from exc
        except requests.RequestException as exc:
            raise StartGGError(f"start.gg request failed: {exc}", "NETWORK") from exc

        status = response.status_code
        if status == 429:
            retry_after_raw = response.headers.get("Retry-After")
            try:
                retry_after = float(retry_after_raw) if retry_after_raw else None
            except ValueError:
                retry_after = None
            raise RateLimitError("start.gg rate limit hit (HTTP 429)", retry_after)
        if status in (401, 403):
            raise AuthError(f"start.gg rejected the API key (HTTP {status})")
        if status >= 400:
            raise StartGGError(f"start.gg returned HTTP {status}", str(status))

        try:
            payload = response.json()
        except ValueError as exc:
            raise StartGGError("start.gg returned a non-JSON response") from exc

        errors = payload.get("errors") or []
        if errors:
            messages = [str(err.get("message", "")) for err in errors]
            joined = ", ".join(messages)
            lowered = joined.lower()
            if "rate limit" in lowered or "too many requests" in lowered:
                raise RateLimitError(f"start.gg rate limit: {joined}")
            raise GraphQLError(f"GraphQL errors: {joined}", errors)
        return payload.get("data") or {}

    async def _execute(
        self, method: str, query: str, variables: Mapping[str, object]
    ) -> dict[str, Any]:
        if self._closed:
            raise StartGGError("start.gg client is closed")
        return await with_retry(
            lambda: asyncio.to_thread(self._post, query, variables),
            max_retries=self._max_retries,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
            sleep=self._sleep,
            description=method,
        )

    async def _query(
        self, method: str, query: str, variables: Mapping[str, object]
    ) -> dict[str, Any]:
        cached = self._cache.get(method, variables)
        if cached is not None:
            return cached

        key = ResponseCache.make_key(method, variables)
        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._execute(method, query, variables))
            self._pending[key] = pending
            pending.add_done_callback(lambda _fut: self._pending.pop(key, None))
        data = await asyncio.shield(pending)
        self._cache.set(method, variables, data)
        return data

    # ----- Queries -----
    async def get_tournament(self, slug: str) -> RemoteTournament | None:
        data = await self._query("getTournament", queries.GET_TOURNAMENT, {"slug": slug})
        tournament = data.get("tournament")
        if not tournament:
            return None
        return RemoteTournament.from_dict(tournament)

    async def get_tournaments_by_owner(
        self, page: int = 1, per_page: int = 25
    ) -> Page[RemoteTournament]:
        data = await self._query(
            "getTournamentsByOwner",
            queries.GET_TOURNAMENTS_BY_OWNER,
            {"page": page, "perPage": per_page},
        )
        connection = (data.get("currentUser") or {}).get("tournaments")
        if not connection:
            return Page.empty()
        return Page.from_connection(connection, RemoteTournament.from_dict)

    async def get_event_sets(
        self, event_id: str, page: int = 1, per_page: int = DEFAULT_PAGE_SIZE
    ) -> Page[BracketSet]:
        data = await self._query(
            "getEventSets",
            queries.GET_EVENT_SETS,
            {"eventId": event_id, "page": page, "perPage": per_page},
        )
        connection = (data.get("event") or {}).get("sets")
        if not connection:
            return Page.empty()
        return Page.from_connection(connection, BracketSet.from_dict)

    async def get_event_entrants(
        self, event_id: str, page: int = 1, per_page: int = DEFAULT_PAGE_SIZE
    ) -> Page[Entrant]:
        data = await self._query(
            "getEventEntrants",
            queries.GET_EVENT_ENTRANTS,
            {"eventId": event_id, "page": page, "perPage": per_page},
        )
        connection = (data.get("event") or {}).get("entrants")
        if not connection:
            return Page.empty()
        return Page.from_connection(connection, Entrant.from_dict)

    # ----- Mutations -----
    async def report_result(self, set_id: str, winner_entrant_id: str) -> ReportAck:
        data = await self._execute(
            "reportBracketSet",
            queries.REPORT_SET,
            {"setId": set_id, "winnerId": winner_entrant_id},
        )
        self._cache.invalidate("getEventSets")
        reported = data.get("reportBracketSet")
        # The mutation returns every set it touched, not only ours.
        if isinstance(reported, list):
            reported = next(
                (item for item in reported if str(item.get("id")) == str(set_id)),
                reported[0] if reported else None,
            )
        if not reported:
            return ReportAck(set_id=set_id, state=None)
        return ReportAck(
            set_id=str(reported.get("id", set_id)),
            state=SetState.parse(reported.get("state")),
        )

    # ----- Cache management -----
    def invalidate_cache(self, method: str | None = None) -> None:
        self._cache.invalidate(method)

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return self._cache.size


__all__ = ["StartGGClient", "STARTGG_API_URL", "DEFAULT_PAGE_SIZE"]
