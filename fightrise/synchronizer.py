from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Final, Protocol, TypeVar

from startgg_api import (
    AuthError,
    BracketSet,
    Entrant,
    Page,
    RemoteTournament,
    RemoteTournamentState,
    SetState,
)

from .background import BackgroundTasks
from .models import (
    ACTIVE_MATCH_STATES,
    TERMINAL_TOURNAMENT_STATES,
    Event,
    Match,
    MatchPlayer,
    MatchState,
    Tournament,
    TournamentState,
    isoformat_utc,
    utc_now,
)
from .scheduler import calculate_poll_interval
from .storage import MatchStorage, player_path

log: Final = logging.getLogger("match-sync")

SET_PAGE_SIZE: Final = 50
MAX_PAGES: Final = 100

T = TypeVar("T")


class BracketSource(Protocol):
    async def get_tournament(self, slug: str) -> RemoteTournament | None: ...

    async def get_event_sets(
        self, event_id: str, page: int = 1, per_page: int = SET_PAGE_SIZE
    ) -> Page[BracketSet]: ...

    async def get_event_entrants(
        self, event_id: str, page: int = 1, per_page: int = SET_PAGE_SIZE
    ) -> Page[Entrant]: ...


class TournamentNotFoundError(LookupError):
    """Raised when asked to sync a tournament that is not stored locally."""


class SyncAction(Enum):
    NONE = "none"
    CREATE = "create"
    NEWLY_PLAYABLE = "newly_playable"
    START = "start"
    COMPLETE = "complete"


@dataclass(frozen=True, slots=True)
class SetDecision:
    action: SyncAction
    remote: BracketSet
    existing: Match | None = None


def reconcile_set(remote: BracketSet, existing: Match | None) -> SetDecision:
    """Decide what a remote set means for its local match. Pure."""
    if existing is None:
        if remote.entrants() is None or remote.is_completed:
            return SetDecision(SyncAction.NONE, remote)
        return SetDecision(SyncAction.CREATE, remote)
    if existing.is_final:
        return SetDecision(SyncAction.NONE, remote, existing)
    if remote.is_completed:
        return SetDecision(SyncAction.COMPLETE, remote, existing)
    if remote.is_playable and existing.state is MatchState.NOT_STARTED:
        return SetDecision(SyncAction.NEWLY_PLAYABLE, remote, existing)
    if (
        remote.state in (SetState.STARTED, SetState.IN_PROGRESS)
        and existing.state is MatchState.CHECKED_IN
    ):
        return SetDecision(SyncAction.START, remote, existing)
    return SetDecision(SyncAction.NONE, remote, existing)


@dataclass(slots=True)
class SyncResult:
    tournament_id: str
    events: int = 0
    sets_seen: int = 0
    created: int = 0
    updated: int = 0
    newly_playable: list[str] = field(default_factory=list)
    failed_events: list[str] = field(default_factory=list)
    state: TournamentState | None = None

    def merge(self, other: SyncResult) -> None:
        self.events += other.events
        self.sets_seen += other.sets_seen
        self.created += other.created
        self.updated += other.updated
        self.newly_playable.extend(other.newly_playable)
        self.failed_events.extend(other.failed_events)


def map_tournament_state(
    current: TournamentState, remote_state: int | None
) -> TournamentState:
    if current in TERMINAL_TOURNAMENT_STATES:
        return current
    if remote_state == RemoteTournamentState.COMPLETED:
        return TournamentState.COMPLETED
    if remote_state == RemoteTournamentState.ACTIVE:
        return TournamentState.IN_PROGRESS
    return current


def _discord_id_for(entrant: Entrant, links: Mapping[str, int]) -> int | None:
    for user_id in entrant.user_ids:
        if user_id in links:
            return links[user_id]
    return None


def _completion_values(remote: BracketSet) -> dict[str, object]:
    values: dict[str, object] = {}
    scores = [slot.score for slot in remote.slots[:2]]
    entrants = remote.entrants()
    winner_slot: int | None = None
    if entrants is not None and remote.winner_id is not None:
        for slot, entrant in enumerate(entrants, start=1):
            if entrant.id == remote.winner_id:
                winner_slot = slot
    elif len(scores) == 2 and None not in scores and scores[0] != scores[1]:
        winner_slot = 1 if scores[0] > scores[1] else 2  # type: ignore[operator]
    for slot, score in enumerate(scores, start=1):
        if score is not None and score >= 0:
            values[player_path(slot, "reported_score")] = score
        if winner_slot is not None:
            values[player_path(slot, "is_winner")] = slot == winner_slot
    return values


class MatchSynchronizer:
    """Reconcile one tournament's remote sets against stored matches.

    All existing matches are loaded with a single query and looked up in
    memory, so the number of datastore reads does not grow with the number
    of sets. Newly playable matches are handed to ``on_newly_playable`` as
    background tasks; the sync never waits for them.
    """

    def __init__(
        self,
        storage: MatchStorage,
        client: BracketSource,
        *,
        on_newly_playable: Callable[[str], Awaitable[object]] | None = None,
        background: BackgroundTasks | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._storage = storage
        self._client = client
        self._on_newly_playable = on_newly_playable
        self._background = background or BackgroundTasks()
        self._clock = clock

    async def sync_tournament(self, tournament_id: str) -> SyncResult:
        tournament = await asyncio.to_thread(self._storage.get_tournament, tournament_id)
        if tournament is None:
            raise TournamentNotFoundError(f"Tournament {tournament_id} is not stored")

        events = await self._refresh_tournament(tournament)
        existing_matches, links = await asyncio.gather(
            asyncio.to_thread(self._storage.list_matches_for_tournament, tournament_id),
            asyncio.to_thread(self._storage.get_account_links),
        )
        by_set_id = {match.external_set_id: match for match in existing_matches}

        result = SyncResult(tournament_id=tournament_id, state=tournament.state)
        outcomes = await asyncio.gather(
            *(
                self._sync_event(tournament, event, by_set_id, links)
                for event in events
            ),
            return_exceptions=True,
        )
        for event, outcome in zip(events, outcomes, strict=True):
            if isinstance(outcome, AuthError):
                raise outcome
            if isinstance(outcome, BaseException):
                log.error(
                    "Failed to sync event %s (%s): %s",
                    event.name,
                    event.external_id,
                    outcome,
                )
                result.failed_events.append(event.external_id)
                continue
            result.merge(outcome)

        interval = calculate_poll_interval(tournament.state)
        await asyncio.to_thread(
            self._storage.record_poll,
            tournament_id,
            polled_at=isoformat_utc(self._clock()),
            interval_ms=interval,
            state=tournament.state.value,
        )

        for match_id in result.newly_playable:
            self._spawn_newly_playable(match_id)

        log.info(
            "Synced %s: %d events, %d sets, %d created, %d updated, %d newly playable",
            tournament.name or tournament_id,
            result.events,
            result.sets_seen,
            result.created,
            result.updated,
            len(result.newly_playable),
        )
        return result

    async def _refresh_tournament(self, tournament: Tournament) -> list[Event]:
        remote = await self._client.get_tournament(tournament.slug) if tournament.slug else None
        if remote is None:
            log.warning(
                "Tournament %s not returned by start.gg; using stored events",
                tournament.slug,
            )
            return await asyncio.to_thread(
                self._storage.list_events, tournament.tournament_id
            )

        new_state = map_tournament_state(tournament.state, remote.state)
        if new_state is not tournament.state:
            log.info(
                "Tournament %s is now %s", tournament.tournament_id, new_state.value
            )
            tournament.state = new_state
        if remote.name and remote.name != tournament.name:
            tournament.name = remote.name
            await asyncio.to_thread(self._storage.save_tournament, tournament)

        events = [
            Event(
                tournament_id=tournament.tournament_id,
                external_id=remote_event.id,
                name=remote_event.name,
                num_entrants=remote_event.num_entrants,
                remote_state=remote_event.state,
            )
            for remote_event in remote.events
        ]
        for event in events:
            await asyncio.to_thread(self._storage.save_event, event)
        return events

    async def _sync_event(
        self,
        tournament: Tournament,
        event: Event,
        existing: Mapping[str, Match],
        links: Mapping[str, int],
    ) -> SyncResult:
        remote_sets, entrants = await asyncio.gather(
            self._fetch_all(self._client.get_event_sets, event.external_id),
            self._fetch_all(self._client.get_event_entrants, event.external_id),
        )
        entrants_by_id = {entrant.id: entrant for entrant in entrants}
        result = SyncResult(
            tournament_id=tournament.tournament_id, events=1, sets_seen=len(remote_sets)
        )
        for remote in remote_sets:
            decision = reconcile_set(remote, existing.get(remote.id))
            await self._apply(decision, tournament, event, entrants_by_id, links, result)
        return result

    async def _apply(
        self,
        decision: SetDecision,
        tournament: Tournament,
        event: Event,
        entrants_by_id: Mapping[str, Entrant],
        links: Mapping[str, int],
        result: SyncResult,
    ) -> None:
        remote = decision.remote
        existing = decision.existing
        if decision.action is SyncAction.CREATE:
            match = self._build_match(tournament, event, remote, entrants_by_id, links)
            created = await asyncio.to_thread(self._storage.create_match, match)
            if not created:
                log.debug("Match for set %s already created", remote.id)
                return
            result.created += 1
            if remote.is_playable:
                result.newly_playable.append(match.match_id)
        elif existing is None:  # pragma: no cover - defensive
            return
        elif decision.action is SyncAction.NEWLY_PLAYABLE:
            result.newly_playable.append(existing.match_id)
        elif decision.action is SyncAction.START:
            updated = await asyncio.to_thread(
                self._storage.transition,
                existing.match_id,
                [MatchState.CHECKED_IN],
                MatchState.IN_PROGRESS,
            )
            if updated is not None:
                result.updated += 1
        elif decision.action is SyncAction.COMPLETE:
            updated = await asyncio.to_thread(
                self._storage.transition,
                existing.match_id,
                ACTIVE_MATCH_STATES,
                MatchState.COMPLETED,
                set_values=_completion_values(remote),
            )
            if updated is not None:
                result.updated += 1
                log.info("Match %s completed on start.gg", existing.match_id)

    def _build_match(
        self,
        tournament: Tournament,
        event: Event,
        remote: BracketSet,
        entrants_by_id: Mapping[str, Entrant],
        links: Mapping[str, int],
    ) -> Match:
        pair = remote.entrants()
        if pair is None:
            raise ValueError(f"Set {remote.id} does not have two entrants yet")
        players = []
        for slot, entrant in enumerate(pair, start=1):
            full = entrants_by_id.get(entrant.id, entrant)
            players.append(
                MatchPlayer(
                    slot=slot,
                    external_entrant_id=entrant.id,
                    player_name=entrant.name or full.name,
                    discord_id=_discord_id_for(full, links)
                    or _discord_id_for(entrant, links),
                )
            )
        return Match(
            match_id=Match.id_for_set(remote.id),
            tournament_id=tournament.tournament_id,
            event_id=event.event_id,
            external_set_id=remote.id,
            identifier=remote.identifier,
            round_text=remote.full_round_text,
            round=remote.round,
            state=MatchState.NOT_STARTED,
            players=players,
            require_check_in=tournament.require_check_in,
            created_at=isoformat_utc(self._clock()),
        )

    @staticmethod
    async def _fetch_all(
        fetch: Callable[..., Awaitable[Page[T]]], event_id: str
    ) -> list[T]:
        first = await fetch(event_id, page=1, per_page=SET_PAGE_SIZE)
        nodes: list[T] = list(first.nodes)
        for page in range(2, min(first.total_pages, MAX_PAGES) + 1):
            next_page = await fetch(event_id, page=page, per_page=SET_PAGE_SIZE)
            if not next_page.nodes:
                break
            nodes.extend(next_page.nodes)
        return nodes

    def _spawn_newly_playable(self, match_id: str) -> None:
        if self._on_newly_playable is None:
            return
        self._background.spawn(
            self._on_newly_playable(match_id),  # type: ignore[arg-type]
            description=f"provision-thread:{match_id}",
        )

    @property
    def background(self) -> BackgroundTasks:
        return self._background


__all__ = [
    "MatchSynchronizer",
    "SyncResult",
    "SyncAction",
    "SetDecision",
    "BracketSource",
    "TournamentNotFoundError",
    "reconcile_set",
    "map_tournament_state",
    "SET_PAGE_SIZE",
    "MAX_PAGES",
]
