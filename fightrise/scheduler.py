from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Final

from startgg_api import AuthError

from .models import (
    TERMINAL_TOURNAMENT_STATES,
    Tournament,
    TournamentState,
    parse_iso,
)

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .storage import MatchStorage
    from .synchronizer import SyncResult

log: Final = logging.getLogger("poll-scheduler")

ACTIVE_INTERVAL_MS: Final = 15_000
REGISTRATION_INTERVAL_MS: Final = 60_000
INACTIVE_INTERVAL_MS: Final = 300_000

POLL_INTERVALS_MS: Final[dict[TournamentState, int]] = {
    TournamentState.IN_PROGRESS: ACTIVE_INTERVAL_MS,
    TournamentState.REGISTRATION_OPEN: REGISTRATION_INTERVAL_MS,
}


def calculate_poll_interval(state: TournamentState | None) -> int | None:
    """Milliseconds between polls for ``state``; ``None`` stops polling."""
    if state in TERMINAL_TOURNAMENT_STATES:
        return None
    if state is None:
        return INACTIVE_INTERVAL_MS
    return POLL_INTERVALS_MS.get(state, INACTIVE_INTERVAL_MS)


@dataclass(frozen=True, slots=True)
class PollStatus:
    tournament_id: str
    state: TournamentState
    last_polled_at: datetime | None
    next_poll_at: datetime | None
    interval_ms: int | None
    scheduled: bool


@dataclass(frozen=True, slots=True)
class TriggerResult:
    scheduled: bool
    message: str


@dataclass(slots=True)
class _PollHandle:
    interval_ms: int
    wake: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None


class PollScheduler:
    """Run one independent poll loop per tournament.

    A loop sleeps for its tournament's interval (or until woken by
    :meth:`trigger_immediate_poll`), runs ``sync`` and derives the next
    interval from the state the sync reports. A failing sync is logged and
    retried at the same interval; auth failures and missing tournaments end
    that tournament's loop only.
    """

    def __init__(
        self,
        storage: MatchStorage,
        sync: Callable[[str], Awaitable[SyncResult]],
    ) -> None:
        self._storage = storage
        self._sync = sync
        self._handles: dict[str, _PollHandle] = {}

    @property
    def scheduled_ids(self) -> list[str]:
        return sorted(self._handles)

    async def start(self) -> int:
        return await self.refresh()

    async def refresh(self) -> int:
        """Schedule every pollable tournament that has no running loop."""
        tournaments = await asyncio.to_thread(self._storage.list_pollable_tournaments)
        started = 0
        for tournament in tournaments:
            if self.schedule(tournament):
                started += 1
        if started:
            log.info("Scheduled polling for %d tournament(s)", started)
        return started

    def schedule(self, tournament: Tournament, *, immediate: bool = True) -> bool:
        if tournament.tournament_id in self._handles:
            return False
        interval = calculate_poll_interval(tournament.state)
        if interval is None:
            return False
        handle = _PollHandle(interval_ms=interval)
        if immediate:
            handle.wake.set()
        handle.task = asyncio.get_running_loop().create_task(
            self._run(tournament.tournament_id, handle),
            name=f"poll:{tournament.tournament_id}",
        )
        self._handles[tournament.tournament_id] = handle
        return True

    async def _run(self, tournament_id: str, handle: _PollHandle) -> None:
        try:
            while True:
                try:
                    await asyncio.wait_for(
                        handle.wake.wait(), timeout=handle.interval_ms / 1000
                    )
                except TimeoutError:
                    pass
                handle.wake.clear()

                try:
                    result = await self._sync(tournament_id)
                except AuthError as exc:
                    log.critical(
                        "start.gg rejected our credentials; stopping polls for %s: %s",
                        tournament_id,
                        exc,
                    )
                    return
                except LookupError as exc:
                    log.warning("Stopping polls for %s: %s", tournament_id, exc)
                    return
                except Exception:
                    log.exception(
                        "Poll failed for %s; retrying in %ss",
                        tournament_id,
                        handle.interval_ms // 1000,
                    )
                    continue

                interval = calculate_poll_interval(result.state)
                if interval is None:
                    log.info(
                        "Tournament %s is %s; polling stopped",
                        tournament_id,
                        result.state.value if result.state else "finished",
                    )
                    return
                if interval != handle.interval_ms:
                    log.info(
                        "Poll interval for %s is now %ss",
                        tournament_id,
                        interval // 1000,
                    )
                    handle.interval_ms = interval
        finally:
            if self._handles.get(tournament_id) is handle:
                del self._handles[tournament_id]

    async def get_poll_status(self, tournament_id: str) -> PollStatus | None:
        tournament = await asyncio.to_thread(self._storage.get_tournament, tournament_id)
        if tournament is None:
            return None
        interval = calculate_poll_interval(tournament.state)
        last_polled = parse_iso(tournament.last_polled_at)
        next_poll = (
            last_polled + timedelta(milliseconds=interval)
            if last_polled is not None and interval is not None
            else None
        )
        return PollStatus(
            tournament_id=tournament_id,
            state=tournament.state,
            last_polled_at=last_polled,
            next_poll_at=next_poll,
            interval_ms=interval,
            scheduled=tournament_id in self._handles,
        )

    async def trigger_immediate_poll(self, tournament_id: str) -> TriggerResult:
        tournament = await asyncio.to_thread(self._storage.get_tournament, tournament_id)
        if tournament is None:
            return TriggerResult(False, "Tournament not found")
        if not tournament.is_pollable:
            return TriggerResult(False, "Tournament is completed or cancelled")
        handle = self._handles.get(tournament_id)
        if handle is not None:
            handle.wake.set()
        else:
            self.schedule(tournament, immediate=True)
        log.info("Immediate poll requested for %s", tournament_id)
        return TriggerResult(True, "Poll scheduled for immediate execution")

    async def stop(self) -> None:
        handles = list(self._handles.values())
        tasks = [handle.task for handle in handles if handle.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._handles.clear()
        if tasks:
            log.info("Stopped %d poll loop(s)", len(tasks))


__all__ = [
    "PollScheduler",
    "PollStatus",
    "TriggerResult",
    "calculate_poll_interval",
    "ACTIVE_INTERVAL_MS",
    "REGISTRATION_INTERVAL_MS",
    "INACTIVE_INTERVAL_MS",
]
