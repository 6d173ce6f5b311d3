from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Final, Protocol

from boto3.dynamodb.conditions import Attr

from .background import BackgroundTasks
from .models import (
    ACTIVE_MATCH_STATES,
    FINAL_MATCH_STATES,
    Match,
    MatchPlayer,
    MatchState,
    isoformat_utc,
    parse_iso,
    utc_now,
)
from .outcomes import ActionOutcome
from .storage import MatchStorage, player_path
from .validation import InvalidValueError, format_score, parse_slot

log: Final = logging.getLogger("match-lifecycle")

THREAD_AUTO_ARCHIVE_MINUTES: Final = 1440
THREAD_TITLE_LIMIT: Final = 100

REPORTABLE_STATES: Final = frozenset(
    {
        MatchState.CHECKED_IN,
        MatchState.IN_PROGRESS,
        MatchState.PENDING_CONFIRMATION,
    }
)


class ThreadGateway(Protocol):
    async def create_thread(
        self, channel_id: int, name: str, *, auto_archive_minutes: int
    ) -> str: ...

    async def delete_thread(self, thread_ref: str) -> None: ...

    async def add_member(self, thread_ref: str, user_id: int) -> None: ...

    async def send_match_card(self, thread_ref: str, match: Match) -> None: ...


class ResultReporter(Protocol):
    async def report_result(self, set_id: str, winner_entrant_id: str) -> object: ...


def build_thread_title(match: Match) -> str:
    """``"{round} ({identifier}): {p1} vs {p2}"`` capped at 100 characters."""
    names = [player.player_name for player in match.players] or ["TBD", "TBD"]
    while len(names) < 2:
        names.append("TBD")
    prefix = f"{match.round_text} ({match.identifier}): "
    title = f"{prefix}{names[0]} vs {names[1]}"
    if len(title) <= THREAD_TITLE_LIMIT:
        return title
    per_name = max((THREAD_TITLE_LIMIT - len(prefix) - len(" vs ")) // 2, 3)

    def shorten(name: str) -> str:
        return name if len(name) <= per_name else name[: per_name - 2] + ".."

    return f"{prefix}{shorten(names[0])} vs {shorten(names[1])}"[:THREAD_TITLE_LIMIT]


class _ReportKind(Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    DISPUTE = "dispute"
    ALREADY_REPORTED = "already_reported"
    CONFLICTING_SELF_REPORT = "conflicting_self_report"


@dataclass(frozen=True, slots=True)
class _ReportDecision:
    kind: _ReportKind
    reporter: MatchPlayer
    opponent: MatchPlayer
    reporter_wins: bool


def _decide_report(
    reporter: MatchPlayer, opponent: MatchPlayer, winner_slot: int
) -> _ReportDecision:
    reporter_wins = reporter.slot == winner_slot
    if reporter.has_claim:
        kind = (
            _ReportKind.ALREADY_REPORTED
            if reporter.is_winner == reporter_wins
            else _ReportKind.CONFLICTING_SELF_REPORT
        )
    elif not opponent.has_claim:
        kind = _ReportKind.PENDING
    elif opponent.is_winner != reporter_wins:
        # Opposite winner flags mean both players name the same winner.
        kind = _ReportKind.COMPLETE
    else:
        kind = _ReportKind.DISPUTE
    return _ReportDecision(kind, reporter, opponent, reporter_wins)


def _own_games(score: Sequence[int] | None, is_winner: bool) -> int | None:
    if not score:
        return None
    return int(score[0]) if is_winner else int(score[1])


def _claim_paths() -> list[str]:
    return [
        player_path(slot, attribute)
        for slot in (1, 2)
        for attribute in ("is_winner", "reported_score")
    ]


class MatchLifecycleService:
    """State machine for a single match.

    Every transition is a guarded conditional write through
    :class:`MatchStorage`; losing a race shows up as a ``None`` write result
    and is reported to the caller as an outcome, never raised.
    """

    def __init__(
        self,
        storage: MatchStorage,
        gateway: ThreadGateway,
        *,
        reporter: ResultReporter | None = None,
        background: BackgroundTasks | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._storage = storage
        self._gateway = gateway
        self._reporter = reporter
        self._background = background or BackgroundTasks()
        self._clock = clock

    async def _load(self, match_id: str) -> Match | None:
        return await asyncio.to_thread(self._storage.get_match, match_id)

    # ----- Thread provisioning -----
    async def provision_thread(self, match_id: str) -> str | None:
        match = await self._load(match_id)
        if match is None:
            log.warning("Cannot provision thread for unknown match %s", match_id)
            return None
        if match.thread_ref:
            return match.thread_ref
        if match.state is not MatchState.NOT_STARTED:
            log.info("Match %s is %s; not provisioning", match_id, match.state.value)
            return None

        tournament = await asyncio.to_thread(
            self._storage.get_tournament, match.tournament_id
        )
        if tournament is None or tournament.channel_id is None:
            log.warning(
                "No match channel configured for tournament %s", match.tournament_id
            )
            return None

        thread_ref = await self._gateway.create_thread(
            tournament.channel_id,
            build_thread_title(match),
            auto_archive_minutes=THREAD_AUTO_ARCHIVE_MINUTES,
        )
        set_values: dict[str, object] = {"thread_ref": thread_ref}
        if match.require_check_in:
            window = timedelta(minutes=tournament.check_in_window_minutes)
            set_values["check_in_deadline"] = isoformat_utc(self._clock() + window)

        try:
            updated = await asyncio.to_thread(
                self._storage.transition,
                match_id,
                [MatchState.NOT_STARTED],
                MatchState.CALLED,
                condition=Attr("thread_ref").not_exists(),
                set_values=set_values,
            )
        except Exception:
            await self._discard_thread(thread_ref, match_id)
            raise
        if updated is None:
            log.info("Match %s was provisioned concurrently", match_id)
            await self._discard_thread(thread_ref, match_id)
            return None

        await self._add_players(thread_ref, updated)
        try:
            await self._gateway.send_match_card(thread_ref, updated)
        except Exception as exc:
            log.warning("Failed to post match card for %s: %s", match_id, exc)
        log.info("Called match %s in thread %s", match_id, thread_ref)
        return thread_ref

    async def _discard_thread(self, thread_ref: str, match_id: str) -> None:
        try:
            await self._gateway.delete_thread(thread_ref)
        except Exception as exc:
            log.warning(
                "Failed to delete orphaned thread %s for match %s: %s",
                thread_ref,
                match_id,
                exc,
            )

    async def _add_players(self, thread_ref: str, match: Match) -> None:
        players = [player for player in match.players if player.discord_id is not None]
        results = await asyncio.gather(
            *(
                self._gateway.add_member(thread_ref, player.discord_id)  # type: ignore[arg-type]
                for player in players
            ),
            return_exceptions=True,
        )
        for player, result in zip(players, results, strict=True):
            if isinstance(result, BaseException):
                log.warning(
                    "Failed to add %s to thread %s: %s",
                    player.player_name,
                    thread_ref,
                    result,
                )

    # ----- Check-in -----
    async def check_in(
        self, match_id: str, user_id: int, slot: int | None = None
    ) -> ActionOutcome:
        match = await self._load(match_id)
        if match is None:
            return ActionOutcome.not_found(match_id)
        if slot is None:
            player = match.player_for_user(user_id)
            if player is None:
                return ActionOutcome.rejected("You are not a player in this match.", match)
        else:
            player = match.player(slot)
            if player is None or player.discord_id != user_id:
                return ActionOutcome.rejected(
                    "This check-in button belongs to the other player.", match
                )
        if not match.require_check_in:
            return ActionOutcome.rejected("Check-in is not required for this match.", match)
        if player.is_checked_in:
            if match.state is MatchState.CALLED and match.both_checked_in:
                return await self._finish_check_in(match_id)
            return ActionOutcome.already_done("You are already checked in.", match)
        if match.state is not MatchState.CALLED:
            return ActionOutcome.rejected("Check-in is not open for this match.", match)
        deadline = parse_iso(match.check_in_deadline)
        if deadline is not None and self._clock() > deadline:
            return ActionOutcome.rejected("The check-in window has closed.", match)

        opponent = match.opponent_of(player.slot)
        if opponent is None:  # pragma: no cover - defensive
            return ActionOutcome.rejected("This match has no opponent.", match)
        opponent_ready = opponent.is_checked_in
        for _attempt in range(2):
            updated = await self._write_check_in(match_id, player.slot, opponent_ready)
            if updated is not None:
                if opponent_ready:
                    log.info("Both players checked in for match %s", match_id)
                    return ActionOutcome.ok(
                        "Checked in! Both players are ready, play your match.",
                        updated,
                        both_checked_in=True,
                    )
                return ActionOutcome.ok("Checked in! Waiting for your opponent.", updated)

            fresh = await self._load(match_id)
            if fresh is None:
                return ActionOutcome.not_found(match_id)
            current = fresh.player(player.slot)
            if current is not None and current.is_checked_in:
                return ActionOutcome.already_done("You are already checked in.", fresh)
            if fresh.state is not MatchState.CALLED:
                return ActionOutcome.rejected("Check-in is not open for this match.", fresh)
            fresh_opponent = fresh.opponent_of(player.slot)
            opponent_ready = fresh_opponent is not None and fresh_opponent.is_checked_in
        return ActionOutcome.rejected(
            "The match changed before your check-in was saved.", await self._load(match_id)
        )

    async def _write_check_in(
        self, match_id: str, slot: int, opponent_ready: bool
    ) -> Match | None:
        """Set one player's check-in flag in a single guarded write.

        When the opponent is already in, the same write moves the match to
        ``checked_in`` so the flags and the state never disagree.
        """
        own_path = player_path(slot, "is_checked_in")
        opponent_path = player_path(3 - slot, "is_checked_in")
        guard = Attr(own_path).eq(False) & Attr(opponent_path).eq(opponent_ready)
        set_values = {
            own_path: True,
            player_path(slot, "checked_in_at"): isoformat_utc(self._clock()),
        }
        if opponent_ready:
            return await asyncio.to_thread(
                self._storage.transition,
                match_id,
                [MatchState.CALLED],
                MatchState.CHECKED_IN,
                condition=guard,
                set_values=set_values,
            )
        return await asyncio.to_thread(
            self._storage.conditional_update,
            match_id,
            condition=guard & Attr("state").eq(MatchState.CALLED.value),
            set_values=set_values,
        )

    async def _finish_check_in(self, match_id: str) -> ActionOutcome:
        # Both flags set while still called: complete the move to checked_in.
        updated = await asyncio.to_thread(
            self._storage.transition,
            match_id,
            [MatchState.CALLED],
            MatchState.CHECKED_IN,
            condition=Attr(player_path(1, "is_checked_in")).eq(True)
            & Attr(player_path(2, "is_checked_in")).eq(True),
        )
        if updated is None:
            return ActionOutcome.already_done(
                "You are already checked in.", await self._load(match_id)
            )
        log.info("Both players checked in for match %s", match_id)
        return ActionOutcome.ok(
            "Both players are checked in, play your match.",
            updated,
            both_checked_in=True,
        )

    # ----- Score reporting -----
    async def report_score(
        self,
        match_id: str,
        user_id: int,
        winner_slot: int,
        score: tuple[int, int] | None = None,
    ) -> ActionOutcome:
        try:
            winner_slot = parse_slot(winner_slot)
        except InvalidValueError as exc:
            return ActionOutcome.invalid(str(exc))

        for _attempt in range(2):
            match = await self._load(match_id)
            if match is None:
                return ActionOutcome.not_found(match_id)
            reporter = match.player_for_user(user_id)
            if reporter is None:
                return ActionOutcome.rejected("You are not a player in this match.", match)
            allowed = set(REPORTABLE_STATES)
            if not match.require_check_in:
                allowed.add(MatchState.CALLED)
            if match.state not in allowed:
                return ActionOutcome.rejected(
                    f"Results cannot be reported while the match is "
                    f"{match.state.value.replace('_', ' ')}.",
                    match,
                )

            opponent = match.opponent_of(reporter.slot)
            if opponent is None:  # pragma: no cover - defensive
                return ActionOutcome.rejected("This match has no opponent.", match)
            decision = _decide_report(reporter, opponent, winner_slot)
            if decision.kind is _ReportKind.ALREADY_REPORTED:
                return ActionOutcome.already_done("You already reported this result.", match)
            if decision.kind is _ReportKind.CONFLICTING_SELF_REPORT:
                return ActionOutcome.rejected(
                    "You already reported a different result for this match.", match
                )

            outcome = await self._apply_report(match, decision, allowed, score)
            if outcome is not None:
                return outcome
            log.info("Report on match %s raced another update; retrying", match_id)

        return ActionOutcome.rejected(
            "The match changed while you were reporting. Please try again.",
            await self._load(match_id),
        )

    async def _apply_report(
        self,
        match: Match,
        decision: _ReportDecision,
        allowed: set[MatchState],
        score: tuple[int, int] | None,
    ) -> ActionOutcome | None:
        reporter, opponent = decision.reporter, decision.opponent
        reporter_claim = Attr(player_path(reporter.slot, "is_winner")).not_exists()
        set_values: dict[str, object] = {
            player_path(reporter.slot, "is_winner"): decision.reporter_wins,
        }
        if decision.kind is _ReportKind.PENDING:
            reported = _own_games(score, decision.reporter_wins)
            if reported is not None:
                set_values[player_path(reporter.slot, "reported_score")] = reported
                set_values["score_claim"] = list(score or ())
            set_values["reporter_slot"] = reporter.slot
            updated = await asyncio.to_thread(
                self._storage.transition,
                match.match_id,
                allowed,
                MatchState.PENDING_CONFIRMATION,
                condition=reporter_claim
                & Attr(player_path(opponent.slot, "is_winner")).not_exists(),
                set_values=set_values,
            )
            if updated is None:
                return None
            summary = "wins" if decision.reporter_wins else "loses"
            detail = f" ({format_score(score)})" if score else ""
            return ActionOutcome.ok(
                f"Reported: {reporter.player_name} {summary}{detail}. "
                f"Waiting for {opponent.player_name} to confirm.",
                updated,
            )

        opponent_claim = Attr(player_path(opponent.slot, "is_winner")).eq(
            opponent.is_winner
        )
        if decision.kind is _ReportKind.COMPLETE:
            reported = _own_games(score or match.score_claim, decision.reporter_wins)
            if reported is not None:
                set_values[player_path(reporter.slot, "reported_score")] = reported
            updated = await asyncio.to_thread(
                self._storage.transition,
                match.match_id,
                allowed,
                MatchState.COMPLETED,
                condition=reporter_claim & opponent_claim,
                set_values=set_values,
            )
            if updated is None:
                return None
            self._report_upstream(updated)
            winner = updated.winner()
            return ActionOutcome.ok(
                f"Both players agree. {winner.player_name if winner else 'Winner'} wins!",
                updated,
                auto_completed=True,
            )

        updated = await asyncio.to_thread(
            self._storage.transition,
            match.match_id,
            allowed,
            MatchState.DISPUTED,
            condition=reporter_claim & opponent_claim,
            set_values={"reporter_slot": reporter.slot},
            remove=[*_claim_paths(), "score_claim"],
        )
        if updated is None:
            return None
        log.info("Match %s disputed by conflicting reports", match.match_id)
        return ActionOutcome.ok(
            "The reports disagree. The match is now disputed and an admin "
            "must reopen it.",
            updated,
        )

    # ----- Confirmation / dispute -----
    async def _pending_for_responder(
        self, match_id: str, user_id: int, verb: str
    ) -> tuple[Match, MatchPlayer] | ActionOutcome:
        match = await self._load(match_id)
        if match is None:
            return ActionOutcome.not_found(match_id)
        responder = match.player_for_user(user_id)
        if responder is None:
            return ActionOutcome.rejected("You are not a player in this match.", match)
        if match.state in FINAL_MATCH_STATES:
            return ActionOutcome.rejected(
                f"This match is already {match.state.value}.", match
            )
        if match.state is not MatchState.PENDING_CONFIRMATION or match.reporter_slot is None:
            return ActionOutcome.rejected(f"There is no reported result to {verb}.", match)
        if match.reporter_slot == responder.slot:
            return ActionOutcome.rejected(f"You cannot {verb} your own report.", match)
        return match, responder

    async def confirm_result(self, match_id: str, user_id: int) -> ActionOutcome:
        pending = await self._pending_for_responder(match_id, user_id, "confirm")
        if isinstance(pending, ActionOutcome):
            return pending
        match, confirmer = pending
        reporter = match.player(match.reporter_slot)  # type: ignore[arg-type]
        if reporter is None or reporter.is_winner is None:  # pragma: no cover - defensive
            return ActionOutcome.rejected("There is no reported result to confirm.", match)

        confirmer_wins = not reporter.is_winner
        set_values: dict[str, object] = {
            player_path(confirmer.slot, "is_winner"): confirmer_wins,
        }
        reported = _own_games(match.score_claim, confirmer_wins)
        if reported is not None:
            set_values[player_path(confirmer.slot, "reported_score")] = reported
        updated = await asyncio.to_thread(
            self._storage.transition,
            match_id,
            [MatchState.PENDING_CONFIRMATION],
            MatchState.COMPLETED,
            condition=Attr("reporter_slot").eq(reporter.slot)
            & Attr(player_path(reporter.slot, "is_winner")).eq(reporter.is_winner),
            set_values=set_values,
        )
        if updated is None:
            fresh = await self._load(match_id)
            if fresh is not None and fresh.state is MatchState.COMPLETED:
                return ActionOutcome.rejected("This match is already completed.", fresh)
            return ActionOutcome.rejected(
                "The match changed before your confirmation was saved.", fresh
            )
        self._report_upstream(updated)
        winner = updated.winner()
        return ActionOutcome.ok(
            f"Result confirmed. {winner.player_name if winner else 'Winner'} wins!",
            updated,
        )

    async def dispute_result(self, match_id: str, user_id: int) -> ActionOutcome:
        pending = await self._pending_for_responder(match_id, user_id, "dispute")
        if isinstance(pending, ActionOutcome):
            return pending
        match, _disputer = pending
        updated = await asyncio.to_thread(
            self._storage.transition,
            match_id,
            [MatchState.PENDING_CONFIRMATION],
            MatchState.DISPUTED,
            condition=Attr("reporter_slot").eq(match.reporter_slot),
            remove=[*_claim_paths(), "score_claim"],
        )
        if updated is None:
            return ActionOutcome.rejected(
                "The match changed before your dispute was saved.",
                await self._load(match_id),
            )
        log.info("Match %s disputed by %s", match_id, user_id)
        return ActionOutcome.ok(
            "Result disputed. Reported scores were cleared; an admin or the "
            "reporting player can reopen the match.",
            updated,
        )

    async def reopen_match(
        self, match_id: str, user_id: int, *, is_admin: bool = False
    ) -> ActionOutcome:
        match = await self._load(match_id)
        if match is None:
            return ActionOutcome.not_found(match_id)
        if match.state is not MatchState.DISPUTED:
            return ActionOutcome.rejected("Only disputed matches can be reopened.", match)
        player = match.player_for_user(user_id)
        is_reporter = player is not None and player.slot == match.reporter_slot
        if not (is_admin or is_reporter):
            return ActionOutcome.rejected(
                "Only an admin or the reporting player can reopen this match.", match
            )
        updated = await asyncio.to_thread(
            self._storage.transition,
            match_id,
            [MatchState.DISPUTED],
            MatchState.CHECKED_IN,
            remove=["reporter_slot", "score_claim", *_claim_paths()],
        )
        if updated is None:
            return ActionOutcome.already_done(
                "This match was already reopened.", await self._load(match_id)
            )
        return ActionOutcome.ok("Match reopened. Report the result again.", updated)

    # ----- Disqualification -----
    async def disqualify(
        self,
        match_id: str,
        slots: Sequence[int],
        *,
        admin_id: int,
        is_admin: bool,
        reason: str | None = None,
    ) -> ActionOutcome:
        if not is_admin:
            return ActionOutcome.rejected("Only tournament admins can disqualify players.")
        try:
            dq_slots = sorted({parse_slot(slot) for slot in slots})
        except InvalidValueError as exc:
            return ActionOutcome.invalid(str(exc))
        if not dq_slots:
            return ActionOutcome.invalid("Choose at least one player to disqualify.")

        match = await self._load(match_id)
        if match is None:
            return ActionOutcome.not_found(match_id)
        if match.state in FINAL_MATCH_STATES:
            return ActionOutcome.rejected(
                f"This match is already {match.state.value}.", match
            )

        set_values: dict[str, object] = {
            player_path(slot, "is_winner"): slot not in dq_slots for slot in (1, 2)
        }
        updated = await asyncio.to_thread(
            self._storage.transition,
            match_id,
            ACTIVE_MATCH_STATES,
            MatchState.DQ,
            set_values=set_values,
        )
        if updated is None:
            fresh = await self._load(match_id)
            state = fresh.state.value if fresh else "gone"
            return ActionOutcome.rejected(f"This match is already {state}.", fresh)

        names = ", ".join(
            player.player_name for player in updated.players if player.slot in dq_slots
        )
        log.info(
            "Admin %s disqualified %s from match %s (%s)",
            admin_id,
            names,
            match_id,
            reason or "no reason given",
        )
        if len(dq_slots) == 1:
            self._report_upstream(updated)
        return ActionOutcome.ok(f"Disqualified {names}.", updated)

    # ----- Upstream write-back -----
    def _report_upstream(self, match: Match) -> None:
        winner = match.winner()
        if self._reporter is None or winner is None:
            return
        self._background.spawn(
            self._push_result(
                self._reporter, match.external_set_id, winner.external_entrant_id
            ),
            description=f"report-result:{match.match_id}",
        )

    async def _push_result(
        self, reporter: ResultReporter, set_id: str, winner_entrant_id: str
    ) -> None:
        await reporter.report_result(set_id, winner_entrant_id)
        log.info("Reported set %s upstream (winner %s)", set_id, winner_entrant_id)


__all__ = [
    "MatchLifecycleService",
    "ThreadGateway",
    "ResultReporter",
    "build_thread_title",
    "THREAD_AUTO_ARCHIVE_MINUTES",
]
