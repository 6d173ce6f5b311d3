from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import ClassVar

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_ID_NAMESPACE = uuid.UUID("5b0d9a4e-7f64-4c1e-9a43-2b8f1f0c6d21")


def utc_now() -> datetime:
    return datetime.now(UTC)


def isoformat_utc(value: datetime) -> str:
    return value.astimezone(UTC).strftime(ISO_FORMAT)


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=UTC)


def derive_id(kind: str, external_id: str) -> str:
    """Stable local id for a remote entity; the same external id always maps
    to the same local id, which makes creation an idempotent upsert."""
    return uuid.uuid5(_ID_NAMESPACE, f"{kind}:{external_id}").hex


def _optional_int(value: object) -> int | None:
    if value in (None, "", "None"):
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _optional_str(value: object) -> str | None:
    return str(value) if value not in (None, "") else None


class TournamentState(StrEnum):
    CREATED = "created"
    REGISTRATION_OPEN = "registration_open"
    REGISTRATION_CLOSED = "registration_closed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: object) -> TournamentState | None:
        try:
            return cls(str(value))
        except ValueError:
            return None


TERMINAL_TOURNAMENT_STATES = frozenset(
    {TournamentState.COMPLETED, TournamentState.CANCELLED}
)


class MatchState(StrEnum):
    NOT_STARTED = "not_started"
    CALLED = "called"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    PENDING_CONFIRMATION = "pending_confirmation"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    DQ = "dq"


FINAL_MATCH_STATES = frozenset({MatchState.COMPLETED, MatchState.DQ})
ACTIVE_MATCH_STATES = frozenset(MatchState) - FINAL_MATCH_STATES


@dataclass(slots=True)
class Tournament:
    tournament_id: str
    external_id: str
    slug: str
    name: str
    state: TournamentState
    channel_id: int | None = None
    require_check_in: bool = True
    check_in_window_minutes: int = 10
    last_polled_at: str | None = None
    poll_interval_ms: int | None = None

    PK_VALUE: ClassVar[str] = "TOURNAMENTS"
    SK_TEMPLATE: ClassVar[str] = "TOURNAMENT#%s"

    @classmethod
    def key(cls, tournament_id: str) -> dict[str, str]:
        return {"pk": cls.PK_VALUE, "sk": cls.SK_TEMPLATE % tournament_id}

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id)
        item.update(
            {
                "tournament_id": self.tournament_id,
                "external_id": self.external_id,
                "slug": self.slug,
                "name": self.name,
                "state": self.state.value,
                "require_check_in": self.require_check_in,
                "check_in_window_minutes": self.check_in_window_minutes,
            }
        )
        if self.channel_id is not None:
            item["channel_id"] = str(self.channel_id)
        if self.last_polled_at is not None:
            item["last_polled_at"] = self.last_polled_at
        if self.poll_interval_ms is not None:
            item["poll_interval_ms"] = self.poll_interval_ms
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Tournament:
        tournament_id = str(
            item.get("tournament_id") or str(item["sk"]).split("#", 1)[1]
        )
        state = TournamentState.parse(item.get("state")) or TournamentState.CREATED
        window = _optional_int(item.get("check_in_window_minutes"))
        return cls(
            tournament_id=tournament_id,
            external_id=str(item.get("external_id", "")),
            slug=str(item.get("slug", "")),
            name=str(item.get("name", "")),
            state=state,
            channel_id=_optional_int(item.get("channel_id")),
            require_check_in=bool(item.get("require_check_in", True)),
            check_in_window_minutes=window if window is not None else 10,
            last_polled_at=_optional_str(item.get("last_polled_at")),
            poll_interval_ms=_optional_int(item.get("poll_interval_ms")),
        )

    @property
    def is_pollable(self) -> bool:
        return self.state not in TERMINAL_TOURNAMENT_STATES


@dataclass(slots=True)
class Event:
    tournament_id: str
    external_id: str
    name: str
    num_entrants: int | None = None
    remote_state: str | None = None

    PK_TEMPLATE: ClassVar[str] = "TOURNAMENT#%s"
    SK_TEMPLATE: ClassVar[str] = "EVENT#%s"

    @property
    def event_id(self) -> str:
        return derive_id("event", self.external_id)

    @classmethod
    def key(cls, tournament_id: str, external_id: str) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % tournament_id,
            "sk": cls.SK_TEMPLATE % external_id,
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id, self.external_id)
        item.update(
            {
                "event_id": self.event_id,
                "external_id": self.external_id,
                "name": self.name,
            }
        )
        if self.num_entrants is not None:
            item["num_entrants"] = self.num_entrants
        if self.remote_state is not None:
            item["remote_state"] = self.remote_state
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Event:
        tournament_id = str(item["pk"]).split("#", 1)[1]
        external_id = str(item.get("external_id") or str(item["sk"]).split("#", 1)[1])
        return cls(
            tournament_id=tournament_id,
            external_id=external_id,
            name=str(item.get("name", "")),
            num_entrants=_optional_int(item.get("num_entrants")),
            remote_state=_optional_str(item.get("remote_state")),
        )


@dataclass(slots=True)
class MatchPlayer:
    slot: int
    external_entrant_id: str
    player_name: str
    discord_id: int | None = None
    is_checked_in: bool = False
    checked_in_at: str | None = None
    reported_score: int | None = None
    is_winner: bool | None = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "slot": self.slot,
            "external_entrant_id": self.external_entrant_id,
            "player_name": self.player_name,
            "is_checked_in": self.is_checked_in,
        }
        if self.discord_id is not None:
            data["discord_id"] = str(self.discord_id)
        if self.checked_in_at is not None:
            data["checked_in_at"] = self.checked_in_at
        if self.reported_score is not None:
            data["reported_score"] = self.reported_score
        if self.is_winner is not None:
            data["is_winner"] = self.is_winner
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> MatchPlayer:
        is_winner = data.get("is_winner")
        return cls(
            slot=int(data.get("slot", 0)),  # type: ignore[arg-type]
            external_entrant_id=str(data.get("external_entrant_id", "")),
            player_name=str(data.get("player_name", "")),
            discord_id=_optional_int(data.get("discord_id")),
            is_checked_in=bool(data.get("is_checked_in", False)),
            checked_in_at=_optional_str(data.get("checked_in_at")),
            reported_score=_optional_int(data.get("reported_score")),
            is_winner=bool(is_winner) if is_winner is not None else None,
        )

    @property
    def has_claim(self) -> bool:
        return self.is_winner is not None

    def mention(self) -> str:
        if self.discord_id is not None:
            return f"<@{self.discord_id}>"
        return self.player_name


@dataclass(slots=True)
class Match:
    match_id: str
    tournament_id: str
    event_id: str
    external_set_id: str
    identifier: str
    round_text: str
    round: int
    state: MatchState
    players: list[MatchPlayer] = field(default_factory=list)
    thread_ref: str | None = None
    check_in_deadline: str | None = None
    require_check_in: bool = True
    reporter_slot: int | None = None
    score_claim: list[int] | None = None
    created_at: str | None = None

    PK_TEMPLATE: ClassVar[str] = "MATCH#%s"
    SK_VALUE: ClassVar[str] = "META"
    INDEX_NAME: ClassVar[str] = "gsi1"
    INDEX_PK_TEMPLATE: ClassVar[str] = "TOURNAMENT#%s"
    INDEX_SK_TEMPLATE: ClassVar[str] = "SET#%s"

    @classmethod
    def key(cls, match_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % match_id, "sk": cls.SK_VALUE}

    @staticmethod
    def id_for_set(external_set_id: str) -> str:
        return derive_id("set", external_set_id)

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.match_id)
        item.update(
            {
                "gsi1pk": self.INDEX_PK_TEMPLATE % self.tournament_id,
                "gsi1sk": self.INDEX_SK_TEMPLATE % self.external_set_id,
                "match_id": self.match_id,
                "tournament_id": self.tournament_id,
                "event_id": self.event_id,
                "external_set_id": self.external_set_id,
                "identifier": self.identifier,
                "round_text": self.round_text,
                "round": self.round,
                "state": self.state.value,
                "require_check_in": self.require_check_in,
                "players": [player.to_dict() for player in self.players],
            }
        )
        if self.thread_ref is not None:
            item["thread_ref"] = self.thread_ref
        if self.check_in_deadline is not None:
            item["check_in_deadline"] = self.check_in_deadline
        if self.reporter_slot is not None:
            item["reporter_slot"] = self.reporter_slot
        if self.score_claim is not None:
            item["score_claim"] = list(self.score_claim)
        if self.created_at is not None:
            item["created_at"] = self.created_at
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Match:
        players_data: Iterable[dict[str, object]] = item.get("players", [])  # type: ignore[assignment]
        players = [MatchPlayer.from_dict(data) for data in players_data]
        players.sort(key=lambda player: player.slot)
        claim_raw = item.get("score_claim")
        score_claim = (
            [int(value) for value in claim_raw]  # type: ignore[union-attr]
            if isinstance(claim_raw, list)
            else None
        )
        match_id = str(item.get("match_id") or str(item["pk"]).split("#", 1)[1])
        return cls(
            match_id=match_id,
            tournament_id=str(item.get("tournament_id", "")),
            event_id=str(item.get("event_id", "")),
            external_set_id=str(item.get("external_set_id", "")),
            identifier=str(item.get("identifier", "")),
            round_text=str(item.get("round_text", "")),
            round=_optional_int(item.get("round")) or 0,
            state=MatchState(str(item.get("state", MatchState.NOT_STARTED.value))),
            players=players,
            thread_ref=_optional_str(item.get("thread_ref")),
            check_in_deadline=_optional_str(item.get("check_in_deadline")),
            require_check_in=bool(item.get("require_check_in", True)),
            reporter_slot=_optional_int(item.get("reporter_slot")),
            score_claim=score_claim,
            created_at=_optional_str(item.get("created_at")),
        )

    def player(self, slot: int) -> MatchPlayer | None:
        for player in self.players:
            if player.slot == slot:
                return player
        return None

    def opponent_of(self, slot: int) -> MatchPlayer | None:
        for player in self.players:
            if player.slot != slot:
                return player
        return None

    def player_for_user(self, discord_id: int) -> MatchPlayer | None:
        for player in self.players:
            if player.discord_id is not None and player.discord_id == discord_id:
                return player
        return None

    def winner(self) -> MatchPlayer | None:
        for player in self.players:
            if player.is_winner is True:
                return player
        return None

    @property
    def both_checked_in(self) -> bool:
        return len(self.players) == 2 and all(p.is_checked_in for p in self.players)

    @property
    def is_final(self) -> bool:
        return self.state in FINAL_MATCH_STATES


__all__ = [
    "ISO_FORMAT",
    "utc_now",
    "isoformat_utc",
    "parse_iso",
    "derive_id",
    "TournamentState",
    "TERMINAL_TOURNAMENT_STATES",
    "MatchState",
    "FINAL_MATCH_STATES",
    "ACTIVE_MATCH_STATES",
    "Tournament",
    "Event",
    "MatchPlayer",
    "Match",
]
