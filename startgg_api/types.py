from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class SetState(IntEnum):
    NOT_STARTED = 1
    STARTED = 2
    COMPLETED = 3
    READY = 6
    IN_PROGRESS = 7

    @classmethod
    def parse(cls, value: object) -> SetState | None:
        try:
            return cls(int(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None


PLAYABLE_SET_STATES = frozenset(
    {SetState.READY, SetState.STARTED, SetState.IN_PROGRESS}
)


class RemoteTournamentState(IntEnum):
    CREATED = 1
    ACTIVE = 2
    COMPLETED = 3


@dataclass(slots=True)
class Participant:
    user_id: str | None
    user_slug: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> Participant:
        user = data.get("user") or {}
        user_id = user.get("id") if isinstance(user, dict) else None
        user_slug = user.get("slug") if isinstance(user, dict) else None
        return cls(
            user_id=str(user_id) if user_id is not None else None,
            user_slug=str(user_slug) if user_slug is not None else None,
        )


@dataclass(slots=True)
class Entrant:
    id: str
    name: str
    participants: list[Participant] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> Entrant:
        participants_data: Iterable[dict[str, object]] = data.get("participants") or []  # type: ignore[assignment]
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            participants=[Participant.from_dict(item) for item in participants_data],
        )

    @property
    def user_ids(self) -> list[str]:
        return [p.user_id for p in self.participants if p.user_id is not None]


@dataclass(slots=True)
class SetSlot:
    entrant: Entrant | None
    score: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> SetSlot:
        entrant_data = data.get("entrant")
        entrant = (
            Entrant.from_dict(entrant_data)  # type: ignore[arg-type]
            if isinstance(entrant_data, dict)
            else None
        )
        score: int | None = None
        standing = data.get("standing")
        if isinstance(standing, dict):
            value = ((standing.get("stats") or {}).get("score") or {}).get("value")
            if isinstance(value, (int, float)):
                score = int(value)
        return cls(entrant=entrant, score=score)


@dataclass(slots=True)
class BracketSet:
    """A single match between two entrants, as the bracket service reports it."""

    id: str
    state: SetState | None
    full_round_text: str
    identifier: str
    round: int
    slots: list[SetSlot] = field(default_factory=list)
    winner_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> BracketSet:
        slots_data: Iterable[dict[str, object]] = data.get("slots") or []  # type: ignore[assignment]
        winner_raw = data.get("winnerId")
        round_raw = data.get("round")
        try:
            round_number = int(round_raw) if round_raw is not None else 0
        except (TypeError, ValueError):
            round_number = 0
        return cls(
            id=str(data.get("id", "")),
            state=SetState.parse(data.get("state")),
            full_round_text=str(data.get("fullRoundText") or ""),
            identifier=str(data.get("identifier") or ""),
            round=round_number,
            slots=[SetSlot.from_dict(item) for item in slots_data],
            winner_id=str(winner_raw) if winner_raw is not None else None,
        )

    def entrants(self) -> tuple[Entrant, Entrant] | None:
        """Return both entrants, or None while either slot is undetermined."""
        if len(self.slots) < 2:
            return None
        first = self.slots[0].entrant
        second = self.slots[1].entrant
        if first is None or second is None:
            return None
        return first, second

    @property
    def is_playable(self) -> bool:
        return self.state in PLAYABLE_SET_STATES and self.entrants() is not None

    @property
    def is_completed(self) -> bool:
        return self.state is SetState.COMPLETED


@dataclass(slots=True)
class RemoteEvent:
    id: str
    name: str
    num_entrants: int | None = None
    state: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> RemoteEvent:
        num_entrants = data.get("numEntrants")
        state = data.get("state")
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name") or ""),
            num_entrants=int(num_entrants) if num_entrants is not None else None,
            state=str(state) if state is not None else None,
        )


@dataclass(slots=True)
class RemoteTournament:
    id: str
    name: str
    slug: str | None
    start_at: int | None
    end_at: int | None
    state: int | None
    events: list[RemoteEvent] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> RemoteTournament:
        events_data: Iterable[dict[str, object]] = data.get("events") or []  # type: ignore[assignment]
        state = data.get("state")
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name") or ""),
            slug=str(data["slug"]) if data.get("slug") is not None else None,
            start_at=data.get("startAt"),  # type: ignore[arg-type]
            end_at=data.get("endAt"),  # type: ignore[arg-type]
            state=int(state) if state is not None else None,
            events=[RemoteEvent.from_dict(item) for item in events_data],
        )


@dataclass(slots=True)
class Page(Generic[T]):
    nodes: list[T]
    total: int
    total_pages: int

    @classmethod
    def from_connection(
        cls, data: dict[str, object], parse: Callable[[dict[str, object]], T]
    ) -> Page[T]:
        page_info = data.get("pageInfo") or {}
        nodes_data: Iterable[dict[str, object]] = data.get("nodes") or []  # type: ignore[assignment]
        return cls(
            nodes=[parse(item) for item in nodes_data],
            total=int(page_info.get("total") or 0),  # type: ignore[union-attr]
            total_pages=int(page_info.get("totalPages") or 0),  # type: ignore[union-attr]
        )

    @classmethod
    def empty(cls) -> Page[T]:
        return cls(nodes=[], total=0, total_pages=0)


@dataclass(slots=True)
class ReportAck:
    set_id: str
    state: SetState | None


__all__ = [
    "SetState",
    "PLAYABLE_SET_STATES",
    "RemoteTournamentState",
    "Participant",
    "Entrant",
    "SetSlot",
    "BracketSet",
    "RemoteEvent",
    "RemoteTournament",
    "Page",
    "ReportAck",
]
