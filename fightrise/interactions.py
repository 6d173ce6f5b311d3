from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from .outcomes import ActionOutcome
from .validation import (
    InvalidInteractionError,
    InvalidValueError,
    format_score,
    parse_score,
    parse_slot,
    validate_match_id,
)

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .lifecycle import MatchLifecycleService

log: Final = logging.getLogger("match-interactions")

SEPARATOR: Final = ":"
MAX_CUSTOM_ID_LENGTH: Final = 100


class ActionKind(StrEnum):
    CHECK_IN = "checkin"
    REPORT = "report"
    CONFIRM = "confirm"
    DISPUTE = "dispute"
    REOPEN = "reopen"


class UnrecognizedActionError(InvalidInteractionError):
    """Raised when an identifier's prefix names no known action."""


# Allowed argument counts after the prefix, as (min, max).
_ARITY: Final[dict[ActionKind, tuple[int, int]]] = {
    ActionKind.CHECK_IN: (2, 2),
    ActionKind.REPORT: (2, 3),
    ActionKind.CONFIRM: (1, 1),
    ActionKind.DISPUTE: (1, 1),
    ActionKind.REOPEN: (1, 1),
}


@dataclass(frozen=True, slots=True)
class ParsedAction:
    kind: ActionKind
    match_id: str
    slot: int | None = None
    score: tuple[int, int] | None = None


@dataclass(frozen=True, slots=True)
class Actor:
    user_id: int
    is_admin: bool = False


Handler = Callable[[ParsedAction, Actor], Awaitable[ActionOutcome]]


def create_interaction_id(
    kind: ActionKind,
    match_id: str,
    slot: int | None = None,
    score: tuple[int, int] | None = None,
) -> str:
    parts = [kind.value, match_id]
    if slot is not None:
        parts.append(str(slot))
    if score is not None:
        parts.append(format_score(score))
    custom_id = SEPARATOR.join(parts)
    if len(custom_id) > MAX_CUSTOM_ID_LENGTH:  # pragma: no cover - defensive
        raise InvalidInteractionError("Interaction id exceeds 100 characters")
    return custom_id


def parse_interaction_id(custom_id: str) -> ParsedAction:
    """Decode ``prefix:match[:slot[:score]]`` into a :class:`ParsedAction`.

    Raises :class:`UnrecognizedActionError` for an unknown prefix and
    :class:`InvalidInteractionError` for any malformed argument.
    """
    prefix, _, rest = custom_id.partition(SEPARATOR)
    try:
        kind = ActionKind(prefix)
    except ValueError as exc:
        raise UnrecognizedActionError(f"Unknown action prefix: {prefix!r}") from exc

    args = rest.split(SEPARATOR) if rest else []
    minimum, maximum = _ARITY[kind]
    if not minimum <= len(args) <= maximum:
        raise InvalidInteractionError(
            f"{kind.value} expects {minimum}-{maximum} arguments, got {len(args)}"
        )

    match_id = validate_match_id(args[0])
    slot = parse_slot(args[1]) if len(args) > 1 else None
    score = None
    if len(args) > 2:
        try:
            score = parse_score(args[2])
        except InvalidValueError as exc:
            raise InvalidInteractionError(str(exc)) from exc
    return ParsedAction(kind=kind, match_id=match_id, slot=slot, score=score)


class InteractionDispatcher:
    """Closed dispatch table from :class:`ActionKind` to handler.

    The table must cover every action kind; it is fixed at construction.
    """

    def __init__(self, handlers: Mapping[ActionKind, Handler]) -> None:
        missing = [kind.value for kind in ActionKind if kind not in handlers]
        if missing:
            raise ValueError(f"Missing handlers for: {', '.join(missing)}")
        self._handlers: dict[ActionKind, Handler] = dict(handlers)

    async def dispatch(self, custom_id: str, actor: Actor) -> ActionOutcome:
        try:
            action = parse_interaction_id(custom_id)
        except UnrecognizedActionError:
            log.info("Ignoring unrecognized interaction %s", custom_id)
            return ActionOutcome.unrecognized(custom_id)
        except InvalidInteractionError as exc:
            log.warning("Rejected malformed interaction %s: %s", custom_id, exc)
            return ActionOutcome.invalid(f"That button is no longer valid: {exc}")
        return await self._handlers[action.kind](action, actor)


def build_dispatcher(lifecycle: MatchLifecycleService) -> InteractionDispatcher:
    async def check_in(action: ParsedAction, actor: Actor) -> ActionOutcome:
        return await lifecycle.check_in(action.match_id, actor.user_id, action.slot)

    async def report(action: ParsedAction, actor: Actor) -> ActionOutcome:
        if action.slot is None:  # pragma: no cover - arity requires a slot
            return ActionOutcome.invalid("Report buttons must name a winning slot.")
        return await lifecycle.report_score(
            action.match_id, actor.user_id, action.slot, action.score
        )

    async def confirm(action: ParsedAction, actor: Actor) -> ActionOutcome:
        return await lifecycle.confirm_result(action.match_id, actor.user_id)

    async def dispute(action: ParsedAction, actor: Actor) -> ActionOutcome:
        return await lifecycle.dispute_result(action.match_id, actor.user_id)

    async def reopen(action: ParsedAction, actor: Actor) -> ActionOutcome:
        return await lifecycle.reopen_match(
            action.match_id, actor.user_id, is_admin=actor.is_admin
        )

    return InteractionDispatcher(
        {
            ActionKind.CHECK_IN: check_in,
            ActionKind.REPORT: report,
            ActionKind.CONFIRM: confirm,
            ActionKind.DISPUTE: dispute,
            ActionKind.REOPEN: reopen,
        }
    )


__all__ = [
    "ActionKind",
    "Actor",
    "ParsedAction",
    "Handler",
    "UnrecognizedActionError",
    "InteractionDispatcher",
    "create_interaction_id",
    "parse_interaction_id",
    "build_dispatcher",
]
