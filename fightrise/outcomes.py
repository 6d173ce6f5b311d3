from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .models import Match


class OutcomeCode(StrEnum):
    OK = "ok"
    ALREADY_DONE = "already_done"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    """Result of a user-facing match action.

    Business-rule rejections are outcomes, not exceptions: ``success`` is
    False and ``message`` says why. ``match`` carries the fresh snapshot
    whenever one was read or written.
    """

    success: bool
    message: str
    code: OutcomeCode = OutcomeCode.OK
    match: Match | None = None
    both_checked_in: bool = False
    auto_completed: bool = False

    @classmethod
    def ok(cls, message: str, match: Match | None = None, **flags: bool) -> ActionOutcome:
        return cls(True, message, OutcomeCode.OK, match, **flags)

    @classmethod
    def already_done(cls, message: str, match: Match | None = None) -> ActionOutcome:
        return cls(False, message, OutcomeCode.ALREADY_DONE, match)

    @classmethod
    def rejected(cls, message: str, match: Match | None = None) -> ActionOutcome:
        return cls(False, message, OutcomeCode.REJECTED, match)

    @classmethod
    def not_found(cls, match_id: str) -> ActionOutcome:
        return cls(False, f"Match {match_id} was not found.", OutcomeCode.NOT_FOUND)

    @classmethod
    def invalid(cls, message: str) -> ActionOutcome:
        return cls(False, message, OutcomeCode.INVALID)

    @classmethod
    def unrecognized(cls, custom_id: str) -> ActionOutcome:
        return cls(
            False, f"Unrecognized action: {custom_id!r}", OutcomeCode.UNRECOGNIZED
        )


__all__ = ["ActionOutcome", "OutcomeCode"]
