from __future__ import annotations

import re

MAX_GAMES_PER_PLAYER = 9


class InvalidValueError(ValueError):
    """Base exception for validation failures."""


class InvalidInteractionError(InvalidValueError):
    """Raised when an inbound interaction identifier cannot be trusted."""


_MATCH_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
_SCORE_PATTERN = re.compile(r"^(\d{1,2})-(\d{1,2})$")


def validate_match_id(raw: str) -> str:
    match_id = raw.strip()
    if not _MATCH_ID_PATTERN.match(match_id):
        raise InvalidInteractionError(f"Invalid match id: {raw!r}")
    return match_id


def parse_slot(raw: str | int) -> int:
    try:
        slot = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInteractionError(f"Player slot must be a number: {raw!r}") from exc
    if slot not in (1, 2):
        raise InvalidInteractionError(f"Player slot {slot} is outside range (1-2)")
    return slot


def parse_score(raw: str) -> tuple[int, int]:
    """Parse a ``"winner-loser"`` game count such as ``"2-1"``."""
    match = _SCORE_PATTERN.match(raw.strip())
    if not match:
        raise InvalidValueError(f"Score must look like 2-1, got {raw!r}")
    winner_games, loser_games = int(match.group(1)), int(match.group(2))
    if winner_games > MAX_GAMES_PER_PLAYER:
        raise InvalidValueError(
            f"Score {winner_games} is outside supported range (0-{MAX_GAMES_PER_PLAYER})"
        )
    if winner_games <= loser_games:
        raise InvalidValueError("The winner must have won more games than the loser")
    return winner_games, loser_games


def format_score(score: tuple[int, int] | list[int]) -> str:
    return f"{score[0]}-{score[1]}"


__all__ = [
    "InvalidValueError",
    "InvalidInteractionError",
    "MAX_GAMES_PER_PLAYER",
    "validate_match_id",
    "parse_slot",
    "parse_score",
    "format_score",
]
