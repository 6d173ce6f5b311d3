"""start.gg bracket service client."""

from .cache import ResponseCache
from .client import DEFAULT_PAGE_SIZE, STARTGG_API_URL, StartGGClient
from .errors import (
    AuthError,
    GraphQLError,
    RateLimitError,
    StartGGError,
    is_rate_limit_error,
)
from .retry import compute_backoff_delay, with_retry
from .types import (
    PLAYABLE_SET_STATES,
    BracketSet,
    Entrant,
    Page,
    Participant,
    RemoteEvent,
    RemoteTournament,
    RemoteTournamentState,
    ReportAck,
    SetSlot,
    SetState,
)

__all__ = [
    "ResponseCache",
    "StartGGClient",
    "STARTGG_API_URL",
    "DEFAULT_PAGE_SIZE",
    "AuthError",
    "GraphQLError",
    "RateLimitError",
    "StartGGError",
    "is_rate_limit_error",
    "compute_backoff_delay",
    "with_retry",
    "PLAYABLE_SET_STATES",
    "BracketSet",
    "Entrant",
    "Page",
    "Participant",
    "RemoteEvent",
    "RemoteTournament",
    "RemoteTournamentState",
    "ReportAck",
    "SetSlot",
    "SetState",
]
