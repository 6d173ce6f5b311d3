"""Tournament match synchronization and lifecycle core."""

from .background import BackgroundTasks
from .interactions import (
    ActionKind,
    Actor,
    InteractionDispatcher,
    ParsedAction,
    UnrecognizedActionError,
    build_dispatcher,
    create_interaction_id,
    parse_interaction_id,
)
from .lifecycle import MatchLifecycleService, ThreadGateway, build_thread_title
from .models import (
    Event,
    Match,
    MatchPlayer,
    MatchState,
    Tournament,
    TournamentState,
)
from .outcomes import ActionOutcome, OutcomeCode
from .scheduler import PollScheduler, PollStatus, TriggerResult, calculate_poll_interval
from .storage import MatchStorage
from .synchronizer import (
    MatchSynchronizer,
    SyncResult,
    TournamentNotFoundError,
    reconcile_set,
)
from .validation import InvalidInteractionError, InvalidValueError

__all__ = [
    "BackgroundTasks",
    "ActionKind",
    "Actor",
    "InteractionDispatcher",
    "ParsedAction",
    "UnrecognizedActionError",
    "build_dispatcher",
    "create_interaction_id",
    "parse_interaction_id",
    "MatchLifecycleService",
    "ThreadGateway",
    "build_thread_title",
    "Event",
    "Match",
    "MatchPlayer",
    "MatchState",
    "Tournament",
    "TournamentState",
    "ActionOutcome",
    "OutcomeCode",
    "PollScheduler",
    "PollStatus",
    "TriggerResult",
    "calculate_poll_interval",
    "MatchStorage",
    "MatchSynchronizer",
    "SyncResult",
    "TournamentNotFoundError",
    "reconcile_set",
    "InvalidInteractionError",
    "InvalidValueError",
]
