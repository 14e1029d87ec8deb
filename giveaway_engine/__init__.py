"""Giveaway lifecycle and fair winner selection engine."""

from .drawing import DrawnWinner, TicketPool, draw_winners
from .errors import (
    GiveawayError,
    GiveawayNotFoundError,
    IllegalTransitionError,
    InvalidGiveawayError,
    PermissionDeniedError,
    PersistenceError,
)
from .lifecycle import CompletionResult, GiveawayLifecycle
from .models import (
    AnnouncementMessage,
    Giveaway,
    GiveawayStatus,
    Participation,
    ParticipationStatus,
    PublishResultsMode,
    Winner,
)
from .randomness import secure_randint
from .storage import GiveawayStorage

__all__ = [
    "AnnouncementMessage",
    "CompletionResult",
    "DrawnWinner",
    "Giveaway",
    "GiveawayError",
    "GiveawayLifecycle",
    "GiveawayNotFoundError",
    "GiveawayStatus",
    "GiveawayStorage",
    "IllegalTransitionError",
    "InvalidGiveawayError",
    "Participation",
    "ParticipationStatus",
    "PermissionDeniedError",
    "PersistenceError",
    "PublishResultsMode",
    "TicketPool",
    "Winner",
    "draw_winners",
    "secure_randint",
]
