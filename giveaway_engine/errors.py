from __future__ import annotations


class GiveawayError(Exception):
    """Base exception for giveaway engine failures."""


class GiveawayNotFoundError(GiveawayError):
    def __init__(self, giveaway_id: str) -> None:
        super().__init__(f"Giveaway {giveaway_id} not found")
        self.giveaway_id = giveaway_id


class IllegalTransitionError(GiveawayError):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Cannot move giveaway from {current} to {target}"
        )
        self.current = current
        self.target = target


class PermissionDeniedError(GiveawayError):
    """Raised when someone other than the owner tries to finish or cancel a giveaway."""


class PersistenceError(GiveawayError):
    """Raised when a storage write fails and nothing was committed."""


class InvalidGiveawayError(GiveawayError, ValueError):
    """Raised for giveaway or participation data that breaks model rules."""


__all__ = [
    "GiveawayError",
    "GiveawayNotFoundError",
    "IllegalTransitionError",
    "PermissionDeniedError",
    "PersistenceError",
    "InvalidGiveawayError",
]
