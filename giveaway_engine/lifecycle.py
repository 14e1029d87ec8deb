from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Final

from .drawing import RandInt, draw_winners
from .errors import (
    GiveawayNotFoundError,
    IllegalTransitionError,
    InvalidGiveawayError,
    PermissionDeniedError,
)
from .models import MAX_WINNERS, Giveaway, GiveawayStatus, Winner, utc_now
from .randomness import secure_randint
from .storage import GiveawayStorage

log = logging.getLogger("giveaway-engine")

Clock = Callable[[], datetime]

TRANSITIONS: Final[dict[str, frozenset[str]]] = {
    GiveawayStatus.DRAFT: frozenset(
        {GiveawayStatus.PENDING_CONFIRM, GiveawayStatus.SCHEDULED, GiveawayStatus.ACTIVE}
    ),
    GiveawayStatus.PENDING_CONFIRM: frozenset(
        {GiveawayStatus.SCHEDULED, GiveawayStatus.ACTIVE, GiveawayStatus.DRAFT}
    ),
    GiveawayStatus.SCHEDULED: frozenset(
        {GiveawayStatus.ACTIVE, GiveawayStatus.CANCELLED}
    ),
    GiveawayStatus.ACTIVE: frozenset(
        {GiveawayStatus.FINISHED, GiveawayStatus.CANCELLED}
    ),
    GiveawayStatus.FINISHED: frozenset(),
    GiveawayStatus.CANCELLED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if can_transition(current, target):
        return
    if target == GiveawayStatus.FINISHED:
        raise IllegalTransitionError(
            current,
            target,
            f"Only an active giveaway can be finished (current status: {current})",
        )
    raise IllegalTransitionError(current, target)


@dataclass(slots=True)
class CompletionResult:
    giveaway_id: str
    title: str
    status: str
    participants_count: int
    winners: list[Winner] = field(default_factory=list)

    @property
    def winners_count(self) -> int:
        return len(self.winners)


CompletionListener = Callable[[CompletionResult], None]


class GiveawayLifecycle:
    """Status transitions for giveaways, including the winner draw.

    ``complete`` is the single entry point for ACTIVE -> FINISHED. The
    scheduler and the manual finish command both go through it, so both share
    the compare-and-set on ``status`` inside the completion transaction.
    """

    def __init__(
        self,
        storage: GiveawayStorage,
        *,
        clock: Clock = utc_now,
        randint: RandInt = secure_randint,
        on_completed: CompletionListener | None = None,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._randint = randint
        self._on_completed = on_completed

    def _load(self, giveaway_id: str) -> Giveaway:
        giveaway = self._storage.get_giveaway(giveaway_id, consistent=True)
        if giveaway is None:
            raise GiveawayNotFoundError(giveaway_id)
        return giveaway

    def _conflict(self, giveaway_id: str, target: str) -> IllegalTransitionError:
        current = self._storage.get_giveaway(giveaway_id, consistent=True)
        status = current.status if current else "MISSING"
        log.info(
            "Giveaway %s changed concurrently (now %s); %s skipped",
            giveaway_id,
            status,
            target,
        )
        if target == GiveawayStatus.FINISHED:
            return IllegalTransitionError(
                status,
                target,
                f"Only an active giveaway can be finished (current status: {status})",
            )
        return IllegalTransitionError(status, target)

    def _activate(self, giveaway: Giveaway, now: datetime) -> None:
        ensure_transition(giveaway.status, GiveawayStatus.ACTIVE)
        if giveaway.start_at is None or giveaway.start_at > now:
            raise IllegalTransitionError(
                giveaway.status,
                GiveawayStatus.ACTIVE,
                f"Giveaway {giveaway.giveaway_id} is not due to start yet",
            )
        if not self._storage.activate_giveaway(giveaway.giveaway_id, now):
            raise self._conflict(giveaway.giveaway_id, GiveawayStatus.ACTIVE)
        log.info("Giveaway %s activated", giveaway.giveaway_id)

    async def activate(self, giveaway_id: str) -> None:
        """SCHEDULED -> ACTIVE once the start time has passed."""
        self._activate(self._load(giveaway_id), self._clock())

    async def activate_due(self) -> list[str]:
        """Activate every SCHEDULED giveaway whose start time has passed.

        Giveaways that changed status since the scan are skipped.
        """
        now = self._clock()
        activated: list[str] = []
        due = self._storage.list_due_giveaways(GiveawayStatus.SCHEDULED, "start_at", now)
        for giveaway in due:
            try:
                self._activate(giveaway, now)
            except IllegalTransitionError as exc:
                log.info("Giveaway %s not activated: %s", giveaway.giveaway_id, exc)
                continue
            activated.append(giveaway.giveaway_id)
        return activated

    async def cancel(self, giveaway_id: str, requested_by: int | None = None) -> None:
        """Cancel a SCHEDULED or ACTIVE giveaway.

        ``requested_by`` is the Discord user asking for it; when given it must
        be the owner.
        """
        now = self._clock()
        giveaway = self._load(giveaway_id)
        if requested_by is not None and giveaway.owner_id != requested_by:
            raise PermissionDeniedError(
                f"Only the owner can cancel giveaway {giveaway_id}"
            )
        ensure_transition(giveaway.status, GiveawayStatus.CANCELLED)
        if not self._storage.cancel_giveaway(
            giveaway_id, (GiveawayStatus.SCHEDULED, GiveawayStatus.ACTIVE), now
        ):
            raise self._conflict(giveaway_id, GiveawayStatus.CANCELLED)
        log.info("Giveaway %s cancelled", giveaway_id)

    async def finish_now(self, giveaway_id: str, requested_by: int) -> CompletionResult:
        """Manual finish requested by the giveaway owner."""
        giveaway = self._load(giveaway_id)
        if giveaway.owner_id != requested_by:
            raise PermissionDeniedError(
                f"Only the owner can finish giveaway {giveaway_id}"
            )
        result = await self.complete(giveaway_id)
        log.info(
            "Giveaway %s manually finished by %s (%s winners)",
            giveaway_id,
            requested_by,
            result.winners_count,
        )
        return result

    async def complete(self, giveaway_id: str) -> CompletionResult:
        """Draw winners for an ACTIVE giveaway and persist them atomically.

        Raises IllegalTransitionError when the giveaway is not ACTIVE, either at
        the initial read or at commit time. A giveaway without eligible
        participants is cancelled instead of finished.
        """
        now = self._clock()
        giveaway = self._load(giveaway_id)
        ensure_transition(giveaway.status, GiveawayStatus.FINISHED)
        if giveaway.winners_count > MAX_WINNERS:
            raise InvalidGiveawayError(
                f"Giveaway {giveaway_id} asks for {giveaway.winners_count} winners; "
                f"at most {MAX_WINNERS} can be drawn"
            )

        participations = self._storage.list_participations(
            giveaway_id, eligible_only=True, consistent=True
        )
        if not participations:
            if not self._storage.cancel_giveaway(
                giveaway_id, (GiveawayStatus.ACTIVE,), now
            ):
                raise self._conflict(giveaway_id, GiveawayStatus.CANCELLED)
            log.info("Giveaway %s cancelled: no eligible participants", giveaway_id)
            return CompletionResult(
                giveaway_id=giveaway_id,
                title=giveaway.title,
                status=GiveawayStatus.CANCELLED,
                participants_count=0,
            )

        drawn = draw_winners(
            participations, giveaway.winners_count, randint=self._randint
        )
        winners = [
            Winner(
                giveaway_id=giveaway_id,
                user_id=entry.user_id,
                place=entry.place,
                tickets_used=entry.tickets_used,
                selected_at=now,
                display_name=entry.display_name,
            )
            for entry in drawn
        ]
        if not self._storage.complete_giveaway(
            giveaway_id,
            winners,
            total_participants=len(participations),
            now=now,
        ):
            raise self._conflict(giveaway_id, GiveawayStatus.FINISHED)

        log.info(
            "Giveaway %s finished with %s winners from %s participants",
            giveaway_id,
            len(winners),
            len(participations),
        )
        result = CompletionResult(
            giveaway_id=giveaway_id,
            title=giveaway.title,
            status=GiveawayStatus.FINISHED,
            participants_count=len(participations),
            winners=winners,
        )
        self._hand_off(result)
        return result

    def _hand_off(self, result: CompletionResult) -> None:
        if self._on_completed is None:
            return
        try:
            self._on_completed(result)
        except Exception as exc:  # pylint: disable=broad-except
            log.exception(
                "Failed to queue notifications for %s: %s", result.giveaway_id, exc
            )


__all__ = [
    "TRANSITIONS",
    "Clock",
    "CompletionListener",
    "CompletionResult",
    "GiveawayLifecycle",
    "can_transition",
    "ensure_transition",
]
