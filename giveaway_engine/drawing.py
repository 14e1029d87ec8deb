"""Weighted winner selection over a giveaway's ticket pool.

Each eligible participation owns ``tickets_base + tickets_extra`` tickets and
every ticket is one equally likely draw. Once a participant wins, all of their
tickets leave the pool, which keeps the relative odds of everyone still in it
unchanged for the next place.

The pool is not materialised ticket by ticket. A Fenwick tree over per-owner
ticket counts maps a drawn ticket index to its owner and drops an owner's whole
weight in ``O(log n)``, which gives the same outcome as expanding every ticket
and filtering out the winner's tokens.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .errors import InvalidGiveawayError
from .models import Participation
from .randomness import secure_randint

log = logging.getLogger("giveaway-draw")

RandInt = Callable[[int, int], int]


@dataclass(slots=True, frozen=True)
class DrawnWinner:
    user_id: int
    place: int
    tickets_used: int
    display_name: str | None = None


class TicketPool:
    """Tickets of every eligible participant, removable per owner."""

    def __init__(self, participations: Iterable[Participation]) -> None:
        self._owners: list[Participation] = []
        self._positions: dict[int, int] = {}
        for participation in participations:
            if not participation.eligible or participation.total_tickets <= 0:
                continue
            if participation.user_id in self._positions:
                raise InvalidGiveawayError(
                    f"Duplicate participation for user {participation.user_id}"
                )
            self._positions[participation.user_id] = len(self._owners)
            self._owners.append(participation)

        size = len(self._owners)
        self._weights = [p.total_tickets for p in self._owners]
        self._tree = [0] * (size + 1)
        for idx, weight in enumerate(self._weights, start=1):
            self._tree[idx] += weight
            parent = idx + (idx & -idx)
            if parent <= size:
                self._tree[parent] += self._tree[idx]
        self._remaining = sum(self._weights)
        self._owners_left = size

    @property
    def remaining(self) -> int:
        """Number of tickets still in the pool."""
        return self._remaining

    @property
    def owner_count(self) -> int:
        """Distinct participants that still hold at least one ticket."""
        return self._owners_left

    def __len__(self) -> int:
        return self._remaining

    def owner_at(self, index: int) -> Participation:
        """Return the owner of the ``index``-th remaining ticket."""
        if not 0 <= index < self._remaining:
            raise IndexError(f"ticket index {index} out of range")
        position = 0
        step = 1 << (len(self._owners).bit_length())
        remaining = index
        while step:
            candidate = position + step
            if candidate <= len(self._owners) and self._tree[candidate] <= remaining:
                position = candidate
                remaining -= self._tree[candidate]
            step >>= 1
        return self._owners[position]

    def remove_owner(self, user_id: int) -> int:
        """Drop every ticket owned by ``user_id``; return how many were removed."""
        position = self._positions.get(user_id)
        if position is None:
            return 0
        weight = self._weights[position]
        if weight == 0:
            return 0
        self._weights[position] = 0
        idx = position + 1
        while idx <= len(self._owners):
            self._tree[idx] -= weight
            idx += idx & -idx
        self._remaining -= weight
        self._owners_left -= 1
        return weight

    def expand(self) -> list[int]:
        """Owner id of every remaining ticket, in pool order."""
        expanded: list[int] = []
        for owner, weight in zip(self._owners, self._weights):
            expanded.extend([owner.user_id] * weight)
        return expanded


def draw_winners(
    participations: Iterable[Participation],
    winners_count: int,
    *,
    randint: RandInt = secure_randint,
) -> list[DrawnWinner]:
    """Draw up to ``winners_count`` distinct winners weighted by tickets.

    Places run from 1 without gaps. The result is shorter than
    ``winners_count`` only when fewer participants hold tickets.
    """
    pool = TicketPool(participations)
    target = min(winners_count, pool.owner_count)
    selected: list[DrawnWinner] = []
    chosen: set[int] = set()

    while len(selected) < target and pool.remaining > 0:
        index = randint(0, pool.remaining - 1)
        owner = pool.owner_at(index)
        if owner.user_id not in chosen:
            chosen.add(owner.user_id)
            selected.append(
                DrawnWinner(
                    user_id=owner.user_id,
                    place=len(selected) + 1,
                    tickets_used=owner.total_tickets,
                    display_name=owner.display_name,
                )
            )
            log.debug(
                "Place %s -> user %s (%s tickets)",
                len(selected),
                owner.user_id,
                owner.total_tickets,
            )
        pool.remove_owner(owner.user_id)

    return selected


__all__ = ["DrawnWinner", "RandInt", "TicketPool", "draw_winners"]
