"""Read-only projections of giveaway state for public display."""

from __future__ import annotations

from collections.abc import Sequence

from .messages import mask_display_name
from .models import Giveaway, GiveawayStatus, Winner, format_timestamp
from .storage import GiveawayStorage


def _iso(value) -> str | None:
    return format_timestamp(value) if value is not None else None


def status_view(
    giveaway: Giveaway, participants_count: int, selected_winners_count: int
) -> dict[str, object]:
    return {
        "id": giveaway.giveaway_id,
        "status": giveaway.status,
        "title": giveaway.title,
        "winners_count": giveaway.winners_count,
        "participants_count": participants_count,
        "selected_winners_count": selected_winners_count,
        "starts_at": _iso(giveaway.start_at),
        "ends_at": _iso(giveaway.end_at),
    }


def winner_view(winner: Winner) -> dict[str, object]:
    return {
        "place": winner.place,
        "tickets_used": winner.tickets_used,
        "selected_at": _iso(winner.selected_at),
        "user": {
            "id": str(winner.user_id),
            "display_name": mask_display_name(winner.display_name, winner.user_id),
        },
    }


def winners_view(
    giveaway: Giveaway, winners: Sequence[Winner], participants_count: int
) -> dict[str, object]:
    """Winner list, only populated once the giveaway has finished."""
    if giveaway.status != GiveawayStatus.FINISHED:
        return {
            "status": giveaway.status,
            "title": giveaway.title,
            "winners": [],
            "total_participants": participants_count,
            "message": "Giveaway has not finished yet",
        }
    return {
        "status": giveaway.status,
        "title": giveaway.title,
        "winners": [winner_view(w) for w in sorted(winners, key=lambda w: w.place)],
        "total_participants": participants_count,
        "finished_at": _iso(giveaway.finished_at),
    }


def load_status(storage: GiveawayStorage, giveaway: Giveaway) -> dict[str, object]:
    return status_view(
        giveaway,
        storage.count_participations(giveaway.giveaway_id),
        storage.count_winners(giveaway.giveaway_id),
    )


def load_winners(storage: GiveawayStorage, giveaway: Giveaway) -> dict[str, object]:
    winners = (
        storage.list_winners(giveaway.giveaway_id)
        if giveaway.status == GiveawayStatus.FINISHED
        else []
    )
    return winners_view(
        giveaway, winners, storage.count_participations(giveaway.giveaway_id)
    )


__all__ = [
    "load_status",
    "load_winners",
    "status_view",
    "winner_view",
    "winners_view",
]
