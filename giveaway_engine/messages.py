"""Text rendering for winner messages, creator notices and result posts."""

from __future__ import annotations

from collections.abc import Sequence

from discord.utils import escape_markdown

from .models import Winner

MEDALS = {1: "🥇", 2: "🥈", 3: "🥉"}
DEFAULT_MEDAL = "🏅"
NO_WINNERS_TEXT = "No winners (no eligible participants)."


def medal(place: int) -> str:
    return MEDALS.get(place, DEFAULT_MEDAL)


def mask_display_name(name: str | None, user_id: int) -> str:
    """Public-safe version of a participant's name."""
    if not name:
        return f"User …{str(user_id)[-4:]}"
    name = name.strip()
    if len(name) <= 2:
        return name[:1] + "***"
    return name[0] + "***" + name[-1]


def winner_lines(winners: Sequence[Winner], *, limit: int | None = None) -> list[str]:
    """One ``medal place. mention`` line per winner, optionally truncated.

    ``limit`` caps the joined length; the last line then says how many more
    winners were left out.
    """
    lines = [f"{medal(w.place)} {w.place}. <@{w.user_id}>" for w in winners]
    if limit is None:
        return lines
    kept: list[str] = []
    used = 0
    for idx, line in enumerate(lines):
        left_after = len(lines) - idx - 1
        # room for this line plus the marker that would follow it
        needed = len(line)
        if left_after:
            needed += 1 + len(f"…and {left_after} more")
        if used + needed > limit:
            kept.append(f"…and {len(lines) - idx} more")
            break
        kept.append(line)
        used += len(line) + 1
    return kept


def format_winners_text(winners: Sequence[Winner], *, limit: int | None = None) -> str:
    if not winners:
        return NO_WINNERS_TEXT
    return "\n".join(winner_lines(winners, limit=limit))


def format_results_post(
    title: str, winners: Sequence[Winner], participants_count: int
) -> str:
    return (
        f"🎉 Giveaway **{escape_markdown(title)}** has ended!\n\n"
        f"🏆 **Winners:**\n{format_winners_text(winners)}\n\n"
        f"Total participants: {participants_count}\n"
        "Congratulations to the winners! 🎊"
    )


def format_randomizer_teaser(title: str, participants_count: int) -> str:
    return (
        f"🎉 Giveaway **{escape_markdown(title)}** has ended!\n\n"
        "🎲 The creator will reveal the winners live with the randomizer. "
        "Stay tuned!\n\n"
        f"Total participants: {participants_count}"
    )


def format_winner_message(title: str, place: int, total_winners: int) -> str:
    return (
        "🎉 **Congratulations, you won!**\n\n"
        f"You won the giveaway **{escape_markdown(title)}**!\n"
        f"🏆 Your place: **{place}** of {total_winners}\n\n"
        "Contact the organizer to claim your prize."
    )


def format_creator_summary(
    title: str, winners: Sequence[Winner], participants_count: int
) -> str:
    return (
        f"✅ Your giveaway **{escape_markdown(title)}** has finished.\n"
        f"Participants: {participants_count} · Winners: {len(winners)}\n\n"
        f"{format_winners_text(winners, limit=1800)}"
    )


__all__ = [
    "MEDALS",
    "NO_WINNERS_TEXT",
    "format_creator_summary",
    "format_randomizer_teaser",
    "format_results_post",
    "format_winner_message",
    "format_winners_text",
    "mask_display_name",
    "medal",
    "winner_lines",
]
