from __future__ import annotations

import logging

import discord
from discord import app_commands

from .errors import (
    GiveawayNotFoundError,
    IllegalTransitionError,
    PermissionDeniedError,
)
from .lifecycle import GiveawayLifecycle
from .messages import format_winners_text, medal
from .models import GiveawayStatus
from .read_models import load_status, load_winners
from .storage import GiveawayStorage

log = logging.getLogger("giveaway-commands")


async def handle_finish(
    interaction: discord.Interaction, giveaway_id: str, lifecycle: GiveawayLifecycle
) -> None:
    await interaction.response.defer(ephemeral=True)
    try:
        result = await lifecycle.finish_now(giveaway_id, interaction.user.id)
    except GiveawayNotFoundError:
        await interaction.followup.send("Giveaway not found.", ephemeral=True)
        return
    except PermissionDeniedError:
        await interaction.followup.send(
            "Only the giveaway owner can finish it.", ephemeral=True
        )
        return
    except IllegalTransitionError as exc:
        await interaction.followup.send(f"❌ {exc}", ephemeral=True)
        return
    except Exception as exc:  # pylint: disable=broad-except
        log.exception("Manual finish of %s failed: %s", giveaway_id, exc)
        await interaction.followup.send(
            "Failed to finish the giveaway. It is still active; try again shortly.",
            ephemeral=True,
        )
        return

    if result.status == GiveawayStatus.CANCELLED:
        await interaction.followup.send(
            "Giveaway cancelled: there were no eligible participants. Winners: 0",
            ephemeral=True,
        )
        return
    await interaction.followup.send(
        f"🎉 Giveaway finished! Winners ({result.winners_count}):\n"
        f"{format_winners_text(result.winners, limit=1800)}",
        ephemeral=True,
    )


async def handle_cancel(
    interaction: discord.Interaction, giveaway_id: str, lifecycle: GiveawayLifecycle
) -> None:
    await interaction.response.defer(ephemeral=True)
    try:
        await lifecycle.cancel(giveaway_id, requested_by=interaction.user.id)
    except GiveawayNotFoundError:
        await interaction.followup.send("Giveaway not found.", ephemeral=True)
        return
    except PermissionDeniedError:
        await interaction.followup.send(
            "Only the giveaway owner can cancel it.", ephemeral=True
        )
        return
    except IllegalTransitionError as exc:
        await interaction.followup.send(f"❌ {exc}", ephemeral=True)
        return
    except Exception as exc:  # pylint: disable=broad-except
        log.exception("Cancelling %s failed: %s", giveaway_id, exc)
        await interaction.followup.send(
            "Failed to cancel the giveaway. Try again shortly.", ephemeral=True
        )
        return
    await interaction.followup.send("Giveaway cancelled.", ephemeral=True)


async def handle_status(
    interaction: discord.Interaction, giveaway_id: str, storage: GiveawayStorage
) -> None:
    giveaway = storage.get_giveaway(giveaway_id)
    if giveaway is None:
        await interaction.response.send_message("Giveaway not found.", ephemeral=True)
        return
    view = load_status(storage, giveaway)
    embed = discord.Embed(title=giveaway.title)
    embed.add_field(name="Status", value=view["status"], inline=True)
    embed.add_field(name="Winners", value=view["winners_count"], inline=True)
    embed.add_field(name="Participants", value=view["participants_count"], inline=True)
    if view["starts_at"]:
        embed.add_field(name="Starts", value=view["starts_at"], inline=True)
    if view["ends_at"]:
        embed.add_field(name="Ends", value=view["ends_at"], inline=True)
    await interaction.response.send_message(embed=embed, ephemeral=True)


async def handle_winners(
    interaction: discord.Interaction, giveaway_id: str, storage: GiveawayStorage
) -> None:
    giveaway = storage.get_giveaway(giveaway_id)
    if giveaway is None:
        await interaction.response.send_message("Giveaway not found.", ephemeral=True)
        return
    view = load_winners(storage, giveaway)
    if "message" in view:
        await interaction.response.send_message(
            f"{view['message']} (status: {view['status']}).", ephemeral=True
        )
        return
    lines = [
        f"{medal(entry['place'])} {entry['place']}. {entry['user']['display_name']}"
        for entry in view["winners"]
    ]
    embed = discord.Embed(
        title=f"🏆 {giveaway.title}",
        description="\n".join(lines) if lines else "No winners.",
    )
    embed.set_footer(text=f"{view['total_participants']} participants")
    await interaction.response.send_message(embed=embed, ephemeral=True)


def register_commands(
    tree: app_commands.CommandTree,
    lifecycle: GiveawayLifecycle,
    storage: GiveawayStorage,
) -> None:
    @tree.command(
        name="giveaway_finish",
        description="Finish your active giveaway now and draw the winners",
    )
    @app_commands.describe(giveaway_id="Giveaway identifier")
    async def giveaway_finish(interaction: discord.Interaction, giveaway_id: str) -> None:
        await handle_finish(interaction, giveaway_id, lifecycle)

    @tree.command(name="giveaway_cancel", description="Cancel your giveaway")
    @app_commands.describe(giveaway_id="Giveaway identifier")
    async def giveaway_cancel(interaction: discord.Interaction, giveaway_id: str) -> None:
        await handle_cancel(interaction, giveaway_id, lifecycle)

    @tree.command(name="giveaway_status", description="Show a giveaway's status")
    @app_commands.describe(giveaway_id="Giveaway identifier")
    async def giveaway_status(interaction: discord.Interaction, giveaway_id: str) -> None:
        await handle_status(interaction, giveaway_id, storage)

    @tree.command(name="giveaway_winners", description="Show a finished giveaway's winners")
    @app_commands.describe(giveaway_id="Giveaway identifier")
    async def giveaway_winners(interaction: discord.Interaction, giveaway_id: str) -> None:
        await handle_winners(interaction, giveaway_id, storage)


__all__ = [
    "handle_cancel",
    "handle_finish",
    "handle_status",
    "handle_winners",
    "register_commands",
]
