"""Best-effort fan-out after a giveaway finishes.

Completion only puts the giveaway id on a queue; a separate worker task sends
winner messages, the creator notice and the result posts. Every step stamps
what it delivered (``notified_at``, ``creator_notified_at``,
``results_published_at``), so ``process`` can be replayed for the same
giveaway without sending anything twice. Failures are logged and left
unstamped for a later replay; they never touch the completed draw.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import discord

from .lifecycle import Clock, CompletionResult
from .messages import (
    format_creator_summary,
    format_randomizer_teaser,
    format_results_post,
    format_winner_message,
    format_winners_text,
)
from .models import (
    AnnouncementMessage,
    Giveaway,
    GiveawayStatus,
    PublishResultsMode,
    Winner,
    utc_now,
)
from .storage import GiveawayStorage

log = logging.getLogger("giveaway-notify")

DEFAULT_RATE_PER_SECOND = 30.0
DEFAULT_TIMEOUT_SECONDS = 10.0


def closed_view() -> discord.ui.View:
    view = discord.ui.View()
    view.add_item(
        discord.ui.Button(
            label="Giveaway Closed",
            style=discord.ButtonStyle.grey,
            disabled=True,
        )
    )
    return view


class NotificationDispatcher:
    def __init__(
        self,
        bot: discord.Client,
        storage: GiveawayStorage,
        *,
        rate_per_second: float = DEFAULT_RATE_PER_SECOND,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        publish_results: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self._bot = bot
        self._storage = storage
        self._timeout = timeout_seconds
        self._publish_results = publish_results
        self._clock = clock
        self._min_interval = 1.0 / rate_per_second if rate_per_second > 0 else 0.0
        self._next_send_at = 0.0
        self._rate_lock = asyncio.Lock()
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: asyncio.Task | None = None

    # ----- Queue stage -----
    def enqueue(self, result: CompletionResult) -> None:
        """Schedule notifications for a completed giveaway; never blocks."""
        if result.status != GiveawayStatus.FINISHED:
            return
        self._queue.put_nowait(result.giveaway_id)
        log.debug("Queued notifications for %s", result.giveaway_id)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._worker = asyncio.create_task(self._work(), name="giveaway-notify")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def drain(self) -> None:
        """Wait until every queued giveaway has been processed."""
        await self._queue.join()

    async def _work(self) -> None:
        while True:
            giveaway_id = await self._queue.get()
            try:
                await self.process(giveaway_id)
            except Exception as exc:  # pylint: disable=broad-except
                log.exception("Notification run for %s failed: %s", giveaway_id, exc)
            finally:
                self._queue.task_done()

    # ----- Delivery stage -----
    async def process(self, giveaway_id: str) -> None:
        giveaway = self._storage.get_giveaway(giveaway_id, consistent=True)
        if giveaway is None or giveaway.status != GiveawayStatus.FINISHED:
            log.warning("Giveaway %s is not finished; nothing to announce", giveaway_id)
            return
        winners = self._storage.list_winners(giveaway_id, consistent=True)

        await self.notify_winners(giveaway, winners)
        await self.notify_creator(giveaway, winners)
        if self._publish_results:
            await self.publish_results(giveaway, winners)

    async def notify_winners(self, giveaway: Giveaway, winners: Sequence[Winner]) -> int:
        """Message every winner not yet notified; return how many succeeded."""
        delivered = 0
        for winner in winners:
            if winner.notified_at is not None:
                continue
            content = format_winner_message(giveaway.title, winner.place, len(winners))
            if not await self._send_direct(winner.user_id, content):
                continue
            if self._storage.mark_winner_notified(
                giveaway.giveaway_id, winner.user_id, self._clock()
            ):
                delivered += 1
        log.info(
            "Notified %s/%s winners of %s",
            delivered,
            len(winners),
            giveaway.giveaway_id,
        )
        return delivered

    async def notify_creator(self, giveaway: Giveaway, winners: Sequence[Winner]) -> bool:
        if giveaway.creator_notified_at is not None:
            return False
        content = format_creator_summary(
            giveaway.title, winners, giveaway.total_participants
        )
        if not await self._send_direct(giveaway.owner_id, content):
            return False
        return self._storage.mark_creator_notified(giveaway.giveaway_id, self._clock())

    async def publish_results(self, giveaway: Giveaway, winners: Sequence[Winner]) -> bool:
        if giveaway.results_published_at is not None:
            return False

        mode = giveaway.publish_results_mode
        if mode == PublishResultsMode.EDIT_START_POST:
            targets = len(giveaway.announcement_messages)
            posted = 0
            for message in giveaway.announcement_messages:
                if await self._close_announcement(message, winners):
                    posted += 1
        else:
            if mode == PublishResultsMode.RANDOMIZER:
                content = format_randomizer_teaser(
                    giveaway.title, giveaway.total_participants
                )
            else:
                content = format_results_post(
                    giveaway.title, winners, giveaway.total_participants
                )
            channel_ids = giveaway.result_channel_targets()
            targets = len(channel_ids)
            posted = 0
            for channel_id in channel_ids:
                if await self._post(channel_id, content):
                    posted += 1
            for message in giveaway.announcement_messages:
                await self._close_announcement(message, None)

        if targets and not posted:
            log.warning("Results for %s were not published anywhere", giveaway.giveaway_id)
            return False
        log.info(
            "Published results for %s (%s, %s/%s targets)",
            giveaway.giveaway_id,
            mode,
            posted,
            targets,
        )
        return self._storage.mark_results_published(giveaway.giveaway_id, self._clock())

    # ----- Discord helpers -----
    async def _throttle(self) -> None:
        if not self._min_interval:
            return
        async with self._rate_lock:
            loop = asyncio.get_running_loop()
            wait = self._next_send_at - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_send_at = max(loop.time(), self._next_send_at) + self._min_interval

    async def _send_direct(self, user_id: int, content: str) -> bool:
        await self._throttle()
        try:
            user = self._bot.get_user(user_id)
            if user is None:
                user = await asyncio.wait_for(
                    self._bot.fetch_user(user_id), timeout=self._timeout
                )
            await asyncio.wait_for(user.send(content), timeout=self._timeout)
        except discord.Forbidden:
            log.warning("User %s does not accept direct messages", user_id)
            return False
        except discord.NotFound:
            log.warning("User %s not found", user_id)
            return False
        except discord.HTTPException as exc:
            log.warning("Failed to message user %s: %s", user_id, exc)
            return False
        except TimeoutError:
            log.warning("Timed out messaging user %s", user_id)
            return False
        return True

    async def _resolve_channel(self, channel_id: int) -> discord.abc.Messageable | None:
        channel = self._bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await asyncio.wait_for(
                    self._bot.fetch_channel(channel_id), timeout=self._timeout
                )
            except discord.NotFound:
                log.warning("Channel %s not found", channel_id)
                return None
            except discord.Forbidden:
                log.warning(
                    "No access to channel %s – check bot permissions", channel_id
                )
                return None
            except discord.HTTPException as exc:
                log.warning("Cannot fetch channel %s – HTTP error: %s", channel_id, exc)
                return None
            except TimeoutError:
                log.warning("Timed out fetching channel %s", channel_id)
                return None
        if not isinstance(channel, discord.abc.Messageable):
            log.warning("Channel %s is not messageable", channel_id)
            return None
        return channel

    async def _post(self, channel_id: int, content: str) -> bool:
        channel = await self._resolve_channel(channel_id)
        if channel is None:
            return False
        await self._throttle()
        try:
            await asyncio.wait_for(channel.send(content), timeout=self._timeout)
        except discord.HTTPException as exc:
            log.warning("Failed to post results to channel %s: %s", channel_id, exc)
            return False
        except TimeoutError:
            log.warning("Timed out posting results to channel %s", channel_id)
            return False
        return True

    async def _close_announcement(
        self, message: AnnouncementMessage, winners: Sequence[Winner] | None
    ) -> bool:
        """Disable the entry button; with ``winners`` also append the results."""
        channel = await self._resolve_channel(message.channel_id)
        if channel is None:
            return False
        await self._throttle()
        try:
            msg = await asyncio.wait_for(
                channel.fetch_message(message.message_id), timeout=self._timeout
            )
            embed = msg.embeds[0] if msg.embeds else discord.Embed()
            if winners is not None:
                embed.add_field(
                    name="Winners",
                    value=format_winners_text(winners, limit=1000),
                    inline=False,
                )
            embed.timestamp = None
            await asyncio.wait_for(
                msg.edit(embed=embed, view=closed_view()), timeout=self._timeout
            )
        except discord.HTTPException as exc:
            log.warning(
                "Failed to update giveaway message %s: %s", message.message_id, exc
            )
            return False
        except TimeoutError:
            log.warning("Timed out updating giveaway message %s", message.message_id)
            return False
        return True


__all__ = ["NotificationDispatcher", "closed_view"]
