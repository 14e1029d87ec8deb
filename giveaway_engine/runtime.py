"""Discord runtime that hosts the giveaway lifecycle engine."""

from __future__ import annotations

import logging

import boto3
import discord
from discord import app_commands

from .commands import register_commands
from .config import EngineConfig
from .lifecycle import GiveawayLifecycle
from .notifications import NotificationDispatcher
from .scheduler import LifecycleScheduler
from .storage import GiveawayStorage

log = logging.getLogger("giveaway-engine")


class GiveawayRuntime:
    def __init__(self, config: EngineConfig, *, table=None) -> None:
        intents = discord.Intents.default()
        intents.guilds = True

        self.config = config
        self.bot = discord.Client(intents=intents)
        self.tree = app_commands.CommandTree(self.bot)
        if table is None:
            dynamodb = boto3.resource("dynamodb", region_name=config.aws_region)
            table = dynamodb.Table(config.giveaway_table_name)
        self.storage = GiveawayStorage(table)
        self.dispatcher = NotificationDispatcher(
            self.bot,
            self.storage,
            rate_per_second=config.notify_rate_per_second,
            timeout_seconds=config.notify_timeout_seconds,
            publish_results=config.publish_results,
        )
        self.lifecycle = GiveawayLifecycle(
            self.storage, on_completed=self.dispatcher.enqueue
        )
        self.scheduler = LifecycleScheduler(
            self.storage,
            self.lifecycle,
            interval_seconds=config.scheduler_interval_seconds,
            max_concurrency=config.scheduler_max_concurrency,
        )
        register_commands(self.tree, self.lifecycle, self.storage)
        self.bot.event(self.on_ready)

    async def on_ready(self) -> None:
        await self.tree.sync()
        self.dispatcher.start()
        self.scheduler.start()
        log.info("Giveaway engine ready as %s", self.bot.user)

    async def shutdown(self) -> None:
        self.scheduler.stop()
        await self.dispatcher.stop()

    async def run(self) -> None:
        try:
            async with self.bot:
                await self.bot.start(self.config.discord_token)
        finally:
            await self.shutdown()

    @classmethod
    def create(cls) -> GiveawayRuntime:
        return cls(EngineConfig.load())


async def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    runtime = GiveawayRuntime.create()
    await runtime.run()


__all__ = ["GiveawayRuntime", "main"]
