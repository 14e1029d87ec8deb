from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from discord.ext import tasks

from .errors import IllegalTransitionError
from .lifecycle import Clock, GiveawayLifecycle
from .models import GiveawayStatus, utc_now
from .storage import GiveawayStorage

log = logging.getLogger("giveaway-scheduler")

DEFAULT_INTERVAL_SECONDS = 60.0


@dataclass(slots=True)
class TickReport:
    activated: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class LifecycleScheduler:
    """Periodic driver for time-based giveaway transitions.

    Owns one ``discord.ext.tasks`` loop. ``tick`` can also be awaited directly,
    which is how tests advance time with an injected clock.
    """

    def __init__(
        self,
        storage: GiveawayStorage,
        lifecycle: GiveawayLifecycle,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_concurrency: int = 1,
        clock: Clock = utc_now,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._storage = storage
        self._lifecycle = lifecycle
        self._clock = clock
        self._max_concurrency = max_concurrency
        self._tick_lock = asyncio.Lock()
        self._loop = tasks.loop(seconds=interval_seconds)(self._run)

    @property
    def interval_seconds(self) -> float:
        return self._loop.seconds

    def is_running(self) -> bool:
        return self._loop.is_running()

    def start(self) -> None:
        if self._loop.is_running():
            return
        log.info("Lifecycle scheduler started (every %ss)", self._loop.seconds)
        self._loop.start()

    def stop(self) -> None:
        if self._loop.is_running():
            self._loop.stop()
            log.info("Lifecycle scheduler stopping after current tick")

    async def _run(self) -> None:
        try:
            await self.tick()
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Scheduler tick failed: %s", exc)

    async def tick(self) -> TickReport:
        """Run one pass: activate due giveaways, then complete due ones."""
        async with self._tick_lock:
            now = self._clock()
            report = TickReport()

            try:
                report.activated = await self._lifecycle.activate_due()
            except Exception as exc:  # pylint: disable=broad-except
                log.exception("Failed to activate scheduled giveaways: %s", exc)
            if report.activated:
                log.info("Activated %s giveaways", len(report.activated))

            try:
                due = self._storage.list_due_giveaways(
                    GiveawayStatus.ACTIVE, "end_at", now
                )
            except Exception as exc:  # pylint: disable=broad-except
                log.exception("Failed to query giveaways due to finish: %s", exc)
                return report

            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def run_one(giveaway_id: str) -> None:
                async with semaphore:
                    await self._complete_one(giveaway_id, report)

            await asyncio.gather(*(run_one(g.giveaway_id) for g in due))
            return report

    async def _complete_one(self, giveaway_id: str, report: TickReport) -> None:
        log.info("Finishing giveaway %s", giveaway_id)
        try:
            await self._lifecycle.complete(giveaway_id)
        except IllegalTransitionError as exc:
            log.info("Giveaway %s skipped: %s", giveaway_id, exc)
            report.skipped.append(giveaway_id)
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Failed to finish giveaway %s: %s", giveaway_id, exc)
            report.failed.append(giveaway_id)
        else:
            report.completed.append(giveaway_id)


__all__ = ["DEFAULT_INTERVAL_SECONDS", "LifecycleScheduler", "TickReport"]
