"""Environment configuration for the giveaway engine."""

from __future__ import annotations

import os
from dataclasses import dataclass

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

REQUIRED_VARS = ("DISCORD_TOKEN", "GIVEAWAY_TABLE_NAME")


def env_bool(name: str, *, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class EngineConfig:
    discord_token: str
    giveaway_table_name: str
    aws_region: str = "us-east-1"
    scheduler_interval_seconds: float = 60.0
    scheduler_max_concurrency: int = 1
    notify_rate_per_second: float = 30.0
    notify_timeout_seconds: float = 10.0
    publish_results: bool = True

    @classmethod
    def load(cls) -> EngineConfig:
        missing = [name for name in REQUIRED_VARS if not os.getenv(name)]
        if missing:
            raise RuntimeError(f"Missing env vars: {', '.join(missing)}")

        return cls(
            discord_token=os.environ["DISCORD_TOKEN"],
            giveaway_table_name=os.environ["GIVEAWAY_TABLE_NAME"],
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            scheduler_interval_seconds=env_float(
                "SCHEDULER_INTERVAL_SECONDS", default=60.0
            ),
            scheduler_max_concurrency=max(
                1, env_int("SCHEDULER_MAX_CONCURRENCY", default=1) or 1
            ),
            notify_rate_per_second=env_float("NOTIFY_RATE_PER_SECOND", default=30.0),
            notify_timeout_seconds=env_float("NOTIFY_TIMEOUT_SECONDS", default=10.0),
            publish_results=env_bool("PUBLISH_RESULTS", default=True),
        )


__all__ = ["EngineConfig", "REQUIRED_VARS", "env_bool", "env_float", "env_int"]
