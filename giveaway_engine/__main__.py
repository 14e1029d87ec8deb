"""Entry point for running the giveaway engine via python -m giveaway_engine"""

import asyncio

from giveaway_engine.runtime import main


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
