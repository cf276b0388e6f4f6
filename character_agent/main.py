from __future__ import annotations

import asyncio
import logging
import sys

from character_agent.config import Settings, get_settings
from character_agent.logging import setup_logging
from character_agent.runtime import AgentRuntime

logger = logging.getLogger(__name__)


async def run_agent(settings: Settings) -> None:
    runtime = AgentRuntime.from_settings(settings)
    await runtime.run_forever()


def main() -> int:
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Starting Character Extraction Agent...")
    try:
        asyncio.run(run_agent(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 0
    except Exception as e:
        logger.error("Error in main function: %s", e, exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
