"""Control plane: background work that runs next to the API.

- StaleGenerationReaper: leader-elected, one instance at a time
- GenerationQueueWorker: every process, only in queue dispatch mode
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from mediagen.app.config import get_settings
from mediagen.control.coordinator import StaleGenerationReaper
from mediagen.control.worker import GenerationQueueWorker
from mediagen.core.logging_schema import LogEvent
from mediagen.infra.pg_leader import SQLAlchemyLeaderElection
from mediagen.infra.redis import GenerationQueue
from mediagen.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


async def run_control_plane(
    engine: AsyncEngine,
    queue: GenerationQueue,
    registry: ProviderRegistry,
) -> None:
    """Run the reaper and, in queue mode, the queue workers until cancelled."""
    dispatcher_config = get_settings().dispatcher

    async def reaper_runner() -> None:
        # Lock connection only; ticks use pooled sessions
        async with engine.connect() as conn:
            leader = SQLAlchemyLeaderElection(conn, StaleGenerationReaper.COORDINATOR_TYPE)
            await StaleGenerationReaper(leader).run()

    runners = [reaper_runner()]
    if dispatcher_config.mode == "queue":
        runners += [
            GenerationQueueWorker(queue, registry).run()
            for _ in range(dispatcher_config.workers)
        ]

    try:
        await asyncio.gather(*runners)
    except asyncio.CancelledError:
        logger.info("Control plane cancelled", extra={"event": LogEvent.APP_STOPPED})
        raise
    except Exception as e:
        logger.exception(
            "Control plane error",
            extra={"event": LogEvent.APP_STOPPED, "error": str(e)},
        )
