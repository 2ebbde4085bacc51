"""Queue worker: submits queued generations when a provider has capacity.

Runs in every process when dispatcher.mode is "queue"; no leadership
needed since BRPOP hands each job to exactly one consumer.
"""

import asyncio
import logging
from typing import Any

from mediagen.app.config import get_settings
from mediagen.app.metrics.collector import QUEUE_REQUEUES_TOTAL
from mediagen.core.domain import ACTIVE_STATUSES
from mediagen.core.logging_schema import LogEvent
from mediagen.core.models import Generation
from mediagen.infra.postgresql import get_session_factory
from mediagen.infra.redis import GenerationQueue
from mediagen.providers.catalog import get_model
from mediagen.providers.chain import NoProvidersError, resolve_chain
from mediagen.providers.registry import AllProvidersFailedError, ProviderRegistry
from mediagen.services import generation_service

logger = logging.getLogger(__name__)

_dispatcher_config = get_settings().dispatcher


class GenerationQueueWorker:
    def __init__(self, queue: GenerationQueue, registry: ProviderRegistry) -> None:
        self._queue = queue
        self._registry = registry
        self._running = False

    def stop(self) -> None:
        self._running = False

    async def run(self) -> None:
        self._running = True
        logger.info("Starting queue worker", extra={"event": LogEvent.APP_STARTED})

        while self._running:
            try:
                job = await self._queue.pop(_dispatcher_config.brpop_timeout)
                if job is not None:
                    await self.process(job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(
                    "Queue worker error: %s",
                    e,
                    extra={"event": LogEvent.OPERATION_FAILED},
                )
                await asyncio.sleep(_dispatcher_config.error_pause)

        logger.info("Queue worker stopped", extra={"event": LogEvent.APP_STOPPED})

    async def _requeue(self, job: dict[str, Any]) -> None:
        """All providers busy: wait, then put the job back."""
        await asyncio.sleep(_dispatcher_config.requeue_delay)
        await self._queue.push(job)
        QUEUE_REQUEUES_TOTAL.inc()
        logger.debug(
            "All providers busy, requeued",
            extra={"event": LogEvent.JOB_REQUEUED, "generation_id": job["generation_id"]},
        )

    async def process(self, job: dict[str, Any]) -> None:
        start_from = int(job.get("start_from", 0))

        async with get_session_factory()() as db:
            generation = await db.get(Generation, job["generation_id"])
            if generation is None:
                logger.warning(
                    "Queued generation not found",
                    extra={"event": LogEvent.JOB_INVALID, "generation_id": job["generation_id"]},
                )
                return

            # Cancelled, reaped or already submitted by an earlier copy of the job
            if generation.status not in ACTIVE_STATUSES or generation.prediction_id:
                return

            model = get_model(generation.model_id)
            if model is None:
                await generation_service.mark_failed(
                    db, generation, f"Unknown model: {generation.model_id}"
                )
                return

            try:
                chain = resolve_chain(model)
            except NoProvidersError as e:
                await generation_service.mark_dispatch_failed(db, generation, str(e))
                return

            picked = await self._registry.dispatcher.pick(chain[start_from:])
            if picked is None:
                await self._requeue(job)
                return
            _, offset = picked

            try:
                dispatched = await self._registry.generate(
                    generation_service.generation_params(generation, model),
                    start_from=start_from + offset,
                )
            except (NoProvidersError, AllProvidersFailedError) as e:
                await generation_service.mark_dispatch_failed(db, generation, str(e))
                return

            await generation_service.record_dispatch(db, generation, dispatched)
