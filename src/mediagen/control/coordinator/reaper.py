"""Stale generation reaper.

Every reaper_interval the leader resolves generations stuck in
pending/processing past the stale threshold (see
generation_service.cleanup_stale).
"""

import logging

from mediagen.app.config import get_settings
from mediagen.app.metrics.collector import REAPER_CLEANED_TOTAL
from mediagen.control.coordinator.base import CoordinatorBase, CoordinatorType
from mediagen.infra.postgresql import get_session_factory
from mediagen.services import generation_service

logger = logging.getLogger(__name__)


class StaleGenerationReaper(CoordinatorBase):
    INTERVAL = get_settings().coordinator.reaper_interval
    COORDINATOR_TYPE = CoordinatorType.REAPER

    async def tick(self) -> None:
        async with get_session_factory()() as db:
            result = await generation_service.cleanup_stale(db)

        if result["synced"]:
            REAPER_CLEANED_TOTAL.labels(outcome="synced").inc(result["synced"])
        if result["cleaned"]:
            REAPER_CLEANED_TOTAL.labels(outcome="cleaned").inc(result["cleaned"])
        logger.debug("Reaper tick: %s", result)
