"""
Background enrichment of newly created alerts.

Detection hands each new alert to the EnrichmentWorker without waiting for
it. The worker runs one consumer over a bounded queue, so the local model
only ever sees one request at a time. When the queue is full the event is
dropped; the reconciliation pass of the batch analyzer picks the alert up
later.
"""

import asyncio
import logging
from typing import Optional, Set

from syncwatch.ai.models import EnrichmentEvent
from syncwatch.ai.suggestions import SuggestionService
from syncwatch.alerts.service import AlertService

logger = logging.getLogger(__name__)


class EnrichmentWorker:
    """Bounded queue plus a single consumer that attaches AI output to alerts."""

    def __init__(self, alert_service: AlertService, suggestions: SuggestionService, maxsize: int = 100):
        self._alert_service = alert_service
        self._suggestions = suggestions
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self._queued_ids: Set[int] = set()  # alert ids waiting in the queue
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, event: EnrichmentEvent) -> bool:
        """
        Queue an event without blocking.

        Returns False if it was dropped, or skipped because the same alert is
        already waiting in the queue.
        """
        if event.alert_id in self._queued_ids:
            logger.debug(f"Alert {event.alert_id} already queued for enrichment")
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Enrichment queue full, dropping alert {event.alert_id} "
                "(will be retried by reconciliation)"
            )
            return False
        self._queued_ids.add(event.alert_id)
        return True

    async def process(self, event: EnrichmentEvent) -> bool:
        """
        Enrich one alert. Never raises.

        Returns True when AI output was stored. A missing suggestion leaves
        the alert untouched so a later pass can retry it.
        """
        try:
            suggestion = await self._suggestions.generate_alert_suggestion(
                event.alert_type, event.severity, event.pr, event.task
            )
            if suggestion is None:
                logger.debug(f"No AI suggestion for alert {event.alert_id}, leaving it for reconciliation")
                return False

            recommendation = await self._suggestions.generate_action_recommendation(
                event.alert_type, event.severity, event.pr, event.task
            )
            stored = self._alert_service.update_enrichment(event.alert_id, suggestion, recommendation.to_json())
            if stored:
                logger.info(f"Enriched alert {event.alert_id} with AI suggestion")
            return stored
        except Exception as e:
            logger.error(f"Error enriching alert {event.alert_id}: {e}", exc_info=True)
            return False

    async def _run(self):
        logger.info("Enrichment worker started")
        while True:
            try:
                event = await self._queue.get()
            except asyncio.CancelledError:
                logger.info("Enrichment worker cancelled")
                break
            self._queued_ids.discard(event.alert_id)
            try:
                await self.process(event)
            finally:
                self._queue.task_done()
        logger.info("Enrichment worker stopped")

    async def join(self):
        """Wait until every queued event has been processed."""
        await self._queue.join()

    def start(self):
        if self._task and not self._task.done():
            logger.warning("Enrichment worker already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self):
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
