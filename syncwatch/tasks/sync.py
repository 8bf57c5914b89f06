"""Mirrors tasks from every registered PM connector into the local store."""

import logging
from typing import List

from syncwatch.tasks.models import TaskSyncResult
from syncwatch.tasks.repository import TaskRepository
from syncwatch.tools.registry import ConnectorRegistry

logger = logging.getLogger(__name__)


class TaskSyncService:
    """Pulls tasks from each PM gateway and upserts them."""

    def __init__(self, registry: ConnectorRegistry, repository: TaskRepository):
        self._registry = registry
        self._repository = repository

    async def sync_all(self) -> List[TaskSyncResult]:
        """Sync every connector. A failing connector is reported, not raised."""
        results: List[TaskSyncResult] = []
        for connector_type, gateway in self._registry.pm_gateways.items():
            try:
                tasks = await gateway.fetch_tasks()
                written = self._repository.upsert(tasks)
                logger.info(f"Synced {written} task(s) from {connector_type.value}")
                results.append(TaskSyncResult(source_system=connector_type, success=True, tasks_synced=written))
            except Exception as e:
                logger.error(f"Task sync failed for {connector_type.value}: {e}", exc_info=True)
                results.append(TaskSyncResult(source_system=connector_type, success=False, error=str(e)))
        return results
