"""Local mirror of project-management tasks."""

from syncwatch.tasks.models import RemoteTask, TaskSyncResult

__all__ = [
    "RemoteTask",
    "TaskSyncResult",
]
