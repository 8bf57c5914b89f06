"""
Task mirror storage.

Tasks synced from project-management tools are kept locally so detection can
resolve the identifiers a PR mentions without calling every PM API per PR.
"""

import logging
from typing import List, Optional
from sqlalchemy.orm import sessionmaker

from syncwatch.db.models import TrackedTask
from syncwatch.detection.models import ConnectorType, TaskSnapshot
from syncwatch.tasks.models import RemoteTask
from syncwatch.time_utils import to_utc

logger = logging.getLogger(__name__)


def _to_snapshot(row: TrackedTask) -> TaskSnapshot:
    return TaskSnapshot(
        id=row.id,
        external_id=row.external_id,
        source_system=row.source_system,
        title=row.title,
        status=row.status,
        assignee=row.assignee,
        due_date=to_utc(row.due_date) if row.due_date else None,
        modified_at=to_utc(row.external_modified_at) if row.external_modified_at else None,
        url=row.url,
    )


class TaskRepository:
    """Lookup and upsert of mirrored tasks."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def find_by_external_id(self, external_id: str) -> List[TaskSnapshot]:
        with self._session_factory() as db:
            rows = db.query(TrackedTask).filter(TrackedTask.external_id == external_id).all()
            return [_to_snapshot(row) for row in rows]

    def find_by_title_containing(self, text: str) -> List[TaskSnapshot]:
        with self._session_factory() as db:
            rows = db.query(TrackedTask).filter(
                TrackedTask.title.ilike(f"%{text}%")
            ).order_by(TrackedTask.id).all()
            return [_to_snapshot(row) for row in rows]

    def find_by_identifier(self, identifier: str) -> List[TaskSnapshot]:
        """
        Find tasks a PR reference like "SIG-7" points at.

        Unions the title-substring and external-id lookups, deduplicated by
        internal id.
        """
        tasks = self.find_by_title_containing(identifier)
        seen = {task.id for task in tasks}
        for task in self.find_by_external_id(identifier):
            if task.id not in seen:
                seen.add(task.id)
                tasks.append(task)
        return tasks

    def get(self, source_system: ConnectorType, external_id: str) -> Optional[TaskSnapshot]:
        with self._session_factory() as db:
            row = db.query(TrackedTask).filter(
                TrackedTask.source_system == source_system,
                TrackedTask.external_id == external_id,
            ).first()
            return _to_snapshot(row) if row else None

    def upsert(self, tasks: List[RemoteTask]) -> int:
        """Insert or update tasks keyed by (source_system, external_id). Returns rows written."""
        if not tasks:
            return 0
        with self._session_factory() as db:
            for task in tasks:
                row = db.query(TrackedTask).filter(
                    TrackedTask.source_system == task.source_system,
                    TrackedTask.external_id == task.external_id,
                ).first()
                if row is None:
                    row = TrackedTask(source_system=task.source_system, external_id=task.external_id)
                    db.add(row)
                row.title = task.title
                row.status = task.status
                row.assignee = task.assignee
                row.url = task.url
                row.due_date = task.due_date
                row.external_modified_at = task.modified_at
            db.commit()
        logger.debug(f"Upserted {len(tasks)} task(s)")
        return len(tasks)
