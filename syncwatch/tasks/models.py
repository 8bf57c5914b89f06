"""Data models for task sync."""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel

from syncwatch.detection.models import ConnectorType


class RemoteTask(BaseModel):
    """A task as returned by a PM connector, before it is mirrored locally."""
    external_id: str
    source_system: ConnectorType
    title: str
    status: Optional[str] = None
    assignee: Optional[str] = None
    url: Optional[str] = None
    due_date: Optional[datetime] = None
    modified_at: Optional[datetime] = None


class TaskSyncResult(BaseModel):
    """Outcome of one sync pass for one connector."""
    source_system: ConnectorType
    success: bool
    tasks_synced: int = 0
    error: Optional[str] = None
