"""Snapshots of external state that detection works on."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict


class ConnectorType(str, Enum):
    """External systems syncwatch talks to."""
    GITHUB = "GITHUB"
    JIRA = "JIRA"
    ASANA = "ASANA"
    LINEAR = "LINEAR"


class PrSnapshot(BaseModel):
    """A pull request as fetched from GitHub. Immutable per fetch."""
    model_config = ConfigDict(frozen=True)

    id: int  # GitHub internal id
    number: int
    title: str
    body: Optional[str] = None
    state: str  # open, closed
    draft: bool = False
    merged: bool = False
    mergeable_state: Optional[str] = None  # clean, unstable, dirty, blocked, behind, unknown
    author: Optional[str] = None
    head_branch: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    html_url: Optional[str] = None
    repository: Optional[str] = None  # owner/repo

    @property
    def is_open(self) -> bool:
        """Open and not a draft."""
        return self.state == "open" and not self.draft

    @property
    def is_ready(self) -> bool:
        """Not a draft and GitHub reports it mergeable."""
        return not self.draft and self.mergeable_state in ("clean", "unstable")


class TaskSnapshot(BaseModel):
    """A project-management task from the local task mirror."""
    model_config = ConfigDict(frozen=True)

    id: int  # internal id of the mirrored row
    external_id: str
    source_system: ConnectorType
    title: str
    status: Optional[str] = None
    assignee: Optional[str] = None
    due_date: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    url: Optional[str] = None
