"""Data models for sync alerts."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel

from syncwatch.detection.models import ConnectorType


class AlertType(str, Enum):
    """Kinds of discrepancy. Closed set."""
    PR_READY_TASK_NOT_UPDATED = "PR_READY_TASK_NOT_UPDATED"  # PR open/ready but task status not updated
    PR_MERGED_TASK_OPEN = "PR_MERGED_TASK_OPEN"  # PR merged but task still open
    TASK_COMPLETED_NO_PR = "TASK_COMPLETED_NO_PR"  # Task complete but no linked PR
    STALE_PR = "STALE_PR"  # PR open too long
    MISSING_LINK = "MISSING_LINK"  # PR references no task
    STATUS_MISMATCH = "STATUS_MISMATCH"  # Status disagrees across platforms
    ASSIGNEE_MISMATCH = "ASSIGNEE_MISMATCH"  # Assignee differs across platforms


class AlertSeverity(str, Enum):
    """Alert severity."""
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AlertCandidate(BaseModel):
    """An alert that has not been persisted yet."""
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str = ""
    source_system: Optional[ConnectorType] = None
    source_id: Optional[str] = None
    source_url: Optional[str] = None
    target_system: Optional[ConnectorType] = None
    target_id: Optional[str] = None
    target_url: Optional[str] = None

    def dedup_key(self) -> str:
        """Identity of "the same finding" while it stays unresolved."""
        return build_dedup_key(
            self.source_system, self.source_id,
            self.target_system, self.target_id,
            self.alert_type,
        )


def build_dedup_key(
    source_system: Optional[ConnectorType],
    source_id: Optional[str],
    target_system: Optional[ConnectorType],
    target_id: Optional[str],
    alert_type: AlertType,
) -> str:
    """Join the dedup tuple into one indexable string. Missing parts become empty."""
    parts = [
        source_system.value if source_system else "",
        source_id or "",
        target_system.value if target_system else "",
        target_id or "",
        alert_type.value,
    ]
    return "|".join(parts)
