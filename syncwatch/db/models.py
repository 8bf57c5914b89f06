"""
Database models.

Stores sync alerts, the checksum state used to gate AI re-analysis, and the
local mirror of project-management tasks.
"""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean,
    Enum, Index, UniqueConstraint, false
)
from sqlalchemy.orm import declarative_base

from syncwatch.alerts.models import AlertType, AlertSeverity
from syncwatch.detection.models import ConnectorType
from syncwatch.time_utils import utcnow

Base = declarative_base()


class SyncAlert(Base):
    """A discrepancy between a PR and a task (or a PR on its own)."""
    __tablename__ = "sync_alerts"

    id = Column(Integer, primary_key=True)
    alert_type = Column(Enum(AlertType, native_enum=False, length=50), nullable=False, index=True)
    severity = Column(Enum(AlertSeverity, native_enum=False, length=20), nullable=False)
    title = Column(String(500), nullable=False)
    message = Column(Text, nullable=True)
    ai_suggestion = Column(Text, nullable=True)
    ai_action_json = Column(Text, nullable=True)  # Serialized ActionRecommendation

    # Source platform info
    source_system = Column(Enum(ConnectorType, native_enum=False, length=50), nullable=True)
    source_id = Column(String(255), nullable=True)
    source_url = Column(String(1000), nullable=True)

    # Target platform info (what's out of sync)
    target_system = Column(Enum(ConnectorType, native_enum=False, length=50), nullable=True)
    target_id = Column(String(255), nullable=True)
    target_url = Column(String(1000), nullable=True)

    # source|sourceId|target|targetId|type
    dedup_key = Column(String(700), nullable=False, index=True)

    is_read = Column(Boolean, nullable=False, default=False)
    is_resolved = Column(Boolean, nullable=False, default=False, index=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    action_started_at = Column(DateTime(timezone=True), nullable=True)  # Set while a remediation runs
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)


# At most one unresolved alert per dedup key
Index(
    "uq_sync_alerts_open_dedup_key",
    SyncAlert.dedup_key,
    unique=True,
    sqlite_where=SyncAlert.is_resolved == false(),
    postgresql_where=SyncAlert.is_resolved == false(),
)


class AnalysisState(Base):
    """Content fingerprint of an entity pair at its last AI analysis."""
    __tablename__ = "analysis_state"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_analysis_state_entity"),
    )

    id = Column(Integer, primary_key=True)
    entity_type = Column(String(50), nullable=False)  # 'PR_TASK_PAIR'
    entity_id = Column(String(500), nullable=False)  # Composite: PR:<repo>#<n>|TASK:<system>:<id>
    source_system = Column(String(50), nullable=True)
    content_checksum = Column(String(64), nullable=True)
    last_analyzed_at = Column(DateTime(timezone=True), nullable=True)


class TrackedTask(Base):
    """Local mirror of a project-management task."""
    __tablename__ = "tracked_tasks"
    __table_args__ = (
        UniqueConstraint("source_system", "external_id", name="uq_tracked_tasks_source"),
    )

    id = Column(Integer, primary_key=True)
    external_id = Column(String(255), nullable=False, index=True)  # e.g. "SIG-7"
    source_system = Column(Enum(ConnectorType, native_enum=False, length=50), nullable=False)
    title = Column(String(1000), nullable=False, index=True)
    status = Column(String(100), nullable=True)
    assignee = Column(String(255), nullable=True)
    url = Column(String(1000), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    external_modified_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
