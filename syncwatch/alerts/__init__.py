"""Sync alerts: models and lifecycle."""

from syncwatch.alerts.models import AlertType, AlertSeverity, AlertCandidate, build_dedup_key

__all__ = [
    "AlertType",
    "AlertSeverity",
    "AlertCandidate",
    "build_dedup_key",
]
