"""Rule-based discrepancy detection and the periodic scheduler."""

from syncwatch.detection.models import ConnectorType, PrSnapshot, TaskSnapshot

__all__ = [
    "ConnectorType",
    "PrSnapshot",
    "TaskSnapshot",
]
