"""Data models for AI enrichment."""

import json
import logging
from enum import Enum
from typing import Optional, Dict
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from syncwatch.alerts.models import AlertType, AlertSeverity
from syncwatch.detection.models import ConnectorType, PrSnapshot, TaskSnapshot

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    """Remediations the dispatcher knows how to run. Closed set."""
    UPDATE_TASK_STATUS = "UPDATE_TASK_STATUS"
    COMPLETE_TASK = "COMPLETE_TASK"
    ADD_COMMENT = "ADD_COMMENT"
    ADD_PR_COMMENT = "ADD_PR_COMMENT"
    UPDATE_PR_LABELS = "UPDATE_PR_LABELS"
    APPROVE_PR = "APPROVE_PR"
    NO_ACTION = "NO_ACTION"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class ActionRecommendation(BaseModel):
    """
    A recommended remediation, tagged by action_type.

    Serialized with camelCase keys, the same shape the model is asked to
    produce.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    action_type: ActionType
    target_platform: Optional[ConnectorType] = None
    target_entity_id: Optional[str] = None
    # Values must be strings; lists or numbers from the model fail validation
    parameters: Dict[str, str] = Field(default_factory=dict)
    reasoning: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    def param(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """String value of a parameter, or default when absent or blank."""
        value = self.parameters.get(name)
        if value is None or not value.strip():
            return default
        return value

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["ActionRecommendation"]:
        """Parse serialized JSON. Returns None for anything unusable."""
        if not raw or not raw.strip():
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        # Models sometimes emit "" or null for the optional fields
        for key in ("targetPlatform", "target_platform", "targetEntityId", "target_entity_id"):
            if data.get(key) in ("", "null"):
                data[key] = None
        if data.get("parameters") is None:
            data.pop("parameters", None)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            logger.debug(f"Rejected action recommendation: {e.error_count()} validation error(s)")
            return None


class EnrichmentEvent(BaseModel):
    """Request to enrich one newly created alert. Not persisted."""
    alert_id: int
    alert_type: AlertType
    severity: AlertSeverity
    pr: Optional[PrSnapshot] = None  # Context for prompt building
    task: Optional[TaskSnapshot] = None
