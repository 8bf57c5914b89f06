"""Data models for action execution."""

from typing import Optional
from pydantic import BaseModel

from syncwatch.ai.models import ActionType


class ActionResult(BaseModel):
    """Outcome of executing an alert's remediation."""
    success: bool
    description: str
    action_taken: Optional[ActionType] = None
    ai_reasoning: Optional[str] = None
