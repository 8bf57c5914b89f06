"""Execution of alert remediations."""

from syncwatch.actions.models import ActionResult
from syncwatch.actions.dispatcher import ActionDispatcher

__all__ = [
    "ActionResult",
    "ActionDispatcher",
]
