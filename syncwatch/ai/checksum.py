"""Content fingerprints for PR/task pairs."""

import hashlib

from syncwatch.detection.models import PrSnapshot, TaskSnapshot

PR_TASK_PAIR = "PR_TASK_PAIR"


def build_entity_id(pr: PrSnapshot, task: TaskSnapshot) -> str:
    """Stable identity of a pair, e.g. PR:acme/api#42|TASK:JIRA:SIG-7."""
    return f"PR:{pr.repository or ''}#{pr.number}|TASK:{task.source_system.value}:{task.external_id}"


def compute_checksum(pr: PrSnapshot, task: TaskSnapshot) -> str:
    """
    SHA-256 over the fields that matter for analysis.

    Only meaningful changes (title, state, merge/draft flag, status, assignee,
    modification times) produce a different value. Missing values hash as
    empty strings.
    """
    fields = [
        pr.title,
        pr.state,
        str(pr.merged).lower(),
        str(pr.draft).lower(),
        pr.updated_at.isoformat() if pr.updated_at else None,
        task.title,
        task.status,
        task.modified_at.isoformat() if task.modified_at else None,
        task.assignee,
    ]
    raw = "|".join("" if value is None else value for value in fields)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
