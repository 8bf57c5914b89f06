"""
Prompt builders and deterministic fallbacks for the enrichment and batch
analysis calls.
"""

from typing import Optional, Sequence

from syncwatch.ai.models import ActionRecommendation, ActionType
from syncwatch.alerts.models import AlertType, AlertSeverity
from syncwatch.detection.models import ConnectorType, PrSnapshot, TaskSnapshot

ACTION_REFERENCE = """Choose one action:
  UPDATE_TASK_STATUS - move the Jira/Asana/Linear task to a new status
    parameters: {"status": "<new status>", "comment": "<PR URL or context>"}
  COMPLETE_TASK     - mark the task as done; parameters: {}
  ADD_COMMENT       - add a comment to the task; parameters: {"comment": "<text>"}
  ADD_PR_COMMENT    - post a comment on the GitHub PR; parameters: {"comment": "<text>"}
  UPDATE_PR_LABELS  - set GitHub PR labels; parameters: {"labels": "<comma-separated>"}
  APPROVE_PR        - submit an approving review (only if the PR is ready and checks pass)
                      parameters: {"body": "<review message>"}
  NO_ACTION         - no automated action needed; parameters: {}
  MANUAL_REVIEW     - a human decision is required; parameters: {}
"""

ACTION_EXAMPLE = (
    'Example (PR_MERGED_TASK_OPEN on Jira task SIG-7):\n'
    '{"actionType":"COMPLETE_TASK","targetPlatform":"JIRA","targetEntityId":"SIG-7",'
    '"parameters":{},"reasoning":"PR merged; marking the linked task complete.","confidence":0.95}\n'
)

BATCH_ALERT_TYPES = (
    AlertType.STATUS_MISMATCH,
    AlertType.ASSIGNEE_MISMATCH,
    AlertType.STALE_PR,
    AlertType.MISSING_LINK,
)


def _describe_pr(pr: PrSnapshot, with_branch: bool = False) -> list[str]:
    details = f"  state={pr.state}, draft={pr.draft}, merged={pr.merged}"
    if pr.author:
        details += f", author={pr.author}"
    if with_branch and pr.head_branch:
        details += f", branch={pr.head_branch}"
    return [f'GitHub PR #{pr.number}: "{pr.title}"', details]


def _describe_task(task: TaskSnapshot, with_id: bool = False) -> list[str]:
    header = f"Linked {task.source_system.value} task"
    if with_id:
        header += f" (id={task.external_id})"
    details = f"  status={task.status}"
    if task.assignee:
        details += f", assignee={task.assignee}"
    return [f'{header}: "{task.title}"', details]


def build_suggestion_prompt(
    alert_type: AlertType,
    severity: AlertSeverity,
    pr: Optional[PrSnapshot] = None,
    task: Optional[TaskSnapshot] = None,
) -> str:
    """Short natural-language advice for a human reading the alert."""
    lines = [f"syncwatch detected a {severity.value}-severity sync discrepancy: {alert_type.value}.", ""]
    if pr:
        lines.extend(_describe_pr(pr, with_branch=True))
    if task:
        lines.extend(_describe_task(task))
    lines.append("")
    lines.append(
        "In 2-3 sentences, describe the exact action to take: which platform to update, "
        "what status to set, and why. Be specific."
    )
    return "\n".join(lines)


def build_action_prompt(
    alert_type: AlertType,
    severity: AlertSeverity,
    pr: Optional[PrSnapshot] = None,
    task: Optional[TaskSnapshot] = None,
    include_action_reference: bool = True,
) -> str:
    """Structured prompt asking for one ActionRecommendation as JSON."""
    lines = [f"syncwatch alert - type: {alert_type.value}, severity: {severity.value}", ""]
    if pr:
        lines.extend(_describe_pr(pr))
    if task:
        lines.extend(_describe_task(task, with_id=True))
    lines.append("")
    # Baked-in system prompts already describe the actions
    if include_action_reference:
        lines.append(ACTION_REFERENCE)
    lines.append(ACTION_EXAMPLE)
    lines.append("Now output JSON only for the current alert:")
    return "\n".join(lines)


def build_fallback_recommendation(
    alert_type: AlertType,
    pr: Optional[PrSnapshot] = None,
    task: Optional[TaskSnapshot] = None,
) -> ActionRecommendation:
    """Deterministic recommendation used when the model gives nothing usable."""
    task_platform = task.source_system if task else None
    task_id = task.external_id if task else None

    if alert_type == AlertType.PR_MERGED_TASK_OPEN:
        return ActionRecommendation(
            action_type=ActionType.COMPLETE_TASK,
            target_platform=task_platform,
            target_entity_id=task_id,
            reasoning="PR has been merged but the linked task is still open. Completing the task.",
            confidence=0.9,
        )
    if alert_type == AlertType.PR_READY_TASK_NOT_UPDATED:
        parameters = {"status": "In Review"}
        if pr:
            parameters["comment"] = f"PR #{pr.number} opened: {pr.html_url}"
        return ActionRecommendation(
            action_type=ActionType.UPDATE_TASK_STATUS,
            target_platform=task_platform,
            target_entity_id=task_id,
            parameters=parameters,
            reasoning="PR is open but the task status has not been updated to 'In Review'.",
            confidence=0.85,
        )
    if alert_type == AlertType.STALE_PR:
        return ActionRecommendation(
            action_type=ActionType.ADD_PR_COMMENT,
            target_platform=ConnectorType.GITHUB,
            target_entity_id=str(pr.number) if pr else None,
            parameters={"comment": "This PR has been open for more than 7 days. Please review or close if no longer needed."},
            reasoning="PR is stale and needs attention.",
            confidence=0.8,
        )
    return ActionRecommendation(
        action_type=ActionType.MANUAL_REVIEW,
        target_platform=task_platform,
        target_entity_id=task_id,
        reasoning="This alert type requires manual review.",
        confidence=0.5,
    )


def build_batch_analysis_prompt(pairs: Sequence[tuple[PrSnapshot, TaskSnapshot]]) -> str:
    """One prompt covering a batch of PR/task pairs, numbered from 1."""
    lines = [
        f"syncwatch background analysis - check these {len(pairs)} GitHub PR / task pair(s) "
        "for sync discrepancies.",
        "",
        "Look for:",
        "  STATUS_MISMATCH   - PR state and task status don't logically align",
        "                      (e.g. PR merged but task still In Progress)",
        "  ASSIGNEE_MISMATCH - PR author differs from task assignee",
        "  STALE_PR          - PR open 7+ days without merge or close",
        "  MISSING_LINK      - PR title/body has no recognisable issue ID",
        "",
        "Severity guide: CRITICAL = blocks delivery, WARNING = needs attention soon, INFO = informational.",
        "",
    ]
    for index, (pr, task) in enumerate(pairs, start=1):
        pr_line = f'  PR #{pr.number}: "{pr.title}" (state={pr.state}, merged={pr.merged}, draft={pr.draft}'
        if pr.author:
            pr_line += f", author={pr.author}"
        task_line = (
            f'  Task [{task.source_system.value} {task.external_id}]: "{task.title}" (status={task.status}'
        )
        if task.assignee:
            task_line += f", assignee={task.assignee}"
        lines.extend([f"Pair {index}:", pr_line + ")", task_line + ")", ""])

    allowed = ", ".join(t.value for t in BATCH_ALERT_TYPES)
    lines.extend([
        "Return JSON only:",
        '{"findings": [{"pairIndex": 1, "alertType": "STATUS_MISMATCH", '
        '"severity": "WARNING", "title": "short title", "message": "detail"}]}',
        f"alertType must be one of: {allowed}",
        "severity must be one of: INFO, WARNING, CRITICAL",
        'If no issues found: {"findings": []}',
    ])
    return "\n".join(lines)
