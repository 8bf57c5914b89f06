"""
Action dispatcher.

Turns an approved alert into a write-back call:
1. If the alert carries a valid AI recommendation, run it by action type.
2. Otherwise fall back to a fixed remediation per alert type.

A successful remediation resolves the alert and leaves an audit comment on
the target task. An alert is never remediated twice: the alert is claimed in
the database before any gateway call, so a resolved alert or one already
being executed (by this process or another worker) is rejected.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from syncwatch.actions.models import ActionResult
from syncwatch.ai.models import ActionRecommendation, ActionType
from syncwatch.alerts.models import AlertType
from syncwatch.alerts.service import AlertService
from syncwatch.db.models import SyncAlert
from syncwatch.detection.models import ConnectorType
from syncwatch.tools.github import parse_pull_request_url
from syncwatch.tools.registry import ConnectorRegistry, PmGateway

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "[syncwatch]"
DEFAULT_REVIEW_STATUS = "In Review"
DEFAULT_APPROVAL_BODY = f"{COMMENT_PREFIX} Approved after automated sync check"
STALE_PR_REMINDER = (
    f"{COMMENT_PREFIX} This PR has been flagged as stale (open > 7 days). "
    "Please review or close if no longer needed."
)
READY_FOR_REVIEW_NOTE = (
    f"{COMMENT_PREFIX} PR is ready for review, task status should be updated to 'In Review'"
)

Handler = Callable[[SyncAlert, ActionRecommendation], Awaitable[ActionResult]]


class ActionDispatcher:
    """Executes remediations for alerts against the registered gateways."""

    def __init__(self, alerts: AlertService, registry: ConnectorRegistry):
        self._alerts = alerts
        self._registry = registry
        self._handlers: Dict[ActionType, Handler] = {
            ActionType.COMPLETE_TASK: self._complete_task,
            ActionType.UPDATE_TASK_STATUS: self._update_task_status,
            ActionType.ADD_COMMENT: self._add_task_comment,
            ActionType.ADD_PR_COMMENT: self._add_pr_comment,
            ActionType.UPDATE_PR_LABELS: self._update_pr_labels,
            ActionType.APPROVE_PR: self._approve_pr,
            ActionType.NO_ACTION: self._no_action,
            ActionType.MANUAL_REVIEW: self._manual_review,
        }

    @property
    def handled_action_types(self) -> Set[ActionType]:
        return set(self._handlers)

    async def execute_action(self, alert_id: int) -> ActionResult:
        """
        Execute the remediation for an alert.

        Raises AlertNotFoundError for an unknown id. Every other problem is
        reported as a failed ActionResult.
        """
        alert = self._alerts.get(alert_id)
        if alert.is_resolved:
            return ActionResult(success=False, description="Alert is already resolved")
        if not self._alerts.claim_action(alert_id):
            if self._alerts.get(alert_id).is_resolved:
                return ActionResult(success=False, description="Alert is already resolved")
            return ActionResult(success=False, description="Action already in progress for this alert")

        try:
            result = await self._dispatch(alert)
            if not result.success or result.action_taken == ActionType.NO_ACTION:
                return result

            if not self._alerts.claim_resolution(alert_id):
                logger.warning(f"Alert {alert_id} was resolved concurrently after its action ran")
                return result

            logger.info(f"Executed {result.action_taken.value if result.action_taken else 'action'} for alert {alert_id}")
            await self._add_audit_comment(alert, result)
            return result
        except Exception as e:
            logger.error(f"Error executing action for alert {alert_id}: {e}", exc_info=True)
            return ActionResult(success=False, description=f"Action failed: {str(e)}")
        finally:
            self._release(alert_id)

    def _release(self, alert_id: int):
        try:
            self._alerts.release_action(alert_id)
        except Exception as e:
            logger.error(f"Failed to release action claim for alert {alert_id}: {e}", exc_info=True)

    async def _dispatch(self, alert: SyncAlert) -> ActionResult:
        if alert.ai_action_json:
            recommendation = ActionRecommendation.parse(alert.ai_action_json)
            if recommendation is not None:
                return await self._handlers[recommendation.action_type](alert, recommendation)
            logger.warning(f"Failed to parse AI action JSON for alert {alert.id}, falling back to legacy dispatch")
        return await self._legacy_dispatch(alert)

    # =============================================================================
    # AI recommendation handlers
    # =============================================================================

    def _resolve_task_target(self, alert: SyncAlert, rec: ActionRecommendation):
        platform = rec.target_platform or alert.target_system
        entity_id = rec.target_entity_id or alert.target_id
        return platform, entity_id, self._registry.pm(platform)

    @staticmethod
    def _connector_unavailable(platform: Optional[ConnectorType], reasoning: Optional[str] = None) -> ActionResult:
        name = platform.value if platform else "none"
        return ActionResult(
            success=False,
            description=f"Target PM connector not available: {name}",
            ai_reasoning=reasoning,
        )

    async def _complete_task(self, alert: SyncAlert, rec: ActionRecommendation) -> ActionResult:
        platform, entity_id, connector = self._resolve_task_target(alert, rec)
        if connector is None or not entity_id:
            return self._connector_unavailable(platform, rec.reasoning)
        await connector.complete_task(entity_id)
        return ActionResult(
            success=True,
            action_taken=ActionType.COMPLETE_TASK,
            description=f"Marked {platform.value} task {entity_id} as complete",
            ai_reasoning=rec.reasoning,
        )

    async def _update_task_status(self, alert: SyncAlert, rec: ActionRecommendation) -> ActionResult:
        platform, entity_id, connector = self._resolve_task_target(alert, rec)
        if connector is None or not entity_id:
            return self._connector_unavailable(platform, rec.reasoning)
        status = rec.param("status", DEFAULT_REVIEW_STATUS)
        await connector.update_status(entity_id, status)
        comment = rec.param("comment")
        if comment:
            await connector.add_comment(entity_id, f"{COMMENT_PREFIX} {comment}")
        return ActionResult(
            success=True,
            action_taken=ActionType.UPDATE_TASK_STATUS,
            description=f"Updated {platform.value} task {entity_id} status to '{status}'",
            ai_reasoning=rec.reasoning,
        )

    async def _add_task_comment(self, alert: SyncAlert, rec: ActionRecommendation) -> ActionResult:
        platform, entity_id, connector = self._resolve_task_target(alert, rec)
        if connector is None or not entity_id:
            return self._connector_unavailable(platform, rec.reasoning)
        comment = rec.param("comment", "Action required, please review.")
        await connector.add_comment(entity_id, f"{COMMENT_PREFIX} {comment}")
        return ActionResult(
            success=True,
            action_taken=ActionType.ADD_COMMENT,
            description=f"Added comment to {platform.value} task {entity_id}",
            ai_reasoning=rec.reasoning,
        )

    def _locate_pr(self, alert: SyncAlert, reasoning: Optional[str] = None):
        """Return (ref, None) or (None, failure result)."""
        if self._registry.pr_gateway is None:
            return None, ActionResult(success=False, description="GitHub connector not available", ai_reasoning=reasoning)
        if not alert.source_url:
            return None, ActionResult(
                success=False, description="Alert has no source URL, cannot locate PR", ai_reasoning=reasoning
            )
        ref = parse_pull_request_url(alert.source_url)
        if ref is None:
            return None, ActionResult(
                success=False, description=f"Could not parse PR URL: {alert.source_url}", ai_reasoning=reasoning
            )
        return ref, None

    async def _add_pr_comment(self, alert: SyncAlert, rec: ActionRecommendation) -> ActionResult:
        ref, failure = self._locate_pr(alert, rec.reasoning)
        if failure:
            return failure
        comment = rec.param("comment", "Action required, please review this PR.")
        await self._registry.pr_gateway.add_comment(ref.owner, ref.repo, ref.number, f"{COMMENT_PREFIX} {comment}")
        return ActionResult(
            success=True,
            action_taken=ActionType.ADD_PR_COMMENT,
            description=f"Added comment to GitHub PR #{ref.number}",
            ai_reasoning=rec.reasoning,
        )

    async def _update_pr_labels(self, alert: SyncAlert, rec: ActionRecommendation) -> ActionResult:
        ref, failure = self._locate_pr(alert, rec.reasoning)
        if failure:
            return failure
        labels = [label.strip() for label in (rec.param("labels") or "").split(",") if label.strip()]
        await self._registry.pr_gateway.set_labels(ref.owner, ref.repo, ref.number, labels)
        return ActionResult(
            success=True,
            action_taken=ActionType.UPDATE_PR_LABELS,
            description=f"Updated labels on GitHub PR #{ref.number}: {labels}",
            ai_reasoning=rec.reasoning,
        )

    async def _approve_pr(self, alert: SyncAlert, rec: ActionRecommendation) -> ActionResult:
        ref, failure = self._locate_pr(alert, rec.reasoning)
        if failure:
            return failure
        body = rec.param("body", DEFAULT_APPROVAL_BODY)
        await self._registry.pr_gateway.approve(ref.owner, ref.repo, ref.number, body)
        return ActionResult(
            success=True,
            action_taken=ActionType.APPROVE_PR,
            description=f"Submitted APPROVED review on GitHub PR #{ref.number}",
            ai_reasoning=rec.reasoning,
        )

    async def _no_action(self, alert: SyncAlert, rec: ActionRecommendation) -> ActionResult:
        return ActionResult(
            success=True,
            action_taken=ActionType.NO_ACTION,
            description="AI determined no action is needed",
            ai_reasoning=rec.reasoning,
        )

    async def _manual_review(self, alert: SyncAlert, rec: ActionRecommendation) -> ActionResult:
        return ActionResult(
            success=False,
            action_taken=ActionType.MANUAL_REVIEW,
            description=f"AI recommends manual review: {rec.reasoning}",
            ai_reasoning=rec.reasoning,
        )

    # =============================================================================
    # Rule-based fallback
    # =============================================================================

    async def _legacy_dispatch(self, alert: SyncAlert) -> ActionResult:
        if alert.alert_type == AlertType.PR_MERGED_TASK_OPEN:
            connector = self._registry.pm(alert.target_system)
            if connector is None or not alert.target_id:
                return self._connector_unavailable(alert.target_system)
            await connector.complete_task(alert.target_id)
            return ActionResult(
                success=True,
                action_taken=ActionType.COMPLETE_TASK,
                description=f"Marked {alert.target_system.value} task {alert.target_id} as complete",
            )

        if alert.alert_type == AlertType.PR_READY_TASK_NOT_UPDATED:
            connector = self._registry.pm(alert.target_system)
            if connector is None or not alert.target_id:
                return self._connector_unavailable(alert.target_system)
            await connector.update_status(alert.target_id, DEFAULT_REVIEW_STATUS)
            await connector.add_comment(alert.target_id, READY_FOR_REVIEW_NOTE)
            return ActionResult(
                success=True,
                action_taken=ActionType.UPDATE_TASK_STATUS,
                description=f"Updated {alert.target_system.value} task {alert.target_id} status to '{DEFAULT_REVIEW_STATUS}'",
            )

        if alert.alert_type == AlertType.STALE_PR:
            ref, failure = self._locate_pr(alert)
            if failure:
                return failure
            await self._registry.pr_gateway.add_comment(ref.owner, ref.repo, ref.number, STALE_PR_REMINDER)
            return ActionResult(
                success=True,
                action_taken=ActionType.ADD_PR_COMMENT,
                description=f"Added stale PR reminder comment to GitHub PR #{ref.number}",
            )

        if alert.alert_type == AlertType.MISSING_LINK:
            return ActionResult(
                success=False,
                description="Missing link alerts require manual action: add a task reference to the PR",
            )

        return ActionResult(
            success=False,
            description=f"No automatic action available for alert type: {alert.alert_type.value}",
        )

    async def _add_audit_comment(self, alert: SyncAlert, result: ActionResult):
        """Best effort: a failed audit comment never fails the action."""
        connector: Optional[PmGateway] = self._registry.pm(alert.target_system)
        if connector is None or not alert.target_id:
            return
        try:
            await connector.add_comment(alert.target_id, f"{COMMENT_PREFIX} Auto-action executed: {result.description}")
        except Exception as e:
            logger.warning(f"Failed to add audit comment for alert {alert.id}: {e}")
