"""
Sync discrepancy detector.

Compares every open (or recently merged) pull request with the tasks it
references and raises alerts when they disagree:
- PR references no task at all
- PR opened or ready but the task is not in review
- PR merged but the task is still open
- PR open for too long

Detection is rule-based and never calls the model. New alerts are handed to
the enrichment worker, which runs separately.
"""

import logging
from datetime import datetime
from typing import List, Optional

from syncwatch.ai.models import EnrichmentEvent
from syncwatch.ai.worker import EnrichmentWorker
from syncwatch.alerts.models import AlertCandidate, AlertSeverity, AlertType
from syncwatch.alerts.service import AlertService
from syncwatch.db.models import SyncAlert
from syncwatch.detection.models import ConnectorType, PrSnapshot, TaskSnapshot
from syncwatch.tasks.repository import TaskRepository
from syncwatch.time_utils import to_utc, utcnow
from syncwatch.tools.registry import PrGateway

logger = logging.getLogger(__name__)

REVIEW_KEYWORDS = ("review", "in_review")
DONE_KEYWORDS = ("done", "complete", "closed")


def classify_status(status: Optional[str]) -> str:
    """
    Bucket a free-text task status into "review", "done" or "other".

    Plain substring matching, so platform-specific names can land in the
    wrong bucket (e.g. "Not Done" counts as done).
    """
    text = (status or "").lower()
    if any(keyword in text for keyword in REVIEW_KEYWORDS):
        return "review"
    if any(keyword in text for keyword in DONE_KEYWORDS):
        return "done"
    return "other"


def is_stale(pr: PrSnapshot, now: datetime, stale_days: int = 7) -> bool:
    """True when more than stale_days whole days have passed since the PR was created."""
    if pr.created_at is None:
        return False
    return (to_utc(now) - to_utc(pr.created_at)).days > stale_days


class DiscrepancyDetector:
    """Rule engine producing alerts from PR and task snapshots."""

    def __init__(
        self,
        pr_gateway: PrGateway,
        tasks: TaskRepository,
        alerts: AlertService,
        enrichment: Optional[EnrichmentWorker] = None,
        stale_days: int = 7,
    ):
        self._pr_gateway = pr_gateway
        self._tasks = tasks
        self._alerts = alerts
        self._enrichment = enrichment
        self._stale_days = stale_days

    async def detect_discrepancies(self) -> int:
        """
        Scheduled entry point. Checks every PR and returns the number of new alerts.

        Never raises: a failure to fetch PRs is logged and the pass ends, a
        failure on one PR is logged and the next PR is checked.
        """
        logger.info("Starting sync discrepancy detection...")
        try:
            pull_requests = await self._pr_gateway.fetch_open_pull_requests()
        except Exception as e:
            logger.error(f"Error fetching pull requests for discrepancy detection: {e}", exc_info=True)
            return 0

        logger.info(f"Checking {len(pull_requests)} PRs for discrepancies")
        now = utcnow()
        created = 0
        for pr in pull_requests:
            try:
                created += len(self.check_pr(pr, now))
            except Exception as e:
                logger.error(f"Error checking PR #{pr.number} ({pr.repository}): {e}", exc_info=True)

        logger.info(f"Sync discrepancy detection completed: {created} new alert(s)")
        return created

    def check_pr(self, pr: PrSnapshot, now: Optional[datetime] = None) -> List[SyncAlert]:
        """Evaluate one PR against its linked tasks. Returns the newly created alerts."""
        now = now or utcnow()
        new_alerts: List[SyncAlert] = []
        linked_ids = self._pr_gateway.extract_linked_task_ids(pr)

        if not linked_ids:
            self._raise(new_alerts, AlertCandidate(
                alert_type=AlertType.MISSING_LINK,
                severity=AlertSeverity.INFO,
                title="PR missing task link",
                message=(
                    f"PR #{pr.number} '{pr.title}' does not reference any task. "
                    "Consider adding a task reference (e.g., SIG-123) to the PR title or description."
                ),
                **self._pr_source(pr),
            ), pr)
        else:
            for identifier in linked_ids:
                for task in self._tasks.find_by_identifier(identifier):
                    self._check_pr_task(new_alerts, pr, task)

        if pr.state == "open" and is_stale(pr, now, self._stale_days):
            linked = ", ".join(linked_ids) if linked_ids else "none"
            self._raise(new_alerts, AlertCandidate(
                alert_type=AlertType.STALE_PR,
                severity=AlertSeverity.WARNING,
                title="Stale PR detected",
                message=(
                    f"PR #{pr.number} '{pr.title}' has been open for more than {self._stale_days} days. "
                    f"Linked tasks: {linked}. Consider reviewing or closing this PR."
                ),
                target_system=ConnectorType.GITHUB,
                target_id=str(pr.id),
                target_url=pr.html_url,
                **self._pr_source(pr),
            ), pr)

        return new_alerts

    def _check_pr_task(self, new_alerts: List[SyncAlert], pr: PrSnapshot, task: TaskSnapshot):
        bucket = classify_status(task.status)
        in_review = bucket == "review"
        done = bucket == "done"
        system = task.source_system.value

        # Opened, not yet mergeable, task not moved to review
        if pr.is_open and not pr.is_ready and not in_review:
            self._raise(new_alerts, AlertCandidate(
                alert_type=AlertType.PR_READY_TASK_NOT_UPDATED,
                severity=AlertSeverity.WARNING,
                title="PR opened but task not updated",
                message=(
                    f"PR #{pr.number} '{pr.title}' was opened but {system} task '{task.title}' "
                    f"is still '{task.status}'. Update to 'In Review'."
                ),
                **self._pr_source(pr), **self._task_target(task),
            ), pr, task)

        if pr.is_ready and not in_review and not done:
            self._raise(new_alerts, AlertCandidate(
                alert_type=AlertType.PR_READY_TASK_NOT_UPDATED,
                severity=AlertSeverity.WARNING,
                title="PR ready but task not updated",
                message=(
                    f"PR #{pr.number} '{pr.title}' is ready to merge but {system} task "
                    f"'{task.title}' status is '{task.status}'."
                ),
                **self._pr_source(pr), **self._task_target(task),
            ), pr, task)

        if pr.merged and not done:
            self._raise(new_alerts, AlertCandidate(
                alert_type=AlertType.PR_MERGED_TASK_OPEN,
                severity=AlertSeverity.CRITICAL,
                title="PR merged but task still open",
                message=(
                    f"PR #{pr.number} was merged but {system} task '{task.title}' "
                    f"is still '{task.status}'. Mark as complete."
                ),
                **self._pr_source(pr), **self._task_target(task),
            ), pr, task)

    @staticmethod
    def _pr_source(pr: PrSnapshot) -> dict:
        return {
            "source_system": ConnectorType.GITHUB,
            "source_id": str(pr.id),
            "source_url": pr.html_url,
        }

    @staticmethod
    def _task_target(task: TaskSnapshot) -> dict:
        return {
            "target_system": task.source_system,
            "target_id": task.external_id,
            "target_url": task.url,
        }

    def _raise(
        self,
        new_alerts: List[SyncAlert],
        candidate: AlertCandidate,
        pr: Optional[PrSnapshot] = None,
        task: Optional[TaskSnapshot] = None,
    ):
        alert, created = self._alerts.create_alert(candidate)
        if not created:
            return
        new_alerts.append(alert)
        if self._enrichment is not None:
            self._enrichment.offer(EnrichmentEvent(
                alert_id=alert.id,
                alert_type=alert.alert_type,
                severity=alert.severity,
                pr=pr,
                task=task,
            ))
