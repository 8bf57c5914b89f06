"""
Periodic AI pass over PR/task pairs.

Each run does two things:
1. Reconciliation - re-queues alerts that never got an AI suggestion
   (e.g. the enrichment queue was full when they were created).
2. Semantic batch analysis - sends PR/task pairs whose content changed since
   the last run to the model in small batches, looking for issues the rule
   engine cannot see (assignee drift, semantic status mismatch, ...).
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from syncwatch.ai.checksum import PR_TASK_PAIR, build_entity_id, compute_checksum
from syncwatch.ai.models import EnrichmentEvent
from syncwatch.ai.prompts import build_batch_analysis_prompt
from syncwatch.ai.state_store import AnalysisStateStore
from syncwatch.ai.worker import EnrichmentWorker
from syncwatch.alerts.models import AlertCandidate, AlertSeverity, AlertType
from syncwatch.alerts.service import AlertService
from syncwatch.detection.models import ConnectorType, PrSnapshot, TaskSnapshot
from syncwatch.tasks.repository import TaskRepository
from syncwatch.tools.ollama import OllamaClient
from syncwatch.tools.registry import PrGateway

logger = logging.getLogger(__name__)


@dataclass
class PrTaskPair:
    """A PR/task pair whose content changed since it was last analyzed."""
    pr: PrSnapshot
    task: TaskSnapshot
    entity_id: str
    checksum: str


def parse_alert_type(value: Any) -> AlertType:
    try:
        return AlertType(value)
    except ValueError:
        return AlertType.STATUS_MISMATCH


def parse_severity(value: Any) -> AlertSeverity:
    try:
        return AlertSeverity(value)
    except ValueError:
        return AlertSeverity.INFO


def parse_findings(response: Optional[str]) -> List[dict]:
    """
    Extract the findings list from a model response.

    Accepts {"findings": [...]} or a bare array. Anything else yields no
    findings.
    """
    if not response or not response.strip():
        return []
    try:
        data = json.loads(response)
    except ValueError as e:
        logger.warning(f"Failed to parse semantic analysis response: {e}")
        return []
    if isinstance(data, dict):
        data = data.get("findings")
    if not isinstance(data, list):
        return []
    return [finding for finding in data if isinstance(finding, dict)]


class BatchAnalyzer:
    """Checksum-gated semantic re-analysis plus enrichment reconciliation."""

    def __init__(
        self,
        client: OllamaClient,
        pr_gateway: PrGateway,
        tasks: TaskRepository,
        alerts: AlertService,
        state_store: AnalysisStateStore,
        enrichment: EnrichmentWorker,
        batch_size: int = 5,
        max_tokens: int = 1500,
    ):
        self._client = client
        self._pr_gateway = pr_gateway
        self._tasks = tasks
        self._alerts = alerts
        self._state_store = state_store
        self._enrichment = enrichment
        self._batch_size = max(1, batch_size)
        self._max_tokens = max_tokens

    async def run(self) -> int:
        """Scheduled entry point. Returns the number of new alerts from batch analysis."""
        logger.info("Starting AI reconciliation and semantic analysis...")
        try:
            self.reconcile_unenriched_alerts()
        except Exception as e:
            logger.error(f"Error during AI reconciliation: {e}", exc_info=True)

        try:
            return await self.run_semantic_batch_analysis()
        except Exception as e:
            logger.error(f"Error during semantic batch analysis: {e}", exc_info=True)
            return 0

    # =============================================================================
    # Reconciliation
    # =============================================================================

    def reconcile_unenriched_alerts(self) -> int:
        """Re-queue every unresolved alert still missing a suggestion, oldest first."""
        missed = self._alerts.find_unenriched()
        if not missed:
            return 0

        logger.info(f"Reconciling {len(missed)} unenriched alert(s)")
        queued = 0
        for alert in missed:
            # No PR/task context: prompts fall back to alert type and severity only
            if self._enrichment.offer(EnrichmentEvent(
                alert_id=alert.id,
                alert_type=alert.alert_type,
                severity=alert.severity,
            )):
                queued += 1
        return queued

    # =============================================================================
    # Semantic batch analysis
    # =============================================================================

    async def run_semantic_batch_analysis(self) -> int:
        pull_requests = await self._pr_gateway.fetch_open_pull_requests()
        changed = self.find_changed_pairs(pull_requests)
        if not changed:
            logger.debug("Semantic analysis: no changed PR-task pairs")
            return 0

        logger.info(f"Semantic analysis: {len(changed)} changed pair(s)")
        created = 0
        for start in range(0, len(changed), self._batch_size):
            created += await self.analyze_batch(changed[start:start + self._batch_size])
        return created

    def find_changed_pairs(self, pull_requests: List[PrSnapshot]) -> List[PrTaskPair]:
        changed: List[PrTaskPair] = []
        seen: set = set()
        for pr in pull_requests:
            for identifier in self._pr_gateway.extract_linked_task_ids(pr):
                for task in self._tasks.find_by_identifier(identifier):
                    entity_id = build_entity_id(pr, task)
                    if entity_id in seen:
                        continue
                    seen.add(entity_id)
                    checksum = compute_checksum(pr, task)
                    if self._state_store.needs_analysis(PR_TASK_PAIR, entity_id, checksum):
                        changed.append(PrTaskPair(pr, task, entity_id, checksum))
        return changed

    async def analyze_batch(self, batch: List[PrTaskPair]) -> int:
        """
        Send one batch to the model and turn its findings into alerts.

        The checksum of every pair is recorded afterwards, even if the call
        failed, so a pair that keeps failing is not re-sent every run.
        """
        created = 0
        try:
            prompt = build_batch_analysis_prompt([(pair.pr, pair.task) for pair in batch])
            response = await self._client.generate_json(prompt, self._max_tokens)
            if response is None:
                logger.warning(f"Semantic batch analysis got no response for {len(batch)} pair(s)")
            else:
                created = self._process_findings(parse_findings(response), batch)
        except Exception as e:
            logger.warning(f"Semantic batch analysis failed: {e}")

        for pair in batch:
            try:
                self._state_store.record(
                    PR_TASK_PAIR, pair.entity_id, pair.checksum, pair.task.source_system.value
                )
            except Exception as e:
                logger.error(f"Failed to record analysis state for {pair.entity_id}: {e}", exc_info=True)
        return created

    def _process_findings(self, findings: List[dict], batch: List[PrTaskPair]) -> int:
        created = 0
        for finding in findings:
            try:
                index = int(finding.get("pairIndex", 0)) - 1
            except (TypeError, ValueError):
                continue
            if index < 0 or index >= len(batch):
                continue

            pair = batch[index]
            alert_type = parse_alert_type(finding.get("alertType", AlertType.STATUS_MISMATCH.value))
            severity = parse_severity(finding.get("severity", AlertSeverity.INFO.value))
            alert, is_new = self._alerts.create_alert(AlertCandidate(
                alert_type=alert_type,
                severity=severity,
                title=str(finding.get("title") or "AI-detected sync issue"),
                message=str(finding.get("message") or ""),
                source_system=ConnectorType.GITHUB,
                source_id=str(pair.pr.id),
                source_url=pair.pr.html_url,
                target_system=pair.task.source_system,
                target_id=pair.task.external_id,
                target_url=pair.task.url,
            ))
            if not is_new:
                continue

            created += 1
            logger.info(f"Semantic analysis created alert: {alert_type.value} for PR #{pair.pr.number}")
            self._enrichment.offer(EnrichmentEvent(
                alert_id=alert.id,
                alert_type=alert_type,
                severity=severity,
                pr=pair.pr,
                task=pair.task,
            ))
        return created
