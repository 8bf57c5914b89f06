"""
Startup wiring.

Builds every component from Settings once and keeps them together so the
HTTP layer and the scheduler share the same instances.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.orm import sessionmaker

from syncwatch.actions.dispatcher import ActionDispatcher
from syncwatch.ai.analyzer import BatchAnalyzer
from syncwatch.ai.state_store import AnalysisStateStore
from syncwatch.ai.suggestions import SuggestionService
from syncwatch.ai.worker import EnrichmentWorker
from syncwatch.alerts.service import AlertService
from syncwatch.config import Settings
from syncwatch.detection.detector import DiscrepancyDetector
from syncwatch.detection.scheduler import Scheduler
from syncwatch.tasks.repository import TaskRepository
from syncwatch.tasks.sync import TaskSyncService
from syncwatch.tools.asana import AsanaClient
from syncwatch.tools.github import GitHubClient
from syncwatch.tools.jira import JiraClient
from syncwatch.tools.linear import LinearClient
from syncwatch.tools.ollama import OllamaClient
from syncwatch.tools.registry import ConnectorRegistry

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    registry: ConnectorRegistry
    alerts: AlertService
    tasks: TaskRepository
    task_sync: TaskSyncService
    dispatcher: ActionDispatcher
    scheduler: Scheduler
    detector: Optional[DiscrepancyDetector] = None
    enrichment: Optional[EnrichmentWorker] = None
    analyzer: Optional[BatchAnalyzer] = None

    async def start(self):
        if self.enrichment is not None:
            self.enrichment.start()
        self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()
        if self.enrichment is not None:
            await self.enrichment.stop()


def build_registry(settings: Settings) -> ConnectorRegistry:
    registry = ConnectorRegistry()
    if settings.github_enabled:
        registry.pr_gateway = GitHubClient(settings)
        logger.info(f"GitHub connector enabled for {', '.join(settings.github_repositories)}")
    else:
        logger.warning("GitHub connector disabled (set GITHUB_TOKEN and GITHUB_REPOSITORIES)")
    if settings.jira_enabled:
        registry.register_pm(JiraClient(settings))
        logger.info(f"Jira connector enabled for {settings.jira_base_url}")
    if settings.asana_enabled:
        registry.register_pm(AsanaClient(settings))
        scope = ", ".join(settings.asana_project_ids) or "all projects"
        logger.info(f"Asana connector enabled for {scope}")
    if settings.linear_enabled:
        registry.register_pm(LinearClient(settings))
        logger.info("Linear connector enabled")
    if not registry.pm_gateways:
        logger.warning("No PM connectors configured (set JIRA_*, ASANA_ACCESS_TOKEN or LINEAR_API_KEY)")
    return registry


def build_runtime(
    settings: Settings,
    session_factory: sessionmaker,
    registry: Optional[ConnectorRegistry] = None,
    ollama: Optional[OllamaClient] = None,
) -> Runtime:
    """Wire components. Detection needs a PR gateway; the worker and analyzer need AI enabled."""
    registry = registry or build_registry(settings)
    alerts = AlertService(session_factory)
    tasks = TaskRepository(session_factory)
    task_sync = TaskSyncService(registry, tasks)
    scheduler = Scheduler()

    runtime = Runtime(
        settings=settings,
        registry=registry,
        alerts=alerts,
        tasks=tasks,
        task_sync=task_sync,
        dispatcher=ActionDispatcher(alerts, registry),
        scheduler=scheduler,
    )

    if registry.pm_gateways:
        scheduler.add_job(
            "task_sync", task_sync.sync_all,
            interval=settings.task_sync_interval, initial_delay=settings.task_sync_initial_delay,
        )

    if settings.ai_enabled:
        client = ollama or OllamaClient(settings)
        runtime.enrichment = EnrichmentWorker(
            alerts, SuggestionService(client, settings), maxsize=settings.enrichment_queue_size
        )
        logger.info(f"AI enrichment enabled with model {settings.ollama_model}")

    if registry.pr_gateway is not None:
        runtime.detector = DiscrepancyDetector(
            registry.pr_gateway, tasks, alerts,
            enrichment=runtime.enrichment, stale_days=settings.stale_pr_days,
        )
        scheduler.add_job(
            "detection", runtime.detector.detect_discrepancies,
            interval=settings.detection_interval, initial_delay=settings.detection_initial_delay,
        )

        if runtime.enrichment is not None:
            runtime.analyzer = BatchAnalyzer(
                client, registry.pr_gateway, tasks, alerts,
                AnalysisStateStore(session_factory), runtime.enrichment,
                batch_size=settings.analysis_batch_size, max_tokens=settings.analysis_max_tokens,
            )
            scheduler.add_job(
                "ai_analysis", runtime.analyzer.run,
                interval=settings.reconciliation_interval, initial_delay=settings.reconciliation_initial_delay,
            )

    return runtime
