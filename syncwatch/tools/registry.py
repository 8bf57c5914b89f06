"""
Connector registry.

Built once at startup and passed to the components that need to reach an
external system, instead of each component looking connectors up globally.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, runtime_checkable

from syncwatch.detection.models import ConnectorType, PrSnapshot
from syncwatch.tasks.models import RemoteTask

logger = logging.getLogger(__name__)


@runtime_checkable
class PmGateway(Protocol):
    """Write-back and fetch operations of a project-management tool."""
    connector_type: ConnectorType

    async def fetch_tasks(self) -> List[RemoteTask]: ...

    async def update_status(self, external_id: str, status: str) -> None: ...

    async def add_comment(self, external_id: str, text: str) -> None: ...

    async def complete_task(self, external_id: str) -> None: ...


@runtime_checkable
class PrGateway(Protocol):
    """Pull request operations of the source-control system."""

    async def fetch_open_pull_requests(self) -> List[PrSnapshot]: ...

    def extract_linked_task_ids(self, pr: PrSnapshot) -> List[str]: ...

    async def add_comment(self, owner: str, repo: str, number: int, text: str) -> None: ...

    async def approve(self, owner: str, repo: str, number: int, body: str) -> None: ...

    async def set_labels(self, owner: str, repo: str, number: int, labels: List[str]) -> None: ...


@dataclass
class ConnectorRegistry:
    """The PR gateway plus every PM gateway keyed by the system it serves."""
    pr_gateway: Optional[PrGateway] = None
    pm_gateways: Dict[ConnectorType, PmGateway] = field(default_factory=dict)

    def register_pm(self, gateway: PmGateway):
        if gateway.connector_type in self.pm_gateways:
            logger.warning(f"Replacing PM connector for {gateway.connector_type.value}")
        self.pm_gateways[gateway.connector_type] = gateway

    def pm(self, connector_type: Optional[ConnectorType]) -> Optional[PmGateway]:
        if connector_type is None:
            return None
        return self.pm_gateways.get(connector_type)
