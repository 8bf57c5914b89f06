import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import sessionmaker

from syncwatch.actions.models import ActionResult
from syncwatch.alerts.models import AlertSeverity, AlertType
from syncwatch.config import Settings
from syncwatch.db import create_db_engine, create_session_factory, init_db
from syncwatch.detection.models import ConnectorType
from syncwatch.errors import AlertNotFoundError
from syncwatch.runtime import Runtime, build_runtime
from syncwatch.tasks.models import TaskSyncResult
from syncwatch.tools.ollama import OllamaClient
from syncwatch.tools.registry import ConnectorRegistry

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


class AlertResponse(BaseModel):
    """Alert as returned by the API."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: Optional[str] = None
    ai_suggestion: Optional[str] = None
    ai_action_json: Optional[str] = None
    source_system: Optional[ConnectorType] = None
    source_id: Optional[str] = None
    source_url: Optional[str] = None
    target_system: Optional[ConnectorType] = None
    target_id: Optional[str] = None
    target_url: Optional[str] = None
    is_read: bool
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    created_at: datetime


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    registry: Optional[ConnectorRegistry] = None,
    ollama: Optional[OllamaClient] = None,
    start_background: bool = True,
) -> FastAPI:
    """Build the API. Arguments left as None come from the environment."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        factory = session_factory
        if factory is None:
            engine = create_db_engine(settings)
            init_db(engine)
            factory = create_session_factory(engine)
        runtime = build_runtime(settings, factory, registry=registry, ollama=ollama)
        app.state.runtime = runtime
        if start_background:
            await runtime.start()
        logger.info("syncwatch started")
        try:
            yield
        finally:
            if start_background:
                await runtime.stop()
            logger.info("syncwatch stopped")

    app = FastAPI(
        title="syncwatch",
        description="Keeps GitHub pull requests and project-management tasks in sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    def _runtime(request: Request) -> Runtime:
        return request.app.state.runtime

    @app.get("/")
    async def root():
        """API root - shows available endpoints."""
        return {
            "service": "syncwatch",
            "version": "0.1.0",
            "docs": "/docs",
            "endpoints": {
                "health": "/health",
                "alerts": "/alerts",
                "unread_alerts": "/alerts/unread",
                "unread_count": "/alerts/unread/count",
                "alert": "/alerts/{alert_id}",
                "mark_read": "/alerts/{alert_id}/read",
                "resolve": "/alerts/{alert_id}/resolve",
                "execute": "/alerts/{alert_id}/execute",
                "detect": "/sync/detect",
                "sync_tasks": "/sync/tasks",
                "analyze": "/ai/analyze",
            }
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        runtime = _runtime(request)
        return {
            "status": "ok",
            "service": "syncwatch",
            "github": runtime.registry.pr_gateway is not None,
            "pm_connectors": [c.value for c in runtime.registry.pm_gateways],
            "ai_enabled": runtime.enrichment is not None,
            "enrichment_backlog": runtime.enrichment.pending if runtime.enrichment else 0,
        }

    # =============================================================================
    # Alerts
    # =============================================================================

    @app.get("/alerts", response_model=List[AlertResponse])
    async def list_alerts(request: Request, limit: int = 50, offset: int = 0):
        """Unresolved alerts, newest first."""
        return _runtime(request).alerts.list_unresolved(limit=limit, offset=offset)

    @app.get("/alerts/unread", response_model=List[AlertResponse])
    async def list_unread_alerts(request: Request, limit: int = 50, offset: int = 0):
        return _runtime(request).alerts.list_unread(limit=limit, offset=offset)

    @app.get("/alerts/unread/count")
    async def unread_alert_count(request: Request):
        return {"count": _runtime(request).alerts.unread_count()}

    @app.get("/alerts/{alert_id}", response_model=AlertResponse)
    async def get_alert(request: Request, alert_id: int):
        return _runtime(request).alerts.get(alert_id)

    @app.post("/alerts/{alert_id}/read")
    async def mark_alert_read(request: Request, alert_id: int):
        _runtime(request).alerts.mark_as_read(alert_id)
        return {"id": alert_id, "is_read": True}

    @app.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
    async def resolve_alert(request: Request, alert_id: int):
        return _runtime(request).alerts.resolve(alert_id)

    @app.post("/alerts/{alert_id}/execute", response_model=ActionResult)
    async def execute_alert_action(request: Request, alert_id: int):
        """Run the recommended (or rule-based) remediation for an alert."""
        return await _runtime(request).dispatcher.execute_action(alert_id)

    # =============================================================================
    # Manual triggers
    # =============================================================================

    @app.post("/sync/detect")
    async def trigger_detection(request: Request):
        runtime = _runtime(request)
        if runtime.detector is None:
            raise HTTPException(status_code=503, detail="GitHub connector not configured")
        created = await runtime.detector.detect_discrepancies()
        return {"new_alerts": created}

    @app.post("/sync/tasks", response_model=List[TaskSyncResult])
    async def trigger_task_sync(request: Request):
        return await _runtime(request).task_sync.sync_all()

    @app.post("/ai/analyze")
    async def trigger_analysis(request: Request):
        runtime = _runtime(request)
        if runtime.analyzer is None:
            raise HTTPException(status_code=503, detail="AI analysis not enabled")
        created = await runtime.analyzer.run()
        return {"new_alerts": created}

    @app.exception_handler(AlertNotFoundError)
    async def alert_not_found_handler(request: Request, exc: AlertNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
