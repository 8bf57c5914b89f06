"""Database package for syncwatch."""

from syncwatch.db.database import create_db_engine, create_session_factory, init_db
from syncwatch.db.models import Base, SyncAlert, AnalysisState, TrackedTask

__all__ = [
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "Base",
    "SyncAlert",
    "AnalysisState",
    "TrackedTask",
]
