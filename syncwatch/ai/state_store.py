"""Per-entity analysis state used to skip unchanged pairs."""

import logging
from typing import Optional
from sqlalchemy.orm import sessionmaker

from syncwatch.db.models import AnalysisState
from syncwatch.time_utils import utcnow

logger = logging.getLogger(__name__)


class AnalysisStateStore:
    """Reads and writes the last analyzed checksum of each entity."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_checksum(self, entity_type: str, entity_id: str) -> Optional[str]:
        with self._session_factory() as db:
            state = db.query(AnalysisState).filter(
                AnalysisState.entity_type == entity_type,
                AnalysisState.entity_id == entity_id,
            ).first()
            return state.content_checksum if state else None

    def needs_analysis(self, entity_type: str, entity_id: str, checksum: str) -> bool:
        return self.get_checksum(entity_type, entity_id) != checksum

    def record(self, entity_type: str, entity_id: str, checksum: str, source_system: Optional[str] = None):
        """Upsert the checksum and analysis time for an entity."""
        with self._session_factory() as db:
            state = db.query(AnalysisState).filter(
                AnalysisState.entity_type == entity_type,
                AnalysisState.entity_id == entity_id,
            ).first()
            if state is None:
                state = AnalysisState(entity_type=entity_type, entity_id=entity_id)
                db.add(state)
            state.source_system = source_system
            state.content_checksum = checksum
            state.last_analyzed_at = utcnow()
            db.commit()
