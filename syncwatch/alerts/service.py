"""
Alert lifecycle: dedup-on-create, read/resolve transitions and the queries
the scheduler and API need.

A finding is identified by its dedup key (source system/id, target
system/id, alert type). While an alert with that key is unresolved, creating
the same finding again returns the existing row. Once resolved, the key is
free again and the condition can re-fire.
"""

import logging
from datetime import timedelta
from typing import List, Optional, Tuple
from sqlalchemy import desc, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from syncwatch.alerts.models import AlertCandidate
from syncwatch.db.models import SyncAlert
from syncwatch.detection.models import ConnectorType
from syncwatch.errors import AlertNotFoundError
from syncwatch.time_utils import utcnow

logger = logging.getLogger(__name__)

# A claim older than this is treated as left behind by a crashed process
ACTION_CLAIM_TIMEOUT = timedelta(minutes=5)


class AlertService:
    """Service for creating and transitioning sync alerts."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # =============================================================================
    # Creation
    # =============================================================================

    @staticmethod
    def _find_open(db: Session, dedup_key: str) -> Optional[SyncAlert]:
        return db.query(SyncAlert).filter(
            SyncAlert.dedup_key == dedup_key,
            SyncAlert.is_resolved.is_(False),
        ).first()

    def create_alert(self, candidate: AlertCandidate) -> Tuple[SyncAlert, bool]:
        """
        Persist an alert unless an unresolved one with the same dedup key exists.

        Returns (alert, created). created is False when the existing alert was
        returned instead. Concurrent creators of the same key are settled by
        the partial unique index: the loser rolls back and re-reads.
        """
        dedup_key = candidate.dedup_key()
        with self._session_factory() as db:
            existing = self._find_open(db, dedup_key)
            if existing is not None:
                logger.debug(f"Alert already exists: {existing.id}")
                return existing, False

            alert = SyncAlert(**candidate.model_dump(), dedup_key=dedup_key)
            db.add(alert)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = self._find_open(db, dedup_key)
                if existing is None:
                    raise
                logger.debug(f"Lost insert race for {dedup_key}, using alert {existing.id}")
                return existing, False

            logger.info(f"Creating new sync alert: {alert.alert_type.value} - {alert.title}")
            return alert, True

    # =============================================================================
    # Queries
    # =============================================================================

    def get(self, alert_id: int) -> SyncAlert:
        with self._session_factory() as db:
            alert = db.get(SyncAlert, alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            return alert

    def list_unresolved(self, limit: int = 50, offset: int = 0) -> List[SyncAlert]:
        with self._session_factory() as db:
            return db.query(SyncAlert).filter(
                SyncAlert.is_resolved.is_(False)
            ).order_by(desc(SyncAlert.created_at), desc(SyncAlert.id)).offset(offset).limit(limit).all()

    def list_unread(self, limit: int = 50, offset: int = 0) -> List[SyncAlert]:
        with self._session_factory() as db:
            return db.query(SyncAlert).filter(
                SyncAlert.is_read.is_(False),
                SyncAlert.is_resolved.is_(False),
            ).order_by(desc(SyncAlert.created_at), desc(SyncAlert.id)).offset(offset).limit(limit).all()

    def unread_count(self) -> int:
        with self._session_factory() as db:
            return db.query(SyncAlert).filter(
                SyncAlert.is_read.is_(False),
                SyncAlert.is_resolved.is_(False),
            ).count()

    def find_unenriched(self) -> List[SyncAlert]:
        """Unresolved alerts without an AI suggestion, oldest first."""
        with self._session_factory() as db:
            return db.query(SyncAlert).filter(
                SyncAlert.ai_suggestion.is_(None),
                SyncAlert.is_resolved.is_(False),
            ).order_by(SyncAlert.created_at, SyncAlert.id).all()

    # =============================================================================
    # Transitions
    # =============================================================================

    def mark_as_read(self, alert_id: int):
        with self._session_factory() as db:
            updated = db.query(SyncAlert).filter(SyncAlert.id == alert_id).update(
                {SyncAlert.is_read: True}, synchronize_session=False
            )
            if not updated:
                raise AlertNotFoundError(alert_id)
            db.commit()

    def resolve(self, alert_id: int) -> SyncAlert:
        """Resolve an alert manually. Resolving twice keeps the first timestamp."""
        with self._session_factory() as db:
            alert = db.get(SyncAlert, alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            if not alert.is_resolved:
                alert.is_resolved = True
                alert.resolved_at = utcnow()
                db.commit()
                logger.info(f"Resolved alert {alert_id}")
            return alert

    def claim_resolution(self, alert_id: int) -> bool:
        """
        Resolve and mark read only if still unresolved.

        Returns False when someone else resolved it first.
        """
        with self._session_factory() as db:
            updated = db.query(SyncAlert).filter(
                SyncAlert.id == alert_id,
                SyncAlert.is_resolved.is_(False),
            ).update({
                SyncAlert.is_resolved: True,
                SyncAlert.is_read: True,
                SyncAlert.resolved_at: utcnow(),
            }, synchronize_session=False)
            db.commit()
            return updated == 1

    def claim_action(self, alert_id: int) -> bool:
        """
        Mark an open alert as being remediated.

        The conditional update is the only check-and-set, so across processes
        exactly one caller gets True. Returns False when the alert is resolved
        or another remediation already holds a live claim.
        """
        now = utcnow()
        with self._session_factory() as db:
            updated = db.query(SyncAlert).filter(
                SyncAlert.id == alert_id,
                SyncAlert.is_resolved.is_(False),
                or_(
                    SyncAlert.action_started_at.is_(None),
                    SyncAlert.action_started_at < now - ACTION_CLAIM_TIMEOUT,
                ),
            ).update({SyncAlert.action_started_at: now}, synchronize_session=False)
            db.commit()
            return updated == 1

    def release_action(self, alert_id: int):
        """Drop the remediation claim so the alert can be executed again."""
        with self._session_factory() as db:
            db.query(SyncAlert).filter(SyncAlert.id == alert_id).update(
                {SyncAlert.action_started_at: None}, synchronize_session=False
            )
            db.commit()

    def resolve_alerts_for_source(self, source_system: ConnectorType, source_id: str) -> int:
        """Resolve every open alert that originated from the given record."""
        with self._session_factory() as db:
            updated = db.query(SyncAlert).filter(
                SyncAlert.source_system == source_system,
                SyncAlert.source_id == source_id,
                SyncAlert.is_resolved.is_(False),
            ).update({
                SyncAlert.is_resolved: True,
                SyncAlert.resolved_at: utcnow(),
            }, synchronize_session=False)
            db.commit()
        if updated:
            logger.info(f"Resolved {updated} alert(s) for {source_system.value} {source_id}")
        return updated

    def update_enrichment(self, alert_id: int, suggestion: Optional[str], action_json: Optional[str]) -> bool:
        """Attach AI output once. Returns False if the alert was already enriched."""
        with self._session_factory() as db:
            updated = db.query(SyncAlert).filter(
                SyncAlert.id == alert_id,
                SyncAlert.ai_suggestion.is_(None),
            ).update({
                SyncAlert.ai_suggestion: suggestion,
                SyncAlert.ai_action_json: action_json,
            }, synchronize_session=False)
            db.commit()
            return updated == 1
