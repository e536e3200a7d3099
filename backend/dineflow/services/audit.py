"""
Audit sink.

Fire-and-forget: ``record`` never raises. A failed write is logged and the
triggering operation carries on.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from dineflow.db.models import AuditLog

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Destination for compliance-relevant state transitions."""

    @abstractmethod
    def record(
        self,
        action: str,
        session_id: Optional[int],
        details: Dict[str, Any],
        performed_by: str,
    ) -> None:
        ...


class DatabaseAuditSink(AuditSink):
    """Writes ``audit_logs`` rows in a transaction of their own."""

    def __init__(self, storage):
        self.storage = storage

    def _write(self, entry: AuditLog) -> None:
        db_session = self.storage._get_session()
        try:
            with db_session.begin():
                db_session.add(entry)
        finally:
            db_session.close()

    def record(self, action, session_id, details, performed_by) -> None:
        entry = AuditLog(
            action=action,
            session_id=session_id,
            details=details,
            performed_by=performed_by,
        )
        try:
            self.storage.retrying(self._write)(entry)
        except Exception as e:
            logger.warning("Audit record %s for session %s was not stored: %s", action, session_id, e)


def list_audit_logs(
    db: Session,
    limit: int = 50,
    offset: int = 0,
    action: Optional[str] = None,
    session_id: Optional[int] = None,
) -> List[AuditLog]:
    """Newest-first audit entries for the admin surface."""
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if session_id is not None:
        stmt = stmt.where(AuditLog.session_id == session_id)
    return list(db.execute(stmt.limit(limit).offset(offset)).scalars().all())
