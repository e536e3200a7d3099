"""
Post-commit event queue.

Operations queue audit entries and notifications on the SQLAlchemy session
while they run; ``SQLAlchemyStorage.run`` dispatches them once the
transaction has committed. A rolled-back operation emits nothing.
"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

EVENTS_KEY = "dineflow.events"
AUDIT_EVENT = "audit"
NOTIFY_EVENT = "notify"


def queue_audit(
    db: Session,
    action: str,
    session_id: Optional[int],
    details: Optional[Dict[str, Any]],
    performed_by: str,
) -> None:
    """Queue an audit record for after commit."""
    db.info.setdefault(EVENTS_KEY, []).append((
        AUDIT_EVENT,
        {
            "action": action,
            "session_id": session_id,
            "details": details or {},
            "performed_by": performed_by,
        },
    ))


def queue_notification(
    db: Session,
    session_id: Optional[int],
    type: str,
    title: str,
    message: str,
    priority: str = "normal",
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Queue a notification for after commit."""
    db.info.setdefault(EVENTS_KEY, []).append((
        NOTIFY_EVENT,
        {
            "session_id": session_id,
            "type": type,
            "title": title,
            "message": message,
            "priority": priority,
            "metadata": metadata or {},
        },
    ))
