"""
Notification emitter and the staff-side read path.

Delivery (push, sound, email) is the client's concern; the core only writes
``notifications`` rows. Same failure tolerance as the audit sink.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dineflow.db.models import Notification
from dineflow.errors import NotificationNotFound
from dineflow.statuses import NotificationStatus, NotificationType
from dineflow.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class NotificationEmitter(ABC):
    """Destination for kitchen-ready, payment and help events."""

    @abstractmethod
    def notify(
        self,
        session_id: Optional[int],
        type: str,
        title: str,
        message: str,
        priority: str,
        metadata: Dict[str, Any],
    ) -> None:
        ...


class DatabaseNotificationEmitter(NotificationEmitter):
    """Writes ``notifications`` rows in a transaction of their own."""

    def __init__(self, storage):
        self.storage = storage

    def _write(self, notification: Notification) -> None:
        db_session = self.storage._get_session()
        try:
            with db_session.begin():
                db_session.add(notification)
        finally:
            db_session.close()

    def notify(self, session_id, type, title, message, priority="normal", metadata=None) -> None:
        notification = Notification(
            session_id=session_id,
            type=type,
            title=title,
            message=message,
            priority=priority,
            status=NotificationStatus.PENDING.value,
            extra_data=metadata or {},
        )
        try:
            self.storage.retrying(self._write)(notification)
        except Exception as e:
            logger.warning("Notification %s for session %s was not stored: %s", type, session_id, e)


def list_notifications(
    db: Session,
    status: Optional[str] = NotificationStatus.PENDING.value,
    type: Optional[str] = None,
    session_id: Optional[int] = None,
    limit: int = 100,
) -> List[Notification]:
    stmt = select(Notification).order_by(Notification.created_at.desc(), Notification.id.desc())
    if status:
        stmt = stmt.where(Notification.status == status)
    if type:
        stmt = stmt.where(Notification.type == type)
    if session_id is not None:
        stmt = stmt.where(Notification.session_id == session_id)
    return list(db.execute(stmt.limit(limit)).scalars().all())


def acknowledge_notification(db: Session, notification_id: int, completed_by: str) -> Notification:
    """Mark one notification handled. Acknowledging twice keeps the first stamp."""
    notification = db.get(Notification, notification_id)
    if notification is None:
        raise NotificationNotFound(notification_id)
    if notification.status != NotificationStatus.COMPLETED.value:
        notification.status = NotificationStatus.COMPLETED.value
        notification.completed_at = utcnow()
        notification.completed_by = completed_by
    return notification


def complete_payment_request_notifications(db: Session, session_id: int, completed_by: str) -> int:
    """Close every pending payment-request notification of a session."""
    result = db.execute(
        update(Notification)
        .where(
            Notification.session_id == session_id,
            Notification.type == NotificationType.PAYMENT_REQUEST.value,
            Notification.status == NotificationStatus.PENDING.value,
        )
        .values(
            status=NotificationStatus.COMPLETED.value,
            completed_at=utcnow(),
            completed_by=completed_by,
        )
    )
    return result.rowcount or 0
