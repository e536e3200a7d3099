"""
SQLAlchemy storage for DineFlow.

Owns the engine and session factory and runs every business operation as one
transaction: ``storage.run(operation, *args)`` calls ``operation(db, *args)``
inside ``session.begin()``, retries the whole transaction on transient
failures, and only after a successful commit hands queued audit and
notification events to their sinks.
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from dineflow import config
from dineflow.db import init_db
from dineflow.db.models import Base
from dineflow.services.events import EVENTS_KEY, AUDIT_EVENT, NOTIFY_EVENT
from dineflow.storage.retry import retry_transient

logger = logging.getLogger(__name__)


class SQLAlchemyStorage:
    """
    SQLAlchemy-backed storage shared by the API and the reaper.

    Sessions are created with ``expire_on_commit=False`` so ORM objects
    returned from ``run`` keep their loaded column values after close.
    """

    def __init__(
        self,
        database_url: str = config.DATABASE_URL,
        *,
        use_alembic: Optional[bool] = None,
        retry_attempts: int = config.STORAGE_RETRY_ATTEMPTS,
        retry_base_delay: float = config.STORAGE_RETRY_BASE_DELAY,
        retry_max_delay: float = config.STORAGE_RETRY_MAX_DELAY,
        audit_sink=None,
        notifier=None,
    ):
        """
        Initialize storage.

        Args:
            database_url: SQLAlchemy database URL
            use_alembic: Run migrations instead of create_all (default from USE_ALEMBIC)
            retry_*: Transient failure policy for each transactional operation
            audit_sink / notifier: Override the database-backed collaborators
        """
        self.database_url = database_url
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

        engine_kwargs: dict = {"echo": False, "future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 15}
            if ":memory:" in database_url or database_url == "sqlite://":
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)

        if database_url.startswith("sqlite"):
            @event.listens_for(self.engine, "connect")
            def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        if use_alembic is None:
            use_alembic = config.USE_ALEMBIC
        init_db(self.engine, use_alembic=use_alembic, base=Base)
        logger.info("Storage ready at %s", self._safe_url())

        # Late imports: the sinks write through this storage.
        from dineflow.services.audit import DatabaseAuditSink
        from dineflow.services.notifications import DatabaseNotificationEmitter

        self.audit_sink = audit_sink or DatabaseAuditSink(self)
        self.notifier = notifier or DatabaseNotificationEmitter(self)

    def _safe_url(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    def _get_session(self) -> Session:
        """Get a new database session (caller must close)."""
        return self.SessionLocal()

    def retrying(self, fn: Callable) -> Callable:
        """Wrap ``fn`` with this storage's transient retry policy."""
        return retry_transient(
            fn,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

    def _run_once(self, operation: Callable, args: tuple, kwargs: dict) -> Tuple[Any, List]:
        db_session = self._get_session()
        try:
            with db_session.begin():
                result = operation(db_session, *args, **kwargs)
            return result, db_session.info.pop(EVENTS_KEY, [])
        finally:
            db_session.close()

    def run(self, operation: Callable, *args, **kwargs) -> Any:
        """
        Execute ``operation(db, *args, **kwargs)`` as a single transaction.

        Domain errors raised by the operation roll the transaction back and
        propagate unchanged; queued events are dropped with it.
        """
        result, events = self.retrying(self._run_once)(operation, args, kwargs)
        self.dispatch(events)
        return result

    def dispatch(self, events: List[Tuple[str, dict]]) -> None:
        """Hand committed events to the collaborators. Never raises."""
        for kind, payload in events:
            try:
                if kind == AUDIT_EVENT:
                    self.audit_sink.record(**payload)
                elif kind == NOTIFY_EVENT:
                    self.notifier.notify(**payload)
                else:
                    logger.warning("Dropping unknown event kind %r", kind)
            except Exception as e:
                logger.warning("Failed to dispatch %s event: %s", kind, e)

    def close(self) -> None:
        """Dispose of the connection pool."""
        self.engine.dispose()
