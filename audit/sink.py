"""
audit/sink.py -- Queued audit log with a background writer thread.

enqueue() is called on the request path and must never block or raise: it
stamps the event, redacts secrets from its metadata, and drops it onto a
bounded in-memory queue. A single daemon thread drains the queue into the
audit_logs table, retrying transient database errors with exponential
backoff. A full queue or a write that keeps failing loses the event and logs
a warning -- authentication outcomes never depend on the audit log.

The audit_logs table lives in the same database as the credential store
(the engine is shared) but is owned by this module.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Index, MetaData, String, Table, Text, insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuditEvent

logger = logging.getLogger("authkeep.audit")

# Metadata keys whose values are replaced before the event is queued.
REDACTED_KEYS = frozenset({"password", "new_password", "old_password", "token", "refresh_token", "access_token"})
_REDACTED = "***"

_STOP = object()

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36)),
    Column("action", String(50), nullable=False),
    Column("ip", String(45)),
    Column("user_agent", Text),
    Column("metadata", Text),  # JSON object, secrets redacted
    Column("created_at", String(32), nullable=False),
    Index("ix_audit_logs_action_created_at", "action", "created_at"),
    Index("ix_audit_logs_user_id", "user_id"),
)


def redact(metadata: dict) -> dict:
    """Return a copy of metadata with secret-bearing keys masked, recursively."""
    clean: dict = {}
    for key, value in metadata.items():
        if key.lower() in REDACTED_KEYS:
            clean[key] = _REDACTED
        elif isinstance(value, dict):
            clean[key] = redact(value)
        else:
            clean[key] = value
    return clean


class QueuedAuditSink:
    """Fire-and-forget audit sink backed by a SQL table.

    Usage:
        sink = QueuedAuditSink(store.engine)
        sink.start()
        sink.enqueue("login_success", user_id=user.id, ip="203.0.113.7")
        sink.stop()
    """

    def __init__(
        self,
        engine: Engine,
        *,
        maxsize: int = 1000,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self.engine = engine
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._thread: threading.Thread | None = None
        _metadata.create_all(engine)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="audit-writer", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Drain queued events, then stop the writer thread."""
        if self._thread is None:
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Audit queue still full at shutdown; pending events are lost")
            return
        self._thread.join(timeout)
        self._thread = None

    def flush(self, timeout: float = 5.0) -> bool:
        """Block until every queued event has been processed. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(
        self,
        action: str,
        *,
        user_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        metadata: dict | None = None,
    ) -> None:
        event = AuditEvent(
            id=str(uuid.uuid4()),
            action=action,
            user_id=user_id,
            ip=ip,
            user_agent=user_agent,
            metadata=redact(metadata or {}),
            created_at=datetime.now(timezone.utc),
        )
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning("Audit queue full; dropping %s event", action)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    return
                self._write(event)
            except Exception:
                logger.exception("Audit writer failed on %s event", getattr(event, "action", "?"))
            finally:
                self._queue.task_done()

    def _write(self, event: AuditEvent) -> None:
        values = {
            "id": event.id,
            "user_id": event.user_id,
            "action": event.action,
            "ip": event.ip,
            "user_agent": event.user_agent,
            "metadata": json.dumps(event.metadata, default=str),
            "created_at": event.created_at.isoformat(timespec="microseconds"),
        }
        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.engine.begin() as conn:
                    conn.execute(insert(_audit_logs).values(**values))
                return
            except SQLAlchemyError as exc:
                if attempt == self.max_attempts:
                    logger.error("Dropping %s audit event after %d attempts: %s", event.action, attempt, exc)
                    return
                logger.warning("Audit write failed (attempt %d/%d): %s", attempt, self.max_attempts, exc)
                time.sleep(self.retry_delay * 2 ** (attempt - 1))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_events(
        self,
        *,
        user_id: str | None = None,
        action: str | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Return persisted events, oldest first, optionally filtered."""
        stmt = _audit_logs.select()
        if user_id is not None:
            stmt = stmt.where(_audit_logs.c.user_id == user_id)
        if action is not None:
            stmt = stmt.where(_audit_logs.c.action == action)
        stmt = stmt.order_by(_audit_logs.c.created_at).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_event(r) for r in rows]


def _row_to_event(row) -> AuditEvent:
    metadata = row._mapping["metadata"]
    return AuditEvent(
        id=row.id,
        action=row.action,
        user_id=row.user_id,
        ip=row.ip,
        user_agent=row.user_agent,
        metadata=json.loads(metadata) if metadata else {},
        created_at=datetime.fromisoformat(row.created_at),
    )
