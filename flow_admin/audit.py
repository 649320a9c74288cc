"""Audit sinks for flow administration events.

An audit event is a small flat dict such as
``{"event": "flow.update", "id": "f1", "error": "not_found"}``. Sinks are
fire-and-forget: ``audit()`` never raises and never blocks the caller.

Two sinks ship:

  LoggingAuditSink   - one JSON line per event on the ``flow_admin.audit``
                       logger at INFO.  The default.
  PostgresAuditLog   - appends events to an ``audit_events`` table.  Inserts
                       are scheduled on the running event loop; failures are
                       logged and suppressed.

Table schema (PostgresAuditLog):

  seq          BIGSERIAL   - insertion order, assigned by Postgres
  ts           TIMESTAMPTZ - set by Postgres DEFAULT now()
  event        TEXT        - event name, e.g. "flows.set"
  username     TEXT NULL   - calling user, when known
  error        TEXT NULL   - error classification on failures
  payload_json JSONB       - the full event record
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

logger = logging.getLogger("flow_admin.audit")

_MAX_MESSAGE_LEN = 300


class AuditSink(Protocol):
    def audit(self, event: dict[str, Any]) -> None: ...


def _bounded(event: dict[str, Any]) -> dict[str, Any]:
    message = event.get("message")
    if isinstance(message, str) and len(message) > _MAX_MESSAGE_LEN:
        event = {**event, "message": message[: _MAX_MESSAGE_LEN - 3] + "..."}
    return event


class LoggingAuditSink:
    """Writes audit events to a logger as JSON."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def audit(self, event: dict[str, Any]) -> None:
        self._log.info("audit %s", json.dumps(_bounded(event), default=str, sort_keys=True))


# ---------------------------------------------------------------------------
# Postgres
# ---------------------------------------------------------------------------

_DDL_TABLE = """
CREATE TABLE IF NOT EXISTS audit_events (
    seq          BIGSERIAL   PRIMARY KEY,
    ts           TIMESTAMPTZ NOT NULL DEFAULT now(),
    event        TEXT        NOT NULL,
    username     TEXT,
    error        TEXT,
    payload_json JSONB       NOT NULL
)
"""

_DDL_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_audit_events_event "
    "ON audit_events (event)"
)

_INSERT = """
INSERT INTO audit_events (event, username, error, payload_json)
VALUES (%s, %s, %s, %s::jsonb)
"""


class PostgresAuditLog:
    """Appends audit events to the audit_events Postgres table.

    Args:
        dsn: Postgres connection string (e.g. from FLOW_ADMIN_AUDIT_DSN).
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._conn: Any = None
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup(self) -> None:
        """Open connection and create audit_events table if absent."""
        try:
            import psycopg  # type: ignore[import]
        except ImportError as exc:
            logger.error(
                "psycopg is not installed; Postgres audit log disabled. "
                "Install with: pip install 'psycopg[binary]>=3.1'. %s",
                exc,
            )
            return

        try:
            conn = await psycopg.AsyncConnection.connect(self._dsn, autocommit=False)
            async with conn.cursor() as cur:
                await cur.execute(_DDL_TABLE)
                await cur.execute(_DDL_INDEX)
            await conn.commit()
            self._conn = conn
            logger.info("PostgresAuditLog ready")
        except Exception as exc:
            logger.error(
                "PostgresAuditLog: failed to connect (%s); audit log disabled.", exc,
            )
            self._conn = None

    async def close(self) -> None:
        """Wait for in-flight inserts, then close the connection."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._conn is not None:
            try:
                await self._conn.close()
            except Exception as exc:
                logger.debug("PostgresAuditLog close error (ignored): %s", exc)
            finally:
                self._conn = None

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def audit(self, event: dict[str, Any]) -> None:
        """Schedule an insert on the running loop and return immediately."""
        if self._conn is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("PostgresAuditLog: no running loop, dropping %s", event.get("event"))
            return
        task = loop.create_task(self.insert_event(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def insert_event(self, event: dict[str, Any]) -> None:
        """Insert one audit event.  Errors are logged and suppressed."""
        if self._conn is None:
            return

        event = _bounded(event)
        try:
            payload_str = json.dumps(event, default=str)
        except (TypeError, ValueError):
            payload_str = json.dumps({"event": event.get("event")})

        try:
            async with self._conn.cursor() as cur:
                await cur.execute(
                    _INSERT,
                    (event.get("event", ""), event.get("user"), event.get("error"), payload_str),
                )
            await self._conn.commit()
        except Exception as exc:
            logger.error("PostgresAuditLog: insert failed [%s]: %s", event.get("event"), exc)
