"""Expense Flow State Persistence Layer

SQLite-based store holding at most one active flow per conversation.

Design Decisions:
- Single table keyed by (tenant_id, conversation_id); upsert semantics, no history
- Payload stored as JSON (Pydantic-serialized tagged union)
- Expiry renewed on every write, never on read
- Lazy expiry: an expired row is deleted when read and reported as absent.
  Expired state is therefore never visible to a new message, even though the
  row may stay on disk until the next read (or ``delete_expired``)
- Last write wins; callers serialize per conversation (see ExpenseFlowService)
- Connection-per-operation pattern (no shared connections)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from app.models.flow import FlowState, flow_payload_adapter

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=15)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FlowStateRepository:
    """SQLite persistence for FlowState records.

    Operations:
        get(tenant, conv)          -> FlowState | None (deletes expired rows)
        set(tenant, conv, payload) -> FlowState (upsert, renews expiry)
        clear(tenant, conv)        -> bool
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize repository.

        Args:
            db_path: Path to SQLite database file (``:memory:`` for tests)
            ttl: Lifetime of a flow after its last write
            clock: Source of "now"; injectable so expiry can be tested
        """
        self.db_path = db_path
        self.ttl = ttl
        self.clock = clock

        # For :memory: databases, keep a persistent connection
        # (otherwise each new connection creates a fresh empty database)
        self._memory_conn = None
        if db_path == ":memory:":
            self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._memory_conn.row_factory = sqlite3.Row

        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        if self._memory_conn is not None:
            return self._memory_conn
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        conn = self._get_connection()
        should_close = (self._memory_conn is None)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS expense_flow_states (
                    tenant_id TEXT NOT NULL,
                    conversation_id TEXT NOT NULL,
                    step TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (tenant_id, conversation_id)
                )
            """)
            conn.commit()
        finally:
            if should_close:
                conn.close()

    def get(self, tenant_id: str, conversation_id: str) -> Optional[FlowState]:
        """Return the active flow, or None when absent, expired or unreadable."""
        conn = self._get_connection()
        should_close = (self._memory_conn is None)
        try:
            cursor = conn.execute("""
                SELECT tenant_id, conversation_id, step, payload_json, expires_at, updated_at
                FROM expense_flow_states
                WHERE tenant_id = ? AND conversation_id = ?
            """, (tenant_id, conversation_id))
            row = cursor.fetchone()
        finally:
            if should_close:
                conn.close()

        if row is None:
            return None

        expires_at = datetime.fromisoformat(row["expires_at"])
        if self.clock() > expires_at:
            logger.info(f"Flow for {tenant_id}/{conversation_id} expired at {expires_at.isoformat()}, clearing")
            self.clear(tenant_id, conversation_id)
            return None

        try:
            return self._row_to_state(row)
        except (ValidationError, ValueError) as exc:
            logger.warning(f"Discarding unreadable flow state for {tenant_id}/{conversation_id}: {exc}")
            self.clear(tenant_id, conversation_id)
            return None

    def set(self, tenant_id: str, conversation_id: str, payload) -> FlowState:
        """Create or overwrite the flow for a conversation.

        Args:
            payload: One of the step payload variants from app.models.flow

        Returns:
            The stored FlowState with a freshly renewed ``expires_at``
        """
        now = self.clock()
        state = FlowState(
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            payload=payload,
            expires_at=now + self.ttl,
            updated_at=now,
        )
        payload_json = json.dumps(flow_payload_adapter.dump_python(state.payload, mode="json"), ensure_ascii=False)

        conn = self._get_connection()
        should_close = (self._memory_conn is None)
        try:
            conn.execute("""
                INSERT OR REPLACE INTO expense_flow_states
                (tenant_id, conversation_id, step, payload_json, expires_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                tenant_id,
                conversation_id,
                state.step.value,
                payload_json,
                state.expires_at.isoformat(),
                state.updated_at.isoformat(),
            ))
            conn.commit()
            return state
        finally:
            if should_close:
                conn.close()

    def clear(self, tenant_id: str, conversation_id: str) -> bool:
        """Unconditionally delete the flow. Returns True if a row existed."""
        conn = self._get_connection()
        should_close = (self._memory_conn is None)
        try:
            cursor = conn.execute("""
                DELETE FROM expense_flow_states
                WHERE tenant_id = ? AND conversation_id = ?
            """, (tenant_id, conversation_id))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            if should_close:
                conn.close()

    def delete_expired(self) -> int:
        """Housekeeping: remove every expired row. Not required for correctness."""
        conn = self._get_connection()
        should_close = (self._memory_conn is None)
        try:
            cursor = conn.execute("""
                DELETE FROM expense_flow_states
                WHERE expires_at < ?
            """, (self.clock().isoformat(),))
            conn.commit()
            return cursor.rowcount
        finally:
            if should_close:
                conn.close()

    def count(self) -> int:
        """Number of stored rows, expired ones included (useful for tests)."""
        conn = self._get_connection()
        should_close = (self._memory_conn is None)
        try:
            return conn.execute("SELECT COUNT(*) FROM expense_flow_states").fetchone()[0]
        finally:
            if should_close:
                conn.close()

    def _row_to_state(self, row: sqlite3.Row) -> FlowState:
        payload = flow_payload_adapter.validate_python(json.loads(row["payload_json"]))
        return FlowState(
            tenant_id=row["tenant_id"],
            conversation_id=row["conversation_id"],
            payload=payload,
            expires_at=datetime.fromisoformat(row["expires_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
