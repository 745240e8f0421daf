"""SQLite storage for per-tenant ledger API tokens."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class LedgerCredentials:
    tenant_id: str
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    is_active: bool = True


class LedgerCredentialsRepository:
    """One row per tenant; pure data access, token policy lives in LedgerAPIClient."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
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
                CREATE TABLE IF NOT EXISTS ledger_credentials (
                    tenant_id TEXT PRIMARY KEY,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT,
                    expires_at TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
            """)
            conn.commit()
        finally:
            if should_close:
                conn.close()

    def save(self, credentials: LedgerCredentials) -> LedgerCredentials:
        conn = self._get_connection()
        should_close = (self._memory_conn is None)
        try:
            conn.execute("""
                INSERT OR REPLACE INTO ledger_credentials
                (tenant_id, access_token, refresh_token, expires_at, is_active)
                VALUES (?, ?, ?, ?, ?)
            """, (
                credentials.tenant_id,
                credentials.access_token,
                credentials.refresh_token,
                credentials.expires_at.isoformat(),
                1 if credentials.is_active else 0,
            ))
            conn.commit()
            return credentials
        finally:
            if should_close:
                conn.close()

    def get(self, tenant_id: str) -> Optional[LedgerCredentials]:
        conn = self._get_connection()
        should_close = (self._memory_conn is None)
        try:
            row = conn.execute("""
                SELECT tenant_id, access_token, refresh_token, expires_at, is_active
                FROM ledger_credentials
                WHERE tenant_id = ?
            """, (tenant_id,)).fetchone()
            if row is None:
                return None
            return LedgerCredentials(
                tenant_id=row["tenant_id"],
                access_token=row["access_token"],
                refresh_token=row["refresh_token"],
                expires_at=datetime.fromisoformat(row["expires_at"]),
                is_active=bool(row["is_active"]),
            )
        finally:
            if should_close:
                conn.close()

    def delete(self, tenant_id: str) -> bool:
        conn = self._get_connection()
        should_close = (self._memory_conn is None)
        try:
            cursor = conn.execute("DELETE FROM ledger_credentials WHERE tenant_id = ?", (tenant_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            if should_close:
                conn.close()
