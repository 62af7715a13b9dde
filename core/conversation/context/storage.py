"""
Session storage and persistence layer.

This module defines the store contract the resolver depends on and two
backends: an in-process map with idle expiry, and a Postgres table holding
one JSON document per session key.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass

import psycopg2

from core.conversation.errors import StorageUnavailable
from .state import ConversationState

logger = logging.getLogger(__name__)


@dataclass
class StorageConfig:
    """Configuration for session storage"""
    ttl: Optional[timedelta] = timedelta(hours=24)  # None disables idle expiry
    table_name: str = "conversation_sessions"


class SessionStore(ABC):
    """
    Key-value persistence for one ConversationState per session key.

    get() never fails for an unknown key: it returns a fresh empty state.
    set() is a full overwrite; merging is the resolver's job.
    """

    @abstractmethod
    def get(self, session_key: str) -> ConversationState:
        pass

    @abstractmethod
    def set(self, session_key: str, state: ConversationState) -> None:
        pass

    @abstractmethod
    def delete(self, session_key: str) -> None:
        pass

    @abstractmethod
    def list_keys(self) -> List[str]:
        pass


class InMemorySessionStore(SessionStore):
    """
    In-process session store.

    States are kept serialized so later mutation of a returned or stored
    object never leaks into what is persisted.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig()
        self._sessions: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def _is_expired(self, stored_at: datetime) -> bool:
        if not self.config.ttl:
            return False
        return datetime.now(timezone.utc) - stored_at >= self.config.ttl

    def get(self, session_key: str) -> ConversationState:
        with self._lock:
            entry = self._sessions.get(session_key)
            if entry is None:
                return ConversationState()

            payload, stored_at = entry
            if self._is_expired(stored_at):
                logger.info(f"⌛ Session {session_key} expired after idle period, starting fresh")
                del self._sessions[session_key]
                return ConversationState()

        return ConversationState.from_json(payload)

    def set(self, session_key: str, state: ConversationState) -> None:
        now = datetime.now(timezone.utc)
        state.updated_at = now
        if state.created_at is None:
            state.created_at = now
        payload = state.to_json()
        with self._lock:
            self._sessions[session_key] = (payload, now)
        self.cleanup_expired()

    def delete(self, session_key: str) -> None:
        with self._lock:
            if self._sessions.pop(session_key, None) is not None:
                logger.info(f"🗑️ Cleared session state: {session_key}")

    def list_keys(self) -> List[str]:
        with self._lock:
            self._purge_expired()
            return list(self._sessions.keys())

    def cleanup_expired(self) -> int:
        """Drop expired sessions and return how many were removed"""
        with self._lock:
            removed = self._purge_expired()
        if removed:
            logger.info(f"🧹 Removed {removed} expired session(s)")
        return removed

    def _purge_expired(self) -> int:
        # Caller holds self._lock
        expired = [key for key, (_, stored_at) in self._sessions.items() if self._is_expired(stored_at)]
        for key in expired:
            del self._sessions[key]
        return len(expired)


class PostgresSessionStore(SessionStore):
    """
    Postgres-backed session store.

    One row per session key holding the serialized state; rows idle longer
    than the configured TTL are treated as absent.
    """

    def __init__(self, db=None, config: Optional[StorageConfig] = None):
        if db is None:
            from core.database import get_database
            try:
                db = get_database()
            except psycopg2.Error as e:
                logger.error(f"Failed to connect session store database: {str(e)}")
                raise StorageUnavailable(f"Session store database unreachable: {e}") from e
        self.db = db
        self.config = config or StorageConfig()

    def ensure_schema(self) -> None:
        """Create the sessions table if it does not exist"""
        self._execute_update(f"""
            CREATE TABLE IF NOT EXISTS {self.config.table_name} (
                session_key TEXT PRIMARY KEY,
                state JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """, None, "initialize")

    def _execute_query(self, query: str, params: Optional[tuple], session_key: str):
        try:
            return self.db.execute_query(query, params)
        except psycopg2.Error as e:
            logger.error(f"Failed to read session {session_key}: {str(e)}")
            raise StorageUnavailable(f"Session store read failed: {e}", session_key) from e

    def _execute_update(self, query: str, params: Optional[tuple], session_key: str) -> int:
        try:
            return self.db.execute_update(query, params)
        except psycopg2.Error as e:
            logger.error(f"Failed to write session {session_key}: {str(e)}")
            raise StorageUnavailable(f"Session store write failed: {e}", session_key) from e

    def _ttl_clause(self) -> Tuple[str, tuple]:
        if not self.config.ttl:
            return "", ()
        cutoff = datetime.now(timezone.utc) - self.config.ttl
        return " AND updated_at > %s", (cutoff,)

    def get(self, session_key: str) -> ConversationState:
        clause, extra = self._ttl_clause()
        rows = self._execute_query(
            f"SELECT state, created_at, updated_at FROM {self.config.table_name} "
            f"WHERE session_key = %s{clause}",
            (session_key, *extra),
            session_key,
        )
        if not rows:
            return ConversationState()

        row = rows[0]
        data = row.get("state") or {}
        if isinstance(data, str):
            data = json.loads(data)
        state = ConversationState.from_dict(data)
        state.created_at = state.created_at or row.get("created_at")
        state.updated_at = row.get("updated_at") or state.updated_at
        return state

    def set(self, session_key: str, state: ConversationState) -> None:
        now = datetime.now(timezone.utc)
        state.updated_at = now
        if state.created_at is None:
            state.created_at = now
        self._execute_update(f"""
            INSERT INTO {self.config.table_name} (session_key, state, created_at, updated_at)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (session_key)
            DO UPDATE SET
                state = EXCLUDED.state,
                updated_at = EXCLUDED.updated_at
        """, (session_key, state.to_json(), state.created_at, now), session_key)

    def delete(self, session_key: str) -> None:
        self._execute_update(
            f"DELETE FROM {self.config.table_name} WHERE session_key = %s",
            (session_key,),
            session_key,
        )

    def list_keys(self) -> List[str]:
        clause, extra = self._ttl_clause()
        rows = self._execute_query(
            f"SELECT session_key FROM {self.config.table_name} WHERE TRUE{clause} ORDER BY updated_at DESC",
            extra or None,
            "*",
        )
        return [row["session_key"] for row in rows]


def create_session_store(backend: str = "memory", ttl_minutes: int = 0) -> SessionStore:
    """Build the configured session store backend"""
    config = StorageConfig(ttl=timedelta(minutes=ttl_minutes) if ttl_minutes > 0 else None)
    if backend == "postgres":
        store = PostgresSessionStore(config=config)
        store.ensure_schema()
        return store
    if backend != "memory":
        logger.warning(f"Unknown session backend '{backend}', using in-memory store")
    return InMemorySessionStore(config)
