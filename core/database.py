"""Pooled Postgres access for the session store backend"""
import logging
import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor
from contextlib import contextmanager
from typing import Optional, Dict, List, Any

from config import settings

logger = logging.getLogger(__name__)


class Database:
    """Database connection manager with connection pooling"""

    def __init__(self, minconn: int = 1, maxconn: int = 10):
        self.connection_params = self._get_connection_params()
        self.connection_pool = None
        self._initialize_pool(minconn, maxconn)

    def _get_connection_params(self) -> dict:
        """Get database connection parameters"""
        return {
            'dbname': settings.DB_NAME,
            'user': settings.DB_USER,
            'password': settings.DB_PASS,
            'host': settings.DB_HOST,
            'port': settings.DB_PORT,
            'cursor_factory': RealDictCursor,
            # Fail fast if the database cannot be reached
            'connect_timeout': 10,
            'options': '-c statement_timeout=30000'
        }

    def _initialize_pool(self, minconn: int, maxconn: int):
        """Initialize connection pool"""
        try:
            self.connection_pool = pool.ThreadedConnectionPool(
                minconn=minconn,
                maxconn=maxconn,
                **self.connection_params
            )
            logger.info(f"Database connection pool initialized (min={minconn}, max={maxconn})")
        except Exception as e:
            logger.error(f"Failed to initialize connection pool: {str(e)}")
            raise

    def _is_connection_alive(self, conn) -> bool:
        """Check if a connection is still alive and usable"""
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
            return True
        except psycopg2.Error:
            return False

    @contextmanager
    def get_connection(self):
        """Get a database connection from the pool with stale connection handling"""
        conn = None
        conn_is_bad = False
        try:
            conn = self.connection_pool.getconn()

            # Server-side disconnects leave dead connections in the pool
            if not self._is_connection_alive(conn):
                logger.warning("Got stale connection from pool, discarding and getting fresh one")
                self.connection_pool.putconn(conn, close=True)
                conn = self.connection_pool.getconn()

            yield conn
            conn.commit()
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            conn_is_bad = True
            logger.error(f"Connection error (will discard connection): {str(e)}")
            raise
        except Exception as e:
            if conn:
                try:
                    conn.rollback()
                except psycopg2.Error:
                    conn_is_bad = True
            logger.error(f"Database error: {str(e)}")
            raise
        finally:
            if conn:
                self.connection_pool.putconn(conn, close=conn_is_bad)

    def _run(self, query: str, params: Optional[tuple], fetch: bool, max_retries: int):
        """Run one statement, retrying only when the connection itself failed"""
        for attempt in range(max_retries + 1):
            try:
                with self.get_connection() as conn:
                    with conn.cursor() as cursor:
                        cursor.execute(query, params)
                        return cursor.fetchall() if fetch else cursor.rowcount
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                if attempt >= max_retries:
                    raise
                logger.warning(f"Statement failed (attempt {attempt + 1}/{max_retries + 1}), retrying: {str(e)}")

    def execute_query(self, query: str, params: Optional[tuple] = None, max_retries: int = 2) -> List[Dict[str, Any]]:
        """Execute a SELECT and return rows as dictionaries"""
        return self._run(query, params, fetch=True, max_retries=max_retries)

    def execute_update(self, query: str, params: Optional[tuple] = None, max_retries: int = 2) -> int:
        """Execute an INSERT/UPDATE/DELETE/DDL statement and return the affected row count"""
        return self._run(query, params, fetch=False, max_retries=max_retries)

    def close_all_connections(self):
        """Close all connections in the pool (call on shutdown)"""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("All database connections closed")


_db: Optional[Database] = None


def get_database() -> Database:
    """Shared pool, created on first use so the in-memory backend never connects"""
    global _db
    if _db is None:
        _db = Database()
    return _db
