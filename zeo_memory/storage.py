"""
Durable memory storage.

Provides SQLite-based persistent storage for memory records.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .errors import StorageError
from .types import MemoryRecord, MemoryStats, SessionSummary


logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Abstract base class for durable memory record stores."""
    
    @abstractmethod
    def insert_or_replace(self, record: MemoryRecord) -> str:
        """
        Store a record, replacing any record with the same id.
        
        Args:
            record: The record to store
            
        Returns:
            The id of the stored record
        """
        pass
    
    @abstractmethod
    def get_by_id(self, memory_id: str) -> Optional[MemoryRecord]:
        """
        Retrieve a record by id.
        
        Args:
            memory_id: The id of the record to retrieve
            
        Returns:
            The record if found, None otherwise
        """
        pass
    
    @abstractmethod
    def find_by_hash(self, content_hash: str) -> Optional[str]:
        """Return the id of a record with this content hash, if any."""
        pass
    
    @abstractmethod
    def delete_by_id(self, memory_id: str) -> bool:
        """
        Delete a record.
        
        Returns:
            True if a record was deleted, False if not found
        """
        pass
    
    @abstractmethod
    def query(
        self,
        session_id: Optional[str] = None,
        contains: Optional[str] = None,
        with_embedding: bool = False,
        ascending: bool = False,
        limit: Optional[int] = None,
    ) -> List[MemoryRecord]:
        """
        Scan records, newest first unless ``ascending`` is set.
        
        Args:
            session_id: Only records in this session
            contains: Case-sensitive substring the content must contain
            with_embedding: Only records that have an embedding
            ascending: Order oldest first
            limit: Maximum number of records
        """
        pass
    
    @abstractmethod
    def update_tags(self, memory_id: str, tags: List[str], updated_at: str) -> bool:
        """Replace a record's tags. Returns False if the record is gone."""
        pass
    
    @abstractmethod
    def list_sessions(self) -> List[SessionSummary]:
        """One summary per distinct session, most recently active first."""
        pass
    
    @abstractmethod
    def get_stats(self, session_id: Optional[str] = None) -> MemoryStats:
        """Overview statistics, optionally for one session."""
        pass
    
    @abstractmethod
    def tag_lists(self, session_id: Optional[str] = None) -> List[List[str]]:
        """Tags of every record, optionally for one session."""
        pass
    
    @abstractmethod
    def daily_activity(
        self,
        since: str,
        session_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Count records per UTC day created at or after ``since``.
        
        Returns:
            ``{"date": "YYYY-MM-DD", "count": n}`` rows, newest day first
        """
        pass


class SQLiteRecordStore(RecordStore):
    """
    SQLite-based memory record store.
    
    Uses one connection per thread. The schema is checked on every
    public call so the store recovers if the table is dropped
    underneath it. Any sqlite3 error is raised as StorageError.
    """
    
    # Default database location
    DEFAULT_DB_PATH = ".zeo_memory/memory.db"
    
    # Schema version for migrations
    SCHEMA_VERSION = 1
    
    MEMORY_DB = ":memory:"
    
    def __init__(
        self,
        db_path: Optional[str] = None,
        auto_create: bool = True,
    ):
        """
        Initialize SQLite storage.
        
        Args:
            db_path: Path to the database file. If None, uses default.
            auto_create: Whether to create the database if it doesn't exist.
        """
        if db_path is None:
            home = Path.home()
            db_path = str(home / self.DEFAULT_DB_PATH)
        
        self.db_path = db_path
        self._local = threading.local()
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._shared_lock = threading.RLock()
        
        if auto_create:
            self._ensure_db_exists()
            self.ensure_schema()
    
    def _ensure_db_exists(self):
        """Ensure the database directory exists."""
        if self.db_path == self.MEMORY_DB:
            return
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)
    
    def _connect(self, **kwargs) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, **kwargs)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open memory database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn
    
    @property
    def _conn(self) -> sqlite3.Connection:
        """Get the database connection for the current thread."""
        if self.db_path == self.MEMORY_DB:
            # An in-memory database only exists on its own connection
            if self._shared_conn is None:
                self._shared_conn = self._connect(check_same_thread=False)
            return self._shared_conn
        
        if not hasattr(self._local, 'conn') or self._local.conn is None:
            self._local.conn = self._connect()
        return self._local.conn
    
    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database transactions."""
        with self._shared_lock if self.db_path == self.MEMORY_DB else nullcontext():
            conn = self._conn
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(f"Memory database error: {e}") from e
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()
    
    @contextmanager
    def _session(self) -> Iterator[sqlite3.Cursor]:
        """Transaction preceded by the schema check."""
        self.ensure_schema()
        with self._transaction() as cursor:
            yield cursor
    
    def ensure_schema(self):
        """Create the schema if needed. Safe to call repeatedly."""
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    session_id TEXT DEFAULT 'default',
                    tags TEXT DEFAULT '[]',
                    context TEXT DEFAULT '{}',
                    embedding TEXT,
                    content_hash TEXT,
                    updated_at TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_session
                ON memories(session_id, timestamp DESC)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_hash
                ON memories(content_hash)
            """)
            cursor.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,)
            )
    
    def insert_or_replace(self, record: MemoryRecord) -> str:
        with self._session() as cursor:
            cursor.execute("""
                INSERT OR REPLACE INTO memories (
                    id, content, timestamp, session_id, tags, context,
                    embedding, content_hash, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.content,
                record.timestamp,
                record.session_id,
                json.dumps(record.tags),
                json.dumps(record.context),
                json.dumps(record.embedding) if record.embedding is not None else None,
                record.content_hash,
                record.updated_at,
            ))
        
        logger.debug(f"Stored memory record: {record.id}")
        return record.id
    
    def get_by_id(self, memory_id: str) -> Optional[MemoryRecord]:
        with self._session() as cursor:
            cursor.execute(
                "SELECT * FROM memories WHERE id = ?",
                (memory_id,)
            )
            row = cursor.fetchone()
        
        return MemoryRecord.from_row(row) if row else None
    
    def find_by_hash(self, content_hash: str) -> Optional[str]:
        with self._session() as cursor:
            cursor.execute(
                "SELECT id FROM memories WHERE content_hash = ? LIMIT 1",
                (content_hash,)
            )
            row = cursor.fetchone()
        
        return row["id"] if row else None
    
    def delete_by_id(self, memory_id: str) -> bool:
        with self._session() as cursor:
            cursor.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            deleted = cursor.rowcount > 0
        
        if deleted:
            logger.debug(f"Deleted memory record: {memory_id}")
        return deleted
    
    def query(
        self,
        session_id: Optional[str] = None,
        contains: Optional[str] = None,
        with_embedding: bool = False,
        ascending: bool = False,
        limit: Optional[int] = None,
    ) -> List[MemoryRecord]:
        conditions = []
        params: List[Any] = []
        
        if contains is not None:
            # instr() is case-sensitive and has no wildcard characters
            conditions.append("instr(content, ?) > 0")
            params.append(contains)
        
        if session_id is not None:
            conditions.append("session_id = ?")
            params.append(session_id)
        
        if with_embedding:
            conditions.append("embedding IS NOT NULL")
        
        sql = "SELECT * FROM memories"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        direction = "ASC" if ascending else "DESC"
        sql += f" ORDER BY timestamp {direction}, rowid {direction}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        
        with self._session() as cursor:
            cursor.execute(sql, params)
            rows = cursor.fetchall()
        
        return [MemoryRecord.from_row(row) for row in rows]
    
    def update_tags(self, memory_id: str, tags: List[str], updated_at: str) -> bool:
        with self._session() as cursor:
            cursor.execute(
                "UPDATE memories SET tags = ?, updated_at = ? WHERE id = ?",
                (json.dumps(tags), updated_at, memory_id)
            )
            return cursor.rowcount > 0
    
    def list_sessions(self) -> List[SessionSummary]:
        with self._session() as cursor:
            cursor.execute("""
                SELECT
                    session_id,
                    COUNT(*) as memory_count,
                    MAX(timestamp) as last_activity,
                    MIN(timestamp) as first_activity
                FROM memories
                GROUP BY session_id
                ORDER BY last_activity DESC
            """)
            rows = cursor.fetchall()
        
        return [
            SessionSummary(
                session_id=row["session_id"],
                memory_count=row["memory_count"],
                first_activity=row["first_activity"],
                last_activity=row["last_activity"],
            )
            for row in rows
        ]
    
    def get_stats(self, session_id: Optional[str] = None) -> MemoryStats:
        where, params = self._session_filter(session_id)
        
        with self._session() as cursor:
            cursor.execute(f"""
                SELECT
                    COUNT(*) as total_memories,
                    COUNT(DISTINCT session_id) as unique_sessions,
                    AVG(LENGTH(content)) as avg_content_length,
                    MAX(timestamp) as latest_memory,
                    MIN(timestamp) as earliest_memory
                FROM memories {where}
            """, params)
            row = cursor.fetchone()
        
        return MemoryStats(
            total_memories=row["total_memories"],
            unique_sessions=row["unique_sessions"],
            avg_content_length=row["avg_content_length"] or 0.0,
            earliest_memory=row["earliest_memory"],
            latest_memory=row["latest_memory"],
        )
    
    def tag_lists(self, session_id: Optional[str] = None) -> List[List[str]]:
        where, params = self._session_filter(session_id)
        
        with self._session() as cursor:
            cursor.execute(f"SELECT tags FROM memories {where}", params)
            rows = cursor.fetchall()
        
        return [json.loads(row["tags"]) if row["tags"] else [] for row in rows]
    
    def daily_activity(
        self,
        since: str,
        session_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        where, params = self._session_filter(session_id)
        where = f"{where} AND" if where else "WHERE"
        
        with self._session() as cursor:
            cursor.execute(f"""
                SELECT
                    substr(timestamp, 1, 10) as date,
                    COUNT(*) as count
                FROM memories
                {where} timestamp >= ?
                GROUP BY substr(timestamp, 1, 10)
                ORDER BY date DESC
            """, params + [since])
            rows = cursor.fetchall()
        
        return [{"date": row["date"], "count": row["count"]} for row in rows]
    
    @staticmethod
    def _session_filter(session_id: Optional[str]):
        if session_id is None:
            return "", []
        return "WHERE session_id = ?", [session_id]
    
    def close(self):
        """Close the database connection."""
        if hasattr(self._local, 'conn') and self._local.conn:
            self._local.conn.close()
            self._local.conn = None
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None
    
    def clear_all(self):
        """Clear all memory records. Use with caution!"""
        with self._session() as cursor:
            cursor.execute("DELETE FROM memories")
        
        logger.warning("Cleared all memory records")
