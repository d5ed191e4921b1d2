"""
SQLite-backed TTL cache engine.

Entries live in a single ``cache`` table keyed by a text key. Values are
stored as JSON text together with an absolute expiry (unix seconds), the
creation and last-access times and a hit counter. Expired rows stay on disk
until the reclamation task (or an explicit ``cleanup()``) removes them, but
they are never returned by reads.
"""

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

import aiosqlite

from shared.errors import (
    DeserializationError,
    NotInitializedError,
    SerializationError,
    StorageError,
    ValidationError,
)
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


MEMORY_PATH = ":memory:"
DEFAULT_TTL = 3600
DEFAULT_CLEANUP_INTERVAL_MS = 300000
DEFAULT_ENTRIES_LIMIT = 50

CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS cache (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        expires_at INTEGER NOT NULL,
        created_at INTEGER DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)),
        accessed_at INTEGER DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)),
        hit_count INTEGER DEFAULT 1
    )
"""
CREATE_INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_expires_at ON cache(expires_at)"


def _to_datetime(timestamp: Optional[int]) -> Optional[datetime]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


@dataclass
class CacheEntry:
    """Snapshot of an active cache row."""
    key: str
    value: Any
    expires_at: datetime
    created_at: Optional[datetime]
    accessed_at: Optional[datetime]
    hit_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SQLiteCache:
    """Persistent TTL key-value store with hit accounting and periodic reclamation."""

    def __init__(
        self,
        db_path: str = MEMORY_PATH,
        *,
        default_ttl: int = DEFAULT_TTL,
        cleanup_interval_ms: int = DEFAULT_CLEANUP_INTERVAL_MS,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.db_path = str(db_path)
        self.default_ttl = self._validate_ttl(default_ttl)
        if cleanup_interval_ms <= 0:
            raise ValidationError(
                "Cleanup interval must be a positive number of milliseconds",
                {"cleanup_interval_ms": cleanup_interval_ms},
            )
        self.cleanup_interval_ms = cleanup_interval_ms
        self.metrics = metrics
        self.logger = get_logger("cache.engine")

        self._clock = clock
        self._db: Optional[aiosqlite.Connection] = None
        self._statements: Dict[str, str] = {}
        self._cleanup_task: Optional[asyncio.Task] = None
        self.consecutive_cleanup_failures = 0

    @property
    def is_initialized(self) -> bool:
        return self._db is not None

    @property
    def is_memory(self) -> bool:
        return self.db_path == MEMORY_PATH

    async def init(self) -> bool:
        """Open storage, create the schema and start the reclamation task."""
        if self._db is not None:
            return True

        try:
            if not self.is_memory:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            db = await aiosqlite.connect(self.db_path, isolation_level=None)
            try:
                if not self.is_memory:
                    await db.execute("PRAGMA journal_mode = WAL")
                await db.execute(CREATE_TABLE_SQL)
                await db.execute(CREATE_INDEX_SQL)
            except aiosqlite.Error:
                await db.close()
                raise
        except (OSError, aiosqlite.Error) as exc:
            self.logger.error("Cache initialization failed", db_path=self.db_path, error=str(exc))
            raise StorageError(
                f"Failed to initialize cache: {exc}",
                {"db_path": self.db_path},
            ) from exc

        self._db = db
        self._prepare_statements()
        self._start_cleanup()
        self.logger.info(
            "Cache initialized",
            db_path=self.db_path,
            default_ttl=self.default_ttl,
            cleanup_interval_ms=self.cleanup_interval_ms,
        )
        return True

    def _prepare_statements(self):
        """Build the statement table; the driver keeps compiled plans in its per-connection cache."""
        self._statements = {
            "set": """
                INSERT OR REPLACE INTO cache (key, value, expires_at, created_at, accessed_at, hit_count)
                VALUES (?, ?, ?, ?, ?, 1)
            """,
            "get": "SELECT value FROM cache WHERE key = ? AND expires_at > ?",
            "update_access": """
                UPDATE cache SET accessed_at = ?, hit_count = hit_count + 1
                WHERE key = ? AND expires_at > ?
            """,
            "delete": "DELETE FROM cache WHERE key = ?",
            "has": "SELECT 1 FROM cache WHERE key = ? AND expires_at > ?",
            "clear": "DELETE FROM cache",
            "cleanup": "DELETE FROM cache WHERE expires_at <= ?",
            "stats": """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN expires_at > :now THEN 1 ELSE 0 END) AS active,
                    SUM(CASE WHEN expires_at <= :now THEN 1 ELSE 0 END) AS expired,
                    AVG(LENGTH(value)) AS avg_size,
                    SUM(hit_count) AS total_hits
                FROM cache
            """,
            "entries": """
                SELECT key, value, expires_at, created_at, accessed_at, hit_count
                FROM cache
                WHERE expires_at > ?
                ORDER BY accessed_at DESC
                LIMIT ?
            """,
        }

    def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise NotInitializedError()
        return self._db

    def _now(self) -> int:
        return int(self._clock())

    @staticmethod
    def _validate_ttl(ttl: Any) -> int:
        if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0:
            raise ValidationError("TTL must be a positive integer number of seconds", {"ttl": ttl})
        return ttl

    @staticmethod
    def _serialize(value: Any) -> str:
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"Failed to serialize cache value: {exc}") from exc

    @staticmethod
    def _deserialize(key: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise DeserializationError(
                f"Failed to deserialize cache value: {exc}",
                {"key": key},
            ) from exc

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store ``value`` under ``key``, replacing any previous entry."""
        db = self._connection()
        actual_ttl = self.default_ttl if ttl is None else self._validate_ttl(ttl)
        serialized = self._serialize(value)
        now = self._now()

        try:
            await db.execute(self._statements["set"], (key, serialized, now + actual_ttl, now, now))
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to set cache: {exc}", {"key": key}) from exc

        self.logger.debug("Cached value", key=key, ttl=actual_ttl)
        return True

    async def get(self, key: str) -> Optional[Any]:
        """Return the active value for ``key`` and record the access, or ``None``."""
        db = self._connection()
        now = self._now()

        try:
            async with db.execute(self._statements["get"], (key, now)) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to get cache: {exc}", {"key": key}) from exc
        if row is None:
            return None

        # Only a readable value counts as a hit
        value = self._deserialize(key, row[0])
        try:
            await db.execute(self._statements["update_access"], (now, key, now))
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to get cache: {exc}", {"key": key}) from exc
        return value

    async def has(self, key: str) -> bool:
        """Check for an active entry without touching access statistics."""
        db = self._connection()
        try:
            async with db.execute(self._statements["has"], (key, self._now())) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to check cache: {exc}", {"key": key}) from exc
        return row is not None

    async def delete(self, key: str) -> bool:
        db = self._connection()
        try:
            cursor = await db.execute(self._statements["delete"], (key,))
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to delete cache: {exc}", {"key": key}) from exc
        return cursor.rowcount > 0

    async def clear(self) -> None:
        db = self._connection()
        try:
            await db.execute(self._statements["clear"])
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to clear cache: {exc}") from exc
        self.logger.info("Cache cleared")

    async def cleanup(self) -> int:
        """Remove every row whose expiry has passed and return how many went."""
        db = self._connection()
        try:
            cursor = await db.execute(self._statements["cleanup"], (self._now(),))
        except aiosqlite.Error as exc:
            raise StorageError(f"Cleanup failed: {exc}") from exc
        return max(cursor.rowcount, 0)

    async def stats(self) -> Dict[str, Any]:
        """Aggregate snapshot over all stored rows, expired ones included."""
        db = self._connection()
        try:
            async with db.execute(self._statements["stats"], {"now": self._now()}) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to get stats: {exc}") from exc

        total, active, expired, avg_size, total_hits = row
        total = total or 0
        total_hits = total_hits or 0
        return {
            "total": total,
            "active": active or 0,
            "expired": expired or 0,
            "avg_size": int(round(avg_size or 0)),
            "total_hits": total_hits,
            "hit_rate": round(total_hits / total, 2) if total > 0 else 0.0,
        }

    async def list_entries(self, limit: int = DEFAULT_ENTRIES_LIMIT) -> List[CacheEntry]:
        """Active entries, most recently accessed first."""
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError("Limit must be a positive integer", {"limit": limit})

        db = self._connection()
        try:
            async with db.execute(self._statements["entries"], (self._now(), limit)) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to get all entries: {exc}") from exc

        return [
            CacheEntry(
                key=key,
                value=self._deserialize(key, value),
                expires_at=_to_datetime(expires_at),
                created_at=_to_datetime(created_at),
                accessed_at=_to_datetime(accessed_at),
                hit_count=hit_count,
            )
            for key, value, expires_at, created_at, accessed_at, hit_count in rows
        ]

    def _start_cleanup(self):
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def _cleanup_loop(self):
        """Periodic reclamation; a failing cycle is logged and the next one still runs."""
        interval = self.cleanup_interval_ms / 1000
        while self._db is not None:
            try:
                await asyncio.sleep(interval)
                await self._run_scheduled_cleanup()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                self.consecutive_cleanup_failures += 1
                self.logger.error(
                    "Cache cleanup error",
                    error=str(exc),
                    consecutive_failures=self.consecutive_cleanup_failures,
                )
                if self.metrics:
                    self.metrics.record_error("cache_cleanup")

    async def _run_scheduled_cleanup(self) -> int:
        start = time.perf_counter()
        cleaned = await self.cleanup()
        self.consecutive_cleanup_failures = 0

        if cleaned > 0:
            self.logger.info("Cache cleanup removed expired entries", removed=cleaned)
        if self.metrics:
            self.metrics.record_cleanup(cleaned, time.perf_counter() - start)
        return cleaned

    async def close(self) -> None:
        """Stop reclamation and release the connection. Safe to call repeatedly."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        db, self._db = self._db, None
        self._statements = {}
        if db is not None:
            await db.close()
            self.logger.info("Cache closed", db_path=self.db_path)

    @staticmethod
    def generate_key(value: Any) -> str:
        """Deterministic 32-char fingerprint of ``value``."""
        if isinstance(value, str):
            canonical = value
        else:
            try:
                canonical = json.dumps(value, sort_keys=True, separators=(",", ":"))
            except (TypeError, ValueError) as exc:
                raise SerializationError(f"Failed to canonicalize key input: {exc}") from exc
        return hashlib.md5(canonical.encode("utf-8")).hexdigest()
