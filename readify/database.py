import fnmatch
import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from readify import config
from readify.errors import StorageError

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Key-value store on SQLite.
    Scalar keys hold JSON values; list keys hold ordered string items.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path is not None else config.DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_db()

    def get_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        """Initializes the database schema."""
        conn = self.get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            # position grows at the tail; lpush uses negative positions
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_lists (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    item TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_kv_lists_key ON kv_lists(key, position)")
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Database init failed: {e}")
        finally:
            conn.close()

    @contextmanager
    def pipeline(self) -> Iterator["Pipeline"]:
        """Runs several writes in one transaction."""
        conn = self.get_connection()
        try:
            # write lock up front; reads inside a pipeline see committed state only
            conn.execute("BEGIN IMMEDIATE")
            yield Pipeline(conn)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"[KV] pipeline failed: {e}")
            raise StorageError(f"Storage write failed: {e}")
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # --- Scalar keys ---

    def get(self, key: str) -> Optional[Any]:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT value_json FROM kv WHERE key=?", (key,)).fetchone()
            return json.loads(row["value_json"]) if row else None
        except sqlite3.Error as e:
            raise StorageError(f"Storage read failed for {key}: {e}")
        finally:
            conn.close()

    def mget(self, *keys: str) -> List[Optional[Any]]:
        if not keys:
            return []
        conn = self.get_connection()
        try:
            marks = ",".join("?" for _ in keys)
            rows = conn.execute(f"SELECT key, value_json FROM kv WHERE key IN ({marks})", keys).fetchall()
            found = {r["key"]: json.loads(r["value_json"]) for r in rows}
            return [found.get(k) for k in keys]
        except sqlite3.Error as e:
            raise StorageError(f"Storage read failed: {e}")
        finally:
            conn.close()

    def set(self, key: str, value: Any):
        with self.pipeline() as p:
            p.set(key, value)

    def delete(self, *keys: str):
        with self.pipeline() as p:
            p.delete(*keys)

    def keys(self, pattern: str = "*") -> List[str]:
        """Glob-style key listing over scalar and list keys."""
        conn = self.get_connection()
        try:
            rows = conn.execute("SELECT key FROM kv UNION SELECT DISTINCT key FROM kv_lists").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Storage read failed: {e}")
        finally:
            conn.close()
        return sorted(r["key"] for r in rows if fnmatch.fnmatchcase(r["key"], pattern))

    # --- List keys ---

    def lpush(self, key: str, *items: str):
        with self.pipeline() as p:
            p.lpush(key, *items)

    def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT item FROM kv_lists WHERE key=? ORDER BY position ASC, id DESC", (key,)
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Storage read failed for {key}: {e}")
        finally:
            conn.close()
        items = [r["item"] for r in rows]
        end = None if stop == -1 else stop + 1
        return items[start:end]

    def lrem(self, key: str, count: int, item: str):
        with self.pipeline() as p:
            p.lrem(key, count, item)


class Pipeline:
    """Write operations bound to one open transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, key: str) -> Optional[Any]:
        row = self.conn.execute("SELECT value_json FROM kv WHERE key=?", (key,)).fetchone()
        return json.loads(row["value_json"]) if row else None

    def setnx(self, key: str, value: Any) -> bool:
        """Sets key only if absent. Returns whether it was written."""
        cur = self.conn.execute(
            "INSERT INTO kv (key, value_json) VALUES (?, ?) ON CONFLICT(key) DO NOTHING",
            (key, json.dumps(value, ensure_ascii=False)),
        )
        return cur.rowcount == 1

    def set(self, key: str, value: Any):
        self.conn.execute("""
            INSERT INTO kv (key, value_json) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value_json=excluded.value_json,
                updated_at=CURRENT_TIMESTAMP
        """, (key, json.dumps(value, ensure_ascii=False)))

    def delete(self, *keys: str):
        for key in keys:
            self.conn.execute("DELETE FROM kv WHERE key=?", (key,))
            self.conn.execute("DELETE FROM kv_lists WHERE key=?", (key,))

    def lpush(self, key: str, *items: str):
        row = self.conn.execute("SELECT MIN(position) AS lo FROM kv_lists WHERE key=?", (key,)).fetchone()
        lo = row["lo"] if row and row["lo"] is not None else 0
        for item in items:
            lo -= 1
            self.conn.execute(
                "INSERT INTO kv_lists (key, position, item) VALUES (?, ?, ?)", (key, lo, item)
            )

    def lrem(self, key: str, count: int, item: str):
        """Removes up to `count` occurrences from the head; count=0 removes all."""
        rows = self.conn.execute(
            "SELECT id FROM kv_lists WHERE key=? AND item=? ORDER BY position ASC, id DESC", (key, item)
        ).fetchall()
        if count > 0:
            rows = rows[:count]
        for r in rows:
            self.conn.execute("DELETE FROM kv_lists WHERE id=?", (r["id"],))


def to_dict(record: Optional[Dict]) -> Optional[Dict]:
    """Values written as JSON strings by older clients are decoded once more."""
    if record is None:
        return None
    if isinstance(record, str):
        try:
            record = json.loads(record)
        except ValueError:
            logger.error("[KV] corrupted record, not JSON")
            return None
    return record if isinstance(record, dict) else None
