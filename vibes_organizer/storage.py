"""
Index storage module - Persist per-file metadata and descriptions.

The index maps absolute file paths to the metadata captured when the file
was last analyzed, so unchanged files are never sent for analysis twice.
Stores support a single in-flight transaction and point-in-time snapshots
of individual rows.
"""
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from vibes_organizer.errors import NotIndexedError, TransactionError
from vibes_organizer.models import (
    FileOperation,
    FileType,
    IndexedFile,
    IndexSnapshot,
    mtime_of,
    normalize_path,
)

logger = logging.getLogger(__name__)


def directory_prefix(directory: str) -> str:
    """Normalized directory path terminated by a separator."""
    prefix = normalize_path(directory)
    if not prefix.endswith(os.sep):
        prefix += os.sep
    return prefix


def read_live_metadata(path: str):
    """(size, mtime, symlink target) of a path without following links."""
    stat = os.lstat(path)
    symlink_target = os.readlink(path) if os.path.islink(path) else None
    return stat.st_size, mtime_of(stat), symlink_target


class IndexStore(ABC):
    """Persistent, transactional file index."""

    @abstractmethod
    def get(self, path: str) -> Optional[IndexedFile]:
        """Return the stored record for a path, or None."""

    @abstractmethod
    def upsert(self, record: IndexedFile) -> None:
        """Insert or replace the record keyed by record.path."""

    @abstractmethod
    def remove(self, path: str) -> None:
        """Delete the record for a path (no-op if absent)."""

    @abstractmethod
    def list_under(self, directory: str) -> List[IndexedFile]:
        """All records at or below a directory."""

    @abstractmethod
    def all_paths(self) -> List[str]:
        """Every stored path."""

    @abstractmethod
    def begin(self) -> None:
        """Open the single allowed transaction."""

    @abstractmethod
    def commit(self) -> None:
        """Commit the open transaction."""

    @abstractmethod
    def rollback(self) -> None:
        """Discard the open transaction."""

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """Whether a transaction is open."""

    def close(self) -> None:
        """Release backing resources."""

    def count(self) -> int:
        return len(self.all_paths())

    def is_indexed(self, path: str) -> bool:
        return self.get(path) is not None

    def needs_reindex(self, path: str) -> bool:
        """
        Compare the live modification time with the stored one.

        Raises:
            NotIndexedError: If the path has no record
            FileNotFoundError: If the file is gone
        """
        record = self.get(path)
        if record is None:
            raise NotIndexedError(path)
        current = mtime_of(os.lstat(path))
        return current != record.last_modified

    def update_path(self, old_path: str, new_path: str) -> IndexedFile:
        """
        Move a record to a new key and refresh its live metadata.

        The description and indexed_at are kept; size, mtime and symlink
        target are read from the file now at new_path.
        """
        record = self.get(old_path)
        if record is None:
            raise NotIndexedError(old_path)

        size, last_modified, symlink_target = read_live_metadata(new_path)
        moved = record.model_copy(update={
            "path": normalize_path(new_path),
            "size": size,
            "last_modified": last_modified,
            "symlink_target": symlink_target,
            "updated_at": datetime.now(),
        })

        self.remove(old_path)
        self.remove(moved.path)
        self.upsert(moved)
        return moved

    @contextmanager
    def transaction(self) -> Iterator["IndexStore"]:
        """Commit on success, roll back on any exception."""
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        try:
            self.commit()
        except TransactionError:
            self.rollback()
            raise

    def create_snapshot(self, operations: Iterable[FileOperation]) -> IndexSnapshot:
        """Capture the current record (or absence) of every from/to path."""
        entries: Dict[str, Optional[IndexedFile]] = {}
        for operation in operations:
            for path in (operation.from_path, operation.to_path):
                path = normalize_path(path)
                if path not in entries:
                    entries[path] = self.get(path)

        snapshot = IndexSnapshot(entries=entries)
        logger.debug(f"Created index snapshot with {len(snapshot)} entries")
        return snapshot

    def restore_snapshot(self, snapshot: IndexSnapshot) -> None:
        """
        Replay a snapshot inside its own transaction.

        Raises:
            TransactionError: If any step fails; nothing is applied then
        """
        self.begin()
        path = None
        try:
            for path, record in snapshot.ordered_entries():
                if record is not None:
                    self.upsert(record)
                else:
                    self.remove(path)
        except Exception as e:
            self.rollback()
            raise TransactionError(f"Failed to restore index snapshot at {path}: {e}") from e
        self.commit()
        logger.info(f"Restored index snapshot with {len(snapshot)} entries")

    def validate_index(self) -> List[str]:
        """Stored paths whose backing file no longer exists."""
        orphaned = [path for path in self.all_paths() if not os.path.lexists(path)]
        logger.debug(f"Found {len(orphaned)} orphaned index entries")
        return orphaned

    def remove_orphaned(self, directory: str) -> int:
        """Delete orphaned rows under a directory and return how many."""
        removed = 0
        for record in self.list_under(directory):
            if os.path.lexists(record.path):
                continue
            self.remove(record.path)
            removed += 1
            logger.debug(f"Removed orphaned entry: {record.path}")

        logger.info(f"Removed {removed} orphaned entries from {directory}")
        return removed


_SCHEMA = """
CREATE TABLE IF NOT EXISTS indexed_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path TEXT UNIQUE NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    file_type TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    last_modified TEXT NOT NULL,
    indexed_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    symlink_target TEXT
);
CREATE INDEX IF NOT EXISTS idx_file_path ON indexed_files(file_path);
CREATE INDEX IF NOT EXISTS idx_file_type ON indexed_files(file_type);
CREATE INDEX IF NOT EXISTS idx_updated_at ON indexed_files(updated_at);
"""

_COLUMNS = (
    "file_path, description, file_type, file_size, last_modified, "
    "indexed_at, updated_at, symlink_target"
)


def _record_from_row(row: sqlite3.Row) -> IndexedFile:
    return IndexedFile(
        path=row["file_path"],
        description=row["description"] or "",
        file_type=FileType(row["file_type"]),
        size=int(row["file_size"]),
        last_modified=datetime.fromisoformat(row["last_modified"]),
        indexed_at=datetime.fromisoformat(row["indexed_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        symlink_target=row["symlink_target"],
    )


class SQLiteIndexStore(IndexStore):
    """Index backed by a SQLite database file."""

    def __init__(self, db_path: str):
        """
        Open (and create if needed) the index database.

        Args:
            db_path: Database file path, or ":memory:"
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        # autocommit; transactions are opened explicitly with BEGIN
        self._conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False

        with self._lock:
            if db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA busy_timeout = 5000")
            self._conn.executescript(_SCHEMA)

        logger.info(f"Index database initialized at {db_path}")

    def close(self) -> None:
        with self._lock:
            if self._in_transaction:
                self._conn.execute("ROLLBACK")
                self._in_transaction = False
            self._conn.close()

    def get(self, path: str) -> Optional[IndexedFile]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM indexed_files WHERE file_path = ?",
                (normalize_path(path),),
            ).fetchone()
        return _record_from_row(row) if row is not None else None

    def upsert(self, record: IndexedFile) -> None:
        with self._lock:
            self._conn.execute(
                f"""
                INSERT INTO indexed_files ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(file_path) DO UPDATE SET
                    description = excluded.description,
                    file_type = excluded.file_type,
                    file_size = excluded.file_size,
                    last_modified = excluded.last_modified,
                    indexed_at = excluded.indexed_at,
                    updated_at = excluded.updated_at,
                    symlink_target = excluded.symlink_target
                """,
                (
                    normalize_path(record.path),
                    record.description,
                    record.file_type.value,
                    record.size,
                    record.last_modified.isoformat(),
                    record.indexed_at.isoformat(),
                    record.updated_at.isoformat(),
                    record.symlink_target,
                ),
            )

    def remove(self, path: str) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM indexed_files WHERE file_path = ?", (normalize_path(path),)
            )

    def list_under(self, directory: str) -> List[IndexedFile]:
        prefix = directory_prefix(directory)
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM indexed_files
                WHERE file_path = ? OR substr(file_path, 1, ?) = ?
                ORDER BY file_path
                """,
                (normalize_path(directory), len(prefix), prefix),
            ).fetchall()
        return [_record_from_row(row) for row in rows]

    def all_paths(self) -> List[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT file_path FROM indexed_files ORDER BY file_path"
            ).fetchall()
        return [row["file_path"] for row in rows]

    def count(self) -> int:
        with self._lock:
            return int(self._conn.execute("SELECT COUNT(*) FROM indexed_files").fetchone()[0])

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def begin(self) -> None:
        with self._lock:
            if self._in_transaction:
                raise TransactionError("transaction already in progress")
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise TransactionError(f"failed to begin transaction: {e}") from e
            self._in_transaction = True
        logger.debug("Index transaction started")

    def commit(self) -> None:
        with self._lock:
            if not self._in_transaction:
                raise TransactionError("no transaction in progress")
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                # still inside the transaction; caller may retry or roll back
                raise TransactionError(f"failed to commit transaction: {e}") from e
            self._in_transaction = False
        logger.debug("Index transaction committed")

    def rollback(self) -> None:
        with self._lock:
            if not self._in_transaction:
                raise TransactionError("no transaction in progress")
            self._in_transaction = False
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                raise TransactionError(f"failed to rollback transaction: {e}") from e
        logger.debug("Index transaction rolled back")


class InMemoryIndexStore(IndexStore):
    """Dict-backed index for tests and throwaway runs."""

    def __init__(self):
        self._records: Dict[str, IndexedFile] = {}
        self._saved: Optional[Dict[str, IndexedFile]] = None

    def get(self, path: str) -> Optional[IndexedFile]:
        return self._records.get(normalize_path(path))

    def upsert(self, record: IndexedFile) -> None:
        key = normalize_path(record.path)
        self._records[key] = record.model_copy(update={"path": key})

    def remove(self, path: str) -> None:
        self._records.pop(normalize_path(path), None)

    def list_under(self, directory: str) -> List[IndexedFile]:
        exact = normalize_path(directory)
        prefix = directory_prefix(directory)
        return [
            self._records[path]
            for path in sorted(self._records)
            if path == exact or path.startswith(prefix)
        ]

    def all_paths(self) -> List[str]:
        return sorted(self._records)

    @property
    def in_transaction(self) -> bool:
        return self._saved is not None

    def begin(self) -> None:
        if self._saved is not None:
            raise TransactionError("transaction already in progress")
        self._saved = dict(self._records)

    def commit(self) -> None:
        if self._saved is None:
            raise TransactionError("no transaction in progress")
        self._saved = None

    def rollback(self) -> None:
        if self._saved is None:
            raise TransactionError("no transaction in progress")
        self._records = self._saved
        self._saved = None
