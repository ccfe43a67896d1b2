"""Append-only metadata for backups and snapshots.

Records live in ``index.db`` at the backup root, one row per record:

    .migration-backups/
    +-- full-1767089492432/
    |   +-- app/page.tsx
    |   +-- package.json
    +-- incremental-1767090012345/
    |   +-- ...
    +-- environment/
    |   +-- full-1767089492432/.env
    +-- index.db

Rows are inserted, never updated or deleted. Reads go through the
same thread-local connection, so a record appended in this process is
visible to the very next read.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class MetadataStoreError(RuntimeError):
    """Raised when the index database cannot be read or written."""


class DuplicateIdError(MetadataStoreError):
    """Raised when a record id is already present in the index."""


@dataclass(frozen=True)
class BackupRecord:
    id: str
    timestamp: datetime
    type: str
    size: int
    checksum: str
    included_files: tuple[str, ...] = ()
    has_environment_snapshot: bool = False
    path: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "size": self.size,
            "checksum": self.checksum,
            "included_files": list(self.included_files),
            "has_environment_snapshot": self.has_environment_snapshot,
            "path": self.path,
        }


@dataclass(frozen=True)
class SnapshotRecord:
    id: str
    label: str
    timestamp: datetime
    backup_id: str
    description: str = field(default="")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "timestamp": self.timestamp.isoformat(),
            "backup_id": self.backup_id,
            "description": self.description,
        }


def _ts(value: datetime) -> str:
    # Aware timestamps are stored in UTC so text order is time order.
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds")


def _is_duplicate_id(exc: sqlite3.IntegrityError) -> bool:
    return "UNIQUE constraint failed" in str(exc)


def _backup_from_row(row: sqlite3.Row) -> BackupRecord:
    return BackupRecord(
        id=row["id"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        type=row["type"],
        size=row["size"],
        checksum=row["checksum"],
        included_files=tuple(json.loads(row["included_files"])),
        has_environment_snapshot=bool(row["has_environment_snapshot"]),
        path=row["path"],
    )


def _snapshot_from_row(row: sqlite3.Row) -> SnapshotRecord:
    return SnapshotRecord(
        id=row["id"],
        label=row["label"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        backup_id=row["backup_id"],
        description=row["description"],
    )


class MetadataStore:
    """Thread-safe SQLite store of BackupRecord and SnapshotRecord rows."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._init_db()

    # ------------------------------------------------------------------
    # Connection / schema
    # ------------------------------------------------------------------

    def _get_connection(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(str(self.db_path), timeout=10)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
            self._local.conn.execute("PRAGMA foreign_keys=ON")
        return self._local.conn

    def _init_db(self):
        conn = self._get_connection()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS backups (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                timestamp TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('full', 'incremental')),
                size INTEGER NOT NULL,
                checksum TEXT NOT NULL,
                included_files TEXT NOT NULL,
                has_environment_snapshot INTEGER NOT NULL DEFAULT 0,
                path TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS snapshots (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                label TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                backup_id TEXT NOT NULL REFERENCES backups(id),
                description TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_backups_timestamp
                ON backups(timestamp);
            CREATE INDEX IF NOT EXISTS idx_snapshots_backup
                ON snapshots(backup_id);
        """)
        conn.commit()
        logger.debug("Metadata index ready at %s", self.db_path)

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    def append_backup_record(self, record: BackupRecord) -> None:
        with self._write_lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """INSERT INTO backups
                       (id, timestamp, type, size, checksum, included_files,
                        has_environment_snapshot, path)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (record.id, _ts(record.timestamp), record.type, record.size,
                     record.checksum, json.dumps(list(record.included_files)),
                     int(record.has_environment_snapshot), record.path),
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                error = DuplicateIdError if _is_duplicate_id(exc) else MetadataStoreError
                raise error(f"Could not append backup {record.id}: {exc}") from exc
            except sqlite3.Error as exc:
                conn.rollback()
                raise MetadataStoreError(
                    f"Could not append backup {record.id}: {exc}"
                ) from exc
        logger.debug("Recorded backup %s (%d files)", record.id, len(record.included_files))

    def append_snapshot_record(self, record: SnapshotRecord) -> None:
        with self._write_lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """INSERT INTO snapshots
                       (id, label, timestamp, backup_id, description)
                       VALUES (?, ?, ?, ?, ?)""",
                    (record.id, record.label, _ts(record.timestamp),
                     record.backup_id, record.description),
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                error = DuplicateIdError if _is_duplicate_id(exc) else MetadataStoreError
                raise error(f"Could not append snapshot {record.id}: {exc}") from exc
            except sqlite3.Error as exc:
                conn.rollback()
                raise MetadataStoreError(
                    f"Could not append snapshot {record.id}: {exc}"
                ) from exc
        logger.debug("Recorded snapshot %s -> %s", record.id, record.backup_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise MetadataStoreError(f"Metadata query failed: {exc}") from exc

    def load_backup_records(self) -> list[BackupRecord]:
        """All backups in append order (oldest first)."""
        return [_backup_from_row(r) for r in self._query("SELECT * FROM backups ORDER BY seq")]

    def load_snapshot_records(self) -> list[SnapshotRecord]:
        """All snapshots in append order (oldest first)."""
        return [_snapshot_from_row(r) for r in self._query("SELECT * FROM snapshots ORDER BY seq")]

    def get_backup(self, backup_id: str) -> BackupRecord | None:
        rows = self._query("SELECT * FROM backups WHERE id = ?", (backup_id,))
        return _backup_from_row(rows[0]) if rows else None

    def get_snapshot(self, snapshot_id: str) -> SnapshotRecord | None:
        rows = self._query("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,))
        return _snapshot_from_row(rows[0]) if rows else None

    def latest_backup(self) -> BackupRecord | None:
        """Most recent backup of any type, by creation timestamp."""
        rows = self._query(
            "SELECT * FROM backups ORDER BY timestamp DESC, seq DESC LIMIT 1"
        )
        return _backup_from_row(rows[0]) if rows else None

    def id_exists(self, record_id: str) -> bool:
        rows = self._query(
            "SELECT 1 FROM backups WHERE id = ? UNION ALL SELECT 1 FROM snapshots WHERE id = ?",
            (record_id, record_id),
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self):
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None
