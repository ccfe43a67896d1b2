"""Full and incremental backups of the project working tree.

Each backup copies files into ``<backup_dir>/<id>/<relative path>``,
checksums exactly what landed there, and appends a BackupRecord to
the metadata store. Creation is best-effort: a file that cannot be
copied is left out of the record, and a tree that cannot be listed at
all yields an empty backup rather than an exception.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from src.backup.backup_config import (
    BACKUP_TYPE_FULL,
    BACKUP_TYPE_INCREMENTAL,
    BackupSettings,
)
from src.backup.checksum_service import StreamingChecksum
from src.backup.filesystem import (
    FileEnumerator,
    FileFailure,
    FileSystem,
    GlobFileEnumerator,
    LocalFileSystem,
)
from src.database.metadata_store import BackupRecord, MetadataStore

logger = logging.getLogger(__name__)


class IdAllocator:
    """Hands out ``<prefix>-<unix-millis>`` ids that are unique in the store.

    When the current millisecond is already taken the next free one is
    used, so two backups started in the same millisecond still get
    distinct ids. ``reserve`` claims a candidate outside this process
    (for backups, by creating its directory) and returns False when
    someone else already holds it. The returned timestamp is always the
    real clock value, in UTC.
    """

    def __init__(self, store: MetadataStore, clock: Callable[[], datetime] | None = None):
        self.store = store
        self.clock = clock or _utc_now
        self._lock = threading.Lock()
        self._issued: set[str] = set()

    def allocate(self, prefix: str,
                 reserve: Callable[[str], bool] | None = None) -> tuple[str, datetime]:
        with self._lock:
            ts = self.clock()
            millis = int(ts.timestamp() * 1000)
            while True:
                candidate = f"{prefix}-{millis}"
                if (candidate not in self._issued
                        and not self.store.id_exists(candidate)
                        and (reserve is None or reserve(candidate))):
                    break
                millis += 1
            self._issued.add(candidate)
        return candidate, ts


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BackupEngine:
    """Creates full and incremental backups for one project."""

    def __init__(
        self,
        settings: BackupSettings,
        store: MetadataStore,
        fs: FileSystem | None = None,
        enumerator: FileEnumerator | None = None,
        ids: IdAllocator | None = None,
    ):
        self.settings = settings
        self.store = store
        self.fs = fs or LocalFileSystem()
        self.enumerator = enumerator or GlobFileEnumerator()
        self.ids = ids or IdAllocator(store)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def create_full_backup(self) -> BackupRecord:
        return self._create_backup(BACKUP_TYPE_FULL)

    def create_incremental_backup(self) -> BackupRecord:
        """Back up only files modified after the most recent backup of any kind.

        With no earlier backup every enumerated file qualifies.
        """
        return self._create_backup(BACKUP_TYPE_INCREMENTAL)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _create_backup(self, backup_type: str) -> BackupRecord:
        since = None
        if backup_type == BACKUP_TYPE_INCREMENTAL:
            last = self.store.latest_backup()
            since = last.timestamp if last else None

        backup_id, ts = self.ids.allocate(backup_type, reserve=self._reserve_directory)
        backup_path = self.settings.backup_dir / backup_id
        logger.info("Starting %s backup %s", backup_type, backup_id)

        candidates = self._enumerate()
        if since is not None:
            candidates = self._modified_since(candidates, since)

        self._check_free_space(candidates)
        copied, failures = self._copy_files(candidates, backup_path)
        included, size, checksum, read_failures = self._read_back(copied, backup_path)
        failures.extend(read_failures)

        has_env = self._capture_environment(backup_id)

        record = BackupRecord(
            id=backup_id,
            timestamp=ts,
            type=backup_type,
            size=size,
            checksum=checksum,
            included_files=tuple(included),
            has_environment_snapshot=has_env,
            path=str(backup_path),
        )
        self.store.append_backup_record(record)

        if failures:
            logger.warning("Backup %s: %d of %d files could not be copied",
                           backup_id, len(failures), len(candidates))
        logger.info("Backup %s complete: %d files, %d bytes (checksum=%s)",
                    backup_id, len(record.included_files), record.size,
                    record.checksum[:12])
        return record

    def _enumerate(self) -> list[str]:
        try:
            files = self.enumerator.enumerate(
                self.settings.project_root,
                self.settings.include_patterns,
                self.settings.effective_ignore_patterns(),
            )
        except Exception:
            logger.exception("File enumeration failed under %s; backing up nothing",
                             self.settings.project_root)
            return []
        return list(dict.fromkeys(files or []))

    def _modified_since(self, candidates: list[str], since: datetime) -> list[str]:
        cutoff = since.timestamp()
        changed = []
        for rel in candidates:
            try:
                st = self.fs.stat_file(self.settings.project_root / rel)
            except OSError as exc:
                logger.debug("Skipping %s, stat failed: %s", rel, exc)
                continue
            if st.modified_time > cutoff:
                changed.append(rel)
        logger.debug("%d of %d files changed since %s", len(changed), len(candidates),
                     since.isoformat())
        return changed

    def _check_free_space(self, candidates: list[str]):
        free = self.fs.free_space(self.settings.backup_dir)
        if free is None:
            return
        needed = 0
        for rel in candidates:
            try:
                needed += self.fs.stat_file(self.settings.project_root / rel).size
            except OSError:
                continue
        if needed > free:
            logger.warning("Backup needs ~%d bytes but only %d are free under %s",
                           needed, free, self.settings.backup_dir)

    def _copy_one(self, rel: str, backup_path: Path) -> FileFailure | None:
        src = self.settings.project_root / rel
        dest = backup_path / rel
        try:
            self.fs.make_directories(dest.parent)
            self.fs.copy_file(src, dest)
        except OSError as exc:
            logger.warning("Failed to back up %s: %s", rel, exc)
            return FileFailure(rel, str(exc))
        return None

    def _copy_files(self, candidates: list[str],
                    backup_path: Path) -> tuple[list[str], list[FileFailure]]:
        """Copy every candidate, returning (copied, failures) in candidate order."""
        workers = self.settings.copy_workers
        if workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=workers,
                                    thread_name_prefix="backup-copy") as pool:
                outcomes = list(pool.map(lambda rel: self._copy_one(rel, backup_path),
                                         candidates))
        else:
            outcomes = [self._copy_one(rel, backup_path) for rel in candidates]

        copied: list[str] = []
        failures: list[FileFailure] = []
        for rel, failure in zip(candidates, outcomes):
            if failure is None:
                copied.append(rel)
            else:
                failures.append(failure)
        return copied, failures

    def _reserve_directory(self, backup_id: str) -> bool:
        backup_path = self.settings.backup_dir / backup_id
        try:
            self.fs.create_directory(backup_path)
        except FileExistsError:
            return False
        except OSError as exc:
            logger.error("Could not create backup directory %s: %s", backup_path, exc)
        return True

    def _read_back(self, copied: list[str],
                   backup_path: Path) -> tuple[list[str], int, str, list[FileFailure]]:
        """Checksum the copies one at a time; returns (included, size, checksum, failures).

        Unreadable copies are left out of the record. ``included`` keeps
        the copy order while the checksum is fed in path order.
        """
        checksum = StreamingChecksum()
        readable: set[str] = set()
        size = 0
        failures: list[FileFailure] = []
        for rel in sorted(copied):
            try:
                content = self.fs.read_file(backup_path / rel)
            except OSError as exc:
                logger.warning("Backed-up copy of %s is unreadable: %s", rel, exc)
                failures.append(FileFailure(rel, str(exc)))
                continue
            checksum.update(rel, content)
            size += len(content)
            readable.add(rel)
        included = [rel for rel in copied if rel in readable]
        return included, size, checksum.hexdigest(), failures

    def _capture_environment(self, backup_id: str) -> bool:
        if not self.settings.capture_environment:
            return False
        env_dir = self.settings.environment_root / backup_id
        captured = False
        for name in self.settings.environment_files:
            src = self.settings.project_root / name
            if not self.fs.path_exists(src):
                continue
            try:
                self.fs.make_directories(env_dir)
                self.fs.copy_file(src, env_dir / name)
                captured = True
            except OSError as exc:
                logger.warning("Failed to capture %s: %s", name, exc)
        return captured
