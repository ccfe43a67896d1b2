"""Restoration of the working tree from backups and snapshots.

Every file is restored independently: a file that cannot be copied
back is reported in ``errors`` and the rest carry on. ``success`` is
only true when nothing failed, while ``restored_files`` always lists
what did make it back so the caller can judge a partial restore.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path

from src.backup.backup_config import BackupSettings
from src.backup.filesystem import FileFailure, FileSystem, LocalFileSystem
from src.backup.validator import BackupValidator
from src.database.metadata_store import BackupRecord, MetadataStore, MetadataStoreError

logger = logging.getLogger(__name__)

# Floor for reported durations
_MIN_DURATION_MS = 0.001


@dataclass
class RestoreResult:
    success: bool
    restored_files: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duration_ms: float = _MIN_DURATION_MS

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "restored_files": list(self.restored_files),
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
        }


def _elapsed_ms(start: float) -> float:
    return max((time.perf_counter() - start) * 1000.0, _MIN_DURATION_MS)


class RecoveryManager:
    """Handles file restoration from the backup directory."""

    def __init__(
        self,
        settings: BackupSettings,
        store: MetadataStore,
        validator: BackupValidator | None = None,
        fs: FileSystem | None = None,
    ):
        self.settings = settings
        self.store = store
        self.fs = fs or LocalFileSystem()
        self.validator = validator or BackupValidator(store, self.fs)

    def restore_from_backup(self, backup_id: str) -> RestoreResult:
        start = time.perf_counter()
        try:
            record = self.store.get_backup(backup_id)
        except MetadataStoreError as exc:
            logger.error("Could not look up backup %s: %s", backup_id, exc)
            return RestoreResult(success=False, errors=[f"Restore failed: {exc}"],
                                 duration_ms=_elapsed_ms(start))
        if record is None:
            return RestoreResult(success=False, errors=[f"Backup {backup_id} not found"],
                                 duration_ms=_elapsed_ms(start))

        if self.settings.verify_before_restore:
            validation = self.validator.validate_backup(backup_id)
            if not validation.success:
                return RestoreResult(
                    success=False,
                    errors=[f"Backup validation failed: {', '.join(validation.errors)}"],
                    duration_ms=_elapsed_ms(start),
                )

        restored: list[str] = []
        failures: list[FileFailure] = []
        for rel in record.included_files:
            failure = self._restore_one(record, rel)
            if failure is None:
                restored.append(rel)
            else:
                failures.append(failure)

        if record.has_environment_snapshot:
            self._restore_environment(record)

        errors = [f"Failed to restore {f.path}: {f.error}" for f in failures]
        result = RestoreResult(
            success=not errors,
            restored_files=restored,
            errors=errors,
            duration_ms=_elapsed_ms(start),
        )
        if errors:
            logger.warning("Restore from %s: %d restored, %d failed",
                           backup_id, len(restored), len(errors))
        else:
            logger.info("Restored %d files from %s in %.1f ms",
                        len(restored), backup_id, result.duration_ms)
        return result

    def restore_from_snapshot(self, snapshot_id: str) -> RestoreResult:
        start = time.perf_counter()
        try:
            snapshot = self.store.get_snapshot(snapshot_id)
        except MetadataStoreError as exc:
            logger.error("Could not look up snapshot %s: %s", snapshot_id, exc)
            return RestoreResult(success=False, errors=[f"Restore failed: {exc}"],
                                 duration_ms=_elapsed_ms(start))
        if snapshot is None:
            return RestoreResult(success=False, errors=[f"Snapshot {snapshot_id} not found"],
                                 duration_ms=_elapsed_ms(start))
        logger.info("Restoring snapshot %s (%r) via backup %s",
                    snapshot.id, snapshot.label, snapshot.backup_id)
        return self.restore_from_backup(snapshot.backup_id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _target_for(self, rel: str) -> Path | None:
        root = Path(os.path.normpath(self.settings.project_root))
        target = Path(os.path.normpath(root / rel))
        if target == root or root not in target.parents:
            return None
        return target

    def _restore_one(self, record: BackupRecord, rel: str) -> FileFailure | None:
        target = self._target_for(rel)
        if target is None:
            logger.warning("Refusing to restore %s outside %s", rel, self.settings.project_root)
            return FileFailure(rel, "path escapes project root")
        source = Path(record.path) / rel
        try:
            self.fs.make_directories(target.parent)
            self.fs.copy_file(source, target)
        except OSError as exc:
            logger.warning("Failed to restore %s: %s", rel, exc)
            return FileFailure(rel, str(exc))
        logger.debug("Restored %s from %s", rel, record.id)
        return None

    def _restore_environment(self, record: BackupRecord):
        env_dir = self.settings.environment_root / record.id
        for name in self.settings.environment_files:
            source = env_dir / name
            if not self.fs.path_exists(source):
                continue
            try:
                self.fs.copy_file(source, self.settings.project_root / name)
            except OSError as exc:
                logger.warning("Failed to restore %s: %s", name, exc)
