"""Backup orchestration.

Single entry point for the CLI and migration tooling. Wires the backup
engine, snapshot manager, validator and recovery manager to one
metadata store and one filesystem.
"""

from src.backup.backup_config import BackupSettings, load_backup_settings
from src.backup.backup_engine import BackupEngine, IdAllocator
from src.backup.filesystem import FileEnumerator, FileSystem, LocalFileSystem
from src.backup.recovery_manager import RecoveryManager, RestoreResult
from src.backup.snapshot_manager import SnapshotManager
from src.backup.validator import BackupValidator, ValidationResult
from src.database.metadata_store import BackupRecord, MetadataStore, SnapshotRecord


class BackupManager:
    """High-level backup orchestrator.

    Usage::

        mgr = BackupManager(BackupSettings.for_project("/srv/loft-app"))
        snap = mgr.create_snapshot("before next16 upgrade")
        ...
        result = mgr.restore_from_snapshot(snap.id)
        if not result.success:
            print(result.errors)
        mgr.close()
    """

    def __init__(
        self,
        settings: BackupSettings | None = None,
        config_path: str | None = None,
        fs: FileSystem | None = None,
        enumerator: FileEnumerator | None = None,
        ids: IdAllocator | None = None,
    ):
        self.settings = settings or load_backup_settings(config_path)
        self.fs = fs or LocalFileSystem()
        self.store = MetadataStore(str(self.settings.index_db_path))
        self.ids = ids or IdAllocator(self.store)
        self.engine = BackupEngine(self.settings, self.store, fs=self.fs,
                                   enumerator=enumerator, ids=self.ids)
        self.snapshots = SnapshotManager(self.engine, self.store, ids=self.ids)
        self.validator = BackupValidator(self.store, fs=self.fs)
        self.recovery = RecoveryManager(self.settings, self.store,
                                        validator=self.validator, fs=self.fs)

    def create_full_backup(self) -> BackupRecord:
        return self.engine.create_full_backup()

    def create_incremental_backup(self) -> BackupRecord:
        return self.engine.create_incremental_backup()

    def create_snapshot(self, label: str) -> SnapshotRecord:
        return self.snapshots.create_snapshot(label)

    def list_snapshots(self) -> list[SnapshotRecord]:
        return self.snapshots.list_snapshots()

    def list_backups(self) -> list[BackupRecord]:
        return self.store.load_backup_records()

    def get_backup(self, backup_id: str) -> BackupRecord | None:
        return self.store.get_backup(backup_id)

    def validate_backup(self, backup_id: str) -> ValidationResult:
        return self.validator.validate_backup(backup_id)

    def restore_from_backup(self, backup_id: str) -> RestoreResult:
        return self.recovery.restore_from_backup(backup_id)

    def restore_from_snapshot(self, snapshot_id: str) -> RestoreResult:
        return self.recovery.restore_from_snapshot(snapshot_id)

    def close(self):
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
