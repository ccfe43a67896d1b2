"""Named restore points.

A snapshot is a label over a fresh full backup. It never copies files
itself and never points at an incremental backup, so restoring one
does not depend on any chain of earlier backups.
"""

import logging

from src.backup.backup_config import SNAPSHOT_ID_PREFIX
from src.backup.backup_engine import BackupEngine, IdAllocator
from src.database.metadata_store import DuplicateIdError, MetadataStore, SnapshotRecord

logger = logging.getLogger(__name__)


class SnapshotManager:
    def __init__(self, engine: BackupEngine, store: MetadataStore,
                 ids: IdAllocator | None = None):
        self.engine = engine
        self.store = store
        self.ids = ids or engine.ids

    def create_snapshot(self, label: str) -> SnapshotRecord:
        backup = self.engine.create_full_backup()
        # Appended only once the backup record exists. Another process may
        # append the same id between allocation and insert; allocate again.
        while True:
            snapshot_id, ts = self.ids.allocate(SNAPSHOT_ID_PREFIX)
            snapshot = SnapshotRecord(
                id=snapshot_id,
                label=label,
                timestamp=ts,
                backup_id=backup.id,
                description=f"Snapshot created: {label}",
            )
            try:
                self.store.append_snapshot_record(snapshot)
            except DuplicateIdError:
                logger.debug("Snapshot id %s taken concurrently, retrying", snapshot_id)
                continue
            break
        logger.info("Snapshot %s (%r) -> backup %s", snapshot.id, label, backup.id)
        return snapshot

    def list_snapshots(self) -> list[SnapshotRecord]:
        """All snapshots, oldest first."""
        return self.store.load_snapshot_records()

    def get_snapshot(self, snapshot_id: str) -> SnapshotRecord | None:
        return self.store.get_snapshot(snapshot_id)
