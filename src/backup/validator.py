"""Backup integrity checks.

Validation runs in two phases and reports every problem it finds in
one pass: a structural phase (backup directory and recorded files are
present) and a content phase (the checksum recomputed over what is on
disk matches the recorded one). Callers tell "incomplete" from
"corrupted" by which messages appear. A backup is never modified here.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from src.backup.checksum_service import StreamingChecksum
from src.backup.filesystem import FileSystem, LocalFileSystem
from src.database.metadata_store import MetadataStore, MetadataStoreError

logger = logging.getLogger(__name__)

CHECKSUM_MISMATCH = "Backup checksum mismatch - backup may be corrupted"


@dataclass
class ValidationResult:
    success: bool
    errors: list[str] = field(default_factory=list)
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"success": self.success, "errors": list(self.errors), "details": self.details}


class BackupValidator:
    def __init__(self, store: MetadataStore, fs: FileSystem | None = None):
        self.store = store
        self.fs = fs or LocalFileSystem()

    def validate_backup(self, backup_id: str) -> ValidationResult:
        try:
            record = self.store.get_backup(backup_id)
        except MetadataStoreError as exc:
            logger.error("Could not look up backup %s: %s", backup_id, exc)
            return ValidationResult(success=False, errors=[f"Validation failed: {exc}"])
        if record is None:
            return ValidationResult(success=False, errors=[f"Backup {backup_id} not found"])

        errors: list[str] = []
        root = Path(record.path)
        if not self.fs.is_directory(root):
            errors.append(f"Backup directory {record.path} does not exist")

        missing: list[str] = []
        unreadable: list[str] = []
        checksum = StreamingChecksum()
        for rel in sorted(record.included_files):
            path = root / rel
            if not self.fs.path_exists(path):
                missing.append(rel)
                continue
            try:
                checksum.update(rel, self.fs.read_file(path))
            except OSError as exc:
                logger.warning("Cannot read %s in backup %s: %s", rel, backup_id, exc)
                unreadable.append(rel)

        order = {rel: i for i, rel in enumerate(record.included_files)}
        missing.sort(key=order.__getitem__)
        unreadable.sort(key=order.__getitem__)
        if missing:
            errors.append(f"Missing files in backup: {', '.join(missing)}")
        if unreadable:
            errors.append(f"Unreadable files in backup: {', '.join(unreadable)}")

        actual = checksum.hexdigest()
        if actual != record.checksum:
            errors.append(CHECKSUM_MISMATCH)

        details = {
            "file_count": len(record.included_files),
            "backup_size": record.size,
            "expected_checksum": record.checksum,
            "actual_checksum": actual,
            "missing_files": missing,
        }
        if errors:
            logger.warning("Backup %s failed validation: %s", backup_id, "; ".join(errors))
        else:
            logger.info("Backup %s verified (%d files)", backup_id, len(record.included_files))
        return ValidationResult(success=not errors, errors=errors, details=details)
