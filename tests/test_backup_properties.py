"""Property-based tests for backup, validation and restore."""

import string
import tempfile
from contextlib import contextmanager
from pathlib import Path

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from src.backup.backup_config import BackupSettings
from src.backup.backup_manager import BackupManager

from tests.fakes import InMemoryFileSystem, StaticEnumerator

PROPERTY_SETTINGS = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_SEGMENT = st.text(alphabet=string.ascii_lowercase + string.digits + "-_[]", min_size=1, max_size=8)


@st.composite
def _relative_path(draw: st.DrawFn) -> str:
    dirs = draw(st.lists(_SEGMENT, max_size=3))
    name = draw(_SEGMENT) + draw(st.sampled_from([".tsx", ".ts", ".json", ".css", ""]))
    return "/".join([*dirs, name])


_FILE_SETS = st.dictionaries(_relative_path(), st.binary(max_size=128), min_size=1, max_size=12)


@contextmanager
def _manager(files: dict[str, bytes], **overrides):
    with tempfile.TemporaryDirectory() as tmp:
        cfg = BackupSettings.for_project(Path(tmp) / "project", **overrides)
        fs = InMemoryFileSystem()
        for rel, content in files.items():
            fs.add(cfg.project_root / rel, content)
        mgr = BackupManager(cfg, fs=fs, enumerator=StaticEnumerator(files))
        try:
            yield mgr, fs
        finally:
            mgr.close()


class TestFullBackupProperties:
    @PROPERTY_SETTINGS
    @given(files=_FILE_SETS, workers=st.sampled_from([1, 4]))
    def test_complete_and_valid(self, files, workers):
        with _manager(files, copy_workers=workers) as (mgr, _):
            record = mgr.create_full_backup()
            assert set(record.included_files) == set(files)
            assert len(record.included_files) == len(set(record.included_files))
            assert record.size == sum(len(c) for c in files.values())
            assert mgr.validate_backup(record.id).success is True

    @PROPERTY_SETTINGS
    @given(files=_FILE_SETS, data=st.data())
    def test_restore_recovers_contents(self, files, data):
        with _manager(files) as (mgr, fs):
            record = mgr.create_full_backup()
            root = mgr.settings.project_root
            damaged = data.draw(st.lists(st.sampled_from(sorted(files)), unique=True))
            for rel in damaged:
                fs.files[root / rel] = b"migrated"

            result = mgr.restore_from_backup(record.id)

            assert result.success is True
            assert sorted(result.restored_files) == sorted(files)
            assert all(fs.files[root / rel] == content for rel, content in files.items())

    @PROPERTY_SETTINGS
    @given(files=_FILE_SETS, data=st.data())
    def test_deleting_any_file_is_detected(self, files, data):
        with _manager(files) as (mgr, fs):
            record = mgr.create_full_backup()
            victim = data.draw(st.sampled_from(sorted(files)))
            fs.remove(Path(record.path) / victim)

            result = mgr.validate_backup(record.id)

            assert result.success is False
            assert any(e.startswith("Missing files in backup:") and victim in e
                       for e in result.errors)


class TestIncrementalProperties:
    @PROPERTY_SETTINGS
    @given(files=_FILE_SETS, data=st.data())
    def test_exactly_modified_files(self, files, data):
        with _manager(files) as (mgr, fs):
            full = mgr.create_full_backup()
            t0 = full.timestamp.timestamp()
            root = mgr.settings.project_root
            modified = set(data.draw(st.lists(st.sampled_from(sorted(files)), unique=True)))
            for rel in files:
                fs.touch(root / rel, t0 + 1 if rel in modified else t0 - 1)

            inc = mgr.create_incremental_backup()

            assert set(inc.included_files) == modified
            assert mgr.validate_backup(inc.id).success is True


class TestRestoreProperties:
    @PROPERTY_SETTINGS
    @given(files=_FILE_SETS, data=st.data())
    def test_failures_isolated(self, files, data):
        with _manager(files) as (mgr, fs):
            record = mgr.create_full_backup()
            root = mgr.settings.project_root
            locked = set(data.draw(st.lists(st.sampled_from(sorted(files)), unique=True)))
            fs.locked.update(root / rel for rel in locked)

            result = mgr.restore_from_backup(record.id)

            assert set(result.restored_files) == set(files) - locked
            assert len(result.errors) == len(locked)
            for rel in locked:
                assert any(e.startswith(f"Failed to restore {rel}: ") for e in result.errors)
            assert result.success is (not locked)
            assert result.duration_ms > 0

    @PROPERTY_SETTINGS
    @given(files=_FILE_SETS, label=st.text(alphabet=string.ascii_letters + " -_.:", max_size=30), data=st.data())
    def test_snapshot_restore_matches_backup_restore(self, files, label, data):
        with _manager(files) as (mgr, fs):
            snap = mgr.create_snapshot(label)
            root = mgr.settings.project_root
            locked = data.draw(st.lists(st.sampled_from(sorted(files)), unique=True))
            fs.locked.update(root / rel for rel in locked)

            via_snapshot = mgr.restore_from_snapshot(snap.id)
            direct = mgr.restore_from_backup(snap.backup_id)

            assert (via_snapshot.success, via_snapshot.restored_files, via_snapshot.errors) == \
                (direct.success, direct.restored_files, direct.errors)
