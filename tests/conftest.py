"""Shared fixtures for the backup engine tests.

Managers built by ``make_manager`` run over ``InMemoryFileSystem``;
the SQLite index still lives under ``tmp_path``.
"""

import pytest

from src.backup.backup_config import BackupSettings
from src.backup.backup_manager import BackupManager

from tests.fakes import InMemoryFileSystem, StaticEnumerator


@pytest.fixture
def fake_fs():
    return InMemoryFileSystem()


@pytest.fixture
def settings(tmp_path):
    return BackupSettings.for_project(tmp_path / "project")


@pytest.fixture
def make_manager(settings, fake_fs):
    """Build a BackupManager over the fake filesystem.

    ``files`` maps relative paths to contents; they are added under the
    project root and the enumerator lists them in the given order.
    """
    created = []

    def factory(files=None, enumerator=None, **kwargs):
        files = files or {}
        for rel, content in files.items():
            fake_fs.add(settings.project_root / rel, content)
        mgr = BackupManager(
            settings=settings,
            fs=fake_fs,
            enumerator=enumerator or StaticEnumerator(files),
            **kwargs,
        )
        created.append(mgr)
        return mgr

    yield factory
    for mgr in created:
        mgr.close()
