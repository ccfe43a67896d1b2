"""Filesystem capability and working-tree enumeration.

The engines never touch ``os``/``shutil`` directly; they go through a
``FileSystem`` object so tests can hand in an in-memory fake and
inject failures without patching module globals.
"""

import fnmatch
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileStat:
    size: int
    modified_time: float  # seconds since the epoch


class FileSystem(Protocol):
    def read_file(self, path: Path) -> bytes: ...

    def write_file(self, path: Path, data: bytes) -> None: ...

    def copy_file(self, src: Path, dst: Path) -> None: ...

    def stat_file(self, path: Path) -> FileStat: ...

    def path_exists(self, path: Path) -> bool: ...

    def is_directory(self, path: Path) -> bool: ...

    def make_directories(self, path: Path) -> None: ...

    def create_directory(self, path: Path) -> None: ...

    def free_space(self, path: Path) -> int | None: ...


class LocalFileSystem:
    """FileSystem backed by the host OS."""

    def read_file(self, path: Path) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def write_file(self, path: Path, data: bytes) -> None:
        with open(path, "wb") as f:
            f.write(data)

    def copy_file(self, src: Path, dst: Path) -> None:
        shutil.copy2(str(src), str(dst))

    def stat_file(self, path: Path) -> FileStat:
        st = os.stat(path)
        return FileStat(size=st.st_size, modified_time=st.st_mtime)

    def path_exists(self, path: Path) -> bool:
        return os.path.exists(path)

    def is_directory(self, path: Path) -> bool:
        return os.path.isdir(path)

    def make_directories(self, path: Path) -> None:
        os.makedirs(path, exist_ok=True)

    def create_directory(self, path: Path) -> None:
        """Create ``path`` (and missing parents); FileExistsError if it is already there."""
        os.makedirs(Path(path).parent, exist_ok=True)
        os.mkdir(path)

    def free_space(self, path: Path) -> int | None:
        """Free bytes on the volume holding ``path`` (or its nearest existing parent)."""
        probe = Path(path)
        while not probe.exists() and probe != probe.parent:
            probe = probe.parent
        try:
            return psutil.disk_usage(str(probe)).free
        except OSError:
            logger.debug("Could not read disk usage for %s", probe)
            return None


class FileEnumerator(Protocol):
    def enumerate(self, root: Path, include_patterns: list[str],
                  ignore_patterns: list[str]) -> list[str]: ...


def is_ignored(relative_path: str, ignore_patterns: list[str]) -> bool:
    return any(fnmatch.fnmatch(relative_path, pat) for pat in ignore_patterns)


class GlobFileEnumerator:
    """Lists regular files under ``root`` matching glob patterns.

    Returns POSIX-style relative paths in first-match order, without
    duplicates and without anything matching an ignore pattern.
    """

    def enumerate(self, root: Path, include_patterns: list[str],
                  ignore_patterns: list[str]) -> list[str]:
        root = Path(root)
        seen: set[str] = set()
        files: list[str] = []
        for pattern in include_patterns:
            try:
                matches = sorted(root.glob(pattern))
            except (OSError, ValueError) as exc:
                logger.warning("Failed to glob pattern %s: %s", pattern, exc)
                continue
            for match in matches:
                if not match.is_file():
                    continue
                rel = match.relative_to(root).as_posix()
                if rel in seen or is_ignored(rel, ignore_patterns):
                    continue
                seen.add(rel)
                files.append(rel)
        return files


@dataclass(frozen=True)
class FileFailure:
    """One file that could not be copied, with the cause."""
    path: str
    error: str
