"""In-memory stand-ins for the filesystem capability and file enumerator.

``InMemoryFileSystem`` implements FileSystem over a dict so tests can
lock destinations, break reads and control modification times without
touching the real disk.
"""

import errno
import time
from pathlib import Path

from src.backup.filesystem import FileStat


class InMemoryFileSystem:
    def __init__(self):
        self.files: dict[Path, bytes] = {}
        self.mtimes: dict[Path, float] = {}
        self.dirs: set[Path] = set()
        self.locked: set[Path] = set()       # copy/write into these fails
        self.unreadable: set[Path] = set()   # read/copy from these fails
        self.free_bytes: int | None = None

    # -- test helpers ---------------------------------------------------

    def add(self, path, content: bytes, mtime: float | None = None):
        path = Path(path)
        self.make_directories(path.parent)
        self.files[path] = content
        self.mtimes[path] = time.time() - 3600 if mtime is None else mtime

    def remove(self, path):
        path = Path(path)
        self.files.pop(path, None)
        self.mtimes.pop(path, None)

    def remove_tree(self, root):
        root = Path(root)
        for p in [p for p in self.files if p == root or root in p.parents]:
            self.remove(p)
        self.dirs = {d for d in self.dirs if d != root and root not in d.parents}

    def touch(self, path, mtime: float):
        self.mtimes[Path(path)] = mtime

    # -- FileSystem -----------------------------------------------------

    def read_file(self, path) -> bytes:
        path = Path(path)
        if path in self.unreadable:
            raise PermissionError(errno.EACCES, "Permission denied", str(path))
        if path not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", str(path))
        return self.files[path]

    def write_file(self, path, data: bytes) -> None:
        path = Path(path)
        if path in self.locked:
            raise PermissionError(errno.EACCES, "Permission denied", str(path))
        if path.parent not in self.dirs:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", str(path))
        self.files[path] = data
        self.mtimes[path] = time.time()

    def copy_file(self, src, dst) -> None:
        src, dst = Path(src), Path(dst)
        data = self.read_file(src)
        if dst in self.locked:
            raise PermissionError(errno.EACCES, "Permission denied", str(dst))
        if dst.parent not in self.dirs:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", str(dst))
        self.files[dst] = data
        self.mtimes[dst] = self.mtimes[src]

    def stat_file(self, path) -> FileStat:
        path = Path(path)
        if path not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", str(path))
        return FileStat(size=len(self.files[path]), modified_time=self.mtimes[path])

    def path_exists(self, path) -> bool:
        path = Path(path)
        return path in self.files or path in self.dirs

    def is_directory(self, path) -> bool:
        return Path(path) in self.dirs

    def make_directories(self, path) -> None:
        path = Path(path)
        self.dirs.add(path)
        self.dirs.update(path.parents)

    def create_directory(self, path) -> None:
        path = Path(path)
        if path in self.dirs or path in self.files:
            raise FileExistsError(errno.EEXIST, "File exists", str(path))
        self.make_directories(path)

    def free_space(self, path) -> int | None:
        return self.free_bytes


class StaticEnumerator:
    """Returns a fixed list of relative paths."""

    def __init__(self, paths):
        self.paths = list(paths)

    def enumerate(self, root, include_patterns, ignore_patterns):
        return list(self.paths)


class FailingEnumerator:
    def enumerate(self, root, include_patterns, ignore_patterns):
        raise OSError(errno.EACCES, "Permission denied", str(root))
