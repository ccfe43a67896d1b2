"""Integrity digests for backup contents.

A backup checksum is a single SHA-256 over every copied file, fed in
ascending order of relative path so the result never depends on the
order the filesystem happened to list the files in. Each entry
contributes its path, a NUL separator and its raw bytes.
"""

import hashlib
from typing import Iterable


class StreamingChecksum:
    """Incremental form of ``compute_checksum``.

    Callers feed files already sorted by relative path, one at a time,
    so only the file being hashed has to be held in memory.
    """

    def __init__(self):
        self._hash = hashlib.sha256()

    def update(self, path: str, content: bytes):
        self._hash.update(path.encode("utf-8"))
        self._hash.update(b"\0")
        self._hash.update(content)

    def hexdigest(self) -> str:
        return self._hash.hexdigest()


def compute_checksum(files: Iterable[tuple[str, bytes]]) -> str:
    """Return the hex SHA-256 digest over ``(relative_path, content)`` pairs."""
    checksum = StreamingChecksum()
    for path, content in sorted(files, key=lambda entry: entry[0]):
        checksum.update(path, content)
    return checksum.hexdigest()
