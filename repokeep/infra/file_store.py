"""
File store infrastructure for repokeep.

Provides file persistence with:
- Atomic writes (write to temp, then rename)
- File mode preservation when replacing an existing file
- Gzip-compressed JSON documents
- Thread-safe operations
- Automatic parent directory creation
"""

import gzip
import hashlib
import json
import os
import stat
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional, Union
import logging

logger = logging.getLogger(__name__)

# Process umask, read once at import
_UMASK = os.umask(0)
os.umask(_UMASK)


def read_bytes(path: Union[str, Path]) -> Optional[bytes]:
    """Read a file; None if it does not exist."""
    try:
        with open(path, 'rb') as f:
            return f.read()
    except FileNotFoundError:
        return None


def write_atomic(path: Union[str, Path], data: bytes) -> None:
    """
    Replace ``path`` with ``data`` atomically.

    The data is written to a temporary file in the same directory and
    renamed over the target, so readers see either the old or the new
    content. Parent directories are created; an existing file's mode is
    kept.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        mode = None

    # Write to temp file in same directory
    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp"
    )

    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        if mode is not None:
            os.chmod(temp_path, mode)
        else:
            # mkstemp creates 0600; use the umask default instead
            os.chmod(temp_path, 0o666 & ~_UMASK)

        # Atomic rename
        os.replace(temp_path, path)

    except BaseException:
        # Clean up temp file on error
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FileStore:
    """
    A single JSON document on disk, optionally gzip-compressed.

    Example:
        store = FileStore(Path(".repokeep/changes.gz"), compress=True)
        store.write({"schema": "repokeep.changes/1", "changes": []})
        data = store.read()
    """

    def __init__(self, path: Path, compress: bool = False):
        """
        Initialize FileStore.

        Args:
            path: Path to the document
            compress: Store the JSON gzip-compressed
        """
        self.path = Path(path).expanduser()
        self.compress = compress
        self._lock = threading.Lock()

    def encode(self, data: Any) -> bytes:
        raw = (json.dumps(data, indent=2, ensure_ascii=False) + '\n').encode('utf-8')
        if self.compress:
            # mtime=0 keeps the output deterministic for identical data
            return gzip.compress(raw, mtime=0)
        return raw

    def decode(self, raw: bytes) -> Any:
        """
        Raises:
            OSError: not a gzip stream (compressed stores only)
            ValueError: not valid JSON or UTF-8
        """
        if self.compress:
            raw = gzip.decompress(raw)
        return json.loads(raw.decode('utf-8'))

    def exists(self) -> bool:
        return self.path.is_file()

    def read_raw(self) -> Optional[bytes]:
        with self._lock:
            return read_bytes(self.path)

    def read(self) -> Any:
        """
        Read the document.

        Raises:
            FileNotFoundError: the document does not exist
        """
        raw = self.read_raw()
        if raw is None:
            raise FileNotFoundError(str(self.path))
        return self.decode(raw)

    def write(self, data: Any) -> str:
        """
        Write the document atomically.

        Returns:
            sha256 hex digest of the bytes written
        """
        raw = self.encode(data)
        with self._lock:
            write_atomic(self.path, raw)
        logger.debug(f"Wrote {len(raw)} bytes to {self.path}")
        return digest(raw)

    def remove(self) -> bool:
        """
        Delete the document.

        Returns:
            True if a file was removed
        """
        with self._lock:
            try:
                self.path.unlink()
            except FileNotFoundError:
                return False
        logger.debug(f"Removed {self.path}")
        return True
