"""Filesystem capability used by the installer.

The installer writes through `FileSystemProtocol` so tests (and dry runs)
can substitute an in-memory implementation.
"""

import logging
import shutil
from pathlib import Path
from typing import Protocol
from typing import runtime_checkable

from .exceptions import ExtractionError
from .exceptions import WriteError

logger = logging.getLogger(__name__)


@runtime_checkable
class FileSystemProtocol(Protocol):
    """Protocol for placing installed files."""

    def write_file(self, path: Path, content: bytes) -> None:
        """Write content, creating parent directories. Raises WriteError."""
        ...

    def ensure_dir(self, path: Path) -> None:
        """Create directory and parents if missing. Raises WriteError."""
        ...

    def remove(self, path: Path) -> bool:
        """Remove a file or directory tree. Returns False if nothing was there."""
        ...


class LocalFileSystem:
    """FileSystemProtocol over the real filesystem."""

    def write_file(self, path: Path, content: bytes) -> None:
        self.ensure_dir(path.parent)
        try:
            path.write_bytes(content)
        except OSError as e:
            raise WriteError(f"Failed to write {path}: {e}", context={"path": str(path)}) from e
        logger.debug(f"Wrote {path} ({len(content)} bytes)")

    def ensure_dir(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteError(f"Failed to create directory {path}: {e}", context={"path": str(path)}) from e

    def remove(self, path: Path) -> bool:
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()
            else:
                return False
        except OSError as e:
            raise WriteError(f"Failed to remove {path}: {e}", context={"path": str(path)}) from e
        logger.debug(f"Removed {path}")
        return True


def ensure_within(root: Path, destination: Path) -> Path:
    """
    Resolve `destination` and make sure it stays inside `root`.

    Returns:
        The resolved destination path

    Raises:
        ExtractionError: If the resolved path escapes `root` (e.g. through a symlinked directory)
    """
    resolved_root = root.resolve()
    resolved = destination.resolve()
    if not resolved.is_relative_to(resolved_root):
        raise ExtractionError(
            f"Refusing to write outside {resolved_root}: {destination}",
            context={"path": str(destination), "root": str(resolved_root)},
        )
    return resolved
