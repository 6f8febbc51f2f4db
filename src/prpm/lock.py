"""Lockfile management for reproducible installations.

Tracks installed packages (with integrity hashes of the raw artifacts) and
installed collections in `prpm.lock`, a JSON file at the project root.

The store owns the file exclusively. Every mutation is one
read-entire-file -> merge-in-memory -> write-entire-file cycle, run under an
advisory lock and written through a temporary file plus `os.replace`, so the
file is never partially written.

Lock format (JSON):
{
  "version": "1.0.0",
  "lockfileVersion": 1,
  "packages": {
    "@scope/pkg": {
      "version": "1.2.0",
      "resolved": "https://registry.prpm.dev/tarballs/pkg-1.2.0.tgz",
      "integrity": "sha256-...",
      "format": "cursor", "subtype": "rule",
      "sourceFormat": "claude", "sourceSubtype": "skill",
      "installedPath": ".cursor/rules",
      "fromCollection": {"scope": "collection", "name_slug": "starter", "version": "1.0.0"}
    }
  },
  "collections": {
    "@collection/starter": {
      "scope": "collection", "name_slug": "starter", "version": "1.0.0",
      "installedAt": "2025-10-26T12:00:00+00:00", "packages": ["@scope/pkg"]
    }
  },
  "generated": "2025-10-26T12:00:00+00:00"
}
"""

import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from datetime import UTC
from datetime import datetime
from pathlib import Path

from .exceptions import LockfileError

try:
    import fcntl
except ImportError:  # Windows: no advisory locking, atomic replace still applies
    fcntl = None

logger = logging.getLogger(__name__)

LOCKFILE_NAME = "prpm.lock"
LOCKFILE_FORMAT_VERSION = "1.0.0"
LOCKFILE_VERSION = 1
DEFAULT_INTEGRITY_ALGORITHM = "sha256"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def compute_integrity(data: bytes, algorithm: str = DEFAULT_INTEGRITY_ALGORITHM) -> str:
    """Hash raw artifact bytes as `<algorithm>-<hexdigest>`."""
    return f"{algorithm}-{hashlib.new(algorithm, data).hexdigest()}"


def verify_integrity(expected: str, data: bytes) -> bool:
    """
    Check raw bytes against a recorded integrity string.

    Args:
        expected: Integrity as stored in the lockfile (e.g. `sha256-ab12...`)
        data: Raw artifact bytes

    Returns:
        True if the hash matches, False if it doesn't or `expected` is empty/unparseable
    """
    if not expected or "-" not in expected:
        return False
    algorithm, _, digest = expected.partition("-")
    try:
        actual = hashlib.new(algorithm, data).hexdigest()
    except ValueError:
        logger.warning(f"Unknown integrity algorithm: {algorithm}")
        return False
    return actual == digest


def split_legacy_type(package_type: str) -> tuple[str, str]:
    """Split a legacy `type` value (`claude-skill`, `cursor`, ...) into (format, subtype)."""
    for subtype in ("slash-command", "skill", "agent", "rule", "hook"):
        suffix = f"-{subtype}"
        if package_type.endswith(suffix):
            return package_type[: -len(suffix)], subtype
    if package_type == "claude":
        return "claude", "agent"
    return package_type, "rule"


@dataclass
class FromCollection:
    """Provenance of a package installed as part of a collection."""

    scope: str
    name_slug: str
    version: str | None = None

    def to_dict(self) -> dict:
        data = {"scope": self.scope, "name_slug": self.name_slug}
        if self.version is not None:
            data["version"] = self.version
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "FromCollection":
        return cls(scope=data["scope"], name_slug=data["name_slug"], version=data.get("version"))


@dataclass
class LockfilePackage:
    """One installed package."""

    version: str
    resolved: str
    integrity: str = ""
    format: str | None = None
    subtype: str | None = None
    source_format: str | None = None
    source_subtype: str | None = None
    installed_path: str | None = None
    dependencies: dict[str, str] | None = None
    from_collection: FromCollection | None = None
    hook_metadata: dict | None = None

    def to_dict(self) -> dict:
        """Convert to the camelCase JSON shape, omitting unset optional fields."""
        data: dict = {
            "version": self.version,
            "resolved": self.resolved,
            "integrity": self.integrity,
        }
        optional = {
            "dependencies": self.dependencies,
            "format": self.format,
            "subtype": self.subtype,
            "sourceFormat": self.source_format,
            "sourceSubtype": self.source_subtype,
            "installedPath": self.installed_path,
            "fromCollection": self.from_collection.to_dict() if self.from_collection else None,
            "hookMetadata": self.hook_metadata,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LockfilePackage":
        """Create from JSON, upgrading legacy rows that only carry `type`."""
        package_format = data.get("format")
        subtype = data.get("subtype")
        legacy_type = data.get("type")
        if legacy_type and (package_format is None or subtype is None):
            legacy_format, legacy_subtype = split_legacy_type(legacy_type)
            package_format = package_format or legacy_format
            subtype = subtype or legacy_subtype

        from_collection = data.get("fromCollection")
        return cls(
            version=data["version"],
            resolved=data.get("resolved", ""),
            integrity=data.get("integrity", ""),
            format=package_format,
            subtype=subtype,
            source_format=data.get("sourceFormat") or package_format,
            source_subtype=data.get("sourceSubtype") or subtype,
            installed_path=data.get("installedPath"),
            dependencies=data.get("dependencies"),
            from_collection=FromCollection.from_dict(from_collection) if from_collection else None,
            hook_metadata=data.get("hookMetadata"),
        )


@dataclass
class LockfileCollection:
    """One installed collection and the member packages it is responsible for."""

    scope: str
    name_slug: str
    version: str
    installed_at: str = field(default_factory=_now)
    packages: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "scope": self.scope,
            "name_slug": self.name_slug,
            "version": self.version,
            "installedAt": self.installed_at,
            "packages": list(self.packages),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LockfileCollection":
        return cls(
            scope=data["scope"],
            name_slug=data["name_slug"],
            version=data.get("version", ""),
            installed_at=data.get("installedAt", ""),
            packages=list(data.get("packages", [])),
        )


@dataclass
class Lockfile:
    """Top-level lockfile container."""

    version: str = LOCKFILE_FORMAT_VERSION
    lockfile_version: int = LOCKFILE_VERSION
    packages: dict[str, LockfilePackage] = field(default_factory=dict)
    collections: dict[str, LockfileCollection] = field(default_factory=dict)
    generated: str = field(default_factory=_now)

    def touch(self) -> None:
        self.generated = _now()

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "lockfileVersion": self.lockfile_version,
            "packages": {package_id: entry.to_dict() for package_id, entry in self.packages.items()},
            "collections": {key: entry.to_dict() for key, entry in self.collections.items()},
            "generated": self.generated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Lockfile":
        lockfile_version = data.get("lockfileVersion", LOCKFILE_VERSION)
        if lockfile_version != LOCKFILE_VERSION:
            logger.warning(f"Lockfile version mismatch: expected {LOCKFILE_VERSION}, got {lockfile_version}")

        return cls(
            version=data.get("version", LOCKFILE_FORMAT_VERSION),
            lockfile_version=LOCKFILE_VERSION,
            packages={
                package_id: LockfilePackage.from_dict(entry)
                for package_id, entry in (data.get("packages") or {}).items()
            },
            collections={
                key: LockfileCollection.from_dict(entry) for key, entry in (data.get("collections") or {}).items()
            },
            generated=data.get("generated") or _now(),
        )


class LockfileStore:
    """
    Lockfile store (with injected lock path).

    The installer and orchestrator never touch the file directly; they go
    through `update()` (or the helpers built on it) so every mutation is one
    locked read-merge-write cycle.

    Example:
        >>> store = LockfileStore(lock_path=Path.cwd() / "prpm.lock")
        >>> with store.update() as lockfile:
        ...     lockfile.packages.pop("old-package", None)
    """

    def __init__(self, lock_path: Path):
        """Initialize store with app-provided lock path.

        Args:
            lock_path: Path to the lockfile (app determines location)
        """
        self.lock_path = lock_path

    @classmethod
    def for_project(cls, project_root: Path) -> "LockfileStore":
        return cls(lock_path=project_root / LOCKFILE_NAME)

    def read(self) -> Lockfile | None:
        """
        Read the lockfile.

        Returns:
            Parsed lockfile, or None if the file doesn't exist

        Raises:
            LockfileError: If the file exists but can't be parsed
        """
        text = self._read_text()
        if text is None:
            return None
        try:
            data = json.loads(text)
            lockfile = Lockfile.from_dict(data)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise LockfileError(f"Failed to read lock file: {e}", context={"path": str(self.lock_path)}) from e
        logger.debug(f"Loaded {len(lockfile.packages)} packages from lock file")
        return lockfile

    def load(self) -> Lockfile:
        """Read the lockfile, or return a fresh empty one when absent."""
        return self.read() or Lockfile()

    def write(self, lockfile: Lockfile) -> None:
        """
        Replace the whole lockfile.

        Raises:
            LockfileError: If a package row has no integrity, or the write fails
        """
        missing = [package_id for package_id, entry in lockfile.packages.items() if not entry.integrity]
        if missing:
            raise LockfileError(
                f"Refusing to write lock file with empty integrity for: {', '.join(sorted(missing))}",
                context={"packages": missing},
            )
        content = json.dumps(lockfile.to_dict(), indent=2) + "\n"
        self._write_text(content)
        logger.debug(f"Saved lock file with {len(lockfile.packages)} packages")

    @contextmanager
    def update(self) -> Iterator[Lockfile]:
        """
        Locked read-modify-write cycle.

        Yields the current lockfile (empty if absent); on normal exit the
        `generated` timestamp is refreshed and the whole file is replaced.
        If the block raises, nothing is written.
        """
        with self._exclusive():
            lockfile = self.load()
            yield lockfile
            lockfile.touch()
            self.write(lockfile)

    def upsert_package(self, package_id: str, entry: LockfilePackage) -> None:
        """Add or replace a package row."""
        with self.update() as lockfile:
            lockfile.packages[package_id] = entry
        logger.debug(f"Added {package_id} to lock file")

    def remove_package(self, package_id: str) -> LockfilePackage | None:
        """Remove a package row, returning it (None if it wasn't tracked)."""
        if self.get_package(package_id) is None:
            return None
        with self.update() as lockfile:
            removed = lockfile.packages.pop(package_id, None)
        logger.debug(f"Removed {package_id} from lock file")
        return removed

    def add_collection(self, key: str, entry: LockfileCollection) -> None:
        """Add or replace a collection row."""
        with self.update() as lockfile:
            lockfile.collections[key] = entry
        logger.debug(f"Added collection {key} to lock file")

    def remove_collection(self, key: str) -> LockfileCollection | None:
        if self.get_collection(key) is None:
            return None
        with self.update() as lockfile:
            removed = lockfile.collections.pop(key, None)
        logger.debug(f"Removed collection {key} from lock file")
        return removed

    def get_package(self, package_id: str) -> LockfilePackage | None:
        lockfile = self.read()
        return lockfile.packages.get(package_id) if lockfile else None

    def get_collection(self, key: str) -> LockfileCollection | None:
        lockfile = self.read()
        return lockfile.collections.get(key) if lockfile else None

    def list_packages(self) -> list[tuple[str, LockfilePackage]]:
        lockfile = self.read()
        return list(lockfile.packages.items()) if lockfile else []

    def list_collections(self) -> list[tuple[str, LockfileCollection]]:
        lockfile = self.read()
        return list(lockfile.collections.items()) if lockfile else []

    def _read_text(self) -> str | None:
        try:
            return self.lock_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise LockfileError(f"Failed to read lock file: {e}", context={"path": str(self.lock_path)}) from e

    def _write_text(self, content: str) -> None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.lock_path.parent,
                prefix=f".{self.lock_path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = Path(f.name)
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.lock_path)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise LockfileError(f"Failed to write lock file: {e}", context={"path": str(self.lock_path)}) from e

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if fcntl is None:
            yield
            return
        guard_path = self.lock_path.with_name(self.lock_path.name + ".lock")
        guard_path.parent.mkdir(parents=True, exist_ok=True)
        with open(guard_path, "a") as guard:
            fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)


class MemoryLockfileStore(LockfileStore):
    """Lockfile store kept in memory (tests, dry runs)."""

    def __init__(self, initial: Lockfile | None = None):
        super().__init__(lock_path=Path(LOCKFILE_NAME))
        self._text = json.dumps(initial.to_dict()) if initial is not None else None
        self.writes = 0

    def _read_text(self) -> str | None:
        return self._text

    def _write_text(self, content: str) -> None:
        self._text = content
        self.writes += 1

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        yield
