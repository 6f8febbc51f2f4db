"""Archive extraction - raw artifact bytes to placed logical files.

Archives come from a remote registry and are untrusted. Every entry is
validated before anything is returned, so a single bad entry means no file
of that archive is ever written. This module never touches the filesystem.
"""

import gzip
import io
import logging
import posixpath
import re
import tarfile
import zlib
from dataclasses import dataclass
from pathlib import PurePosixPath

from .exceptions import ExtractionError
from .placement import PlacementStrategy
from .placement import get_placement

logger = logging.getLogger(__name__)

_TAR_MAGIC_OFFSET = 257
_TAR_MAGIC = b"ustar"
_TAR_BLOCK_SIZE = 512
_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")


@dataclass(frozen=True)
class ExtractedFile:
    """One file from an artifact.

    Attributes:
        relative_path: Validated path inside the archive (published layout prefix stripped)
        content: Raw bytes
        destination: Project-relative POSIX path the file must be written to
    """

    relative_path: str
    content: bytes
    destination: str


def is_tar_archive(data: bytes) -> bool:
    """True if the (decompressed) payload carries a ustar header."""
    return len(data) > _TAR_MAGIC_OFFSET + len(_TAR_MAGIC) and (
        data[_TAR_MAGIC_OFFSET : _TAR_MAGIC_OFFSET + len(_TAR_MAGIC)] == _TAR_MAGIC
    )


def _is_empty_tar(data: bytes) -> bool:
    # A tar with no members is just zero-filled end-of-archive blocks
    return len(data) >= 2 * _TAR_BLOCK_SIZE and len(data) % _TAR_BLOCK_SIZE == 0 and not data.strip(b"\0")


def safe_relative_path(name: str) -> str:
    """
    Normalize an archive entry name, rejecting anything that escapes the root.

    Args:
        name: Entry name as stored in the archive

    Returns:
        Normalized POSIX relative path (may be "" for the root itself)

    Raises:
        ExtractionError: For absolute paths, drive letters, or `..` traversal
    """
    candidate = name.replace("\\", "/")
    if candidate.startswith("/") or _DRIVE_PATTERN.match(candidate):
        raise ExtractionError(f"Archive entry has an absolute path: {name}", context={"entry": name})
    if ".." in PurePosixPath(candidate).parts:
        raise ExtractionError(f"Archive entry escapes the extraction root: {name}", context={"entry": name})

    normalized = posixpath.normpath(candidate)
    if normalized == ".":
        return ""
    if normalized.startswith("../") or normalized == "..":
        raise ExtractionError(f"Archive entry escapes the extraction root: {name}", context={"entry": name})
    return normalized


def _decompress(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise ExtractionError(f"Corrupt or unreadable package payload: {e}") from e


def _read_tar_entries(data: bytes) -> list[tuple[str, bytes]]:
    """Regular-file entries of a tar stream in archive order (paths validated)."""
    entries = []
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as archive:
            for member in archive:
                path = safe_relative_path(member.name)
                if member.isdir():
                    continue
                if not member.isfile():
                    raise ExtractionError(
                        f"Archive entry is not a regular file: {member.name}",
                        context={"entry": member.name},
                    )
                if not path:
                    continue
                handle = archive.extractfile(member)
                entries.append((path, handle.read() if handle else b""))
    except tarfile.TarError as e:
        raise ExtractionError(f"Corrupt package archive: {e}") from e

    if not entries:
        raise ExtractionError("Package archive contains no files")
    return entries


def _strip_layout_prefix(paths: list[str], prefixes: list[str]) -> list[str]:
    """Drop the published layout prefix (e.g. `.claude/skills/<name>/`) from entry paths."""
    if paths and all(path.startswith("package/") for path in paths):
        paths = [path[len("package/") :] for path in paths]

    stripped = []
    for path in paths:
        for prefix in prefixes:
            if path.startswith(prefix):
                path = path[len(prefix) :]
                break
        stripped.append(path)
    return stripped


def _layout_prefixes(package_name: str, placements: list[PlacementStrategy]) -> list[str]:
    prefixes = set()
    for placement in placements:
        for directory in (placement.package_dir(package_name), placement.root):
            if directory not in (".", ""):
                prefixes.add(directory.rstrip("/") + "/")
    # Longest first so `.claude/skills/x/` wins over `.claude/skills/`
    return sorted(prefixes, key=len, reverse=True)


def _normalize_main_filename(path: str, original: str, placement: PlacementStrategy) -> str:
    if not placement.canonical_main:
        return path
    canonical = placement.main_filename
    directory, _, basename = path.rpartition("/")
    if basename != canonical and basename.lower() == canonical.lower():
        fixed = f"{directory}/{canonical}" if directory else canonical
        fixed_original = original[: len(original) - len(basename)] + canonical
        logger.warning(f"Auto-fixing skill filename: {original} → {fixed_original}")
        return fixed
    return path


def _destination(relative_path: str, package_name: str, placement: PlacementStrategy) -> str:
    if placement.per_package:
        return posixpath.join(placement.package_dir(package_name), relative_path)
    basename = posixpath.basename(relative_path)
    return basename if placement.root == "." else posixpath.join(placement.root, basename)


def extract_package(
    data: bytes,
    format: str,
    subtype: str,
    package_name: str,
    source_format: str | None = None,
    source_subtype: str | None = None,
    converted: bool = False,
) -> list[ExtractedFile]:
    """
    Turn a downloaded artifact into placed logical files.

    Process:
    1. gzip-decompress; a tar payload is read entry by entry, anything else is
       a legacy single-file package named after the placement's main filename
    2. Validate every entry path (no absolute paths, no traversal)
    3. Strip the published layout prefix
    4. Rename case-mismatched canonical main files (SKILL.md)
    5. Compute destinations from the placement table; conversions always flatten

    Args:
        data: Raw artifact bytes as downloaded
        format: Target format the package is installed as
        subtype: Target subtype
        package_name: Package name without author namespace
        source_format: Format the package was published in (defaults to `format`)
        source_subtype: Subtype it was published as (defaults to `subtype`)
        converted: Install-time format conversion was requested

    Returns:
        Ordered list of ExtractedFile, in archive order

    Raises:
        ExtractionError: Corrupt payload, empty archive, link entries, or path traversal
    """
    placement = get_placement(format, subtype)
    if converted:
        placement = placement.as_flat()

    payload = _decompress(data)

    if _is_empty_tar(payload):
        raise ExtractionError("Package archive contains no files")

    if not is_tar_archive(payload):
        main_file = placement.main_file(package_name)
        logger.debug(f"Legacy single-file payload for {package_name}, saving as {main_file}")
        destination = _destination(main_file, package_name, placement)
        return [ExtractedFile(relative_path=main_file, content=payload, destination=destination)]

    entries = _read_tar_entries(payload)

    source_placement = get_placement(source_format or format, source_subtype or subtype)
    prefixes = _layout_prefixes(package_name, [source_placement, placement])
    originals = [path for path, _ in entries]
    relative_paths = _strip_layout_prefix(originals, prefixes)

    files = []
    seen: dict[str, str] = {}
    for original, relative_path, (_, content) in zip(originals, relative_paths, entries, strict=True):
        if not relative_path:
            continue
        relative_path = _normalize_main_filename(relative_path, original, placement)
        destination = _destination(relative_path, package_name, placement)
        if destination in seen:
            logger.warning(f"{original} overwrites {seen[destination]} at {destination}")
        seen[destination] = original
        files.append(ExtractedFile(relative_path=relative_path, content=content, destination=destination))

    logger.debug(f"Extracted {len(files)} files for {package_name}")
    return files
