"""Package installation - specifier to verified, placed files and a lockfile row.

The installer depends on three injected capabilities: a registry client
(metadata + download), a lockfile store, and a filesystem. It never writes
the lockfile itself except through the store.

Process for one package:
1. Resolve specifier to package id + version (explicit version, else latest)
2. Pick the effective format (override > configured default > published)
   (dry run stops here and reports the plan)
3. Download the raw artifact
4. Extract it (validated, placed paths); cursor rules get a missing MDC header
5. Check every destination stays inside the root, then write every file
6. Hash the raw artifact and upsert the lockfile row

Writes are not transactional across files; the lockfile row is only written
after every file succeeded, so a failed install never looks installed.
"""

import logging
from dataclasses import replace
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from .config import PrpmConfig
from .exceptions import IntegrityError
from .exceptions import LockfileError
from .exceptions import NotFoundError
from .exceptions import PrpmError
from .extractor import ExtractedFile
from .extractor import extract_package
from .filesystem import FileSystemProtocol
from .filesystem import LocalFileSystem
from .filesystem import ensure_within
from .lock import FromCollection
from .lock import LockfilePackage
from .lock import LockfileStore
from .lock import compute_integrity
from .lock import verify_integrity
from .placement import PLACEMENTS
from .placement import effective_subtype
from .placement import get_placement
from .registry import RegistryClientProtocol
from .registry import RegistryPackage
from .registry import VersionRef
from .utils import add_mdc_header
from .utils import has_mdc_header
from .utils import parse_package_spec
from .utils import strip_author_namespace

logger = logging.getLogger(__name__)


class InstallOptions(BaseModel):
    """Options recognized by install operations.

    `as` is the format override; `output` overrides the root directory files
    are written under (the lockfile stays at the project root). With `dry_run`
    the version and placement are resolved and reported, nothing is downloaded
    or written.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    as_format: str | None = Field(default=None, alias="as")
    output: Path | None = None
    dry_run: bool = False
    skip_optional: bool = False
    frozen_lockfile: bool = False


class InstallResult(BaseModel):
    """Outcome of one successful package install."""

    model_config = ConfigDict(frozen=True)

    package_id: str
    version: str
    installed_path: str
    file_count: int
    format: str
    subtype: str
    integrity: str
    dry_run: bool = False


class LockfileInstallResult(BaseModel):
    """Outcome of re-installing everything recorded in the lockfile."""

    installed: list[InstallResult] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.installed) + len(self.failed)


class PackageInstaller:
    """
    Install single packages from the registry (with injected collaborators).

    Example:
        >>> installer = PackageInstaller(
        ...     registry=HttpRegistryClient(),
        ...     lock=LockfileStore.for_project(Path.cwd()),
        ...     project_root=Path.cwd(),
        ... )
        >>> result = await installer.install_package("@prpm/typescript-rules@1.0.0")
        >>> print(result.installed_path, result.file_count)
    """

    def __init__(
        self,
        registry: RegistryClientProtocol,
        lock: LockfileStore,
        project_root: Path,
        filesystem: FileSystemProtocol | None = None,
        config: PrpmConfig | None = None,
    ):
        self.registry = registry
        self.lock = lock
        self.project_root = project_root
        self.filesystem = filesystem or LocalFileSystem()
        self.config = config or PrpmConfig()

    async def install_package(
        self,
        specifier: str,
        options: InstallOptions | None = None,
        from_collection: FromCollection | None = None,
    ) -> InstallResult:
        """
        Install one package.

        Args:
            specifier: `name`, `name@version`, `@scope/name` or `@scope/name@version`
            options: Install options (format override, output root, frozen lockfile, dry run)
            from_collection: Provenance recorded when invoked by the collection orchestrator

        Returns:
            InstallResult with installed path and file count

        Raises:
            NotFoundError: Package or version unknown
            AuthenticationError: Registry refused the request
            DownloadError: Transport failure (IntegrityError on hash drift)
            ExtractionError: Corrupt archive or path traversal
            WriteError: Filesystem failure
            LockfileError: Frozen lockfile without a row for this package
        """
        options = options or InstallOptions()
        package_id, requested_version = parse_package_spec(specifier)

        try:
            return await self._install(package_id, requested_version, options, from_collection)
        except PrpmError as e:
            e.with_package(package_id)
            raise

    async def _install(
        self,
        package_id: str,
        requested_version: str | None,
        options: InstallOptions,
        from_collection: FromCollection | None,
    ) -> InstallResult:
        existing = self.lock.get_package(package_id)

        if options.frozen_lockfile:
            if existing is None:
                raise LockfileError(
                    f"Package {package_id} not found in lock file. Run without --frozen-lockfile to update.",
                    context={"package_id": package_id},
                )
            requested_version = existing.version

        logger.info(f"Installing {package_id}@{requested_version or 'latest'}...")

        package = await self.registry.get_package(package_id)
        resolved = await self._resolve_version(package, requested_version)

        target_format = options.as_format or self.config.default_format or package.format
        converted = target_format != package.format
        subtype = effective_subtype(target_format, package.format, package.subtype)
        if converted:
            logger.info(f"Converting {package_id} from {package.format} to {target_format} format")

        package_name = strip_author_namespace(package_id)
        if options.dry_run:
            installed_path = self._installed_path(options, [], target_format, subtype, package_name, converted)
            logger.info(f"Would install {package_id}@{resolved.version} ({target_format}/{subtype}) to {installed_path}")
            return InstallResult(
                package_id=package_id,
                version=resolved.version,
                installed_path=installed_path,
                file_count=0,
                format=target_format,
                subtype=subtype,
                integrity="",
                dry_run=True,
            )

        logger.debug(f"Downloading {resolved.tarball_url}")
        data = await self.registry.download_package(resolved.tarball_url, format=target_format)

        if (
            existing is not None
            and existing.integrity
            and existing.version == resolved.version
            and existing.format == target_format
            and not verify_integrity(existing.integrity, data)
        ):
            raise IntegrityError(
                f"Integrity check failed for {package_id}@{resolved.version}: "
                f"downloaded artifact does not match {existing.integrity}",
                context={"package_id": package_id, "expected": existing.integrity},
            )

        files = extract_package(
            data,
            format=target_format,
            subtype=subtype,
            package_name=package_name,
            source_format=package.format,
            source_subtype=package.subtype,
            converted=converted,
        )
        self._warn_missing_manifest_files(package, files)
        if (target_format, subtype) == ("cursor", "rule"):
            files = self._add_missing_mdc_headers(files, package.description or package_name)

        base = options.output or self.project_root
        destinations = [ensure_within(base, base / extracted.destination) for extracted in files]
        for destination, extracted in zip(destinations, files):
            self.filesystem.write_file(destination, extracted.content)

        installed_path = self._installed_path(options, files, target_format, subtype, package_name, converted)
        integrity = compute_integrity(data)

        entry = LockfilePackage(
            version=resolved.version,
            resolved=resolved.tarball_url,
            integrity=integrity,
            format=target_format,
            subtype=subtype,
            source_format=package.format,
            source_subtype=package.subtype,
            installed_path=installed_path,
            dependencies=dict(resolved.dependencies) or None,
            from_collection=from_collection or (existing.from_collection if existing else None),
            hook_metadata=existing.hook_metadata if existing else None,
        )
        self.lock.upsert_package(package_id, entry)

        logger.info(f"Installed {package_id}@{resolved.version} to {installed_path} ({len(files)} files)")
        return InstallResult(
            package_id=package_id,
            version=resolved.version,
            installed_path=installed_path,
            file_count=len(files),
            format=target_format,
            subtype=subtype,
            integrity=integrity,
        )

    async def _resolve_version(self, package: RegistryPackage, version: str | None) -> VersionRef:
        if version is None:
            if package.latest_version is None:
                raise NotFoundError(
                    f"No versions available for {package.id}",
                    context={"package_id": package.id},
                )
            return package.latest_version
        return await self.registry.get_package_version(package.id, version)

    def _installed_path(
        self,
        options: InstallOptions,
        files: list[ExtractedFile],
        target_format: str,
        subtype: str,
        package_name: str,
        converted: bool,
    ) -> str:
        placement = get_placement(target_format, subtype)
        if converted:
            placement = placement.as_flat()

        if placement.per_package:
            relative = placement.package_dir(package_name)
        elif len(files) == 1:
            relative = files[0].destination
        else:
            relative = placement.root

        if options.output is not None:
            return (options.output / relative).as_posix()
        return relative

    def _add_missing_mdc_headers(self, files: list[ExtractedFile], description: str) -> list[ExtractedFile]:
        fixed = []
        for extracted in files:
            if extracted.destination.endswith(".mdc"):
                try:
                    text = extracted.content.decode("utf-8")
                except UnicodeDecodeError:
                    text = None
                if text is not None and not has_mdc_header(text):
                    logger.info(f"Adding missing MDC header to {extracted.destination}")
                    extracted = replace(extracted, content=add_mdc_header(text, description).encode("utf-8"))
            fixed.append(extracted)
        return fixed

    def _warn_missing_manifest_files(self, package: RegistryPackage, files: list[ExtractedFile]) -> None:
        if package.manifest is None or not package.manifest.files:
            return
        extracted = {f.relative_path.rsplit("/", 1)[-1].lower() for f in files}
        for entry in package.manifest.file_entries():
            declared = entry.path.replace("\\", "/").rsplit("/", 1)[-1].lower()
            if declared not in extracted:
                logger.warning(f"{package.id}: declared file {entry.path} not found in archive")

    async def install_from_lockfile(self, options: InstallOptions | None = None) -> LockfileInstallResult:
        """
        Re-install every package recorded in the lockfile at its locked version.

        Each package keeps its locked format unless `options.as_format` overrides
        it, and its download is verified against the locked integrity. A failing
        package is logged and counted; the rest still install.

        Raises:
            LockfileError: If there is no lockfile
        """
        options = options or InstallOptions()
        lockfile = self.lock.read()
        if lockfile is None:
            raise LockfileError(
                "No prpm.lock found. Install a package first.",
                context={"path": str(self.lock.lock_path)},
            )

        result = LockfileInstallResult()
        if not lockfile.packages:
            logger.info("Lock file is empty, nothing to install")
            return result

        logger.info(f"Installing {len(lockfile.packages)} packages from lock file")
        for package_id, entry in lockfile.packages.items():
            package_options = options.model_copy(update={"as_format": options.as_format or entry.format})
            try:
                installed = await self.install_package(
                    f"{package_id}@{entry.version}",
                    package_options,
                    from_collection=entry.from_collection,
                )
            except PrpmError as e:
                logger.error(f"Failed to install {package_id}: {e.message}")
                result.failed[package_id] = e.message
                continue
            result.installed.append(installed)

        return result

    async def uninstall_package(self, package_id: str) -> LockfilePackage:
        """
        Remove an installed package's files and its lockfile row.

        Shared format directories (`.cursor/rules`, ...) are never removed as a
        whole; only per-package directories and single files are.

        Raises:
            NotFoundError: Package isn't in the lockfile
        """
        entry = self.lock.get_package(package_id)
        if entry is None:
            raise NotFoundError(f"Package {package_id} is not installed", context={"package_id": package_id})

        if entry.installed_path:
            shared_roots = {placement.root for placement in PLACEMENTS.values()}
            target = Path(entry.installed_path)
            if entry.installed_path in shared_roots:
                logger.warning(f"{package_id} lives in shared directory {entry.installed_path}, leaving files in place")
            elif target.is_absolute():
                logger.warning(f"{package_id} was installed outside the project ({target}), remove it manually")
            else:
                target = ensure_within(self.project_root, self.project_root / target)
                if not self.filesystem.remove(target):
                    logger.warning(f"Installed path for {package_id} already gone: {target}")

        self.lock.remove_package(package_id)
        logger.info(f"Uninstalled {package_id}")
        return entry
