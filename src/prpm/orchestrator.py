"""Collection installation - turn a registry install plan into installed packages.

Process for one collection:
1. Fetch the ordered install plan from the registry
2. Drop optional entries when asked to skip them
3. Dry run: report the plan and stop (no download, no lockfile write)
4. Install entries one at a time, in plan order, through the PackageInstaller
5. Record the collection row in the lockfile

A failing optional entry is logged and the run continues. A failing required
entry aborts the run; packages installed before it stay installed and no
collection row is written.
"""

import logging
from enum import Enum

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from .exceptions import NotFoundError
from .exceptions import OptionalInstallFailure
from .exceptions import PrpmError
from .exceptions import RequiredInstallFailure
from .installer import InstallOptions
from .installer import InstallResult
from .installer import PackageInstaller
from .lock import FromCollection
from .lock import LockfileCollection
from .lock import LockfileStore
from .registry import InstallPlanEntry
from .registry import RegistryClientProtocol
from .utils import collection_key
from .utils import parse_collection_spec

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION_VERSION = "1.0.0"


class PlanEntryState(str, Enum):
    PENDING = "pending"
    INSTALLING = "installing"
    INSTALLED = "installed"
    FAILED = "failed"


class OrchestrationState(str, Enum):
    PLANNING = "planning"
    DRY_RUN_REPORTED = "dry_run_reported"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_OPTIONAL_FAILURES = "completed_with_optional_failures"
    ABORTED_REQUIRED_FAILURE = "aborted_required_failure"


class PlanEntryResult(BaseModel):
    """Progress of one plan entry.

    `failure` is set for a failed optional entry, with the underlying error chained.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    entry: InstallPlanEntry
    state: PlanEntryState = PlanEntryState.PENDING
    result: InstallResult | None = None
    error: str | None = None
    failure: OptionalInstallFailure | None = None

    @property
    def package_id(self) -> str:
        return self.entry.package_id


class CollectionInstallResult(BaseModel):
    """Outcome of a collection install (or dry run)."""

    key: str
    version: str
    state: OrchestrationState = OrchestrationState.PLANNING
    plan: list[PlanEntryResult] = Field(default_factory=list)
    skipped_optional: int = 0

    @property
    def total(self) -> int:
        return len(self.plan)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.plan if item.state == PlanEntryState.INSTALLED)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.plan if item.state == PlanEntryState.FAILED)

    @property
    def optional_failures(self) -> list[PlanEntryResult]:
        return [item for item in self.plan if item.state == PlanEntryState.FAILED and not item.entry.required]


class CollectionInstaller:
    """
    Install collections by running the registry's plan through a PackageInstaller.

    Example:
        >>> orchestrator = CollectionInstaller(installer, registry, lock)
        >>> result = await orchestrator.install_collection("@collection/starter", InstallOptions(skip_optional=True))
        >>> print(f"{result.succeeded}/{result.total} installed")
    """

    def __init__(
        self,
        installer: PackageInstaller,
        registry: RegistryClientProtocol,
        lock: LockfileStore,
    ):
        self.installer = installer
        self.registry = registry
        self.lock = lock

    async def install_collection(
        self,
        specifier: str,
        options: InstallOptions | None = None,
    ) -> CollectionInstallResult:
        """
        Install every package of a collection.

        Args:
            specifier: `@scope/slug`, `scope/slug` or `slug`, optionally with `@version`
            options: `as_format`, `skip_optional` and `dry_run` are honored

        Returns:
            CollectionInstallResult (state DRY_RUN_REPORTED, COMPLETED or
            COMPLETED_WITH_OPTIONAL_FAILURES)

        Raises:
            InvalidSpecifierError: Malformed specifier
            NotFoundError: Unknown collection
            RequiredInstallFailure: A required member failed (cause chained)
        """
        options = options or InstallOptions()
        scope, slug, version = parse_collection_spec(specifier)
        key = collection_key(scope, slug)

        logger.info(f"Fetching collection {key}{f'@{version}' if version else ''}...")
        plan = await self.registry.install_collection(
            scope,
            slug,
            version=version,
            format=options.as_format,
            skip_optional=options.skip_optional,
        )
        collection_version = plan.collection.version or version or DEFAULT_COLLECTION_VERSION

        entries = list(plan.packages_to_install)
        skipped = 0
        if options.skip_optional:
            kept = [entry for entry in entries if entry.required]
            skipped = len(entries) - len(kept)
            entries = kept

        result = CollectionInstallResult(
            key=key,
            version=collection_version,
            plan=[PlanEntryResult(entry=entry) for entry in entries],
            skipped_optional=skipped,
        )

        required_count = sum(1 for entry in entries if entry.required)
        logger.info(
            f"{plan.collection.name or key}: {len(entries)} packages "
            f"({required_count} required, {len(entries) - required_count} optional)"
        )

        if options.dry_run:
            for item in result.plan:
                label = "required" if item.entry.required else "optional"
                logger.info(f"  would install {item.package_id}@{item.entry.version or 'latest'} ({label})")
            result.state = OrchestrationState.DRY_RUN_REPORTED
            return result

        result.state = OrchestrationState.RUNNING
        provenance = FromCollection(scope=scope, name_slug=slug, version=collection_version)

        for index, item in enumerate(result.plan, start=1):
            entry = item.entry
            package_spec = f"{entry.package_id}@{entry.version}" if entry.version else entry.package_id
            entry_options = options.model_copy(update={"as_format": options.as_format or entry.format})

            logger.info(f"[{index}/{result.total}] Installing {package_spec}...")
            item.state = PlanEntryState.INSTALLING
            try:
                item.result = await self.installer.install_package(
                    package_spec,
                    entry_options,
                    from_collection=provenance,
                )
            except PrpmError as e:
                item.state = PlanEntryState.FAILED
                item.error = e.message
                context = {"package_id": entry.package_id, "collection": key}

                if entry.required:
                    result.state = OrchestrationState.ABORTED_REQUIRED_FAILURE
                    logger.error(f"Failed to install required package {entry.package_id}: {e.message}")
                    raise RequiredInstallFailure(
                        f"Failed to install required package: {entry.package_id}",
                        context={**context, "result": result},
                    ) from e

                failure = OptionalInstallFailure(
                    f"Failed to install optional package: {entry.package_id}",
                    context={**context, "cause": e.message},
                )
                failure.__cause__ = e
                item.failure = failure
                logger.warning(f"{failure.message} ({e.message})")
                continue

            item.state = PlanEntryState.INSTALLED

        self.lock.add_collection(
            key,
            LockfileCollection(
                scope=scope,
                name_slug=slug,
                version=collection_version,
                packages=[item.package_id for item in result.plan],
            ),
        )

        if result.optional_failures:
            result.state = OrchestrationState.COMPLETED_WITH_OPTIONAL_FAILURES
        else:
            result.state = OrchestrationState.COMPLETED

        logger.info(f"Collection {key} installed: {result.succeeded}/{result.total} packages")
        return result

    async def uninstall_collection(self, specifier: str) -> list[str]:
        """
        Uninstall a collection's member packages and its lockfile row.

        Members later reinstalled outside the collection (no longer carrying
        its provenance) are left alone.

        Returns:
            Package ids that were uninstalled

        Raises:
            NotFoundError: Collection isn't in the lockfile
        """
        scope, slug, _ = parse_collection_spec(specifier)
        key = collection_key(scope, slug)

        row = self.lock.get_collection(key)
        if row is None:
            raise NotFoundError(f"Collection {key} is not installed", context={"collection": key})

        removed = []
        for package_id in row.packages:
            entry = self.lock.get_package(package_id)
            if entry is None:
                continue
            owner = entry.from_collection
            if owner is None or (owner.scope, owner.name_slug) != (scope, slug):
                logger.info(f"Keeping {package_id}: not owned by {key}")
                continue
            await self.installer.uninstall_package(package_id)
            removed.append(package_id)

        self.lock.remove_collection(key)
        logger.info(f"Uninstalled collection {key} ({len(removed)} packages)")
        return removed
