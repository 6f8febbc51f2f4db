"""prpm command line entry point.

Thin typer surface over the install engine: every command builds the
registry client, lockfile store and installers for the current directory,
runs one engine operation and turns its result (or error) into output and an
exit code.
"""

import asyncio
import logging
from pathlib import Path

import typer
from rich.table import Table

from . import __version__
from .config import PrpmConfig
from .config import load_config
from .console import configure_logging
from .console import console
from .console import print_error
from .console import print_success
from .console import print_warning
from .exceptions import NotFoundError
from .exceptions import PrpmError
from .exceptions import RequiredInstallFailure
from .installer import InstallOptions
from .installer import PackageInstaller
from .lock import LockfileStore
from .orchestrator import CollectionInstaller
from .orchestrator import CollectionInstallResult
from .orchestrator import OrchestrationState
from .registry import HttpRegistryClient
from .registry import RegistryClientProtocol

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="prpm",
    help="prpm - install AI assistant rules, skills and agents from the registry",
    no_args_is_help=True,
)
collections_app = typer.Typer(help="Install and manage collections", no_args_is_help=True)
app.add_typer(collections_app, name="collections")


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"prpm {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output."),
) -> None:
    """prpm - install AI assistant rules, skills and agents from the registry."""
    configure_logging(verbose)


def create_registry(config: PrpmConfig) -> RegistryClientProtocol:
    """Registry client used by every command (tests replace this)."""
    return HttpRegistryClient(base_url=config.registry_url, token=config.token)


async def _close(registry: RegistryClientProtocol) -> None:
    aclose = getattr(registry, "aclose", None)
    if aclose is not None:
        await aclose()


def _engine(registry: RegistryClientProtocol, config: PrpmConfig) -> tuple[PackageInstaller, CollectionInstaller]:
    project_root = Path.cwd()
    lock = LockfileStore.for_project(project_root)
    installer = PackageInstaller(registry=registry, lock=lock, project_root=project_root, config=config)
    return installer, CollectionInstaller(installer=installer, registry=registry, lock=lock)


def _run(operation):
    """Run `operation(installer, orchestrator)` against a fresh registry client."""
    config = load_config(Path.cwd())

    async def runner():
        registry = create_registry(config)
        try:
            installer, orchestrator = _engine(registry, config)
            return await operation(installer, orchestrator)
        finally:
            await _close(registry)

    return asyncio.run(runner())


def _fail(error: PrpmError) -> None:
    if isinstance(error, RequiredInstallFailure) and error.__cause__ is not None:
        print_error(f"{error.message}: {error.__cause__}")
    elif error.package_id:
        print_error(f"{error.package_id}: {error.message}")
    else:
        print_error(error.message)
    raise typer.Exit(1)


def _report_collection(result: CollectionInstallResult) -> None:
    if result.state == OrchestrationState.DRY_RUN_REPORTED:
        console.print(f"\n[bold]Dry run:[/bold] {result.key}@{result.version} would install {result.total} packages")
        for item in result.plan:
            label = "required" if item.entry.required else "optional"
            console.print(f"  {item.package_id}@{item.entry.version or 'latest'} [dim]({label})[/dim]")
        return

    print_success(f"Installed {result.key}@{result.version}: {result.succeeded}/{result.total} packages")
    if result.skipped_optional:
        console.print(f"  Skipped optional: {result.skipped_optional}")
    for item in result.optional_failures:
        print_warning(f"{item.failure.message}: {item.error}")


@app.command(name="install")
def install(
    spec: str | None = typer.Argument(None, help="Package or collection, e.g. @scope/name@1.0.0"),
    as_format: str | None = typer.Option(None, "--as", help="Install in another format (cursor, claude, ...)."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write files under this directory."),
    frozen_lockfile: bool = typer.Option(
        False,
        "--frozen-lockfile",
        help="Fail instead of updating versions not recorded in prpm.lock.",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be installed without installing."),
) -> None:
    """Install a package or collection; with no argument, install everything in prpm.lock."""
    options = InstallOptions(
        as_format=as_format,
        output=output,
        frozen_lockfile=frozen_lockfile,
        dry_run=dry_run,
    )

    if spec is None:
        try:
            result = _run(lambda installer, _: installer.install_from_lockfile(options))
        except PrpmError as e:
            _fail(e)
        print_success(f"Installed {len(result.installed)}/{result.total} packages from prpm.lock")
        for package_id, reason in result.failed.items():
            print_error(f"{package_id}: {reason}")
        if result.failed:
            raise typer.Exit(1)
        return

    async def install_spec(installer: PackageInstaller, orchestrator: CollectionInstaller):
        if not frozen_lockfile:
            try:
                return await orchestrator.install_collection(spec, options)
            except NotFoundError as e:
                if e.package_id:
                    raise
                logger.debug(f"{spec} is not a collection, installing as a package")
        return await installer.install_package(spec, options)

    try:
        result = _run(install_spec)
    except PrpmError as e:
        _fail(e)

    if isinstance(result, CollectionInstallResult):
        _report_collection(result)
    elif result.dry_run:
        console.print(f"Would install {result.package_id}@{result.version} to {result.installed_path}")
    else:
        print_success(f"Installed {result.package_id}@{result.version} to {result.installed_path}")
        console.print(f"  {result.file_count} file(s), format {result.format}/{result.subtype}")


@collections_app.command(name="install")
def collections_install(
    spec: str = typer.Argument(..., help="Collection, e.g. @collection/starter@1.0.0"),
    as_format: str | None = typer.Option(None, "--as", help="Install every package in this format."),
    skip_optional: bool = typer.Option(False, "--skip-optional", help="Skip optional packages."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the install plan without installing."),
) -> None:
    """Install every package of a collection."""
    options = InstallOptions(as_format=as_format, skip_optional=skip_optional, dry_run=dry_run)
    try:
        result = _run(lambda _, orchestrator: orchestrator.install_collection(spec, options))
    except PrpmError as e:
        _fail(e)
    _report_collection(result)


@collections_app.command(name="uninstall")
def collections_uninstall(spec: str = typer.Argument(..., help="Installed collection, e.g. @collection/starter")) -> None:
    """Uninstall a collection and the packages it installed."""
    try:
        removed = _run(lambda _, orchestrator: orchestrator.uninstall_collection(spec))
    except PrpmError as e:
        _fail(e)
    print_success(f"Uninstalled {spec} ({len(removed)} packages)")


@app.command(name="uninstall")
def uninstall(package_id: str = typer.Argument(..., help="Installed package id")) -> None:
    """Remove an installed package and its lockfile entry."""
    try:
        _run(lambda installer, _: installer.uninstall_package(package_id))
    except PrpmError as e:
        _fail(e)
    print_success(f"Uninstalled {package_id}")


@app.command(name="list")
def list_installed() -> None:
    """List packages and collections recorded in prpm.lock."""
    lock = LockfileStore.for_project(Path.cwd())
    try:
        packages = lock.list_packages()
        collections = lock.list_collections()
    except PrpmError as e:
        _fail(e)

    if not packages:
        print_warning("No packages installed")
        return

    table = Table(title="Installed packages")
    table.add_column("Package", style="cyan")
    table.add_column("Version")
    table.add_column("Format")
    table.add_column("Path")
    table.add_column("Collection", style="dim")
    for package_id, entry in packages:
        owner = entry.from_collection
        table.add_row(
            package_id,
            entry.version,
            f"{entry.format}/{entry.subtype}",
            entry.installed_path or "",
            f"@{owner.scope}/{owner.name_slug}" if owner else "",
        )
    console.print(table)

    for key, row in collections:
        console.print(f"[bold]{key}[/bold]@{row.version} [dim]({len(row.packages)} packages)[/dim]")


if __name__ == "__main__":
    app()
