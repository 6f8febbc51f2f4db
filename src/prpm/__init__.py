"""prpm - install engine for AI assistant configuration packages.

Public API exports.

This is library mechanism: apps inject the registry client, lockfile store,
filesystem and project root.
"""

from .config import PrpmConfig
from .config import load_config
from .exceptions import AuthenticationError
from .exceptions import DownloadError
from .exceptions import ExtractionError
from .exceptions import IntegrityError
from .exceptions import InvalidSpecifierError
from .exceptions import LockfileError
from .exceptions import ManifestError
from .exceptions import NotFoundError
from .exceptions import OptionalInstallFailure
from .exceptions import PrpmError
from .exceptions import RequiredInstallFailure
from .exceptions import WriteError
from .extractor import ExtractedFile
from .extractor import extract_package
from .filesystem import FileSystemProtocol
from .filesystem import LocalFileSystem
from .installer import InstallOptions
from .installer import InstallResult
from .installer import LockfileInstallResult
from .installer import PackageInstaller
from .lock import FromCollection
from .lock import Lockfile
from .lock import LockfileCollection
from .lock import LockfilePackage
from .lock import LockfileStore
from .lock import MemoryLockfileStore
from .orchestrator import CollectionInstaller
from .orchestrator import CollectionInstallResult
from .orchestrator import OrchestrationState
from .orchestrator import PlanEntryState
from .placement import PlacementStrategy
from .placement import get_placement
from .registry import CollectionInstallPlan
from .registry import HttpRegistryClient
from .registry import InstallPlanEntry
from .registry import RegistryClientProtocol
from .schema import FileEntry
from .schema import PackageManifest
from .utils import parse_collection_spec
from .utils import parse_package_spec

__all__ = [
    # Installation
    "PackageInstaller",
    "InstallOptions",
    "InstallResult",
    "LockfileInstallResult",
    "CollectionInstaller",
    "CollectionInstallResult",
    "OrchestrationState",
    "PlanEntryState",
    # Extraction and placement
    "extract_package",
    "ExtractedFile",
    "PlacementStrategy",
    "get_placement",
    "FileSystemProtocol",
    "LocalFileSystem",
    # Registry
    "RegistryClientProtocol",
    "HttpRegistryClient",
    "InstallPlanEntry",
    "CollectionInstallPlan",
    # Manifest
    "PackageManifest",
    "FileEntry",
    # Lock file
    "Lockfile",
    "LockfilePackage",
    "LockfileCollection",
    "FromCollection",
    "LockfileStore",
    "MemoryLockfileStore",
    # Configuration
    "PrpmConfig",
    "load_config",
    # Exceptions
    "PrpmError",
    "NotFoundError",
    "AuthenticationError",
    "DownloadError",
    "IntegrityError",
    "ExtractionError",
    "WriteError",
    "LockfileError",
    "ManifestError",
    "InvalidSpecifierError",
    "RequiredInstallFailure",
    "OptionalInstallFailure",
    # Utilities
    "parse_package_spec",
    "parse_collection_spec",
]

__version__ = "0.1.0"
