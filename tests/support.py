"""Shared test doubles: archive builders and an in-memory registry."""

import gzip
import io
import tarfile

from prpm.exceptions import DownloadError
from prpm.exceptions import NotFoundError
from prpm.registry import CollectionInfo
from prpm.registry import CollectionInstallPlan
from prpm.registry import InstallPlanEntry
from prpm.registry import RegistryPackage
from prpm.registry import VersionRef
from prpm.schema import PackageManifest


def make_tarball(files: dict[str, str | bytes]) -> bytes:
    """Build a gzipped tar with the given entries, in insertion order."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def make_symlink_tarball(name: str, target: str) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        info = tarfile.TarInfo(name)
        info.type = tarfile.SYMTYPE
        info.linkname = target
        archive.addfile(info)
    return buffer.getvalue()


def make_legacy(content: str | bytes) -> bytes:
    """Pre-multi-file payload: one gzipped file, no tar container."""
    return gzip.compress(content.encode() if isinstance(content, str) else content)


class FakeRegistry:
    """RegistryClientProtocol over dicts, recording every call."""

    def __init__(self):
        self.packages: dict[str, RegistryPackage] = {}
        self.versions: dict[tuple[str, str], VersionRef] = {}
        self.artifacts: dict[str, bytes] = {}
        self.plans: dict[tuple[str, str], CollectionInstallPlan] = {}
        self.failing: set[str] = set()
        self.downloads: list[tuple[str, str | None]] = []
        self.plan_requests: list[dict] = []
        self._url_owner: dict[str, str] = {}

    def add_package(
        self,
        package_id: str,
        data: bytes,
        version: str = "1.0.0",
        format: str = "cursor",
        subtype: str = "rule",
        manifest: PackageManifest | None = None,
        description: str = "",
    ) -> str:
        url = f"https://registry.test/tarballs/{package_id}/{version}.tgz"
        ref = VersionRef(version=version, tarball_url=url)
        self.packages[package_id] = RegistryPackage(
            id=package_id,
            description=description,
            format=format,
            subtype=subtype,
            latest_version=ref,
            manifest=manifest,
        )
        self.versions[(package_id, version)] = ref
        self.artifacts[url] = data
        self._url_owner[url] = package_id
        return url

    def add_collection(
        self,
        scope: str,
        slug: str,
        entries: list[dict],
        version: str = "1.0.0",
    ) -> None:
        info = CollectionInfo(id=f"{scope}/{slug}", scope=scope, name=slug, name_slug=slug, version=version)
        plan_entries = [InstallPlanEntry.model_validate(entry) for entry in entries]
        self.plans[(scope, slug)] = CollectionInstallPlan(collection=info, packages_to_install=plan_entries)

    def downloaded_ids(self) -> list[str]:
        return [self._url_owner[url] for url, _ in self.downloads]

    async def get_package(self, package_id: str) -> RegistryPackage:
        if package_id not in self.packages:
            raise NotFoundError(f"Package not found: {package_id}")
        return self.packages[package_id]

    async def get_package_version(self, package_id: str, version: str) -> VersionRef:
        if (package_id, version) not in self.versions:
            raise NotFoundError(f"Version not found: {package_id}@{version}")
        return self.versions[(package_id, version)]

    async def download_package(self, tarball_url: str, format: str | None = None) -> bytes:
        self.downloads.append((tarball_url, format))
        if self._url_owner.get(tarball_url) in self.failing:
            raise DownloadError(f"Connection reset downloading {tarball_url}")
        return self.artifacts[tarball_url]

    async def get_collection(self, scope: str, slug: str, version: str | None = None) -> CollectionInfo:
        if (scope, slug) not in self.plans:
            raise NotFoundError(f"Collection not found: @{scope}/{slug}")
        return self.plans[(scope, slug)].collection

    async def install_collection(
        self,
        scope: str,
        slug: str,
        version: str | None = None,
        format: str | None = None,
        skip_optional: bool = False,
    ) -> CollectionInstallPlan:
        self.plan_requests.append(
            {"scope": scope, "slug": slug, "version": version, "format": format, "skip_optional": skip_optional}
        )
        if (scope, slug) not in self.plans:
            raise NotFoundError(f"Collection not found: @{scope}/{slug}")
        return self.plans[(scope, slug)]
