"""Registry client - package/collection metadata lookup and tarball download.

The install engine only depends on `RegistryClientProtocol`; `HttpRegistryClient`
is the default implementation talking to the registry HTTP API. Retry policy
for the network leg lives here and nowhere else.
"""

import asyncio
import logging
from typing import Protocol
from typing import runtime_checkable
from urllib.parse import quote

import httpx
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError
from pydantic import field_validator

from .exceptions import AuthenticationError
from .exceptions import DownloadError
from .exceptions import NotFoundError
from .schema import PackageManifest

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://registry.prpm.dev"


class VersionRef(BaseModel):
    """A concrete published version and where its tarball lives."""

    model_config = ConfigDict(frozen=True)

    version: str
    tarball_url: str
    dependencies: dict[str, str] = Field(default_factory=dict)


class RegistryPackage(BaseModel):
    """Package metadata as returned by the registry."""

    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    format: str = "generic"
    subtype: str = "rule"
    latest_version: VersionRef | None = None
    manifest: PackageManifest | None = None


class CollectionRef(BaseModel):
    """Back-reference from a plan entry to the collection that owns it."""

    model_config = ConfigDict(frozen=True)

    scope: str
    name_slug: str
    version: str | None = None

    @property
    def key(self) -> str:
        """Lockfile key for the collection (`@scope/slug`)."""
        return f"@{self.scope}/{self.name_slug}"


class InstallPlanEntry(BaseModel):
    """One package in a collection install plan (ephemeral, never persisted)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    package_id: str = Field(alias="packageId")
    version: str | None = None
    format: str | None = None
    required: bool = True
    collection: CollectionRef | None = None

    @field_validator("required", mode="before")
    @classmethod
    def _default_required(cls, value):
        # Registry data may send an explicit null
        return True if value is None else value


class CollectionInfo(BaseModel):
    """Collection metadata as returned by the registry."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = ""
    scope: str = "collection"
    name: str = ""
    name_slug: str = ""
    description: str = ""
    version: str | None = None
    packages: list[InstallPlanEntry] = Field(default_factory=list)


class CollectionInstallPlan(BaseModel):
    """Install plan for a collection (`POST /collections/.../install`)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    collection: CollectionInfo
    packages_to_install: list[InstallPlanEntry] = Field(default_factory=list, alias="packagesToInstall")


@runtime_checkable
class RegistryClientProtocol(Protocol):
    """Protocol for registry access.

    Apps (and tests) can provide any implementation; the engine only needs this.
    """

    async def get_package(self, package_id: str) -> RegistryPackage:
        """Fetch package metadata. Raises NotFoundError for unknown ids."""
        ...

    async def get_package_version(self, package_id: str, version: str) -> VersionRef:
        """Fetch one published version. Raises NotFoundError for unknown versions."""
        ...

    async def download_package(self, tarball_url: str, format: str | None = None) -> bytes:
        """Download raw artifact bytes, optionally converted to `format` by the registry."""
        ...

    async def get_collection(self, scope: str, slug: str, version: str | None = None) -> CollectionInfo:
        """Fetch collection metadata. Raises NotFoundError for unknown collections."""
        ...

    async def install_collection(
        self,
        scope: str,
        slug: str,
        version: str | None = None,
        format: str | None = None,
        skip_optional: bool = False,
    ) -> CollectionInstallPlan:
        """Fetch the ordered install plan for a collection."""
        ...


class HttpRegistryClient:
    """
    Registry client over HTTP (httpx).

    Retries 429 and 5xx responses and connection failures with exponential
    backoff. Maps 404 -> NotFoundError, 401/403 -> AuthenticationError and
    every other failure -> DownloadError.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_REGISTRY_URL,
        token: str | None = None,
        retries: int = 3,
        backoff: float = 1.0,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client.

        Args:
            base_url: Registry root URL (trailing slash is dropped)
            token: Optional bearer token
            retries: Attempts per request (>= 1)
            backoff: Base delay in seconds, doubled on every retry
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.retries = max(1, retries)
        self.backoff = backoff

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpRegistryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def get_package(self, package_id: str) -> RegistryPackage:
        response = await self._request("GET", f"/api/v1/packages/{quote(package_id, safe='@/')}")
        return self._decode(response, RegistryPackage)

    async def get_package_version(self, package_id: str, version: str) -> VersionRef:
        response = await self._request("GET", f"/api/v1/packages/{quote(package_id, safe='@/')}/{quote(version)}")
        return self._decode(response, VersionRef)

    async def download_package(self, tarball_url: str, format: str | None = None) -> bytes:
        params = {}
        # Only the registry itself knows how to convert; external mirrors get the raw URL
        if format and tarball_url.startswith(self.base_url):
            params["format"] = format
        response = await self._request("GET", tarball_url, params=params)
        return response.content

    async def get_collection(self, scope: str, slug: str, version: str | None = None) -> CollectionInfo:
        version_path = f"/{quote(version)}" if version else ""
        response = await self._request("GET", f"/api/v1/collections/{quote(scope)}/{quote(slug)}{version_path}")
        return self._decode(response, CollectionInfo)

    async def install_collection(
        self,
        scope: str,
        slug: str,
        version: str | None = None,
        format: str | None = None,
        skip_optional: bool = False,
    ) -> CollectionInstallPlan:
        params = {}
        if format:
            params["format"] = format
        if skip_optional:
            params["skipOptional"] = "true"
        version_path = f"@{quote(version)}" if version else ""
        response = await self._request(
            "POST",
            f"/api/v1/collections/{quote(scope)}/{quote(slug)}{version_path}/install",
            params=params,
        )
        return self._decode(response, CollectionInstallPlan)

    def _decode(self, response: httpx.Response, model: type[BaseModel]):
        """Parse a successful JSON response into `model`.

        Raises:
            DownloadError: Body is not JSON or does not match the model
        """
        url = str(response.request.url)
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DownloadError(
                f"Invalid registry response from {url}: {e}",
                context={"url": url, "registry": self.base_url, "status": response.status_code},
            ) from e

    async def _request(self, method: str, path: str, params: dict | None = None) -> httpx.Response:
        url = path if path.startswith(("http://", "https://")) else f"{self.base_url}{path}"
        last_error: Exception | None = None

        for attempt in range(self.retries):
            logger.debug(f"{method} {url} (attempt {attempt + 1}/{self.retries})")
            try:
                response = await self._client.request(method, url, params=params)
            except httpx.TransportError as e:
                last_error = e
                if attempt < self.retries - 1:
                    await asyncio.sleep(self.backoff * 2**attempt)
                    continue
                raise DownloadError(
                    f"Failed to connect to registry at {url}: {e}",
                    context={"url": url, "registry": self.base_url},
                ) from e

            retryable = response.status_code == 429 or 500 <= response.status_code < 600
            if retryable and attempt < self.retries - 1:
                await asyncio.sleep(self._retry_delay(response, attempt))
                continue

            if response.is_success:
                return response

            self._raise_for_status(response, url)

        # Only reachable with retries exhausted on a transport error
        raise DownloadError(f"Request failed after {self.retries} attempts: {url}", context={"url": url}) from last_error

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return float(retry_after)
        return self.backoff * 2**attempt

    @staticmethod
    def _raise_for_status(response: httpx.Response, url: str) -> None:
        try:
            body = response.json()
            detail = body.get("error") or body.get("message") if isinstance(body, dict) else None
        except ValueError:
            detail = None
        message = detail or f"HTTP {response.status_code}: {response.reason_phrase}"
        context = {"url": url, "status": response.status_code}

        if response.status_code == 404:
            raise NotFoundError(message, context=context)
        if response.status_code in (401, 403):
            raise AuthenticationError(f"Authentication required: {message}", context=context)
        raise DownloadError(message, context=context)
