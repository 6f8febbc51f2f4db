"""Install engine exceptions.

Every error carries a human-readable message plus a context dict, so callers
can print the offending package id and the underlying cause.
"""


class PrpmError(Exception):
    """Base exception for install engine operations."""

    def __init__(self, message: str, context: dict | None = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (package id, paths, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    @property
    def package_id(self) -> str | None:
        """Package the error was raised for, when known."""
        return self.context.get("package_id")

    def with_package(self, package_id: str) -> "PrpmError":
        """Attach the offending package id and return self (for re-raise)."""
        self.context.setdefault("package_id", package_id)
        return self


class NotFoundError(PrpmError):
    """Unknown package, collection or version."""


class AuthenticationError(PrpmError):
    """Registry requires credentials that are missing or rejected."""


class DownloadError(PrpmError):
    """Transport-level failure talking to the registry."""


class IntegrityError(DownloadError):
    """Downloaded artifact does not match the integrity recorded in the lockfile."""


class ExtractionError(PrpmError):
    """Corrupt archive or an entry escaping the extraction root."""


class WriteError(PrpmError):
    """Filesystem failure while placing files."""


class LockfileError(PrpmError):
    """Lockfile unreadable, inconsistent, or missing where required."""


class ManifestError(PrpmError):
    """Invalid package manifest."""


class InvalidSpecifierError(PrpmError):
    """Package or collection specifier could not be parsed."""


class RequiredInstallFailure(PrpmError):
    """A required collection member failed; the collection install is aborted."""


class OptionalInstallFailure(PrpmError):
    """An optional collection member failed; the collection install continues."""
