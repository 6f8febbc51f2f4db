"""Specifier parsing, package-name and rule-content helpers."""

import json
import re

from .exceptions import InvalidSpecifierError

DEFAULT_COLLECTION_SCOPE = "collection"

_SCOPED_PACKAGE = re.compile(r"^(@[^/@]+/[^@]+)(?:@(.+))?$")
_PLAIN_PACKAGE = re.compile(r"^([^@/][^@]*)(?:@(.+))?$")
_SCOPED_COLLECTION = re.compile(r"^@?([^/@]+)/([^/@]+)(?:@(.+))?$")
_PLAIN_COLLECTION = re.compile(r"^([^/@]+)(?:@(.+))?$")
_MDC_HEADER = re.compile(r"^---\s*\n[\s\S]*?\n---")


def parse_package_spec(spec: str) -> tuple[str, str | None]:
    """
    Split a package specifier into (package_id, version).

    For scoped packages the leading `@` belongs to the name.

    Examples:
        >>> parse_package_spec("react-rules")
        ('react-rules', None)
        >>> parse_package_spec("react-rules@1.2.0")
        ('react-rules', '1.2.0')
        >>> parse_package_spec("@prpm/pkg@1.0.0")
        ('@prpm/pkg', '1.0.0')

    Raises:
        InvalidSpecifierError: If the specifier is empty or malformed
    """
    spec = spec.strip()
    pattern = _SCOPED_PACKAGE if spec.startswith("@") else _PLAIN_PACKAGE
    match = pattern.match(spec)
    if not match:
        raise InvalidSpecifierError(
            f"Invalid package spec '{spec}'. Use: package, package@version, @scope/package or @scope/package@version",
            context={"spec": spec},
        )
    package_id, version = match.groups()
    if version == "latest":
        version = None
    return package_id, version


def parse_collection_spec(spec: str) -> tuple[str, str, str | None]:
    """
    Split a collection specifier into (scope, slug, version).

    Accepts `@scope/slug`, `scope/slug` and bare `slug` (scope defaults to
    `collection`), each optionally suffixed with `@version`.

    Raises:
        InvalidSpecifierError: If the specifier doesn't match any accepted form
    """
    spec = spec.strip()
    match = _SCOPED_COLLECTION.match(spec)
    if match:
        scope, slug, version = match.groups()
        return scope, slug, version

    match = _PLAIN_COLLECTION.match(spec)
    if not match:
        raise InvalidSpecifierError(
            f"Invalid collection spec '{spec}'. Use: name, @scope/name, or scope/name (optionally with @version)",
            context={"spec": spec},
        )
    slug, version = match.groups()
    return DEFAULT_COLLECTION_SCOPE, slug, version


def collection_key(scope: str, slug: str) -> str:
    """Lockfile key for a collection."""
    return f"@{scope}/{slug}"


def strip_author_namespace(package_id: str) -> str:
    """
    Package name without its author namespace.

    Examples:
        >>> strip_author_namespace("@prpm/typescript-rules")
        'typescript-rules'
        >>> strip_author_namespace("author/my-skill")
        'my-skill'
        >>> strip_author_namespace("my-skill")
        'my-skill'
    """
    return package_id.rsplit("/", 1)[-1]


def has_mdc_header(content: str) -> bool:
    """True if `content` opens with a `---` frontmatter block."""
    return _MDC_HEADER.match(content.lstrip("\ufeff")) is not None


def add_mdc_header(content: str, description: str) -> str:
    """
    Prepend the frontmatter block Cursor expects on `.mdc` rules.

    Example:
        >>> add_mdc_header("# Rules", "React rules")
        '---\\ndescription: "React rules"\\nalwaysApply: false\\n---\\n\\n# Rules'
    """
    header = f"---\ndescription: {json.dumps(description, ensure_ascii=False)}\nalwaysApply: false\n---\n\n"
    return header + content
