"""Destination placement rules per consumer format.

Each `(format, subtype)` pair maps to a `PlacementStrategy`. Adding a consumer
format is a new row in `PLACEMENTS`, not a new branch in the extractor.
"""

from pydantic import BaseModel
from pydantic import ConfigDict


class PlacementStrategy(BaseModel):
    """
    Where a package's files land inside the project.

    Attributes:
        root: Project-relative directory (POSIX) shared by all packages of this kind
        per_package: Files go to `<root>/<packageName>/...` with subdirectories preserved
        main_filename: Filename for single-file payloads; `{name}` is the package name
        canonical_main: `main_filename` is case-sensitive and archive entries
            matching it case-insensitively are renamed to it
    """

    model_config = ConfigDict(frozen=True)

    root: str
    per_package: bool = False
    main_filename: str = "{name}.md"
    canonical_main: bool = False

    @property
    def flatten(self) -> bool:
        return not self.per_package

    def main_file(self, package_name: str) -> str:
        return self.main_filename.format(name=package_name)

    def package_dir(self, package_name: str) -> str:
        """Directory this package owns (the shared root for flat strategies)."""
        if self.per_package:
            return _join(self.root, package_name)
        return self.root

    def as_flat(self) -> "PlacementStrategy":
        """Same root, flattened: used when a package is converted to another format."""
        main_filename = "{name}.md" if self.canonical_main else self.main_filename
        return self.model_copy(update={"per_package": False, "canonical_main": False, "main_filename": main_filename})


def _join(*parts: str) -> str:
    joined = "/".join(part.strip("/") for part in parts if part and part != ".")
    return joined or "."


# None subtype is the format's fallback row
PLACEMENTS: dict[tuple[str, str | None], PlacementStrategy] = {
    ("claude", "skill"): PlacementStrategy(
        root=".claude/skills", per_package=True, main_filename="SKILL.md", canonical_main=True
    ),
    ("claude", "agent"): PlacementStrategy(root=".claude/agents", per_package=True),
    ("claude", "slash-command"): PlacementStrategy(root=".claude/commands", per_package=True),
    ("claude", "hook"): PlacementStrategy(root=".claude/hooks", per_package=True, main_filename="hook.json"),
    ("claude", None): PlacementStrategy(root=".claude/agents", per_package=True),
    ("cursor", "agent"): PlacementStrategy(root=".cursor/agents", main_filename="{name}.mdc"),
    ("cursor", "slash-command"): PlacementStrategy(root=".cursor/commands", main_filename="{name}.md"),
    ("cursor", None): PlacementStrategy(root=".cursor/rules", main_filename="{name}.mdc"),
    ("windsurf", None): PlacementStrategy(root=".windsurf/rules"),
    ("continue", "slash-command"): PlacementStrategy(root=".continue/prompts"),
    ("continue", "prompt"): PlacementStrategy(root=".continue/prompts"),
    ("continue", None): PlacementStrategy(root=".continue/rules"),
    ("kiro", "hook"): PlacementStrategy(root=".kiro/hooks", main_filename="{name}.kiro.hook"),
    ("kiro", None): PlacementStrategy(root=".kiro/steering"),
    ("copilot", None): PlacementStrategy(root=".github/instructions", main_filename="{name}.instructions.md"),
    ("gemini", None): PlacementStrategy(root=".gemini/commands", main_filename="{name}.toml"),
    ("agents.md", None): PlacementStrategy(root=".", main_filename="AGENTS.md"),
    ("generic", None): PlacementStrategy(root=".prompts"),
}

# Subtype a package takes on when converted to a format that lacks its own subtype
DEFAULT_SUBTYPES: dict[str, str] = {
    "claude": "agent",
    "cursor": "rule",
    "windsurf": "rule",
    "continue": "rule",
    "kiro": "rule",
    "copilot": "rule",
    "gemini": "slash-command",
    "agents.md": "rule",
    "generic": "rule",
}

SUPPORTED_FORMATS: frozenset[str] = frozenset(package_format for package_format, _ in PLACEMENTS)


def get_placement(package_format: str, subtype: str | None) -> PlacementStrategy:
    """
    Look up the placement for a format/subtype pair.

    Falls back to the format's default row, then to the generic row for
    formats this table doesn't know.
    """
    return (
        PLACEMENTS.get((package_format, subtype))
        or PLACEMENTS.get((package_format, None))
        or PLACEMENTS[("generic", None)]
    )


def supports_subtype(package_format: str, subtype: str | None) -> bool:
    """True if the format has a dedicated row for this subtype (or the subtype is its default)."""
    return (package_format, subtype) in PLACEMENTS or DEFAULT_SUBTYPES.get(package_format) == subtype


def effective_subtype(target_format: str, source_format: str, source_subtype: str) -> str:
    """
    Subtype a package is installed as.

    Native installs keep the published subtype. Conversions keep it when the
    target format has a slot for it, otherwise take the target's default.
    """
    if target_format == source_format or supports_subtype(target_format, source_subtype):
        return source_subtype
    return DEFAULT_SUBTYPES.get(target_format, "rule")
