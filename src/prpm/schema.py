"""Package manifest schema - Parse prpm.json files.

The `files` field is heterogeneous on the wire: either a list of plain
relative paths or a list of per-file metadata records. It is normalized into
`FileEntry` values at this boundary so nothing below it sees the two shapes.
"""

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError
from pydantic import model_validator

from .exceptions import ManifestError


class FileEntry(BaseModel):
    """One file declared by a package, with the format/subtype it targets."""

    model_config = ConfigDict(frozen=True)

    path: str
    format: str
    subtype: str


class FileMetadata(BaseModel):
    """Per-file metadata record as written in a manifest."""

    model_config = ConfigDict(frozen=True)

    path: str
    format: str | None = None
    subtype: str | None = None


class PackageManifest(BaseModel):
    """
    Package manifest (prpm.json).

    Only the fields the install engine reads are modelled; unknown keys are ignored.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    version: str
    description: str = ""
    format: str = "generic"
    subtype: str = "rule"
    files: list[str] | list[FileMetadata] = Field(default_factory=list)
    main: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
    peer_dependencies: dict[str, str] = Field(default_factory=dict, alias="peerDependencies")

    @model_validator(mode="before")
    @classmethod
    def _reject_mixed_files(cls, data: Any) -> Any:
        if isinstance(data, dict):
            files = data.get("files") or []
            kinds = {isinstance(item, str) for item in files}
            if len(kinds) > 1:
                raise ValueError("files must be all paths or all metadata records, not a mix")
        return data

    def file_entries(self) -> list[FileEntry]:
        """Normalize `files` into FileEntry values (plain paths inherit package format/subtype)."""
        entries = []
        for item in self.files:
            if isinstance(item, str):
                entries.append(FileEntry(path=item, format=self.format, subtype=self.subtype))
            else:
                entries.append(
                    FileEntry(
                        path=item.path,
                        format=item.format or self.format,
                        subtype=item.subtype or self.subtype,
                    )
                )
        return entries

    @classmethod
    def from_dict(cls, data: dict) -> "PackageManifest":
        """
        Build a manifest from parsed JSON.

        Raises:
            ManifestError: If required fields are missing or `files` is mixed
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ManifestError(f"Invalid manifest: {e}", context={"name": data.get("name")}) from e

    @classmethod
    def from_json(cls, manifest_path: Path) -> "PackageManifest":
        """
        Load manifest from a prpm.json file.

        Args:
            manifest_path: Path to prpm.json

        Returns:
            PackageManifest instance

        Raises:
            FileNotFoundError: If the file doesn't exist
            ManifestError: If the JSON is invalid or fails validation
        """
        if not manifest_path.exists():
            raise FileNotFoundError(f"prpm.json not found: {manifest_path}")

        try:
            data = json.loads(manifest_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ManifestError(f"Invalid JSON in {manifest_path}: {e}") from e

        if not isinstance(data, dict):
            raise ManifestError(f"Manifest must be a JSON object: {manifest_path}")

        return cls.from_dict(data)
