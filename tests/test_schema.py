"""Tests for PackageManifest schema."""

import json
import tempfile
from pathlib import Path

import pytest

from prpm.exceptions import ManifestError
from prpm.schema import FileEntry
from prpm.schema import PackageManifest


def test_plain_paths_inherit_package_format():
    """Plain string files take the manifest's format and subtype."""
    manifest = PackageManifest.from_dict(
        {
            "name": "@prpm/react-rules",
            "version": "1.0.0",
            "format": "cursor",
            "subtype": "rule",
            "files": ["react.mdc", "hooks.mdc"],
        }
    )

    assert manifest.file_entries() == [
        FileEntry(path="react.mdc", format="cursor", subtype="rule"),
        FileEntry(path="hooks.mdc", format="cursor", subtype="rule"),
    ]


def test_metadata_records_keep_their_own_format():
    manifest = PackageManifest.from_dict(
        {
            "name": "multi",
            "version": "2.0.0",
            "format": "claude",
            "subtype": "skill",
            "files": [
                {"path": "SKILL.md"},
                {"path": "rules/style.mdc", "format": "cursor", "subtype": "rule"},
            ],
        }
    )

    entries = manifest.file_entries()
    assert entries[0] == FileEntry(path="SKILL.md", format="claude", subtype="skill")
    assert entries[1] == FileEntry(path="rules/style.mdc", format="cursor", subtype="rule")


def test_mixed_files_rejected():
    with pytest.raises(ManifestError, match="not a mix"):
        PackageManifest.from_dict(
            {"name": "mixed", "version": "1.0.0", "files": ["a.md", {"path": "b.md", "format": "cursor"}]}
        )


def test_missing_required_fields():
    with pytest.raises(ManifestError):
        PackageManifest.from_dict({"name": "no-version"})


def test_peer_dependencies_alias():
    manifest = PackageManifest.from_dict(
        {"name": "pkg", "version": "1.0.0", "peerDependencies": {"@prpm/base": "^1.0.0"}}
    )

    assert manifest.peer_dependencies == {"@prpm/base": "^1.0.0"}
    assert manifest.files == []


def test_from_json():
    with tempfile.TemporaryDirectory() as tmpdir:
        manifest_path = Path(tmpdir) / "prpm.json"
        manifest_path.write_text(json.dumps({"name": "pkg", "version": "1.0.0", "main": "pkg.md"}))

        manifest = PackageManifest.from_json(manifest_path)

        assert manifest.name == "pkg"
        assert manifest.main == "pkg.md"
        assert manifest.format == "generic"


def test_from_json_missing_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(FileNotFoundError):
            PackageManifest.from_json(Path(tmpdir) / "prpm.json")


def test_from_json_invalid():
    with tempfile.TemporaryDirectory() as tmpdir:
        manifest_path = Path(tmpdir) / "prpm.json"
        manifest_path.write_text("{not json")

        with pytest.raises(ManifestError, match="Invalid JSON"):
            PackageManifest.from_json(manifest_path)

        manifest_path.write_text("[]")
        with pytest.raises(ManifestError, match="JSON object"):
            PackageManifest.from_json(manifest_path)
