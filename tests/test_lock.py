"""Tests for the lockfile store with injected lock path."""

import json
import tempfile
from pathlib import Path

import pytest

from prpm.exceptions import LockfileError
from prpm.lock import FromCollection
from prpm.lock import Lockfile
from prpm.lock import LockfileCollection
from prpm.lock import LockfilePackage
from prpm.lock import LockfileStore
from prpm.lock import MemoryLockfileStore
from prpm.lock import compute_integrity
from prpm.lock import verify_integrity


def make_entry(version: str = "1.0.0", **overrides) -> LockfilePackage:
    fields = {
        "version": version,
        "resolved": f"https://registry.test/pkg-{version}.tgz",
        "integrity": compute_integrity(version.encode()),
        "format": "cursor",
        "subtype": "rule",
        "source_format": "cursor",
        "source_subtype": "rule",
        "installed_path": ".cursor/rules/pkg.mdc",
    }
    fields.update(overrides)
    return LockfilePackage(**fields)


def test_lock_with_injected_path():
    """Store uses the injected path and creates nothing until the first write."""
    with tempfile.TemporaryDirectory() as tmpdir:
        lock_path = Path(tmpdir) / "custom.lock"

        store = LockfileStore(lock_path=lock_path)

        assert store.lock_path == lock_path
        assert store.read() is None
        assert not lock_path.exists()


def test_upsert_and_get_package():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LockfileStore.for_project(Path(tmpdir))

        store.upsert_package("@prpm/pkg", make_entry())

        entry = store.get_package("@prpm/pkg")
        assert entry is not None
        assert entry.version == "1.0.0"
        assert entry.integrity.startswith("sha256-")
        assert (Path(tmpdir) / "prpm.lock").exists()


def test_file_format_is_camel_case():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LockfileStore.for_project(Path(tmpdir))
        store.upsert_package(
            "pkg",
            make_entry(
                source_format="claude",
                source_subtype="skill",
                from_collection=FromCollection(scope="collection", name_slug="starter", version="1.0.0"),
            ),
        )

        data = json.loads((Path(tmpdir) / "prpm.lock").read_text())

        assert data["version"] == "1.0.0"
        assert data["lockfileVersion"] == 1
        assert data["collections"] == {}
        row = data["packages"]["pkg"]
        assert row["sourceFormat"] == "claude"
        assert row["sourceSubtype"] == "skill"
        assert row["installedPath"] == ".cursor/rules/pkg.mdc"
        assert row["fromCollection"] == {"scope": "collection", "name_slug": "starter", "version": "1.0.0"}
        assert "dependencies" not in row
        assert "hookMetadata" not in row


def test_lock_persistence():
    """Rows written by one store are visible to another over the same file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        LockfileStore.for_project(Path(tmpdir)).upsert_package("persistent", make_entry("2.0.0"))

        store = LockfileStore.for_project(Path(tmpdir))

        assert store.get_package("persistent") == make_entry("2.0.0")


def test_remove_package():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LockfileStore.for_project(Path(tmpdir))
        store.upsert_package("pkg", make_entry())

        removed = store.remove_package("pkg")

        assert removed == make_entry()
        assert store.get_package("pkg") is None
        assert store.remove_package("pkg") is None


def test_collections():
    store = MemoryLockfileStore()
    store.add_collection(
        "@collection/starter",
        LockfileCollection(scope="collection", name_slug="starter", version="1.0.0", packages=["a", "b"]),
    )

    row = store.get_collection("@collection/starter")
    assert row is not None
    assert row.packages == ["a", "b"]
    assert row.installed_at
    assert [key for key, _ in store.list_collections()] == ["@collection/starter"]

    store.remove_collection("@collection/starter")
    assert store.list_collections() == []


def test_empty_integrity_is_never_written():
    store = MemoryLockfileStore()

    with pytest.raises(LockfileError, match="empty integrity"):
        store.upsert_package("pkg", make_entry(integrity=""))

    assert store.writes == 0
    assert store.read() is None


def test_failed_update_writes_nothing():
    store = MemoryLockfileStore()
    store.upsert_package("pkg", make_entry())

    with pytest.raises(RuntimeError):
        with store.update() as lockfile:
            lockfile.packages.clear()
            raise RuntimeError("boom")

    assert store.writes == 1
    assert store.get_package("pkg") is not None


def test_update_refreshes_generated():
    store = MemoryLockfileStore(Lockfile(generated="2020-01-01T00:00:00+00:00"))

    store.upsert_package("pkg", make_entry())

    assert store.load().generated != "2020-01-01T00:00:00+00:00"


def test_write_leaves_no_temporary_files():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LockfileStore.for_project(Path(tmpdir))
        store.upsert_package("a", make_entry())
        store.upsert_package("b", make_entry())

        names = sorted(path.name for path in Path(tmpdir).iterdir())

        assert names == ["prpm.lock", "prpm.lock.lock"]


def test_failed_replace_removes_temporary_file(monkeypatch):
    def fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("prpm.lock.os.replace", fail_replace)
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LockfileStore.for_project(Path(tmpdir))

        with pytest.raises(LockfileError, match="disk full"):
            store.upsert_package("a", make_entry())

        names = sorted(path.name for path in Path(tmpdir).iterdir())

        assert names == ["prpm.lock.lock"]


def test_corrupt_lockfile():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / "prpm.lock").write_text("{not json")

        with pytest.raises(LockfileError, match="Failed to read"):
            LockfileStore.for_project(Path(tmpdir)).read()


def test_legacy_lockfile_is_upgraded_on_read():
    """Rows with only `type`, and files without collections, still load."""
    legacy = {
        "version": "1.0.0",
        "packages": {
            "my-skill": {
                "version": "1.0.0",
                "resolved": "https://registry.test/my-skill.tgz",
                "integrity": "sha256-abc",
                "type": "claude-skill",
            },
            "react-rules": {
                "version": "2.0.0",
                "resolved": "https://registry.test/react-rules.tgz",
                "integrity": "sha256-def",
                "type": "cursor",
            },
        },
        "generated": "2024-01-01T00:00:00Z",
    }
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / "prpm.lock").write_text(json.dumps(legacy))

        lockfile = LockfileStore.for_project(Path(tmpdir)).load()

    assert lockfile.lockfile_version == 1
    assert lockfile.collections == {}
    skill = lockfile.packages["my-skill"]
    assert (skill.format, skill.subtype) == ("claude", "skill")
    assert (skill.source_format, skill.source_subtype) == ("claude", "skill")
    rules = lockfile.packages["react-rules"]
    assert (rules.format, rules.subtype) == ("cursor", "rule")


def test_integrity():
    integrity = compute_integrity(b"payload")

    assert integrity.startswith("sha256-")
    assert verify_integrity(integrity, b"payload")
    assert not verify_integrity(integrity, b"tampered")
    assert not verify_integrity("", b"payload")
    assert not verify_integrity("nohash-abc", b"payload")
