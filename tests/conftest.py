"""Shared pytest fixtures for install engine tests."""

from pathlib import Path

import pytest
from support import FakeRegistry

from prpm.lock import LockfileStore


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Empty project directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def lock(project: Path) -> LockfileStore:
    return LockfileStore.for_project(project)
