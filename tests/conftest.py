"""Shared test fixtures for vql."""

from __future__ import annotations

from pathlib import Path

import pytest

from vql.storage.document import setup_storage
from vql.storage.repository import Repository

PRINCIPLES_MD = """\
Intro text that is not part of any principle.

# Architecture Principles (a)
Keep controllers thin.
## Layering
Services never import controllers.

# Security Principles (s)
Validate all input at the boundary.
"""


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A project directory with a src/ tree, like a real checkout."""
    project = tmp_path / "project"
    (project / "src").mkdir(parents=True)
    (project / "src" / "UserController.ts").write_text("export class UserController {}\n")
    return project


@pytest.fixture
def storage_path(workspace: Path) -> Path:
    path, _ = setup_storage(workspace)
    return path


@pytest.fixture
def repo(storage_path: Path) -> Repository:
    return Repository(storage_path)


@pytest.fixture
def populated_repo(repo: Repository, workspace: Path) -> Repository:
    """Repository with two principles, an entity, an asset type and one asset."""
    repo.import_principles(PRINCIPLES_MD)
    repo.add_entity("u", "User")
    repo.add_asset_type("c", "Controller")
    repo.add_asset_reference("uc", "u", "c", str(workspace / "src" / "UserController.ts"))
    return repo


@pytest.fixture
def principles_md() -> str:
    return PRINCIPLES_MD


@pytest.fixture
def principles_file(tmp_path: Path) -> Path:
    path = tmp_path / "principles.md"
    path.write_text(PRINCIPLES_MD)
    return path
