"""Project-relative path handling for asset references.

Stored paths are always forward-slash and relative to the workspace root
(the directory containing the VQL directory). Conversion is lexical: the
target file does not need to exist.
"""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath

from vql.errors import OutsideWorkspace


def normalize(path: str) -> str:
    """Use forward slashes regardless of host platform."""
    return path.replace("\\", "/")


def _relative_to(candidate: Path, root: Path) -> PurePosixPath | None:
    try:
        return PurePosixPath(candidate.relative_to(root).as_posix())
    except ValueError:
        return None


def to_relative(path: str | Path, workspace_root: Path) -> str:
    """Convert an absolute or mixed path to a workspace-relative one.

    Relative inputs are interpreted against `workspace_root`. Raises
    OutsideWorkspace when the result is not a strict descendant of the root.
    """
    raw = normalize(str(path)).strip()
    if not raw:
        raise OutsideWorkspace(raw, workspace_root)

    candidate = Path(raw)
    if not candidate.is_absolute():
        candidate = Path(workspace_root) / candidate
    candidate = Path(os.path.normpath(candidate))
    root = Path(os.path.normpath(workspace_root))

    relative = _relative_to(candidate, root)
    if relative is None:
        # Symlinked roots (e.g. /tmp -> /private/tmp) only match once resolved
        relative = _relative_to(candidate.resolve(), root.resolve())

    if relative is None or str(relative) in ("", "."):
        raise OutsideWorkspace(str(path), workspace_root)
    return relative.as_posix()


def to_absolute(relative_path: str, workspace_root: Path) -> Path:
    """Inverse of to_relative; already-absolute inputs are returned as-is."""
    candidate = Path(normalize(relative_path))
    if candidate.is_absolute():
        return candidate
    return Path(workspace_root) / normalize(relative_path)
