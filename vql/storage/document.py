"""JSON document persistence.

The whole store is one JSON file, VQL/vql_storage.json, next to the
project it describes. Writes go to a temporary file in the same directory
and are renamed over the destination, so readers never observe a
partially written document.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path

from vql.errors import Corrupt, NotFound, StaleDocument, StorageIOError
from vql.models import Document, utc_now

logger = logging.getLogger(__name__)

STORAGE_FILENAME = "vql_storage.json"
STORAGE_DIRNAMES = ("VQL", "vql")


def new_document() -> Document:
    """A fresh document: empty collections, created = last_modified = now."""
    now = utc_now()
    return Document(created=now, last_modified=now)


def _token(raw: bytes) -> str:
    return hashlib.sha256(raw).hexdigest()


def load(path: Path) -> Document:
    return load_with_token(path)[0]


def load_with_token(path: Path) -> tuple[Document, str]:
    """Load the document and a content token of the exact bytes parsed.

    Pass the token back to `save(expected_token=...)` to detect a write
    made by someone else in between.
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise NotFound(path) from None
    except OSError as e:
        raise StorageIOError(path, str(e)) from e

    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise Corrupt(path, f"invalid JSON ({e})") from e

    try:
        document = Document.from_dict(data)
    except ValueError as e:
        raise Corrupt(path, str(e)) from e

    logger.debug(
        f"Loaded {path}: {len(document.principles)} principles, "
        f"{len(document.entities)} entities, {len(document.asset_types)} asset types, "
        f"{len(document.asset_references)} assets"
    )
    return document, _token(raw)


def current_token(path: Path) -> str | None:
    """Content token of the file as it is on disk now, or None if unreadable."""
    try:
        return _token(Path(path).read_bytes())
    except OSError:
        return None


def dumps(document: Document) -> str:
    return json.dumps(document.to_dict(), indent=2, ensure_ascii=False) + "\n"


def save(document: Document, path: Path, expected_token: str | None = None) -> None:
    """Atomically replace `path` with the serialized document.

    With `expected_token`, the file is re-read right before the rename and
    the save fails with StaleDocument if its bytes changed since load.
    """
    path = Path(path)
    content = dumps(document)
    tmp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if expected_token is not None and current_token(path) != expected_token:
            raise StaleDocument(path)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise StorageIOError(path, str(e)) from e
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
    logger.debug(f"Saved {path} ({len(content)} bytes)")


def storage_path_for(project_dir: Path) -> Path:
    """Where the document for `project_dir` lives (existing vql/ dir is reused)."""
    project_dir = Path(project_dir)
    for dirname in STORAGE_DIRNAMES:
        candidate = project_dir / dirname
        if candidate.is_dir():
            return candidate / STORAGE_FILENAME
    return project_dir / STORAGE_DIRNAMES[0] / STORAGE_FILENAME


def setup_storage(project_dir: Path) -> tuple[Path, bool]:
    """Create the VQL directory and a fresh document unless one exists.

    Returns (storage_path, created).
    """
    project_dir = Path(project_dir).expanduser()
    path = storage_path_for(project_dir)
    if path.exists():
        logger.info(f"VQL storage already exists at {path}")
        return path, False
    save(new_document(), path)
    logger.info(f"Initialized VQL storage at {path}")
    return path, True


def find_storage_path(start: Path | None = None) -> Path:
    """Walk up from `start` looking for VQL/vql_storage.json."""
    start = Path(start or Path.cwd()).resolve()
    for directory in (start, *start.parents):
        for dirname in STORAGE_DIRNAMES:
            candidate = directory / dirname / STORAGE_FILENAME
            if candidate.is_file():
                return candidate
    raise NotFound(start / STORAGE_DIRNAMES[0] / STORAGE_FILENAME)


def workspace_root(storage_path: Path) -> Path:
    """The project directory: parent of the VQL directory."""
    return Path(storage_path).resolve().parent.parent
