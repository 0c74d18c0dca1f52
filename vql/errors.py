"""Error taxonomy for the VQL store.

All errors raised by the store derive from VQLError so callers (the CLI
and the MCP adapter) can surface them uniformly. Messages are single-line.
"""

from __future__ import annotations

from pathlib import Path


class VQLError(Exception):
    """Base class for every failure the store reports."""


class NotFound(VQLError):
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(
            f"VQL storage not found at {self.path}. Run 'vql su' to initialize."
        )


class Corrupt(VQLError):
    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"VQL storage at {self.path} is corrupt: {reason}")


class StorageIOError(VQLError):
    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"I/O failure on {self.path}: {reason}")


class StaleDocument(VQLError):
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(
            f"VQL storage at {self.path} changed on disk since it was loaded; retry the command"
        )


class NameConflict(VQLError):
    def __init__(self, identifier: str, existing_kind: str) -> None:
        self.identifier = identifier
        self.existing_kind = existing_kind
        super().__init__(
            f"Identifier '{identifier}' is already used by a {existing_kind.replace('_', ' ')}"
        )


class InvalidIdentifier(VQLError):
    def __init__(self, identifier: str, reason: str) -> None:
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Invalid identifier '{identifier}': {reason}")


class UnknownRecord(VQLError):
    """A reference to a record that does not exist."""

    kind = "record"

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"Unknown {self.kind.replace('_', ' ')}: '{identifier}'")


class UnknownEntity(UnknownRecord):
    kind = "entity"


class UnknownAssetType(UnknownRecord):
    kind = "asset_type"


class UnknownAsset(UnknownRecord):
    kind = "asset"


class UnknownPrinciple(UnknownRecord):
    kind = "principle"


class InvalidRating(VQLError):
    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(f"Invalid rating: '{value}'. Must be H, M, or L")


class InUse(VQLError):
    def __init__(self, identifier: str, referenced_by: list[str]) -> None:
        self.identifier = identifier
        self.referenced_by = referenced_by
        super().__init__(
            f"'{identifier}' is still referenced by asset(s): {', '.join(referenced_by)}"
        )


class OutsideWorkspace(VQLError):
    def __init__(self, path: str, root: Path | str) -> None:
        self.path = path
        self.root = Path(root)
        super().__init__(f"Path {path} is not within workspace root {self.root}")


class UnknownIdentifier(UnknownRecord):
    """The identifier is not present in any of the four collections."""

    kind = "identifier"
