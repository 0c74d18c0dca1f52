"""Configuration loading for vql.

Config sources (in priority order):
1. Explicit arguments passed to functions (CLI --storage, etc.)
2. Environment variables (VQL_STORAGE_PATH, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from vql.rating import EXTRACTORS, RatingExtractor, build_extractor
from vql.storage.document import find_storage_path
from vql.storage.repository import Repository

load_dotenv()

DEFAULT_RATING_MODE = "explicit"
ACTIVITY_LOG_FILENAME = "vql-activity.jsonl"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return default


def _default_cli_command() -> list[str]:
    return [sys.executable, "-m", "vql"]


@dataclass
class Config:
    storage_path: Path | None = None  # None: discover from the working directory
    log_path: Path | None = None  # None: next to the storage file
    strict_identifiers: bool = True
    rating_mode: str = DEFAULT_RATING_MODE
    detect_stale: bool = False
    cli_command: list[str] = field(default_factory=_default_cli_command)

    @classmethod
    def load(cls) -> Config:
        storage = os.getenv("VQL_STORAGE_PATH", "")
        log_path = os.getenv("VQL_LOG_PATH", "")
        cli = os.getenv("VQL_CLI", "")
        return cls(
            storage_path=Path(storage).expanduser() if storage else None,
            log_path=Path(log_path).expanduser() if log_path else None,
            strict_identifiers=_env_flag("VQL_STRICT_IDENTIFIERS", True),
            rating_mode=os.getenv("VQL_RATING_MODE", DEFAULT_RATING_MODE) or DEFAULT_RATING_MODE,
            detect_stale=_env_flag("VQL_DETECT_STALE", False),
            cli_command=cli.split() if cli else _default_cli_command(),
        )

    def validate(self) -> list[str]:
        """Return a list of config issues."""
        issues = []
        if self.rating_mode.lower() not in EXTRACTORS:
            issues.append(
                f"Unknown rating mode '{self.rating_mode}' (VQL_RATING_MODE); "
                f"choose from {', '.join(EXTRACTORS)}"
            )
        if not self.cli_command:
            issues.append("VQL_CLI is set but empty")
        return issues

    def resolve_storage_path(self, start: Path | None = None) -> Path:
        """Explicit path if configured, otherwise search upwards from `start`."""
        if self.storage_path is not None:
            return self.storage_path
        return find_storage_path(start)

    def resolve_log_path(self, storage_path: Path | None = None) -> Path:
        if self.log_path is not None:
            return self.log_path
        if storage_path is None:
            return Path(ACTIVITY_LOG_FILENAME)
        return Path(storage_path).parent / ACTIVITY_LOG_FILENAME

    def rating_extractor(self) -> RatingExtractor:
        return build_extractor(self.rating_mode)

    def repository(self, storage_path: Path | None = None) -> Repository:
        return Repository(
            storage_path or self.resolve_storage_path(),
            rating_extractor=self.rating_extractor(),
            strict_identifiers=self.strict_identifiers,
            detect_stale=self.detect_stale,
        )
