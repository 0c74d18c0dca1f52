"""Core data models for the VQL store.

Every record mirrors one object in vql_storage.json. Collections are keyed
by short identifier; field names and encodings match the on-disk format
read by the editor extension, so `to_dict` output must not drift.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from vql.errors import InvalidRating

SCHEMA_VERSION = "1.0.0"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

PRINCIPLE = "principle"
ENTITY = "entity"
ASSET_TYPE = "asset_type"
ASSET = "asset"
KINDS = (PRINCIPLE, ENTITY, ASSET_TYPE, ASSET)

_TIMESTAMP_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.\d+)?Z$")


def utc_now() -> datetime:
    """Current UTC time truncated to the second, the precision we persist."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO 8601 UTC timestamp with a literal Z suffix.

    Fractional seconds are accepted and dropped. Raises ValueError for
    anything else.
    """
    if not isinstance(value, str):
        raise ValueError(f"timestamp must be a string, got {type(value).__name__}")
    match = _TIMESTAMP_RE.match(value)
    if not match:
        raise ValueError(f"malformed timestamp {value!r}")
    return datetime.strptime(match.group(1) + "Z", TIMESTAMP_FORMAT).replace(
        tzinfo=timezone.utc
    )


class Rating(str, Enum):
    HIGH = "H"
    MEDIUM = "M"
    LOW = "L"

    @classmethod
    def parse(cls, value: str) -> Rating:
        """Accept H/M/L or high/medium/low in any case."""
        normalized = value.strip().upper()
        aliases = {"HIGH": "H", "MEDIUM": "M", "MED": "M", "LOW": "L"}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidRating(value) from None

    @property
    def label(self) -> str:
        return {"H": "High", "M": "Medium", "L": "Low"}[self.value]


def _require(data: dict, key: str, expected: type | tuple[type, ...], where: str) -> Any:
    if key not in data:
        raise ValueError(f"{where}: missing required field '{key}'")
    value = data[key]
    if not isinstance(value, expected):
        raise ValueError(f"{where}: field '{key}' has wrong type {type(value).__name__}")
    return value


def _optional_str(data: dict, key: str, where: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{where}: field '{key}' must be a string or null")
    return value


def _require_object(value: Any, where: str) -> dict:
    if not isinstance(value, dict):
        raise ValueError(f"{where}: expected an object, got {type(value).__name__}")
    return value


@dataclass
class Review:
    rating: Rating | None = None  # None means "not yet scored"
    analysis: str | None = None
    last_modified: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "rating": self.rating.value if self.rating else None,
            "analysis": self.analysis,
            "last_modified": format_timestamp(self.last_modified),
        }

    @classmethod
    def from_dict(cls, data: Any, where: str = "review") -> Review:
        data = _require_object(data, where)
        raw_rating = _optional_str(data, "rating", where)
        rating = None
        if raw_rating is not None:
            try:
                rating = Rating(raw_rating)
            except ValueError:
                raise ValueError(f"{where}: rating must be H, M or L, got {raw_rating!r}") from None
        return cls(
            rating=rating,
            analysis=_optional_str(data, "analysis", where),
            last_modified=parse_timestamp(_require(data, "last_modified", str, where)),
        )


@dataclass
class Principle:
    short_name: str
    long_name: str
    guidance: str | None = None
    last_modified: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "short_name": self.short_name,
            "long_name": self.long_name,
            "guidance": self.guidance,
            "last_modified": format_timestamp(self.last_modified),
        }

    @classmethod
    def from_dict(cls, data: Any, where: str = "principle") -> Principle:
        data = _require_object(data, where)
        return cls(
            short_name=_require(data, "short_name", str, where),
            long_name=_require(data, "long_name", str, where),
            guidance=_optional_str(data, "guidance", where),
            last_modified=parse_timestamp(_require(data, "last_modified", str, where)),
        )


@dataclass
class Entity:
    short_name: str
    description: str
    last_modified: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "short_name": self.short_name,
            "description": self.description,
            "last_modified": format_timestamp(self.last_modified),
        }

    @classmethod
    def from_dict(cls, data: Any, where: str = "entity") -> Entity:
        data = _require_object(data, where)
        return cls(
            short_name=_require(data, "short_name", str, where),
            description=_require(data, "description", str, where),
            last_modified=parse_timestamp(_require(data, "last_modified", str, where)),
        )


@dataclass
class AssetType(Entity):
    """Same shape as Entity; kept distinct so the namespace can tell them apart."""

    @classmethod
    def from_dict(cls, data: Any, where: str = "asset_type") -> AssetType:
        return super().from_dict(data, where)


_ASSET_FIELDS = (
    "short_name",
    "entity",
    "asset_type",
    "path",
    "last_modified",
    "exemplar",
    "principle_reviews",
)


@dataclass
class AssetReference:
    short_name: str
    entity: str  # Entity short_name
    asset_type: str  # AssetType short_name
    path: str  # forward-slash, relative to the workspace root
    exemplar: bool = False
    principle_reviews: dict[str, Review] = field(default_factory=dict)
    last_modified: datetime = field(default_factory=utc_now)
    # Unknown keys (legacy arch_rating, sec_analysis, ...) carried through untouched
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {
            "short_name": self.short_name,
            "entity": self.entity,
            "asset_type": self.asset_type,
            "path": self.path,
            "last_modified": format_timestamp(self.last_modified),
            "exemplar": self.exemplar,
            "principle_reviews": {
                key: review.to_dict() for key, review in self.principle_reviews.items()
            },
        }
        d.update(self.extra)
        return d

    @classmethod
    def from_dict(cls, data: Any, where: str = "asset_reference") -> AssetReference:
        data = _require_object(data, where)
        reviews_raw = _require_object(data.get("principle_reviews", {}), f"{where}.principle_reviews")
        return cls(
            short_name=_require(data, "short_name", str, where),
            entity=_require(data, "entity", str, where),
            asset_type=_require(data, "asset_type", str, where),
            path=_require(data, "path", str, where),
            exemplar=_require(data, "exemplar", bool, where),
            principle_reviews={
                key: Review.from_dict(value, f"{where}.principle_reviews.{key}")
                for key, value in reviews_raw.items()
            },
            last_modified=parse_timestamp(_require(data, "last_modified", str, where)),
            extra={k: v for k, v in data.items() if k not in _ASSET_FIELDS},
        )


@dataclass
class Document:
    """Root aggregate persisted as vql_storage.json."""

    version: str = SCHEMA_VERSION
    created: datetime = field(default_factory=utc_now)
    last_modified: datetime = field(default_factory=utc_now)
    principles: dict[str, Principle] = field(default_factory=dict)
    entities: dict[str, Entity] = field(default_factory=dict)
    asset_types: dict[str, AssetType] = field(default_factory=dict)
    asset_references: dict[str, AssetReference] = field(default_factory=dict)
    commands: dict[str, Any] = field(default_factory=dict)  # opaque, never interpreted

    def collection(self, kind: str) -> dict:
        return {
            PRINCIPLE: self.principles,
            ENTITY: self.entities,
            ASSET_TYPE: self.asset_types,
            ASSET: self.asset_references,
        }[kind]

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "created": format_timestamp(self.created),
            "last_modified": format_timestamp(self.last_modified),
            "commands": self.commands,
            "asset_types": {k: v.to_dict() for k, v in self.asset_types.items()},
            "entities": {k: v.to_dict() for k, v in self.entities.items()},
            "principles": {k: v.to_dict() for k, v in self.principles.items()},
            "asset_references": {k: v.to_dict() for k, v in self.asset_references.items()},
        }

    @classmethod
    def from_dict(cls, data: Any) -> Document:
        data = _require_object(data, "document")

        def section(key: str, parser, required: bool = True) -> dict:
            if key not in data and not required:
                return {}
            raw = _require_object(_require(data, key, dict, "document"), key)
            return {name: parser(value, f"{key}.{name}") for name, value in raw.items()}

        return cls(
            version=_require(data, "version", str, "document"),
            created=parse_timestamp(_require(data, "created", str, "document")),
            last_modified=parse_timestamp(_require(data, "last_modified", str, "document")),
            principles=section("principles", Principle.from_dict, required=False),
            entities=section("entities", Entity.from_dict),
            asset_types=section("asset_types", AssetType.from_dict),
            asset_references=section("asset_references", AssetReference.from_dict),
            commands=dict(_require_object(data.get("commands", {}), "commands")),
        )
