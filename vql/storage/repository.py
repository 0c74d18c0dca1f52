"""Store engine: the full mutation and query surface over one document.

Every public method is a complete load -> validate -> mutate -> save
cycle. Nothing is cached between calls: the CLI, the editor extension and
the MCP adapter may all touch the same file, and the contract is last
writer wins at whole-document granularity.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from vql import paths
from vql.errors import (
    InUse,
    UnknownAsset,
    UnknownAssetType,
    UnknownEntity,
    UnknownIdentifier,
    UnknownPrinciple,
)
from vql.importer import ParsedPrinciple, parse_principles
from vql.models import (
    ASSET,
    ASSET_TYPE,
    ENTITY,
    PRINCIPLE,
    AssetReference,
    AssetType,
    Document,
    Entity,
    Principle,
    Rating,
    Review,
    format_timestamp,
    utc_now,
)
from vql.rating import ExplicitRatingExtractor, RatingExtractor
from vql.storage import document as store
from vql.storage.namespace import check_available, find_kind, validate_identifier_syntax

logger = logging.getLogger(__name__)

_UNKNOWN = {
    PRINCIPLE: UnknownPrinciple,
    ENTITY: UnknownEntity,
    ASSET_TYPE: UnknownAssetType,
    ASSET: UnknownAsset,
}


class Repository:
    """Data access layer for a single vql_storage.json."""

    def __init__(
        self,
        storage_path: Path,
        *,
        rating_extractor: RatingExtractor | None = None,
        strict_identifiers: bool = True,
        detect_stale: bool = False,
    ) -> None:
        self.storage_path = Path(storage_path)
        self._extractor = rating_extractor or ExplicitRatingExtractor()
        self._strict = strict_identifiers
        self._detect_stale = detect_stale

    @property
    def workspace_root(self) -> Path:
        return store.workspace_root(self.storage_path)

    # -- load / save ---------------------------------------------------------

    def load(self) -> Document:
        return store.load(self.storage_path)

    @contextmanager
    def _mutation(self, operation: str, identifier: str) -> Iterator[tuple[Document, datetime]]:
        """Load, hand the document and a commit instant to the caller, then save.

        The save is skipped if the body raises, so a failed validation never
        persists a partial change.
        """
        doc, token = store.load_with_token(self.storage_path)
        # last_modified must never move backwards, even under clock skew
        now = max(utc_now(), doc.last_modified)
        yield doc, now
        doc.last_modified = now
        store.save(doc, self.storage_path, expected_token=token if self._detect_stale else None)
        logger.info(f"{operation} {identifier}")

    def _validate_new(self, doc: Document, identifier: str, kind: str) -> None:
        validate_identifier_syntax(identifier, kind, strict=self._strict)
        if identifier not in doc.collection(kind):
            check_available(identifier, doc)

    @staticmethod
    def _get(doc: Document, kind: str, identifier: str):
        try:
            return doc.collection(kind)[identifier]
        except KeyError:
            raise _UNKNOWN[kind](identifier) from None

    # -- principles ----------------------------------------------------------

    def add_principle(
        self, short_name: str, long_name: str, guidance: str | None = None
    ) -> Principle:
        """Insert or overwrite a principle."""
        with self._mutation("add_principle", short_name) as (doc, now):
            self._validate_new(doc, short_name, PRINCIPLE)
            principle = Principle(short_name, long_name, guidance, last_modified=now)
            doc.principles[short_name] = principle
        return principle

    def import_principles(self, markdown_text: str) -> list[Principle]:
        """Add every principle declared in `markdown_text`, all or nothing.

        The whole batch is validated against the namespace before anything is
        written; one bad shortcode aborts the import with the store untouched.
        """
        parsed = parse_principles(markdown_text)
        if not parsed:
            return []

        with self._mutation("import_principles", f"{len(parsed)} principle(s)") as (doc, now):
            for item in parsed:
                self._validate_new(doc, item.short_name, PRINCIPLE)
            added = [self._principle_from(item, now) for item in parsed]
            for principle in added:
                doc.principles[principle.short_name] = principle
        return added

    @staticmethod
    def _principle_from(item: ParsedPrinciple, now: datetime) -> Principle:
        return Principle(item.short_name, item.long_name, item.guidance, last_modified=now)

    def get_principle(self, short_name: str) -> Principle:
        return self._get(self.load(), PRINCIPLE, short_name)

    def list_principles(self, sort: bool = False) -> list[Principle]:
        return self._list(self.load().principles, sort)

    # -- entities and asset types --------------------------------------------

    def add_entity(self, short_name: str, description: str) -> Entity:
        with self._mutation("add_entity", short_name) as (doc, now):
            self._validate_new(doc, short_name, ENTITY)
            entity = Entity(short_name, description, last_modified=now)
            doc.entities[short_name] = entity
        return entity

    def get_entity(self, short_name: str) -> Entity:
        return self._get(self.load(), ENTITY, short_name)

    def list_entities(self, sort: bool = False) -> list[Entity]:
        return self._list(self.load().entities, sort)

    def add_asset_type(self, short_name: str, description: str) -> AssetType:
        with self._mutation("add_asset_type", short_name) as (doc, now):
            self._validate_new(doc, short_name, ASSET_TYPE)
            asset_type = AssetType(short_name, description, last_modified=now)
            doc.asset_types[short_name] = asset_type
        return asset_type

    def get_asset_type(self, short_name: str) -> AssetType:
        return self._get(self.load(), ASSET_TYPE, short_name)

    def list_asset_types(self, sort: bool = False) -> list[AssetType]:
        return self._list(self.load().asset_types, sort)

    # -- asset references ----------------------------------------------------

    def add_asset_reference(
        self, short_name: str, entity: str, asset_type: str, raw_path: str
    ) -> AssetReference:
        """Track a file. Re-adding an existing asset keeps its reviews and exemplar flag."""
        with self._mutation("add_asset_reference", short_name) as (doc, now):
            self._validate_new(doc, short_name, ASSET)
            if entity not in doc.entities:
                raise UnknownEntity(entity)
            if asset_type not in doc.asset_types:
                raise UnknownAssetType(asset_type)
            rel_path = paths.to_relative(raw_path, self.workspace_root)

            asset = doc.asset_references.get(short_name)
            if asset is None:
                asset = AssetReference(short_name, entity, asset_type, rel_path)
                doc.asset_references[short_name] = asset
            else:
                asset.entity, asset.asset_type, asset.path = entity, asset_type, rel_path
            asset.last_modified = now
        return asset

    def get_asset_reference(self, short_name: str) -> AssetReference:
        return self._get(self.load(), ASSET, short_name)

    def list_asset_references(self, sort: bool = False) -> list[AssetReference]:
        return self._list(self.load().asset_references, sort)

    def set_exemplar(self, asset_name: str, flag: bool) -> AssetReference:
        with self._mutation("set_exemplar", asset_name) as (doc, now):
            asset = self._get(doc, ASSET, asset_name)
            asset.exemplar = flag
            asset.last_modified = now
        return asset

    # -- reviews -------------------------------------------------------------

    def set_compliance(
        self, asset_name: str, principle: str, rating: Rating | str
    ) -> Review:
        """Set only the rating; an existing analysis is preserved."""
        if not isinstance(rating, Rating):
            rating = Rating.parse(rating)
        with self._mutation("set_compliance", f"{asset_name}.{principle}") as (doc, now):
            asset = self._get(doc, ASSET, asset_name)
            self._get(doc, PRINCIPLE, principle)
            review = asset.principle_reviews.get(principle)
            if review is None:
                review = Review()
                asset.principle_reviews[principle] = review
            review.rating = rating
            review.last_modified = now
            asset.last_modified = now
        return review

    def store_review(
        self,
        asset_name: str,
        principle: str,
        text: str,
        rating: Rating | str | None = None,
    ) -> Review:
        """Replace the (asset, principle) review with `text`.

        Without an explicit rating one is extracted from the text; if none is
        found the review is stored unscored.
        """
        if rating is None:
            rating = self._extractor.extract(text)
        elif not isinstance(rating, Rating):
            rating = Rating.parse(rating)
        with self._mutation("store_review", f"{asset_name}.{principle}") as (doc, now):
            asset = self._get(doc, ASSET, asset_name)
            self._get(doc, PRINCIPLE, principle)
            review = Review(rating=rating, analysis=text, last_modified=now)
            asset.principle_reviews[principle] = review
            asset.last_modified = now
        return review

    def query_reviews(
        self, asset_name: str, principles: list[str] | None = None
    ) -> dict[str, Review]:
        """Reviews for an asset, optionally filtered.

        Requested principles without a review are silently omitted.
        """
        asset = self._get(self.load(), ASSET, asset_name)
        if principles is None:
            return dict(asset.principle_reviews)
        return {
            p: asset.principle_reviews[p]
            for p in dict.fromkeys(principles)
            if p in asset.principle_reviews
        }

    # -- rename / delete -----------------------------------------------------

    def find_kind(self, identifier: str) -> str | None:
        return find_kind(identifier, self.load())

    def rename(self, old: str, new: str, kind: str | None = None) -> list[str]:
        """Rename a record in place. Returns the assets whose references changed.

        Renaming to the same identifier only checks that it exists.
        """
        if new == old:
            self._resolve_kind(self.load(), old, kind)
            return []
        with self._mutation("rename", f"{old} -> {new}") as (doc, now):
            actual = self._resolve_kind(doc, old, kind)
            validate_identifier_syntax(new, actual, strict=self._strict)
            check_available(new, doc)

            collection = doc.collection(actual)
            record = collection.pop(old)
            record.short_name = new
            record.last_modified = now
            collection[new] = record

            affected: list[str] = []
            for asset in doc.asset_references.values():
                changed = False
                if actual == PRINCIPLE and old in asset.principle_reviews:
                    asset.principle_reviews = {
                        (new if key == old else key): review
                        for key, review in asset.principle_reviews.items()
                    }
                    changed = True
                elif actual == ENTITY and asset.entity == old:
                    asset.entity = new
                    changed = True
                elif actual == ASSET_TYPE and asset.asset_type == old:
                    asset.asset_type = new
                    changed = True
                if changed:
                    asset.last_modified = now
                    affected.append(asset.short_name)
        return affected

    def delete(self, name: str, kind: str | None = None) -> list[str]:
        """Delete a record. Returns the assets that lost reviews to the cascade.

        Entities and asset types still referenced by an asset cannot be deleted.
        """
        with self._mutation("delete", name) as (doc, now):
            actual = self._resolve_kind(doc, name, kind)
            affected: list[str] = []
            if actual == PRINCIPLE:
                for asset in doc.asset_references.values():
                    if asset.principle_reviews.pop(name, None) is not None:
                        asset.last_modified = now
                        affected.append(asset.short_name)
            elif actual in (ENTITY, ASSET_TYPE):
                field_name = "entity" if actual == ENTITY else "asset_type"
                users = [
                    a.short_name
                    for a in doc.asset_references.values()
                    if getattr(a, field_name) == name
                ]
                if users:
                    raise InUse(name, users)
            del doc.collection(actual)[name]
        return affected

    def _resolve_kind(self, doc: Document, identifier: str, kind: str | None) -> str:
        actual = find_kind(identifier, doc)
        if kind is not None:
            if actual != kind:
                raise _UNKNOWN[kind](identifier)
            return kind
        if actual is None:
            raise UnknownIdentifier(identifier)
        return actual

    # -- reporting -----------------------------------------------------------

    def summary(self) -> dict:
        """Counts per collection plus a rating histogram over all reviews."""
        doc = self.load()
        ratings: Counter[str] = Counter()
        for asset in doc.asset_references.values():
            for review in asset.principle_reviews.values():
                ratings[review.rating.value if review.rating else "unrated"] += 1
        return {
            "principles": len(doc.principles),
            "entities": len(doc.entities),
            "asset_types": len(doc.asset_types),
            "asset_references": len(doc.asset_references),
            "exemplars": sum(1 for a in doc.asset_references.values() if a.exemplar),
            "reviews": sum(ratings.values()),
            "ratings": {key: ratings.get(key, 0) for key in ("H", "M", "L", "unrated")},
            "last_modified": format_timestamp(doc.last_modified),
        }

    @staticmethod
    def _list(collection: dict, sort: bool) -> list:
        items = list(collection.values())
        if sort:
            items.sort(key=lambda item: item.short_name)
        return items
