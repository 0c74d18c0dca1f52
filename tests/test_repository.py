"""Tests for vql.storage.repository (the store engine)."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vql.errors import (
    InUse,
    InvalidIdentifier,
    InvalidRating,
    NameConflict,
    NotFound,
    OutsideWorkspace,
    StaleDocument,
    UnknownAsset,
    UnknownAssetType,
    UnknownEntity,
    UnknownIdentifier,
    UnknownPrinciple,
)
from vql.models import ENTITY, PRINCIPLE, Rating, format_timestamp
from vql.storage import document as store
from vql.storage.repository import Repository

HIGH_REVIEW = "The controller demonstrates HIGH compliance with separation of concerns."


class TestAddRecords:
    def test_asset_reference_scenario(self, repo: Repository, workspace: Path):
        repo.add_entity("u", "User")
        repo.add_asset_type("c", "Controller")
        repo.add_asset_reference("uc", "u", "c", "src/UserController.ts")

        asset = repo.get_asset_reference("uc")
        assert asset.path == "src/UserController.ts"
        assert asset.entity == "u"
        assert asset.asset_type == "c"
        assert asset.exemplar is False
        assert asset.principle_reviews == {}

    def test_absolute_path_becomes_relative(self, repo: Repository, workspace: Path):
        repo.add_entity("u", "User")
        repo.add_asset_type("c", "Controller")
        asset = repo.add_asset_reference(
            "uc", "u", "c", str(workspace / "src" / "UserController.ts")
        )
        assert asset.path == "src/UserController.ts"

    def test_backslashes_normalized(self, repo: Repository):
        repo.add_entity("u", "User")
        repo.add_asset_type("c", "Controller")
        asset = repo.add_asset_reference("uc", "u", "c", "src\\api\\UserController.ts")
        assert asset.path == "src/api/UserController.ts"
        assert "\\" not in json.loads(repo.storage_path.read_text())["asset_references"]["uc"]["path"]

    def test_path_outside_workspace_rejected(self, repo: Repository, tmp_path: Path):
        repo.add_entity("u", "User")
        repo.add_asset_type("c", "Controller")
        with pytest.raises(OutsideWorkspace):
            repo.add_asset_reference("uc", "u", "c", str(tmp_path / "elsewhere.ts"))
        with pytest.raises(OutsideWorkspace):
            repo.add_asset_reference("uc", "u", "c", "../escape.ts")
        assert repo.list_asset_references() == []

    def test_cross_category_conflict(self, repo: Repository):
        repo.add_principle("a", "Architecture", "...")
        with pytest.raises(NameConflict) as exc:
            repo.add_entity("a", "Account")
        assert exc.value.identifier == "a"
        assert repo.list_entities() == []

    def test_same_category_overwrites(self, repo: Repository):
        repo.add_entity("u", "User")
        repo.add_entity("u", "Customer")
        entities = repo.list_entities()
        assert len(entities) == 1
        assert entities[0].description == "Customer"

    def test_unknown_entity(self, repo: Repository):
        repo.add_asset_type("c", "Controller")
        with pytest.raises(UnknownEntity) as exc:
            repo.add_asset_reference("xy", "nonexistent", "c", "path.ts")
        assert exc.value.identifier == "nonexistent"
        assert repo.list_asset_references() == []

    def test_unknown_asset_type(self, repo: Repository):
        repo.add_entity("u", "User")
        with pytest.raises(UnknownAssetType):
            repo.add_asset_reference("xy", "u", "z", "path.ts")

    def test_strict_principle_shortcode(self, repo: Repository):
        with pytest.raises(InvalidIdentifier):
            repo.add_principle("arch", "Architecture")

    def test_lenient_repository(self, storage_path: Path):
        lenient = Repository(storage_path, strict_identifiers=False)
        lenient.add_principle("arch", "Architecture")
        assert lenient.get_principle("arch").long_name == "Architecture"

    def test_readd_asset_keeps_reviews_and_exemplar(self, populated_repo: Repository):
        populated_repo.store_review("uc", "a", HIGH_REVIEW)
        populated_repo.set_exemplar("uc", True)
        populated_repo.add_asset_type("v", "Service")

        asset = populated_repo.add_asset_reference("uc", "u", "v", "src/UserService.ts")
        assert asset.asset_type == "v"
        assert asset.path == "src/UserService.ts"
        assert asset.exemplar is True
        assert "a" in asset.principle_reviews

    def test_missing_storage(self, tmp_path: Path):
        repo = Repository(tmp_path / "VQL" / "vql_storage.json")
        with pytest.raises(NotFound):
            repo.add_entity("u", "User")

    def test_sorted_listing(self, repo: Repository):
        repo.add_entity("z", "Zed")
        repo.add_entity("b", "Bee")
        assert [e.short_name for e in repo.list_entities()] == ["z", "b"]
        assert [e.short_name for e in repo.list_entities(sort=True)] == ["b", "z"]


class TestReviews:
    def test_store_review_extracts_rating(self, populated_repo: Repository):
        review = populated_repo.store_review("uc", "a", HIGH_REVIEW)
        assert review.rating == Rating.HIGH
        assert review.analysis == HIGH_REVIEW

    def test_store_review_explicit_rating_wins(self, populated_repo: Repository):
        review = populated_repo.store_review("uc", "a", HIGH_REVIEW, rating="L")
        assert review.rating == Rating.LOW

    def test_store_review_without_rating(self, populated_repo: Repository):
        review = populated_repo.store_review("uc", "a", "Looks reasonable.")
        assert review.rating is None
        raw = json.loads(populated_repo.storage_path.read_text())
        assert raw["asset_references"]["uc"]["principle_reviews"]["a"]["rating"] is None

    def test_bare_level_word_is_not_a_rating(self, populated_repo: Repository):
        review = populated_repo.store_review(
            "uc", "a", "Uses a low-level socket API; otherwise well layered."
        )
        assert review.rating is None

    def test_second_review_replaces_first(self, populated_repo: Repository):
        populated_repo.store_review("uc", "a", HIGH_REVIEW)
        populated_repo.store_review("uc", "a", "Now only low compliance remains.")
        reviews = populated_repo.query_reviews("uc")
        assert list(reviews) == ["a"]
        assert reviews["a"].analysis == "Now only low compliance remains."
        assert reviews["a"].rating == Rating.LOW

    def test_unknown_asset_and_principle(self, populated_repo: Repository):
        with pytest.raises(UnknownAsset):
            populated_repo.store_review("nope", "a", HIGH_REVIEW)
        with pytest.raises(UnknownPrinciple):
            populated_repo.store_review("uc", "z", HIGH_REVIEW)

    def test_set_compliance_keeps_analysis(self, populated_repo: Repository):
        populated_repo.store_review("uc", "a", HIGH_REVIEW)
        review = populated_repo.set_compliance("uc", "a", "m")
        assert review.rating == Rating.MEDIUM
        assert review.analysis == HIGH_REVIEW

    def test_set_compliance_creates_review(self, populated_repo: Repository):
        review = populated_repo.set_compliance("uc", "s", "H")
        assert review.rating == Rating.HIGH
        assert review.analysis is None

    def test_set_compliance_invalid_rating_writes_nothing(self, populated_repo: Repository):
        before = populated_repo.storage_path.read_text()
        with pytest.raises(InvalidRating):
            populated_repo.set_compliance("uc", "a", "X")
        assert populated_repo.storage_path.read_text() == before

    def test_query_omits_unreviewed_principles(self, populated_repo: Repository):
        populated_repo.store_review("uc", "a", HIGH_REVIEW)
        reviews = populated_repo.query_reviews("uc", ["a", "z"])
        assert list(reviews) == ["a"]

    def test_query_unknown_asset(self, populated_repo: Repository):
        with pytest.raises(UnknownAsset):
            populated_repo.query_reviews("nope")

    def test_set_exemplar(self, populated_repo: Repository):
        populated_repo.set_exemplar("uc", True)
        assert populated_repo.get_asset_reference("uc").exemplar is True
        populated_repo.set_exemplar("uc", False)
        assert populated_repo.get_asset_reference("uc").exemplar is False


class TestImport:
    def test_import_scenario(self, repo: Repository):
        added = repo.import_principles("# Architecture (a)\nThin layers.\n# Security (s)\nValidate.\n")
        assert [p.short_name for p in added] == ["a", "s"]
        assert repo.get_principle("a").guidance == "Thin layers."
        assert repo.get_principle("s").guidance == "Validate."

    def test_import_is_all_or_nothing(self, repo: Repository):
        repo.add_entity("s", "Session")
        before = repo.storage_path.read_text()
        with pytest.raises(NameConflict):
            repo.import_principles("# Architecture (a)\nx\n# Security (s)\ny\n")
        assert repo.storage_path.read_text() == before
        assert repo.list_principles() == []

    def test_import_nothing(self, repo: Repository):
        before = repo.storage_path.read_text()
        assert repo.import_principles("no headings here") == []
        assert repo.storage_path.read_text() == before

    def test_import_overwrites_existing_principle(self, repo: Repository):
        repo.add_principle("a", "Old name")
        repo.import_principles("# Architecture (a)\nnew guidance\n")
        assert repo.get_principle("a").long_name == "Architecture"


class TestRenameDelete:
    def test_rename_principle_rekeys_reviews(self, populated_repo: Repository):
        populated_repo.store_review("uc", "a", HIGH_REVIEW)
        affected = populated_repo.rename("a", "r")
        assert affected == ["uc"]
        assert "r" in populated_repo.query_reviews("uc")
        assert populated_repo.find_kind("a") is None
        assert populated_repo.find_kind("r") == PRINCIPLE

    def test_rename_entity_updates_assets(self, populated_repo: Repository):
        affected = populated_repo.rename("u", "usr", kind=ENTITY)
        assert affected == ["uc"]
        assert populated_repo.get_asset_reference("uc").entity == "usr"

    def test_rename_to_taken_identifier(self, populated_repo: Repository):
        with pytest.raises(NameConflict):
            populated_repo.rename("u", "c")

    def test_rename_to_itself_is_noop(self, populated_repo: Repository):
        before = populated_repo.storage_path.read_text()
        assert populated_repo.rename("u", "u") == []
        assert populated_repo.rename("a", "a", kind=PRINCIPLE) == []
        assert populated_repo.storage_path.read_text() == before
        with pytest.raises(UnknownIdentifier):
            populated_repo.rename("nothing", "nothing")

    def test_rename_kind_mismatch(self, populated_repo: Repository):
        with pytest.raises(UnknownEntity):
            populated_repo.rename("a", "b", kind=ENTITY)

    def test_rename_unknown(self, populated_repo: Repository):
        with pytest.raises(UnknownIdentifier):
            populated_repo.rename("nothing", "x")

    def test_delete_principle_cascades(self, populated_repo: Repository):
        populated_repo.store_review("uc", "a", HIGH_REVIEW)
        affected = populated_repo.delete("a")
        assert affected == ["uc"]
        assert populated_repo.query_reviews("uc") == {}
        with pytest.raises(UnknownPrinciple):
            populated_repo.get_principle("a")

    def test_delete_entity_in_use(self, populated_repo: Repository):
        with pytest.raises(InUse) as exc:
            populated_repo.delete("u")
        assert exc.value.referenced_by == ["uc"]
        assert populated_repo.get_entity("u").description == "User"

    def test_delete_asset_then_entity(self, populated_repo: Repository):
        populated_repo.delete("uc")
        populated_repo.delete("u")
        assert populated_repo.list_asset_references() == []
        assert populated_repo.list_entities() == []


class TestTimestampsAndStaleness:
    def test_last_modified_never_moves_backwards(self, repo: Repository):
        future = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=1)
        data = json.loads(repo.storage_path.read_text())
        data["last_modified"] = format_timestamp(future)
        repo.storage_path.write_text(json.dumps(data))

        repo.add_entity("u", "User")
        assert repo.load().last_modified == future

    @staticmethod
    def _write_after_load(monkeypatch: pytest.MonkeyPatch, other: Repository) -> None:
        """Make `other` commit right after the next document load."""
        real_load = store.load_with_token

        def load_then_write(path):
            loaded = real_load(path)
            monkeypatch.setattr(store, "load_with_token", real_load)
            other.add_entity("x", "Other")
            return loaded

        monkeypatch.setattr(store, "load_with_token", load_then_write)

    def test_concurrent_write_detected(self, storage_path: Path, monkeypatch: pytest.MonkeyPatch):
        repo = Repository(storage_path, detect_stale=True)
        other = Repository(storage_path)
        self._write_after_load(monkeypatch, other)

        with pytest.raises(StaleDocument):
            repo.add_entity("y", "Mine")
        assert [e.short_name for e in other.list_entities()] == ["x"]
        assert not list(storage_path.parent.glob("*.tmp"))

    def test_concurrent_write_last_writer_wins_by_default(
        self, storage_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        repo = Repository(storage_path)
        self._write_after_load(monkeypatch, Repository(storage_path))
        repo.add_entity("y", "Mine")
        assert [e.short_name for e in repo.list_entities()] == ["y"]

    def test_no_stale_error_when_unchanged(self, storage_path: Path):
        repo = Repository(storage_path, detect_stale=True)
        repo.add_entity("u", "User")
        repo.add_entity("p", "Payment")
        assert len(repo.list_entities()) == 2


class TestSummary:
    def test_summary_counts(self, populated_repo: Repository):
        populated_repo.store_review("uc", "a", HIGH_REVIEW)
        populated_repo.set_compliance("uc", "s", "L")
        populated_repo.set_exemplar("uc", True)
        s = populated_repo.summary()
        assert s["principles"] == 2
        assert s["entities"] == 1
        assert s["asset_types"] == 1
        assert s["asset_references"] == 1
        assert s["exemplars"] == 1
        assert s["reviews"] == 2
        assert s["ratings"] == {"H": 1, "M": 0, "L": 1, "unrated": 0}
