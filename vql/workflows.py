"""AI-only review and refactor directives.

These are not store operations: they render step-by-step guidance that
tells the assistant which store commands to run and what to write back.
Every refactor workflow ends with a mandatory re-review so ratings never
describe code that no longer exists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

RATING_HINT = (
    'Include phrases like "HIGH compliance", "MEDIUM compliance", or '
    '"LOW compliance" in the review'
)


class WorkflowKind(str, Enum):
    REVIEW_ASSET = "review_asset"
    REFACTOR_ASSET = "refactor_asset"
    REFACTOR_WITH_REFERENCES = "refactor_with_references"
    REVIEW_ALL_ASSETS = "review_all_assets"
    REFACTOR_ALL_ASSETS = "refactor_all_assets"


@dataclass
class WorkflowParams:
    asset: str = ""
    principles: list[str] = field(default_factory=list)  # empty means all principles
    references: list[str] = field(default_factory=list)


def _principle_scope(params: WorkflowParams) -> tuple[str, str]:
    """(phrase used in the title, step that fetches the principle definitions)."""
    if params.principles:
        joined = ", ".join(params.principles)
        return f"principles {joined}", f"Get principle definitions for: {joined} ('vql pr')"
    return "all principles", "Run 'vql pr' to get all principles"


def _store_step(asset: str, note: str = "") -> str:
    prefix = f"{note}: " if note else ""
    return f"Store using 'vql st {asset} [principle] \"{prefix}[review with rating]\"'"


def _review_asset(p: WorkflowParams) -> list[str]:
    scope, fetch = _principle_scope(p)
    return [
        f"To review asset '{p.asset}' against {scope}:",
        f"1. {fetch}",
        "2. Run 'vql ar' to get asset details including file path",
        "3. Read the asset file content",
        "4. For each principle:",
        "   - Analyze the code against the principle criteria",
        "   - Generate a detailed review with compliance rating",
        f"   - {_store_step(p.asset)}",
        f"   - {RATING_HINT}",
    ]


def _refactor_asset(p: WorkflowParams) -> list[str]:
    scope, fetch = _principle_scope(p)
    return [
        f"To refactor asset '{p.asset}' based on {scope}:",
        f"1. {fetch}",
        "2. Run 'vql ar' to get asset details including file path",
        "3. Read the asset file content",
        "4. Analyze against the principles to identify improvements",
        "5. Apply refactoring changes to the file",
        "6. MANDATORY: Review the refactored asset against the same principles:",
        "   - For each principle, analyze the refactored code",
        "   - Generate a new review reflecting the post-refactoring state",
        f"   - {_store_step(p.asset, 'After refactoring')}",
        "7. The refactoring is NOT complete until all reviews are updated",
    ]


def _refactor_with_references(p: WorkflowParams) -> list[str]:
    refs = ", ".join(p.references)
    if p.principles:
        scope, fetch = _principle_scope(p)
        title = f"To refactor asset '{p.asset}' based on {scope} using references {refs}:"
    else:
        fetch = "Run 'vql pr' to get all principles; get reviews of the reference assets with 'vql q'"
        title = f"To refactor asset '{p.asset}' using {refs} as reference:"
    return [
        title,
        f"1. {fetch}",
        "2. Run 'vql ar' to get details for target and reference assets",
        f"3. Read all asset files (target: {p.asset}, references: {refs})",
        "4. Identify patterns in the reference assets that exemplify the principles",
        "5. Apply those patterns to the target asset",
        "6. MANDATORY: Review the refactored asset against every affected principle:",
        f"   - {_store_step(p.asset, f'After refactoring using patterns from {refs}')}",
        "7. The refactoring is NOT complete until reviews are updated",
    ]


def _review_all(p: WorkflowParams) -> list[str]:
    scope, fetch = _principle_scope(p)
    return [
        f"To review all assets against {scope}:",
        "1. Run 'vql ar' to get all assets",
        f"2. {fetch}",
        "3. For each asset and principle combination:",
        "   - Read the asset file",
        "   - Analyze against the principle",
        f"   - {_store_step('[asset]')}",
    ]


def _refactor_all(p: WorkflowParams) -> list[str]:
    scope, fetch = _principle_scope(p)
    return [
        f"To refactor all assets based on {scope}:",
        "1. Run 'vql ar' to get all assets",
        f"2. {fetch}",
        "3. For each asset:",
        "   - Read the file",
        "   - Analyze against the principles to identify improvements",
        "   - Apply refactoring changes to improve compliance",
        "4. MANDATORY: After refactoring each asset, review it:",
        f"   - {_store_step('[asset]', 'After refactoring')}",
        "5. The refactoring process is NOT complete until all reviews are updated",
    ]


_RENDERERS = {
    WorkflowKind.REVIEW_ASSET: _review_asset,
    WorkflowKind.REFACTOR_ASSET: _refactor_asset,
    WorkflowKind.REFACTOR_WITH_REFERENCES: _refactor_with_references,
    WorkflowKind.REVIEW_ALL_ASSETS: _review_all,
    WorkflowKind.REFACTOR_ALL_ASSETS: _refactor_all,
}


def render_workflow(kind: WorkflowKind, params: WorkflowParams) -> str:
    return "\n".join(_RENDERERS[kind](params))
