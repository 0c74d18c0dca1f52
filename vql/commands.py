"""Tool-call resolution for the MCP adapter.

A tool name plus its arguments resolves exactly once into one of four
command kinds, and each handler only ever sees its own kind:

- SessionControl: VQL mode switches; touches the adapter session only.
- Direct: read-only review lookups answered from a fresh load.
- DirectExecute: every store mutation and listing; runs the CLI.
- VirtualWorkflow: AI-only review/refactor directives (no store access).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from vql.workflows import WorkflowKind, WorkflowParams


class InvalidToolCall(ValueError):
    """Unknown tool name or missing/ill-typed arguments."""


@dataclass(frozen=True)
class SessionControl:
    action: str  # "enable" | "disable" | "get"


@dataclass(frozen=True)
class Direct:
    asset: str
    principles: tuple[str, ...] | None = None  # None: every review on the asset


@dataclass(frozen=True)
class DirectExecute:
    argv: tuple[str, ...]  # CLI arguments, without the program itself


@dataclass(frozen=True)
class VirtualWorkflow:
    kind: WorkflowKind
    params: WorkflowParams


ToolCommand = Union[SessionControl, Direct, DirectExecute, VirtualWorkflow]

JSON_FORMAT = ("--format", "json")


def _str(arguments: dict, key: str, required: bool = True) -> str:
    value = arguments.get(key)
    if value is None or value == "":
        if required:
            raise InvalidToolCall(f"Missing required argument '{key}'")
        return ""
    if not isinstance(value, str):
        raise InvalidToolCall(f"Argument '{key}' must be a string")
    return value


def _str_list(arguments: dict, key: str) -> list[str]:
    value = arguments.get(key)
    if not value:
        raise InvalidToolCall(f"Missing required argument '{key}'")
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",")]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidToolCall(f"Argument '{key}' must be a list of strings")
    return [v for v in value if v]


def _execute(*argv: str) -> DirectExecute:
    return DirectExecute(argv=tuple(argv))


def _resolve_store_tool(name: str, a: dict) -> ToolCommand | None:
    if name == "setup_vql":
        directory = _str(a, "directory", required=False)
        return _execute("su", directory) if directory else _execute("su")
    if name == "list_principles":
        return _execute("pr", "list", *JSON_FORMAT)
    if name == "add_principle":
        guidance = _str(a, "guidance", required=False)
        extra = (guidance,) if guidance else ()
        return _execute("pr", "add", "--", _str(a, "short_name"), _str(a, "long_name"), *extra)
    if name == "load_principles_from_markdown":
        return _execute("pr", "load", "--", _str(a, "path"))
    if name == "list_entities":
        return _execute("er", "list", *JSON_FORMAT)
    if name == "add_entity":
        return _execute("er", "add", "--", _str(a, "short_name"), _str(a, "description"))
    if name == "list_asset_types":
        return _execute("at", "list", *JSON_FORMAT)
    if name == "add_asset_type":
        return _execute("at", "add", "--", _str(a, "short_name"), _str(a, "description"))
    if name == "list_assets":
        return _execute("ar", "list", *JSON_FORMAT)
    if name == "add_asset":
        return _execute(
            "ar", "add", "--",
            _str(a, "short_name"), _str(a, "entity"), _str(a, "asset_type"), _str(a, "path"),
        )
    if name == "store_review":
        level = _str(a, "level", required=False)
        options = ("--rating", level) if level else ()
        return _execute(
            "st", *options, "--", _str(a, "asset"), _str(a, "principle"), _str(a, "review")
        )
    if name == "set_exemplar":
        flag = a.get("is_exemplar")
        if not isinstance(flag, bool):
            raise InvalidToolCall("Argument 'is_exemplar' must be a boolean")
        return _execute("se", "--", _str(a, "asset"), "t" if flag else "f")
    if name == "set_compliance":
        return _execute("sc", "--", _str(a, "asset"), _str(a, "principle"), _str(a, "level"))
    return None


def _resolve_workflow(name: str, a: dict) -> ToolCommand | None:
    kind: WorkflowKind
    params: WorkflowParams
    if name == "review_asset_all_principles":
        kind, params = WorkflowKind.REVIEW_ASSET, WorkflowParams(asset=_str(a, "asset"))
    elif name == "review_asset_principles":
        kind = WorkflowKind.REVIEW_ASSET
        params = WorkflowParams(asset=_str(a, "asset"), principles=_str_list(a, "principles"))
    elif name == "refactor_asset_all_principles":
        kind, params = WorkflowKind.REFACTOR_ASSET, WorkflowParams(asset=_str(a, "asset"))
    elif name == "refactor_asset_principles":
        kind = WorkflowKind.REFACTOR_ASSET
        params = WorkflowParams(asset=_str(a, "asset"), principles=_str_list(a, "principles"))
    elif name == "refactor_asset_using_reference":
        kind = WorkflowKind.REFACTOR_WITH_REFERENCES
        params = WorkflowParams(asset=_str(a, "asset"), references=[_str(a, "reference_asset")])
    elif name == "refactor_asset_principles_with_references":
        kind = WorkflowKind.REFACTOR_WITH_REFERENCES
        params = WorkflowParams(
            asset=_str(a, "asset"),
            principles=_str_list(a, "principles"),
            references=_str_list(a, "reference_assets"),
        )
    elif name == "refactor_asset_all_principles_with_references":
        kind = WorkflowKind.REFACTOR_WITH_REFERENCES
        params = WorkflowParams(asset=_str(a, "asset"), references=_str_list(a, "reference_assets"))
    elif name == "review_all_assets_all_principles":
        kind, params = WorkflowKind.REVIEW_ALL_ASSETS, WorkflowParams()
    elif name == "review_all_assets_principles":
        kind = WorkflowKind.REVIEW_ALL_ASSETS
        params = WorkflowParams(principles=_str_list(a, "principles"))
    elif name == "refactor_all_assets_all_principles":
        kind, params = WorkflowKind.REFACTOR_ALL_ASSETS, WorkflowParams()
    elif name == "refactor_all_assets_principles":
        kind = WorkflowKind.REFACTOR_ALL_ASSETS
        params = WorkflowParams(principles=_str_list(a, "principles"))
    else:
        return None
    return VirtualWorkflow(kind=kind, params=params)


def resolve_tool(name: str, arguments: dict | None) -> ToolCommand:
    """Map a tool call onto its command kind. Raises InvalidToolCall."""
    a = arguments or {}

    if name in ("enable_vql_mode", "disable_vql_mode", "get_vql_mode"):
        return SessionControl(action=name.split("_", 1)[0])

    if name == "get_all_reviews":
        return Direct(asset=_str(a, "asset"))
    if name == "get_review":
        return Direct(asset=_str(a, "asset"), principles=(_str(a, "principle"),))
    if name == "get_multiple_reviews":
        return Direct(asset=_str(a, "asset"), principles=tuple(_str_list(a, "principles")))

    command = _resolve_store_tool(name, a) or _resolve_workflow(name, a)
    if command is None:
        raise InvalidToolCall(f"Unknown tool: {name}")
    return command
