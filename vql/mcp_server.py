"""MCP server for vql.

Exposes the compliance-review store to AI coding agents via the Model
Context Protocol. Store mutations and listings run the vql CLI as a
subprocess; review lookups are answered in-process; review/refactor
workflows are rendered as guidance for the agent to carry out.

Usage:
    vql serve [--storage /path/to/VQL/vql_storage.json]

Configure in Claude Code (.mcp.json):
    {
      "mcpServers": {
        "vql": {
          "type": "stdio",
          "command": "vql",
          "args": ["serve"],
          "env": {"VQL_STORAGE_PATH": "/path/to/project/VQL/vql_storage.json"}
        }
      }
    }
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server

from vql.activity import log_tool_call
from vql.commands import (
    Direct,
    DirectExecute,
    InvalidToolCall,
    SessionControl,
    ToolCommand,
    VirtualWorkflow,
    resolve_tool,
)
from vql.config import Config
from vql.errors import NotFound, VQLError
from vql.workflows import render_workflow

logger = logging.getLogger(__name__)

WORKFLOW_DISABLED_NOTICE = (
    "VQL mode is disabled. Call enable_vql_mode to use review and refactor workflows."
)


class CommandFailed(Exception):
    """The CLI exited non-zero; carries its stderr verbatim."""

    def __init__(self, stderr: str) -> None:
        super().__init__(stderr)
        self.stderr = stderr


@dataclass
class AdapterSession:
    """State for one server session. Nothing here outlives the connection."""

    config: Config
    vql_mode: bool = True
    storage_override: Path | None = None
    runner: Callable[..., subprocess.CompletedProcess] = field(default=subprocess.run)

    def storage_path(self) -> Path:
        if self.storage_override is not None:
            return self.storage_override
        return self.config.resolve_storage_path()

    def log_path(self) -> Path:
        try:
            storage = self.storage_path()
        except NotFound:
            storage = None
        return self.config.resolve_log_path(storage)


# -- tool definitions --------------------------------------------------------


def _string(description: str) -> dict:
    return {"type": "string", "description": description}


def _string_list(description: str) -> dict:
    return {"type": "array", "items": {"type": "string"}, "description": description}


ASSET = _string("Asset shortcode (see list_assets)")
PRINCIPLE = _string("Principle shortcode (see list_principles)")
PRINCIPLES = _string_list("Principle shortcodes")
LEVEL = _string("Compliance level: H, M or L")


def _tool(name: str, description: str, properties: dict | None = None,
          required: list[str] | None = None) -> types.Tool:
    return types.Tool(
        name=name,
        description=description,
        inputSchema={
            "type": "object",
            "properties": properties or {},
            "required": required or [],
        },
    )


TOOLS: list[types.Tool] = [
    _tool("enable_vql_mode", "Enable VQL mode for AI-assisted code quality management"),
    _tool("disable_vql_mode", "Disable VQL mode (review and refactor workflows are paused)"),
    _tool("get_vql_mode", "Get current VQL mode status"),
    _tool(
        "setup_vql",
        "Set up VQL storage (VQL/vql_storage.json) in a project directory",
        {"directory": _string("Project directory (default: server working directory)")},
    ),
    _tool("list_principles", "List all principles with their guidance"),
    _tool(
        "add_principle",
        "Add or overwrite a principle",
        {
            "short_name": _string("Single-character shortcode"),
            "long_name": _string("Full principle name"),
            "guidance": _string("Guidance text"),
        },
        ["short_name", "long_name"],
    ),
    _tool(
        "load_principles_from_markdown",
        "Import principles from a markdown file with '# Long Name (s)' headings. "
        "The whole file is imported or nothing is.",
        {"path": _string("Path to the markdown file")},
        ["path"],
    ),
    _tool("list_entities", "List all entities"),
    _tool(
        "add_entity",
        "Add or overwrite an entity (e.g. 'uc' for user controller)",
        {"short_name": _string("Entity shortcode"), "description": _string("Entity description")},
        ["short_name", "description"],
    ),
    _tool("list_asset_types", "List all asset types"),
    _tool(
        "add_asset_type",
        "Add or overwrite an asset type (e.g. 'c' for controller)",
        {
            "short_name": _string("Single-character shortcode"),
            "description": _string("Asset type description"),
        },
        ["short_name", "description"],
    ),
    _tool("list_assets", "List all tracked assets with paths, exemplar flags and ratings"),
    _tool(
        "add_asset",
        "Track a file as an asset. Re-adding an asset updates it and keeps its reviews.",
        {
            "short_name": _string("Asset shortcode"),
            "entity": _string("Entity shortcode"),
            "asset_type": _string("Asset type shortcode"),
            "path": _string("File path, absolute or relative to the project"),
        },
        ["short_name", "entity", "asset_type", "path"],
    ),
    _tool(
        "store_review",
        "Store a review of an asset against a principle, replacing any previous one. "
        "The rating is read from the text unless 'level' is given.",
        {"asset": ASSET, "principle": PRINCIPLE, "review": _string("Review text"), "level": LEVEL},
        ["asset", "principle", "review"],
    ),
    _tool(
        "get_all_reviews",
        "Get every stored review for an asset",
        {"asset": ASSET},
        ["asset"],
    ),
    _tool(
        "get_review",
        "Get the stored review of an asset for one principle",
        {"asset": ASSET, "principle": PRINCIPLE},
        ["asset", "principle"],
    ),
    _tool(
        "get_multiple_reviews",
        "Get the stored reviews of an asset for several principles",
        {"asset": ASSET, "principles": PRINCIPLES},
        ["asset", "principles"],
    ),
    _tool(
        "set_exemplar",
        "Mark or unmark an asset as an exemplar of good practice",
        {"asset": ASSET, "is_exemplar": {"type": "boolean", "description": "Exemplar flag"}},
        ["asset", "is_exemplar"],
    ),
    _tool(
        "set_compliance",
        "Set the compliance rating of an asset for a principle, keeping the analysis text",
        {"asset": ASSET, "principle": PRINCIPLE, "level": LEVEL},
        ["asset", "principle", "level"],
    ),
    _tool(
        "review_asset_all_principles",
        "Review an asset against all principles",
        {"asset": ASSET},
        ["asset"],
    ),
    _tool(
        "review_asset_principles",
        "Review an asset against specific principles",
        {"asset": ASSET, "principles": PRINCIPLES},
        ["asset", "principles"],
    ),
    _tool(
        "refactor_asset_all_principles",
        "Refactor an asset based on all principles, then re-review it",
        {"asset": ASSET},
        ["asset"],
    ),
    _tool(
        "refactor_asset_principles",
        "Refactor an asset based on specific principles, then re-review it",
        {"asset": ASSET, "principles": PRINCIPLES},
        ["asset", "principles"],
    ),
    _tool(
        "refactor_asset_using_reference",
        "Refactor an asset using another asset as the reference implementation",
        {"asset": ASSET, "reference_asset": _string("Reference asset shortcode")},
        ["asset", "reference_asset"],
    ),
    _tool(
        "refactor_asset_principles_with_references",
        "Refactor an asset based on specific principles using reference assets",
        {
            "asset": ASSET,
            "principles": PRINCIPLES,
            "reference_assets": _string_list("Reference asset shortcodes"),
        },
        ["asset", "principles", "reference_assets"],
    ),
    _tool(
        "refactor_asset_all_principles_with_references",
        "Refactor an asset based on all principles using reference assets",
        {"asset": ASSET, "reference_assets": _string_list("Reference asset shortcodes")},
        ["asset", "reference_assets"],
    ),
    _tool("review_all_assets_all_principles", "Review every asset against all principles"),
    _tool(
        "review_all_assets_principles",
        "Review every asset against specific principles",
        {"principles": PRINCIPLES},
        ["principles"],
    ),
    _tool("refactor_all_assets_all_principles", "Refactor every asset based on all principles"),
    _tool(
        "refactor_all_assets_principles",
        "Refactor every asset based on specific principles",
        {"principles": PRINCIPLES},
        ["principles"],
    ),
]


# -- dispatch ----------------------------------------------------------------


def _handle_session(session: AdapterSession, command: SessionControl) -> str:
    if command.action == "enable":
        session.vql_mode = True
        return "VQL mode enabled"
    if command.action == "disable":
        session.vql_mode = False
        return "VQL mode disabled"
    return f"VQL mode is {'enabled' if session.vql_mode else 'disabled'}"


def _handle_direct(session: AdapterSession, command: Direct) -> str:
    """Answer a review lookup without spawning the CLI.

    This is the only tool that bypasses the subprocess. It is read-only,
    loads the document fresh on every call and goes through the same
    Repository.query_reviews as `vql q`.
    """
    repo = session.config.repository(session.storage_path())
    wanted = list(command.principles) if command.principles is not None else None
    reviews = repo.query_reviews(command.asset, wanted)
    if not reviews:
        scope = f" for {', '.join(wanted)}" if wanted else ""
        return f"No reviews stored for asset '{command.asset}'{scope}."
    result = {
        "asset": command.asset,
        "reviews": {key: review.to_dict() for key, review in reviews.items()},
    }
    return json.dumps(result, indent=2, ensure_ascii=False)


def _handle_execute(session: AdapterSession, command: DirectExecute) -> str:
    env = dict(os.environ)
    if command.argv[0] != "su":
        env["VQL_STORAGE_PATH"] = str(session.storage_path())
    argv = [*session.config.cli_command, *command.argv]
    logger.debug(f"Running {argv}")
    completed = session.runner(argv, capture_output=True, text=True, env=env)
    if completed.returncode != 0:
        raise CommandFailed(completed.stderr or completed.stdout or f"exit status {completed.returncode}")
    return completed.stdout


def _handle_workflow(session: AdapterSession, command: VirtualWorkflow) -> str:
    if not session.vql_mode:
        return WORKFLOW_DISABLED_NOTICE
    return render_workflow(command.kind, command.params)


def dispatch(session: AdapterSession, command: ToolCommand) -> str:
    """Run a resolved command against the session."""
    if isinstance(command, SessionControl):
        return _handle_session(session, command)
    if isinstance(command, Direct):
        return _handle_direct(session, command)
    if isinstance(command, DirectExecute):
        return _handle_execute(session, command)
    return _handle_workflow(session, command)


def handle_tool_call(
    session: AdapterSession, name: str, arguments: dict | None
) -> list[types.TextContent]:
    """Resolve, run and log one tool call. Failures become text results."""
    start = time.time()
    result_text = ""
    error: str | None = None
    try:
        result_text = dispatch(session, resolve_tool(name, arguments))
    except CommandFailed as e:
        error = result_text = e.stderr
    except NotFound as e:
        error = str(e)
        result_text = f"Setup required: {e}"
    except (VQLError, InvalidToolCall) as e:
        error = str(e)
        result_text = f"Error: {e}"
    except Exception as e:
        logger.exception(f"Tool {name} failed")
        error = str(e)
        result_text = f"Error: {e}"
    finally:
        duration_ms = int((time.time() - start) * 1000)
        log_tool_call(session.log_path(), name, arguments or {}, result_text, error, duration_ms)
    return [types.TextContent(type="text", text=result_text)]


def create_server(session: AdapterSession) -> Server:
    server = Server("vql")

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        return handle_tool_call(session, name, arguments)

    return server


async def main(storage_path: Path | None = None) -> None:
    session = AdapterSession(config=Config.load(), storage_override=storage_path)
    server = create_server(session)
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


if __name__ == "__main__":
    import asyncio
    asyncio.run(main())
