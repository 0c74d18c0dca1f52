"""Activity logging for MCP tool calls.

Logs every MCP tool invocation to a JSONL file so humans can see what
their AI assistant read from and wrote to the store. Each line is a JSON
object with timestamp, tool name, arguments, result preview, and duration.

The log file lives alongside vql_storage.json by default.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

RESULT_PREVIEW_LIMIT = 500


def log_tool_call(
    log_path: Path,
    tool_name: str,
    arguments: dict,
    result_text: str,
    error: str | None,
    duration_ms: int,
) -> None:
    """Append a tool call entry to the activity log.

    A log that cannot be written is reported as a warning; the tool call
    itself has already completed and is not affected.
    """
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "tool_name": tool_name,
        "arguments": arguments,
        "result_preview": result_text[:RESULT_PREVIEW_LIMIT] if result_text else "",
        "error": error,
        "duration_ms": duration_ms,
    }
    try:
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError as e:
        logger.warning(f"Could not write activity log {log_path}: {e}")


def read_activity_log(
    log_path: Path,
    limit: int = 20,
    tool_name: str | None = None,
) -> list[dict]:
    """Read recent activity log entries.

    Returns entries in reverse chronological order (most recent first).
    """
    path = Path(log_path)
    if not path.exists():
        return []

    entries: list[dict] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed activity line: {line[:80]}")
            continue

        if tool_name and entry.get("tool_name") != tool_name:
            continue

        entries.append(entry)

    # Most recent first, limited
    entries.reverse()
    return entries[:limit]
