"""Principle definitions from markdown.

Principles are declared as headings with a trailing parenthesized
shortcode; the body up to the next such heading is the guidance:

    # Architecture Principles (a)
    Keep controllers thin.
    ## Layering
    Services never import controllers.

    # Security (s)
    ...

Any heading level can open a principle. Headings without a shortcode
(like "## Layering" above) stay inside the current guidance verbatim.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

PRINCIPLE_HEADING = re.compile(r"^#+\s+(?P<name>.+?)\s+\((?P<short>[^()\s]+)\)\s*$")


@dataclass
class ParsedPrinciple:
    short_name: str
    long_name: str
    guidance: str | None


def _finish(short: str, name: str, body: list[str]) -> ParsedPrinciple:
    guidance = "\n".join(body).strip("\n")
    return ParsedPrinciple(short_name=short, long_name=name, guidance=guidance or None)


def parse_principles(markdown_text: str) -> list[ParsedPrinciple]:
    """Split markdown into principles. No matching headings yields []."""
    found: dict[str, ParsedPrinciple] = {}
    current: tuple[str, str] | None = None
    body: list[str] = []

    for line in markdown_text.splitlines():
        match = PRINCIPLE_HEADING.match(line)
        if match:
            if current:
                found[current[0]] = _finish(current[0], current[1], body)
            current = (match.group("short"), match.group("name").strip())
            body = []
            logger.debug(f"Principle heading: {current[1]} ({current[0]})")
            if current[0] in found:
                logger.warning(
                    f"Principle '{current[0]}' declared more than once; the later section wins"
                )
                # Re-insert so the later declaration keeps document order
                del found[current[0]]
        elif current:
            body.append(line)

    if current:
        found[current[0]] = _finish(current[0], current[1], body)

    return list(found.values())


def read_principles_file(path: str | Path) -> str:
    """Read a principles file, expanding ~ to the home directory."""
    return Path(path).expanduser().read_text(encoding="utf-8")
