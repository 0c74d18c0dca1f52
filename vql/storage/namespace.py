"""Unified namespace rules.

Principles, entities, asset types and asset references share one
namespace: a short identifier may belong to at most one record across all
four collections.
"""

from __future__ import annotations

import re

from vql.errors import InvalidIdentifier, NameConflict
from vql.models import ASSET_TYPE, KINDS, PRINCIPLE, Document

# Whitespace, path separators, and the punctuation the query/LLM syntax uses
FORBIDDEN_CHARS = re.compile(r"[\s/\\(),?:\"']")

# Kinds whose identifiers are single characters when strict mode is on
SINGLE_CHAR_KINDS = frozenset({PRINCIPLE, ASSET_TYPE})


def find_kind(identifier: str, document: Document) -> str | None:
    """Return which collection holds `identifier`, or None."""
    for kind in KINDS:
        if identifier in document.collection(kind):
            return kind
    return None


def check_available(identifier: str, document: Document) -> None:
    """Raise NameConflict if `identifier` is used anywhere in the document."""
    kind = find_kind(identifier, document)
    if kind is not None:
        raise NameConflict(identifier, kind)


def validate_identifier_syntax(identifier: str, kind: str, strict: bool = True) -> None:
    if not identifier:
        raise InvalidIdentifier(identifier, "identifier must not be empty")
    bad = FORBIDDEN_CHARS.search(identifier)
    if bad:
        raise InvalidIdentifier(
            identifier, f"character {bad.group(0)!r} is not allowed"
        )
    if strict and kind in SINGLE_CHAR_KINDS and len(identifier) != 1:
        raise InvalidIdentifier(
            identifier, f"{kind.replace('_', ' ')} short names must be a single character"
        )
