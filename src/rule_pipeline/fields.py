"""Heuristic field-name extraction from detection rule query text.

Not query-language aware: dotted paths (``process.name``) and bareword keys
followed by a colon (``event_type:``) are collected as candidate fields.
False positives are acceptable since the result is supplementary metadata.
"""

import re

MAX_FIELDS = 20
MIN_FIELD_LENGTH = 3

FIELD_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"\w+\.\w+(?:\.\w+)*"),
    re.compile(r"\b[a-z_]+:"),
)


def extract_fields(query: str, limit: int = MAX_FIELDS) -> list[str]:
    """Return up to ``limit`` distinct candidate field names found in ``query``.

    Matches are kept in pattern order, then text order, so the result is
    deterministic for a given input.
    """
    if not query:
        return []

    fields: dict[str, None] = {}
    for pattern in FIELD_PATTERNS:
        for match in pattern.finditer(query):
            field = match.group(0).replace(":", "").strip()
            if len(field) < MIN_FIELD_LENGTH or any(c.isspace() for c in field):
                continue
            fields.setdefault(field, None)

    return list(fields)[:limit]
