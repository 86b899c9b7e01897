"""Entity-name canonicalization for comparing extracted names against configured ones."""

from __future__ import annotations

import re

_STRIP_CHARS = ".,/#!$%^&*;:{}=-_`~()'\""
_STRIP_TABLE = str.maketrans("", "", _STRIP_CHARS)
_WHITESPACE = re.compile(r"\s+")


def normalize(name: str | None) -> str:
    """Lower-case, drop punctuation, collapse whitespace, trim."""
    if not name:
        return ""
    return _WHITESPACE.sub(" ", name.lower().translate(_STRIP_TABLE)).strip()


def name_matches(required: str | None, extracted: str | None) -> bool:
    """
    True when the normalized required name is contained in the normalized
    extracted name ("Acme LLC" matches "ACME, LLC and its subsidiaries").

    One direction only: a long required name is never satisfied by a
    shorter extracted fragment.
    """
    needle = normalize(required)
    if not needle:
        return False
    return needle in normalize(extracted)


def all_names_listed(required: list[str], listed: list[str]) -> bool:
    """Every non-blank required name is matched by at least one listed name."""
    wanted = [r for r in required if normalize(r)]
    return all(any(name_matches(r, name) for name in listed) for r in wanted)
