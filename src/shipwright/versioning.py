"""Semantic version parsing and ordering.

Release identities carry a display-only ``full_version`` that embeds a
commit hash and a date, so it is not monotonic. Every "is this newer"
decision goes through the comparator here instead of string comparison.
"""

from __future__ import annotations

import re
from functools import cmp_to_key

# Semver regex: v1.2.3 or 1.2.3 (optional leading 'v')
_SEMVER_RE = re.compile(
    r"^v?(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)" r"(?:-(?P<pre>[a-zA-Z0-9.]+))?$"
)


def parse_semver(version_str: str) -> tuple[int, int, int, str] | None:
    """Parse a semver string into (major, minor, patch, pre).

    Returns None if the string is not valid semver.
    """
    m = _SEMVER_RE.match(version_str.strip())
    if m is None:
        return None
    return (
        int(m.group("major")),
        int(m.group("minor")),
        int(m.group("patch")),
        m.group("pre") or "",
    )


def _pre_key(pre: str) -> tuple[tuple[int, int, str], ...]:
    # Numeric identifiers sort before alphanumeric ones (semver 2.0 §11)
    parts = []
    for ident in pre.split("."):
        if ident.isdigit():
            parts.append((0, int(ident), ""))
        else:
            parts.append((1, 0, ident))
    return tuple(parts)


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1 as *left* is older than, equal to or newer than *right*.

    Raises ValueError when either side is not valid semver.
    """
    a = parse_semver(left)
    b = parse_semver(right)
    if a is None:
        raise ValueError(f"Not a semantic version: {left!r}")
    if b is None:
        raise ValueError(f"Not a semantic version: {right!r}")

    if a[:3] != b[:3]:
        return 1 if a[:3] > b[:3] else -1

    # A pre-release sorts lower than the matching release
    if a[3] == b[3]:
        return 0
    if not a[3]:
        return 1
    if not b[3]:
        return -1
    return 1 if _pre_key(a[3]) > _pre_key(b[3]) else -1


def is_newer(candidate: str, current: str) -> bool:
    """Return True if *candidate* is a newer semver than *current*."""
    try:
        return compare_versions(candidate, current) > 0
    except ValueError:
        return False


def same_version(left: str, right: str) -> bool:
    """Return True if both strings denote the same semantic version."""
    try:
        return compare_versions(left, right) == 0
    except ValueError:
        return False


def sort_newest_first(versions: list[str]) -> list[str]:
    """Order version strings newest first by semantic precedence."""
    return sorted(versions, key=cmp_to_key(compare_versions), reverse=True)


def max_version(versions: list[str]) -> str | None:
    """Return the semantically greatest version, or None for an empty list."""
    if not versions:
        return None
    return sort_newest_first(versions)[0]
