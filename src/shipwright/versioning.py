"""Semantic version parsing and comparison."""

from __future__ import annotations

import re
from typing import Iterable

__all__ = ["parse_version", "compare_versions", "latest_version", "normalize_version"]

_SEMVER = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)


def normalize_version(version: str) -> str:
    """Strip surrounding whitespace and a leading ``v``."""
    version = version.strip()
    return version[1:] if version.startswith("v") else version


def parse_version(version: str) -> tuple[int, int, int, tuple[tuple[int, int | str], ...]]:
    """Parse ``MAJOR.MINOR.PATCH[-PRE][+BUILD]`` into a sortable key.

    A release sorts after any of its pre-releases. Build metadata is ignored.

    Raises:
        ValueError: If the string is not a semantic version.
    """
    match = _SEMVER.match(version.strip())
    if match is None:
        raise ValueError(f"Not a semantic version: {version!r}")

    pre = match.group("pre")
    if pre is None:
        # Sentinel that sorts after every pre-release identifier tuple
        pre_key: tuple[tuple[int, int | str], ...] = ((2, 0),)
    else:
        parts: list[tuple[int, int | str]] = []
        for ident in pre.split("."):
            parts.append((0, int(ident)) if ident.isdigit() else (1, ident))
        pre_key = tuple(parts)

    return (int(match.group("major")), int(match.group("minor")), int(match.group("patch")), pre_key)


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as ``a`` is older than, equal to, or newer than ``b``."""
    key_a, key_b = parse_version(a), parse_version(b)
    return (key_a > key_b) - (key_a < key_b)


def latest_version(versions: Iterable[str]) -> str | None:
    """Return the newest semantic version, skipping strings that do not parse."""
    best: str | None = None
    for candidate in versions:
        try:
            parse_version(candidate)
        except ValueError:
            continue
        if best is None or compare_versions(candidate, best) > 0:
            best = candidate
    return normalize_version(best) if best is not None else None
