"""Directory scanner for discovering module descriptor sources."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Sequence

from shipwright.registry.types import DiscoveredModule

logger = logging.getLogger(__name__)

__all__ = ["scan_directory", "scan_search_paths", "SCOPES"]

SCOPES = ("project", "user", "system")

_SKIP_DIR_NAMES = {"__pycache__", "node_modules"}


def scan_directory(
    root: Path,
    max_depth: int = 8,
    follow_symlinks: bool = False,
    scope: str | None = None,
) -> list[DiscoveredModule]:
    """Recursively scan one directory for ``*.py`` descriptor sources.

    Nested files get dot-separated canonical names (``sub/mod.py`` ->
    ``sub.mod``). A ``<stem>_meta.yaml`` companion is attached when present.
    Results are sorted by canonical name so callers never depend on
    directory-listing order. A missing root yields an empty list.
    """
    root = Path(root)
    if not root.is_dir():
        logger.debug("Search path %s does not exist, skipping", root)
        return []
    root = root.resolve()

    visited_real_paths: set[Path] = {root}
    results: dict[str, DiscoveredModule] = {}

    def _scan_dir(dir_path: Path, depth: int) -> None:
        if depth > max_depth:
            logger.info("Max depth %d exceeded at %s, skipping", max_depth, dir_path)
            return

        try:
            entries = sorted(os.scandir(dir_path), key=lambda e: e.name)
        except OSError as e:
            logger.error("Cannot scan %s: %s", dir_path, e)
            return

        for entry in entries:
            name = entry.name
            if name.startswith(".") or name.startswith("_"):
                continue
            if name in _SKIP_DIR_NAMES:
                continue

            try:
                is_dir = entry.is_dir(follow_symlinks=follow_symlinks)
                is_file = entry.is_file(follow_symlinks=follow_symlinks)
                is_symlink = entry.is_symlink()
            except OSError as e:
                logger.error("OS error accessing %s: %s", entry.path, e)
                continue

            entry_path = Path(entry.path)

            if is_dir:
                if is_symlink:
                    if not follow_symlinks:
                        continue
                    real = entry_path.resolve()
                    if real in visited_real_paths:
                        logger.warning("Symlink cycle detected at %s -> %s, skipping", entry_path, real)
                        continue
                    visited_real_paths.add(real)
                _scan_dir(entry_path, depth + 1)
            elif is_file and entry_path.suffix == ".py":
                rel = entry_path.relative_to(root)
                canonical_name = str(rel.with_suffix("")).replace(os.sep, ".")

                meta_path: Path | None = entry_path.with_name(entry_path.stem + "_meta.yaml")
                if not meta_path.exists():
                    meta_path = None

                results[canonical_name] = DiscoveredModule(
                    file_path=entry_path,
                    canonical_name=canonical_name,
                    meta_path=meta_path,
                    scope=scope,
                )

    _scan_dir(root, depth=1)
    return [results[name] for name in sorted(results)]


def scan_search_paths(
    search_paths: Sequence[Path | str],
    max_depth: int = 8,
    follow_symlinks: bool = False,
    scopes: Sequence[str] | None = None,
) -> list[DiscoveredModule]:
    """Scan search paths in priority order; the first path to provide a name wins.

    Args:
        search_paths: Directories, highest priority first (project-local,
            user scope, system scope).
        scopes: Optional scope label per path. Defaults to ``SCOPES`` for the
            first three paths and ``path<N>`` beyond.

    Returns:
        Discovered sources sorted by canonical name.
    """
    winners: dict[str, DiscoveredModule] = {}
    for index, path in enumerate(search_paths):
        if scopes is not None and index < len(scopes):
            scope = scopes[index]
        elif index < len(SCOPES):
            scope = SCOPES[index]
        else:
            scope = f"path{index}"

        for dm in scan_directory(Path(path), max_depth=max_depth, follow_symlinks=follow_symlinks, scope=scope):
            if dm.canonical_name in winners:
                kept = winners[dm.canonical_name]
                logger.debug(
                    "Module '%s' at %s shadowed by %s (%s scope)",
                    dm.canonical_name,
                    dm.file_path,
                    kept.file_path,
                    kept.scope,
                )
                continue
            winners[dm.canonical_name] = dm

    return [winners[name] for name in sorted(winners)]
