"""Filesystem helpers: atomic writes, renames, tree manifests."""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shipwright.collaborators import PrivilegeEscalator

logger = logging.getLogger(__name__)

__all__ = [
    "atomic_write_text",
    "move_path",
    "copy_tree",
    "remove_tree",
    "sha256_file",
    "tree_manifest",
]


def atomic_write_text(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` as a whole-file atomic operation.

    The content goes to a temporary file in the same directory, is fsynced,
    then renamed over the target. Readers see the old or new file, never a
    partial one.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def move_path(src: Path, dst: Path, escalator: PrivilegeEscalator | None = None) -> None:
    """Rename ``src`` to ``dst`` in one operation.

    On PermissionError the move is retried through ``escalator`` when one is
    given.

    Raises:
        OSError: If the rename fails and cannot be escalated.
    """
    try:
        os.replace(src, dst)
        return
    except PermissionError:
        if escalator is None:
            raise
        logger.info("Permission denied moving %s -> %s, escalating", src, dst)
    if not escalator.move(Path(src), Path(dst)):
        raise PermissionError(f"Escalated move failed: {src} -> {dst}")


def copy_tree(src: Path, dst: Path, escalator: PrivilegeEscalator | None = None) -> None:
    """Copy a directory tree, preserving metadata and symlinks."""
    try:
        shutil.copytree(src, dst, symlinks=True)
        return
    except PermissionError:
        if escalator is None:
            raise
        logger.info("Permission denied copying %s -> %s, escalating", src, dst)
    if not escalator.copy(Path(src), Path(dst)):
        raise PermissionError(f"Escalated copy failed: {src} -> {dst}")


def remove_tree(path: Path) -> None:
    """Remove a directory tree if it exists; errors are logged, not raised."""
    path = Path(path)
    if not path.exists() and not path.is_symlink():
        return

    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)


def sha256_file(path: Path) -> str:
    """Compute SHA256 hash for one file."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        while True:
            chunk = handle.read(1024 * 1024)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def tree_manifest(root: Path) -> dict[str, str]:
    """Map every regular file under ``root`` (POSIX relative path) to its SHA256."""
    root = Path(root)
    manifest: dict[str, str] = {}
    for entry in sorted(root.rglob("*")):
        if entry.is_file() and not entry.is_symlink():
            manifest[entry.relative_to(root).as_posix()] = sha256_file(entry)
    return manifest
