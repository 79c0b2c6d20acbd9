"""Utility helpers for shipwright."""

from shipwright.utils.fs import (
    atomic_write_text,
    copy_tree,
    move_path,
    remove_tree,
    sha256_file,
    tree_manifest,
)

__all__ = [
    "atomic_write_text",
    "copy_tree",
    "move_path",
    "remove_tree",
    "sha256_file",
    "tree_manifest",
]
