"""Tests for filesystem helpers."""

from __future__ import annotations

import hashlib
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from shipwright.utils.fs import atomic_write_text, copy_tree, move_path, remove_tree, sha256_file, tree_manifest


class TestAtomicWrite:
    def test_creates_parents_and_writes(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "state.json"
        atomic_write_text(target, "{}")
        assert target.read_text() == "{}"

    def test_replaces_existing_without_leftovers(self, tmp_path: Path) -> None:
        target = tmp_path / "state.json"
        target.write_text("old")
        atomic_write_text(target, "new")
        assert target.read_text() == "new"
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]


class TestMovePath:
    def test_rename(self, tmp_path: Path) -> None:
        src = tmp_path / "a"
        src.mkdir()
        (src / "f").write_text("x")
        move_path(src, tmp_path / "b")
        assert not src.exists()
        assert (tmp_path / "b" / "f").read_text() == "x"

    def test_permission_error_without_escalator(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def deny(src: object, dst: object) -> None:
            raise PermissionError("denied")

        monkeypatch.setattr("shipwright.utils.fs.os.replace", deny)
        with pytest.raises(PermissionError):
            move_path(tmp_path / "a", tmp_path / "b")

    def test_permission_error_escalates(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def deny(src: object, dst: object) -> None:
            raise PermissionError("denied")

        monkeypatch.setattr("shipwright.utils.fs.os.replace", deny)
        escalator = MagicMock()
        escalator.move.return_value = True
        move_path(tmp_path / "a", tmp_path / "b", escalator=escalator)
        escalator.move.assert_called_once_with(tmp_path / "a", tmp_path / "b")

    def test_failed_escalation_raises(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def deny(src: object, dst: object) -> None:
            raise PermissionError("denied")

        monkeypatch.setattr("shipwright.utils.fs.os.replace", deny)
        escalator = MagicMock()
        escalator.move.return_value = False
        with pytest.raises(PermissionError, match="Escalated move failed"):
            move_path(tmp_path / "a", tmp_path / "b", escalator=escalator)


class TestTrees:
    def test_copy_tree_and_manifest(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        (src / "bin").mkdir(parents=True)
        (src / "VERSION").write_text("1.2.0\n")
        (src / "bin" / "tool").write_text("#!/bin/sh\n")

        copy_tree(src, tmp_path / "dst")
        assert tree_manifest(tmp_path / "dst") == tree_manifest(src)
        assert sorted(tree_manifest(src)) == ["VERSION", "bin/tool"]

    def test_sha256_file(self, tmp_path: Path) -> None:
        path = tmp_path / "f"
        path.write_bytes(b"payload")
        assert sha256_file(path) == hashlib.sha256(b"payload").hexdigest()

    def test_remove_tree(self, tmp_path: Path) -> None:
        target = tmp_path / "t"
        (target / "deep").mkdir(parents=True)
        remove_tree(target)
        assert not target.exists()
        remove_tree(target)

    def test_remove_single_file(self, tmp_path: Path) -> None:
        path = tmp_path / "f"
        path.write_text("x")
        remove_tree(path)
        assert not path.exists()
