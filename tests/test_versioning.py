"""Tests for semantic version parsing and ordering."""

from __future__ import annotations

import pytest

from shipwright.versioning import compare_versions, latest_version, normalize_version, parse_version


class TestParseVersion:
    @pytest.mark.parametrize("version", ["1.2.0", "v1.2.0", "0.0.1", "1.0.0-rc.1", "1.0.0+build.5"])
    def test_valid(self, version: str) -> None:
        parse_version(version)

    @pytest.mark.parametrize("version", ["1.2", "01.2.3", "latest", "1.2.3.4", ""])
    def test_invalid(self, version: str) -> None:
        with pytest.raises(ValueError):
            parse_version(version)


class TestCompareVersions:
    @pytest.mark.parametrize(
        "a, b, expected",
        [
            ("1.3.0", "1.2.0", 1),
            ("1.2.0", "1.10.0", -1),
            ("v1.2.0", "1.2.0", 0),
            ("1.0.0-rc.1", "1.0.0", -1),
            ("1.0.0-alpha", "1.0.0-beta", -1),
            ("1.0.0-rc.2", "1.0.0-rc.10", -1),
            ("1.0.0+a", "1.0.0+b", 0),
        ],
    )
    def test_ordering(self, a: str, b: str, expected: int) -> None:
        assert compare_versions(a, b) == expected


class TestLatestVersion:
    def test_picks_newest_and_normalizes(self) -> None:
        assert latest_version(["v1.2.0", "v1.10.0", "v1.3.0"]) == "1.10.0"

    def test_skips_unparseable(self) -> None:
        assert latest_version(["nightly", "1.2.0", "stable"]) == "1.2.0"

    def test_empty(self) -> None:
        assert latest_version([]) is None


def test_normalize_version() -> None:
    assert normalize_version(" v1.3.0\n") == "1.3.0"
    assert normalize_version("1.3.0") == "1.3.0"
