"""Unit tests for semantic version ordering."""

import pytest

from shipwright.versioning import (
    compare_versions,
    is_newer,
    max_version,
    parse_semver,
    same_version,
    sort_newest_first,
)


class TestParseSemver:
    """Tests for parse_semver()."""

    def test_plain_version(self):
        assert parse_semver("1.2.3") == (1, 2, 3, "")

    def test_leading_v_and_prerelease(self):
        assert parse_semver("v2.0.0-rc.1") == (2, 0, 0, "rc.1")

    @pytest.mark.parametrize("text", ["", "1.2", "1.2.3.4", "latest", "1.0.0-"])
    def test_invalid_returns_none(self, text):
        assert parse_semver(text) is None


class TestCompareVersions:
    """Tests for compare_versions() precedence rules."""

    def test_numeric_not_lexical(self):
        """1.10.0 is newer than 1.9.0 even though '1.9' > '1.1' as strings."""
        assert compare_versions("1.10.0", "1.9.0") == 1
        assert compare_versions("1.9.0", "1.10.0") == -1

    def test_equal_ignores_leading_v(self):
        assert compare_versions("v1.0.0", "1.0.0") == 0

    def test_prerelease_sorts_below_release(self):
        assert compare_versions("1.1.0-beta", "1.1.0") == -1
        assert compare_versions("1.1.0", "1.1.0-beta") == 1

    def test_prerelease_identifiers(self):
        assert compare_versions("1.0.0-alpha.2", "1.0.0-alpha.10") == -1
        assert compare_versions("1.0.0-alpha.1", "1.0.0-alpha.beta") == -1
        assert compare_versions("1.0.0-beta", "1.0.0-alpha") == 1

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            compare_versions("1.0.0-abc1234-2026-10-16x", "1.0.0")


class TestHelpers:
    """Tests for is_newer / same_version / sorting helpers."""

    def test_is_newer(self):
        assert is_newer("1.1.0", "1.0.0") is True
        assert is_newer("1.0.0", "1.0.0") is False
        assert is_newer("1.1.0", "not_installed") is False

    def test_same_version(self):
        assert same_version("1.0.0", "v1.0.0") is True
        assert same_version("1.0.0", "not_installed") is False

    def test_sort_newest_first(self):
        versions = ["1.0.0", "1.10.0", "1.2.0", "1.10.0-rc.1"]
        assert sort_newest_first(versions) == ["1.10.0", "1.10.0-rc.1", "1.2.0", "1.0.0"]

    def test_max_version(self):
        assert max_version(["0.9.0", "1.0.0-beta", "0.10.1"]) == "1.0.0-beta"
        assert max_version([]) is None
