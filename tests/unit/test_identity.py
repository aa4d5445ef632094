"""Unit tests for release identity and the release tree layout."""

import stat
from unittest.mock import patch

import pytest

from shipwright.release.identity import (
    ReleaseIdentity,
    derive_identity,
    host_platform,
    source_revision,
)
from shipwright.release.layout import assemble_tree, expected_members


def _identity(**overrides) -> ReleaseIdentity:
    values = {
        "semantic_version": "1.1.0",
        "source_revision": "abc1234",
        "build_date": "2026-10-16",
        "target_platform": "x86_64-unknown-linux-gnu",
    }
    values.update(overrides)
    return ReleaseIdentity(**values)


class TestReleaseIdentity:
    """Tests for ReleaseIdentity."""

    def test_full_version(self):
        assert _identity().full_version == "1.1.0-abc1234-2026-10-16"

    def test_rejects_non_semver(self):
        with pytest.raises(ValueError):
            _identity(semantic_version="one")

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("1.1.0", "1.1.0"),
            ("v1.1.0", "1.1.0"),
            ("1.1.0-abc1234-2026-10-16", "1.1.0"),
            ("1.1.0-rc.1-unknown-2026-10-16", "1.1.0-rc.1"),
            ("1.1.0-rc.1", "1.1.0-rc.1"),
            ("fleet-agent", None),
        ],
    )
    def test_semantic_of(self, text, expected):
        assert ReleaseIdentity.semantic_of(text) == expected

    def test_dict_roundtrip_keys(self):
        data = _identity().to_dict()
        assert data["git_commit"] == "abc1234"
        assert data["full_version"] == "1.1.0-abc1234-2026-10-16"
        assert ReleaseIdentity.from_dict(data) == _identity()


class TestDeriveIdentity:
    """Tests for derive_identity() and its environment probes."""

    def test_explicit_values_win(self):
        identity = derive_identity(
            "v2.0.0", revision="deadbee", build_date="2026-01-02", target_platform="arm64-x"
        )
        assert identity.semantic_version == "2.0.0"
        assert identity.full_version == "2.0.0-deadbee-2026-01-02"

    def test_revision_falls_back_to_unknown(self, tmp_path):
        assert source_revision(tmp_path) == "unknown"
        assert source_revision(None) == "unknown"

    def test_revision_without_git(self, tmp_path):
        with patch("shipwright.release.identity.shutil.which", return_value=None):
            assert source_revision(tmp_path) == "unknown"

    def test_host_platform_shape(self):
        assert host_platform().count("-") >= 2


class TestAssembleTree:
    """Tests for the templated release tree."""

    def test_tree_contents(self, tmp_path, fake_binary):
        binary = fake_binary(tmp_path / "src" / "fleet-agent", "1.1.0")
        root = assemble_tree(tmp_path / "tree", binary, "fleet-agent", _identity())

        for member in expected_members("fleet-agent"):
            assert (root / member).is_file(), member
        assert (root / "bin" / "fleet-agent").read_bytes() == binary.read_bytes()
        for executable in ("bin/fleet-agent", "scripts/install", "scripts/uninstall"):
            assert stat.S_IMODE((root / executable).stat().st_mode) == 0o755

        config = (root / "config" / "default.toml").read_text(encoding="utf-8")
        assert "1.1.0" in config
        readme = (root / "docs" / "README.md").read_text(encoding="utf-8")
        assert "abc1234" in readme

    def test_install_script_keeps_shell_variables(self, tmp_path, fake_binary):
        binary = fake_binary(tmp_path / "fleet-agent", "1.1.0")
        root = assemble_tree(tmp_path / "tree", binary, "fleet-agent", _identity())
        script = (root / "scripts" / "install").read_text(encoding="utf-8")
        assert "${INSTALL_DIR:-/opt/fleet-agent}" in script

    def test_existing_tree_is_replaced(self, tmp_path, fake_binary):
        binary = fake_binary(tmp_path / "fleet-agent", "1.1.0")
        stale = tmp_path / "tree" / "stale.txt"
        stale.parent.mkdir()
        stale.write_text("old", encoding="utf-8")
        assemble_tree(tmp_path / "tree", binary, "fleet-agent", _identity())
        assert not stale.exists()
