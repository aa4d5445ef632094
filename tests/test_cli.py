"""Tests for the shipwright-package and shipwright-update entry points."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from shipwright.cli import package_main, update_main
from shipwright.config import Settings


@pytest.fixture
def settings(context) -> Settings:
    return Settings(
        _env_file=None,
        binary_name="fleet-agent",
        app_version="1.1.0",
        install_dir=str(context.install_dir),
        state_dir=str(context.state_dir),
        workspace_dir=str(context.workspace_dir),
        manifest_root=str(context.manifest_root),
        download_base_url=context.manifest_root.as_uri(),
        update_url=context.manifest_root.as_uri(),
        probe_timeout=5.0,
        termination_grace=0.1,
    )


@pytest.fixture(autouse=True)
def _isolated(settings):
    """Route both CLIs at the test installation and keep logging untouched."""
    with (
        patch("shipwright.cli.get_settings", return_value=settings),
        patch("shipwright.cli.setup_logging"),
        patch("shipwright.client.updater.stop_instances", new_callable=AsyncMock, return_value=[]),
    ):
        yield


def _create(tmp_path, fake_binary, version="1.1.0", *extra):
    binary = fake_binary(tmp_path / "dist" / "fleet-agent", version)
    return package_main(
        ["create", "--release-version", version, "--binary", str(binary), *extra]
    )


class TestPackageCli:
    """Tests for shipwright-package."""

    def test_create_and_publish(self, context, tmp_path, fake_binary, capsys):
        code = _create(tmp_path, fake_binary, "1.1.0", "--channel", "stable", "--changelog", "Fix")

        assert code == 0
        out = capsys.readouterr().out
        assert "sha256:" in out
        assert "Published to stable (latest: 1.1.0)" in out
        assert (context.manifest_root / "stable" / "manifest.json").is_file()

    def test_verify(self, context, tmp_path, fake_binary):
        _create(tmp_path, fake_binary)
        archive = next(context.package_dir.glob("*.tar.gz"))
        assert package_main(["verify", str(archive)]) == 0

    def test_verify_tampered_fails(self, context, tmp_path, fake_binary, capsys):
        _create(tmp_path, fake_binary)
        archive = next(context.package_dir.glob("*.tar.gz"))
        with archive.open("ab") as handle:
            handle.write(b"x")

        assert package_main(["verify", str(archive)]) == 1
        assert "Checksum mismatch" in capsys.readouterr().err

    def test_verify_missing_fails(self, tmp_path):
        assert package_main(["verify", str(tmp_path / "missing.tar.gz")]) == 1

    def test_create_without_binary_fails(self):
        assert package_main(["create"]) == 1

    def test_clean(self, context, tmp_path, fake_binary):
        _create(tmp_path, fake_binary)
        assert package_main(["clean"]) == 0
        assert not context.package_dir.exists()

    def test_requires_subcommand(self):
        with pytest.raises(SystemExit):
            package_main([])


class TestUpdateCli:
    """Tests for shipwright-update."""

    def test_check_prints_changelog(self, context, tmp_path, fake_binary, capsys):
        _create(tmp_path, fake_binary, "1.1.0", "--channel", "stable", "--changelog", "Fix crash")
        fake_binary(context.binary_path, "1.0.0")
        capsys.readouterr()

        assert update_main(["check"]) == 0
        out = capsys.readouterr().out
        assert "Update available: 1.0.0 -> 1.1.0" in out
        assert "Fix crash" in out

    def test_check_up_to_date(self, context, tmp_path, fake_binary, capsys):
        _create(tmp_path, fake_binary, "1.1.0", "--channel", "stable")
        fake_binary(context.binary_path, "1.1.0")

        assert update_main(["check", "stable"]) == 0
        assert "Up to date (1.1.0)" in capsys.readouterr().out

    def test_update_then_rollback(self, context, tmp_path, fake_binary, capsys):
        _create(tmp_path, fake_binary, "1.1.0", "--channel", "stable")
        fake_binary(context.binary_path, "1.0.0")

        assert update_main(["update"]) == 0
        assert "updated: 1.1.0" in capsys.readouterr().out

        assert update_main(["rollback"]) == 0
        assert "Restored 1.0.0" in capsys.readouterr().out

    def test_update_failure_exit_code(self, context, fake_binary, capsys):
        fake_binary(context.binary_path, "1.0.0")

        assert update_main(["update", "beta"]) == 1
        assert "network_failure" in capsys.readouterr().err

    def test_rollback_without_backups(self, context, fake_binary, capsys):
        fake_binary(context.binary_path, "1.0.0")

        assert update_main(["rollback"]) == 1
        assert "No backups" in capsys.readouterr().err

    def test_check_unreachable(self, capsys):
        assert update_main(["check"]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_invalid_settings_exit_cleanly(self, capsys):
        def _bad_settings():
            return Settings(_env_file=None, update_channel="nightly")

        with patch("shipwright.cli.get_settings", side_effect=_bad_settings):
            assert update_main(["check"]) == 1
        assert "update_channel must be one of" in capsys.readouterr().err
