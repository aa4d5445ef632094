"""Shared fixtures for Shipwright tests."""

from __future__ import annotations

import shutil
from collections.abc import Callable
from pathlib import Path

import pytest

from shipwright.config import get_settings
from shipwright.context import InstallationContext
from shipwright.release.keys import KeyManager
from shipwright.release.packager import Package, ReleaseConfig, ReleasePackager

BINARY_NAME = "fleet-agent"


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Settings are cached process-wide; reset them around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _context_at(root: Path) -> InstallationContext:
    return InstallationContext(
        binary_name=BINARY_NAME,
        install_dir=root / "install",
        state_dir=root / "state",
        workspace_dir=root / "workspace",
        manifest_root=root / "channels",
    )


@pytest.fixture(scope="session")
def signing_key_dir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Generate one RSA-4096 identity for the whole run; it is slow."""
    ctx = _context_at(tmp_path_factory.mktemp("keys"))
    KeyManager(ctx).ensure_key_material()
    return ctx.key_dir


@pytest.fixture
def bare_context(tmp_path: Path) -> InstallationContext:
    """An installation context without any key material."""
    return _context_at(tmp_path)


@pytest.fixture
def context(tmp_path: Path, signing_key_dir: Path) -> InstallationContext:
    """An installation context whose workspace already holds signing keys."""
    ctx = _context_at(tmp_path)
    ctx.key_dir.mkdir(parents=True)
    for path in signing_key_dir.glob("*.pem"):
        shutil.copy2(path, ctx.key_dir / path.name)
    return ctx


@pytest.fixture
def fake_binary() -> Callable[..., Path]:
    """Factory writing a shell script that reports a version on ``--version``."""

    def _make(path: Path, version: str, *, exit_code: int = 0) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            f'#!/bin/sh\necho "{BINARY_NAME} {version}"\nexit {exit_code}\n',
            encoding="utf-8",
        )
        path.chmod(0o755)
        return path

    return _make


@pytest.fixture
def package_factory(context, fake_binary, tmp_path) -> Callable[..., Package]:
    """Factory building a signed package whose binary reports *reported* (default: *version*)."""
    packager = ReleasePackager(context)

    def _build(version: str, reported: str | None = None, **config) -> Package:
        binary = fake_binary(tmp_path / "build-src" / version / BINARY_NAME, reported or version)
        release = ReleaseConfig(
            version=version,
            revision="abc1234",
            build_date="2026-10-16",
            target_platform="x86_64-unknown-linux-gnu",
            **config,
        )
        return packager.build_release(binary, release)

    return _build
